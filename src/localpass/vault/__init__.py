# Vault Module - Encrypted credential storage
#
# Argon2id key derivation + AES-256-GCM per entry, SQLite persistence,
# and a Locked/Unlocked session with idle auto-lock.

from .authenticator import RotationResult, VaultAuthenticator
from .codec import CredentialEntry, decode_entry, encode_entry
from .encryption import (
    DEFAULT_KDF_PARAMS,
    EncryptedRecord,
    EncryptionService,
    KdfParams,
    password_strength,
    verify_master_password,
)
from .exceptions import (
    AuthenticationFailure,
    DecodeError,
    EntryNotFoundError,
    RecordFormatError,
    StorageFailure,
    ValidationFailure,
    VaultError,
    VaultLockedError,
    VaultStateError,
)
from .preferences import VaultPreferences
from .secret import SecretPassword
from .session import LockState, VaultSession
from .store import StoredRecord, VaultStore

__all__ = [
    "VaultSession",
    "LockState",
    "VaultStore",
    "StoredRecord",
    "VaultAuthenticator",
    "RotationResult",
    "EncryptionService",
    "EncryptedRecord",
    "KdfParams",
    "DEFAULT_KDF_PARAMS",
    "CredentialEntry",
    "encode_entry",
    "decode_entry",
    "SecretPassword",
    "VaultPreferences",
    "password_strength",
    "verify_master_password",
    "VaultError",
    "AuthenticationFailure",
    "DecodeError",
    "RecordFormatError",
    "StorageFailure",
    "ValidationFailure",
    "VaultStateError",
    "VaultLockedError",
    "EntryNotFoundError",
]
