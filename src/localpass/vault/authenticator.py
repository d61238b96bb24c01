# Vault - Master password authenticator
#
# Uninitialized -> Initialized, tracked in vault metadata.
# Password correctness is decided only by decrypting the verification
# token (an encrypted constant). The stored fingerprint is diagnostic and
# never grants access.

import hmac
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .codec import CredentialEntry, encode_entry
from .encryption import (
    DEFAULT_KDF_PARAMS,
    EncryptedRecord,
    EncryptionService,
    KdfParams,
    PasswordLike,
    password_bytes,
)
from .exceptions import (
    AuthenticationFailure,
    DecodeError,
    StorageFailure,
    VaultStateError,
)
from .store import VaultStore

logger = logging.getLogger(__name__)

KEY_VAULT_INITIALIZED = "vaultInitialized"
KEY_VAULT_TEST = "vaultTest"
KEY_MASTER_PASSWORD_HASH = "masterPasswordHash"

VERIFICATION_PLAINTEXT = b"vault-test"
FINGERPRINT_PREFIX = b"localpass-fingerprint:"
FINGERPRINT_SCHEME = "argon2id"


@dataclass(frozen=True)
class RotationResult:
    """Outcome of a successful password rotation."""

    entries: int
    rewrapped: int
    skipped: Tuple[str, ...]


class VaultAuthenticator:
    """
    Owns the verification token and brokers password changes.

    Args:
        store: Open VaultStore.
        kdf_params: Cost parameters for newly written tokens and records.
    """

    def __init__(self, store: VaultStore, kdf_params: KdfParams = DEFAULT_KDF_PARAMS):
        self.store = store
        self.kdf_params = kdf_params

    def is_initialized(self) -> bool:
        return self.store.get_item(KEY_VAULT_INITIALIZED) == "true"

    def initialize(self, password: PasswordLike) -> None:
        """
        Create the verification token for a new vault.

        Raises:
            VaultStateError: Vault is already initialized (nothing is written)
            StorageFailure: Metadata could not be persisted
        """
        if self.is_initialized():
            raise VaultStateError("Vault already exists")

        token = self._make_token(password)
        fingerprint = self._make_fingerprint(password)

        with self.store.transaction():
            self.store.set_item(KEY_VAULT_TEST, token.to_json())
            self.store.set_item(KEY_MASTER_PASSWORD_HASH, fingerprint)
            self.store.set_item(KEY_VAULT_INITIALIZED, "true")

    def verify(self, password: PasswordLike) -> bool:
        """
        Check a password by decrypting the verification token.

        Returns:
            True iff the token authenticates and holds the expected constant

        Raises:
            VaultStateError: Vault is not initialized
            DecodeError: Stored token is missing or malformed
        """
        if not self.is_initialized():
            raise VaultStateError("Vault is not initialized")

        raw = self.store.get_item(KEY_VAULT_TEST)
        if raw is None:
            raise DecodeError("Verification token is missing")
        token = EncryptedRecord.from_json(raw)

        try:
            plaintext = EncryptionService.decrypt(token, password)
        except AuthenticationFailure:
            return False
        return hmac.compare_digest(plaintext, VERIFICATION_PLAINTEXT)

    def fingerprint_matches(self, password: PasswordLike) -> Optional[bool]:
        """
        Compare a password against the stored fingerprint.

        Diagnostic only. Returns None when no usable fingerprint is stored.
        """
        stored = self.store.get_item(KEY_MASTER_PASSWORD_HASH)
        if not stored:
            return None
        try:
            scheme, memory, time_cost, lanes, salt_b64, digest_b64 = stored.split("$")
            if scheme != FINGERPRINT_SCHEME:
                return None
            params = KdfParams(int(memory), int(time_cost), int(lanes)).validate()
            salt = EncryptionService.decode_from_storage(salt_b64)
            digest = EncryptionService.decode_from_storage(digest_b64)
        except ValueError:
            logger.warning("Stored master password fingerprint is malformed")
            return None
        candidate = EncryptionService.derive_key(
            FINGERPRINT_PREFIX + password_bytes(password), salt, params
        )
        return hmac.compare_digest(candidate, digest)

    def rotate(
        self,
        entries: Iterable[CredentialEntry],
        old_password: PasswordLike,
        new_password: PasswordLike,
    ) -> RotationResult:
        """
        Re-encrypt the verification token and every entry under a new password.

        Staged commit: everything is encrypted in memory first, then written
        in one store transaction. On any failure nothing is committed and the
        vault still opens with ``old_password``.

        Persisted records that are not in ``entries`` (skipped at unlock
        because their payload would not decode) are re-wrapped byte for byte
        when they still authenticate under ``old_password``; records that do
        not authenticate are left as they are.

        Raises:
            AuthenticationFailure: ``old_password`` does not open the vault,
                or the verification token is missing or unreadable
            StorageFailure: The commit failed (rolled back)
        """
        try:
            verified = self.verify(old_password)
        except DecodeError as e:
            raise AuthenticationFailure(f"Current master password cannot be verified: {e}") from e
        if not verified:
            raise AuthenticationFailure("Current master password is incorrect")

        staged: List[Tuple[str, EncryptedRecord, int]] = []
        known_ids = set()
        for entry in entries:
            record = EncryptionService.encrypt(
                encode_entry(entry), new_password, params=self.kdf_params
            )
            staged.append((entry.id, record, entry.created_at))
            known_ids.add(entry.id)

        rewrapped = 0
        skipped = []
        for stored in self.store.list_records():
            if stored.id in known_ids:
                continue
            try:
                plaintext = EncryptionService.decrypt(stored.record(), old_password)
            except (AuthenticationFailure, DecodeError):
                skipped.append(stored.id)
                continue
            record = EncryptionService.encrypt(plaintext, new_password, params=self.kdf_params)
            staged.append((stored.id, record, stored.created_at))
            rewrapped += 1

        token = self._make_token(new_password)
        fingerprint = self._make_fingerprint(new_password)

        try:
            with self.store.transaction():
                for record_id, record, created_at in staged:
                    self.store.put_record(record_id, record, created_at=created_at)
                self.store.set_item(KEY_VAULT_TEST, token.to_json())
                self.store.set_item(KEY_MASTER_PASSWORD_HASH, fingerprint)
        except StorageFailure:
            raise
        except Exception as e:
            raise StorageFailure(f"Password rotation commit failed: {e}") from e

        if skipped:
            logger.warning(
                "Password rotation left %d unreadable record(s) under the old password",
                len(skipped),
            )

        return RotationResult(
            entries=len(known_ids),
            rewrapped=rewrapped,
            skipped=tuple(skipped),
        )

    def _make_token(self, password: PasswordLike) -> EncryptedRecord:
        return EncryptionService.encrypt(
            VERIFICATION_PLAINTEXT, password, params=self.kdf_params
        )

    def _make_fingerprint(self, password: PasswordLike) -> str:
        salt = EncryptionService.generate_salt()
        digest = EncryptionService.derive_key(
            FINGERPRINT_PREFIX + password_bytes(password), salt, self.kdf_params
        )
        p = self.kdf_params
        return "$".join((
            FINGERPRINT_SCHEME,
            str(p.memory),
            str(p.time),
            str(p.parallelism),
            EncryptionService.encode_for_storage(salt),
            EncryptionService.encode_for_storage(digest),
        ))
