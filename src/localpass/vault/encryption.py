# Vault - Encryption Service
#
# Master password + salt -> 256-bit key (Argon2id, memory-hard)
# Entry payload encryption (AES-256-GCM, detached 16-byte tag)
# Versioned record envelope so old records stay readable

import base64
import binascii
import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.argon2 import Argon2id
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import AuthenticationFailure, RecordFormatError
from .secret import SecretPassword

PasswordLike = Union[str, bytes, bytearray, SecretPassword]


@dataclass(frozen=True)
class KdfParams:
    """
    Key-stretching cost parameters.

    memory: Argon2 memory cost in KiB
    time: Argon2 passes (v1 records: PBKDF2 iterations = time * 100_000)
    parallelism: Argon2 lanes
    """

    memory: int = 65536
    time: int = 3
    parallelism: int = 4

    # Upper bounds accepted from a stored record
    MAX_MEMORY = 1024 * 1024  # 1 GiB
    MAX_TIME = 64
    MAX_PARALLELISM = 64

    def validate(self) -> "KdfParams":
        for name in ("memory", "time", "parallelism"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(f"KDF {name} must be a positive integer")
        if self.memory < 8 * self.parallelism:
            raise ValueError("KDF memory must be at least 8 KiB per lane")
        if (
            self.memory > self.MAX_MEMORY
            or self.time > self.MAX_TIME
            or self.parallelism > self.MAX_PARALLELISM
        ):
            raise ValueError("KDF parameters exceed supported limits")
        return self

    def to_dict(self) -> Dict[str, int]:
        return {"memory": self.memory, "time": self.time, "parallelism": self.parallelism}

    @classmethod
    def from_dict(cls, data: Any) -> "KdfParams":
        if not isinstance(data, dict):
            raise RecordFormatError("kdf parameters must be an object")
        try:
            return cls(
                memory=data["memory"],
                time=data["time"],
                parallelism=data["parallelism"],
            ).validate()
        except KeyError as e:
            raise RecordFormatError(f"kdf parameters missing {e.args[0]}") from None
        except ValueError as e:
            raise RecordFormatError(str(e)) from None


DEFAULT_KDF_PARAMS = KdfParams()

# Version 1 records were written with a fixed PBKDF2 cost (time=3)
LEGACY_KDF_PARAMS = KdfParams(memory=65536, time=3, parallelism=4)


@dataclass(frozen=True)
class EncryptedRecord:
    """
    At-rest form of one encrypted payload.

    Serialized as ``{version, salt, iv, ciphertext, authTag}`` with base64
    byte fields. Version 2 records also carry ``kdf`` parameters.
    """

    version: int
    salt: bytes
    iv: bytes
    ciphertext: bytes
    auth_tag: bytes
    kdf: Optional[KdfParams] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "version": self.version,
            "salt": EncryptionService.encode_for_storage(self.salt),
            "iv": EncryptionService.encode_for_storage(self.iv),
            "ciphertext": EncryptionService.encode_for_storage(self.ciphertext),
            "authTag": EncryptionService.encode_for_storage(self.auth_tag),
        }
        if self.kdf is not None:
            data["kdf"] = self.kdf.to_dict()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptedRecord":
        if not isinstance(data, dict):
            raise RecordFormatError("Encrypted record must be an object")

        version = data.get("version")
        if not isinstance(version, int) or isinstance(version, bool):
            raise RecordFormatError("Encrypted record has no integer version")
        if version not in EncryptionService.SUPPORTED_VERSIONS:
            raise RecordFormatError(f"Unsupported record version: {version}")

        fields = {}
        for key in ("salt", "iv", "ciphertext", "authTag"):
            value = data.get(key)
            if not isinstance(value, str):
                raise RecordFormatError(f"Encrypted record field '{key}' missing")
            try:
                fields[key] = EncryptionService.decode_from_storage(value)
            except (binascii.Error, ValueError):
                raise RecordFormatError(f"Encrypted record field '{key}' is not base64") from None

        if len(fields["iv"]) != EncryptionService.NONCE_LENGTH:
            raise RecordFormatError("Encrypted record iv has wrong length")
        if len(fields["authTag"]) != EncryptionService.TAG_LENGTH:
            raise RecordFormatError("Encrypted record authTag has wrong length")
        if len(fields["salt"]) < EncryptionService.MIN_SALT_LENGTH:
            raise RecordFormatError("Encrypted record salt is too short")

        kdf = None
        if version >= 2:
            kdf = KdfParams.from_dict(data.get("kdf"))

        return cls(
            version=version,
            salt=fields["salt"],
            iv=fields["iv"],
            ciphertext=fields["ciphertext"],
            auth_tag=fields["authTag"],
            kdf=kdf,
        )

    @classmethod
    def from_json(cls, text: str) -> "EncryptedRecord":
        try:
            data = json.loads(text)
        except (TypeError, ValueError):
            raise RecordFormatError("Encrypted record is not valid JSON") from None
        return cls.from_dict(data)


class EncryptionService:
    """
    Stateless key derivation and authenticated encryption.

    Flow:
    1. Fresh random salt + iv per encryption (never reused)
    2. Argon2id derives a 256-bit key from password + salt
    3. AES-256-GCM encrypts; the 16-byte tag is stored apart from the ciphertext
    4. Record version and kdf parameters are bound as associated data

    Version 1 records (PBKDF2-SHA256, no associated data) are still
    decrypted but never written.
    """

    CURRENT_VERSION = 2
    LEGACY_VERSION = 1
    SUPPORTED_VERSIONS = (LEGACY_VERSION, CURRENT_VERSION)

    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 32
    MIN_SALT_LENGTH = 8  # Argon2 minimum; v1 records used 16
    NONCE_LENGTH = 12  # 96-bit nonce for GCM
    TAG_LENGTH = 16
    LEGACY_ITERATIONS_PER_TIME = 100_000

    @staticmethod
    def derive_key(
        password: PasswordLike,
        salt: bytes,
        params: KdfParams = DEFAULT_KDF_PARAMS,
        version: int = CURRENT_VERSION,
    ) -> bytes:
        """
        Derive a 256-bit key from a password and salt.

        Deterministic for a fixed (password, salt, params, version).

        Args:
            password: Master password
            salt: Random salt stored with the record
            params: Cost parameters
            version: Record version selecting the KDF

        Returns:
            32-byte key
        """
        secret = password_bytes(password)
        if version == EncryptionService.LEGACY_VERSION:
            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=EncryptionService.KEY_LENGTH,
                salt=salt,
                iterations=params.time * EncryptionService.LEGACY_ITERATIONS_PER_TIME,
            )
            return kdf.derive(secret)

        if version == EncryptionService.CURRENT_VERSION:
            kdf = Argon2id(
                salt=salt,
                length=EncryptionService.KEY_LENGTH,
                iterations=params.time,
                lanes=params.parallelism,
                memory_cost=params.memory,
            )
            return kdf.derive(secret)

        raise RecordFormatError(f"Unsupported record version: {version}")

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def generate_iv() -> bytes:
        """Generate a random 96-bit GCM nonce."""
        return os.urandom(EncryptionService.NONCE_LENGTH)

    @staticmethod
    def encrypt(
        plaintext: Union[bytes, str],
        password: PasswordLike,
        salt: Optional[bytes] = None,
        iv: Optional[bytes] = None,
        params: KdfParams = DEFAULT_KDF_PARAMS,
    ) -> EncryptedRecord:
        """
        Encrypt a payload under a password.

        Args:
            plaintext: Bytes to encrypt (str is UTF-8 encoded)
            password: Master password
            salt: Optional salt; a fresh random one is generated if omitted
            iv: Optional nonce; a fresh random one is generated if omitted.
                Never pass the same iv for two encryptions under one key.
            params: Cost parameters recorded in the envelope

        Returns:
            EncryptedRecord at the current version
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        params.validate()
        used_salt = salt if salt is not None else EncryptionService.generate_salt()
        used_iv = iv if iv is not None else EncryptionService.generate_iv()
        if len(used_iv) != EncryptionService.NONCE_LENGTH:
            raise ValueError("iv must be 12 bytes")

        version = EncryptionService.CURRENT_VERSION
        key = EncryptionService.derive_key(password, used_salt, params, version)
        aad = EncryptionService._associated_data(version, params)
        sealed = AESGCM(key).encrypt(used_iv, plaintext, aad)

        return EncryptedRecord(
            version=version,
            salt=used_salt,
            iv=used_iv,
            ciphertext=sealed[: -EncryptionService.TAG_LENGTH],
            auth_tag=sealed[-EncryptionService.TAG_LENGTH:],
            kdf=params,
        )

    @staticmethod
    def decrypt(record: EncryptedRecord, password: PasswordLike) -> bytes:
        """
        Decrypt a record, verifying its authentication tag.

        Raises:
            AuthenticationFailure: Wrong password or tampered record
            RecordFormatError: Unknown version
        """
        if record.version == EncryptionService.LEGACY_VERSION:
            params = LEGACY_KDF_PARAMS
            aad = None
        elif record.version == EncryptionService.CURRENT_VERSION:
            if record.kdf is None:
                raise RecordFormatError("Version 2 record is missing kdf parameters")
            params = record.kdf
            aad = EncryptionService._associated_data(record.version, params)
        else:
            raise RecordFormatError(f"Unsupported record version: {record.version}")

        key = EncryptionService.derive_key(password, record.salt, params, record.version)
        try:
            return AESGCM(key).decrypt(record.iv, record.ciphertext + record.auth_tag, aad)
        except InvalidTag:
            raise AuthenticationFailure("Authentication failed") from None

    @staticmethod
    def _associated_data(version: int, params: KdfParams) -> bytes:
        return (
            f"localpass:v{version}:argon2id:"
            f"m={params.memory},t={params.time},p={params.parallelism}"
        ).encode("ascii")

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data as base64 text."""
        return base64.b64encode(data).decode("ascii")

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """Decode base64 text; raises binascii.Error on invalid input."""
        return base64.b64decode(data.encode("ascii"), validate=True)


def password_bytes(password: PasswordLike) -> bytes:
    if isinstance(password, SecretPassword):
        return password.reveal()
    if isinstance(password, str):
        return password.encode("utf-8")
    return bytes(password)


COMMON_PASSWORDS = frozenset({
    "password", "password1", "password123", "Password123", "12345678",
    "123456789", "1234567890", "qwerty123", "iloveyou", "Admin123456",
    "Welcome12345", "Passw0rd123", "123456789012", "abc12345",
})


def password_strength(password: str) -> str:
    """
    Score a password as "weak", "medium" or "strong".

    One point each for: length >= 8, length >= 12, lowercase, uppercase,
    digit, symbol. <=2 weak, <=4 medium, else strong.
    """
    score = 0
    if len(password) >= 8:
        score += 1
    if len(password) >= 12:
        score += 1
    if any("a" <= c <= "z" for c in password):
        score += 1
    if any("A" <= c <= "Z" for c in password):
        score += 1
    if any("0" <= c <= "9" for c in password):
        score += 1
    if any(not (c.isascii() and c.isalnum()) for c in password):
        score += 1

    if score <= 2:
        return "weak"
    if score <= 4:
        return "medium"
    return "strong"


def verify_master_password(password: str, min_length: int = 8) -> Tuple[bool, str]:
    """
    Verify a master password meets the vault's requirements.

    Requirements:
    - At least ``min_length`` characters
    - Not weak by ``password_strength``
    - Not a commonly used password

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(password, str) or not password:
        return False, "Master password is required"

    if len(password) < min_length:
        return False, f"Master password must be at least {min_length} characters long"

    if password in COMMON_PASSWORDS:
        return False, "This password is too common. Please choose a stronger password."

    if password_strength(password) == "weak":
        return False, "Master password is too weak. Mix letters, numbers and symbols."

    return True, ""
