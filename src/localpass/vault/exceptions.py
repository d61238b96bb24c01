"""
Vault Exception Classes
"""


class VaultError(Exception):
    """Base exception for vault operations"""
    pass


class AuthenticationFailure(VaultError):
    """Raised when a record fails tag verification (wrong password or tampered data)"""
    pass


class DecodeError(VaultError):
    """Raised when a correctly decrypted payload is not a valid entry"""
    pass


class RecordFormatError(DecodeError):
    """Raised when an encrypted record envelope is malformed or has an unknown version"""
    pass


class StorageFailure(VaultError):
    """Raised when the underlying store is unavailable or a write fails"""
    pass


class ValidationFailure(VaultError):
    """Raised when input is rejected before any crypto or storage work"""
    pass


class VaultStateError(VaultError):
    """Raised when an operation is invalid for the current vault state"""
    pass


class VaultLockedError(VaultStateError):
    """Raised when an operation requires an unlocked vault"""
    pass


class EntryNotFoundError(VaultError):
    """Raised when an entry id is not present in the unlocked entry set"""
    pass
