# Vault - Scoped master password holder
#
# The master password lives in a mutable buffer so it can be overwritten
# with zeros on every lock transition. Python str objects are immutable and
# may be interned, so the session never keeps the password as a str.

import hmac
from typing import Union


class SecretPassword:
    """
    Wipeable in-memory master password.

    Holds the UTF-8 bytes of the password in a bytearray. ``wipe()``
    overwrites the buffer in place; any later use raises ``ValueError``.

    Usage::

        with SecretPassword("correct horse") as secret:
            key = derive_key(secret.reveal(), salt, params)
    """

    __slots__ = ("_buffer", "_wiped")

    def __init__(self, password: Union[str, bytes, bytearray]):
        if isinstance(password, str):
            password = password.encode("utf-8")
        self._buffer = bytearray(password)
        self._wiped = False

    def reveal(self) -> bytes:
        """Return a short-lived bytes copy for the KDF."""
        if self._wiped:
            raise ValueError("Secret has been wiped")
        return bytes(self._buffer)

    def wipe(self) -> None:
        """Overwrite the buffer with zeros and mark the secret unusable."""
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._buffer = bytearray()
        self._wiped = True

    @property
    def wiped(self) -> bool:
        return self._wiped

    def __len__(self) -> int:
        return len(self._buffer)

    def __eq__(self, other) -> bool:
        if not isinstance(other, SecretPassword) or self._wiped or other._wiped:
            return NotImplemented
        return hmac.compare_digest(bytes(self._buffer), bytes(other._buffer))

    __hash__ = None

    def __repr__(self) -> str:
        return "SecretPassword(<wiped>)" if self._wiped else "SecretPassword(***)"

    __str__ = __repr__

    def __enter__(self) -> "SecretPassword":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()
