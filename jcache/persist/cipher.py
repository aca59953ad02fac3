"""
Byte-level cipher strategies applied at the storage boundary.

Records are serialized first, then passed through a cipher before being
written. The store never looks inside the encrypted bytes.
"""

import base64
import os
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from jcache.errors import MalformedRecordError

SALT_BYTES = 16
KDF_ITERATIONS = 200_000
KEY_BYTES = 32


class RecordCipher(Protocol):
    """Encrypt/decrypt strategy for record bytes."""

    def encrypt(self, data: bytes) -> bytes: ...

    def decrypt(self, data: bytes) -> bytes: ...


class PlainCipher:
    """Identity cipher used when no encryption seed is configured."""

    def encrypt(self, data: bytes) -> bytes:
        return data

    def decrypt(self, data: bytes) -> bytes:
        return data


class FernetCipher:
    """
    Authenticated symmetric encryption (AES-128-CBC + HMAC-SHA256 via Fernet).

    The key is derived from a caller seed with PBKDF2-HMAC-SHA256 and a
    per-store random salt.
    """

    def __init__(self, key: bytes):
        self._fernet = Fernet(key)

    @classmethod
    def from_seed(cls, seed: str, salt: bytes, iterations: int = KDF_ITERATIONS) -> "FernetCipher":
        """
        Derive a cipher from a passphrase.

        Args:
            seed: Caller-supplied secret
            salt: Per-store random salt (persisted alongside the records)
            iterations: PBKDF2 work factor

        Returns:
            FernetCipher bound to the derived 256-bit key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_BYTES,
            salt=salt,
            iterations=iterations,
        )
        key = base64.urlsafe_b64encode(kdf.derive(seed.encode("utf-8")))
        return cls(key)

    def encrypt(self, data: bytes) -> bytes:
        return self._fernet.encrypt(data)

    def decrypt(self, data: bytes) -> bytes:
        try:
            return self._fernet.decrypt(data)
        except InvalidToken as e:
            raise MalformedRecordError("Record bytes failed authentication or decryption") from e


def new_salt() -> bytes:
    return os.urandom(SALT_BYTES)
