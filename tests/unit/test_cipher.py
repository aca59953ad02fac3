"""
Unit tests for jcache/persist/cipher.py
"""
import pytest
from jcache.errors import MalformedRecordError
from jcache.persist.cipher import FernetCipher, PlainCipher, new_salt


def test_plain_cipher_is_identity():
    """Test the plain cipher passes bytes through untouched."""
    cipher = PlainCipher()
    assert cipher.encrypt(b"payload") == b"payload"
    assert cipher.decrypt(b"payload") == b"payload"


def test_fernet_roundtrip_hides_plaintext():
    """Test encrypted bytes hide the plaintext and decrypt back."""
    cipher = FernetCipher.from_seed("s3cret", new_salt(), iterations=1_000)
    token = cipher.encrypt(b'{"originalKey": "user:1"}')

    assert b"user:1" not in token
    assert cipher.decrypt(token) == b'{"originalKey": "user:1"}'


def test_same_seed_and_salt_derive_same_key():
    """Test the key derivation is deterministic for one seed and salt."""
    salt = new_salt()
    first = FernetCipher.from_seed("seed", salt, iterations=1_000)
    second = FernetCipher.from_seed("seed", salt, iterations=1_000)

    assert second.decrypt(first.encrypt(b"data")) == b"data"


def test_wrong_seed_raises_malformed():
    """Test decrypting with another seed raises MalformedRecordError."""
    salt = new_salt()
    token = FernetCipher.from_seed("right", salt, iterations=1_000).encrypt(b"data")

    with pytest.raises(MalformedRecordError):
        FernetCipher.from_seed("wrong", salt, iterations=1_000).decrypt(token)


def test_tampered_bytes_raise_malformed():
    """Test bytes that are not a valid token raise MalformedRecordError."""
    cipher = FernetCipher.from_seed("seed", new_salt(), iterations=1_000)

    with pytest.raises(MalformedRecordError):
        cipher.decrypt(b"not a fernet token")


def test_salts_are_random():
    """Test new salts are 16 random bytes."""
    assert len(new_salt()) == 16
    assert new_salt() != new_salt()
