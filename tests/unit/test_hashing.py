"""
Unit tests for jcache/persist/hashing.py

Tests stable sha256 hashing of cache keys.
"""
import hashlib

import pytest
from jcache.persist.hashing import stable_hash


def test_same_key_same_hash():
    """Test hashing is deterministic."""
    url = "https://example.com/files/report.pdf?version=3"
    assert stable_hash(url) == stable_hash(url)


def test_distinct_keys_distinct_hashes():
    """Test different keys map to different hashes."""
    assert stable_hash("user:1") != stable_hash("user:2")
    assert stable_hash("") != stable_hash(" ")


def test_fixed_width_hex():
    """Test every key maps to 64 hex characters regardless of length."""
    long_key = "k" * 100_000
    for key in ["", "a", long_key, "ключ-🔑"]:
        digest = stable_hash(key)
        assert len(digest) == 64
        int(digest, 16)


def test_matches_sha256_of_utf8():
    """Test the hash is SHA-256 of the UTF-8 bytes."""
    assert stable_hash("abc") == hashlib.sha256(b"abc").hexdigest()


def test_unicode_normalization():
    """Composed and decomposed forms hash the same."""
    composed = "caf\u00e9"
    decomposed = "cafe\u0301"
    assert stable_hash(composed) == stable_hash(decomposed)


def test_bytes_hash_directly():
    """Test bytes hash the same as their UTF-8 string."""
    assert stable_hash(b"abc") == stable_hash("abc")


def test_rejects_other_types():
    """Test non-string keys raise TypeError."""
    with pytest.raises(TypeError):
        stable_hash(42)
