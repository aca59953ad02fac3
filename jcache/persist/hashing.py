"""
Stable hashing of cache keys.

Maps arbitrary caller keys (full URLs, free text) to fixed-length storage keys.
"""

import hashlib
import unicodedata


def stable_hash(key: str | bytes) -> str:
    """
    Compute the storage key for a logical cache key.

    - Strings: NFC-normalized, then UTF-8 encoded
    - Bytes: used directly

    Returns:
        64-character hex string (sha256)

    Examples:
        >>> stable_hash("https://example.com/a.png") == stable_hash("https://example.com/a.png")
        True
        >>> len(stable_hash(""))
        64
    """
    if isinstance(key, str):
        data = unicodedata.normalize("NFC", key).encode("utf-8")
    elif isinstance(key, bytes):
        data = key
    else:
        raise TypeError(f"Cannot hash type {type(key)}: {key!r}")

    return hashlib.sha256(data).hexdigest()
