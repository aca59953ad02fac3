"""
Exception hierarchy for the cache store and downloader.

All store failures derive from CacheError so callers can catch a single type,
while still telling a cache miss (None) apart from a storage malfunction.
"""


class CacheError(Exception):
    """Base exception for cache-related errors."""

    pass


class CacheNotInitializedError(CacheError):
    """Raised when a store operation runs before init()."""

    pass


class CacheClosedError(CacheNotInitializedError):
    """Raised when a store operation runs after dispose()."""

    pass


class InvalidExpiryError(CacheError, ValueError):
    """Raised when an expiry duration is negative."""

    pass


class MalformedRecordError(CacheError):
    """Raised when a stored record cannot be decoded.

    The offending entry has already been deleted when this is raised.
    """

    def __init__(self, message: str, hash_key: str | None = None):
        super().__init__(message)
        self.hash_key = hash_key


class EncryptionSeedError(CacheError):
    """Raised by init() when the configured seed does not match the one the records were written with."""

    pass


class CacheFileError(CacheError):
    """Raised when checking or deleting a cached file fails for a reason other than absence."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class DownloaderDisposedError(RuntimeError):
    """Raised when a disposed downloader is reused."""

    pass
