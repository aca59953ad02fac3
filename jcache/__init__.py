"""
jcache: persistent expiring key-value cache with a streaming file downloader.
"""

from jcache.config import CacheConfig
from jcache.download import DownloadController, DownloadEvent, DownloadStatus, FileDownloader
from jcache.errors import (
    CacheClosedError,
    CacheError,
    CacheFileError,
    CacheNotInitializedError,
    DownloaderDisposedError,
    EncryptionSeedError,
    InvalidExpiryError,
    MalformedRecordError,
)
from jcache.persist import CacheRecord, CacheStore, RecordKind, stable_hash

__version__ = "0.1.0"

__all__ = [
    "CacheConfig",
    "CacheStore",
    "CacheRecord",
    "RecordKind",
    "stable_hash",
    "FileDownloader",
    "DownloadController",
    "DownloadEvent",
    "DownloadStatus",
    "CacheError",
    "CacheNotInitializedError",
    "CacheClosedError",
    "InvalidExpiryError",
    "MalformedRecordError",
    "CacheFileError",
    "EncryptionSeedError",
    "DownloaderDisposedError",
]
