"""Cache bootstrap configuration."""

import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_CACHE_NAME = "jcache-records"
DEFAULT_EXPIRY = timedelta(days=7)
DEFAULT_CHUNK_SIZE = 64 * 1024

_CACHE_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")


class CacheConfig(BaseModel):
    """
    Configuration for a cache store and its downloader.

    Attributes:
        cache_name: Logical name of the persisted table; also the database file stem
        cache_dir: Directory holding the database file
        download_dir: Where downloaded files are written (defaults to cache_dir/files)
        default_expiry: Fallback TTL when none is given per call
        encryption_seed: Enables at-rest encryption of record bytes when set
        chunk_size: Read size for streamed downloads, in bytes
    """

    cache_name: str = DEFAULT_CACHE_NAME
    cache_dir: Path = Field(default_factory=lambda: Path.home() / ".jcache")
    download_dir: Optional[Path] = None
    default_expiry: timedelta = DEFAULT_EXPIRY
    encryption_seed: Optional[str] = Field(default=None, repr=False)
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0)

    @field_validator("cache_name")
    @classmethod
    def _safe_name(cls, value: str) -> str:
        if not _CACHE_NAME_RE.match(value):
            raise ValueError(f"cache_name must match {_CACHE_NAME_RE.pattern}, got {value!r}")
        return value

    @field_validator("default_expiry")
    @classmethod
    def _non_negative(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError(f"default_expiry must be non-negative, got {value}")
        return value

    @field_validator("cache_dir", "download_dir")
    @classmethod
    def _expand(cls, value: Optional[Path]) -> Optional[Path]:
        return value.expanduser() if value is not None else None

    @property
    def db_path(self) -> Path:
        """Path to the SQLite database file."""
        return self.cache_dir / f"{self.cache_name}.db"

    @property
    def files_dir(self) -> Path:
        """Resolved download directory."""
        return self.download_dir or self.cache_dir / "files"

    @classmethod
    def from_env(cls, **overrides) -> "CacheConfig":
        """
        Create configuration from environment variables.

        Environment variables:
            JCACHE_NAME: Cache name
            JCACHE_DIR: Cache directory
            JCACHE_DOWNLOAD_DIR: Download directory
            JCACHE_DEFAULT_EXPIRY_SECONDS: Default TTL in seconds
            JCACHE_ENCRYPTION_SEED: Encryption passphrase
            JCACHE_CHUNK_SIZE: Download chunk size in bytes

        Keyword overrides take precedence over the environment.
        """
        values = {}

        if os.getenv("JCACHE_NAME"):
            values["cache_name"] = os.getenv("JCACHE_NAME")

        if os.getenv("JCACHE_DIR"):
            values["cache_dir"] = Path(os.getenv("JCACHE_DIR"))

        if os.getenv("JCACHE_DOWNLOAD_DIR"):
            values["download_dir"] = Path(os.getenv("JCACHE_DOWNLOAD_DIR"))

        if os.getenv("JCACHE_DEFAULT_EXPIRY_SECONDS"):
            values["default_expiry"] = timedelta(seconds=float(os.getenv("JCACHE_DEFAULT_EXPIRY_SECONDS")))

        if os.getenv("JCACHE_ENCRYPTION_SEED"):
            values["encryption_seed"] = os.getenv("JCACHE_ENCRYPTION_SEED")

        if os.getenv("JCACHE_CHUNK_SIZE"):
            values["chunk_size"] = int(os.getenv("JCACHE_CHUNK_SIZE"))

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
