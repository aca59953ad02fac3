"""Configuration for the cache store and downloader."""

from .settings import CacheConfig, DEFAULT_CACHE_NAME, DEFAULT_CHUNK_SIZE, DEFAULT_EXPIRY

__all__ = ["CacheConfig", "DEFAULT_CACHE_NAME", "DEFAULT_CHUNK_SIZE", "DEFAULT_EXPIRY"]
