"""
Pydantic schemas for FastAPI endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from jcache.download.events import DownloadEvent


class HealthResponse(BaseModel):
    """Response model for /health endpoint."""

    status: str = Field(..., description="Service status")
    cache_name: Optional[str] = Field(default=None, description="Name of the open cache")
    active_downloads: int = Field(default=0, description="Downloads currently registered")


class DownloadStartRequest(BaseModel):
    """Request model for POST /downloads."""

    url: str = Field(..., description="Remote URL, file:// URL or local path to fetch")
    expiry_seconds: Optional[float] = Field(default=None, ge=0, description="Time-to-live of the cached file; store default when omitted")


class DownloadEventResponse(BaseModel):
    """Latest state of one download."""

    download_id: str = Field(..., description="Registry id of the download")
    resource_url: str = Field(..., description="URL being downloaded")
    status: str = Field(..., description="initialized, downloading, completed, error or cancelled")
    progress: float = Field(default=0.0, description="Fraction downloaded, 0.0 when the size is unknown")
    content_length: int = Field(default=0, description="Total bytes reported by the server")
    resource_path: Optional[str] = Field(default=None, description="Local file path")
    error: Optional[str] = Field(default=None, description="Error message for failed downloads")

    @classmethod
    def from_event(cls, download_id: str, event: DownloadEvent) -> "DownloadEventResponse":
        return cls(download_id=download_id, **event.to_dict())


class CacheStatsResponse(BaseModel):
    """Response model for GET /cache/stats."""

    count: int = Field(..., description="Number of stored records")
    total_bytes: int = Field(..., description="Total size of stored record bytes")
    oldest_ts: int = Field(..., description="Unix time of the oldest write")
    newest_ts: int = Field(..., description="Unix time of the newest write")
    db_path: str = Field(..., description="SQLite database file")


class CacheKeysResponse(BaseModel):
    """Response model for GET /cache/keys."""

    keys: List[str] = Field(default_factory=list, description="Original keys of decodable records")
    count: int = Field(default=0, description="Number of keys returned")


class CacheGcResponse(BaseModel):
    """Response model for POST /cache/gc."""

    removed: int = Field(..., description="Records removed by the sweep")


class CacheClearResponse(BaseModel):
    """Response model for DELETE /cache."""

    ok: bool = Field(..., description="Whether the clear succeeded")
    cleared: int = Field(..., description="Records deleted")
