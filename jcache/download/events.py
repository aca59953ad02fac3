"""Download progress events."""

from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Optional


class DownloadStatus(str, Enum):
    INITIALIZED = "initialized"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({DownloadStatus.COMPLETED, DownloadStatus.ERROR, DownloadStatus.CANCELLED})


@dataclass(frozen=True)
class DownloadEvent:
    """
    Snapshot of one download's state.

    progress is in [0.0, 1.0]; it stays 0.0 while downloading when the server
    sent no content length.
    """

    resource_url: str
    status: DownloadStatus
    progress: float = 0.0
    content_length: int = 0
    resource_path: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def initial(cls, resource_url: str = "") -> "DownloadEvent":
        return cls(resource_url=resource_url, status=DownloadStatus.INITIALIZED)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def with_status(self, status: DownloadStatus, **changes) -> "DownloadEvent":
        return replace(self, status=status, **changes)

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload
