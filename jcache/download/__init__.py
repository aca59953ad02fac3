"""
Streaming downloads that populate the file cache.

Provides:
- DownloadEvent / DownloadStatus progress model
- FileDownloader, the chunked download state machine
- DownloadController, a facade tracking the latest event
"""

from .events import DownloadEvent, DownloadStatus
from .downloader import FileDownloader
from .controller import DownloadController

__all__ = [
    "DownloadEvent",
    "DownloadStatus",
    "FileDownloader",
    "DownloadController",
]
