"""Controller pairing a downloader with its latest event."""

import logging
from datetime import timedelta
from typing import Optional

from jcache.persist.store import CacheStore
from jcache.streams import Broadcast, Subscription

from .downloader import FileDownloader
from .events import DownloadEvent

logger = logging.getLogger(__name__)


class DownloadController:
    """
    Facade over one FileDownloader.

    current_event always holds the last event the downloader published, so a
    newly attached observer can read the status without waiting for the next
    event. Before any start() it is a synthetic Initialized event.
    """

    def __init__(
        self,
        store: CacheStore,
        downloader: Optional[FileDownloader] = None,
        **downloader_options,
    ):
        self.downloader = downloader or FileDownloader(store, **downloader_options)
        self._current_event = DownloadEvent.initial()
        self._stop_listening = self.downloader.events.listen(self._on_event)

    def _on_event(self, event: DownloadEvent) -> None:
        self._current_event = event

    @property
    def current_event(self) -> DownloadEvent:
        return self._current_event

    @property
    def progress_stream(self) -> Broadcast[DownloadEvent]:
        return self.downloader.events

    def subscribe(self) -> Subscription[DownloadEvent]:
        return self.downloader.subscribe()

    async def start(self, url: str, expiry: Optional[timedelta] = None) -> Optional[str]:
        return await self.downloader.start(url, expiry)

    async def cancel(self) -> None:
        await self.downloader.cancel()

    async def dispose(self) -> None:
        await self.downloader.dispose()
        self._stop_listening()
