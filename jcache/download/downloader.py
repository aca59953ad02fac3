"""
Streaming file downloader backed by the cache store.

A download either short-circuits to a cached (or already local) file, or
streams the remote resource to disk while publishing progress events:

    Initialized -> Downloading* -> Completed | Error | Cancelled

Network failures never escape start(); they surface as an Error event and
start() returns None.
"""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Optional
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import httpx

from jcache.errors import (
    CacheError,
    CacheNotInitializedError,
    DownloaderDisposedError,
    MalformedRecordError,
)
from jcache.persist.hashing import stable_hash
from jcache.persist.records import validate_expiry
from jcache.persist.store import CacheStore
from jcache.streams import Broadcast, Subscription

from .events import DownloadEvent, DownloadStatus

logger = logging.getLogger(__name__)

REMOTE_SCHEMES = frozenset({"http", "https"})
PARTIAL_SUFFIX = ".part"


def _progress(received: int, content_length: int) -> float:
    if content_length <= 0:
        return 0.0
    return min(max(received / content_length, 0.0), 1.0)


def _content_length(response: httpx.Response) -> int:
    try:
        return max(int(response.headers.get("content-length", 0)), 0)
    except ValueError:
        return 0


def _file_size(path: str) -> int:
    try:
        return Path(path).stat().st_size
    except OSError:
        return 0


def _local_source(url: str) -> Optional[Path]:
    """Path a non-remote URL refers to, or None for http(s) URLs."""
    parsed = urlparse(url)
    if parsed.scheme in REMOTE_SCHEMES:
        return None
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path))
    return Path(url).expanduser()


class FileDownloader:
    """
    Drives one download at a time and publishes its events.

    Example:
        downloader = FileDownloader(store)
        with downloader.subscribe() as events:
            path = await downloader.start("https://example.org/report.pdf")
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        download_dir: Optional[Path] = None,
        client: Optional[httpx.AsyncClient] = None,
        chunk_size: Optional[int] = None,
    ):
        """
        Args:
            store: Initialized cache store used for lookups and registration
            download_dir: Destination directory (defaults to the store's files dir)
            client: Shared HTTP client; one is created and owned when omitted
            chunk_size: Stream read size in bytes
        """
        self.store = store
        self.download_dir = Path(download_dir) if download_dir is not None else store.config.files_dir
        self.chunk_size = chunk_size or store.config.chunk_size

        self._client = client
        self._owns_client = client is None
        self._events: Broadcast[DownloadEvent] = Broadcast()
        self._current = DownloadEvent.initial()
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False
        self._disposed = False

    @property
    def events(self) -> Broadcast[DownloadEvent]:
        return self._events

    @property
    def progress_stream(self) -> Broadcast[DownloadEvent]:
        return self._events

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self) -> Subscription[DownloadEvent]:
        return self._events.subscribe()

    def _emit(self, event: DownloadEvent) -> None:
        self._current = event
        self._events.publish(event)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    def _target_path(self, url: str) -> Path:
        """Destination for url: its last path segment, prefixed by a digest of the full URL."""
        digest = stable_hash(url)
        name = PurePosixPath(unquote(urlparse(url).path)).name
        if name in ("", ".", ".."):
            return self.download_dir / digest[:16]
        return self.download_dir / f"{digest[:12]}-{name}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self, url: str, expiry: Optional[timedelta] = None) -> Optional[str]:
        """
        Resolve url to a local file, downloading it when not cached.

        Args:
            url: Remote URL, file:// URL or local path
            expiry: Time-to-live of the resulting file record

        Returns:
            Local path, or None if the download failed or was cancelled

        Raises:
            DownloaderDisposedError: If dispose() was already called
            RuntimeError: If another download is still running on this instance
        """
        if self._disposed:
            raise DownloaderDisposedError("Downloader has been disposed")
        if self.active:
            raise RuntimeError("A download is already in progress on this downloader")
        if expiry is not None:
            validate_expiry(expiry)

        self._cancel_requested = False
        self._emit(DownloadEvent.initial(url))

        try:
            cached = self.store.get_file(url, expiry)
        except MalformedRecordError as e:
            logger.warning("Ignoring unreadable cache record for %s: %s", url, e)
            cached = None
        except CacheNotInitializedError:
            raise
        except CacheError as e:
            return self._fail(url, f"Error during download: {e}")

        if cached is not None:
            logger.debug("Serving %s from cache at %s", url, cached)
            return self._complete(url, cached, _file_size(cached))

        local = _local_source(url)
        if local is not None and local.is_file():
            return self._register_local(url, local, expiry)

        self._task = asyncio.create_task(self._download(url, expiry))
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._cancel_requested:
                return None
            raise

    async def cancel(self) -> None:
        """Stop the in-flight download, if any, and emit Cancelled."""
        task = self._task
        if task is None or task.done():
            return

        self._cancel_requested = True
        task.cancel()
        await asyncio.wait([task])
        self._emit_cancelled()

    async def dispose(self) -> None:
        """Cancel any download, close an owned client and end the event channel."""
        if self._disposed:
            return
        await self.cancel()
        self._disposed = True
        if self._owns_client and self._client is not None:
            await self._client.aclose()
        self._events.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _complete(self, url: str, path: str, content_length: int) -> str:
        self._emit(
            DownloadEvent(
                resource_url=url,
                status=DownloadStatus.COMPLETED,
                progress=1.0,
                content_length=content_length,
                resource_path=path,
            )
        )
        return path

    def _fail(self, url: str, message: str) -> None:
        logger.warning("Download of %s failed: %s", url, message)
        self._emit(self._current.with_status(DownloadStatus.ERROR, resource_url=url, error=message))
        return None

    def _emit_cancelled(self) -> None:
        if not self._current.is_terminal:
            logger.info("Download of %s cancelled", self._current.resource_url)
            self._emit(self._current.with_status(DownloadStatus.CANCELLED))

    def _register_local(self, url: str, local: Path, expiry: Optional[timedelta]) -> Optional[str]:
        path = str(local)
        self.store.set_file(url, path, expiry)
        return self._complete(url, path, _file_size(path))

    @staticmethod
    def _discard_partial(handle: Optional[BinaryIO], *paths: Optional[Path]) -> None:
        if handle is not None and not handle.closed:
            handle.close()
        for path in paths:
            if path is None:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not delete partial download %s: %s", path, e)

    async def _download(self, url: str, expiry: Optional[timedelta]) -> Optional[str]:
        target: Optional[Path] = None
        partial: Optional[Path] = None
        finished: Optional[Path] = None
        handle: Optional[BinaryIO] = None
        received = 0
        content_length = 0

        try:
            async with self._get_client().stream("GET", url) as response:
                response.raise_for_status()
                content_length = _content_length(response)

                target = self._target_path(url)
                partial = target.with_name(target.name + PARTIAL_SUFFIX)
                target.parent.mkdir(parents=True, exist_ok=True)
                handle = partial.open("wb")

                async for chunk in response.aiter_bytes(self.chunk_size):
                    handle.write(chunk)
                    received += len(chunk)
                    self._emit(
                        DownloadEvent(
                            resource_url=url,
                            status=DownloadStatus.DOWNLOADING,
                            progress=_progress(received, content_length),
                            content_length=content_length,
                            resource_path=str(target),
                        )
                    )

            handle.close()
            partial.replace(target)
            finished = target
            self.store.set_file(url, str(target), expiry)

        except asyncio.CancelledError:
            self._discard_partial(handle, partial)
            self._emit_cancelled()
            if self._cancel_requested:
                return None
            raise
        except httpx.HTTPStatusError as e:
            self._discard_partial(handle, partial)
            return self._fail(url, f"HTTP {e.response.status_code} while downloading {url}")
        except (httpx.NetworkError, httpx.TimeoutException) as e:
            self._discard_partial(handle, partial)
            return self._fail(url, f"Connection error: {e}")
        except (httpx.HTTPError, httpx.InvalidURL, OSError, CacheError) as e:
            self._discard_partial(handle, partial, finished)
            return self._fail(url, f"Error during download: {e}")

        logger.info("Downloaded %s to %s (%d bytes)", url, target, received)
        return self._complete(url, str(target), content_length or received)
