"""
Unit tests for jcache/download/controller.py
"""
import asyncio

import httpx
import pytest
from jcache.download import DownloadController, DownloadStatus, FileDownloader

pytestmark = pytest.mark.asyncio

URL = "https://files.example.org/logo.png"


def ok_handler(request):
    return httpx.Response(200, content=b"png-bytes")


async def test_current_event_starts_initialized(store):
    """Test current_event is a synthetic Initialized event before any start()."""
    controller = DownloadController(store)

    assert controller.current_event.status is DownloadStatus.INITIALIZED
    assert controller.current_event.progress == 0.0
    await controller.dispose()


async def test_current_event_tracks_latest(store, make_client, tmp_path):
    """Test current_event follows the downloader to Completed."""
    controller = DownloadController(store, download_dir=tmp_path, client=make_client(ok_handler))

    path = await controller.start(URL)

    assert controller.current_event.status is DownloadStatus.COMPLETED
    assert controller.current_event.resource_path == path
    await controller.dispose()


async def test_current_event_after_error(store, make_client, tmp_path):
    """Test current_event holds the Error event after a failed download."""
    def handler(request):
        return httpx.Response(500)

    controller = DownloadController(store, download_dir=tmp_path, client=make_client(handler))

    assert await controller.start(URL) is None
    assert controller.current_event.status is DownloadStatus.ERROR
    assert "500" in controller.current_event.error
    await controller.dispose()


async def test_retry_resets_current_event(store, make_client, tmp_path):
    """Test a retry after Error shows Initialized before the first chunk arrives."""
    release = asyncio.Event()
    attempts = []

    async def body():
        await release.wait()
        yield b"png-bytes"

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(500)
        return httpx.Response(200, content=body())

    controller = DownloadController(store, download_dir=tmp_path, client=make_client(handler))
    assert await controller.start(URL) is None

    task = asyncio.create_task(controller.start(URL))
    await asyncio.sleep(0.01)

    assert controller.current_event.status is DownloadStatus.INITIALIZED
    assert controller.current_event.resource_url == URL
    assert controller.current_event.error is None

    release.set()
    assert await task is not None
    assert controller.current_event.status is DownloadStatus.COMPLETED
    await controller.dispose()


async def test_progress_stream_is_downloader_channel(store, make_client, tmp_path):
    """Test the controller exposes the downloader's event channel unmodified."""
    downloader = FileDownloader(store, download_dir=tmp_path, client=make_client(ok_handler))
    controller = DownloadController(store, downloader)

    assert controller.progress_stream is downloader.events

    subscription = controller.subscribe()
    await controller.start(URL)

    first = await subscription.next(timeout=1)
    assert first.status is DownloadStatus.INITIALIZED
    second = await subscription.next(timeout=1)
    assert second.status is DownloadStatus.DOWNLOADING
    subscription.close()
    await controller.dispose()


async def test_dispose_closes_channel(store, make_client, tmp_path):
    """Test dispose() closes the event channel."""
    controller = DownloadController(store, download_dir=tmp_path, client=make_client(ok_handler))
    await controller.dispose()

    assert controller.progress_stream.closed
