"""Main FastAPI application and server startup."""

import asyncio
import json
import logging
import time
import uuid
from datetime import timedelta
from typing import AsyncIterator, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import StreamingResponse

from jcache.config import CacheConfig
from jcache.download import DownloadController, FileDownloader
from jcache.persist import CacheStore

from .schemas import (
    CacheClearResponse,
    CacheGcResponse,
    CacheKeysResponse,
    CacheStatsResponse,
    DownloadEventResponse,
    DownloadStartRequest,
    HealthResponse,
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="JCache API",
    description="Expiring key-value cache with streaming file downloads",
    version="0.1.0",
)

# Finished downloads stay queryable this long, then are dropped on the next POST /downloads
DOWNLOAD_RETENTION_SECONDS = 300.0

# Global state (initialized on startup)
_store: Optional[CacheStore] = None
_http_client: Optional[httpx.AsyncClient] = None
_downloads: dict[str, DownloadController] = {}
_tasks: dict[str, asyncio.Task] = {}
_finished_at: dict[str, float] = {}


def get_store() -> CacheStore:
    """Dependency to get the cache store."""
    if _store is None or not _store.initialized:
        raise HTTPException(status_code=503, detail="Cache not initialized")
    return _store


def get_controller(download_id: str) -> DownloadController:
    """Dependency to look up a registered download."""
    controller = _downloads.get(download_id)
    if controller is None:
        raise HTTPException(status_code=404, detail=f"Download not found: {download_id}")
    return controller


@app.on_event("startup")
async def startup_event():
    """Open the cache store and the shared HTTP client."""
    global _store, _http_client

    _store = CacheStore(CacheConfig.from_env()).init()
    _http_client = httpx.AsyncClient(follow_redirects=True)


@app.on_event("shutdown")
async def shutdown_event():
    """Cancel downloads and close the store."""
    global _store, _http_client

    for controller in list(_downloads.values()):
        await controller.dispose()
    _downloads.clear()
    _tasks.clear()
    _finished_at.clear()

    if _http_client is not None:
        await _http_client.aclose()
        _http_client = None

    if _store is not None:
        _store.dispose()
        _store = None


@app.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    return HealthResponse(
        status="ok" if _store is not None and _store.initialized else "unavailable",
        cache_name=_store.config.cache_name if _store is not None else None,
        active_downloads=sum(1 for task in _tasks.values() if not task.done()),
    )


# ===== Downloads =====


def _on_download_done(download_id: str, task: asyncio.Task) -> None:
    _finished_at[download_id] = time.monotonic()
    if not task.cancelled() and task.exception() is not None:
        logger.error("Download %s crashed: %s", download_id, task.exception())


async def _evict_finished_downloads() -> int:
    """Dispose and forget downloads that finished more than the retention period ago."""
    cutoff = time.monotonic() - DOWNLOAD_RETENTION_SECONDS
    expired = [download_id for download_id, finished in _finished_at.items() if finished <= cutoff]
    for download_id in expired:
        _finished_at.pop(download_id, None)
        _tasks.pop(download_id, None)
        controller = _downloads.pop(download_id, None)
        if controller is not None:
            await controller.dispose()
    if expired:
        logger.debug("Evicted %d finished downloads", len(expired))
    return len(expired)


@app.post("/downloads", response_model=DownloadEventResponse, status_code=202)
async def start_download(
    request: DownloadStartRequest,
    store: CacheStore = Depends(get_store),
):
    """
    Start a download in the background.

    Progress is available from GET /downloads/{id} or streamed from
    GET /downloads/{id}/events. Downloads that finished more than
    DOWNLOAD_RETENTION_SECONDS ago are dropped first.
    """
    await _evict_finished_downloads()
    expiry = timedelta(seconds=request.expiry_seconds) if request.expiry_seconds is not None else None

    download_id = uuid.uuid4().hex
    controller = DownloadController(store, FileDownloader(store, client=_http_client))
    _downloads[download_id] = controller

    task = asyncio.create_task(controller.start(request.url, expiry))
    task.add_done_callback(lambda t: _on_download_done(download_id, t))
    _tasks[download_id] = task

    return DownloadEventResponse.from_event(download_id, controller.current_event)


@app.get("/downloads/{download_id}", response_model=DownloadEventResponse)
async def download_status(download_id: str, controller: DownloadController = Depends(get_controller)):
    """Latest event of a download."""
    return DownloadEventResponse.from_event(download_id, controller.current_event)


@app.get("/downloads/{download_id}/events")
async def download_events(download_id: str, controller: DownloadController = Depends(get_controller)):
    """
    Stream a download's events with Server-Sent Events.

    Event types: initialized, downloading, completed, error, cancelled.
    The stream starts with the current event and ends after a terminal one.
    """
    subscription = controller.subscribe()

    async def event_generator() -> AsyncIterator[str]:
        try:
            current = controller.current_event
            yield f"event: {current.status.value}\n"
            yield f"data: {json.dumps(current.to_dict())}\n\n"
            if current.is_terminal:
                return

            async for event in subscription:
                yield f"event: {event.status.value}\n"
                yield f"data: {json.dumps(event.to_dict())}\n\n"
                if event.is_terminal:
                    break
        finally:
            subscription.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.delete("/downloads/{download_id}", response_model=DownloadEventResponse)
async def cancel_download(download_id: str, controller: DownloadController = Depends(get_controller)):
    """Cancel a download and drop it from the registry."""
    await controller.cancel()
    event = controller.current_event
    await controller.dispose()
    _downloads.pop(download_id, None)
    _tasks.pop(download_id, None)
    _finished_at.pop(download_id, None)
    return DownloadEventResponse.from_event(download_id, event)


# ===== Cache Management =====


@app.get("/cache/stats", response_model=CacheStatsResponse)
async def cache_stats(store: CacheStore = Depends(get_store)):
    """Record count, stored bytes and write timestamps."""
    return CacheStatsResponse(**store.stats())


@app.get("/cache/keys", response_model=CacheKeysResponse)
async def cache_keys(store: CacheStore = Depends(get_store)):
    """Original keys of all decodable records."""
    keys = await asyncio.to_thread(store.get_keys)
    return CacheKeysResponse(keys=keys, count=len(keys))


@app.post("/cache/gc", response_model=CacheGcResponse)
async def cache_gc(store: CacheStore = Depends(get_store)):
    """Run garbage collection now."""
    removed = await asyncio.to_thread(store.garbage_collector)
    return CacheGcResponse(removed=removed)


@app.delete("/cache", response_model=CacheClearResponse)
async def cache_clear(store: CacheStore = Depends(get_store)):
    """Delete every record. Files on disk are left in place."""
    cleared = store.clear()
    return CacheClearResponse(ok=True, cleared=cleared)


def run():
    """Run the development server."""
    uvicorn.run("jcache.api.main:app", host="0.0.0.0", port=8000, reload=True)


if __name__ == "__main__":
    run()
