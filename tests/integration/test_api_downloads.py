"""
Integration tests for the cache and download HTTP API.

Tests /downloads (start, status, SSE events, cancel) and /cache endpoints.
"""

import asyncio
import json
import time

import httpx
import pytest
from fastapi.testclient import TestClient

import jcache.api.main as api_main
from jcache.api.main import app


def parse_sse(text: str) -> list[tuple[str, dict]]:
    """Split an SSE body into (event, data) pairs."""
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines() if ": " in line)
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def wait_for_status(client, download_id, statuses, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/downloads/{download_id}").json()
        if body["status"] in statuses:
            return body
        time.sleep(0.02)
    raise AssertionError(f"download {download_id} never reached {statuses}")


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Test client with the cache rooted in a temporary directory."""
    monkeypatch.setenv("JCACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("JCACHE_NAME", "api-test")
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def local_file(tmp_path):
    path = tmp_path / "local" / "notes.txt"
    path.parent.mkdir(parents=True)
    path.write_text("cached notes")
    return path


class TestHealth:

    def test_health_reports_cache(self, client):
        """Test /health reports the configured cache while it is empty."""
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["cache_name"] == "api-test"

    def test_cache_endpoints_unavailable_before_startup(self):
        """Test cache and download routes answer 503 without a store."""
        client = TestClient(app)
        assert client.get("/cache/stats").status_code == 503
        assert client.post("/downloads", json={"url": "https://x.org/a"}).status_code == 503

    def test_shutdown_disposes_empty_store(self, tmp_path, monkeypatch):
        """Test shutdown closes and forgets the store even when it holds no records."""
        monkeypatch.setenv("JCACHE_DIR", str(tmp_path / "cache"))
        monkeypatch.setenv("JCACHE_NAME", "api-empty")

        with TestClient(app) as client:
            store = api_main._store
            assert len(store) == 0
            assert client.get("/health").json()["cache_name"] == "api-empty"

        assert api_main._store is None
        assert not store.initialized


class TestDownloads:

    def test_local_file_download_completes(self, client, local_file):
        """Test a local path download completes with the file's size."""
        response = client.post("/downloads", json={"url": str(local_file)})
        assert response.status_code == 202
        download_id = response.json()["download_id"]

        body = wait_for_status(client, download_id, {"completed"})
        assert body["resource_path"] == str(local_file)
        assert body["progress"] == 1.0
        assert body["content_length"] == len("cached notes")

    def test_remote_download_with_mock_transport(self, client, monkeypatch):
        """Test a remote download is stored and listed under its URL."""
        def handler(request):
            return httpx.Response(200, content=b"remote-bytes")

        monkeypatch.setattr(api_main, "_http_client", httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        download_id = client.post("/downloads", json={"url": "https://x.org/data.bin"}).json()["download_id"]
        body = wait_for_status(client, download_id, {"completed", "error"})

        assert body["status"] == "completed"
        assert body["resource_path"].endswith("data.bin")
        assert "https://x.org/data.bin" in client.get("/cache/keys").json()["keys"]

    def test_remote_error_reported_as_event(self, client, monkeypatch):
        """Test an HTTP error shows up as an error status."""
        def handler(request):
            return httpx.Response(404)

        monkeypatch.setattr(api_main, "_http_client", httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        download_id = client.post("/downloads", json={"url": "https://x.org/missing.bin"}).json()["download_id"]
        body = wait_for_status(client, download_id, {"completed", "error"})

        assert body["status"] == "error"
        assert "404" in body["error"]

    def test_event_stream_ends_with_terminal_event(self, client, local_file):
        """Test the SSE stream closes after the terminal event."""
        download_id = client.post("/downloads", json={"url": str(local_file)}).json()["download_id"]
        wait_for_status(client, download_id, {"completed"})

        with client.stream("GET", f"/downloads/{download_id}/events") as response:
            assert response.status_code == 200
            assert "text/event-stream" in response.headers.get("content-type", "")
            text = "".join(response.iter_text())

        events = parse_sse(text)
        assert events[-1][0] == "completed"
        assert events[-1][1]["resource_path"] == str(local_file)

    def test_cancel_running_download(self, client, monkeypatch):
        """Test DELETE cancels an in-flight download and unregisters it."""
        async def body():
            yield b"x" * 8
            await asyncio.sleep(3600)
            yield b"never"

        def handler(request):
            return httpx.Response(200, headers={"Content-Length": "16"}, content=body())

        monkeypatch.setattr(api_main, "_http_client", httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        api_main._store.config.chunk_size = 8

        download_id = client.post("/downloads", json={"url": "https://x.org/slow.bin"}).json()["download_id"]
        wait_for_status(client, download_id, {"downloading"})

        response = client.delete(f"/downloads/{download_id}")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["progress"] == 0.5

        assert client.get(f"/downloads/{download_id}").status_code == 404

    def test_finished_downloads_evicted_after_retention(self, client, local_file, monkeypatch):
        """Test finished downloads are dropped from the registry once retention passes."""
        monkeypatch.setattr(api_main, "DOWNLOAD_RETENTION_SECONDS", 0.0)

        first_id = client.post("/downloads", json={"url": str(local_file)}).json()["download_id"]
        wait_for_status(client, first_id, {"completed"})
        deadline = time.monotonic() + 5.0
        while first_id not in api_main._finished_at and time.monotonic() < deadline:
            time.sleep(0.02)

        second_id = client.post("/downloads", json={"url": str(local_file)}).json()["download_id"]

        assert client.get(f"/downloads/{first_id}").status_code == 404
        assert first_id not in api_main._tasks
        assert client.get(f"/downloads/{second_id}").status_code == 200

    def test_unknown_download_id(self, client):
        """Test unknown download ids answer 404."""
        assert client.get("/downloads/nope").status_code == 404
        assert client.get("/downloads/nope/events").status_code == 404
        assert client.delete("/downloads/nope").status_code == 404

    def test_negative_expiry_rejected(self, client):
        """Test a negative expiry fails request validation."""
        response = client.post("/downloads", json={"url": "https://x.org/a", "expiry_seconds": -5})
        assert response.status_code == 422


class TestCacheManagement:

    def test_stats_keys_gc_clear(self, client):
        """Test the cache management endpoints end to end."""
        store = api_main._store
        store.set_data("alpha", 1)
        store.set_data("beta", {"b": 2})

        stats = client.get("/cache/stats").json()
        assert stats["count"] == 2
        assert stats["db_path"].endswith("api-test.db")

        keys = client.get("/cache/keys").json()
        assert sorted(keys["keys"]) == ["alpha", "beta"]
        assert keys["count"] == 2

        assert client.post("/cache/gc").json() == {"removed": 0}

        cleared = client.delete("/cache").json()
        assert cleared == {"ok": True, "cleared": 2}
        assert client.get("/cache/stats").json()["count"] == 0
