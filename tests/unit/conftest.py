"""
Shared fixtures for unit tests.
"""
import httpx
import pytest

from jcache.persist.sqlite_store import KVStore


@pytest.fixture
def kv(tmp_path):
    """Create a temporary KVStore instance."""
    db_path = tmp_path / "kv.db"
    store = KVStore(db_path)
    yield store
    store.close()


@pytest.fixture
def cached_file(tmp_path):
    """A small local file to register as a cached download."""
    path = tmp_path / "files" / "report.pdf"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"%PDF-1.4 fake report")
    return path


@pytest.fixture
def make_client():
    """Factory for AsyncClients whose requests are answered by a handler."""

    def factory(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory
