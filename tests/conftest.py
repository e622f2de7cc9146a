import json

import httpx
import pytest

from fieldops.storage.database import Base, load_models, make_engine, make_session_factory
from fieldops.sync.api_client import SyncApiClient
from fieldops.sync.offline_queue import OfflineQueue

load_models()

SERVER = "http://server.test"


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'fieldops.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    Base.metadata.create_all(bind=engine)
    return make_session_factory(engine)


@pytest.fixture
def queue(session_factory):
    return OfflineQueue(session_factory)


class FakeServer:
    """Routes requests to per-path handlers and records every call."""

    def __init__(self):
        self.calls = []
        self.routes = {}

    def on(self, method, path, handler):
        self.routes[(method, path)] = handler

    def paths(self, method=None):
        return [path for m, path, _ in self.calls if method is None or m == method]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, body))
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            if request.method == "GET" and request.url.path.startswith("/api/") and request.url.path.count("/") == 2:
                return httpx.Response(200, json={"data": [], "serverTimestamp": "2026-01-01T00:00:00Z"})
            return httpx.Response(404, json={"error": "not found"})
        return handler(request)


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def api(server):
    client = SyncApiClient(SERVER, transport=httpx.MockTransport(server), max_retries=0)
    yield client
    client.close()
