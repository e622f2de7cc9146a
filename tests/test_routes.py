import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from fieldops.api.sync_routes import router, schema_router
from fieldops.bootstrap import shutdown, startup
from fieldops.config.settings import Settings
from fieldops.sync.api_client import SyncApiClient


def _app(ctx):
    app = FastAPI()
    app.include_router(schema_router)
    app.include_router(router)
    app.state.ctx = ctx
    return app


def _settings(tmp_path, **overrides):
    return Settings(_env_file=None, data_dir=tmp_path, log_file=None, **overrides)


@pytest.fixture
def local_client(tmp_path, engine):
    ctx = startup(_settings(tmp_path), engine=engine, start_sync=False)
    yield TestClient(_app(ctx))
    shutdown(ctx)


@pytest.fixture
def remote_ctx(tmp_path, engine, server):
    api = SyncApiClient("http://server.test", transport=httpx.MockTransport(server), max_retries=0)
    cfg = _settings(tmp_path, db_mode="Remote", db_server_url="http://server.test")
    ctx = startup(cfg, engine=engine, start_sync=False, api=api)
    yield ctx
    shutdown(ctx, timeout=5)


@pytest.fixture
def remote_client(remote_ctx):
    return TestClient(_app(remote_ctx))


def test_local_mode_routes(local_client):
    mode = local_client.get("/api/sync/mode").json()
    assert mode["mode"] == "Local"
    assert mode["endpoint"] is None
    assert mode["bindings"]["jobs"] == "local"

    assert local_client.get("/api/sync/status").json()["state"] == "disabled"
    assert local_client.post("/api/sync").status_code == 400
    assert local_client.get("/api/sync/queue").status_code == 400


def test_schema_status_and_reconcile(local_client):
    status = local_client.get("/api/schema/status").json()
    assert status["connected"] is True
    assert status["changes_applied"] is True

    again = local_client.post("/api/schema/reconcile").json()
    assert again["changes_applied"] is False
    assert again["failed"] == 0


def test_missing_context_is_503():
    client = TestClient(_app(None))

    assert client.get("/api/sync/mode").status_code == 503


def test_remote_sync_and_queue(remote_client, remote_ctx, server):
    server.on("POST", "/api/jobs", lambda request: httpx.Response(422, json={"error": "title is required"}))
    entry = remote_ctx.queue.enqueue("jobs", "j1", "create", {"id": "j1"})

    result = remote_client.post("/api/sync").json()
    assert result["status"] == "partial"
    assert result["failed"] == 1

    queue = remote_client.get("/api/sync/queue").json()
    assert [e["id"] for e in queue["failed"]] == [entry]
    assert queue["pending"] == []

    retried = remote_client.post(f"/api/sync/queue/{entry}/retry").json()
    assert retried["status"] == "pending"
    assert remote_client.post(f"/api/sync/queue/{entry}/retry").status_code == 409
    assert remote_client.post("/api/sync/queue/999/retry").status_code == 404

    assert remote_client.delete(f"/api/sync/queue/{entry}").json() == {"discarded": entry}
    assert remote_client.delete(f"/api/sync/queue/{entry}").status_code == 404


def test_remote_status_devices_and_connection(remote_client, server):
    server.on("GET", "/health", lambda request: httpx.Response(200, json={"status": "ok"}))

    status = remote_client.get("/api/sync/status").json()
    assert status["mode"] == "Remote"
    assert status["state"] == "idle"
    assert status["pending_changes"] == 0

    (device,) = remote_client.get("/api/sync/devices").json()
    assert device["is_current"] is True

    connection = remote_client.get("/api/sync/connection").json()
    assert connection["reachable"] is True
