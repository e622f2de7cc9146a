from datetime import datetime, timezone
from unittest.mock import patch

import httpx
import pytest

from fieldops.sync.api_client import (
    AuthenticationError,
    PermanentSyncError,
    SyncApiClient,
    SyncConflictError,
    TransientSyncError,
    parse_changes,
)

SERVER = "http://server.test"


def _client(server, **kwargs):
    return SyncApiClient(SERVER, transport=httpx.MockTransport(server), **kwargs)


def _status(code, body=None):
    return lambda request: httpx.Response(code, json=body if body is not None else {"error": code})


# ── Classification ───────────────────────────────────────────────────────────

@pytest.mark.parametrize("code, error", [
    (400, PermanentSyncError),
    (404, PermanentSyncError),
    (422, PermanentSyncError),
    (409, SyncConflictError),
    (401, AuthenticationError),
    (408, TransientSyncError),
    (429, TransientSyncError),
    (500, TransientSyncError),
])
def test_status_codes_are_classified(server, api, code, error):
    server.on("POST", "/api/jobs", _status(code))

    with pytest.raises(error) as exc:
        api.post("jobs", {"id": "J1"})

    assert exc.value.status_code == code


def test_conflict_is_permanent_and_auth_is_transient():
    assert issubclass(SyncConflictError, PermanentSyncError)
    assert issubclass(AuthenticationError, TransientSyncError)


# ── Retries ──────────────────────────────────────────────────────────────────

def test_gateway_errors_are_retried_with_backoff(server):
    server.on("GET", "/api/jobs/J1", _status(503))
    client = _client(server, max_retries=3)

    with patch("fieldops.sync.api_client.time.sleep") as sleep:
        with pytest.raises(TransientSyncError):
            client.get("jobs", "J1")

    assert len(server.calls) == 4
    assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0, 4.0]


def test_retry_succeeds_after_a_bad_gateway(server):
    responses = iter([httpx.Response(502), httpx.Response(200, json={"id": "J1", "title": "No heat"})])
    server.on("GET", "/api/jobs/J1", lambda request: next(responses))
    client = _client(server, max_retries=3)

    with patch("fieldops.sync.api_client.time.sleep"):
        assert client.get("jobs", "J1") == {"id": "J1", "title": "No heat"}
    assert len(server.calls) == 2


def test_internal_server_error_is_not_retried(server):
    server.on("PUT", "/api/jobs/J1", _status(500))
    client = _client(server, max_retries=3)

    with patch("fieldops.sync.api_client.time.sleep") as sleep:
        with pytest.raises(TransientSyncError):
            client.put("jobs", "J1", {"id": "J1"})

    assert len(server.calls) == 1
    sleep.assert_not_called()


def test_client_errors_are_not_retried(server):
    server.on("POST", "/api/jobs", _status(422))
    client = _client(server, max_retries=3)

    with patch("fieldops.sync.api_client.time.sleep") as sleep:
        with pytest.raises(PermanentSyncError):
            client.post("jobs", {"id": "J1"})

    assert len(server.calls) == 1
    sleep.assert_not_called()


def test_timeouts_are_transient_and_retried(server):
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    server.on("GET", "/api/jobs", timeout)
    client = _client(server, max_retries=2)

    with patch("fieldops.sync.api_client.time.sleep") as sleep:
        with pytest.raises(TransientSyncError, match="timed out"):
            client.changes_since("jobs")

    assert len(server.calls) == 3
    assert sleep.call_count == 2


def test_connection_errors_are_transient(api, server):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    server.on("DELETE", "/api/jobs/J1", refuse)

    with pytest.raises(TransientSyncError):
        api.delete("jobs", "J1")


# ── Resources ────────────────────────────────────────────────────────────────

def test_get_returns_none_for_missing_record(api):
    assert api.get("jobs", "nope") is None


def test_delete_of_missing_record_counts_as_done(api):
    api.delete("jobs", "already-gone")


def test_changes_since_sends_cursor_and_parses_page(api, server):
    server.on("GET", "/api/customers", lambda request: httpx.Response(200, json={
        "data": [{"id": "c1", "name": "Ann"}],
        "serverTimestamp": "2026-03-01T12:00:00Z",
        "totalCount": 1,
    }))
    since = datetime(2026, 2, 1, 8, 30, tzinfo=timezone.utc)

    page = api.changes_since("customers", since)

    assert page.data == [{"id": "c1", "name": "Ann"}]
    assert page.server_timestamp == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert page.total_count == 1
    request = server.calls[-1]
    assert request[1] == "/api/customers"


def test_changes_since_query_parameter(server):
    seen = []

    def handler(request):
        seen.append(request.url.params.get("since"))
        return httpx.Response(200, json=[])

    server.on("GET", "/api/jobs", handler)
    client = _client(server, max_retries=0)

    client.changes_since("jobs")
    client.changes_since("jobs", datetime(2026, 2, 1, tzinfo=timezone.utc))

    assert seen == [None, "2026-02-01T00:00:00+00:00"]


@pytest.mark.parametrize("operation, method, path", [
    ("create", "POST", "/api/customers"),
    ("update", "PUT", "/api/customers/c1"),
    ("delete", "DELETE", "/api/customers/c1"),
])
def test_push_change_maps_operation_to_method(api, server, operation, method, path):
    server.on(method, path, lambda request: httpx.Response(200, json={"id": "c1"}))

    api.push_change("customers", "c1", operation, {"id": "c1", "name": "Ann"})

    assert server.calls[-1][:2] == (method, path)


def test_push_change_rejects_unknown_operation(api):
    with pytest.raises(PermanentSyncError):
        api.push_change("customers", "c1", "merge", {})


def test_bearer_token_is_sent(server):
    tokens = []

    def handler(request):
        tokens.append(request.headers.get("Authorization"))
        return httpx.Response(200, json={"status": "ok"})

    server.on("GET", "/health", handler)
    client = SyncApiClient(SERVER, token="abc123", transport=httpx.MockTransport(server))

    assert client.test_connection()[0] is True
    client.set_token(None)
    client.test_connection()

    assert tokens == ["Bearer abc123", None]


def test_test_connection_reports_failure(api, server):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    server.on("GET", "/health", refuse)

    reachable, message = api.test_connection()

    assert reachable is False
    assert "connection refused" in message


def test_invalid_json_is_permanent(api, server):
    server.on("GET", "/api/jobs/J1", lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(PermanentSyncError, match="Invalid JSON"):
        api.get("jobs", "J1")


# ── parse_changes ────────────────────────────────────────────────────────────

def test_parse_changes_accepts_bare_list():
    page = parse_changes([{"id": "a"}, {"id": "b"}])

    assert page.total_count == 2
    assert page.server_timestamp is None


def test_parse_changes_accepts_other_key_styles():
    page = parse_changes({"Data": [{"id": "a"}], "ServerTimestamp": "2026-01-01T00:00:00+00:00"})
    assert page.data == [{"id": "a"}]
    assert page.server_timestamp.year == 2026

    page = parse_changes({"data": None, "server_timestamp": None})
    assert page.data == []
    assert page.total_count == 0


def test_parse_changes_rejects_scalars():
    with pytest.raises(PermanentSyncError):
        parse_changes("oops")
