"""
HTTP client for the remote field-service API.

Every call goes through one httpx.Client with a bounded timeout. Failures are
classified so callers can decide what to do with them:

  TransientSyncError  - network error, timeout, 5xx. Worth trying again later.
  PermanentSyncError  - the server understood and refused (4xx). Retrying the
                        same request will not help.
  SyncConflictError   - 409, a permanent failure the user has to resolve.

502/503/504, timeouts and connection errors are retried in-call with
exponential backoff (1s, 2s, 4s) before giving up.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import httpx

from fieldops.models.serialization import parse_datetime

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {502, 503, 504}
RETRY_DELAYS = (1.0, 2.0, 4.0)


class SyncError(Exception):
    """Base class for remote API failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientSyncError(SyncError):
    pass


class AuthenticationError(TransientSyncError):
    """401: the token was rejected. Nothing is wrong with the change itself."""


class PermanentSyncError(SyncError):
    pass


class SyncConflictError(PermanentSyncError):
    pass


@dataclass
class ChangesPage:
    data: list[dict] = field(default_factory=list)
    server_timestamp: Optional[datetime] = None
    total_count: int = 0


def _pick(body: dict, *keys: str, default=None):
    for key in keys:
        if key in body:
            return body[key]
    return default


def parse_changes(body: Any) -> ChangesPage:
    """Accept {"data", "serverTimestamp", "totalCount"} in either case style, or a bare list."""
    if isinstance(body, list):
        return ChangesPage(data=body, total_count=len(body))
    if not isinstance(body, dict):
        raise PermanentSyncError(f"Unexpected response body: {type(body).__name__}")

    data = _pick(body, "data", "Data", default=[]) or []
    stamp = _pick(body, "serverTimestamp", "server_timestamp", "ServerTimestamp")
    total = _pick(body, "totalCount", "total_count", "TotalCount", default=len(data))
    return ChangesPage(
        data=list(data),
        server_timestamp=parse_datetime(stamp) if stamp else None,
        total_count=int(total if total is not None else len(data)),
    )


class SyncApiClient:
    """Thin REST client: /api/<resource>, /api/<resource>/<id>, /health."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self.set_token(token)

    def set_token(self, token: Optional[str]) -> None:
        self._token = token
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
        else:
            self._client.headers.pop("Authorization", None)

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ── Request core ────────────────────────────────────────────────

    def _classify(self, method: str, path: str, resp: httpx.Response) -> SyncError:
        detail = resp.text[:200] if resp.text else resp.reason_phrase
        message = f"{method} {path} -> {resp.status_code}: {detail}"
        status = resp.status_code
        if status == 401:
            return AuthenticationError(message, status)
        if status == 409:
            return SyncConflictError(message, status)
        if status in (408, 429) or status >= 500:
            return TransientSyncError(message, status)
        return PermanentSyncError(message, status)

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        attempt = 0
        while True:
            retryable = False
            try:
                resp = self._client.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                error: SyncError = TransientSyncError(f"{method} {path} timed out: {e}")
                retryable = True
            except httpx.TransportError as e:
                error = TransientSyncError(f"{method} {path} failed: {e}")
                retryable = True
            else:
                if resp.status_code < 400:
                    return resp
                error = self._classify(method, path, resp)
                retryable = resp.status_code in RETRYABLE_STATUS

            if not retryable or attempt >= self.max_retries:
                raise error

            delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
            logger.warning("%s (attempt %d/%d), retrying in %.0fs", error, attempt + 1, self.max_retries, delay)
            time.sleep(delay)
            attempt += 1

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise PermanentSyncError(f"Invalid JSON from server: {e}", resp.status_code)

    # ── Resources ───────────────────────────────────────────────────

    def changes_since(self, resource: str, since: Optional[datetime] = None) -> ChangesPage:
        params = {"since": since.isoformat()} if since else None
        resp = self._request("GET", f"/api/{resource}", params=params)
        return parse_changes(self._json(resp))

    def fetch_all(self, resource: str, params: Optional[dict] = None) -> list[dict]:
        resp = self._request("GET", f"/api/{resource}", params=params)
        return parse_changes(self._json(resp)).data

    def get(self, resource: str, entity_id: str) -> Optional[dict]:
        try:
            resp = self._request("GET", f"/api/{resource}/{entity_id}")
        except PermanentSyncError as e:
            if e.status_code == 404:
                return None
            raise
        return self._json(resp)

    def post(self, resource: str, payload: dict) -> Optional[dict]:
        return self._json(self._request("POST", f"/api/{resource}", json=payload))

    def put(self, resource: str, entity_id: str, payload: dict) -> Optional[dict]:
        return self._json(self._request("PUT", f"/api/{resource}/{entity_id}", json=payload))

    def delete(self, resource: str, entity_id: str) -> None:
        try:
            self._request("DELETE", f"/api/{resource}/{entity_id}")
        except PermanentSyncError as e:
            # Already gone on the server
            if e.status_code != 404:
                raise

    def push_change(self, resource: str, entity_id: str, operation: str, payload: Optional[dict]) -> Optional[dict]:
        """Send one queued change. create -> POST, update -> PUT, delete -> DELETE."""
        if operation == "create":
            return self.post(resource, payload or {})
        if operation == "update":
            return self.put(resource, entity_id, payload or {})
        if operation == "delete":
            self.delete(resource, entity_id)
            return None
        raise PermanentSyncError(f"Unknown queue operation: {operation}")

    # ── Health ──────────────────────────────────────────────────────

    def test_connection(self) -> tuple[bool, str]:
        try:
            self._request("GET", "/health")
        except SyncError as e:
            return False, str(e)
        return True, f"Connected to {self.base_url}"
