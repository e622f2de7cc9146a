"""
Mode resolution and capability binding.

resolve_mode() reads the two configuration values once per process:

  db_mode == "Remote" and a non-blank db_server_url  ->  Remote
  anything else                                       ->  Local

build_services() then binds every capability to one concrete repository.
Callers hold the chosen instance; nothing dispatches on mode afterwards.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import sessionmaker

from fieldops.services.capabilities import CAPABILITIES, SEARCH, Capability
from fieldops.services.repositories import CachedRepository, LocalRepository, RemoteRepository
from fieldops.services.search import SearchService
from fieldops.storage.database import SessionLocal
from fieldops.sync.api_client import SyncApiClient
from fieldops.sync.offline_queue import OfflineQueue

logger = logging.getLogger(__name__)

LOCAL = "Local"
REMOTE = "Remote"


class UnknownCapabilityError(KeyError):
    pass


@dataclass(frozen=True)
class ModeResolution:
    mode: str
    endpoint: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return self.mode == REMOTE


def _read(config: Any, key: str) -> Any:
    if isinstance(config, dict):
        return config.get(key)
    return getattr(config, key, None)


def resolve_mode(config: Any = None) -> ModeResolution:
    """Local unless the flag says Remote AND an endpoint is configured."""
    if config is None:
        from fieldops.config.settings import settings
        config = settings

    flag = str(_read(config, "db_mode") or "").strip()
    endpoint = str(_read(config, "db_server_url") or "").strip().rstrip("/")

    if flag.lower() == REMOTE.lower() and endpoint:
        logger.info("Remote mode configured, server: %s", endpoint)
        return ModeResolution(REMOTE, endpoint)
    if flag.lower() == REMOTE.lower():
        logger.warning("Remote mode requested but no server URL configured; using local database.")
    return ModeResolution(LOCAL)


class ServiceRegistry:
    """Capability name -> the implementation chosen at startup."""

    def __init__(self, resolution: ModeResolution, services: dict[str, Any]):
        self.resolution = resolution
        self._services = dict(services)

    @property
    def mode(self) -> str:
        return self.resolution.mode

    def get(self, name: str) -> Any:
        try:
            return self._services[name]
        except KeyError:
            raise UnknownCapabilityError(name) from None

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self.get(name)
        except UnknownCapabilityError:
            raise AttributeError(f"No capability named {name!r}") from None

    def __contains__(self, name: str) -> bool:
        return name in self._services

    def names(self) -> list[str]:
        return list(self._services)

    def bindings(self) -> dict[str, str]:
        return {name: getattr(svc, "variant", type(svc).__name__) for name, svc in self._services.items()}


def _bind(capability: Capability, resolution: ModeResolution, factory: sessionmaker,
          api: Optional[SyncApiClient], queue: Optional[OfflineQueue]):
    if capability.name == SEARCH:
        return SearchService(factory)
    entity = capability.entity
    if not resolution.is_remote:
        return LocalRepository(entity, factory)
    if capability.live:
        return RemoteRepository(entity, factory, queue, api)
    return CachedRepository(entity, factory, queue)


def build_services(
    resolution: ModeResolution,
    session_factory: Optional[sessionmaker] = None,
    api: Optional[SyncApiClient] = None,
    queue: Optional[OfflineQueue] = None,
) -> ServiceRegistry:
    factory = session_factory or SessionLocal
    if resolution.is_remote and (api is None or queue is None):
        raise ValueError("Remote mode needs an API client and an offline queue")

    services = {c.name: _bind(c, resolution, factory, api, queue) for c in CAPABILITIES}
    registry = ServiceRegistry(resolution, services)
    logger.info(
        "%s mode: bound %d capabilities (%s)",
        resolution.mode, len(services),
        ", ".join(f"{v}={n}" for v, n in _count(registry.bindings()).items()),
    )
    return registry


def _count(bindings: dict[str, str]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for variant in bindings.values():
        counts[variant] = counts.get(variant, 0) + 1
    return counts
