"""
Process startup and shutdown.

  configure logging
  -> reconcile the schema (before anything opens a session)
  -> resolve the mode once
  -> bind capabilities
  -> remote only: register the device, start the Sync Coordinator
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from fieldops.config.settings import Settings, settings as default_settings
from fieldops.services.mode import ModeResolution, ServiceRegistry, build_services, resolve_mode
from fieldops.storage import database
from fieldops.storage.reconciler import ReconcileResult
from fieldops.sync.api_client import SyncApiClient
from fieldops.sync.coordinator import SyncCoordinator
from fieldops.sync.devices import register_current_device
from fieldops.sync.offline_queue import OfflineQueue
from fieldops.sync.protocol import SyncProtocol

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(cfg: Optional[Settings] = None) -> None:
    cfg = cfg or default_settings
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if cfg.log_file:
        handlers.append(logging.FileHandler(cfg.log_file))
    logging.basicConfig(
        level=getattr(logging, str(cfg.log_level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@dataclass
class AppContext:
    resolution: ModeResolution
    reconcile_result: ReconcileResult
    session_factory: sessionmaker
    engine: Engine
    services: Optional[ServiceRegistry] = None
    api: Optional[SyncApiClient] = None
    queue: Optional[OfflineQueue] = None
    protocol: Optional[SyncProtocol] = None
    coordinator: Optional[SyncCoordinator] = None
    device: Optional[dict] = None

    @property
    def is_remote(self) -> bool:
        return self.resolution.is_remote


def startup(
    cfg: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    session_factory: Optional[sessionmaker] = None,
    start_sync: bool = True,
    api: Optional[SyncApiClient] = None,
) -> AppContext:
    cfg = cfg or default_settings
    engine = engine or database.engine
    factory = session_factory or (database.SessionLocal if engine is database.engine
                                  else database.make_session_factory(engine))

    reconcile_result = database.init_db(engine)
    if not reconcile_result.connected:
        logger.error("Local database unavailable; continuing, storage calls will fail until it is reachable.")

    resolution = resolve_mode(cfg)
    ctx = AppContext(
        resolution=resolution,
        reconcile_result=reconcile_result,
        session_factory=factory,
        engine=engine,
    )

    if resolution.is_remote:
        ctx.api = api or SyncApiClient(
            resolution.endpoint,
            token=cfg.api_token,
            timeout=cfg.http_timeout_seconds,
            max_retries=cfg.http_max_retries,
        )
        ctx.queue = OfflineQueue(factory)
        ctx.services = build_services(resolution, factory, api=ctx.api, queue=ctx.queue)
        try:
            ctx.device = register_current_device(factory)
        except Exception:
            logger.exception("Could not register this device")
        ctx.protocol = SyncProtocol(
            ctx.api, ctx.queue, factory,
            batch_size=cfg.sync_batch_size,
            stale_days=cfg.device_stale_days,
        )
        ctx.coordinator = SyncCoordinator(
            ctx.protocol,
            interval_seconds=cfg.sync_interval_minutes * 60,
            backoff_base_seconds=cfg.sync_backoff_base_seconds,
            backoff_max_seconds=cfg.sync_backoff_max_seconds,
            queue=ctx.queue,
        )
        if start_sync:
            ctx.coordinator.start()
    else:
        ctx.services = build_services(resolution, factory)

    logger.info("fieldops ready (%s mode)", resolution.mode)
    return ctx


def shutdown(ctx: AppContext, timeout: Optional[float] = None) -> None:
    if ctx.coordinator:
        ctx.coordinator.stop(timeout=timeout)
    if ctx.api:
        ctx.api.close()
    ctx.engine.dispose()
    logger.info("fieldops stopped.")
