from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from contextlib import contextmanager
from typing import Generator, Optional
import logging

from fieldops.config.settings import settings

logger = logging.getLogger(__name__)


def make_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # SQLite specific
    return create_engine(url, connect_args=connect_args, echo=False)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = make_engine(settings.database_url)

SessionLocal = make_session_factory(engine)

Base = declarative_base()


def load_models() -> None:
    """Import every model module so its tables register on Base.metadata."""
    import fieldops.models.customers  # noqa: F401
    import fieldops.models.work  # noqa: F401
    import fieldops.models.billing  # noqa: F401
    import fieldops.sync.models  # noqa: F401


def init_db(bind: Optional[Engine] = None):
    """Bring the schema up to date without losing data. Call once on startup.

    Runs the additive reconciler against the existing database first, then
    create_all for anything a fresh database is still missing.
    """
    from fieldops.storage.reconciler import reconcile

    load_models()
    bind = bind or engine
    result = reconcile(Base.metadata, bind)
    if result.connected:
        Base.metadata.create_all(bind=bind)
    return result


@contextmanager
def get_db(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    db = (factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db_session() -> Generator[Session, None, None]:
    """FastAPI dependency."""
    with get_db() as db:
        yield db
