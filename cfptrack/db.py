from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cfptrack.config import get_settings
from cfptrack.models import Base

log = logging.getLogger(__name__)

_lock = threading.Lock()
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def make_engine(db_url: str) -> Engine:
    if db_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in db_url or db_url == "sqlite://":
            # All connections must share the one in-memory database.
            kwargs["poolclass"] = StaticPool
        return create_engine(db_url, **kwargs)
    return create_engine(db_url, pool_pre_ping=True)


def init_db(db_url: str | None = None) -> None:
    """(Re)bind the module session factory and create any missing tables."""
    global _engine, _SessionLocal
    settings = get_settings()
    if db_url is None:
        settings.ensure_directories()
        db_url = settings.database_url
    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = make_engine(db_url)
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
    log.info("Database ready at %s", _engine.url.render_as_string(hide_password=True))


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager providing a session that rolls back on error.

    Callers commit explicitly once their unit of work is complete::

        with session_scope() as session:
            ...
            session.commit()
    """
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def session_generator() -> Generator[Session, None, None]:
    # Plain generator form of session_scope for FastAPI dependencies.
    with session_scope() as session:
        yield session
