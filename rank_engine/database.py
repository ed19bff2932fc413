"""SQLAlchemy plumbing for the rank history database.

One engine and one session factory are cached per process.  SQLite is the
default backend; any SQLAlchemy URL (``DATABASE_URL``) works.
"""

import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///data/rank_engine.db"

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA busy_timeout=5000;",
)


class Base(DeclarativeBase):
    """Declarative base for the ORM models."""


_engine: Optional[Engine] = None
_engine_url: Optional[str] = None
_SessionFactory: Optional[sessionmaker] = None


def _apply_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    for pragma in _SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def _resolve_url(database_url: Optional[str]) -> str:
    return database_url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL


def get_engine(database_url: Optional[str] = None, echo: bool = False) -> Engine:
    """Return the process-wide engine, creating it on first use.

    Passing a URL different from the cached engine's disposes the old
    engine and opens the new database.

    Args:
        database_url: SQLAlchemy URL.  Defaults to ``DATABASE_URL`` or
                      ``sqlite:///data/rank_engine.db``.
        echo: Log every SQL statement.
    """
    global _engine, _engine_url
    if _engine is not None and (database_url is None or database_url == _engine_url):
        return _engine
    if _engine is not None:
        logger.info("Switching database from %s to %s", _engine_url, database_url)
        reset_engine()

    url = _resolve_url(database_url)
    kwargs: dict = {"echo": echo, "pool_pre_ping": True}
    is_sqlite = url.startswith("sqlite")
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            # One shared connection, otherwise every session sees an empty database.
            kwargs["poolclass"] = StaticPool
        elif url.startswith("sqlite:///"):
            Path(url.replace("sqlite:///", "", 1)).parent.mkdir(parents=True, exist_ok=True)

    _engine = create_engine(url, **kwargs)
    _engine_url = url
    if is_sqlite:
        event.listen(_engine, "connect", _apply_sqlite_pragmas)
    logger.info("Database engine created: %s", url)
    return _engine


def get_session_factory() -> sessionmaker:
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _SessionFactory


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Yield a session whose work is committed as one transaction.

    The rank history relies on this: a same-day delete and the insert that
    replaces it either both land or neither does.

    Usage::

        with get_session() as session:
            session.add(observation)
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(database_url: Optional[str] = None, echo: bool = False) -> None:
    """Create missing tables."""
    engine = get_engine(database_url=database_url, echo=echo)
    import rank_engine.models  # noqa: F401  (registers tables on Base.metadata)
    Base.metadata.create_all(bind=engine)
    logger.info("Rank history tables ready.")


def reset_db(database_url: Optional[str] = None) -> None:
    """Drop and recreate every table; all rank history is lost."""
    engine = get_engine(database_url=database_url)
    import rank_engine.models  # noqa: F401
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    logger.warning("Rank history database reset.")


def reset_engine() -> None:
    """Dispose the cached engine and session factory."""
    global _engine, _engine_url, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _engine_url = None
    _SessionFactory = None
