"""Database engine and session utilities."""

from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from action_flows.config import get_settings

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    # notifications and status history rely on ON DELETE CASCADE
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@lru_cache()
def get_engine() -> Engine:
    """Create or return a cached SQLAlchemy engine."""

    settings = get_settings()
    engine = create_engine(settings.database_url, future=True, echo=False)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


@lru_cache()
def get_session_factory() -> sessionmaker[Session]:
    """Return a cached session factory bound to the engine.

    Objects stay loaded after commit so services can hand back snapshots
    built inside the transaction.
    """

    return sessionmaker(
        bind=get_engine(),
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def init_db(*, drop_existing: bool = False) -> None:
    """Create every table registered on ``Base``; optionally drop them first."""

    import action_flows.models  # noqa: F401  (registers tables on Base.metadata)

    engine = get_engine()
    if drop_existing:
        Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope for DB operations."""

    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
