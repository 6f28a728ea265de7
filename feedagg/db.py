from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Dict, Iterator, Union

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker


_ENGINE_CACHE: Dict[str, Engine] = {}
_SESSION_CACHE: Dict[str, sessionmaker] = {}
_REGISTRY_CACHE: Dict[str, scoped_session] = {}
_INITIALIZED_ENGINES: set[str] = set()

SessionSource = Union[sessionmaker, scoped_session]


def _ensure_schema(engine: Engine, url: str) -> None:
    """Create database tables on first use of a new engine."""

    if url in _INITIALIZED_ENGINES:
        return

    # Import lazily to avoid circular import issues during application start-up.
    from feedagg.models import Base

    Base.metadata.create_all(engine)
    _INITIALIZED_ENGINES.add(url)


def _configure_sqlite(engine: Engine) -> None:
    """Let pysqlite run real transactions so SAVEPOINTs work.

    pysqlite defers BEGIN on its own, which breaks nested transactions. The
    driver is told to stay out of the way and every transaction starts with
    ``BEGIN IMMEDIATE`` so concurrent writers wait on the busy timeout.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _resolve_url(url: str | None) -> str:
    if url:
        return url
    return os.getenv("DATABASE_URL", "sqlite:///feedagg.db")


def get_engine(url: str | None = None) -> Engine:
    resolved = _resolve_url(url)
    engine = _ENGINE_CACHE.get(resolved)
    if engine is None:
        if resolved.startswith("sqlite"):
            engine = create_engine(resolved, connect_args={"timeout": 30})
            _configure_sqlite(engine)
        else:
            engine = create_engine(resolved, pool_pre_ping=True)
        _ENGINE_CACHE[resolved] = engine
        _SESSION_CACHE[resolved] = sessionmaker(bind=engine, expire_on_commit=False)
        _ensure_schema(engine, resolved)
    return engine


def get_session(url: str | None = None) -> Session:
    resolved = _resolve_url(url)
    factory = _SESSION_CACHE.get(resolved)
    if factory is None:
        get_engine(resolved)
        factory = _SESSION_CACHE[resolved]
    return factory()


def get_session_registry(url: str | None = None) -> scoped_session:
    """Return the thread-local session registry for ``url``.

    Worker threads share the registry; each thread gets its own session.
    """

    resolved = _resolve_url(url)
    registry = _REGISTRY_CACHE.get(resolved)
    if registry is None:
        get_engine(resolved)
        registry = scoped_session(_SESSION_CACHE[resolved])
        _REGISTRY_CACHE[resolved] = registry
    return registry


@contextmanager
def session_scope(source: SessionSource) -> Iterator[Session]:
    """Run the body in one transaction: commit on success, roll back on error."""

    session = source()
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        if isinstance(source, scoped_session):
            source.remove()
        else:
            session.close()


@contextmanager
def transaction(registry: scoped_session) -> Iterator[Session]:
    """Join the calling thread's open transaction, or run one of its own."""

    if registry.registry.has():
        yield registry()
        return
    with session_scope(registry) as session:
        yield session


def dispose_engines() -> None:
    for registry in _REGISTRY_CACHE.values():
        registry.remove()
    for engine in _ENGINE_CACHE.values():
        engine.dispose()
    _REGISTRY_CACHE.clear()
    _SESSION_CACHE.clear()
    _ENGINE_CACHE.clear()
    _INITIALIZED_ENGINES.clear()
