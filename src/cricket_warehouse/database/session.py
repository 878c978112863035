"""Engines and sessions for the warehouse.

Engines are cached per URL. SQLite engines use a single shared connection
(``StaticPool``) so an in-memory warehouse lives as long as its engine;
PostgreSQL engines get a ``QueuePool`` sized from ``DatabaseConfig``.

Stages receive a session from ``session_scope``: their rows and their
change-tracker cursor commit together or not at all.
"""

from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlmodel import Session, SQLModel, create_engine

from cricket_warehouse.database.config import DEFAULT_CONFIG, DatabaseConfig

_engines: dict[str, Engine] = {}


def _engine_options(config: DatabaseConfig) -> dict[str, Any]:
    if config.is_sqlite:
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {
        "poolclass": QueuePool,
        "pool_size": config.pool_size,
        "max_overflow": config.max_overflow,
        "pool_timeout": config.pool_timeout,
        "pool_recycle": config.pool_recycle,
        "pool_pre_ping": True,
    }


def get_engine(config: Optional[DatabaseConfig] = None) -> Engine:
    """Engine for ``config`` (default: local development settings), created once per URL."""
    config = config or DEFAULT_CONFIG
    url = config.get_connection_url()

    if url not in _engines:
        _engines[url] = create_engine(url, echo=config.echo, **_engine_options(config))
    return _engines[url]


def init_db(engine: Engine) -> None:
    """Create the raw, clean, dimension, fact and meta tables that are missing."""
    import cricket_warehouse.models  # noqa: F401  (registers the table models)

    SQLModel.metadata.create_all(engine)


@contextmanager
def session_scope(engine: Engine) -> Generator[Session, None, None]:
    """One unit of work on ``engine``: commit on success, roll back on error."""
    with Session(engine) as session:
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        session.commit()


@contextmanager
def get_session(config: Optional[DatabaseConfig] = None) -> Generator[Session, None, None]:
    """``session_scope`` over the cached engine for ``config``.

    Usage:
        with get_session() as session:
            session.add(DimTeam(team_id=1, team_name="Canada"))
    """
    with session_scope(get_engine(config)) as session:
        yield session


@contextmanager
def get_read_only_session(
    config: Optional[DatabaseConfig] = None,
) -> Generator[Session, None, None]:
    """Session for dashboard queries. Never commits; anything pending is rolled back."""
    with Session(get_engine(config), autoflush=False) as session:
        try:
            yield session
        finally:
            session.rollback()


def dispose_engines() -> None:
    """Close every cached engine's pool (shutdown and test teardown)."""
    while _engines:
        _, engine = _engines.popitem()
        engine.dispose()
