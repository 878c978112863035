"""Warehouse database access.

Usage:
    from cricket_warehouse.database import DatabaseConfig, get_engine, init_db, session_scope

    engine = get_engine(DatabaseConfig(url="sqlite:///warehouse.db"))
    init_db(engine)
    with session_scope(engine) as session:
        facts = session.exec(select(FactMatch)).all()
"""

from cricket_warehouse.database.config import DatabaseConfig
from cricket_warehouse.database.session import (
    dispose_engines,
    get_engine,
    get_read_only_session,
    get_session,
    init_db,
    session_scope,
)

__all__ = [
    "DatabaseConfig",
    "dispose_engines",
    "get_engine",
    "get_read_only_session",
    "get_session",
    "init_db",
    "session_scope",
]
