"""Warehouse connection settings.

Resolution order:
1. A full SQLAlchemy URL (``WAREHOUSE_DATABASE_URL``, then ``DATABASE_URL``)
2. Individual PostgreSQL settings (``POSTGRES_HOST`` and friends)
3. Local development defaults
"""

import os
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import URL, make_url

URL_ENV_VARS = ("WAREHOUSE_DATABASE_URL", "DATABASE_URL")


@dataclass
class DatabaseConfig:
    """Where the warehouse lives and how to pool connections to it.

    ``url`` overrides the PostgreSQL fields; it is the only way to point the
    warehouse at SQLite (``sqlite:///warehouse.db`` or ``sqlite://`` in memory).
    """

    host: str = "localhost"
    port: int = 5432
    database: str = "cricket_warehouse"
    user: str = "cricket_etl"
    password: str = "cricket_dev_password"
    driver: str = "psycopg"
    url: Optional[str] = None

    # PostgreSQL pool (unused for SQLite)
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600

    echo: bool = False

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Build the configuration from the process environment.

        Environment variables:
        - WAREHOUSE_DATABASE_URL / DATABASE_URL: full URL, wins over everything else
        - POSTGRES_HOST, POSTGRES_PORT, POSTGRES_DB, POSTGRES_USER, POSTGRES_PASSWORD
        - DB_POOL_SIZE: PostgreSQL pool size
        - DB_ECHO: ``true`` to log every SQL statement
        """
        defaults = cls()
        url = next((os.environ[name] for name in URL_ENV_VARS if os.getenv(name)), None)

        return cls(
            host=os.getenv("POSTGRES_HOST", defaults.host),
            port=int(os.getenv("POSTGRES_PORT", str(defaults.port))),
            database=os.getenv("POSTGRES_DB", defaults.database),
            user=os.getenv("POSTGRES_USER", defaults.user),
            password=os.getenv("POSTGRES_PASSWORD", defaults.password),
            url=url,
            pool_size=int(os.getenv("DB_POOL_SIZE", str(defaults.pool_size))),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
        )

    def sqlalchemy_url(self) -> URL:
        if self.url:
            return make_url(self.url)
        return URL.create(
            f"postgresql+{self.driver}",
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    def get_connection_url(self) -> str:
        """Connection URL with the password in clear, for ``create_engine``."""
        return self.sqlalchemy_url().render_as_string(hide_password=False)

    @property
    def is_sqlite(self) -> bool:
        return self.sqlalchemy_url().get_backend_name() == "sqlite"

    def __repr__(self) -> str:
        masked = self.sqlalchemy_url().render_as_string(hide_password=True)
        return f"DatabaseConfig(url={masked}, pool_size={self.pool_size})"


DEFAULT_CONFIG = DatabaseConfig()
