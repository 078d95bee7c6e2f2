"""
PostgreSQL server access for liveness probes and catalog lookups.

The dump itself is done by pg_dump (see dump.py); this module only needs a
short-lived connection to the maintenance database.
"""

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool


MAINTENANCE_DATABASE = 'postgres'


class DatabaseError(Exception):
    """Raised when a query against the server fails."""
    pass


class DatabaseMissing(Exception):
    """Raised when a database named in the configuration does not exist."""

    def __init__(self, database: str):
        super().__init__(f"Database '{database}' does not exist")
        self.database = database


class PostgresClient:
    """
    Thin wrapper around a SQLAlchemy engine for the maintenance database.

    Connections are not pooled; each call opens and closes its own.
    """

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        connect_timeout: int = 10,
        engine=None
    ):
        self.host = host
        self.port = port

        if engine is None:
            url = URL.create(
                'postgresql+psycopg2',
                username=user,
                password=password,
                host=host,
                port=port,
                database=MAINTENANCE_DATABASE
            )
            try:
                engine = create_engine(
                    url,
                    poolclass=NullPool,
                    connect_args={'connect_timeout': connect_timeout}
                )
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to create engine for {host}:{port}: {e}")
        self.engine = engine

    @classmethod
    def from_config(cls, config) -> 'PostgresClient':
        return cls(
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password,
            connect_timeout=config.connect_timeout
        )

    def _scalar(self, query: str, **params):
        try:
            with self.engine.connect() as connection:
                return connection.execute(text(query), params).scalar()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Query failed on {self.host}:{self.port}: {e}")

    def server_version(self) -> str:
        """
        Return the server's version string.

        Raises:
            DatabaseError: If the server cannot be reached
        """
        return self._scalar("SELECT version()")

    def database_exists(self, name: str) -> bool:
        return bool(self._scalar(
            "SELECT 1 FROM pg_database WHERE datname = :name",
            name=name
        ))

    def dispose(self):
        self.engine.dispose()


def require_database(client: PostgresClient, name: str):
    """Raise DatabaseMissing unless name exists on the server."""
    if not client.database_exists(name):
        raise DatabaseMissing(name)
