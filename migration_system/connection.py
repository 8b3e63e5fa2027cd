"""
Database engine construction shared by the target connection and the state
tracker.
"""

from typing import Union

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.pool import QueuePool


def create_database_engine(
    connection_string: Union[str, URL],
    pool_size: int = 5,
    max_overflow: int = 10,
) -> Engine:
    """
    Create a SQLAlchemy engine for a migration target.

    Server databases get a QueuePool with pre-ping; SQLite keeps the
    dialect's default pool and gets transactional DDL.
    """
    url = make_url(connection_string)
    if url.get_backend_name() == "sqlite":
        engine = create_engine(url, echo=False)
        _enable_sqlite_transactional_ddl(engine)
        return engine

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        echo=False,
    )


def _enable_sqlite_transactional_ddl(engine: Engine) -> None:
    """pysqlite only opens transactions before DML, so a failing script would
    leave its earlier CREATE statements behind. Hand BEGIN to SQLAlchemy."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def mask_url(connection_string: Union[str, URL]) -> str:
    """Render a connection URL with its password hidden, for logs."""
    try:
        return make_url(connection_string).render_as_string(hide_password=True)
    except ArgumentError:
        return "<unparseable database url>"
