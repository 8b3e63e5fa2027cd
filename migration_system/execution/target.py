"""
Target Database

Lazily connected SQLAlchemy wrapper for the database migrations run against.
"""

import logging
import time
from datetime import UTC, datetime
from typing import Any, Optional

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine, make_url

from ..connection import create_database_engine, mask_url
from ..error_handling import create_retry_decorator
from ..sql import split_statements

logger = logging.getLogger(__name__)


class TargetDatabase:
    """
    One migration target: a named database reachable by connection string.

    The engine is created on first use so that configuration problems surface
    where the target is actually needed.
    """

    def __init__(
        self,
        target_id: str,
        connection_string: str,
        pool_size: int = 5,
        max_overflow: int = 10,
    ):
        if not target_id or not isinstance(target_id, str) or not target_id.strip():
            raise ValueError("target_id must be a non-empty string")
        if not connection_string:
            raise ValueError(f"connection_string is required for target '{target_id}'")

        self.target_id = target_id
        self.connection_string = connection_string
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self._engine: Optional[Engine] = None

    @property
    def engine(self) -> Engine:
        """Get the SQLAlchemy engine, initializing if necessary."""
        if self._engine is None:
            self._engine = create_database_engine(
                self.connection_string,
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
            )
            logger.info(
                f"Created SQLAlchemy engine for target '{self.target_id}' "
                f"({mask_url(self.connection_string)})"
            )
        return self._engine

    @property
    def dialect(self) -> str:
        return make_url(self.connection_string).get_backend_name()

    @property
    def display_url(self) -> str:
        return mask_url(self.connection_string)

    def execute_script(self, script: str) -> int:
        """
        Run every statement of a script inside one transaction.

        Statements go through exec_driver_sql so that literal colons and
        percent signs in migration SQL are passed to the driver untouched.

        Returns:
            Number of statements executed
        """
        statements = split_statements(script)
        with self.engine.begin() as conn:
            for statement in statements:
                conn.exec_driver_sql(statement)
        return len(statements)

    def object_exists(self, kind: str, name: str, schema: Optional[str] = None) -> bool:
        """Check whether a table, view or index is present."""
        inspector = inspect(self.engine)
        wanted = name.lower()

        if kind == "table":
            return wanted in {t.lower() for t in inspector.get_table_names(schema=schema)}
        if kind == "view":
            return wanted in {v.lower() for v in inspector.get_view_names(schema=schema)}
        if kind == "index":
            for table in inspector.get_table_names(schema=schema):
                for index in inspector.get_indexes(table, schema=schema):
                    if (index.get("name") or "").lower() == wanted:
                        return True
            return False
        raise ValueError(f"Unsupported schema object kind: {kind}")

    def health_check(self, max_attempts: int = 2) -> dict[str, Any]:
        """
        Check connectivity with a trivial query.

        Transient connection failures are retried; the result reports
        'healthy' or 'unhealthy' instead of raising.
        """
        health_status = {
            "target_id": self.target_id,
            "database": self.display_url,
            "status": "unhealthy",
            "connection": False,
            "response_time_ms": None,
            "timestamp": datetime.now(UTC).isoformat(),
            "error": None,
        }

        @create_retry_decorator(max_attempts=max_attempts, min_wait=0.5, max_wait=5.0)
        def _ping():
            start = time.time()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return round((time.time() - start) * 1000, 2)

        try:
            health_status["response_time_ms"] = _ping()
            health_status["connection"] = True
            health_status["status"] = "healthy"
        except Exception as e:
            health_status["error"] = str(e)
            logger.error(f"Health check failed for target '{self.target_id}': {e}")

        return health_status

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.dispose()
