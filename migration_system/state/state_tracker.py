"""
State Tracker

Durable, append-only history of unit executions plus a single-row advisory
lock, both stored with SQLAlchemy Core in the tracked database.
"""

import logging
import os
import socket
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Iterable, Optional, Union

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    delete,
    insert,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from ..connection import create_database_engine
from ..discovery.metadata import MigrationUnit
from ..error_handling import (
    DriftError,
    ErrorCodes,
    ErrorContext,
    LockContentionError,
    StateConflictError,
    create_retry_decorator,
)
from .records import AppliedRecord, Outcome, SchemaState

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_TABLE = "schema_migration_history"
DEFAULT_LOCK_TABLE = "schema_migration_lock"

LOCK_ROW_ID = 1


def default_executor() -> str:
    """Identify who is running migrations, e.g. 'deploy@host-1'."""
    user = os.getenv("USER") or os.getenv("USERNAME") or "unknown"
    return f"{user}@{socket.gethostname()}"


class StateTracker:
    """
    Records which units have been applied, in what order and with which
    checksum.

    The history table is never updated or deleted from; rollbacks append a
    ROLLED_BACK tombstone instead.
    """

    def __init__(
        self,
        database: Union[str, Engine],
        history_table: str = DEFAULT_HISTORY_TABLE,
        lock_table: str = DEFAULT_LOCK_TABLE,
        executed_by: Optional[str] = None,
    ):
        self.engine = (
            database if isinstance(database, Engine) else create_database_engine(database)
        )
        self.executed_by = executed_by or default_executor()
        self._schema_ready = False

        self.metadata = MetaData()
        self.history = Table(
            history_table,
            self.metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("unit_id", String(64), nullable=False, index=True),
            Column("version", String(32), nullable=False),
            Column("sequence", String(16), nullable=False),
            Column("description", String(255), nullable=False),
            Column("kind", String(8), nullable=False),
            Column("checksum", String(64), nullable=False),
            Column("outcome", String(16), nullable=False),
            Column("applied_at", DateTime, nullable=False),
            Column("duration_ms", Integer, nullable=False, default=0),
            Column("executed_by", String(128)),
            Column("error_message", Text),
        )
        self.lock = Table(
            lock_table,
            self.metadata,
            Column("id", Integer, primary_key=True, autoincrement=False),
            Column("token", String(64), nullable=False),
            Column("owner", String(255), nullable=False),
            Column("acquired_at", DateTime, nullable=False),
        )

    def ensure_schema(self) -> None:
        """Create the history and lock tables if they do not exist yet."""
        if self._schema_ready:
            return
        self.metadata.create_all(self.engine, checkfirst=True)
        self._schema_ready = True

    # History

    def load(self) -> SchemaState:
        """
        Read the full history log.

        Transient connection errors are retried with exponential backoff.
        """

        @create_retry_decorator()
        def _load():
            self.ensure_schema()
            with self.engine.connect() as conn:
                rows = conn.execute(select(self.history).order_by(self.history.c.id)).all()
            return [self._to_record(row) for row in rows]

        history = _load()
        state = SchemaState(history=history)
        logger.debug(
            f"Loaded {len(history)} history records; current version: "
            f"{state.current_version or 'none'}"
        )
        return state

    def record(
        self,
        unit: Union[MigrationUnit, AppliedRecord],
        outcome: Outcome,
        checksum: Optional[str] = None,
        duration_ms: int = 0,
        error_message: Optional[str] = None,
    ) -> AppliedRecord:
        """
        Append one history record in its own transaction.

        Raises:
            DriftError: If a SUCCESS is appended over a SUCCESS with a
                different checksum
            StateConflictError: If a SUCCESS is appended over an identical
                SUCCESS
        """
        self.ensure_schema()
        outcome = Outcome(outcome)
        checksum = checksum or unit.checksum
        kind = unit.kind.value if hasattr(unit.kind, "value") else str(unit.kind)

        values = {
            "unit_id": unit.unit_id,
            "version": unit.version,
            "sequence": unit.sequence,
            "description": (unit.description or "")[:255],
            "kind": kind,
            "checksum": checksum,
            "outcome": outcome.value,
            "applied_at": datetime.now(UTC),
            "duration_ms": int(duration_ms),
            "executed_by": self.executed_by,
            "error_message": error_message,
        }

        with self.engine.begin() as conn:
            latest = conn.execute(
                select(self.history.c.outcome, self.history.c.checksum)
                .where(self.history.c.unit_id == unit.unit_id)
                .order_by(self.history.c.id.desc())
                .limit(1)
            ).first()

            if latest is not None and latest.outcome == Outcome.SUCCESS.value:
                if outcome is Outcome.SUCCESS and latest.checksum != checksum:
                    raise DriftError(
                        f"Unit {unit.unit_id} is already applied with checksum "
                        f"{latest.checksum[:12]}, refusing to record {checksum[:12]}",
                        drifted=[unit.unit_id],
                        context=ErrorContext(unit_id=unit.unit_id),
                    )
                if outcome is Outcome.SUCCESS:
                    raise StateConflictError(
                        f"Unit {unit.unit_id} is already recorded as applied",
                        context=ErrorContext(unit_id=unit.unit_id),
                        remediation="Applied units are never re-executed; check the plan",
                    )

            result = conn.execute(insert(self.history).values(**values))
            record_id = result.inserted_primary_key[0]

        record = AppliedRecord(
            unit_id=values["unit_id"],
            version=values["version"],
            sequence=values["sequence"],
            description=values["description"],
            kind=kind,
            checksum=checksum,
            outcome=outcome,
            applied_at=values["applied_at"],
            duration_ms=values["duration_ms"],
            executed_by=self.executed_by,
            error_message=error_message,
            record_id=record_id,
        )
        logger.info(f"Recorded {outcome.value} for {unit.unit_id} ({duration_ms} ms)")
        return record

    def tombstone(self, record: AppliedRecord, duration_ms: int = 0) -> AppliedRecord:
        """Mark a previously applied unit as rolled back."""
        return self.record(
            record, Outcome.ROLLED_BACK, checksum=record.checksum, duration_ms=duration_ms
        )

    def check_drift(self, units: Iterable[MigrationUnit], state: SchemaState) -> None:
        """
        Compare discovered units against their SUCCESS records.

        Raises:
            DriftError: Listing every unit whose content changed after it was applied
        """
        drifted = []
        for unit in units:
            record = state.applied_record(unit.unit_id)
            if record is not None and record.checksum != unit.checksum:
                drifted.append(unit.unit_id)

        if drifted:
            raise DriftError(
                f"Applied unit(s) modified since they were applied: {', '.join(drifted)}",
                drifted=drifted,
                context=ErrorContext(
                    unit_id=drifted[0],
                    additional_info={"drifted": drifted},
                ),
            )

    # Advisory lock

    def acquire_lock(self, owner: str) -> str:
        """
        Take the single-row lock for this target.

        Raises:
            LockContentionError: If another run already holds the lock
        """
        self.ensure_schema()
        token = uuid.uuid4().hex
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    insert(self.lock).values(
                        id=LOCK_ROW_ID,
                        token=token,
                        owner=owner,
                        acquired_at=datetime.now(UTC),
                    )
                )
        except IntegrityError as e:
            holder = self.lock_holder()
            holder_desc = (
                f"{holder['owner']} since {holder['acquired_at']}" if holder else "unknown holder"
            )
            raise LockContentionError(
                f"Migration lock is held by {holder_desc}",
                holder=holder["owner"] if holder else None,
                error_code=ErrorCodes.LOCK_CONTENTION,
                context=ErrorContext(additional_info=holder),
                cause=e,
            )

        logger.debug(f"Acquired migration lock for {owner}")
        return token

    def release_lock(self, token: str) -> bool:
        """Release the lock if it is still held with this token."""
        self.ensure_schema()
        with self.engine.begin() as conn:
            result = conn.execute(delete(self.lock).where(self.lock.c.token == token))
        released = result.rowcount > 0
        if not released:
            logger.warning("Migration lock was not held by this run at release time")
        return released

    def force_release_lock(self) -> Optional[dict[str, Any]]:
        """Remove the lock regardless of owner. Returns the previous holder."""
        holder = self.lock_holder()
        with self.engine.begin() as conn:
            conn.execute(delete(self.lock))
        if holder:
            logger.warning(f"Force-released migration lock held by {holder['owner']}")
        return holder

    def lock_holder(self) -> Optional[dict[str, Any]]:
        self.ensure_schema()
        with self.engine.connect() as conn:
            row = conn.execute(select(self.lock).where(self.lock.c.id == LOCK_ROW_ID)).first()
        if row is None:
            return None
        return {
            "owner": row.owner,
            "token": row.token,
            "acquired_at": row.acquired_at.isoformat() if row.acquired_at else None,
        }

    @contextmanager
    def locked(self, owner: str):
        token = self.acquire_lock(owner)
        try:
            yield token
        finally:
            self.release_lock(token)

    def dispose(self) -> None:
        self.engine.dispose()

    @staticmethod
    def _to_record(row) -> AppliedRecord:
        return AppliedRecord(
            unit_id=row.unit_id,
            version=row.version,
            sequence=row.sequence,
            description=row.description,
            kind=row.kind,
            checksum=row.checksum,
            outcome=Outcome(row.outcome),
            applied_at=row.applied_at,
            duration_ms=row.duration_ms,
            executed_by=row.executed_by,
            error_message=row.error_message,
            record_id=row.id,
        )
