"""
Applied State Models

Append-only history records and the schema state derived from them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..discovery.metadata import unit_key


class Outcome(Enum):
    """Result recorded for one execution of a unit."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"


@dataclass
class AppliedRecord:
    """One row of the migration history."""

    unit_id: str
    version: str
    sequence: str
    description: str
    kind: str
    checksum: str
    outcome: Outcome
    applied_at: datetime
    duration_ms: int = 0
    executed_by: Optional[str] = None
    error_message: Optional[str] = None
    record_id: Optional[int] = None

    @property
    def key(self) -> tuple[tuple[int, ...], int]:
        return unit_key(self.version, self.sequence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "unit_id": self.unit_id,
            "version": self.version,
            "sequence": self.sequence,
            "description": self.description,
            "kind": self.kind,
            "checksum": self.checksum,
            "outcome": self.outcome.value,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "duration_ms": self.duration_ms,
            "executed_by": self.executed_by,
            "error_message": self.error_message,
        }


@dataclass
class SchemaState:
    """
    Applied state derived from the full history log.

    Only the latest record per unit counts. A unit whose latest record is
    FAILED or ROLLED_BACK, or that has no record at all, is not applied.
    """

    history: list[AppliedRecord] = field(default_factory=list)

    @property
    def latest(self) -> dict[str, AppliedRecord]:
        latest = {}
        for record in self.history:
            latest[record.unit_id] = record
        return latest

    @property
    def applied(self) -> list[AppliedRecord]:
        """SUCCESS records in (version, sequence) order."""
        return sorted(
            (r for r in self.latest.values() if r.outcome is Outcome.SUCCESS),
            key=lambda record: record.key,
        )

    @property
    def failed(self) -> list[AppliedRecord]:
        return sorted(
            (r for r in self.latest.values() if r.outcome is Outcome.FAILED),
            key=lambda record: record.key,
        )

    @property
    def current(self) -> Optional[AppliedRecord]:
        applied = self.applied
        return applied[-1] if applied else None

    @property
    def current_version(self) -> Optional[str]:
        """Unit id of the highest applied unit, or None for an empty schema."""
        current = self.current
        return current.unit_id if current else None

    @property
    def current_key(self) -> Optional[tuple[tuple[int, ...], int]]:
        current = self.current
        return current.key if current else None

    def applied_record(self, unit_id: str) -> Optional[AppliedRecord]:
        record = self.latest.get(unit_id)
        if record is not None and record.outcome is Outcome.SUCCESS:
            return record
        return None

    def is_applied(self, unit_id: str) -> bool:
        return self.applied_record(unit_id) is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_version": self.current_version,
            "applied": [record.to_dict() for record in self.applied],
            "failed": [record.to_dict() for record in self.failed],
            "history_length": len(self.history),
        }
