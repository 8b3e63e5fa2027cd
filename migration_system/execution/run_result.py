"""
Run Result Models

Engine states, the run-scoped result aggregate and cooperative cancellation.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Optional

from ..discovery.metadata import MigrationUnit
from ..error_handling import VerificationWarning
from ..state.records import AppliedRecord, SchemaState
from ..validation.validation_result import ValidationReport
from .backup import BackupHandle


class EngineState(Enum):
    """Execution engine states."""

    IDLE = "IDLE"
    DISCOVERING = "DISCOVERING"
    VALIDATING = "VALIDATING"
    PLANNING = "PLANNING"
    BACKING_UP = "BACKING_UP"
    APPLYING = "APPLYING"
    RECORDING = "RECORDING"
    ROLLING_BACK = "ROLLING_BACK"
    VERIFYING = "VERIFYING"
    DONE = "DONE"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATES = frozenset({EngineState.DONE, EngineState.FAILED, EngineState.CANCELLED})

# Every non-terminal state may also move to FAILED
TRANSITIONS = {
    EngineState.IDLE: {EngineState.DISCOVERING},
    EngineState.DISCOVERING: {EngineState.VALIDATING, EngineState.PLANNING},
    EngineState.VALIDATING: {EngineState.PLANNING},
    EngineState.PLANNING: {EngineState.BACKING_UP, EngineState.DONE},
    EngineState.BACKING_UP: {
        EngineState.APPLYING,
        EngineState.ROLLING_BACK,
        EngineState.CANCELLED,
    },
    EngineState.APPLYING: {EngineState.RECORDING},
    EngineState.RECORDING: {
        EngineState.APPLYING,
        EngineState.VERIFYING,
        EngineState.CANCELLED,
    },
    EngineState.ROLLING_BACK: {EngineState.VERIFYING, EngineState.CANCELLED},
    EngineState.VERIFYING: {EngineState.DONE},
}


def can_transition(current: EngineState, new: EngineState) -> bool:
    if current in TERMINAL_STATES:
        return False
    if new is EngineState.FAILED:
        return True
    return new in TRANSITIONS.get(current, set())


class CancellationToken:
    """Thread-safe flag checked by the engine between units."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class RunResult:
    """Everything one apply or rollback run did, returned to the caller."""

    mode: str
    target_id: str
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: EngineState = EngineState.IDLE
    transitions: list[EngineState] = field(default_factory=lambda: [EngineState.IDLE])
    discovered: int = 0
    planned: list[str] = field(default_factory=list)
    applied: list[AppliedRecord] = field(default_factory=list)
    rolled_back: list[AppliedRecord] = field(default_factory=list)
    failed_unit: Optional[str] = None
    backup: Optional[BackupHandle] = None
    validation: Optional[ValidationReport] = None
    verification_warnings: list[VerificationWarning] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    cancelled_at: Optional[str] = None
    dry_run: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state is EngineState.DONE

    @property
    def duration_ms(self) -> Optional[int]:
        if self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def finish(self) -> None:
        self.finished_at = datetime.now(UTC)

    def summary(self) -> str:
        """One-line description of the run outcome."""
        prefix = "[dry run] " if self.dry_run else ""
        if self.mode == "apply":
            if self.dry_run:
                body = f"{len(self.planned)} unit(s) pending"
            else:
                body = f"applied {len(self.applied)}/{len(self.planned)} unit(s)"
        else:
            body = f"rolled back {len(self.rolled_back)}/{len(self.planned)} unit(s)"

        parts = [f"{prefix}{self.mode} on '{self.target_id}' {self.state.value}: {body}"]
        if self.failed_unit:
            parts.append(f"failed at {self.failed_unit}")
        if self.cancelled_at:
            parts.append(f"cancelled before {self.cancelled_at}")
        if self.verification_warnings:
            parts.append(f"{len(self.verification_warnings)} verification warning(s)")
        if self.backup:
            parts.append(f"backup {self.backup.location}")
        return "; ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "target_id": self.target_id,
            "state": self.state.value,
            "succeeded": self.succeeded,
            "dry_run": self.dry_run,
            "transitions": [state.value for state in self.transitions],
            "discovered": self.discovered,
            "planned": list(self.planned),
            "applied": [record.to_dict() for record in self.applied],
            "rolled_back": [record.to_dict() for record in self.rolled_back],
            "failed_unit": self.failed_unit,
            "backup": self.backup.to_dict() if self.backup else None,
            "validation": self.validation.to_dict() if self.validation else None,
            "verification_warnings": [w.to_dict() for w in self.verification_warnings],
            "ignored": list(self.ignored),
            "missing": list(self.missing),
            "cancelled_at": self.cancelled_at,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "summary": self.summary(),
        }


@dataclass
class StatusReport:
    """Applied state of a target alongside the units still pending."""

    target_id: str
    state: SchemaState
    pending: list[MigrationUnit] = field(default_factory=list)
    ignored: list[MigrationUnit] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    drifted: list[str] = field(default_factory=list)
    lock_holder: Optional[dict[str, Any]] = None

    @property
    def current_version(self) -> Optional[str]:
        return self.state.current_version

    @property
    def is_up_to_date(self) -> bool:
        return not self.pending

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "current_version": self.current_version,
            "applied": [record.to_dict() for record in self.state.applied],
            "failed": [record.to_dict() for record in self.state.failed],
            "pending": [unit.to_dict() for unit in self.pending],
            "ignored": [unit.unit_id for unit in self.ignored],
            "missing": list(self.missing),
            "drifted": list(self.drifted),
            "lock_holder": self.lock_holder,
        }
