"""
Migration Engine

The apply/rollback state machine. Orchestrates discovery, validation,
planning against the recorded state, backup, unit execution, recording and
post-condition verification for a single target.
"""

import logging
import os
import time
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..discovery.discovery import MigrationDiscovery
from ..discovery.metadata import (
    UNIT_ID_PATTERN,
    VERSION_PATTERN,
    MigrationUnit,
    parse_version,
    unit_key,
)
from ..error_handling import (
    BackupRequiredError,
    ConfirmationRequiredError,
    DriftError,
    ErrorCodes,
    ErrorContext,
    InvalidTargetError,
    MigrationFailedError,
    MigrationSystemError,
    NotRevertibleError,
    ValidationError,
    VerificationWarning,
)
from ..state.records import Outcome, SchemaState
from ..state.state_tracker import StateTracker, default_executor
from ..validation.unit_validator import UnitValidator
from ..validation.validation_result import ValidationReport
from .backup import BackupCollaborator, BackupHandle, create_backup_collaborator
from .run_result import (
    TERMINAL_STATES,
    CancellationToken,
    EngineState,
    RunResult,
    StatusReport,
    can_transition,
)
from .target import TargetDatabase
from .verification import SchemaVerifier

EMPTY_TARGET = "0"


class MigrationEngine:
    """
    Applies and rolls back migration units against one target database.

    Every invocation re-reads the sources and the history table; nothing is
    cached between runs. Errors raised by apply and rollback carry the partial
    RunResult as ``error.result``.
    """

    def __init__(
        self,
        discovery: MigrationDiscovery,
        target: TargetDatabase,
        state_tracker: Optional[StateTracker] = None,
        backup: Optional[BackupCollaborator] = None,
        validator: Optional[UnitValidator] = None,
        verifier: Optional[SchemaVerifier] = None,
        backup_dir: str = "backups",
        owner: Optional[str] = None,
    ):
        self.discovery = discovery
        self.target = target
        self.state_tracker = state_tracker or StateTracker(target.engine)
        self.backup = backup or create_backup_collaborator(target, backup_dir)
        self.validator = validator or UnitValidator()
        self.verifier = verifier or SchemaVerifier(target)
        self.owner = owner or f"{default_executor()}:{os.getpid()}"
        self._logger = None

    @classmethod
    def from_settings(cls, settings) -> "MigrationEngine":
        """Wire discovery, target, state tracker, backups and validator from
        resolved MigrationSettings."""
        target = TargetDatabase(
            settings.target_id,
            settings.database_url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
        )
        return cls(
            discovery=MigrationDiscovery.from_directories(
                settings.migration_dirs, settings.convention
            ),
            target=target,
            state_tracker=StateTracker(
                settings.history_database_url or target.engine,
                history_table=settings.history_table,
                lock_table=settings.lock_table,
            ),
            backup=create_backup_collaborator(
                target, settings.backup_dir, settings.backup_strategy
            ),
            validator=UnitValidator(disabled_rules=settings.disabled_rules),
        )

    @property
    def logger(self):
        """Prefect run logger inside a flow or task run, standard logger otherwise."""
        if self._logger is None:
            try:
                from prefect import get_run_logger

                self._logger = get_run_logger()
            except (ImportError, RuntimeError):
                # Not inside a Prefect run context
                self._logger = logging.getLogger(f"MigrationEngine.{self.target.target_id}")
                if not self._logger.handlers and not logging.getLogger().handlers:
                    handler = logging.StreamHandler()
                    handler.setFormatter(
                        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
                    )
                    self._logger.addHandler(handler)
                    self._logger.setLevel(logging.INFO)
        return self._logger

    # Public entry points

    def apply(
        self, cancel_token: Optional[CancellationToken] = None, dry_run: bool = False
    ) -> RunResult:
        """
        Apply every pending unit in (version, sequence) order.

        Raises:
            LockContentionError: Another run holds the target's lock
            DiscoveryError: Sources are missing, malformed or duplicated
            ValidationError: Any unit has an ERROR-severity issue
            DriftError: An applied unit changed since it was applied
            BackupRequiredError: The pre-apply snapshot failed
            MigrationFailedError: A unit's script raised; earlier units stay applied
        """
        result = RunResult(mode="apply", target_id=self.target.target_id, dry_run=dry_run)
        self.logger.info(
            f"Starting {'dry-run ' if dry_run else ''}apply {result.run_id} "
            f"on target '{self.target.target_id}'"
        )
        try:
            with self.state_tracker.locked(self.owner):
                self._apply(result, cancel_token)
        except Exception as e:
            self._abort(result, e)
            raise
        finally:
            result.finish()

        self.logger.info(result.summary())
        return result

    def plan(self) -> RunResult:
        """Compute the pending delta without backing up or executing anything."""
        return self.apply(dry_run=True)

    def rollback(
        self,
        target: str,
        confirm: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RunResult:
        """
        Revert every applied unit above ``target`` by running down scripts in
        descending order.

        ``target`` is a unit id such as "1.0-001", a version such as "1.1"
        (keep every unit of that version and below) or "0" for an empty schema.

        Raises:
            InvalidTargetError: The target is not a known version or unit id
            NotRevertibleError: A selected unit has no down script
            DriftError: A selected unit changed since it was applied
            ConfirmationRequiredError: ``confirm`` was not set
            BackupRequiredError: The pre-rollback snapshot failed
            MigrationFailedError: A down script raised
        """
        result = RunResult(mode="rollback", target_id=self.target.target_id)
        self.logger.info(
            f"Starting rollback {result.run_id} on target '{self.target.target_id}' to {target}"
        )
        try:
            with self.state_tracker.locked(self.owner):
                self._rollback(result, str(target).strip(), confirm, cancel_token)
        except Exception as e:
            self._abort(result, e)
            raise
        finally:
            result.finish()

        self.logger.info(result.summary())
        return result

    def status(self) -> StatusReport:
        """Applied state plus pending units. Read-only, takes no lock."""
        units = self.discovery.discover()
        state = self.state_tracker.load()
        pending, ignored, missing = self._compute_delta(units, state)

        drifted = []
        for unit in units:
            record = state.applied_record(unit.unit_id)
            if record is not None and record.checksum != unit.checksum:
                drifted.append(unit.unit_id)

        return StatusReport(
            target_id=self.target.target_id,
            state=state,
            pending=pending,
            ignored=ignored,
            missing=missing,
            drifted=drifted,
            lock_holder=self.state_tracker.lock_holder(),
        )

    def validate(self) -> ValidationReport:
        """Validate every discovered unit without touching the target."""
        return self.validator.validate_all(self.discovery.discover())

    def restore(self, handle: BackupHandle, confirm: bool = False) -> BackupHandle:
        """
        Restore the target from a snapshot. Manual recovery only; the engine
        never restores on its own.

        Raises:
            ConfirmationRequiredError: ``confirm`` was not set
            BackupRequiredError: The snapshot is missing or restoring failed
        """
        if not confirm:
            raise ConfirmationRequiredError(
                f"Restoring '{self.target.target_id}' from {handle.location} overwrites the "
                "current schema and history; confirmation required",
                context=ErrorContext(target_id=self.target.target_id, operation="restore"),
            )
        if not handle.is_valid():
            raise BackupRequiredError(
                f"Backup is missing or empty: {handle.location}",
                error_code=ErrorCodes.RESTORE_FAILED,
                context=ErrorContext(target_id=self.target.target_id, file_path=handle.location),
            )

        self.state_tracker.acquire_lock(self.owner)
        try:
            self.logger.warning(
                f"Restoring target '{self.target.target_id}' from {handle.location}"
            )
            self.backup.restore(handle)
        finally:
            # The snapshot carries the lock row of the run that produced it
            self.state_tracker.force_release_lock()

        self.logger.info(f"Restore of '{self.target.target_id}' completed")
        return handle

    # Apply protocol

    def _apply(self, result: RunResult, cancel_token: Optional[CancellationToken]) -> None:
        self._transition(result, EngineState.DISCOVERING)
        units = self.discovery.discover()
        result.discovered = len(units)

        self._transition(result, EngineState.VALIDATING)
        report = self.validator.validate_all(units)
        result.validation = report
        if not report.is_valid:
            blocked = report.blocked_units
            raise ValidationError(
                f"{report.error_count} validation error(s) block {len(blocked)} unit(s) "
                f"starting at {blocked[0]}",
                report=report,
                context=ErrorContext(
                    unit_id=blocked[0],
                    target_id=self.target.target_id,
                    additional_info={"errors": report.get_error_messages()},
                ),
            )

        self._transition(result, EngineState.PLANNING)
        state = self.state_tracker.load()
        self.state_tracker.check_drift(units, state)
        delta, ignored, missing = self._compute_delta(units, state)
        result.planned = [unit.unit_id for unit in delta]
        result.ignored = [unit.unit_id for unit in ignored]
        result.missing = missing

        if ignored:
            self.logger.warning(
                f"Ignoring unapplied unit(s) below current version "
                f"{state.current_version}: {', '.join(result.ignored)}"
            )
        if missing:
            self.logger.warning(
                f"Applied unit(s) with no source: {', '.join(missing)}"
            )

        if not delta:
            self.logger.info(
                f"Target '{self.target.target_id}' is up to date at "
                f"{state.current_version or 'empty schema'}"
            )
            self._transition(result, EngineState.DONE)
            return

        self.logger.info(f"Planned {len(delta)} unit(s): {', '.join(result.planned)}")
        if result.dry_run:
            self._transition(result, EngineState.DONE)
            return

        self._transition(result, EngineState.BACKING_UP)
        self._take_backup(result, label="backup")

        applied_units = []
        for unit in delta:
            if cancel_token is not None and cancel_token.cancelled:
                self._cancel(result, unit)
                return

            self._transition(result, EngineState.APPLYING)
            self.logger.info(f"Applying {unit}")
            start = time.time()
            try:
                count = self.target.execute_script(unit.up_script)
            except SQLAlchemyError as e:
                duration_ms = int((time.time() - start) * 1000)
                self._transition(result, EngineState.RECORDING)
                self.state_tracker.record(
                    unit, Outcome.FAILED, duration_ms=duration_ms, error_message=str(e)[:2000]
                )
                result.failed_unit = unit.unit_id
                raise MigrationFailedError(
                    f"Unit {unit.unit_id} failed: {e}",
                    unit_id=unit.unit_id,
                    context=ErrorContext(
                        unit_id=unit.unit_id,
                        target_id=self.target.target_id,
                        file_path=unit.source_path or unit.source_name,
                        operation="apply",
                        additional_info={"applied": [r.unit_id for r in result.applied]},
                    ),
                    cause=e,
                )

            duration_ms = int((time.time() - start) * 1000)
            self._transition(result, EngineState.RECORDING)
            result.applied.append(
                self.state_tracker.record(unit, Outcome.SUCCESS, duration_ms=duration_ms)
            )
            applied_units.append(unit)
            self.logger.info(f"Applied {unit.unit_id}: {count} statement(s) in {duration_ms} ms")

        self._transition(result, EngineState.VERIFYING)
        result.verification_warnings = self._verify(
            lambda: self.verifier.verify_present(applied_units)
        )
        self._transition(result, EngineState.DONE)

    # Rollback protocol

    def _rollback(
        self,
        result: RunResult,
        target: str,
        confirm: bool,
        cancel_token: Optional[CancellationToken],
    ) -> None:
        self._transition(result, EngineState.DISCOVERING)
        units = self.discovery.discover()
        result.discovered = len(units)
        units_by_id = {unit.unit_id: unit for unit in units}

        self._transition(result, EngineState.PLANNING)
        state = self.state_tracker.load()
        above = self._resolve_target(target, units, state)

        selected = [record for record in reversed(state.applied) if above(record.key)]
        result.planned = [record.unit_id for record in selected]
        if not selected:
            self.logger.info(f"Nothing to roll back: target '{self.target.target_id}' is at or below {target}")
            self._transition(result, EngineState.DONE)
            return

        # Every selected unit must be revertible before anything is mutated
        drifted = []
        for record in selected:
            unit = units_by_id.get(record.unit_id)
            if unit is None or not unit.is_revertible:
                reason = "has no source" if unit is None else "has no down script"
                raise NotRevertibleError(
                    f"Cannot roll back to {target}: unit {record.unit_id} {reason}",
                    unit_id=record.unit_id,
                    context=ErrorContext(
                        unit_id=record.unit_id,
                        target_id=self.target.target_id,
                        operation="rollback",
                    ),
                )
            if unit.checksum != record.checksum:
                drifted.append(record.unit_id)
        if drifted:
            raise DriftError(
                f"Cannot roll back modified unit(s): {', '.join(drifted)}",
                drifted=drifted,
                context=ErrorContext(unit_id=drifted[0], target_id=self.target.target_id),
            )

        if not confirm:
            raise ConfirmationRequiredError(
                f"Rolling back {len(selected)} unit(s) ({', '.join(result.planned)}) "
                "requires confirmation",
                context=ErrorContext(target_id=self.target.target_id, operation="rollback"),
            )

        self._transition(result, EngineState.BACKING_UP)
        self._take_backup(result, label="rollback_backup")

        self._transition(result, EngineState.ROLLING_BACK)
        reverted_units = []
        for record in selected:
            unit = units_by_id[record.unit_id]
            if cancel_token is not None and cancel_token.cancelled:
                self._cancel(result, unit)
                return

            self.logger.info(f"Rolling back {unit}")
            start = time.time()
            try:
                self.target.execute_script(unit.down_script)
            except SQLAlchemyError as e:
                result.failed_unit = unit.unit_id
                raise MigrationFailedError(
                    f"Down script for {unit.unit_id} failed: {e}",
                    unit_id=unit.unit_id,
                    error_code=ErrorCodes.DOWN_SCRIPT_FAILED,
                    context=ErrorContext(
                        unit_id=unit.unit_id,
                        target_id=self.target.target_id,
                        file_path=getattr(unit, "undo_path", None) or unit.source_path,
                        operation="rollback",
                        additional_info={"rolled_back": [r.unit_id for r in result.rolled_back]},
                    ),
                    cause=e,
                )
            duration_ms = int((time.time() - start) * 1000)
            result.rolled_back.append(self.state_tracker.tombstone(record, duration_ms))
            reverted_units.append(unit)

        kept_units = [
            units_by_id[record.unit_id]
            for record in state.applied
            if not above(record.key) and record.unit_id in units_by_id
        ]

        self._transition(result, EngineState.VERIFYING)
        result.verification_warnings = self._verify(
            lambda: self.verifier.verify_absent(reverted_units)
            + self.verifier.verify_present(kept_units)
        )
        self._transition(result, EngineState.DONE)

    def _resolve_target(
        self, target: str, units: list[MigrationUnit], state: SchemaState
    ) -> Callable[[tuple], bool]:
        """Return a predicate selecting unit keys above the rollback target."""
        if target == EMPTY_TARGET:
            return lambda key: True

        known_ids = {unit.unit_id for unit in units} | {r.unit_id for r in state.history}
        known_keys = {unit.key for unit in units} | {r.key for r in state.history}

        if UNIT_ID_PATTERN.match(target):
            version, sequence = target.rsplit("-", 1)
            target_key = unit_key(version, sequence)
            if target in known_ids or target_key in known_keys:
                return lambda key: key > target_key
        elif VERSION_PATTERN.match(target):
            target_version = parse_version(target)
            if any(key[0] == target_version for key in known_keys):
                return lambda key: key[0] > target_version

        raise InvalidTargetError(
            f"Rollback target '{target}' is neither a known version nor a known unit id",
            context=ErrorContext(
                target_id=self.target.target_id,
                additional_info={"target": target, "known_units": sorted(known_ids)},
            ),
            remediation="Use a unit id such as 1.0-001, a version such as 1.1, or 0 for an empty schema",
        )

    # Shared steps

    def _compute_delta(
        self, units: list[MigrationUnit], state: SchemaState
    ) -> tuple[list[MigrationUnit], list[MigrationUnit], list[str]]:
        """Pending units above the current version, skipped units below it, and
        applied units without a source."""
        current_key = state.current_key
        delta = [unit for unit in units if current_key is None or unit.key > current_key]
        ignored = [
            unit
            for unit in units
            if current_key is not None
            and unit.key < current_key
            and not state.is_applied(unit.unit_id)
        ]
        known = {unit.unit_id for unit in units}
        missing = [record.unit_id for record in state.applied if record.unit_id not in known]
        return delta, ignored, missing

    def _take_backup(self, result: RunResult, label: str) -> BackupHandle:
        try:
            handle = self.backup.snapshot(self.target.target_id, label=label)
        except BackupRequiredError:
            raise
        except Exception as e:
            raise BackupRequiredError(
                f"Backup of '{self.target.target_id}' failed: {e}",
                error_code=ErrorCodes.BACKUP_FAILED,
                context=ErrorContext(target_id=self.target.target_id),
                cause=e,
            )

        if handle is None or not handle.is_valid():
            raise BackupRequiredError(
                f"Backup of '{self.target.target_id}' did not produce a usable snapshot",
                context=ErrorContext(
                    target_id=self.target.target_id,
                    file_path=handle.location if handle else None,
                ),
            )

        result.backup = handle
        return handle

    def _verify(self, check: Callable[[], list[VerificationWarning]]) -> list[VerificationWarning]:
        try:
            return check()
        except SQLAlchemyError as e:
            self.logger.warning(f"Schema verification could not run: {e}")
            return [VerificationWarning(f"Schema verification could not run: {e}")]

    def _cancel(self, result: RunResult, next_unit: MigrationUnit) -> None:
        result.cancelled_at = next_unit.unit_id
        self._transition(result, EngineState.CANCELLED)
        self.logger.warning(
            f"Run {result.run_id} cancelled before {next_unit.unit_id}; "
            f"{len(result.applied) or len(result.rolled_back)} unit(s) completed"
        )

    def _transition(self, result: RunResult, new_state: EngineState) -> None:
        if not can_transition(result.state, new_state):
            raise RuntimeError(
                f"Illegal engine transition {result.state.value} -> {new_state.value}"
            )
        result.state = new_state
        result.transitions.append(new_state)
        self.logger.debug(f"Run {result.run_id}: {new_state.value}")

    def _abort(self, result: RunResult, error: Exception) -> None:
        result.error = str(error)
        if result.state not in TERMINAL_STATES:
            result.state = EngineState.FAILED
            result.transitions.append(EngineState.FAILED)
        if isinstance(error, MigrationSystemError):
            error.result = result
            if error.context.target_id is None:
                error.context.target_id = self.target.target_id
        self.logger.error(f"Run {result.run_id} failed: {error}")

