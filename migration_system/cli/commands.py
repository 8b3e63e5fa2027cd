"""
CLI Commands

Command-line interface for the migration system.
"""

from typing import Any, Optional

from ..config import ConfigManager, MigrationSettings
from ..discovery import MigrationDiscovery
from ..error_handling import ConfirmationRequiredError, ErrorContext
from ..execution import BackupManager, MigrationEngine, RunResult, StatusReport
from ..validation import UnitValidator, ValidationReport


class MigrationCLI:
    """Command-line interface for migration management of one target."""

    def __init__(
        self,
        environment: Optional[str] = None,
        target: Optional[str] = None,
        base_dir: Optional[str] = None,
        overrides: Optional[dict[str, Any]] = None,
        use_prefect_blocks: Optional[bool] = None,
    ):
        self.config = ConfigManager(
            target=target,
            environment=environment,
            base_dir=base_dir,
            use_prefect_blocks=use_prefect_blocks,
        )
        self.overrides = overrides or {}
        self._settings: Optional[MigrationSettings] = None
        self._engine: Optional[MigrationEngine] = None

    @property
    def settings(self) -> MigrationSettings:
        if self._settings is None:
            self._settings = MigrationSettings.from_config(self.config, self.overrides)
        return self._settings

    @property
    def engine(self) -> MigrationEngine:
        if self._engine is None:
            self._engine = MigrationEngine.from_settings(self.settings)
        return self._engine

    def apply(self, dry_run: bool = False) -> RunResult:
        """Apply pending units, or plan them with ``dry_run``."""
        return self.engine.apply(dry_run=dry_run)

    def rollback(self, target: str, confirm: bool = False) -> RunResult:
        return self.engine.rollback(target, confirm=confirm)

    def status(self) -> StatusReport:
        return self.engine.status()

    def validate(self) -> ValidationReport:
        """Validate migration sources. Needs no database connection."""
        settings = MigrationSettings.from_config(
            self.config, self.overrides, require_database=False
        )
        discovery = MigrationDiscovery.from_directories(
            settings.migration_dirs, settings.convention
        )
        validator = UnitValidator(disabled_rules=settings.disabled_rules)
        return validator.validate_all(discovery.discover())

    def list_backups(self) -> list[dict]:
        """List snapshots for this target, newest first."""
        settings = MigrationSettings.from_config(
            self.config, self.overrides, require_database=False
        )
        manager = BackupManager(settings.backup_dir)
        return [handle.to_dict() for handle in manager.list(settings.target_id)]

    def restore(self, backup: str, confirm: bool = False) -> dict:
        """Restore the target from a snapshot path or file name."""
        handle = BackupManager(self.settings.backup_dir).get(backup)
        self.engine.restore(handle, confirm=confirm)
        return handle.to_dict()

    def release_lock(self, confirm: bool = False) -> Optional[dict]:
        """Clear a stale run lock. Returns the released holder, if any."""
        if not confirm:
            raise ConfirmationRequiredError(
                f"Releasing the lock on '{self.settings.target_id}' while a run is active "
                "can corrupt its history; confirmation required",
                context=ErrorContext(target_id=self.settings.target_id, operation="release-lock"),
            )
        return self.engine.state_tracker.force_release_lock()

    def show_config(self) -> dict:
        """Resolved settings with secrets masked."""
        settings = MigrationSettings.from_config(
            self.config, self.overrides, require_database=False
        )
        data = settings.to_dict(mask_secrets=True)
        data["loaded_files"] = [str(path) for path in self.config.loaded_files]
        return data

    def close(self) -> None:
        if self._engine is not None:
            self._engine.target.dispose()
            self._engine.state_tracker.dispose()
            self._engine = None
