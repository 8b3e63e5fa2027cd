"""
Backup Collaborators

Produce a restorable snapshot of a target before any schema mutation, and
restore one on explicit operator request.
"""

import logging
import os
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Optional

from sqlalchemy.engine import URL, make_url

from ..error_handling import (
    BackupRequiredError,
    ConfigurationError,
    ErrorCodes,
    ErrorContext,
)
from .target import TargetDatabase

logger = logging.getLogger(__name__)

BACKUP_STRATEGIES = ("auto", "sqlite-file", "pg-dump")
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S_%f"
BACKUP_NAME = re.compile(
    r"^(?P<label>rollback_backup|backup)_(?P<target>.+)_(?P<timestamp>\d{8}_\d{6}_\d{6})\.(?P<ext>sql|db)$"
)


@dataclass
class BackupHandle:
    """Reference to a snapshot produced for one run."""

    target_id: str
    location: str
    created_at: datetime
    strategy: str
    size_bytes: int = 0

    def is_valid(self) -> bool:
        """The snapshot exists and is non-empty."""
        path = Path(self.location)
        return path.is_file() and path.stat().st_size > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "target_id": self.target_id,
            "location": self.location,
            "created_at": self.created_at.isoformat(),
            "strategy": self.strategy,
            "size_bytes": self.size_bytes,
        }


class BackupCollaborator(ABC):
    """Snapshot and restore interface used by the engine."""

    strategy = ""

    def __init__(self, backup_dir):
        self.backup_dir = Path(backup_dir)

    @abstractmethod
    def snapshot(self, target_id: str, label: str = "backup") -> BackupHandle:
        """Create a snapshot and return its handle."""

    @abstractmethod
    def restore(self, handle: BackupHandle) -> None:
        """Restore the target from a snapshot."""

    def _backup_path(self, target_id: str, label: str, extension: str) -> Path:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(UTC).strftime(TIMESTAMP_FORMAT)
        safe_target = re.sub(r"[^A-Za-z0-9_.-]", "_", target_id)
        return self.backup_dir / f"{label}_{safe_target}_{timestamp}.{extension}"

    def _handle(self, target_id: str, path: Path) -> BackupHandle:
        return BackupHandle(
            target_id=target_id,
            location=str(path),
            created_at=datetime.now(UTC),
            strategy=self.strategy,
            size_bytes=path.stat().st_size if path.exists() else 0,
        )


class SQLiteFileBackup(BackupCollaborator):
    """Copies the SQLite database file."""

    strategy = "sqlite-file"

    def __init__(self, database_path, backup_dir, target: Optional[TargetDatabase] = None):
        super().__init__(backup_dir)
        self.database_path = Path(database_path)
        self.target = target

    def snapshot(self, target_id: str, label: str = "backup") -> BackupHandle:
        if not self.database_path.is_file():
            raise BackupRequiredError(
                f"SQLite database file not found: {self.database_path}",
                error_code=ErrorCodes.BACKUP_FAILED,
                context=ErrorContext(target_id=target_id, file_path=str(self.database_path)),
            )

        path = self._backup_path(target_id, label, "db")
        shutil.copy2(self.database_path, path)
        handle = self._handle(target_id, path)
        logger.info(f"Database backup created: {path} ({handle.size_bytes} bytes)")
        return handle

    def restore(self, handle: BackupHandle) -> None:
        if not handle.is_valid():
            raise BackupRequiredError(
                f"Backup is missing or empty: {handle.location}",
                error_code=ErrorCodes.RESTORE_FAILED,
                context=ErrorContext(target_id=handle.target_id, file_path=handle.location),
            )
        # Open connections would keep using the old file contents
        if self.target is not None:
            self.target.dispose()
        shutil.copy2(handle.location, self.database_path)
        logger.info(f"Restored {self.database_path} from {handle.location}")


class PgDumpBackup(BackupCollaborator):
    """Plain-SQL dump through pg_dump, restored with psql."""

    strategy = "pg-dump"

    def __init__(
        self,
        connection_string: str,
        backup_dir,
        pg_dump: str = "pg_dump",
        psql: str = "psql",
        timeout: int = 3600,
    ):
        super().__init__(backup_dir)
        self.connection_string = connection_string
        self.pg_dump = pg_dump
        self.psql = psql
        self.timeout = timeout

    def _libpq_args(self) -> tuple[str, dict[str, str]]:
        """libpq URL without the password, which goes through PGPASSWORD."""
        url = make_url(self.connection_string)
        env = dict(os.environ)
        if url.password:
            env["PGPASSWORD"] = str(url.password)
        dsn = URL.create(
            "postgresql",
            username=url.username,
            host=url.host,
            port=url.port,
            database=url.database,
            query=url.query,
        ).render_as_string(hide_password=False)
        return dsn, env

    def _run(self, command: list[str], env: dict[str, str], target_id: str, error_code: str):
        try:
            subprocess.run(
                command,
                env=env,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise BackupRequiredError(
                f"{command[0]} is not installed or not on PATH",
                error_code=error_code,
                context=ErrorContext(target_id=target_id),
                remediation="Install the PostgreSQL client tools on the runner",
                cause=e,
            )
        except subprocess.CalledProcessError as e:
            raise BackupRequiredError(
                f"{command[0]} failed with exit code {e.returncode}: {(e.stderr or '').strip()}",
                error_code=error_code,
                context=ErrorContext(target_id=target_id),
                cause=e,
            )
        except subprocess.TimeoutExpired as e:
            raise BackupRequiredError(
                f"{command[0]} timed out after {self.timeout}s",
                error_code=error_code,
                context=ErrorContext(target_id=target_id),
                cause=e,
            )

    def snapshot(self, target_id: str, label: str = "backup") -> BackupHandle:
        path = self._backup_path(target_id, label, "sql")
        dsn, env = self._libpq_args()
        self._run(
            [self.pg_dump, "--dbname", dsn, "--file", str(path), "--clean", "--if-exists", "--no-owner"],
            env,
            target_id,
            ErrorCodes.BACKUP_FAILED,
        )
        handle = self._handle(target_id, path)
        logger.info(f"Database backup created: {path} ({handle.size_bytes} bytes)")
        return handle

    def restore(self, handle: BackupHandle) -> None:
        dsn, env = self._libpq_args()
        self._run(
            [
                self.psql,
                "--dbname",
                dsn,
                "--file",
                handle.location,
                "--single-transaction",
                "--set",
                "ON_ERROR_STOP=1",
                "--quiet",
            ],
            env,
            handle.target_id,
            ErrorCodes.RESTORE_FAILED,
        )
        logger.info(f"Restored target '{handle.target_id}' from {handle.location}")


def create_backup_collaborator(
    target: TargetDatabase, backup_dir, strategy: str = "auto"
) -> BackupCollaborator:
    """
    Pick a backup implementation for the target.

    Raises:
        ConfigurationError: If the strategy is unknown or does not fit the target
    """
    if strategy not in BACKUP_STRATEGIES:
        raise ConfigurationError(
            f"Unknown backup strategy '{strategy}'. Expected one of: {', '.join(BACKUP_STRATEGIES)}",
            error_code=ErrorCodes.CONFIG_INVALID_VALUE,
            context=ErrorContext(target_id=target.target_id),
        )

    dialect = target.dialect
    if strategy == "auto":
        if dialect == "sqlite":
            strategy = "sqlite-file"
        elif dialect == "postgresql":
            strategy = "pg-dump"
        else:
            raise ConfigurationError(
                f"No backup strategy available for '{dialect}' targets",
                error_code=ErrorCodes.CONFIG_INVALID_VALUE,
                context=ErrorContext(target_id=target.target_id),
            )

    if strategy == "sqlite-file":
        database = make_url(target.connection_string).database
        if dialect != "sqlite" or not database or database == ":memory:":
            raise ConfigurationError(
                "sqlite-file backups need a file-based SQLite target",
                error_code=ErrorCodes.CONFIG_INVALID_VALUE,
                context=ErrorContext(target_id=target.target_id),
            )
        return SQLiteFileBackup(database, backup_dir, target=target)

    return PgDumpBackup(target.connection_string, backup_dir)


class BackupManager:
    """Lists snapshots kept in a backup directory."""

    def __init__(self, backup_dir):
        self.backup_dir = Path(backup_dir)

    def list(self, target_id: Optional[str] = None) -> list[BackupHandle]:
        """Backups newest first, optionally for one target."""
        if not self.backup_dir.is_dir():
            return []

        handles = []
        for path in self.backup_dir.iterdir():
            handle = self._parse(path)
            if handle is None:
                continue
            if target_id and handle.target_id != target_id:
                continue
            handles.append(handle)

        return sorted(handles, key=lambda h: h.created_at, reverse=True)

    def get(self, location: str) -> BackupHandle:
        """
        Resolve a backup by path or file name.

        Raises:
            BackupRequiredError: If no such backup exists
        """
        path = Path(location)
        if not path.exists():
            path = self.backup_dir / location
        handle = self._parse(path) if path.exists() else None
        if handle is None:
            raise BackupRequiredError(
                f"Backup not found: {location}",
                error_code=ErrorCodes.RESTORE_FAILED,
                context=ErrorContext(file_path=str(path)),
                remediation="Run 'backups' to list available snapshots",
            )
        return handle

    def latest(self, target_id: Optional[str] = None) -> Optional[BackupHandle]:
        handles = self.list(target_id)
        return handles[0] if handles else None

    @staticmethod
    def _parse(path: Path) -> Optional[BackupHandle]:
        match = BACKUP_NAME.match(path.name)
        if not match or not path.is_file():
            return None
        created_at = datetime.strptime(match.group("timestamp"), TIMESTAMP_FORMAT).replace(
            tzinfo=UTC
        )
        return BackupHandle(
            target_id=match.group("target"),
            location=str(path),
            created_at=created_at,
            strategy="sqlite-file" if match.group("ext") == "db" else "pg-dump",
            size_bytes=path.stat().st_size,
        )
