"""
Execution Module

Apply/rollback engine, target connection, backups and schema verification.
"""

from .backup import (
    BACKUP_STRATEGIES,
    BackupCollaborator,
    BackupHandle,
    BackupManager,
    PgDumpBackup,
    SQLiteFileBackup,
    create_backup_collaborator,
)
from .engine import MigrationEngine
from .run_result import (
    TRANSITIONS,
    CancellationToken,
    EngineState,
    RunResult,
    StatusReport,
    can_transition,
)
from .target import TargetDatabase
from .verification import SchemaVerifier

__all__ = [
    "MigrationEngine",
    "TargetDatabase",
    "BackupCollaborator",
    "BackupHandle",
    "BackupManager",
    "SQLiteFileBackup",
    "PgDumpBackup",
    "BACKUP_STRATEGIES",
    "create_backup_collaborator",
    "SchemaVerifier",
    "EngineState",
    "TRANSITIONS",
    "can_transition",
    "CancellationToken",
    "RunResult",
    "StatusReport",
]
