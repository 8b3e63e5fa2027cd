"""
Migration System

Versioned schema migrations: discovery of migration units, static validation,
history tracking and an apply/rollback engine with backups and verification.
"""

from .config import ConfigManager, MigrationSettings
from .discovery import MigrationDiscovery
from .error_handling import MigrationSystemError
from .execution import (
    BackupManager,
    CancellationToken,
    MigrationEngine,
    RunResult,
    StatusReport,
    TargetDatabase,
)
from .state import StateTracker
from .validation import UnitValidator, ValidationReport

__version__ = "0.1.0"

__all__ = [
    "ConfigManager",
    "MigrationSettings",
    "MigrationDiscovery",
    "UnitValidator",
    "ValidationReport",
    "StateTracker",
    "MigrationEngine",
    "TargetDatabase",
    "BackupManager",
    "CancellationToken",
    "RunResult",
    "StatusReport",
    "MigrationSystemError",
    "__version__",
]
