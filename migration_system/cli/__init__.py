"""
CLI Module

Command-line interface for the migration system.
"""

from .commands import MigrationCLI
from .utils import CLIUtils

__all__ = [
    "MigrationCLI",
    "CLIUtils",
]
