"""
Migration Discovery Module

Enumerates migration units from script-style and changeset-style sources.
"""

from .discovery import MigrationDiscovery, UnitCatalog
from .metadata import (
    ChangesetUnit,
    MigrationUnit,
    ScriptUnit,
    UnitKind,
    compute_checksum,
    format_unit_id,
    parse_unit_id,
    parse_version,
    unit_key,
)
from .sources import CONVENTIONS, DirectorySource, EmbeddedSource, MigrationSource, SourceEntry
from .unit_scanner import UnitScanner

__all__ = [
    "MigrationDiscovery",
    "UnitCatalog",
    "UnitScanner",
    "MigrationSource",
    "DirectorySource",
    "EmbeddedSource",
    "SourceEntry",
    "CONVENTIONS",
    "MigrationUnit",
    "ScriptUnit",
    "ChangesetUnit",
    "UnitKind",
    "compute_checksum",
    "format_unit_id",
    "parse_unit_id",
    "parse_version",
    "unit_key",
]
