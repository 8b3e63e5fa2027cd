"""
Migration Unit Models

Defines data structures for migration units and the ordering rules for
their (version, sequence) identity.
"""

import hashlib
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..sql import SchemaObject, created_objects, iter_statements

VERSION_PATTERN = re.compile(r"^\d+(?:\.\d+)*$")
SEQUENCE_PATTERN = re.compile(r"^\d+$")
UNIT_ID_PATTERN = re.compile(r"^(\d+(?:\.\d+)*)-(\d+)$")

DEFAULT_SEQUENCE = "001"


class UnitKind(Enum):
    """Kind of change a unit makes."""

    DDL = "DDL"
    DML = "DML"


def parse_version(version: str) -> tuple[int, ...]:
    """
    Parse a dotted numeric version into a comparable tuple.

    Trailing zero components are dropped so that "1" and "1.0" compare equal,
    and "1.10" sorts after "1.2".

    Raises:
        ValueError: If the version is not dotted numeric
    """
    if not isinstance(version, str) or not VERSION_PATTERN.match(version.strip()):
        raise ValueError(
            f"Invalid version '{version}': expected dotted numeric such as '1.0'"
        )
    parts = [int(part) for part in version.strip().split(".")]
    while len(parts) > 1 and parts[-1] == 0:
        parts.pop()
    return tuple(parts)


def parse_sequence(sequence: str) -> int:
    """Parse a zero-padded numeric sequence token."""
    if not isinstance(sequence, str) or not SEQUENCE_PATTERN.match(sequence.strip()):
        raise ValueError(
            f"Invalid sequence '{sequence}': expected a numeric token such as '001'"
        )
    return int(sequence)


def unit_key(version: str, sequence: str) -> tuple[tuple[int, ...], int]:
    """Total ordering key for a (version, sequence) pair."""
    return parse_version(version), parse_sequence(sequence)


def format_unit_id(version: str, sequence: str) -> str:
    return f"{version}-{sequence}"


def parse_unit_id(unit_id: str) -> tuple[str, str]:
    """Split a '1.0-001' style id into (version, sequence)."""
    match = UNIT_ID_PATTERN.match(unit_id.strip()) if unit_id else None
    if not match:
        raise ValueError(
            f"Invalid unit id '{unit_id}': expected '{{version}}-{{sequence}}' such as '1.0-001'"
        )
    return match.group(1), match.group(2)


def compute_checksum(script: str) -> str:
    """SHA-256 of the script with line endings normalised."""
    normalized = script.replace("\r\n", "\n").replace("\r", "\n")
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


@dataclass
class MigrationUnit:
    """A single, independently identified schema or data change."""

    convention = "unit"

    version: str
    sequence: str
    description: str
    kind: UnitKind
    up_script: str
    down_script: Optional[str] = None  # None means not revertible
    source_name: str = ""
    source_path: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    declared_objects: list[SchemaObject] = field(default_factory=list)
    checksum: str = field(init=False)

    def __post_init__(self):
        """Validate identity fields and fingerprint the up script."""
        self.version = self.version.strip()
        self.sequence = self.sequence.strip()
        # raises ValueError on malformed identity
        unit_key(self.version, self.sequence)
        if isinstance(self.kind, str):
            self.kind = UnitKind(self.kind.upper())
        self.checksum = compute_checksum(self.up_script)

    @property
    def unit_id(self) -> str:
        return format_unit_id(self.version, self.sequence)

    @property
    def key(self) -> tuple[tuple[int, ...], int]:
        return unit_key(self.version, self.sequence)

    @property
    def is_revertible(self) -> bool:
        return self.down_script is not None

    @property
    def expected_objects(self) -> list[SchemaObject]:
        """Objects this unit introduces: declared in headers, else derived."""
        if self.declared_objects:
            return list(self.declared_objects)
        if self.kind is not UnitKind.DDL:
            return []
        return created_objects(iter_statements(self.up_script))

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "version": self.version,
            "sequence": self.sequence,
            "description": self.description,
            "kind": self.kind.value,
            "convention": self.convention,
            "checksum": self.checksum,
            "revertible": self.is_revertible,
            "source": self.source_path or self.source_name,
        }

    def __str__(self) -> str:
        return f"{self.unit_id} ({self.description})"


@dataclass
class ScriptUnit(MigrationUnit):
    """Unit loaded from a V{version}[_{sequence}]__{description}.sql script."""

    convention = "script"

    undo_path: Optional[str] = None


@dataclass
class ChangesetUnit(MigrationUnit):
    """Unit loaded from a changeset, identified by '{version}-{sequence}'."""

    convention = "changeset"

    author: Optional[str] = None
    changelog: Optional[str] = None

    @property
    def changeset_id(self) -> str:
        return self.unit_id
