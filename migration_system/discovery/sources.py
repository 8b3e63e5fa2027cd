"""
Migration Sources

Directory-backed and embedded listings of named migration files.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping, Optional

from ..error_handling import DiscoveryError, ErrorCodes, ErrorContext
from .metadata import UnitKind

logger = logging.getLogger(__name__)

CONVENTIONS = ("auto", "script", "changeset")


@dataclass(frozen=True)
class SourceEntry:
    """One named file offered by a source."""

    name: str
    content: str
    path: Optional[str] = None
    convention: str = "auto"
    kind_hint: Optional[UnitKind] = None


def kind_from_parts(parts: tuple[str, ...]) -> Optional[UnitKind]:
    """Infer DDL/DML from a 'ddl' or 'dml' directory in the path."""
    for part in reversed(parts):
        lowered = part.lower()
        if lowered == "ddl":
            return UnitKind.DDL
        if lowered == "dml":
            return UnitKind.DML
    return None


class MigrationSource:
    """Base class for anything that can list migration files."""

    convention = "auto"

    def entries(self) -> Iterator[SourceEntry]:
        raise NotImplementedError

    def describe(self) -> str:
        return self.__class__.__name__


class DirectorySource(MigrationSource):
    """Walks a directory tree for .sql files."""

    def __init__(self, path, convention: str = "auto"):
        if convention not in CONVENTIONS:
            raise ValueError(
                f"Unknown convention '{convention}'. Expected one of: {', '.join(CONVENTIONS)}"
            )
        self.path = Path(path)
        self.convention = convention

    def entries(self) -> Iterator[SourceEntry]:
        if not self.path.exists() or not self.path.is_dir():
            raise DiscoveryError(
                f"Migration directory does not exist: {self.path}",
                error_code=ErrorCodes.SOURCE_NOT_FOUND,
                context=ErrorContext(file_path=str(self.path)),
            )

        for root, dirs, files in os.walk(self.path):
            # Skip hidden and cache directories
            dirs[:] = sorted(
                d for d in dirs if not d.startswith(".") and d != "__pycache__"
            )
            for file in sorted(files):
                if not file.lower().endswith(".sql"):
                    continue
                file_path = Path(root) / file
                relative = file_path.relative_to(self.path)
                try:
                    content = file_path.read_text(encoding="utf-8")
                except UnicodeDecodeError as e:
                    raise DiscoveryError(
                        f"Cannot read migration file due to encoding issues: {file_path}",
                        context=ErrorContext(file_path=str(file_path)),
                        remediation="Ensure the file is saved with UTF-8 encoding",
                        cause=e,
                    )
                yield SourceEntry(
                    name=file,
                    content=content,
                    path=str(file_path),
                    convention=self.convention,
                    kind_hint=kind_from_parts(relative.parts[:-1]),
                )

    def describe(self) -> str:
        return f"{self.path} ({self.convention})"


class EmbeddedSource(MigrationSource):
    """
    In-memory set of migration files.

    Keys are file names, optionally prefixed with a directory such as
    'ddl/V1.0__Create_users.sql' to carry a DDL/DML hint.
    """

    def __init__(self, files: Mapping[str, str], convention: str = "auto"):
        if convention not in CONVENTIONS:
            raise ValueError(
                f"Unknown convention '{convention}'. Expected one of: {', '.join(CONVENTIONS)}"
            )
        self.files = dict(files)
        self.convention = convention

    def entries(self) -> Iterator[SourceEntry]:
        for key in sorted(self.files):
            parts = tuple(part for part in key.replace("\\", "/").split("/") if part)
            yield SourceEntry(
                name=parts[-1],
                content=self.files[key],
                path=None,
                convention=self.convention,
                kind_hint=kind_from_parts(parts[:-1]),
            )

    def describe(self) -> str:
        return f"embedded ({len(self.files)} files, {self.convention})"
