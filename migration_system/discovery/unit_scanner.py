"""
Unit Scanner

Parses identity fields out of migration file names and changelog headers and
builds ScriptUnit / ChangesetUnit instances.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from ..error_handling import ErrorCodes, ErrorContext, MalformedUnitError
from ..sql import SchemaObject, is_ddl, iter_statements, parse_header
from .metadata import (
    DEFAULT_SEQUENCE,
    UNIT_ID_PATTERN,
    ChangesetUnit,
    MigrationUnit,
    ScriptUnit,
    UnitKind,
    unit_key,
)
from .sources import SourceEntry

logger = logging.getLogger(__name__)

SCRIPT_NAME = re.compile(
    r"^(?P<prefix>[VU])(?P<version>\d+(?:\.\d+)*)(?:_(?P<sequence>\d+))?__(?P<description>.*)\.sql$",
    re.IGNORECASE,
)
SCRIPT_PREFIX = re.compile(r"^[VU]\d", re.IGNORECASE)
CHANGESET_NAME = re.compile(
    r"^(?P<version>\d+(?:\.\d+)*)-(?P<sequence>\d+)(?:[-_](?P<description>.*))?\.sql$"
)
FORMATTED_SQL = re.compile(r"^--\s*liquibase\s+formatted\s+sql\b", re.IGNORECASE)
CHANGESET_LINE = re.compile(
    r"^--\s*changeset\s+(?:(?P<author>[^:\s]*):)?(?P<id>\S+)", re.IGNORECASE
)
COMMENT_LINE = re.compile(r"^--\s*comment\s*:?\s*(?P<text>.*)$", re.IGNORECASE)
ROLLBACK_LINE = re.compile(r"^--\s*rollback\b\s*(?P<sql>.*)$", re.IGNORECASE)
EXPECTS_LINE = re.compile(r"^--\s*expects\s*:\s*(?P<objects>.*)$", re.IGNORECASE)
KIND_LINE = re.compile(r"^--\s*kind\s*:\s*(?P<kind>\w+)\s*$", re.IGNORECASE)

# '--rollback empty' marks a changeset that needs no down statements
EMPTY_ROLLBACK = {"empty", "not required"}


@dataclass
class _ScriptParts:
    entry: SourceEntry
    version: str
    sequence: str
    description: str


class UnitScanner:
    """Turns source entries into migration units."""

    def scan(self, entries: Iterable[SourceEntry]) -> list[MigrationUnit]:
        """
        Parse every entry into units, pairing undo scripts with their units.

        Raises:
            MalformedUnitError: If an entry does not encode a version and
                sequence, or an undo script has no matching unit
        """
        units: list[MigrationUnit] = []
        scripts: list[_ScriptParts] = []
        undo_scripts: dict[tuple, _ScriptParts] = {}

        for entry in entries:
            convention = self._detect_convention(entry)

            if convention == "script":
                parts = self._parse_script_name(entry)
                key = unit_key(parts.version, parts.sequence)
                if entry.name[0].upper() == "U":
                    if key in undo_scripts:
                        raise MalformedUnitError(
                            f"Two undo scripts for {parts.version}-{parts.sequence}: "
                            f"{undo_scripts[key].entry.name}, {entry.name}",
                            context=ErrorContext(file_path=entry.path or entry.name),
                        )
                    undo_scripts[key] = parts
                else:
                    scripts.append(parts)
            else:
                units.extend(self._parse_changesets(entry))

        for parts in scripts:
            undo = undo_scripts.pop(unit_key(parts.version, parts.sequence), None)
            units.append(self._build_script_unit(parts, undo))

        if undo_scripts:
            orphan = next(iter(undo_scripts.values()))
            raise MalformedUnitError(
                f"Undo script {orphan.entry.name} has no matching V{orphan.version} script",
                error_code=ErrorCodes.ORPHAN_UNDO_SCRIPT,
                context=ErrorContext(file_path=orphan.entry.path or orphan.entry.name),
                remediation="Rename the undo script to match its V-script version and sequence",
            )

        logger.debug(f"Scanned {len(units)} migration units")
        return units

    def _detect_convention(self, entry: SourceEntry) -> str:
        if entry.convention != "auto":
            return entry.convention
        if SCRIPT_PREFIX.match(entry.name):
            return "script"
        if FORMATTED_SQL.match(entry.content.lstrip()) or CHANGESET_NAME.match(entry.name):
            return "changeset"
        raise MalformedUnitError(
            f"Cannot determine migration convention for '{entry.name}'",
            context=ErrorContext(file_path=entry.path or entry.name),
        )

    def _parse_script_name(self, entry: SourceEntry) -> _ScriptParts:
        match = SCRIPT_NAME.match(entry.name)
        if not match:
            raise MalformedUnitError(
                f"Script name '{entry.name}' does not match V{{version}}[_{{sequence}}]__{{description}}.sql",
                context=ErrorContext(file_path=entry.path or entry.name),
            )
        return _ScriptParts(
            entry=entry,
            version=match.group("version"),
            sequence=match.group("sequence") or DEFAULT_SEQUENCE,
            description=match.group("description"),
        )

    def _build_script_unit(
        self, parts: _ScriptParts, undo: Optional[_ScriptParts]
    ) -> ScriptUnit:
        entry = parts.entry
        header = parse_header(entry.content)
        description = header.get("description") or parts.description.replace("_", " ").strip()

        return ScriptUnit(
            version=parts.version,
            sequence=parts.sequence,
            description=description,
            kind=self._resolve_kind(entry, header.get("kind"), entry.content),
            up_script=entry.content,
            down_script=undo.entry.content if undo else None,
            source_name=entry.name,
            source_path=entry.path,
            headers=header,
            declared_objects=self._parse_expects(header.get("expects"), entry),
            undo_path=(undo.entry.path or undo.entry.name) if undo else None,
        )

    def _parse_changesets(self, entry: SourceEntry) -> list[ChangesetUnit]:
        if FORMATTED_SQL.match(entry.content.lstrip()):
            return self._parse_formatted_changelog(entry)

        match = CHANGESET_NAME.match(entry.name)
        if not match:
            raise MalformedUnitError(
                f"Changeset file '{entry.name}' does not match {{version}}-{{sequence}}[-description].sql "
                "and is not a formatted SQL changelog",
                context=ErrorContext(file_path=entry.path or entry.name),
            )

        header = parse_header(entry.content)
        body, rollback, comment, expects, kind = self._split_block(entry.content.splitlines())
        description = (
            comment
            or header.get("description")
            or (match.group("description") or "").replace("_", " ").replace("-", " ").strip()
        )
        return [
            ChangesetUnit(
                version=match.group("version"),
                sequence=match.group("sequence"),
                description=description,
                kind=self._resolve_kind(entry, kind or header.get("kind"), body),
                up_script=body,
                down_script=rollback,
                source_name=entry.name,
                source_path=entry.path,
                headers=header,
                declared_objects=self._parse_expects(expects or header.get("expects"), entry),
                author=header.get("author"),
                changelog=entry.name,
            )
        ]

    def _parse_formatted_changelog(self, entry: SourceEntry) -> list[ChangesetUnit]:
        units = []
        current: Optional[re.Match] = None
        lines: list[str] = []

        def finish():
            if current is None:
                return
            units.append(self._build_changeset(entry, current, lines))

        for line in entry.content.splitlines():
            match = CHANGESET_LINE.match(line.strip())
            if match:
                finish()
                current = match
                lines = []
            elif current is not None:
                lines.append(line)
        finish()

        if not units:
            raise MalformedUnitError(
                f"Formatted SQL changelog '{entry.name}' contains no --changeset blocks",
                context=ErrorContext(file_path=entry.path or entry.name),
            )
        return units

    def _build_changeset(
        self, entry: SourceEntry, header_match: re.Match, lines: list[str]
    ) -> ChangesetUnit:
        changeset_id = header_match.group("id")
        id_match = UNIT_ID_PATTERN.match(changeset_id)
        if not id_match:
            raise MalformedUnitError(
                f"Changeset id '{changeset_id}' in {entry.name} does not match {{version}}-{{sequence}}",
                context=ErrorContext(file_path=entry.path or entry.name, unit_id=changeset_id),
            )

        body, rollback, comment, expects, kind = self._split_block(lines)
        return ChangesetUnit(
            version=id_match.group(1),
            sequence=id_match.group(2),
            description=comment or f"changeset {changeset_id}",
            kind=self._resolve_kind(entry, kind, body),
            up_script=body,
            down_script=rollback,
            source_name=entry.name,
            source_path=entry.path,
            headers={"comment": comment} if comment else {},
            declared_objects=self._parse_expects(expects, entry),
            author=header_match.group("author") or None,
            changelog=entry.name,
        )

    def _split_block(self, lines: list[str]):
        """Separate a changeset body from its --rollback/--comment/--expects lines."""
        body_lines = []
        rollback_lines = []
        comment = None
        expects = None
        kind = None

        for line in lines:
            stripped = line.strip()
            rollback = ROLLBACK_LINE.match(stripped)
            if rollback:
                rollback_lines.append(rollback.group("sql"))
                continue
            comment_match = COMMENT_LINE.match(stripped)
            if comment_match and comment is None:
                comment = comment_match.group("text").strip() or None
                continue
            expects_match = EXPECTS_LINE.match(stripped)
            if expects_match:
                expects = expects_match.group("objects")
                continue
            kind_match = KIND_LINE.match(stripped)
            if kind_match:
                kind = kind_match.group("kind")
                continue
            body_lines.append(line)

        body = "\n".join(body_lines).strip() + "\n"
        rollback_sql = None
        if rollback_lines:
            joined = "\n".join(rollback_lines).strip()
            rollback_sql = "" if joined.lower() in EMPTY_ROLLBACK else joined + "\n"
        return body, rollback_sql, comment, expects, kind

    def _resolve_kind(self, entry: SourceEntry, declared: Optional[str], script: str) -> UnitKind:
        if declared:
            try:
                return UnitKind(declared.strip().upper())
            except ValueError:
                raise MalformedUnitError(
                    f"Unknown kind '{declared}' in {entry.name}; expected DDL or DML",
                    context=ErrorContext(file_path=entry.path or entry.name),
                )
        if entry.kind_hint is not None:
            return entry.kind_hint
        return UnitKind.DDL if is_ddl(iter_statements(script)) else UnitKind.DML

    def _parse_expects(self, declaration: Optional[str], entry: SourceEntry) -> list[SchemaObject]:
        if not declaration:
            return []
        objects = []
        for item in declaration.split(","):
            if not item.strip():
                continue
            try:
                objects.append(SchemaObject.parse(item))
            except ValueError as e:
                raise MalformedUnitError(
                    f"Invalid Expects declaration in {entry.name}: {e}",
                    context=ErrorContext(file_path=entry.path or entry.name),
                    cause=e,
                )
        return objects
