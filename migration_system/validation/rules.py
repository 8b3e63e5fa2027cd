"""
Validation Rules

Structural and safety rules checked against every migration unit before it is
eligible for execution. Each rule only reads the unit's content.
"""

import re
from typing import Optional

from ..discovery.metadata import ChangesetUnit, MigrationUnit, ScriptUnit, UnitKind, parse_version
from ..sql import (
    ADD_COLUMN,
    ALTER_DROP,
    COMMENT_ON_TABLE,
    CREATE_INDEX,
    CREATE_OTHER,
    CREATE_TABLE,
    CREATE_VIEW,
    DELETE_FROM,
    DROP_OBJECT,
    GRANT,
    PRIMARY_KEY,
    TRUNCATE,
    WHERE_CLAUSE,
    Statement,
    created_tables,
    iter_statements,
    split_identifier,
)
from .validation_result import Severity, ValidationIssue

STRICT_SCRIPT_NAME = re.compile(r"^V\d+\.\d+(?:_\d+)?__[A-Za-z0-9_]+\.sql$")
STRICT_CHANGESET_ID = re.compile(r"^\d+\.\d+-\d+$")
STRICT_VERSION = re.compile(r"^\d+\.\d+$")

RESERVED_KEYWORDS = frozenset(
    ["order", "user", "group", "select", "from", "where", "table", "database"]
)

OR_REPLACE = re.compile(r"^\s*CREATE\s+OR\s+REPLACE\b", re.IGNORECASE)
AUDIT_COLUMNS = ("created_at", "updated_at")

SECRET_ASSIGNMENT = re.compile(
    r"\b\w*(?:password|passwd|pwd|secret|api_key|apikey|access_key|token)\w*"
    r"\s*(?:=|:=)\s*'[^']+'",
    re.IGNORECASE,
)
SECRET_PASSWORD_CLAUSE = re.compile(r"\bPASSWORD\s+'[^']+'", re.IGNORECASE)


class ValidationRule:
    """Base class for a single named validation rule."""

    name = ""
    severity = Severity.WARNING
    remediation = ""

    def check(self, unit: MigrationUnit, statements: list[Statement]) -> list[ValidationIssue]:
        raise NotImplementedError

    def issue(
        self,
        unit: MigrationUnit,
        message: str,
        line_number: Optional[int] = None,
        severity: Optional[Severity] = None,
        remediation: Optional[str] = None,
    ) -> ValidationIssue:
        return ValidationIssue(
            unit_id=unit.unit_id,
            severity=severity or self.severity,
            rule=self.name,
            message=message,
            line_number=line_number,
            file_path=unit.source_path or unit.source_name or None,
            remediation=self.remediation if remediation is None else remediation,
        )


class NamingConventionRule(ValidationRule):
    name = "naming-convention"
    severity = Severity.ERROR
    remediation = "Rename the unit to V{major}.{minor}[_{sequence}]__{description}.sql or {major}.{minor}-{sequence}"

    def check(self, unit, statements):
        issues = []

        if isinstance(unit, ScriptUnit):
            if not STRICT_SCRIPT_NAME.match(unit.source_name):
                issues.append(
                    self.issue(
                        unit,
                        f"Script name '{unit.source_name}' does not follow "
                        "V{major}.{minor}[_{sequence}]__{Description}.sql",
                    )
                )
            declared = unit.headers.get("version")
            if declared and not self._same_version(declared, unit.version):
                issues.append(
                    self.issue(
                        unit,
                        f"Header version '{declared}' does not match file name version '{unit.version}'",
                        line_number=1,
                        remediation="Make the -- Version: header agree with the file name",
                    )
                )
        elif isinstance(unit, ChangesetUnit):
            if not STRICT_CHANGESET_ID.match(unit.unit_id):
                issues.append(
                    self.issue(
                        unit,
                        f"Changeset id '{unit.unit_id}' does not follow {{major}}.{{minor}}-{{sequence}}",
                    )
                )
            if not unit.author:
                issues.append(
                    self.issue(
                        unit,
                        f"Changeset {unit.unit_id} has no author",
                        remediation="Use '--changeset author:{version}-{sequence}' or an '-- Author:' header",
                    )
                )
        elif not STRICT_VERSION.match(unit.version):
            issues.append(self.issue(unit, f"Version '{unit.version}' is not {{major}}.{{minor}}"))

        for table in created_tables(statements):
            if table.name.lower() in RESERVED_KEYWORDS:
                issues.append(
                    self.issue(
                        unit,
                        f"Table name '{table.name}' is a reserved SQL keyword",
                        line_number=table.statement.line,
                        severity=Severity.WARNING,
                        remediation="Choose a table name that does not need quoting",
                    )
                )

        return issues

    @staticmethod
    def _same_version(declared: str, version: str) -> bool:
        try:
            return parse_version(declared) == parse_version(version)
        except ValueError:
            return False


class IdempotentDdlRule(ValidationRule):
    name = "idempotent-ddl"
    severity = Severity.WARNING
    remediation = "Guard the statement with IF NOT EXISTS / IF EXISTS / OR REPLACE"

    def check(self, unit, statements):
        if unit.kind is not UnitKind.DDL:
            return []
        issues = []
        for statement in statements:
            text = statement.text
            message = None

            table = CREATE_TABLE.match(text)
            index = CREATE_INDEX.match(text)
            view = CREATE_VIEW.match(text)
            other = CREATE_OTHER.match(text)
            add_column = ADD_COLUMN.match(text)
            drop = DROP_OBJECT.match(text)

            if table:
                if not table.group(1) and not OR_REPLACE.match(text):
                    message = f"CREATE TABLE {table.group(2)} without IF NOT EXISTS"
            elif index:
                if not index.group(1):
                    message = f"CREATE INDEX {index.group(2)} without IF NOT EXISTS"
            elif view:
                if not view.group(1) and not view.group(2):
                    message = f"CREATE VIEW {view.group(3)} without OR REPLACE / IF NOT EXISTS"
            elif other:
                if not other.group(1) and not other.group(2):
                    message = f"{' '.join(text.split()[:3])} without IF NOT EXISTS"
            elif add_column:
                if not add_column.group(2):
                    message = f"ALTER TABLE {add_column.group(1)} ADD COLUMN without IF NOT EXISTS"
            elif drop:
                if not drop.group(2):
                    message = f"DROP {drop.group(1).upper()} without IF EXISTS"

            if message:
                issues.append(self.issue(unit, message, line_number=statement.line))
        return issues


class HasPrimaryKeyRule(ValidationRule):
    name = "has-primary-key"
    severity = Severity.ERROR
    remediation = "Declare a PRIMARY KEY column or table constraint"

    def check(self, unit, statements):
        if unit.kind is not UnitKind.DDL:
            return []
        issues = []
        for table in created_tables(statements):
            body = table.body
            # CREATE TABLE ... AS SELECT has no column list to inspect
            if not body.strip():
                continue
            if not PRIMARY_KEY.search(body):
                issues.append(
                    self.issue(
                        unit,
                        f"Table '{table.name}' has no primary key",
                        line_number=table.statement.line,
                    )
                )
        return issues


class HasAuditColumnsRule(ValidationRule):
    name = "has-audit-columns"
    severity = Severity.WARNING
    remediation = "Add created_at and updated_at timestamp columns"

    def check(self, unit, statements):
        issues = []
        for table in created_tables(statements):
            body = table.body
            if not body.strip():
                continue
            missing = [
                column
                for column in AUDIT_COLUMNS
                if not re.search(rf"\b{column}\b", body, re.IGNORECASE)
            ]
            if missing:
                issues.append(
                    self.issue(
                        unit,
                        f"Table '{table.name}' is missing audit column(s): {', '.join(missing)}",
                        line_number=table.statement.line,
                    )
                )
        return issues


class HasDocumentationRule(ValidationRule):
    name = "has-documentation"
    severity = Severity.WARNING
    remediation = "Add COMMENT ON TABLE (and COMMENT ON COLUMN) statements"

    def check(self, unit, statements):
        documented = set()
        for statement in statements:
            match = COMMENT_ON_TABLE.match(statement.text)
            if match:
                documented.add(split_identifier(match.group(1))[1])

        return [
            self.issue(
                unit,
                f"Table '{table.name}' has no COMMENT ON TABLE documentation",
                line_number=table.statement.line,
            )
            for table in created_tables(statements)
            if table.name not in documented
        ]


class NoHardcodedSecretRule(ValidationRule):
    name = "no-hardcoded-secret"
    severity = Severity.ERROR
    remediation = "Move the credential to configuration or a secret store and reference it at deploy time"

    def check(self, unit, statements):
        issues = []
        scripts = [("up", statements)]
        if unit.down_script:
            scripts.append(("down", iter_statements(unit.down_script)))

        for label, script_statements in scripts:
            for statement in script_statements:
                if statement.keyword == "COMMENT":
                    continue
                for pattern in (SECRET_ASSIGNMENT, SECRET_PASSWORD_CLAUSE):
                    match = pattern.search(statement.text)
                    if match:
                        line = statement.line + statement.text[: match.start()].count("\n")
                        issues.append(
                            self.issue(
                                unit,
                                f"Possible hardcoded credential in {label} script",
                                line_number=line,
                            )
                        )
                        break
        return issues


class DestructiveStatementRule(ValidationRule):
    name = "review-destructive-statement"
    severity = Severity.WARNING
    remediation = "Confirm the data loss is intended and a backup exists"

    def check(self, unit, statements):
        issues = []
        for statement in statements:
            text = statement.text
            message = None
            drop = DROP_OBJECT.match(text)
            if drop:
                message = f"DROP {drop.group(1).upper()} statement"
            elif TRUNCATE.match(text):
                message = "TRUNCATE statement"
            elif DELETE_FROM.match(text) and not WHERE_CLAUSE.search(text):
                message = "DELETE without WHERE clause"
            elif ALTER_DROP.match(text):
                message = "ALTER TABLE ... DROP statement"

            if message:
                issues.append(
                    self.issue(unit, f"{message} requires review", line_number=statement.line)
                )
        return issues


class PrivilegeStatementRule(ValidationRule):
    name = "review-privilege-statement"
    severity = Severity.WARNING
    remediation = "Confirm the granted privileges are intended for this environment"

    def check(self, unit, statements):
        return [
            self.issue(
                unit,
                f"Permission statement requires review: {' '.join(statement.text.split()[:4])}",
                line_number=statement.line,
            )
            for statement in statements
            if GRANT.match(statement.text)
        ]


DEFAULT_RULES = (
    NamingConventionRule,
    IdempotentDdlRule,
    HasPrimaryKeyRule,
    HasAuditColumnsRule,
    HasDocumentationRule,
    NoHardcodedSecretRule,
    DestructiveStatementRule,
    PrivilegeStatementRule,
)
