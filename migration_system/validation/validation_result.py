"""
Validation Result Models

Defines data structures for rule violations and per-run validation reports.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Severity(Enum):
    """Validation issue severity."""

    ERROR = "ERROR"
    WARNING = "WARNING"


@dataclass
class ValidationIssue:
    """Represents a single rule violation on a unit."""

    unit_id: str
    severity: Severity
    rule: str
    message: str
    line_number: Optional[int] = None
    file_path: Optional[str] = None
    remediation: str = ""

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def __str__(self) -> str:
        """String representation of the issue."""
        location = ""
        if self.file_path:
            location = f" in {self.file_path}"
            if self.line_number:
                location += f":{self.line_number}"
        elif self.line_number:
            location = f" at line {self.line_number}"

        return f"[{self.severity.value}] {self.unit_id} {self.rule}: {self.message}{location}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "severity": self.severity.value,
            "rule": self.rule,
            "message": self.message,
            "line_number": self.line_number,
            "file_path": self.file_path,
            "remediation": self.remediation,
        }


@dataclass
class ValidationReport:
    """Result of validating an ordered list of units."""

    unit_ids: list[str] = field(default_factory=list)
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.is_error]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if not issue.is_error]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    @property
    def blocked_units(self) -> list[str]:
        """The first unit with an ERROR and every unit ordered after it."""
        failing = {issue.unit_id for issue in self.errors}
        for index, unit_id in enumerate(self.unit_ids):
            if unit_id in failing:
                return self.unit_ids[index:]
        return []

    def issues_for(self, unit_id: str) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.unit_id == unit_id]

    def add_unit(self, unit_id: str, issues: list[ValidationIssue]) -> None:
        self.unit_ids.append(unit_id)
        self.issues.extend(issues)

    def merge(self, other: "ValidationReport") -> None:
        """Merge another report into this one."""
        self.unit_ids.extend(
            unit_id for unit_id in other.unit_ids if unit_id not in self.unit_ids
        )
        self.issues.extend(other.issues)

    def get_summary(self) -> str:
        """Get a summary of the validation report."""
        if self.is_valid:
            if self.has_warnings:
                return f"Valid with {self.warning_count} warning(s) across {len(self.unit_ids)} unit(s)"
            return f"Valid ({len(self.unit_ids)} unit(s))"
        return (
            f"Invalid: {self.error_count} error(s), {self.warning_count} warning(s); "
            f"{len(self.blocked_units)} unit(s) blocked"
        )

    def get_error_messages(self) -> list[str]:
        return [str(error) for error in self.errors]

    def get_warning_messages(self) -> list[str]:
        return [str(warning) for warning in self.warnings]

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.is_valid,
            "units": list(self.unit_ids),
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "blocked_units": self.blocked_units,
            "summary": self.get_summary(),
        }
