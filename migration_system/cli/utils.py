"""
CLI Utilities

Utility functions for the command-line interface.
"""

import json
import sys
from typing import Any

import yaml

OUTPUT_FORMATS = ["table", "json", "yaml"]


class CLIUtils:
    """Utility functions for CLI operations."""

    @staticmethod
    def format_json(data: Any, indent: int = 2) -> str:
        """Format data as JSON string."""
        return json.dumps(data, indent=indent, default=str)

    @staticmethod
    def format_yaml(data: Any) -> str:
        """Format data as YAML string."""
        return yaml.safe_dump(
            json.loads(json.dumps(data, default=str)), sort_keys=False, default_flow_style=False
        )

    @staticmethod
    def format_data(data: Any, output_format: str) -> str:
        if output_format == "yaml":
            return CLIUtils.format_yaml(data)
        return CLIUtils.format_json(data)

    @staticmethod
    def print_table(headers: list, rows: list) -> None:
        """Print data in table format."""
        if not rows:
            print("No data to display")
            return

        # Calculate column widths
        widths = [len(str(header)) for header in headers]
        for row in rows:
            for i, cell in enumerate(row):
                if i < len(widths):
                    widths[i] = max(widths[i], len(str(cell)))

        header_row = " | ".join(
            str(headers[i]).ljust(widths[i]) for i in range(len(headers))
        )
        print(header_row)
        print("-" * len(header_row))

        for row in rows:
            data_row = " | ".join(str(row[i]).ljust(widths[i]) for i in range(len(row)))
            print(data_row)

    @staticmethod
    def print_validation_report(report) -> None:
        """Print validation issues grouped by unit."""
        for unit_id in report.unit_ids:
            issues = report.issues_for(unit_id)
            if not issues:
                print(f"✓ {unit_id}: Valid")
                continue
            marker = "✗" if any(issue.is_error for issue in issues) else "!"
            print(f"{marker} {unit_id}:")
            for issue in issues:
                line = f" (line {issue.line_number})" if issue.line_number else ""
                print(f"  - [{issue.severity.value}] {issue.rule}: {issue.message}{line}")
                if issue.remediation and issue.is_error:
                    print(f"    → {issue.remediation}")

    @staticmethod
    def print_error(error) -> None:
        """Print a migration system error with its remediation."""
        code = getattr(error, "error_code", None)
        prefix = f"Error [{code}]" if code else "Error"
        print(f"{prefix}: {error}", file=sys.stderr)
        remediation = getattr(error, "remediation", None)
        if remediation and remediation != "No remediation available":
            print(f"  Remediation: {remediation}", file=sys.stderr)
        result = getattr(error, "result", None)
        if result is not None:
            print(f"  Run: {result.summary()}", file=sys.stderr)

    @staticmethod
    def is_interactive() -> bool:
        return sys.stdin.isatty()

    @staticmethod
    def confirm_action(message: str) -> bool:
        """Ask for user confirmation."""
        response = input(f"{message} (y/N): ").strip().lower()
        return response in ["y", "yes"]
