"""
Unit Validator

Runs the rule set against migration units and aggregates the results.
"""

import logging
from typing import Iterable, Optional

from ..discovery.metadata import MigrationUnit
from ..error_handling import ConfigurationError, ErrorCodes, ErrorContext
from ..sql import iter_statements
from .rules import DEFAULT_RULES, ValidationRule
from .validation_result import ValidationIssue, ValidationReport

logger = logging.getLogger(__name__)


class UnitValidator:
    """Validates migration units for structure and safety."""

    def __init__(
        self,
        disabled_rules: Optional[Iterable[str]] = None,
        extra_rules: Optional[Iterable[ValidationRule]] = None,
    ):
        self.rules: dict[str, ValidationRule] = {}
        for rule_class in DEFAULT_RULES:
            self.register_rule(rule_class())
        for rule in extra_rules or []:
            self.register_rule(rule)

        self.disabled_rules = set()
        for name in disabled_rules or []:
            self.disable(name)

    @property
    def rule_names(self) -> list[str]:
        return list(self.rules)

    @property
    def enabled_rules(self) -> list[ValidationRule]:
        return [rule for name, rule in self.rules.items() if name not in self.disabled_rules]

    def register_rule(self, rule: ValidationRule) -> None:
        """Add a rule, replacing any existing rule with the same name."""
        if not rule.name:
            raise ValueError(f"Rule {rule.__class__.__name__} has no name")
        self.rules[rule.name] = rule

    def disable(self, name: str) -> None:
        name = name.strip()
        if name not in self.rules:
            raise ConfigurationError(
                f"Unknown validation rule '{name}'. Known rules: {', '.join(self.rules)}",
                error_code=ErrorCodes.CONFIG_INVALID_VALUE,
                context=ErrorContext(additional_info={"rule": name}),
            )
        self.disabled_rules.add(name)

    def enable(self, name: str) -> None:
        self.disabled_rules.discard(name)

    def validate(self, unit: MigrationUnit) -> list[ValidationIssue]:
        """Check a single unit. Depends only on the unit's content."""
        statements = iter_statements(unit.up_script)
        issues = []
        for rule in self.enabled_rules:
            issues.extend(rule.check(unit, statements))
        return issues

    def validate_all(self, units: Iterable[MigrationUnit]) -> ValidationReport:
        """Validate units in order and collect a report."""
        report = ValidationReport()
        for unit in units:
            issues = self.validate(unit)
            for issue in issues:
                if issue.is_error:
                    logger.error(str(issue))
                else:
                    logger.warning(str(issue))
            report.add_unit(unit.unit_id, issues)

        logger.info(f"Validation: {report.get_summary()}")
        return report
