"""
Validation Module

Rule-based validation of migration units before execution.
"""

from .rules import DEFAULT_RULES, RESERVED_KEYWORDS, ValidationRule
from .unit_validator import UnitValidator
from .validation_result import Severity, ValidationIssue, ValidationReport

__all__ = [
    "UnitValidator",
    "ValidationRule",
    "DEFAULT_RULES",
    "RESERVED_KEYWORDS",
    "Severity",
    "ValidationIssue",
    "ValidationReport",
]
