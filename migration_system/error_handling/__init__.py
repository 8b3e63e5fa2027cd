"""
Error Handling

Provides the exception taxonomy shared by discovery, validation, state
tracking and execution.
"""

from .error_types import (
    BackupRequiredError,
    ConfigurationError,
    ConfirmationRequiredError,
    DiscoveryError,
    DriftError,
    ErrorCategory,
    ErrorCodes,
    ErrorContext,
    ErrorMessages,
    ErrorSeverity,
    InvalidTargetError,
    LockContentionError,
    MalformedUnitError,
    MigrationFailedError,
    MigrationSystemError,
    NotRevertibleError,
    StateConflictError,
    ValidationError,
    VerificationWarning,
)
from .retry import create_retry_decorator, is_transient_error

__all__ = [
    "MigrationSystemError",
    "DiscoveryError",
    "MalformedUnitError",
    "ValidationError",
    "DriftError",
    "StateConflictError",
    "BackupRequiredError",
    "MigrationFailedError",
    "NotRevertibleError",
    "ConfirmationRequiredError",
    "InvalidTargetError",
    "LockContentionError",
    "ConfigurationError",
    "VerificationWarning",
    "ErrorContext",
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorCodes",
    "ErrorMessages",
    "create_retry_decorator",
    "is_transient_error",
]
