"""
Error Types and Exceptions

Defines custom exception types for the migration system with detailed
error information and remediation guidance.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""

    DISCOVERY = "discovery"
    VALIDATION = "validation"
    STATE = "state"
    BACKUP = "backup"
    EXECUTION = "execution"
    ROLLBACK = "rollback"
    LOCKING = "locking"
    CONFIGURATION = "configuration"


@dataclass
class ErrorContext:
    """Additional context information for errors."""

    unit_id: Optional[str] = None
    target_id: Optional[str] = None
    environment: Optional[str] = None
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    operation: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class MigrationSystemError(Exception):
    """Base exception for migration system errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.remediation = remediation or ErrorMessages.get_remediation(error_code)
        self.cause = cause
        # Partial run result attached by the engine when a run aborts
        self.result = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "context": {
                "unit_id": self.context.unit_id,
                "target_id": self.context.target_id,
                "environment": self.context.environment,
                "file_path": self.context.file_path,
                "line_number": self.context.line_number,
                "operation": self.context.operation,
                "additional_info": self.context.additional_info,
            },
            "remediation": self.remediation,
            "cause": str(self.cause) if self.cause else None,
        }


class DiscoveryError(MigrationSystemError):
    """Errors raised while enumerating migration units."""

    def __init__(
        self,
        message: str,
        error_code: str = "DISCOVERY_ERROR",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.DISCOVERY,
            severity=ErrorSeverity.HIGH,
            context=context,
            remediation=remediation,
            cause=cause,
        )


class MalformedUnitError(DiscoveryError):
    """A unit whose name or header does not encode a version and sequence."""

    def __init__(
        self,
        message: str,
        error_code: str = "MALFORMED_UNIT",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            context=context,
            remediation=remediation,
            cause=cause,
        )


class ValidationError(MigrationSystemError):
    """ERROR-severity rule violations found before execution."""

    def __init__(
        self,
        message: str,
        error_code: str = "VALIDATION_FAILED",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
        cause: Optional[Exception] = None,
        report=None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.HIGH,
            context=context,
            remediation=remediation,
            cause=cause,
        )
        self.report = report


class DriftError(MigrationSystemError):
    """Checksum mismatch on a previously applied unit."""

    def __init__(
        self,
        message: str,
        drifted: Optional[List[str]] = None,
        error_code: str = "CHECKSUM_DRIFT",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.CRITICAL,
            context=context,
            remediation=remediation,
        )
        self.drifted = drifted or []


class StateConflictError(MigrationSystemError):
    """An append would contradict the recorded history."""

    def __init__(
        self,
        message: str,
        error_code: str = "ALREADY_APPLIED",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.STATE,
            severity=ErrorSeverity.HIGH,
            context=context,
            remediation=remediation,
        )


class BackupRequiredError(MigrationSystemError):
    """No valid backup was produced before a destructive step."""

    def __init__(
        self,
        message: str,
        error_code: str = "BACKUP_REQUIRED",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.BACKUP,
            severity=ErrorSeverity.CRITICAL,
            context=context,
            remediation=remediation,
            cause=cause,
        )


class MigrationFailedError(MigrationSystemError):
    """A unit's script raised an error while executing."""

    def __init__(
        self,
        message: str,
        unit_id: Optional[str] = None,
        error_code: str = "UNIT_EXECUTION_FAILED",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        context = context or ErrorContext(unit_id=unit_id)
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.EXECUTION,
            severity=ErrorSeverity.CRITICAL,
            context=context,
            remediation=remediation,
            cause=cause,
        )
        self.unit_id = unit_id


class NotRevertibleError(MigrationSystemError):
    """A unit selected for rollback has no down script."""

    def __init__(
        self,
        message: str,
        unit_id: Optional[str] = None,
        error_code: str = "NOT_REVERTIBLE",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
    ):
        context = context or ErrorContext(unit_id=unit_id)
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.ROLLBACK,
            severity=ErrorSeverity.HIGH,
            context=context,
            remediation=remediation,
        )
        self.unit_id = unit_id


class ConfirmationRequiredError(MigrationSystemError):
    """A rollback or restore was requested without explicit confirmation."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIRMATION_REQUIRED",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.ROLLBACK,
            severity=ErrorSeverity.MEDIUM,
            context=context,
            remediation=remediation,
        )


class InvalidTargetError(MigrationSystemError):
    """Rollback target is neither a known version nor a known unit id."""

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_ROLLBACK_TARGET",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.ROLLBACK,
            severity=ErrorSeverity.MEDIUM,
            context=context,
            remediation=remediation,
        )


class LockContentionError(MigrationSystemError):
    """Another run holds the migration lock for this target."""

    def __init__(
        self,
        message: str,
        holder: Optional[str] = None,
        error_code: str = "LOCK_CONTENTION",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.LOCKING,
            severity=ErrorSeverity.HIGH,
            context=context,
            remediation=remediation,
            cause=cause,
        )
        self.holder = holder


class ConfigurationError(MigrationSystemError):
    """Errors related to configuration issues."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIGURATION_ERROR",
        context: Optional[ErrorContext] = None,
        remediation: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.HIGH,
            context=context,
            remediation=remediation,
            cause=cause,
        )


class VerificationWarning(Warning):
    """Post-condition mismatch after an apply or rollback. Never fatal."""

    def __init__(self, message: str, unit_id: Optional[str] = None, object_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.unit_id = unit_id
        self.object_name = object_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "unit_id": self.unit_id,
            "object": self.object_name,
        }


# Predefined error codes and messages
class ErrorCodes:
    """Common error codes and their default messages."""

    # Discovery Errors
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"
    DUPLICATE_UNIT = "DUPLICATE_UNIT"
    MALFORMED_UNIT = "MALFORMED_UNIT"
    ORPHAN_UNDO_SCRIPT = "ORPHAN_UNDO_SCRIPT"

    # Validation Errors
    VALIDATION_FAILED = "VALIDATION_FAILED"

    # State Errors
    CHECKSUM_DRIFT = "CHECKSUM_DRIFT"
    ALREADY_APPLIED = "ALREADY_APPLIED"
    STATE_UNAVAILABLE = "STATE_UNAVAILABLE"

    # Backup Errors
    BACKUP_REQUIRED = "BACKUP_REQUIRED"
    BACKUP_FAILED = "BACKUP_FAILED"
    RESTORE_FAILED = "RESTORE_FAILED"

    # Execution Errors
    UNIT_EXECUTION_FAILED = "UNIT_EXECUTION_FAILED"
    DOWN_SCRIPT_FAILED = "DOWN_SCRIPT_FAILED"

    # Rollback Errors
    NOT_REVERTIBLE = "NOT_REVERTIBLE"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    INVALID_ROLLBACK_TARGET = "INVALID_ROLLBACK_TARGET"

    # Locking Errors
    LOCK_CONTENTION = "LOCK_CONTENTION"

    # Configuration Errors
    CONFIG_MISSING_REQUIRED_FIELD = "CONFIG_MISSING_REQUIRED_FIELD"
    CONFIG_INVALID_VALUE = "CONFIG_INVALID_VALUE"


class ErrorMessages:
    """Default error messages and remediation steps."""

    MESSAGES = {
        ErrorCodes.SOURCE_NOT_FOUND: {
            "message": "Migration source directory not found",
            "remediation": "Check the migration directory path in the target configuration",
        },
        ErrorCodes.DUPLICATE_UNIT: {
            "message": "Two migration units share the same version and sequence",
            "remediation": "Renumber one of the units so every (version, sequence) is unique",
        },
        ErrorCodes.MALFORMED_UNIT: {
            "message": "Migration unit name does not encode a version and sequence",
            "remediation": "Rename the file to V{version}__{description}.sql or use a {version}-{sequence} changeset id",
        },
        ErrorCodes.VALIDATION_FAILED: {
            "message": "Migration units failed validation",
            "remediation": "Fix the ERROR issues reported by 'validate' and rerun",
        },
        ErrorCodes.CHECKSUM_DRIFT: {
            "message": "An applied migration unit was modified after it was applied",
            "remediation": "Restore the original unit content and add a new unit for the change",
        },
        ErrorCodes.BACKUP_REQUIRED: {
            "message": "A fresh backup is required before mutating the schema",
            "remediation": "Check backup directory permissions and backup tool availability",
        },
        ErrorCodes.UNIT_EXECUTION_FAILED: {
            "message": "A migration unit failed while executing",
            "remediation": "Review the failing unit, fix the schema conflict, then rerun apply or roll back",
        },
        ErrorCodes.NOT_REVERTIBLE: {
            "message": "A migration unit has no down script",
            "remediation": "Add a down script for the unit or choose a later rollback target",
        },
        ErrorCodes.LOCK_CONTENTION: {
            "message": "Another migration run holds the lock for this target",
            "remediation": "Wait for the other run to finish, or run 'release-lock --confirm' if it crashed",
        },
        ErrorCodes.CONFIRMATION_REQUIRED: {
            "message": "Destructive operation requires explicit confirmation",
            "remediation": "Pass --confirm (or confirm=True) to proceed",
        },
    }

    @classmethod
    def get_message(cls, error_code: str) -> str:
        """Get default message for error code."""
        return cls.MESSAGES.get(error_code, {}).get("message", "Unknown error")

    @classmethod
    def get_remediation(cls, error_code: str) -> str:
        """Get default remediation for error code."""
        return cls.MESSAGES.get(error_code, {}).get(
            "remediation", "No remediation available"
        )
