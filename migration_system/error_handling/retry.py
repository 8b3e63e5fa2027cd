"""
Retry Policy

Exponential backoff for transient connection failures on read-only database
operations. Failed migration statements are never retried.
"""

from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as SQLTimeoutError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

TRANSIENT_INDICATORS = (
    "connection refused",
    "connection reset",
    "connection timeout",
    "timeout expired",
    "network error",
    "temporary failure",
    "server closed the connection",
    "connection lost",
    "connection pool exhausted",
    "database is starting up",
    "database is shutting down",
    "too many connections",
    "connection aborted",
    "broken pipe",
)


def is_transient_error(exception: Exception) -> bool:
    """
    Determine if an exception represents a transient connection problem.

    OperationalError is only treated as transient when its message says so,
    since SQLite reports "no such table" and similar errors as operational.

    Args:
        exception: The exception to classify

    Returns:
        True if the error is transient and should trigger retry, False otherwise
    """
    if isinstance(exception, (DisconnectionError, SQLTimeoutError)):
        return True

    if isinstance(exception, OperationalError) and exception.connection_invalidated:
        return True

    error_message = str(exception).lower()
    if isinstance(exception, (OperationalError, InterfaceError, ConnectionError)):
        return any(indicator in error_message for indicator in TRANSIENT_INDICATORS)

    return False


def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
    multiplier: float = 2.0,
):
    """
    Create a retry decorator with exponential backoff for read operations.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time between retries in seconds
        max_wait: Maximum wait time between retries in seconds
        multiplier: Exponential backoff multiplier

    Returns:
        Configured tenacity retry decorator
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
        retry=retry_if_exception(is_transient_error),
        reraise=True,
    )
