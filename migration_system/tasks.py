"""
Prefect tasks wrapping the migration engine so schema changes can run as
steps of a flow.
"""

from datetime import UTC, datetime
from typing import Any, Optional

from prefect import get_run_logger, task

from .config import ConfigManager, MigrationSettings
from .discovery import MigrationDiscovery
from .error_handling import MigrationSystemError
from .execution import MigrationEngine, TargetDatabase
from .validation import UnitValidator


def _load_settings(
    target: Optional[str],
    environment: Optional[str],
    database_url: Optional[str] = None,
    migration_dirs: Optional[list[str]] = None,
    require_database: bool = True,
) -> MigrationSettings:
    config = ConfigManager(target=target, environment=environment)
    overrides = {"database_url": database_url, "migration_dirs": migration_dirs}
    return MigrationSettings.from_config(config, overrides, require_database=require_database)


def _close(engine: MigrationEngine) -> None:
    engine.target.dispose()
    engine.state_tracker.dispose()


@task
def validate_migrations_task(
    target: Optional[str] = None,
    environment: Optional[str] = None,
    migration_dirs: Optional[list[str]] = None,
) -> dict[str, Any]:
    """
    Validate every migration unit for a target without connecting to it.

    Returns:
        ValidationReport as a dictionary
    """
    logger = get_run_logger()

    settings = _load_settings(
        target, environment, migration_dirs=migration_dirs, require_database=False
    )
    discovery = MigrationDiscovery.from_directories(settings.migration_dirs, settings.convention)
    report = UnitValidator(disabled_rules=settings.disabled_rules).validate_all(
        discovery.discover()
    )

    if report.is_valid:
        logger.info(f"Target '{settings.target_id}': {report.get_summary()}")
    else:
        logger.error(f"Target '{settings.target_id}': {report.get_summary()}")
    return report.to_dict()


@task
def target_health_check_task(
    target: Optional[str] = None,
    environment: Optional[str] = None,
    database_url: Optional[str] = None,
) -> dict[str, Any]:
    """
    Check that a target database accepts connections.

    Returns an unhealthy status instead of raising so the calling flow can
    decide what to do.
    """
    logger = get_run_logger()

    try:
        settings = _load_settings(target, environment, database_url=database_url)
    except MigrationSystemError as e:
        logger.error(f"Health check for target '{target}' could not start: {e}")
        return {
            "target_id": target,
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    with TargetDatabase(settings.target_id, settings.database_url) as database:
        health = database.health_check()

    if health["status"] == "healthy":
        logger.info(
            f"Target '{settings.target_id}' is healthy "
            f"(response time: {health.get('response_time_ms')}ms)"
        )
    else:
        logger.error(f"Target '{settings.target_id}' is unhealthy: {health.get('error')}")
    return health


@task
def apply_migrations_task(
    target: Optional[str] = None,
    environment: Optional[str] = None,
    database_url: Optional[str] = None,
    migration_dirs: Optional[list[str]] = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """
    Apply pending migration units to a target.

    Raises:
        MigrationSystemError: When the run fails; ``error.result`` holds the
            partial run result
    """
    logger = get_run_logger()

    settings = _load_settings(target, environment, database_url, migration_dirs)
    engine = MigrationEngine.from_settings(settings)
    try:
        result = engine.apply(dry_run=dry_run)
    finally:
        _close(engine)

    logger.info(result.summary())
    return result.to_dict()


@task
def rollback_migrations_task(
    rollback_target: str,
    target: Optional[str] = None,
    environment: Optional[str] = None,
    database_url: Optional[str] = None,
    confirm: bool = False,
) -> dict[str, Any]:
    """Roll a target back to ``rollback_target`` (unit id, version or "0")."""
    logger = get_run_logger()

    settings = _load_settings(target, environment, database_url)
    engine = MigrationEngine.from_settings(settings)
    try:
        result = engine.rollback(rollback_target, confirm=confirm)
    finally:
        _close(engine)

    logger.info(result.summary())
    return result.to_dict()


@task
def schema_status_task(
    target: Optional[str] = None,
    environment: Optional[str] = None,
    database_url: Optional[str] = None,
    migration_dirs: Optional[list[str]] = None,
) -> dict[str, Any]:
    """Applied and pending units for a target."""
    logger = get_run_logger()

    settings = _load_settings(target, environment, database_url, migration_dirs)
    engine = MigrationEngine.from_settings(settings)
    try:
        report = engine.status()
    finally:
        _close(engine)

    logger.info(
        f"Target '{settings.target_id}' at {report.current_version or 'empty schema'}, "
        f"{len(report.pending)} pending"
    )
    if report.drifted:
        logger.warning(f"Modified since applied: {', '.join(report.drifted)}")
    return report.to_dict()
