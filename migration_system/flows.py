"""
Schema migration flow.

Validates, health-checks and migrates one or more targets as a Prefect flow
run so schema changes can be scheduled and observed like any other workload.
"""

from typing import Optional

from prefect import flow, get_run_logger

from .tasks import (
    apply_migrations_task,
    schema_status_task,
    target_health_check_task,
    validate_migrations_task,
)


@flow(
    name="Schema Migration",
    description="Validate and apply pending schema migrations to each target",
)
def schema_migration_flow(
    targets: Optional[list[str]] = None,
    environment: Optional[str] = None,
    dry_run: bool = False,
    fail_on_validation_error: bool = True,
):
    """
    Migrate each target in turn.

    Targets are processed sequentially; a failing target stops the flow so
    later targets never run against an unexpected predecessor state.

    Args:
        targets: Migration target names (defaults to the default target)
        environment: Environment name, detected from the environment if None
        dry_run: Plan only, execute nothing
        fail_on_validation_error: Raise when a target's sources are invalid
    """
    logger = get_run_logger()

    if not targets:
        targets = [None]

    report = {"environment": environment, "dry_run": dry_run, "targets": {}}

    for target in targets:
        name = target or "default"
        logger.info(f"Migrating target '{name}'")

        validation = validate_migrations_task(target, environment)
        if not validation["valid"]:
            message = (
                f"Target '{name}' has {len(validation['errors'])} validation error(s)"
            )
            if fail_on_validation_error:
                logger.error(message)
                raise RuntimeError(message)
            logger.warning(f"{message}; skipping")
            report["targets"][name] = {"validation": validation, "skipped": True}
            continue

        health = target_health_check_task(target, environment)
        if health["status"] != "healthy":
            message = f"Target '{name}' is unhealthy: {health.get('error')}"
            logger.error(message)
            raise RuntimeError(message)

        run = apply_migrations_task(target, environment, dry_run=dry_run)
        status = schema_status_task(target, environment)
        report["targets"][name] = {
            "validation": validation,
            "health": health,
            "run": run,
            "status": status,
        }

    logger.info(
        f"Schema migration complete for {len(report['targets'])} target(s)"
        f"{' (dry run)' if dry_run else ''}"
    )
    return report


if __name__ == "__main__":
    schema_migration_flow()
