"""
Tests for the Prefect tasks, called through ``.fn`` outside a flow run.
"""

import pytest
from prefect.logging import disable_run_logger

from migration_system.error_handling import ConfirmationRequiredError
from migration_system.tasks import (
    apply_migrations_task,
    rollback_migrations_task,
    schema_status_task,
    target_health_check_task,
    validate_migrations_task,
)


@pytest.fixture(autouse=True)
def task_environment(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MIGRATION_USE_PREFECT_BLOCKS", "false")
    monkeypatch.setenv("MIGRATION_ENVIRONMENT", "tasktest")
    monkeypatch.setenv("TASKTEST_GLOBAL_BACKUP_DIR", str(tmp_path / "backups"))
    with disable_run_logger():
        yield


class TestValidationTask:
    """Test offline validation."""

    def test_valid_sources(self, migrations_dir):
        report = validate_migrations_task.fn(migration_dirs=[str(migrations_dir)])

        assert report["valid"] is True
        assert len(report["units"]) == 3


class TestHealthCheckTask:
    """Test connectivity checks."""

    def test_healthy(self, sqlite_url):
        health = target_health_check_task.fn(target="app", database_url=sqlite_url)

        assert health["status"] == "healthy"

    def test_unconfigured_target_is_unhealthy(self):
        health = target_health_check_task.fn(target="nowhere")

        assert health["status"] == "unhealthy"
        assert "Database URL not configured" in health["error"]


class TestRunTasks:
    """Test apply, status and rollback."""

    def test_apply_status_rollback(self, sqlite_url, migrations_dir, monkeypatch):
        dirs = [str(migrations_dir)]

        planned = apply_migrations_task.fn(database_url=sqlite_url, migration_dirs=dirs, dry_run=True)
        assert planned["planned"] == ["1.0-001", "1.1-001", "2.0-001"]

        applied = apply_migrations_task.fn(database_url=sqlite_url, migration_dirs=dirs)
        assert applied["succeeded"] is True
        assert len(applied["applied"]) == 3

        status = schema_status_task.fn(database_url=sqlite_url, migration_dirs=dirs)
        assert status["current_version"] == "2.0-001"
        assert status["pending"] == []

        monkeypatch.setenv("TASKTEST_GLOBAL_MIGRATION_DIRS", dirs[0])
        rolled_back = rollback_migrations_task.fn("1.0", database_url=sqlite_url, confirm=True)

        assert [r["unit_id"] for r in rolled_back["rolled_back"]] == ["2.0-001", "1.1-001"]

    def test_rollback_requires_confirmation(self, sqlite_url, migrations_dir, monkeypatch):
        monkeypatch.setenv("TASKTEST_GLOBAL_MIGRATION_DIRS", str(migrations_dir))
        apply_migrations_task.fn(database_url=sqlite_url)

        with pytest.raises(ConfirmationRequiredError):
            rollback_migrations_task.fn("0", database_url=sqlite_url)
