"""
Tests for the schema migration flow with its tasks patched out.
"""

from unittest.mock import patch

import pytest
from prefect.logging import disable_run_logger

from migration_system.flows import schema_migration_flow

VALID = {"valid": True, "errors": [], "warnings": [], "units": ["1.0-001"]}
INVALID = {"valid": False, "errors": [{"rule": "has-primary-key"}], "warnings": [], "units": ["1.0-001"]}
HEALTHY = {"status": "healthy", "connection": True}


@pytest.fixture
def tasks():
    with patch("migration_system.flows.validate_migrations_task") as validate, patch(
        "migration_system.flows.target_health_check_task"
    ) as health, patch("migration_system.flows.apply_migrations_task") as apply, patch(
        "migration_system.flows.schema_status_task"
    ) as status, disable_run_logger():
        validate.return_value = VALID
        health.return_value = HEALTHY
        apply.return_value = {"succeeded": True, "planned": ["1.0-001"]}
        status.return_value = {"current_version": "1.0-001", "pending": []}
        yield {"validate": validate, "health": health, "apply": apply, "status": status}


class TestSchemaMigrationFlow:
    """Test per-target orchestration."""

    def test_migrates_each_target(self, tasks):
        report = schema_migration_flow.fn(targets=["app_db", "reporting"], environment="staging")

        assert list(report["targets"]) == ["app_db", "reporting"]
        assert report["targets"]["app_db"]["status"]["current_version"] == "1.0-001"
        assert tasks["apply"].call_count == 2
        tasks["apply"].assert_any_call("reporting", "staging", dry_run=False)

    def test_default_target(self, tasks):
        report = schema_migration_flow.fn(dry_run=True)

        assert list(report["targets"]) == ["default"]
        tasks["apply"].assert_called_once_with(None, None, dry_run=True)

    def test_invalid_sources_fail_the_flow(self, tasks):
        tasks["validate"].return_value = INVALID

        with pytest.raises(RuntimeError, match="1 validation error"):
            schema_migration_flow.fn(targets=["app_db"])

        tasks["apply"].assert_not_called()

    def test_invalid_sources_skipped(self, tasks):
        tasks["validate"].side_effect = [INVALID, VALID]

        report = schema_migration_flow.fn(targets=["broken", "app_db"], fail_on_validation_error=False)

        assert report["targets"]["broken"]["skipped"] is True
        assert "run" in report["targets"]["app_db"]
        tasks["apply"].assert_called_once()

    def test_unhealthy_target_stops_the_flow(self, tasks):
        tasks["health"].return_value = {"status": "unhealthy", "error": "connection refused"}

        with pytest.raises(RuntimeError, match="unhealthy"):
            schema_migration_flow.fn(targets=["app_db"])

        tasks["apply"].assert_not_called()
