"""
Tests for post-run schema verification and the target connection.
"""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from migration_system.discovery import ScriptUnit, UnitKind
from migration_system.execution import SchemaVerifier, TargetDatabase


def ddl_unit(script, declared=None, version="1.0"):
    return ScriptUnit(
        version=version,
        sequence="001",
        description="test",
        kind=UnitKind.DDL,
        up_script=script,
        source_name=f"V{version}_001__test.sql",
        declared_objects=declared or [],
    )


class TestSchemaVerifier:
    """Test presence and absence checks."""

    def test_present_objects_produce_no_warnings(self, target):
        script = (
            "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT);\n"
            "CREATE INDEX idx_users_email ON users(email);\n"
            "CREATE VIEW active_users AS SELECT * FROM users;"
        )
        target.execute_script(script)

        warnings = SchemaVerifier(target).verify_present([ddl_unit(script)])

        assert warnings == []

    def test_missing_object_is_reported(self, target):
        unit = ddl_unit("CREATE TABLE users (id INTEGER PRIMARY KEY);")

        warnings = SchemaVerifier(target).verify_present([unit])

        assert len(warnings) == 1
        assert warnings[0].unit_id == "1.0-001"
        assert warnings[0].object_name == "table:users"

    def test_absent_after_rollback(self, target):
        unit = ddl_unit("CREATE TABLE users (id INTEGER PRIMARY KEY);")
        target.execute_script(unit.up_script)

        assert len(SchemaVerifier(target).verify_absent([unit])) == 1
        target.execute_script("DROP TABLE users;")
        assert SchemaVerifier(target).verify_absent([unit]) == []

    def test_dml_units_expect_nothing(self, target):
        unit = ScriptUnit(
            version="1.0",
            sequence="002",
            description="seed",
            kind=UnitKind.DML,
            up_script="INSERT INTO users VALUES (1);",
            source_name="V1.0_002__seed.sql",
        )

        assert SchemaVerifier(target).verify_present([unit]) == []

    def test_unknown_schema_counts_as_absent(self, target):
        from migration_system.sql import SchemaObject

        unit = ddl_unit("SELECT 1;", declared=[SchemaObject(kind="table", name="t", schema="nowhere")])

        warnings = SchemaVerifier(target).verify_present([unit])

        assert [w.object_name for w in warnings] == ["table:nowhere.t"]


class TestTargetDatabase:
    """Test the target connection wrapper."""

    def test_engine_is_lazy(self, sqlite_url):
        database = TargetDatabase("lazy", sqlite_url)

        assert database._engine is None
        assert database.dialect == "sqlite"
        assert database.engine is not None
        assert database._engine is not None
        database.dispose()
        assert database._engine is None

    def test_display_url_masks_password(self):
        database = TargetDatabase("pg", "postgresql://app:s3cret@db:5432/app")

        assert "s3cret" not in database.display_url

    def test_execute_script_counts_statements(self, target):
        assert target.execute_script("CREATE TABLE a (id INT); CREATE TABLE b (id INT);") == 2
        assert target.object_exists("table", "a")
        assert not target.object_exists("table", "c")

    def test_failing_script_is_atomic(self, target):
        with pytest.raises(OperationalError):
            target.execute_script("CREATE TABLE a (id INT); INSERT INTO missing VALUES (1);")

        assert not target.object_exists("table", "a")

    def test_health_check(self, target):
        health = target.health_check()

        assert health["status"] == "healthy"
        assert health["connection"] is True
        assert health["response_time_ms"] is not None

    def test_health_check_unhealthy(self, target):
        with patch.object(target.engine, "connect", side_effect=OperationalError("SELECT 1", {}, Exception("boom"))):
            health = target.health_check(max_attempts=1)

        assert health["status"] == "unhealthy"
        assert "boom" in health["error"]
