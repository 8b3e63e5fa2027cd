"""
Tests for migration unit discovery: identity parsing, ordering, script and
changeset conventions, and duplicate detection.
"""

import pytest
from conftest import script_files, write_files

from migration_system.discovery import (
    ChangesetUnit,
    DirectorySource,
    EmbeddedSource,
    MigrationDiscovery,
    ScriptUnit,
    UnitKind,
    compute_checksum,
    parse_unit_id,
    parse_version,
    unit_key,
)
from migration_system.error_handling import (
    DiscoveryError,
    ErrorCodes,
    MalformedUnitError,
)

CHANGELOG = """--liquibase formatted sql

--changeset alice:1.0-001
--comment: Create customers table
--expects: table:customers
CREATE TABLE IF NOT EXISTS customers (id INTEGER PRIMARY KEY);
--rollback DROP TABLE IF EXISTS customers;

--changeset bob:1.0-002
--comment: Seed customers
INSERT INTO customers (id) VALUES (1);
--rollback empty

--changeset alice:1.1-001
CREATE INDEX IF NOT EXISTS idx_customers_id ON customers(id);
"""


def discover(files, convention="auto"):
    return MigrationDiscovery(EmbeddedSource(files, convention)).discover()


class TestVersionOrdering:
    """Test version and sequence parsing."""

    def test_numeric_component_ordering(self):
        assert parse_version("1.10") > parse_version("1.2")
        assert parse_version("2") > parse_version("1.99")

    def test_trailing_zeros_are_equal(self):
        assert parse_version("1") == parse_version("1.0") == parse_version("1.0.0")

    def test_sequence_breaks_ties(self):
        assert unit_key("1.0", "002") > unit_key("1.0", "001")
        assert unit_key("1.0", "10") > unit_key("1.0", "9")

    @pytest.mark.parametrize("version", ["", "1.a", "v1.0", "1..0", "-1"])
    def test_invalid_versions(self, version):
        with pytest.raises(ValueError):
            parse_version(version)

    def test_parse_unit_id(self):
        assert parse_unit_id("1.0-001") == ("1.0", "001")
        with pytest.raises(ValueError):
            parse_unit_id("1.0")

    def test_checksum_ignores_line_endings(self):
        assert compute_checksum("SELECT 1;\r\nSELECT 2;") == compute_checksum("SELECT 1;\nSELECT 2;")
        assert compute_checksum("SELECT 1;") != compute_checksum("SELECT 2;")


class TestScriptConvention:
    """Test V/U script discovery."""

    def test_discovers_units_in_key_order(self):
        units = discover(script_files())

        assert [u.unit_id for u in units] == ["1.0-001", "1.1-001", "2.0-001"]
        assert all(isinstance(u, ScriptUnit) for u in units)

    def test_undo_scripts_pair_with_units(self):
        units = discover(script_files())

        assert all(u.is_revertible for u in units)
        assert units[0].down_script == "DROP TABLE IF EXISTS users;\n"

    def test_unit_without_undo_is_not_revertible(self):
        units = discover({"V1.0__Create_t.sql": "CREATE TABLE t (id INTEGER PRIMARY KEY);"})

        assert units[0].unit_id == "1.0-001"
        assert not units[0].is_revertible

    def test_description_from_header_or_name(self):
        units = discover(script_files())

        assert units[0].description == "Create users table"
        assert units[1].description == "Create products table"

    def test_kind_from_directory_hint(self):
        units = discover(
            {
                "ddl/V1.0_001__Create_t.sql": "CREATE TABLE t (id INTEGER PRIMARY KEY);",
                "dml/V1.0_002__Seed_t.sql": "INSERT INTO t VALUES (1);",
            }
        )

        assert [u.kind for u in units] == [UnitKind.DDL, UnitKind.DML]

    def test_kind_inferred_from_statements(self):
        units = discover(
            {
                "V1.0_001__Create_t.sql": "CREATE TABLE t (id INTEGER PRIMARY KEY);",
                "V1.0_002__Seed_t.sql": "INSERT INTO t VALUES (1);",
            }
        )

        assert [u.kind for u in units] == [UnitKind.DDL, UnitKind.DML]

    def test_orphan_undo_script(self):
        with pytest.raises(MalformedUnitError) as exc_info:
            discover({"U1.0__Create_t.sql": "DROP TABLE t;"})

        assert exc_info.value.error_code == ErrorCodes.ORPHAN_UNDO_SCRIPT

    def test_malformed_script_name(self):
        with pytest.raises(MalformedUnitError):
            discover({"V1.x__Broken.sql": "SELECT 1;"}, convention="script")

    def test_duplicate_key_across_directories(self):
        """ddl and dml units sharing a version and sequence collide."""
        with pytest.raises(DiscoveryError) as exc_info:
            discover(
                {
                    "ddl/V1.0__Create_users_table.sql": "CREATE TABLE users (id INTEGER PRIMARY KEY);",
                    "dml/V1.0__Insert_sample_users.sql": "INSERT INTO users VALUES (1);",
                }
            )

        assert exc_info.value.error_code == ErrorCodes.DUPLICATE_UNIT

    def test_expects_header(self):
        units = discover(
            {
                "V1.0__Create_t.sql": "-- Expects: table:public.t, index:idx_t\nCREATE TABLE t (id INTEGER PRIMARY KEY);",
            }
        )

        assert [str(obj) for obj in units[0].expected_objects] == ["table:public.t", "index:idx_t"]


class TestChangesetConvention:
    """Test formatted changelog and single-changeset discovery."""

    def test_formatted_changelog(self):
        units = discover({"db.changelog.sql": CHANGELOG})

        assert [u.unit_id for u in units] == ["1.0-001", "1.0-002", "1.1-001"]
        assert all(isinstance(u, ChangesetUnit) for u in units)
        assert [u.author for u in units] == ["alice", "bob", "alice"]
        assert units[0].description == "Create customers table"

    def test_changeset_rollback_blocks(self):
        units = discover({"db.changelog.sql": CHANGELOG})

        assert units[0].down_script == "DROP TABLE IF EXISTS customers;\n"
        assert units[1].down_script == ""
        assert units[1].is_revertible
        assert units[2].down_script is None
        assert not units[2].is_revertible

    def test_rollback_lines_are_not_part_of_the_body(self):
        units = discover({"db.changelog.sql": CHANGELOG})

        assert "DROP TABLE" not in units[0].up_script
        assert "--comment" not in units[0].up_script
        assert [str(obj) for obj in units[0].expected_objects] == ["table:customers"]

    def test_single_changeset_file(self):
        units = discover(
            {
                "ddl/1.2-001-create-orders.sql": (
                    "-- Author: carol\n"
                    "CREATE TABLE IF NOT EXISTS orders (id INTEGER PRIMARY KEY);\n"
                    "--rollback DROP TABLE IF EXISTS orders;\n"
                )
            }
        )

        unit = units[0]
        assert unit.unit_id == "1.2-001"
        assert unit.author == "carol"
        assert unit.description == "create orders"
        assert unit.kind is UnitKind.DDL
        assert unit.down_script == "DROP TABLE IF EXISTS orders;\n"

    def test_invalid_changeset_id(self):
        with pytest.raises(MalformedUnitError):
            discover({"db.changelog.sql": "--liquibase formatted sql\n--changeset alice:create-users\nSELECT 1;\n"})

    def test_changelog_without_changesets(self):
        with pytest.raises(MalformedUnitError):
            discover({"db.changelog.sql": "--liquibase formatted sql\nSELECT 1;\n"})


class TestDirectorySource:
    """Test reading units from disk."""

    def test_reads_nested_directories(self, migrations_dir):
        units = MigrationDiscovery.from_directories([str(migrations_dir)]).discover()

        assert [u.unit_id for u in units] == ["1.0-001", "1.1-001", "2.0-001"]
        assert units[0].source_path.endswith("V1.0_001__Create_users_table.sql")
        assert units[0].kind is UnitKind.DDL

    def test_numeric_version_order_on_disk(self, tmp_path):
        root = write_files(
            tmp_path / "m",
            {
                "V1.10_001__Create_b.sql": "SELECT 2;",
                "V1.2_002__Create_c.sql": "SELECT 3;",
                "V1.2_001__Create_a.sql": "SELECT 1;",
            },
        )
        discovery = MigrationDiscovery.from_directories([str(root)])

        assert [u.unit_id for u in discovery.discover()] == ["1.2-001", "1.2-002", "1.10-001"]
        assert [u.unit_id for u in discovery.catalog()] == ["1.2-001", "1.2-002", "1.10-001"]

    def test_mixed_sources(self, tmp_path):
        scripts = write_files(tmp_path / "scripts", {"V2.0__Create_t.sql": "CREATE TABLE t (id INTEGER PRIMARY KEY);"})
        changelog = write_files(tmp_path / "changelog", {"db.changelog.sql": CHANGELOG})

        units = MigrationDiscovery.from_directories([str(scripts), str(changelog)]).discover()

        assert [u.unit_id for u in units] == ["1.0-001", "1.0-002", "1.1-001", "2.0-001"]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(DiscoveryError) as exc_info:
            MigrationDiscovery(DirectorySource(tmp_path / "nope")).discover()

        assert exc_info.value.error_code == ErrorCodes.SOURCE_NOT_FOUND

    def test_ignores_non_sql_files(self, tmp_path):
        root = write_files(tmp_path / "m", {"README.md": "notes", "V1.0__Create_t.sql": "SELECT 1;"})

        units = MigrationDiscovery.from_directories([str(root)]).discover()

        assert len(units) == 1

    def test_catalog_rereads_sources(self, tmp_path):
        root = write_files(tmp_path / "m", {"V1.0__Create_t.sql": "SELECT 1;"})
        catalog = MigrationDiscovery.from_directories([str(root)]).catalog()
        assert len(catalog) == 1

        write_files(root, {"V1.1__Create_u.sql": "SELECT 2;"})

        assert len(catalog) == 2
        assert catalog.get("1.1-001").description == "Create u"
        assert catalog.get("9.9-001") is None
