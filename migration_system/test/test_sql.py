"""
Tests for SQL text helpers.
"""

import pytest

from migration_system.sql import (
    SchemaObject,
    created_objects,
    created_tables,
    is_ddl,
    iter_statements,
    parse_header,
    split_statements,
    strip_comments,
)


class TestStatementSplitting:
    """Test splitting scripts into statements."""

    def test_basic_split(self):
        assert split_statements("SELECT 1; SELECT 2;") == ["SELECT 1", "SELECT 2"]

    def test_semicolon_inside_string(self):
        statements = split_statements("INSERT INTO t VALUES ('a;b'); SELECT 1;")

        assert statements == ["INSERT INTO t VALUES ('a;b')", "SELECT 1"]

    def test_escaped_quote(self):
        statements = split_statements("INSERT INTO t VALUES ('it''s; fine');")

        assert statements == ["INSERT INTO t VALUES ('it''s; fine')"]

    def test_comments_removed(self):
        script = "-- header; with semicolon\nSELECT 1; /* block; comment */ SELECT 2;"

        assert split_statements(script) == ["SELECT 1", "SELECT 2"]

    def test_dollar_quoted_body(self):
        script = (
            "CREATE FUNCTION f() RETURNS trigger AS $$\n"
            "BEGIN NEW.updated_at = now(); RETURN NEW; END;\n"
            "$$ LANGUAGE plpgsql;\n"
            "SELECT 1;"
        )

        statements = split_statements(script)

        assert len(statements) == 2
        assert statements[0].endswith("LANGUAGE plpgsql")

    def test_trailing_statement_without_semicolon(self):
        assert split_statements("SELECT 1;\nSELECT 2") == ["SELECT 1", "SELECT 2"]

    def test_empty_script(self):
        assert split_statements("-- only a comment\n\n") == []

    def test_statement_line_numbers(self):
        script = "-- header\n\nCREATE TABLE a (id INT);\n\n/* note\nspanning */\nCREATE TABLE b (id INT);"

        lines = [statement.line for statement in iter_statements(script)]

        assert lines == [3, 7]

    def test_strip_comments_keeps_strings(self):
        stripped = strip_comments("SELECT '-- not a comment' -- real comment\n")

        assert "'-- not a comment'" in stripped
        assert "real comment" not in stripped


class TestHeaders:
    """Test leading header comments."""

    def test_parse_header(self):
        header = parse_header("-- Create users\n-- Version: 1.0\n-- Description: Users table\n\nCREATE TABLE users ();\n-- Author: late")

        assert header == {"version": "1.0", "description": "Users table"}

    def test_first_value_wins(self):
        assert parse_header("-- Author: a\n-- Author: b\n") == {"author": "a"}


class TestCreatedObjects:
    """Test schema object extraction."""

    def test_created_tables(self):
        statements = iter_statements(
            'CREATE TABLE IF NOT EXISTS public.users (id INT PRIMARY KEY);\nCREATE TABLE "Orders" (id INT);'
        )

        tables = created_tables(statements)

        assert [(t.schema, t.name, t.if_not_exists) for t in tables] == [
            ("public", "users", True),
            (None, "Orders", False),
        ]
        assert tables[0].body == "id INT PRIMARY KEY"
        assert not tables[0].from_query

    def test_table_from_query_has_no_body(self):
        statements = iter_statements(
            "CREATE TABLE totals AS SELECT coalesce(n, 0) FROM counts;\n"
            "CREATE TABLE pairs (a, b) AS VALUES (1, 2);"
        )

        tables = created_tables(statements)

        assert [t.from_query for t in tables] == [True, True]
        assert [t.body for t in tables] == ["", ""]

    def test_created_objects(self):
        statements = iter_statements(
            "CREATE TABLE users (id INT);\n"
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_id ON users(id);\n"
            "CREATE OR REPLACE VIEW active_users AS SELECT * FROM users;\n"
            "INSERT INTO users VALUES (1);"
        )

        assert [str(obj) for obj in created_objects(statements)] == [
            "table:users",
            "index:idx_users_id",
            "view:active_users",
        ]

    def test_is_ddl(self):
        assert is_ddl(iter_statements("ALTER TABLE t ADD COLUMN c INT;"))
        assert not is_ddl(iter_statements("UPDATE t SET c = 1;"))

    @pytest.mark.parametrize("declaration", ["column:users.id", "table:", "users"])
    def test_invalid_schema_object(self, declaration):
        with pytest.raises(ValueError):
            SchemaObject.parse(declaration)
