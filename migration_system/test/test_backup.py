"""
Tests for backup collaborators and the backup directory manager.
"""

import subprocess
from datetime import UTC, datetime
from unittest.mock import patch

import pytest
from sqlalchemy import text

from migration_system.error_handling import BackupRequiredError, ConfigurationError, ErrorCodes
from migration_system.execution import (
    BackupHandle,
    BackupManager,
    PgDumpBackup,
    SQLiteFileBackup,
    TargetDatabase,
    create_backup_collaborator,
)


def row_count(target, table):
    with target.engine.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()


class TestCreateBackupCollaborator:
    """Test strategy selection."""

    def test_auto_sqlite(self, target, tmp_path):
        backup = create_backup_collaborator(target, tmp_path / "backups")

        assert isinstance(backup, SQLiteFileBackup)
        assert backup.database_path.name == "target.db"

    def test_auto_postgres(self, tmp_path):
        target = TargetDatabase("pg", "postgresql://app:secret@db:5432/app")

        assert isinstance(create_backup_collaborator(target, tmp_path), PgDumpBackup)

    def test_in_memory_sqlite_cannot_be_backed_up(self, tmp_path):
        target = TargetDatabase("mem", "sqlite://")

        with pytest.raises(ConfigurationError):
            create_backup_collaborator(target, tmp_path)

    def test_unknown_strategy(self, target, tmp_path):
        with pytest.raises(ConfigurationError):
            create_backup_collaborator(target, tmp_path, strategy="tape")


class TestSQLiteFileBackup:
    """Test file copy snapshots against a real SQLite database."""

    def test_snapshot_and_restore(self, target, tmp_path):
        target.execute_script("CREATE TABLE t (id INTEGER PRIMARY KEY); INSERT INTO t VALUES (1);")
        backup = create_backup_collaborator(target, tmp_path / "backups")

        handle = backup.snapshot("test")
        target.execute_script("INSERT INTO t VALUES (2);")
        assert row_count(target, "t") == 2

        backup.restore(handle)

        assert handle.is_valid()
        assert handle.strategy == "sqlite-file"
        assert row_count(target, "t") == 1

    def test_rollback_label(self, target, tmp_path):
        target.execute_script("CREATE TABLE t (id INTEGER PRIMARY KEY);")
        backup = create_backup_collaborator(target, tmp_path / "backups")

        handle = backup.snapshot("test", label="rollback_backup")

        assert "rollback_backup_test_" in handle.location

    def test_missing_database_file(self, tmp_path):
        backup = SQLiteFileBackup(tmp_path / "missing.db", tmp_path / "backups")

        with pytest.raises(BackupRequiredError) as exc_info:
            backup.snapshot("test")

        assert exc_info.value.error_code == ErrorCodes.BACKUP_FAILED

    def test_restore_missing_snapshot(self, tmp_path):
        backup = SQLiteFileBackup(tmp_path / "db.db", tmp_path / "backups")
        handle = BackupHandle("test", str(tmp_path / "gone.db"), datetime.now(UTC), "sqlite-file")

        with pytest.raises(BackupRequiredError) as exc_info:
            backup.restore(handle)

        assert exc_info.value.error_code == ErrorCodes.RESTORE_FAILED


class TestPgDumpBackup:
    """Test pg_dump/psql invocation without a server."""

    @patch("migration_system.execution.backup.subprocess.run")
    def test_snapshot_invokes_pg_dump(self, mock_run, tmp_path):
        def fake_dump(command, **kwargs):
            path = command[command.index("--file") + 1]
            with open(path, "w") as f:
                f.write("-- dump")
            return subprocess.CompletedProcess(command, 0)

        mock_run.side_effect = fake_dump
        backup = PgDumpBackup("postgresql+psycopg2://app:s3cret@db:5432/app", tmp_path)

        handle = backup.snapshot("app_db")

        command = mock_run.call_args.args[0]
        env = mock_run.call_args.kwargs["env"]
        assert command[0] == "pg_dump"
        assert "--clean" in command
        assert "s3cret" not in " ".join(command)
        assert command[command.index("--dbname") + 1].startswith("postgresql://app@db:5432/app")
        assert env["PGPASSWORD"] == "s3cret"
        assert handle.strategy == "pg-dump"
        assert handle.location.endswith(".sql")
        assert handle.is_valid()

    @patch("migration_system.execution.backup.subprocess.run")
    def test_restore_uses_single_transaction(self, mock_run, tmp_path):
        backup = PgDumpBackup("postgresql://app@db/app", tmp_path)
        handle = BackupHandle("app_db", str(tmp_path / "dump.sql"), datetime.now(UTC), "pg-dump")

        backup.restore(handle)

        command = mock_run.call_args.args[0]
        assert command[0] == "psql"
        assert "--single-transaction" in command
        assert "ON_ERROR_STOP=1" in command

    @patch("migration_system.execution.backup.subprocess.run")
    def test_password_stays_off_the_command_line(self, mock_run, tmp_path):
        backup = PgDumpBackup("postgresql+psycopg2://app:s3cret@db:5432/app?sslmode=require", tmp_path)
        handle = BackupHandle("app_db", str(tmp_path / "dump.sql"), datetime.now(UTC), "pg-dump")

        backup.restore(handle)

        command = mock_run.call_args.args[0]
        assert "s3cret" not in " ".join(command)
        assert "postgresql://app@db:5432/app?sslmode=require" in command
        assert mock_run.call_args.kwargs["env"]["PGPASSWORD"] == "s3cret"

    @patch("migration_system.execution.backup.subprocess.run")
    def test_pg_dump_failure(self, mock_run, tmp_path):
        mock_run.side_effect = subprocess.CalledProcessError(1, ["pg_dump"], stderr="permission denied")
        backup = PgDumpBackup("postgresql://app@db/app", tmp_path)

        with pytest.raises(BackupRequiredError) as exc_info:
            backup.snapshot("app_db")

        assert "permission denied" in str(exc_info.value)

    @patch("migration_system.execution.backup.subprocess.run")
    def test_pg_dump_not_installed(self, mock_run, tmp_path):
        mock_run.side_effect = FileNotFoundError("pg_dump")
        backup = PgDumpBackup("postgresql://app@db/app", tmp_path)

        with pytest.raises(BackupRequiredError) as exc_info:
            backup.snapshot("app_db")

        assert "not installed" in str(exc_info.value)


class TestBackupManager:
    """Test listing and resolving snapshots."""

    def test_list_newest_first(self, tmp_path):
        backup_dir = tmp_path / "backups"
        backup_dir.mkdir()
        (backup_dir / "backup_app_20260101_120000_000000.db").write_text("a")
        (backup_dir / "rollback_backup_app_20260102_120000_000000.db").write_text("b")
        (backup_dir / "backup_other_20260103_120000_000000.sql").write_text("c")
        (backup_dir / "notes.txt").write_text("ignored")

        manager = BackupManager(backup_dir)

        assert [h.target_id for h in manager.list()] == ["other", "app", "app"]
        app = manager.list("app")
        assert [h.location.split("/")[-1][:15] for h in app] == ["rollback_backup", "backup_app_2026"]
        assert manager.latest("other").strategy == "pg-dump"

    def test_get_by_name(self, tmp_path):
        (tmp_path / "backup_app_20260101_120000_000000.db").write_text("a")

        handle = BackupManager(tmp_path).get("backup_app_20260101_120000_000000.db")

        assert handle.target_id == "app"
        assert handle.created_at.year == 2026

    def test_get_unknown(self, tmp_path):
        with pytest.raises(BackupRequiredError):
            BackupManager(tmp_path).get("backup_app_20260101_120000_000000.db")

    def test_missing_directory(self, tmp_path):
        assert BackupManager(tmp_path / "none").list() == []
        assert BackupManager(tmp_path / "none").latest() is None
