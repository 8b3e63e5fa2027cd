"""
Pytest configuration and fixtures for migration system tests.

Engine tests run against file-based SQLite targets in a temporary directory,
with an in-memory record of backups instead of real snapshots.
"""

from datetime import UTC, datetime
from pathlib import Path

import pytest

from migration_system.discovery import EmbeddedSource, MigrationDiscovery
from migration_system.execution import (
    BackupCollaborator,
    BackupHandle,
    MigrationEngine,
    TargetDatabase,
)
from migration_system.state import StateTracker

USERS_V1 = """-- Description: Create users table
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    email VARCHAR(100) NOT NULL,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);
"""

PRODUCTS_V1_1 = """CREATE TABLE IF NOT EXISTS products (
    id INTEGER PRIMARY KEY,
    name VARCHAR(200) NOT NULL,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
);
"""

ORDERS_V2 = """CREATE TABLE IF NOT EXISTS orders (
    id INTEGER PRIMARY KEY,
    user_id INTEGER NOT NULL,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
);
"""


def script_files():
    """Three revertible script units: 1.0-001, 1.1-001, 2.0-001."""
    return {
        "ddl/V1.0_001__Create_users_table.sql": USERS_V1,
        "ddl/U1.0_001__Create_users_table.sql": "DROP TABLE IF EXISTS users;\n",
        "ddl/V1.1_001__Create_products_table.sql": PRODUCTS_V1_1,
        "ddl/U1.1_001__Create_products_table.sql": "DROP TABLE IF EXISTS products;\n",
        "ddl/V2.0_001__Create_orders_table.sql": ORDERS_V2,
        "ddl/U2.0_001__Create_orders_table.sql": "DROP TABLE IF EXISTS orders;\n",
    }


class FakeBackup(BackupCollaborator):
    """Writes a marker file per snapshot and records every call."""

    strategy = "fake"

    def __init__(self, backup_dir, fail: bool = False):
        super().__init__(backup_dir)
        self.fail = fail
        self.snapshots = []
        self.restored = []

    def snapshot(self, target_id: str, label: str = "backup") -> BackupHandle:
        if self.fail:
            raise OSError("disk full")
        path = self._backup_path(target_id, label, "db")
        path.write_text("snapshot")
        handle = BackupHandle(
            target_id=target_id,
            location=str(path),
            created_at=datetime.now(UTC),
            strategy=self.strategy,
            size_bytes=path.stat().st_size,
        )
        self.snapshots.append(handle)
        return handle

    def restore(self, handle: BackupHandle) -> None:
        self.restored.append(handle)


@pytest.fixture
def sqlite_url(tmp_path):
    """URL of a fresh file-based SQLite database."""
    return f"sqlite:///{tmp_path / 'target.db'}"


@pytest.fixture
def target(sqlite_url):
    """Target database that is disposed after the test."""
    database = TargetDatabase("test", sqlite_url)
    yield database
    database.dispose()


@pytest.fixture
def fake_backup(tmp_path):
    return FakeBackup(tmp_path / "backups")


@pytest.fixture
def make_engine(target, fake_backup):
    """
    Factory for engines over embedded migration files.

    Returns a callable taking the file mapping; the same target, history
    table and backup collaborator are shared by every engine it builds.
    """
    tracker = StateTracker(target.engine, executed_by="tester@localhost")

    def _make(files, **kwargs):
        kwargs.setdefault("state_tracker", tracker)
        kwargs.setdefault("backup", fake_backup)
        return MigrationEngine(
            MigrationDiscovery(EmbeddedSource(files)),
            target,
            owner="tester",
            **kwargs,
        )

    return _make


@pytest.fixture
def migrations_dir(tmp_path):
    """Script-convention migrations written to disk."""
    return write_files(tmp_path / "migrations", script_files())


def table_names(target) -> set:
    from sqlalchemy import inspect

    return set(inspect(target.engine).get_table_names())


def write_files(root: Path, files: dict) -> Path:
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root
