"""Shared pytest fixtures for schemaledger tests.

This module provides migration folders on disk, in-memory Source, Store
and Executor doubles, and SQLite connections.
"""

import sqlite3
from collections.abc import Callable, Generator, Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from schemaledger.exceptions import DuplicateVersionError
from schemaledger.models import Migration, Migrations

# =============================================================================
# Migration Folders
# =============================================================================

V1 = 20170329154959
V2 = 20170511172647
V3 = 20180905150724
V4 = 20180920181906

USERS_UP = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL DEFAULT 'anonymous; unknown'
);
"""

USERS_DOWN = "DROP TABLE users;"


def write_migration(
    root: Path,
    name: str,
    up: str | None = "",
    down: str | None = None,
    options: str | None = None,
) -> Path:
    """Write a migration folder; None skips the file."""
    folder = root / name
    folder.mkdir(parents=True)
    if up is not None:
        (folder / "up.sql").write_text(up)
    if down is not None:
        (folder / "down.sql").write_text(down)
    if options is not None:
        (folder / "options.json").write_text(options)
    return folder


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    """Create a migrations directory with four migrations.

    - V1 creates the users table and is reversible.
    - V2 is irreversible (no down.sql).
    - V3 runs outside a transaction.
    - V4 has a broken up script.
    """
    root = tmp_path / "migrations"
    root.mkdir()
    write_migration(root, f"{V1}_introduce_domain_model", up=USERS_UP, down=USERS_DOWN)
    write_migration(
        root,
        f"{V2}_irreversible_migration",
        up="INSERT INTO users (name) VALUES ('first');",
    )
    write_migration(
        root,
        f"{V3}_concurrent_migration",
        up="CREATE INDEX users_name ON users (name);",
        down="DROP INDEX users_name;",
        options='{"transaction": false}',
    )
    write_migration(
        root,
        f"{V4}_migration_with_an_error",
        up="CREATE TABLE broken (id INTEGER PRIMARY KEY); SELEKT 1;",
        down="ALTER TABLE missing_table DROP COLUMN nothing;",
    )
    return root


@pytest.fixture
def empty_migrations_dir(tmp_path: Path) -> Path:
    """Create an empty migrations directory."""
    root = tmp_path / "no_migrations"
    root.mkdir()
    return root


# =============================================================================
# In-memory Collaborators
# =============================================================================


class MemorySource:
    """Source returning a fixed list of migrations."""

    def __init__(self, migrations: Iterable[Migration] = ()) -> None:
        self.migrations = list(migrations)
        self.collect_calls = 0

    def collect(self) -> Migrations:
        self.collect_calls += 1
        return Migrations(self.migrations)


class MemoryStore(MemorySource):
    """Store keeping applied migrations in a list, most recent first."""

    def __init__(self, migrations: Iterable[Migration] = ()) -> None:
        super().__init__(migrations)
        self.execers: list[Any] = []

    def insert(self, migration: Migration, execer: Any = None) -> None:
        if any(m.version == migration.version for m in self.migrations):
            raise DuplicateVersionError(migration.version)
        self.execers.append(execer)
        self.migrations.insert(0, Migration(version=migration.version, applied_at=migration.applied_at))

    def remove(self, migration: Migration, execer: Any = None) -> None:
        self.execers.append(execer)
        self.migrations = [m for m in self.migrations if m.version != migration.version]


class RecordingExecutor:
    """Executor recording calls and delegating to optional callables."""

    def __init__(
        self,
        up: Callable[[Migration, Any], None] | None = None,
        down: Callable[[Migration, Any], None] | None = None,
    ) -> None:
        self._up = up
        self._down = down
        self.calls: list[tuple[str, int]] = []

    def up(self, migration: Migration, store: Any) -> None:
        self.calls.append(("up", migration.version))
        if self._up:
            self._up(migration, store)

    def down(self, migration: Migration, store: Any) -> None:
        self.calls.append(("down", migration.version))
        if self._down:
            self._down(migration, store)


class RecordingConnection:
    """DB-API connection logging statements and commits instead of running them.

    Each executed statement is logged with the connection's autocommit
    state at that moment. A statement containing ``fail_on`` raises.
    """

    Error = sqlite3.Error
    IntegrityError = sqlite3.IntegrityError

    def __init__(self, autocommit: Any = False, fail_on: str | None = None) -> None:
        self.autocommit = autocommit
        self.fail_on = fail_on
        self.log: list[Any] = []

    def cursor(self) -> "RecordingCursor":
        return RecordingCursor(self)

    def commit(self) -> None:
        self.log.append("COMMIT")

    def rollback(self) -> None:
        self.log.append("ROLLBACK")


class RecordingCursor:
    """Cursor for RecordingConnection."""

    def __init__(self, connection: RecordingConnection) -> None:
        self.connection = connection

    def execute(self, statement: str, params: Any = None) -> None:
        if self.connection.fail_on and self.connection.fail_on in statement:
            raise sqlite3.OperationalError(f"cannot run {statement}")
        self.connection.log.append((statement, self.connection.autocommit))

    def close(self) -> None:
        pass


@pytest.fixture
def recording_db() -> RecordingConnection:
    """A DB-API connection that only logs what it is asked to do."""
    return RecordingConnection()


@pytest.fixture
def make_source() -> Callable[..., MemorySource]:
    """Factory for in-memory sources."""
    return MemorySource


@pytest.fixture
def make_store() -> Callable[..., MemoryStore]:
    """Factory for in-memory stores."""
    return MemoryStore


@pytest.fixture
def make_executor() -> Callable[..., RecordingExecutor]:
    """Factory for recording executors."""
    return RecordingExecutor


@pytest.fixture
def versions() -> tuple[int, int, int, int]:
    """The four versions written by the migrations_dir fixture."""
    return (V1, V2, V3, V4)


# =============================================================================
# Clock and Database
# =============================================================================


@pytest.fixture
def fixed_now() -> datetime:
    """A fixed point in time."""
    return datetime(2024, 3, 5, 7, 9, 11, tzinfo=timezone.utc)


@pytest.fixture
def fixed_clock(fixed_now: datetime) -> Callable[[], datetime]:
    """A clock that always returns fixed_now."""
    return lambda: fixed_now


@pytest.fixture
def db(tmp_path: Path) -> Generator[sqlite3.Connection, None, None]:
    """Create a SQLite connection in autocommit mode."""
    connection = sqlite3.connect(tmp_path / "test.db", isolation_level=None)
    yield connection
    connection.close()


def table_exists(connection: sqlite3.Connection, name: str) -> bool:
    """Check whether a table exists in a SQLite database."""
    row = connection.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone()
    return row is not None


@pytest.fixture
def has_table(db: sqlite3.Connection) -> Callable[[str], bool]:
    """Check whether a table exists in the test database."""
    return lambda name: table_exists(db, name)
