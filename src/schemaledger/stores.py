"""Applied-migration ledgers.

A Store reads like a Source, returning only the applied migrations
(version and apply-time metadata, never scripts), and records or removes
ledger entries. Every Store lazily creates its backing structure before
any read or write, so it is safe to point one at a fresh database or an
empty directory.

AppliedAfter boundaries are numeric versions for every Store in this
module; ``version_tag`` is carried as metadata only.

Example usage:
    ```python
    import sqlite3

    from schemaledger.stores import sqlite_store

    db = sqlite3.connect("app.db", isolation_level=None)
    store = sqlite_store(db)
    print([m.version for m in store.collect()])
    ```
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field, ValidationError

from schemaledger.exceptions import DuplicateVersionError, LedgerError, ReadError
from schemaledger.models import Clock, Migration, Migrations, utc_now

logger = logging.getLogger(__name__)


@runtime_checkable
class Store(Protocol):
    """A durable ledger of applied migrations."""

    def collect(self) -> Migrations:
        """Return the applied migrations, most recently applied first."""
        ...

    def insert(self, migration: Migration, execer: Any = None) -> None:
        """Record a migration version as applied."""
        ...

    def remove(self, migration: Migration, execer: Any = None) -> None:
        """Delete the applied record of a migration version."""
        ...


@dataclass(frozen=True)
class Dialect:
    """SQL statements for one database backend.

    Attributes:
        name: Backend name used in log messages.
        create_table: Creates the ledger table if missing.
        create_index: Creates the applied_at index if missing, if separate.
        insert: Inserts (version, applied_at).
        remove: Deletes by version.
        select_all: Selects (version, applied_at), most recent first.
        text_timestamps: Bind apply times as ISO text instead of datetimes.
    """

    name: str
    create_table: str
    create_index: str | None
    insert: str
    remove: str
    select_all: str
    text_timestamps: bool = False


POSTGRESQL = Dialect(
    name="postgresql",
    create_table="""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version BIGINT PRIMARY KEY NOT NULL,
            applied_at timestamp without time zone default (now() at time zone 'utc')
        )""",
    create_index="""
        CREATE INDEX IF NOT EXISTS schema_migrations_applied_at
        ON schema_migrations (applied_at)""",
    insert="INSERT INTO schema_migrations (version, applied_at) VALUES (%s, %s)",
    remove="DELETE FROM schema_migrations WHERE version = %s",
    select_all="""
        SELECT version, applied_at
        FROM schema_migrations
        ORDER BY applied_at DESC, version DESC""",
)

# MySQL has no CREATE INDEX IF NOT EXISTS, so the index is declared inline.
MYSQL = Dialect(
    name="mysql",
    create_table="""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version BIGINT PRIMARY KEY NOT NULL,
            applied_at TIMESTAMP NULL DEFAULT CURRENT_TIMESTAMP,
            INDEX schema_migrations_applied_at (applied_at)
        )""",
    create_index=None,
    insert="INSERT INTO schema_migrations (version, applied_at) VALUES (%s, %s)",
    remove="DELETE FROM schema_migrations WHERE version = %s",
    select_all="""
        SELECT version, applied_at
        FROM schema_migrations
        ORDER BY applied_at DESC, version DESC""",
)

SQLITE = Dialect(
    name="sqlite",
    create_table="""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version BIGINT PRIMARY KEY NOT NULL,
            applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )""",
    create_index="""
        CREATE INDEX IF NOT EXISTS schema_migrations_applied_at
        ON schema_migrations (applied_at)""",
    insert="INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
    remove="DELETE FROM schema_migrations WHERE version = ?",
    select_all="""
        SELECT version, applied_at
        FROM schema_migrations
        ORDER BY applied_at DESC, version DESC""",
    text_timestamps=True,
)


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


class DatabaseStore:
    """Store keeping applied versions in a ``schema_migrations`` table.

    Works with any DB-API 2.0 connection. Writes join the caller's
    transaction when a cursor is passed as ``execer``; otherwise the store
    uses its own cursor and commits.

    Attributes:
        db: DB-API connection.
        dialect: Statements for the backend.
        clock: Apply time used when a migration carries none.
    """

    def __init__(self, db: Any, dialect: Dialect, clock: Clock = utc_now) -> None:
        self.db = db
        self.dialect = dialect
        self.clock = clock
        self._errors = getattr(db, "Error", Exception)
        self._integrity_errors = getattr(db, "IntegrityError", ())

    @contextmanager
    def _cursor(self, execer: Any) -> Iterator[Any]:
        if execer is not None:
            yield execer
            return

        cursor = self.db.cursor()
        try:
            yield cursor
            self.db.commit()
        except BaseException:
            self.db.rollback()
            raise
        finally:
            cursor.close()

    def _ensure_schema_table(self, cursor: Any) -> None:
        cursor.execute(self.dialect.create_table)
        if self.dialect.create_index:
            cursor.execute(self.dialect.create_index)

    def ensure(self) -> None:
        """Create the ledger table on the store's own connection and commit.

        Writes that join a caller's transaction skip the DDL, so call this
        before opening one. MySQL commits any open transaction on DDL.

        Raises:
            LedgerError: If the ledger table cannot be created.
        """
        try:
            with self._cursor(None) as cursor:
                self._ensure_schema_table(cursor)
        except self._errors as e:
            raise LedgerError(f"cannot create {self.dialect.name} ledger: {e}") from e

    def _applied_at(self, migration: Migration) -> datetime | str:
        moment = _naive_utc(migration.applied_at or self.clock())
        if self.dialect.text_timestamps:
            return moment.isoformat()
        return moment

    def collect(self) -> Migrations:
        """Collect the applied migrations, most recently applied first.

        Raises:
            ReadError: If the ledger cannot be created or queried.
        """
        try:
            with self._cursor(None) as cursor:
                self._ensure_schema_table(cursor)
                cursor.execute(self.dialect.select_all)
                rows = cursor.fetchall()
        except self._errors as e:
            raise ReadError(f"cannot read {self.dialect.name} ledger: {e}") from e

        return Migrations(Migration(version=row[0], applied_at=row[1]) for row in rows)

    def insert(self, migration: Migration, execer: Any = None) -> None:
        """Record a migration version in the schema_migrations table.

        With an ``execer`` the table must already exist (see ``ensure``).

        Raises:
            DuplicateVersionError: If the version is already recorded.
            LedgerError: If the ledger cannot be written.
        """
        try:
            with self._cursor(execer) as cursor:
                if execer is None:
                    self._ensure_schema_table(cursor)
                cursor.execute(
                    self.dialect.insert, (migration.version, self._applied_at(migration))
                )
        except self._integrity_errors as e:
            raise DuplicateVersionError(migration.version) from e
        except self._errors as e:
            raise LedgerError(f"cannot record migration {migration.version}: {e}") from e

    def remove(self, migration: Migration, execer: Any = None) -> None:
        """Remove a migration version from the schema_migrations table.

        Removing a version that is not recorded is not an error.

        Raises:
            LedgerError: If the ledger cannot be written.
        """
        try:
            with self._cursor(execer) as cursor:
                if execer is None:
                    self._ensure_schema_table(cursor)
                cursor.execute(self.dialect.remove, (migration.version,))
        except self._errors as e:
            raise LedgerError(f"cannot remove migration {migration.version}: {e}") from e


def postgresql_store(db: Any, clock: Clock = utc_now) -> DatabaseStore:
    """Create a Store for PostgreSQL."""
    return DatabaseStore(db, POSTGRESQL, clock)


def mysql_store(db: Any, clock: Clock = utc_now) -> DatabaseStore:
    """Create a Store for MySQL."""
    return DatabaseStore(db, MYSQL, clock)


def sqlite_store(db: Any, clock: Clock = utc_now) -> DatabaseStore:
    """Create a Store for SQLite."""
    return DatabaseStore(db, SQLITE, clock)


class LedgerEntry(BaseModel):
    """Record of an applied migration in a JSON ledger.

    Attributes:
        version: Migration version that was applied.
        applied_at: When the migration was applied.
        version_tag: Optional boundary label.
    """

    version: int = Field(..., description="Migration version")
    applied_at: datetime = Field(..., description="When migration was applied")
    version_tag: str | None = Field(default=None, description="Boundary label")


class LedgerState(BaseModel):
    """Contents of a JSON ledger file."""

    applied_migrations: list[LedgerEntry] = Field(
        default_factory=list, description="List of applied migrations"
    )


class JSONFileStore:
    """Store keeping the ledger in a JSON file.

    The file is not transactional, so ``execer`` arguments are accepted
    and ignored. Suitable for tests, tooling and single-process setups.

    Attributes:
        ledger_path: Path to the ledger JSON file.
        clock: Apply time used when a migration carries none.

    Example:
        ```python
        store = JSONFileStore(Path(".schemaledger/ledger.json"))
        store.insert(migration)
        print(store.collect().versions())
        ```
    """

    def __init__(self, ledger_path: Path, clock: Clock = utc_now) -> None:
        self.ledger_path = Path(ledger_path)
        self.clock = clock

    def ensure(self) -> None:
        """Create the ledger directory ahead of the first write."""
        try:
            self._ensure_ledger_dir()
        except OSError as e:
            raise LedgerError(f"cannot create ledger directory for {self.ledger_path}: {e}") from e

    def _ensure_ledger_dir(self) -> None:
        """Create the ledger directory with owner-only permissions if needed."""
        ledger_dir = self.ledger_path.parent
        if not ledger_dir.exists():
            ledger_dir.mkdir(parents=True, mode=0o700)

    def _load_state(self) -> LedgerState:
        self._ensure_ledger_dir()
        if not self.ledger_path.exists():
            return LedgerState()

        try:
            content = self.ledger_path.read_text()
            return LedgerState.model_validate(json.loads(content))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ReadError(f"cannot read ledger {self.ledger_path}: {e}") from e

    def _save_state(self, state: LedgerState) -> None:
        try:
            self.ledger_path.write_text(state.model_dump_json(indent=2))
            self.ledger_path.chmod(0o600)
        except OSError as e:
            raise LedgerError(f"cannot write ledger {self.ledger_path}: {e}") from e

    def collect(self) -> Migrations:
        """Collect the applied migrations, most recently applied first."""
        state = self._load_state()
        migrations = Migrations(
            Migration(version=e.version, applied_at=e.applied_at, version_tag=e.version_tag)
            for e in state.applied_migrations
        )
        migrations.reverse_sort()
        return migrations

    def insert(self, migration: Migration, execer: Any = None) -> None:
        """Record a migration version in the ledger file.

        Raises:
            DuplicateVersionError: If the version is already recorded.
        """
        state = self._load_state()
        if any(e.version == migration.version for e in state.applied_migrations):
            raise DuplicateVersionError(migration.version)

        state.applied_migrations.append(
            LedgerEntry(
                version=migration.version,
                applied_at=migration.applied_at or self.clock(),
                version_tag=migration.version_tag,
            )
        )
        self._save_state(state)
        logger.debug(f"Recorded {migration.version} in {self.ledger_path}")

    def remove(self, migration: Migration, execer: Any = None) -> None:
        """Remove a migration version from the ledger file if present."""
        state = self._load_state()
        remaining = [e for e in state.applied_migrations if e.version != migration.version]
        if len(remaining) == len(state.applied_migrations):
            return

        state.applied_migrations = remaining
        self._save_state(state)
        logger.debug(f"Removed {migration.version} from {self.ledger_path}")
