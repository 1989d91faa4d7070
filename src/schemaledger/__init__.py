"""Versioned SQL schema migrations with an applied-migrations ledger.

Migrations live in folders named ``{14-digit-version}_{description}``
holding ``up.sql``, an optional ``down.sql`` and an optional
``options.json``. A Source enumerates them, a Store records which
versions have been applied, and an Executor runs a script and updates
the Store as one unit of work. The Migrator composes the three.

Example usage:
    ```python
    import sqlite3

    from schemaledger import FileSystemSource, Migrator, SQLExecutor, sqlite_store

    db = sqlite3.connect("app.db", isolation_level=None)
    migrator = Migrator(FileSystemSource("database/migrations"), sqlite_store(db), SQLExecutor(db))

    for migration in migrator.unapplied():
        migrator.apply(migration)
    ```
"""

from schemaledger.__version__ import __version__
from schemaledger.exceptions import (
    ConfigError,
    DuplicateVersionError,
    IrreversibleError,
    LedgerError,
    NotFoundError,
    ParseError,
    ReadError,
    SchemaLedgerError,
    ScriptExecutionError,
)
from schemaledger.executors import Executor, SQLExecutor
from schemaledger.models import (
    Migration,
    MigrationOptions,
    Migrations,
    generate_migration,
    utc_now,
)
from schemaledger.orchestrator import Migrator
from schemaledger.sources import (
    AssetSource,
    FileSystemSource,
    PackageSource,
    Source,
    migration_from_bytes,
)
from schemaledger.stores import (
    DatabaseStore,
    JSONFileStore,
    Store,
    mysql_store,
    postgresql_store,
    sqlite_store,
)

__all__ = [
    "AssetSource",
    "ConfigError",
    "DatabaseStore",
    "DuplicateVersionError",
    "Executor",
    "FileSystemSource",
    "IrreversibleError",
    "JSONFileStore",
    "LedgerError",
    "Migration",
    "MigrationOptions",
    "Migrations",
    "Migrator",
    "NotFoundError",
    "PackageSource",
    "ParseError",
    "ReadError",
    "SQLExecutor",
    "SchemaLedgerError",
    "ScriptExecutionError",
    "Source",
    "Store",
    "__version__",
    "generate_migration",
    "migration_from_bytes",
    "mysql_store",
    "postgresql_store",
    "sqlite_store",
    "utc_now",
]
