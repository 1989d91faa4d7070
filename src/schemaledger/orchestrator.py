"""Migrator: reconciles a Source against a Store and drives an Executor.

Example usage:
    ```python
    import sqlite3

    from schemaledger import FileSystemSource, Migrator, SQLExecutor, sqlite_store

    db = sqlite3.connect("app.db", isolation_level=None)
    migrator = Migrator(
        source=FileSystemSource("database/migrations"),
        store=sqlite_store(db),
        executor=SQLExecutor(db),
    )

    for migration in migrator.unapplied():
        migrator.apply(migration)
    ```
"""

import logging
from typing import Any

from schemaledger.exceptions import NotFoundError
from schemaledger.executors import Executor
from schemaledger.models import Migration, Migrations
from schemaledger.sources import Source
from schemaledger.stores import Store

logger = logging.getLogger(__name__)


class Migrator:
    """Stateless façade over one Source, one Store and one Executor.

    Every query re-reads the Source and the Store. Batch operations are
    left to the caller: apply ``unapplied()`` in order, or revert
    ``applied_after()`` newest first, stopping at the first error.

    Attributes:
        source: Where available migrations come from.
        store: Ledger of applied migrations.
        executor: Runs scripts and updates the store.
    """

    def __init__(self, source: Source, store: Store, executor: Executor) -> None:
        self.source = source
        self.store = store
        self.executor = executor

    def present(self) -> Migrations:
        """Return all available migrations, ascending by version."""
        migrations = self.source.collect()
        migrations.sort()
        return migrations

    def unapplied(self) -> Migrations:
        """Return the available migrations missing from the ledger, ascending."""
        applied = self.store.collect()
        available = self.source.collect()

        unapplied = applied.except_(available)
        unapplied.sort()
        return unapplied

    def latest(self) -> Migration | None:
        """Return the highest available migration, or None."""
        return self.source.collect().current()

    def current(self) -> Migration | None:
        """Return the latest applied migration as found in the source.

        Returns None when nothing is applied, and also when the latest
        applied version is no longer available from the source.
        """
        current = self.store.collect().current()
        if current is None:
            return None

        for migration in reversed(self.source.collect()):
            if migration.version == current.version:
                return migration.model_copy(
                    update={"applied_at": current.applied_at, "version_tag": current.version_tag}
                )

        logger.debug(f"Applied migration {current.version} is not in the source")
        return None

    def applied_after(self, version: int) -> Migrations:
        """Return the migrations applied after a version, ascending.

        Entries carry their scripts from the source. Applied versions that
        are no longer in the source are returned without scripts, so
        reverting them raises IrreversibleError instead of skipping them.

        Args:
            version: Boundary version, which itself stays applied.

        Raises:
            NotFoundError: If the version is not among the applied migrations.
        """
        applied_after = Migrations()
        found = False
        for migration in self.store.collect():
            if migration.version == version:
                found = True
                break
            applied_after.append(migration)

        if not found:
            raise NotFoundError(version)

        resolved = applied_after.intersect(self.source.collect())
        resolved.extend(resolved.except_(applied_after))

        resolved.sort()
        return resolved

    def apply(self, migration: Migration) -> None:
        """Apply a migration through the executor."""
        self.executor.up(migration, self.store)

    def revert(self, migration: Migration) -> None:
        """Revert a migration through the executor."""
        self.executor.down(migration, self.store)

    def status(self) -> dict[str, Any]:
        """Get current migration status.

        Returns:
            Dictionary with status information.
        """
        applied = self.store.collect()
        available = self.present()
        pending = applied.except_(available)
        latest = available.current()
        current = self.current()

        return {
            "latest_version": latest.version if latest else None,
            "current_version": current.version if current else None,
            "total_migrations": len(available),
            "applied_count": len(applied),
            "pending_count": len(pending),
            "applied_migrations": [
                {
                    "version": m.version,
                    "applied_at": m.applied_at.isoformat() if m.applied_at else None,
                }
                for m in applied
            ],
            "pending_migrations": [{"version": m.version, "path": m.path} for m in pending],
        }
