"""Data models for schemaledger.

This module defines the Migration entity, its execution options, and the
Migrations collection with the set algebra used to reconcile the
available migrations against the applied ledger.
"""

import re
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from pydantic import BaseModel, Field

Clock = Callable[[], datetime]

VERSION_FORMAT = "%Y%m%d%H%M%S"

_name_boundary_re = re.compile(r"([a-z])([A-Z])")
_name_separator_re = re.compile(r"[\s\-]+")


def utc_now() -> datetime:
    """Default clock: the current time in UTC."""
    return datetime.now(timezone.utc)


class MigrationOptions(BaseModel):
    """Execution options read from a migration's options.json.

    Attributes:
        transaction: Statement-grouping mode. When True the script and the
            ledger mutation run as one transaction. When False every
            statement runs on its own, for statements that cannot run
            inside a transaction block.
    """

    transaction: bool = Field(default=True, description="Run the script in one transaction")


class Migration(BaseModel):
    """A versioned schema change with a forward and an optional reverse script.

    Migrations are immutable. Whether a migration has been applied is
    recorded by a Store, never on the instance; ``applied_at`` and
    ``version_tag`` are only populated on copies returned from a ledger.

    Attributes:
        version: Timestamp-derived identifier, e.g. 20170329154959.
        version_tag: Optional boundary label recorded with the ledger entry.
        path: Where the migration was read from. Empty for in-memory migrations.
        up_sql: Forward script.
        down_sql: Reverse script. Empty for irreversible migrations.
        options: Execution options.
        applied_at: When the migration was applied, if known.
    """

    version: int = Field(..., description="Migration version")
    version_tag: str | None = Field(default=None, description="Boundary label")
    path: str = Field(default="", description="Origin of the migration")
    up_sql: bytes = Field(default=b"", description="Forward script")
    down_sql: bytes = Field(default=b"", description="Reverse script")
    options: MigrationOptions = Field(default_factory=MigrationOptions)
    applied_at: datetime | None = Field(default=None, description="When it was applied")

    model_config = {"frozen": True}

    @property
    def reversible(self) -> bool:
        """True when the migration carries a down script."""
        return len(self.down_sql) != 0

    @property
    def persistable(self) -> bool:
        """True when the migration has an origin path."""
        return self.path != ""


def _timestamp(moment: datetime) -> float:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def _sort_key(migration: Migration) -> tuple[bool, float, int]:
    # Entries without an apply time order before any applied entry.
    if migration.applied_at is None:
        return (False, 0.0, migration.version)
    return (True, _timestamp(migration.applied_at), migration.version)


class Migrations(list[Migration]):
    """An ordered collection of migrations keyed by version."""

    def except_(self, migrations: Iterable[Migration] | None) -> "Migrations":
        """Select the given migrations whose version is absent from this set.

        Args:
            migrations: Candidate migrations.

        Returns:
            The candidates not present here, in candidate order.
        """
        current = {migration.version for migration in self}
        return Migrations(m for m in migrations or () if m.version not in current)

    def intersect(self, migrations: Iterable[Migration] | None) -> "Migrations":
        """Select the given migrations whose version is present in this set.

        The apply time and version tag of the matching entry in this set
        are copied onto each result.

        Args:
            migrations: Candidate migrations.

        Returns:
            Enriched copies of the matching candidates, in candidate order.
        """
        current = {migration.version: migration for migration in self}
        intersect = Migrations()
        for migration in migrations or ():
            match = current.get(migration.version)
            if match is None:
                continue
            intersect.append(
                migration.model_copy(
                    update={"applied_at": match.applied_at, "version_tag": match.version_tag}
                )
            )
        return intersect

    def sort(self, *, reverse: bool = False) -> None:  # type: ignore[override]
        """Sort in place by apply time, then version."""
        super().sort(key=_sort_key, reverse=reverse)

    def reverse_sort(self) -> None:
        """Sort in place by apply time, then version, descending."""
        self.sort(reverse=True)

    def current(self) -> Migration | None:
        """Return the last migration in sort order, or None when empty."""
        if not self:
            return None
        return max(self, key=_sort_key)

    def versions(self) -> list[int]:
        """Return the versions in collection order."""
        return [migration.version for migration in self]


def generate_version(clock: Clock = utc_now) -> int:
    """Derive a migration version from the clock."""
    return int(clock().strftime(VERSION_FORMAT))


def generate_migration_path(version: int, name: str) -> str:
    """Build the ``{version}_{name}`` folder name for a migration.

    Example:
        >>> generate_migration_path(20170329154959, "introduceDomainModel")
        '20170329154959_introduce_domain_model'
    """
    name = _name_boundary_re.sub(r"\1_\2", name.strip())
    name = _name_separator_re.sub("_", name)
    return f"{version}_{name.lower()}"


def generate_migration(name: str, clock: Clock = utc_now) -> Migration:
    """Generate a blank migration named after the given description.

    Args:
        name: Human-readable description, e.g. "add users table".
        clock: Source of the current time used for the version.

    Returns:
        A persistable migration with empty scripts and default options.
    """
    version = generate_version(clock)
    return Migration(version=version, path=generate_migration_path(version, name))
