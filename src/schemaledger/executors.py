"""Migration executors.

An Executor applies or reverts one migration's script and updates the
Store in the same unit of work: a failing script leaves no ledger entry
behind, and a failing ledger write undoes the script on transactional
backends.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, Protocol, runtime_checkable

from schemaledger.exceptions import (
    IrreversibleError,
    LedgerError,
    ScriptExecutionError,
)
from schemaledger.models import Clock, Migration, utc_now
from schemaledger.stores import Store

logger = logging.getLogger(__name__)


@runtime_checkable
class Executor(Protocol):
    """Applies and reverts migrations against a Store."""

    def up(self, migration: Migration, store: Store) -> None:
        """Run the forward script and record the migration."""
        ...

    def down(self, migration: Migration, store: Store) -> None:
        """Run the reverse script and remove the migration's record."""
        ...


def split_statements(script: str, backslash_escapes: bool = False) -> list[str]:
    """Split a SQL script into individual statements.

    Semicolons inside quoted strings, quoted identifiers, dollar-quoted
    bodies and comments do not end a statement. Empty statements are
    dropped.

    Args:
        script: SQL text.
        backslash_escapes: Treat ``\\`` as an escape inside quoted strings,
            as MySQL does. Standard SQL strings keep backslashes literal.

    Example:
        >>> split_statements("CREATE TABLE a (x text default ';'); DROP TABLE b;")
        ["CREATE TABLE a (x text default ';')", 'DROP TABLE b']
    """
    statements: list[str] = []
    current: list[str] = []
    i = 0
    length = len(script)

    while i < length:
        char = script[i]

        if char in ("'", '"', "`"):
            end = _quote_end(script, i, backslash_escapes and char != "`")
            current.append(script[i:end])
            i = end
        elif script.startswith("--", i):
            end = script.find("\n", i)
            end = length if end == -1 else end
            current.append(script[i:end])
            i = end
        elif script.startswith("/*", i):
            end = script.find("*/", i + 2)
            end = length if end == -1 else end + 2
            current.append(script[i:end])
            i = end
        elif char == "$":
            tag_end = script.find("$", i + 1)
            tag = script[i : tag_end + 1] if tag_end != -1 else ""
            if tag and (tag == "$$" or tag[1:-1].isidentifier()):
                end = script.find(tag, tag_end + 1)
                end = length if end == -1 else end + len(tag)
                current.append(script[i:end])
                i = end
            else:
                current.append(char)
                i += 1
        elif char == ";":
            statements.append("".join(current))
            current = []
            i += 1
        else:
            current.append(char)
            i += 1

    statements.append("".join(current))
    return [s.strip() for s in statements if _has_code(s)]


def _quote_end(script: str, start: int, backslash_escapes: bool) -> int:
    """Return the index just past the quoted text opened at ``start``."""
    quote = script[start]
    i = start + 1
    while i < len(script):
        char = script[i]
        if backslash_escapes and char == "\\":
            i += 2
        elif char == quote:
            # Doubled quotes escape themselves.
            if not script.startswith(quote, i + 1):
                return i + 1
            i += 2
        else:
            i += 1
    return len(script)


def _has_code(statement: str) -> bool:
    for line in statement.strip().splitlines():
        line = line.strip()
        if line and not line.startswith("--"):
            return True
    return False


class SQLExecutor:
    """Executor running migration scripts over a DB-API 2.0 connection.

    Each ``up``/``down`` call opens and closes its own transaction. When a
    migration's options disable transactions, its statements run one at a
    time and the ledger is updated in a separate short transaction. Drivers
    that open transactions implicitly and expose a boolean ``autocommit``
    (psycopg2) are switched to autocommit for those statements.

    A store with an ``ensure`` method gets it called before the
    transaction opens, so ledger DDL never runs inside it.

    Attributes:
        db: DB-API connection. SQLite connections should be opened with
            ``isolation_level=None`` so ``begin_statement`` controls the
            transaction.
        clock: Source of apply times stamped onto recorded migrations.
        begin_statement: Statement opening a transaction, or None for
            drivers that open one implicitly.
        backslash_escapes: Scripts use backslash escapes in strings (MySQL).
    """

    def __init__(
        self,
        db: Any,
        clock: Clock = utc_now,
        begin_statement: str | None = "BEGIN",
        backslash_escapes: bool = False,
    ) -> None:
        self.db = db
        self.clock = clock
        self.begin_statement = begin_statement
        self.backslash_escapes = backslash_escapes
        self._errors = getattr(db, "Error", Exception)

    def up(self, migration: Migration, store: Store) -> None:
        """Apply a migration and record it in the store.

        Raises:
            ScriptExecutionError: If the up script fails or is not UTF-8.
                Nothing is recorded.
            LedgerError: If the script ran but recording it failed.
        """
        applied = migration.model_copy(update={"applied_at": self.clock()})
        self._execute(migration, "up", migration.up_sql, store, lambda c: store.insert(applied, c))
        logger.info(f"Applied migration {migration.version}")

    def down(self, migration: Migration, store: Store) -> None:
        """Revert a migration and remove it from the store.

        Raises:
            IrreversibleError: If the migration has no down script.
            ScriptExecutionError: If the down script fails. Nothing is removed.
            LedgerError: If the script ran but removing the record failed.
        """
        if not migration.reversible:
            raise IrreversibleError(migration.version)

        self._execute(
            migration, "down", migration.down_sql, store, lambda c: store.remove(migration, c)
        )
        logger.info(f"Reverted migration {migration.version}")

    def _begin(self, cursor: Any) -> None:
        if self.begin_statement:
            cursor.execute(self.begin_statement)

    def _execute(
        self,
        migration: Migration,
        direction: str,
        script: bytes,
        store: Store,
        record: Callable[[Any], None],
    ) -> None:
        try:
            statements = split_statements(script.decode("utf-8"), self.backslash_escapes)
        except UnicodeDecodeError as e:
            raise ScriptExecutionError(migration.version, direction, e) from e

        ensure = getattr(store, "ensure", None)
        if ensure is not None:
            ensure()

        cursor = self.db.cursor()
        try:
            if migration.options.transaction:
                self._run_in_transaction(migration, direction, statements, cursor, record)
            else:
                self._run_statements(migration, direction, statements, cursor)
                self._record(migration, cursor, record, begin=True)
        finally:
            cursor.close()

    def _run_in_transaction(
        self,
        migration: Migration,
        direction: str,
        statements: list[str],
        cursor: Any,
        record: Callable[[Any], None],
    ) -> None:
        try:
            self._begin(cursor)
            for statement in statements:
                cursor.execute(statement)
        except self._errors as e:
            self.db.rollback()
            raise ScriptExecutionError(migration.version, direction, e) from e
        except BaseException:
            self.db.rollback()
            raise

        self._record(migration, cursor, record, begin=False)

    def _run_statements(
        self,
        migration: Migration,
        direction: str,
        statements: list[str],
        cursor: Any,
    ) -> None:
        with self._autocommit():
            for statement in statements:
                try:
                    cursor.execute(statement)
                    self.db.commit()
                except self._errors as e:
                    self.db.rollback()
                    raise ScriptExecutionError(migration.version, direction, e) from e

    @contextmanager
    def _autocommit(self) -> Iterator[None]:
        previous = getattr(self.db, "autocommit", None)
        # PyMySQL's autocommit is a method and sqlite3 is driven by begin_statement.
        if self.begin_statement is not None or not isinstance(previous, bool):
            yield
            return

        self.db.autocommit = True
        try:
            yield
        finally:
            self.db.autocommit = previous

    def _record(
        self,
        migration: Migration,
        cursor: Any,
        record: Callable[[Any], None],
        begin: bool,
    ) -> None:
        try:
            if begin:
                self._begin(cursor)
            record(cursor)
            self.db.commit()
        except LedgerError:
            self.db.rollback()
            raise
        except self._errors as e:
            self.db.rollback()
            raise LedgerError(f"cannot update ledger for migration {migration.version}: {e}") from e
        except BaseException:
            self.db.rollback()
            raise
