"""Error taxonomy for schemaledger.

Every error raised by the library derives from SchemaLedgerError, so
callers can catch the whole family at the command surface.
"""


class SchemaLedgerError(Exception):
    """Base class for all schemaledger errors."""


class ConfigError(SchemaLedgerError):
    """Configuration could not be loaded or names an unsupported backend."""


class ReadError(SchemaLedgerError):
    """A migration medium or ledger could not be read."""


class ParseError(SchemaLedgerError):
    """A version prefix or options payload is malformed."""


class NotFoundError(SchemaLedgerError):
    """A version is not among the applied migrations."""

    def __init__(self, version: int) -> None:
        super().__init__(f"version {version} not found among applied migrations")
        self.version = version


class IrreversibleError(SchemaLedgerError):
    """A revert was requested for a migration without a down script."""

    def __init__(self, version: int) -> None:
        super().__init__(f"migration {version} has no down script")
        self.version = version


class ScriptExecutionError(SchemaLedgerError):
    """The migration script itself failed; nothing was recorded."""

    def __init__(self, version: int, direction: str, cause: BaseException) -> None:
        super().__init__(f"{direction} script of migration {version} failed: {cause}")
        self.version = version
        self.direction = direction


class LedgerError(SchemaLedgerError):
    """Recording or removing a ledger entry failed."""


class DuplicateVersionError(LedgerError):
    """The ledger already holds an entry for this version."""

    def __init__(self, version: int) -> None:
        super().__init__(f"version {version} is already recorded as applied")
        self.version = version
