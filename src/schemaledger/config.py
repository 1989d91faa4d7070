"""Configuration and backend wiring.

Settings resolve in this order, later entries winning: defaults, the
YAML config file, environment variables, explicit overrides (the CLI
options).

Config file (``schemaledger.yaml``):
    ```yaml
    url: sqlite:///var/app.db
    src: database/migrations
    quiet: false
    ```
"""

import logging
import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlsplit

import yaml
from pydantic import BaseModel, Field, ValidationError

from schemaledger.exceptions import ConfigError
from schemaledger.executors import SQLExecutor
from schemaledger.stores import DatabaseStore, mysql_store, postgresql_store, sqlite_store

logger = logging.getLogger(__name__)

CONFIG_FILE = "schemaledger.yaml"
DEFAULT_SRC = "database/migrations"

# Environment variable -> settings field
ENVIRONMENT = {
    "DATABASE_URL": "url",
    "DATABASE_SRC": "src",
}


class Settings(BaseModel):
    """Resolved settings for the command surface.

    Attributes:
        url: Database connection URL, e.g. ``sqlite:///app.db``.
        src: Directory holding the migration folders.
        quiet: Only report errors.
    """

    url: str | None = Field(default=None, description="Database connection URL")
    src: str = Field(default=DEFAULT_SRC, description="Migrations directory")
    quiet: bool = Field(default=False, description="Only report errors")


def _load_config_file(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot load config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return data


def load_settings(config_path: Path | None = None, **overrides: Any) -> Settings:
    """Resolve settings from the config file, environment and overrides.

    Args:
        config_path: Explicit config file. Without one, ``schemaledger.yaml``
            in the working directory is used when present.
        **overrides: Values that win over every other layer. None values
            are ignored.

    Raises:
        ConfigError: If the config file is unreadable or invalid.
    """
    data: dict[str, Any] = {}

    if config_path is None:
        default = Path.cwd() / CONFIG_FILE
        if default.exists():
            config_path = default
    if config_path is not None:
        data.update(_load_config_file(Path(config_path)))
        logger.debug(f"Loaded config from {config_path}")

    for variable, field in ENVIRONMENT.items():
        value = os.environ.get(variable)
        if value:
            data[field] = value

    data.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid settings: {e}") from e


@dataclass
class Backend:
    """An open database connection with its matching store and executor."""

    db: Any
    store: DatabaseStore
    executor: SQLExecutor

    def close(self) -> None:
        self.db.close()


def _connect_sqlite(url: str) -> Backend:
    parts = urlsplit(url)
    database = unquote(parts.netloc + parts.path)
    if not database:
        raise ConfigError(f"no database path in {url}")

    db = sqlite3.connect(database, isolation_level=None)
    return Backend(db, sqlite_store(db), SQLExecutor(db))


def _connect_postgresql(url: str) -> Backend:
    import psycopg2

    db = psycopg2.connect(url)
    return Backend(db, postgresql_store(db), SQLExecutor(db, begin_statement=None))


def _connect_mysql(url: str) -> Backend:
    import pymysql

    parts = urlsplit(url)
    db = pymysql.connect(
        host=parts.hostname or "localhost",
        port=parts.port or 3306,
        user=unquote(parts.username or ""),
        password=unquote(parts.password or ""),
        database=parts.path.lstrip("/"),
    )
    return Backend(
        db, mysql_store(db), SQLExecutor(db, begin_statement=None, backslash_escapes=True)
    )


_CONNECTORS = {
    "sqlite": _connect_sqlite,
    "sqlite3": _connect_sqlite,
    "postgres": _connect_postgresql,
    "postgresql": _connect_postgresql,
    "mysql": _connect_mysql,
}


def connect(url: str | None) -> Backend:
    """Open a backend for a database URL.

    PostgreSQL needs the ``postgres`` extra (psycopg2) and MySQL the
    ``mysql`` extra (PyMySQL).

    Raises:
        ConfigError: If the URL is missing, unsupported, or its driver is
            not installed.
    """
    if not url:
        raise ConfigError("no database URL given (set --url or DATABASE_URL)")

    scheme = urlsplit(url).scheme
    connector = _CONNECTORS.get(scheme)
    if connector is None:
        raise ConfigError(f"unsupported database driver {scheme!r}")

    try:
        return connector(url)
    except ImportError as e:
        raise ConfigError(f"driver for {scheme!r} is not installed: {e}") from e
    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(f"cannot connect to {scheme} database: {e}") from e
