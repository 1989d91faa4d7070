"""Migration sources.

A Source enumerates every migration known to exist. Each migration lives
in a folder named ``{14-digit-version}_{description}`` holding ``up.sql``
(required), ``down.sql`` (optional) and ``options.json`` (optional).

Sources never cache: every ``collect()`` call re-reads the medium.

Example usage:
    ```python
    from schemaledger.sources import FileSystemSource

    source = FileSystemSource("database/migrations")
    for migration in source.collect():
        print(migration.version, migration.path)
    ```
"""

import logging
import os
import re
from collections.abc import Callable, Iterable
from importlib import resources
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from schemaledger.exceptions import ParseError, ReadError
from schemaledger.models import Migration, MigrationOptions, Migrations

logger = logging.getLogger(__name__)

# Maps a path to raw bytes; raises FileNotFoundError when nothing is there.
Reader = Callable[[str], bytes]

UP_SQL = "up.sql"
DOWN_SQL = "down.sql"
OPTIONS_JSON = "options.json"

_version_re = re.compile(r"^(?P<version>\d{14})_(?P<name>.+)$")


@runtime_checkable
class Source(Protocol):
    """Anything that can enumerate migrations."""

    def collect(self) -> Migrations:
        """Return every available migration, ascending by version."""
        ...


def version_from_path(path: str) -> int:
    """Extract the version from the last segment of a migration path.

    Raises:
        ParseError: If the segment is not ``{14 digits}_{description}``.
    """
    name = os.path.basename(path.rstrip("/\\"))
    match = _version_re.match(name)
    if match is None:
        raise ParseError(f"cannot extract version from {path!r}")
    return int(match.group("version"))


def _read_optional(read: Reader, path: str) -> bytes | None:
    try:
        return read(path)
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ReadError(f"cannot read {path}: {e}") from e


def parse_migration_options(payload: bytes | None) -> MigrationOptions:
    """Parse an options.json payload; a missing payload yields the defaults.

    Raises:
        ParseError: If the payload is not a valid options document.
    """
    if payload is None:
        return MigrationOptions()
    try:
        return MigrationOptions.model_validate_json(payload)
    except ValidationError as e:
        raise ParseError(f"invalid migration options: {e}") from e


def migration_from_bytes(path: str, read: Reader) -> Migration:
    """Build a Migration from a folder path and a byte reader.

    Args:
        path: Migration folder, e.g. "migrations/20170329154959_users".
        read: Function returning the bytes stored at a path. Functions
            like ``lambda p: Path(p).read_bytes()`` fit here.

    Returns:
        The parsed migration.

    Raises:
        ParseError: If the version prefix or options.json is malformed.
        ReadError: If up.sql is missing or any payload cannot be read.
    """
    version = version_from_path(path)

    up_path = os.path.join(path, UP_SQL)
    try:
        up_sql = read(up_path)
    except FileNotFoundError as e:
        raise ReadError(f"migration {path} has no {UP_SQL}") from e
    except OSError as e:
        raise ReadError(f"cannot read {up_path}: {e}") from e

    # Irreversible migrations simply have no down script.
    down_sql = _read_optional(read, os.path.join(path, DOWN_SQL)) or b""
    options = parse_migration_options(_read_optional(read, os.path.join(path, OPTIONS_JSON)))

    return Migration(
        version=version,
        path=path,
        up_sql=up_sql,
        down_sql=down_sql,
        options=options,
    )


def _is_migration_name(name: str) -> bool:
    return not name.startswith((".", "_"))


def _build(paths: Iterable[str], read: Reader) -> Migrations:
    migrations = Migrations()
    seen: dict[int, str] = {}
    for path in paths:
        migration = migration_from_bytes(path, read)
        if migration.version in seen:
            raise ParseError(
                f"version {migration.version} is used by both {seen[migration.version]} and {path}"
            )
        seen[migration.version] = path
        migrations.append(migration)
    migrations.sort()
    return migrations


def _read_file(path: str) -> bytes:
    return Path(path).read_bytes()


class FileSystemSource:
    """Source reading migration folders from a directory.

    Attributes:
        directory: Directory holding one subdirectory per migration.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def collect(self) -> Migrations:
        """Collect every migration folder in the directory.

        Raises:
            ReadError: If the directory cannot be scanned or a script read.
            ParseError: If a folder name or options payload is malformed.
        """
        try:
            entries = sorted(self.directory.iterdir())
        except OSError as e:
            raise ReadError(f"cannot scan migrations directory {self.directory}: {e}") from e

        paths = []
        for entry in entries:
            if not entry.is_dir():
                continue
            if not _is_migration_name(entry.name):
                logger.debug(f"Skipping {entry}")
                continue
            paths.append(str(entry))

        migrations = _build(paths, _read_file)
        logger.debug(f"Collected {len(migrations)} migration(s) from {self.directory}")
        return migrations


class AssetSource:
    """Source reading migrations from embedded assets.

    Attributes:
        root: Asset directory holding one entry per migration.
        asset: Reader returning the bytes of an asset path.
        asset_dir: Function listing the entry names under an asset directory.
    """

    def __init__(
        self,
        root: str,
        asset: Reader,
        asset_dir: Callable[[str], Iterable[str]],
    ) -> None:
        self.root = root
        self.asset = asset
        self.asset_dir = asset_dir

    def collect(self) -> Migrations:
        """Collect every migration under the asset root.

        Raises:
            ReadError: If the asset root cannot be listed or a script read.
            ParseError: If an entry name or options payload is malformed.
        """
        try:
            names = sorted(self.asset_dir(self.root))
        except OSError as e:
            raise ReadError(f"cannot list assets under {self.root}: {e}") from e

        paths = [os.path.join(self.root, name) for name in names if _is_migration_name(name)]
        return _build(paths, self.asset)


class PackageSource(AssetSource):
    """Source reading migrations shipped as package data.

    Example:
        ```python
        source = PackageSource("myapp", "migrations")
        ```
    """

    def __init__(self, package: str, directory: str = "migrations") -> None:
        self.package = package
        super().__init__(directory, self._read_resource, self._list_resources)

    def _resource(self, path: str):
        try:
            resource = resources.files(self.package)
        except ModuleNotFoundError as e:
            raise FileNotFoundError(f"package {self.package} not found") from e
        for part in Path(path).parts:
            resource = resource.joinpath(part)
        return resource

    def _read_resource(self, path: str) -> bytes:
        resource = self._resource(path)
        if not resource.is_file():
            raise FileNotFoundError(path)
        return resource.read_bytes()

    def _list_resources(self, path: str) -> list[str]:
        resource = self._resource(path)
        if not resource.is_dir():
            raise FileNotFoundError(path)
        return [child.name for child in resource.iterdir() if child.is_dir()]
