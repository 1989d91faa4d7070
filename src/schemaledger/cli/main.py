"""Command-line interface for schemaledger."""

import logging
import sys
from pathlib import Path
from typing import Any

import click

from schemaledger.__version__ import __version__
from schemaledger.config import Settings, connect, load_settings
from schemaledger.exceptions import SchemaLedgerError
from schemaledger.models import generate_migration, utc_now
from schemaledger.orchestrator import Migrator
from schemaledger.sources import DOWN_SQL, UP_SQL, FileSystemSource


def _fail(message: Any) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(2)


def _say(ctx: click.Context, message: str) -> None:
    settings: Settings = ctx.obj["settings"]
    if not settings.quiet:
        click.echo(message)


def _migrator(ctx: click.Context) -> Migrator:
    settings: Settings = ctx.obj["settings"]
    backend = connect(settings.url)
    ctx.call_on_close(backend.close)
    return Migrator(
        source=FileSystemSource(settings.src),
        store=backend.store,
        executor=backend.executor,
    )


@click.group()
@click.version_option(version=__version__)
@click.option("--url", help="Database connection URL (default $DATABASE_URL)")
@click.option("--src", help="The folder with migrations (default $DATABASE_SRC)")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Config file (default ./schemaledger.yaml)",
)
@click.option("--quiet", is_flag=True, help="Output only errors")
@click.option("--verbose", is_flag=True, help="Log debug details")
@click.pass_context
def main(
    ctx: click.Context,
    url: str | None,
    src: str | None,
    config_path: Path | None,
    quiet: bool,
    verbose: bool,
) -> None:
    """schemaledger - versioned SQL schema migrations.

    Migrations are folders named {version}_{description} holding up.sql,
    an optional down.sql and an optional options.json. Applied versions
    are recorded in the schema_migrations table.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)

    ctx.ensure_object(dict)
    ctx.obj.setdefault("clock", utc_now)
    try:
        ctx.obj["settings"] = load_settings(config_path, url=url, src=src, quiet=quiet or None)
    except SchemaLedgerError as e:
        _fail(e)


@main.command()
@click.argument("name", nargs=-1, required=True)
@click.pass_context
def new(ctx: click.Context, name: tuple[str, ...]) -> None:
    """Create a new migration folder with empty up.sql and down.sql."""
    settings: Settings = ctx.obj["settings"]
    src = Path(settings.src)
    if not src.is_dir():
        _fail(f"migrations folder {src} does not exist")

    migration = generate_migration("_".join(name), clock=ctx.obj["clock"])
    folder = src / migration.path
    try:
        folder.mkdir(parents=True)
        (folder / UP_SQL).touch()
        (folder / DOWN_SQL).touch()
    except OSError as e:
        _fail(f"cannot create migration {folder}: {e}")

    _say(ctx, f"Created {folder}")


@main.command()
@click.pass_context
def up(ctx: click.Context) -> None:
    """Apply new migrations."""
    try:
        migrator = _migrator(ctx)
        migrations = migrator.unapplied()

        for migration in migrations:
            _say(ctx, f"Applying: {migration.version}...")
            migrator.apply(migration)
    except SchemaLedgerError as e:
        _fail(e)

    if not migrations:
        _say(ctx, "No migrations to apply")


@main.command()
@click.pass_context
def down(ctx: click.Context) -> None:
    """Revert the last applied migration."""
    try:
        migrator = _migrator(ctx)
        migration = migrator.current()

        if migration is None:
            _say(ctx, "No migrations to revert")
            return

        _say(ctx, f"Reverting: {migration.version}...")
        migrator.revert(migration)
    except SchemaLedgerError as e:
        _fail(e)


@main.command()
@click.argument("version", type=int)
@click.pass_context
def to(ctx: click.Context, version: int) -> None:
    """Migrate down to a given VERSION, which stays applied."""
    try:
        migrator = _migrator(ctx)
        migrations = migrator.applied_after(version)

        for migration in reversed(migrations):
            _say(ctx, f"Reverting: {migration.version}...")
            migrator.revert(migration)
    except SchemaLedgerError as e:
        _fail(e)


@main.command()
@click.pass_context
def latest(ctx: click.Context) -> None:
    """Print the latest migration in the source."""
    try:
        migration = _migrator(ctx).latest()
    except SchemaLedgerError as e:
        _fail(e)

    if migration is not None:
        click.echo(migration.version)


@main.command()
@click.pass_context
def current(ctx: click.Context) -> None:
    """Print the latest applied migration."""
    try:
        migration = _migrator(ctx).current()
    except SchemaLedgerError as e:
        _fail(e)

    if migration is not None:
        click.echo(migration.version)


@main.command()
@click.pass_context
def present(ctx: click.Context) -> None:
    """List all present versions."""
    try:
        migrations = _migrator(ctx).present()
    except SchemaLedgerError as e:
        _fail(e)

    click.echo(",".join(str(version) for version in migrations.versions()))


@main.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show migration status.

    Displays the latest and current versions, applied migrations,
    and any pending migrations that need to be run.
    """
    try:
        report = _migrator(ctx).status()
    except SchemaLedgerError as e:
        _fail(e)

    click.echo("Migration Status:")
    click.echo(f"  Latest version: {report['latest_version']}")
    click.echo(f"  Current version: {report['current_version']}")
    click.echo(f"  Total migrations: {report['total_migrations']}")
    click.echo(f"  Applied: {report['applied_count']}")
    click.echo(f"  Pending: {report['pending_count']}")
    click.echo("")

    if report["applied_migrations"]:
        click.echo("Applied migrations:")
        for m in report["applied_migrations"]:
            click.echo(f"  - {m['version']} applied at {m['applied_at']}")
        click.echo("")

    if report["pending_migrations"]:
        click.echo("Pending migrations:")
        for m in report["pending_migrations"]:
            click.echo(f"  - {m['version']}: {m['path']}")
        click.echo("")
        click.echo("Run 'schemaledger up' to apply pending migrations.")
    else:
        click.echo("All migrations applied.")


if __name__ == "__main__":
    main()
