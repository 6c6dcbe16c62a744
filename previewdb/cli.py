"""Command-line interface for the database lifecycle tooling."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Sequence, TypeVar

import click
from pydantic import ValidationError

from . import __version__
from .build_cache import BuildDecision, JsonFileHashCache
from .cleanup import Selection, cleanup as run_cleanup
from .config import AppConfig, app_database_url, is_ci, load_config, root_database_url
from .connections import AsyncpgAdminClient, parse_connection_string
from .envfile import restore_env_database, update_env_database_url
from .errors import LifecycleError, UsageError
from .inventory import list_databases
from .models import ConnectionDescriptor, DatabaseInfo
from .preview import PREVIEW_CONTEXT, DeployNotification, handle_deploy_notification, prepare_preview_database
from .snapshots import SnapshotStore, build_store_uri
from .spawn import personal_database_name, resolve_identity, spawn as run_spawn

T = TypeVar("T")

RULE = "─" * 80


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("previewdb").setLevel(logging.DEBUG if verbose else logging.INFO)


@contextmanager
def _reporting_errors() -> Iterator[None]:
    try:
        yield
    except UsageError as exc:
        raise click.UsageError(str(exc)) from exc
    except LifecycleError as exc:
        raise click.ClickException(str(exc)) from exc


def _run(
    config: AppConfig,
    action: Callable[[AsyncpgAdminClient, ConnectionDescriptor], Awaitable[T]],
) -> T:
    """Open the admin connection, run ``action`` and close the connection."""

    admin = parse_connection_string(root_database_url()).with_database(config.admin_database)
    server = parse_connection_string(app_database_url())

    async def _main() -> T:
        async with AsyncpgAdminClient(admin, connect_timeout=config.connect_timeout) as client:
            return await action(client, server)

    return asyncio.run(_main())


def _format_age(created: datetime, now: datetime | None = None) -> str:
    days = ((now or datetime.now(tz=timezone.utc)) - created).days
    if days <= 0:
        return "today"
    if days == 1:
        return "yesterday"
    if days < 7:
        return f"{days} days ago"
    if days < 30:
        return f"{days // 7} weeks ago"
    return created.date().isoformat()


def _describe(info: DatabaseInfo) -> str:
    line = f"  {info.name:<40}"
    metadata = info.metadata
    if metadata is None:
        return line.rstrip()
    created = metadata.created_datetime()
    if created is not None:
        line += f"  ({_format_age(created)})"
    if metadata.created_by:
        line += f"  by {metadata.created_by}"
    if metadata.pr_number:
        line += f"  PR #{metadata.pr_number}"
    if metadata.branch:
        line += f"  [{metadata.branch}]"
    return line


def _echo_candidates(candidates: Sequence[DatabaseInfo]) -> None:
    click.echo("\nDatabases to be deleted:")
    click.echo(RULE)
    for info in candidates:
        created = info.metadata.created_datetime() if info.metadata else None
        suffix = f" (created {created.date().isoformat()})" if created else ""
        click.echo(f"  • {info.name}{suffix}")
    click.echo(RULE)
    click.echo(f"Total: {len(candidates)} database(s)\n")


def _offer_env_update(config: AppConfig, prompt: str, apply: Callable[[Path], bool]) -> None:
    if not config.env_file.exists():
        return
    if not click.confirm(prompt, default=False):
        return
    try:
        changed = apply(config.env_file)
    except (OSError, LifecycleError) as exc:
        click.echo(f"Warning: Could not update {config.env_file} ({exc}). Please update DATABASE_URL manually.", err=True)
        return
    if changed:
        click.echo(click.style(f"✓ Updated {config.env_file}", fg="green"))
    else:
        click.echo(f"Warning: no DATABASE_URL line in {config.env_file}; update it manually.", err=True)


@click.group()
@click.version_option(version=__version__, prog_name="previewdb")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Manage snapshot-backed preview and personal databases.

    Databases are restored from the latest snapshot of a source database,
    tagged with lineage metadata and cleaned up once stale.
    """
    _configure_logging(verbose)
    ctx.obj = load_config().with_environment()


@cli.command()
@click.argument("source", required=False)
@click.pass_obj
def snapshot(config: AppConfig, source: str | None) -> None:
    """Back up SOURCE (default: the configured source database) to the bucket."""
    source = source or config.source_database
    with _reporting_errors():
        uri = build_store_uri(config.backup_bucket)

        async def _action(client: AsyncpgAdminClient, _server: ConnectionDescriptor) -> tuple[str, list[str]]:
            store = SnapshotStore(client, uri, as_of=config.backup_as_of)
            created = await store.create_snapshot(source)
            return created, await store.list_snapshots(source)

        click.echo(f"Snapshotting database: {source}")
        click.echo(f"Bucket: {config.backup_bucket}\n")
        created, snapshots = _run(config, _action)

    click.echo(click.style(f"✓ Snapshot created: {created}", fg="green"))
    click.echo(f"\nCurrent snapshots ({len(snapshots)}):")
    for path in snapshots:
        click.echo(f"  - {path}")
    if len(snapshots) > config.max_snapshots:
        click.echo(
            click.style(
                f"\nNote: You have {len(snapshots)} snapshots (keeping last {config.max_snapshots} is recommended).\n"
                "Delete old snapshots from the bucket if needed to save storage costs.",
                fg="yellow",
            )
        )


@cli.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--metadata", default=None, help="JSON object merged into the database metadata.")
@click.option("--replace", is_flag=True, help="Drop the target first if it already exists.")
@click.pass_obj
def spawn(config: AppConfig, names: tuple[str, ...], metadata: str | None, replace: bool) -> None:
    """Restore the latest snapshot into a new database.

    Examples:

        # Personal database dev_<you>_my_feature from the dev snapshot
        previewdb spawn my_feature

        # Automation: explicit source and target
        previewdb spawn dev pr_42 --metadata='{"pr_number": 42}' --replace
    """
    if len(names) > 2:
        raise click.UsageError("Expected <feature> or <source> <target>.")
    automation = metadata is not None or is_ci()
    with _reporting_errors():
        if len(names) == 2:
            source, target = names
        else:
            source = config.source_database
            target = personal_database_name(names[0], resolve_identity())
            click.echo(f"Creating personal development database: {target}")
            click.echo(f"Source: {source} (from latest snapshot)\n")
        uri = build_store_uri(config.backup_bucket)

        async def _action(client: AsyncpgAdminClient, server: ConnectionDescriptor) -> Any:
            store = SnapshotStore(client, uri, as_of=config.backup_as_of)
            return await run_spawn(client, store, server, source, target, metadata=metadata, replace=replace)

        result = _run(config, _action)

    click.echo(click.style(f"\n✓ Database spawn complete: {result.database}", fg="green"))
    if automation:
        click.echo(f"\nDATABASE_URL={result.database_url}")
        return
    click.echo(f"\nNew DATABASE_URL:\n{result.database_url}\n")
    _offer_env_update(
        config,
        f"Update your local {config.env_file} with this DATABASE_URL?",
        lambda path: update_env_database_url(path, result.database_url),
    )


@cli.command()
@click.argument("name", required=False)
@click.option("--pattern", default=None, help="Delete databases whose name matches this regex.")
@click.option("--older-than", "older_than", type=click.IntRange(min=0), default=None, help="Delete databases older than DAYS.")
@click.option("--force", is_flag=True, help="Skip the confirmation prompt.")
@click.option("--dry-run", is_flag=True, help="Show what would be deleted without deleting.")
@click.option("--restore-env", is_flag=True, help="Point the local .env back at the dev database.")
@click.pass_context
def cleanup(
    ctx: click.Context,
    name: str | None,
    pattern: str | None,
    older_than: int | None,
    force: bool,
    dry_run: bool,
    restore_env: bool,
) -> None:
    """Delete pr_ and dev_ databases by NAME, --pattern or --older-than.

    Examples:

        previewdb cleanup dev_alice_my_feature
        previewdb cleanup --pattern '^pr_'
        previewdb cleanup --older-than 7 --dry-run
    """
    config: AppConfig = ctx.obj
    if restore_env and name is None and pattern is None and older_than is None:
        _restore_env(config)
        return

    with _reporting_errors():
        selection = Selection(name=name, pattern=pattern, older_than_days=older_than)

        def _confirm(_candidates: Sequence[DatabaseInfo]) -> bool:
            return click.confirm(
                "Are you sure you want to delete these databases? This cannot be undone!",
                default=False,
            )

        async def _action(client: AsyncpgAdminClient, _server: ConnectionDescriptor) -> Any:
            return await run_cleanup(
                client,
                selection,
                dry_run=dry_run,
                force=force,
                confirm=_confirm,
                review=_echo_candidates,
            )

        result = _run(config, _action)

    if not result.candidates:
        click.echo("No databases to clean up.")
        return
    if result.dry_run:
        click.echo("[DRY RUN] No databases were actually deleted.")
        return
    if result.cancelled:
        click.echo("Cleanup cancelled.")
        return
    click.echo(click.style(f"\n✓ Successfully deleted {result.count} database(s)", fg="green"))
    for failure in result.failures:
        click.echo(click.style(f"✗ {failure.name}: {failure.message}", fg="red"), err=True)

    if restore_env:
        _restore_env(config)
    elif name and name.startswith("dev_") and name in result.deleted and not is_ci():
        _offer_env_update(
            config,
            "Restore your .env to use the main dev database?",
            lambda path: restore_env_database(path, config.source_database),
        )
    if result.failures:
        ctx.exit(1)


def _restore_env(config: AppConfig) -> None:
    try:
        changed = restore_env_database(config.env_file, config.source_database)
    except (OSError, LifecycleError) as exc:
        click.echo(f"Warning: Could not update {config.env_file} ({exc}). Please update DATABASE_URL manually.", err=True)
        return
    if changed:
        click.echo(click.style(f"✓ Restored {config.env_file} to use {config.source_database} database", fg="green"))
    else:
        click.echo(f"Warning: no DATABASE_URL line in {config.env_file}.", err=True)


@cli.command("list")
@click.option("--json", "as_json", is_flag=True, help="Print the inventory as JSON.")
@click.pass_obj
def list_dbs(config: AppConfig, as_json: bool) -> None:
    """List databases with their lineage metadata."""
    with _reporting_errors():

        async def _action(client: AsyncpgAdminClient, _server: ConnectionDescriptor) -> list[DatabaseInfo]:
            return await list_databases(client, include_permanent=True)

        databases = _run(config, _action)

    if as_json:
        click.echo(json.dumps([info.to_dict() for info in databases], indent=2))
        return
    if not databases:
        click.echo("No databases found.")
        return

    groups = (
        ("Production Database:", [db for db in databases if db.name == "prod"]),
        ("Main Development Database:", [db for db in databases if db.name == "dev"]),
        ("PR Preview Databases:", [db for db in databases if db.name.startswith("pr_")]),
        ("Personal Development Databases:", [db for db in databases if db.name.startswith("dev_")]),
        (
            "Other Databases:",
            [
                db
                for db in databases
                if db.name not in ("dev", "prod") and not db.name.startswith(("pr_", "dev_"))
            ],
        ),
    )
    click.echo(RULE)
    for title, entries in groups:
        if not entries:
            continue
        click.echo(click.style(f"\n{title}", bold=True))
        for info in entries:
            click.echo(_describe(info))
    click.echo("\n" + RULE)
    click.echo(f"Total: {len(databases)} databases")


@cli.command()
@click.option("--context", "deploy_context", envvar="CONTEXT", default=None, help="Deploy context (CONTEXT).")
@click.option("--review-id", envvar="REVIEW_ID", type=int, default=None, help="Pull request number (REVIEW_ID).")
@click.option("--branch", envvar="BRANCH", default=None, help="Branch being built (BRANCH).")
@click.option("--source", default=None, help="Source database for the snapshot.")
@click.option("--migrations-dir", type=click.Path(path_type=Path), default=None)
@click.option("--cache-file", type=click.Path(path_type=Path), default=None)
@click.pass_obj
def preview(
    config: AppConfig,
    deploy_context: str | None,
    review_id: int | None,
    branch: str | None,
    source: str | None,
    migrations_dir: Path | None,
    cache_file: Path | None,
) -> None:
    """Prepare the pr_<REVIEW_ID> database for a deploy preview build."""
    if deploy_context != PREVIEW_CONTEXT:
        click.echo("Skipping preview database setup (not a deploy preview)")
        return
    if not review_id:
        click.echo("Warning: REVIEW_ID not available, skipping preview database setup")
        return
    cache = JsonFileHashCache(cache_file or config.hash_cache_file)
    with _reporting_errors():
        uri = build_store_uri(config.backup_bucket)

        async def _action(client: AsyncpgAdminClient, server: ConnectionDescriptor) -> Any:
            store = SnapshotStore(client, uri, as_of=config.backup_as_of)
            return await prepare_preview_database(
                client,
                store,
                cache,
                server,
                review_id=review_id,
                source=source or config.source_database,
                migrations_dir=migrations_dir or config.migrations_dir,
                branch=branch,
                created_by=config.preview_created_by,
            )

        outcome = _run(config, _action)

    if outcome.decision is BuildDecision.REUSE:
        click.echo(f"✓ Schema unchanged, reusing preview database: {outcome.database}")
    else:
        click.echo(f"✓ Preview database created: {outcome.database}")
    click.echo(f"DATABASE_URL={outcome.database_url}")


@cli.command()
@click.argument("payload", type=click.File("r"), default="-")
@click.pass_obj
def teardown(config: AppConfig, payload: Any) -> None:
    """Drop the preview database named by a deploy notification PAYLOAD (JSON)."""
    try:
        notification = DeployNotification.model_validate_json(payload.read())
    except ValidationError as exc:
        raise click.UsageError(f"Invalid deploy notification: {exc}") from exc
    with _reporting_errors():

        async def _action(client: AsyncpgAdminClient, _server: ConnectionDescriptor) -> str | None:
            return await handle_deploy_notification(client, notification)

        dropped = _run(config, _action)

    if dropped is None:
        click.echo("Nothing to clean up for this notification.")
    else:
        click.echo(click.style(f"✓ Dropped preview database: {dropped}", fg="green"))


def main() -> None:
    """Entry point for the previewdb CLI."""
    cli()


__all__ = ["cli", "main"]
