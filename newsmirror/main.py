"""CLI entry point for newsmirror."""
import sqlite3

import click

from newsmirror.categories import KNOWN_REMOTE_CATEGORIES
from newsmirror.config import ConfigError, get_db_path, load_config
from newsmirror.database import Database, format_timestamp


def get_config() -> dict:
    """Get the loaded configuration."""
    try:
        return load_config()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


def get_db() -> Database:
    """Get database instance."""
    return Database(get_db_path(get_config()))


@click.group()
def cli():
    """newsmirror - Mirror news from a remote content API into a local store."""
    pass


# === Sync Commands ===


@cli.command()
@click.option("--channel", "channel_url", default=None, help="Only sync the channel with this URL")
@click.option("--verbose", "-v", is_flag=True, help="Show detailed progress during execution")
def run(channel_url: str | None, verbose: bool):
    """Fetch channels and mirror their items."""
    import logging

    from newsmirror.config import get_project_dir
    from newsmirror.fetcher import FetchError
    from newsmirror.logging_config import setup_logging
    from newsmirror.sync import build_engine

    config = get_config()
    setup_logging(get_project_dir() / "logs", config["logging"]["retention_days"], verbose)
    logger = logging.getLogger(__name__)
    logger.info("newsmirror starting")

    db = get_db()
    engine = build_engine(db, config)

    if channel_url:
        channel = db.get_channel(channel_url)
        if channel is None:
            click.echo(f"Error: unknown channel {channel_url}", err=True)
            raise SystemExit(1)
        try:
            results = [engine.sync_channel(channel)]
        except FetchError as e:
            click.echo(f"Error: {e}", err=True)
            raise SystemExit(1)
    else:
        results = engine.sync_all()

    if not results:
        click.echo("No active channels")
        return

    failed = False
    for result in results:
        if result.error:
            failed = True
            click.echo(f"✗ {result.channel_url}: {result.error}")
            continue
        click.echo(
            f"✓ {result.channel_url}: created {result.created}, "
            f"updated {result.updated}, skipped {len(result.skipped)}"
        )
    if failed:
        raise SystemExit(1)


@cli.command()
def status():
    """Show the last sync run and its skipped items."""
    db = get_db()

    run_data = db.get_last_run()
    if not run_data:
        click.echo("No sync runs found")
        return

    started = format_timestamp(run_data["started_at"])
    completed = format_timestamp(run_data["completed_at"]) if run_data["completed_at"] else "In progress"
    click.echo(f"Last Run: {started} - {completed}")
    click.echo(f"Channel: {run_data['channel_url'] or '(removed)'}")
    click.echo(f"Status: {run_data['status'].capitalize()}")
    if run_data["error"]:
        click.echo(f"Error: {run_data['error']}")
    click.echo()

    click.echo("Summary:")
    click.echo(f"  Fetched: {run_data['items_fetched']}")
    click.echo(f"  Created: {run_data['items_created']}")
    click.echo(f"  Updated: {run_data['items_updated']}")
    click.echo(f"  Skipped: {run_data['items_skipped']}")

    if run_data["skips"]:
        click.echo()
        click.echo("Skipped Items:")
        for skip in run_data["skips"]:
            click.echo(f"  ✗ #{skip['position']} ({skip['api_id'] or 'no id'})")
            click.echo(f"    Error: {skip['error']}")

    click.echo()
    click.echo(f"Entities: {db.count_entities()}")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def prune(yes: bool):
    """Delete entities that no channel owns any more."""
    db = get_db()
    orphans = db.orphaned_entity_ids()
    if not orphans:
        click.echo("Nothing to prune")
        return
    if not yes:
        click.confirm(f"Delete {len(orphans)} orphaned entities?", abort=True)
    count = db.delete_entities(orphans)
    click.echo(f"Deleted {count} entities")


# === Channel Management Commands ===


@cli.group()
def channels():
    """Manage remote channels."""
    pass


@channels.command("add")
@click.argument("url")
@click.option("--name", "-n", default=None, help="Display name of the channel")
def channels_add(url: str, name: str | None):
    """Add a channel by API URL."""
    db = get_db()
    try:
        channel = db.add_channel(url, name)
    except sqlite3.IntegrityError:
        click.echo(f"Error: channel already exists: {url}", err=True)
        raise SystemExit(1)
    click.echo(f"Added: {channel.name or channel.url}")


@channels.command("remove")
@click.argument("url")
def channels_remove(url: str):
    """Remove a channel (its entities are kept until pruned)."""
    db = get_db()
    if not db.remove_channel(url):
        click.echo(f"Error: unknown channel {url}", err=True)
        raise SystemExit(1)
    click.echo(f"Removed: {url}")


def _set_active(url: str, active: bool) -> None:
    db = get_db()
    if not db.set_channel_active(url, active):
        click.echo(f"Error: unknown channel {url}", err=True)
        raise SystemExit(1)
    click.echo(f"{'Enabled' if active else 'Disabled'}: {url}")


@channels.command("disable")
@click.argument("url")
def channels_disable(url: str):
    """Stop syncing a channel; its entities stay owned by it."""
    _set_active(url, False)


@channels.command("enable")
@click.argument("url")
def channels_enable(url: str):
    """Resume syncing a disabled channel."""
    _set_active(url, True)


@channels.command("list")
def channels_list():
    """List all channels."""
    db = get_db()
    for channel in db.list_channels():
        flag = "" if channel.is_active else " (inactive)"
        owned = len(db.entity_ids_for_channel(channel.id))
        click.echo(f"[{channel.id}] {channel.name or '-'}{flag}: {owned} entities")
        click.echo(f"    {channel.url}")


# === Category Commands ===


@cli.group()
def categories():
    """Manage local categories and their remote ids."""
    pass


@categories.command("add")
@click.argument("name")
@click.option(
    "--remote-id",
    "-r",
    type=click.Choice(sorted(KNOWN_REMOTE_CATEGORIES)),
    default=None,
    help="Remote category id to link",
)
def categories_add(name: str, remote_id: str | None):
    """Add a local category."""
    db = get_db()
    term = db.add_category(name, remote_id)
    linked = f" → {KNOWN_REMOTE_CATEGORIES[remote_id]}" if remote_id else ""
    click.echo(f"Added: [{term.id}] {term.name}{linked}")


@categories.command("list")
def categories_list():
    """List local categories."""
    db = get_db()
    for term in db.list_categories():
        remote = KNOWN_REMOTE_CATEGORIES.get(term.remote_category_id or "", "-")
        click.echo(f"[{term.id}] {term.name} (remote: {remote})")


@categories.command("translate")
@click.argument("term_id", type=int)
@click.argument("language")
@click.argument("translated_id", type=int)
def categories_translate(term_id: int, language: str, translated_id: int):
    """Declare TRANSLATED_ID as the LANGUAGE version of TERM_ID."""
    db = get_db()
    db.add_translation(term_id, language, translated_id)
    click.echo(f"Translation: [{term_id}] in {language} is [{translated_id}]")


if __name__ == "__main__":
    cli()
