#!/usr/bin/env python3
"""
FeedRelay - RSS to Misskey Relay
================================

Main application entry point with CLI interface for operation and testing.

Usage:
    python main.py --help                    # Show all commands
    python main.py check-config              # Validate configuration
    python main.py fetch-feed URL            # Fetch a feed and preview its newest entry
    python main.py run-once --dry-run        # One pipeline pass without posting
    python main.py serve                     # Poll feeds until interrupted
"""

import sys
import signal
import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent))

from feedrelay.config.settings import get_settings
from feedrelay.clients.misskey_client import MisskeyClient
from feedrelay.ingestion.content_normalizer import ContentNormalizer
from feedrelay.ingestion.feed_fetcher import FeedFetcher
from feedrelay.processing.pipeline import FeedOutcome, RelayPipeline
from feedrelay.scheduler.poll_scheduler import PollScheduler
from feedrelay.utils.logging import configure_application_logging
from feedrelay.utils.exceptions import FeedRelayError, get_user_friendly_message

console = Console()
logger = logging.getLogger(__name__)

OUTCOME_STYLES = {
    FeedOutcome.PUBLISHED: "✅ Published",
    FeedOutcome.SKIPPED: "⏭️ Skipped",
    FeedOutcome.PRIMED: "📌 Primed",
    FeedOutcome.EMPTY: "∅ Empty",
    FeedOutcome.DRY_RUN: "🧪 Dry run",
    FeedOutcome.ABORTED: "❌ Aborted",
}


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.pass_context
def cli(ctx, debug):
    """FeedRelay - republish RSS entries as Misskey notes."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _load_settings_and_logging(debug: bool):
    try:
        settings = get_settings()
    except FeedRelayError as e:
        console.print(f"[bold red]❌ {get_user_friendly_message(e)}[/bold red]")
        sys.exit(1)

    configure_application_logging(
        log_level="DEBUG" if debug else settings.get_effective_log_level(),
        log_file=settings.logging.file_path,
        enable_console=settings.logging.console_logging,
        structured_logging=settings.logging.structured_logging,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )
    return settings


@cli.command()
def check_config():
    """Validate environment variables and .env configuration."""
    console.print("[bold blue]🔧 Checking FeedRelay Configuration[/bold blue]")

    try:
        settings = get_settings()
    except FeedRelayError as e:
        console.print(f"[bold red]❌ {get_user_friendly_message(e)}[/bold red]")
        sys.exit(1)

    table = Table(title="Configuration Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")

    checks = [
        ("Misskey", _check_misskey_config),
        ("Feeds", _check_feed_config),
        ("Media", _check_media_config),
        ("Scheduler", _check_scheduler_config),
        ("Logging", _check_logging_config),
    ]

    all_passed = True
    for name, check_func in checks:
        status, details = check_func(settings)
        table.add_row(name, "✅ Valid" if status else "❌ Invalid", details)
        all_passed = all_passed and status

    console.print(table)

    if all_passed:
        console.print("[bold green]✅ All configuration checks passed![/bold green]")
    else:
        console.print("[bold red]❌ Configuration validation failed[/bold red]")
        sys.exit(1)


@cli.command()
@click.argument('url')
@click.pass_context
def fetch_feed(ctx, url):
    """Fetch a single feed and preview its newest entry as a note."""
    settings = _load_settings_and_logging(ctx.obj.get('debug'))
    console.print(f"[bold blue]📡 Fetching RSS Feed: {url}[/bold blue]")

    async def run_fetch():
        fetcher = FeedFetcher(settings)
        return await fetcher.fetch_feed(url)

    try:
        feed = asyncio.run(run_fetch())
    except FeedRelayError as e:
        console.print(f"[bold red]❌ {get_user_friendly_message(e)}[/bold red]")
        sys.exit(1)

    info_table = Table(title="Feed Information")
    info_table.add_column("Property", style="cyan")
    info_table.add_column("Value", style="green")

    description = feed.description or "None"
    if len(description) > 100:
        description = description[:97] + "..."
    info_table.add_row("Title", feed.title or "Unknown")
    info_table.add_row("Description", description)
    info_table.add_row("Link", feed.link or "None")
    info_table.add_row("Entries Found", str(len(feed.entries)))
    console.print(info_table)

    entry = feed.latest_entry
    if entry is None:
        console.print("[yellow]⚠️ Feed has no entries[/yellow]")
        return

    content = ContentNormalizer(settings).normalize(entry.raw_content)
    console.print(f"\n[bold]{entry.title}[/bold]")
    console.print(f"   🆔 GUID: {entry.guid or 'none'}")
    console.print(f"   📅 Published: {entry.published_at or 'No date'}")
    console.print(f"   📝 Text:\n{content.text or '(empty)'}", markup=False)
    for index, item in enumerate(content.media, 1):
        console.print(f"   🖼️ {index}. [{item.kind.value}] {item.source_url}", markup=False)


@cli.command()
@click.option('--feed', 'feeds', multiple=True, help='Feed URL to process (repeatable; default from config)')
@click.option('--dry-run', is_flag=True, help='Fetch and normalize only; nothing is uploaded or posted')
@click.pass_context
def run_once(ctx, feeds, dry_run):
    """Run a single pipeline pass over the configured feeds."""
    settings = _load_settings_and_logging(ctx.obj.get('debug'))
    feed_urls = list(feeds) or list(settings.feeds.urls)
    mode = " (dry run)" if dry_run else ""
    console.print(f"[bold blue]🔄 Processing {len(feed_urls)} feed(s){mode}[/bold blue]")

    async def run_pass():
        async with MisskeyClient(settings) as client:
            pipeline = RelayPipeline(client, settings, dry_run=dry_run)
            return await pipeline.run_once(feed_urls)

    tick = asyncio.run(run_pass())

    results_table = Table(title="Pipeline Results")
    results_table.add_column("Feed", style="cyan")
    results_table.add_column("Outcome", style="green")
    results_table.add_column("Media", style="yellow")
    results_table.add_column("Details")

    for result in tick.feed_results:
        url = result.feed_url
        if result.error:
            details = str(result.error)
        elif result.note_id:
            details = f"Note {result.note_id}"
        else:
            details = result.entry_title or ""
        results_table.add_row(
            url[:50] + "..." if len(url) > 50 else url,
            OUTCOME_STYLES[result.outcome],
            str(result.media_count),
            details[:60] + "..." if len(details) > 60 else details,
        )

    console.print(results_table)
    console.print(
        f"\n[bold blue]📊 Summary: {tick.published_count} published, "
        f"{tick.failed_count} failed[/bold blue]"
    )
    console.print(f"⏱️ Processing time: {tick.duration_seconds:.2f} seconds")

    if not tick.success:
        sys.exit(1)


@cli.command()
@click.option('--max-ticks', type=int, default=None, help='Exit after this many passes')
@click.pass_context
def serve(ctx, max_ticks):
    """Poll the configured feeds until interrupted."""
    settings = _load_settings_and_logging(ctx.obj.get('debug'))
    console.print(
        f"[bold blue]🚀 Relaying {len(settings.feeds.urls)} feed(s) to "
        f"{settings.misskey.host} every {settings.scheduler.poll_interval_seconds}s[/bold blue]"
    )

    async def run_service():
        async with MisskeyClient(settings) as client:
            pipeline = RelayPipeline(client, settings)
            scheduler = PollScheduler(pipeline, settings)

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, scheduler.stop)
                except NotImplementedError:
                    logger.debug(f"Signal handlers unsupported for {sig}")

            return await scheduler.run_forever(max_ticks=max_ticks)

    ticks = asyncio.run(run_service())
    console.print(f"[yellow]👋 FeedRelay stopped after {ticks} pass(es)[/yellow]")


# Helper functions for configuration checks

def _check_misskey_config(settings) -> tuple[bool, str]:
    """Check Misskey instance configuration."""
    if not settings.misskey.host or not settings.misskey.auth_token:
        return False, "Host and auth token are required"
    return True, f"API: {settings.api_base_url}, Visibility: {settings.misskey.visibility.value}"


def _check_feed_config(settings) -> tuple[bool, str]:
    """Check feed configuration."""
    if not settings.feeds.urls:
        return False, "No feed URLs configured"
    return True, f"{len(settings.feeds.urls)} feed(s), dedup by {settings.feeds.dedup_key.value}"


def _check_media_config(settings) -> tuple[bool, str]:
    media = settings.media
    return True, (
        f"Match: {media.match_strategy.value}, attempts: {media.resolve_max_attempts}, "
        f"backoff: {media.resolve_backoff_seconds}s ({media.backoff_strategy.value})"
    )


def _check_scheduler_config(settings) -> tuple[bool, str]:
    scheduler = settings.scheduler
    return True, f"Every {scheduler.poll_interval_seconds}s, run on start: {scheduler.run_on_start}"


def _check_logging_config(settings) -> tuple[bool, str]:
    """Check logging configuration."""
    try:
        if settings.logging.file_path:
            log_path = Path(settings.logging.file_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
        return True, f"Level: {settings.logging.level.value}, Console: {settings.logging.console_logging}"
    except OSError as e:
        return False, str(e)


if __name__ == "__main__":
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 FeedRelay interrupted by user[/yellow]")
        sys.exit(130)
