"""
Command-line interface for telescope.

Provides commands to run the watcher, manage subscriptions and run
diagnostic checks.

Usage:
    telescope watch                          # Run the watcher forever
    telescope run-once                       # Run a single tick
    telescope subscribe URL RECIPIENT        # Follow a creator
    telescope unsubscribe URL RECIPIENT      # Stop following a creator
    telescope list RECIPIENT                 # Show a recipient's subscriptions
    telescope platforms                      # Show supported platforms
    telescope health                         # Check service health
"""

import asyncio
import os
import signal
import sys

import click

from telescope.config.settings import get_settings
from telescope.observability.logging import setup_logging
from telescope.observability.metrics import get_metrics
from telescope.platforms.schemas import Platform


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Telescope - live-stream notification watcher."""
    if debug:
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()


def _fail(message: str) -> None:
    click.echo(click.style(f"✗ {message}", fg="red"), err=True)
    sys.exit(1)


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def watch(metrics: bool, metrics_port: int | None) -> None:
    """Run the watcher until interrupted."""
    from telescope.watcher.service import WatcherService

    if not get_settings().telegram_configured:
        _fail("TELEGRAM_BOT_TOKEN is not configured")

    async def run():
        service = WatcherService()

        if metrics:
            get_metrics().start_server(port=metrics_port)

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

        await service.start()

    asyncio.run(run())


@main.command("run-once")
def run_once() -> None:
    """Run a single reconciliation tick for every platform."""
    from telescope.watcher.service import WatcherService

    if not get_settings().telegram_configured:
        _fail("TELEGRAM_BOT_TOKEN is not configured")

    async def run():
        service = WatcherService()
        results = await service.run_once()

        click.echo("\nTick Results:")
        if not results:
            click.echo("  no platform completed")
        for platform, stats in results.items():
            click.echo(
                f"  {platform.value}: "
                f"idle={stats.idle} live={stats.live} "
                f"started={stats.started} ended={stats.ended} unknown={stats.unknown} "
                f"sent={stats.notifications_sent} failed={stats.notifications_failed} "
                f"errors={stats.errors + stats.commit_failures}"
            )

    asyncio.run(run())


@main.command()
@click.argument("url")
@click.argument("recipient")
def subscribe(url: str, recipient: str) -> None:
    """Subscribe RECIPIENT to the creator behind URL."""
    from telescope.platforms.registry import create_adapters
    from telescope.platforms.subscription import resolve_subscription
    from telescope.storage.ledger import LedgerError, SubscriptionLedger

    async def run() -> str | None:
        try:
            creator = await resolve_subscription(url, create_adapters(get_settings()))
            async with SubscriptionLedger() as ledger:
                added = await ledger.add_subscription(creator, recipient)
        except (ValueError, LedgerError) as e:
            return str(e)

        if added:
            click.echo(click.style(f"✓ {recipient} subscribed to {creator}", fg="green"))
        else:
            click.echo(f"{recipient} is already subscribed to {creator}")
        return None

    error = asyncio.run(run())
    if error:
        _fail(error)


@main.command()
@click.argument("url")
@click.argument("recipient")
def unsubscribe(url: str, recipient: str) -> None:
    """Unsubscribe RECIPIENT from the creator behind URL."""
    from telescope.platforms.registry import create_adapters
    from telescope.platforms.subscription import resolve_subscription
    from telescope.storage.ledger import LedgerError, SubscriptionLedger

    async def run() -> str | None:
        removed = 0
        try:
            creator = await resolve_subscription(url, create_adapters(get_settings()))
            async with SubscriptionLedger() as ledger:
                # Match on identity so keys saved under an older display name go too
                for subscribed in await ledger.list_subscriptions(recipient):
                    if subscribed.same_identity(creator):
                        removed += await ledger.remove_subscription(subscribed, recipient)
        except (ValueError, LedgerError) as e:
            return str(e)

        if removed:
            click.echo(click.style(f"✓ {recipient} unsubscribed from {creator}", fg="green"))
        else:
            click.echo(f"{recipient} is not subscribed to {creator}")
        return None

    error = asyncio.run(run())
    if error:
        _fail(error)


@main.command("list")
@click.argument("recipient")
def list_subscriptions(recipient: str) -> None:
    """List the creators RECIPIENT follows."""
    from telescope.storage.ledger import LedgerError, SubscriptionLedger

    async def run() -> str | None:
        try:
            async with SubscriptionLedger() as ledger:
                creators = await ledger.list_subscriptions(recipient)
                sessions = [await ledger.get_session(creator) for creator in creators]
        except LedgerError as e:
            return str(e)

        if not creators:
            click.echo(f"{recipient} has no subscriptions")
            return None

        click.echo(f"\nSubscriptions of {recipient}:")
        for creator, session_id in zip(creators, sessions):
            status = click.style("live", fg="green") if session_id else "idle"
            click.echo(f"  {creator} [{status}]")
        return None

    error = asyncio.run(run())
    if error:
        _fail(error)


@main.command()
def platforms() -> None:
    """Show supported platforms and whether they are enabled."""
    settings = get_settings()
    enabled = {
        Platform.TWITTER_SPACE: settings.twitter_configured,
        Platform.BILIBILI_LIVE: settings.bilibili_enabled,
    }

    click.echo("\nSupported Platforms:")
    for platform in Platform:
        state = "enabled" if enabled[platform] else "disabled"
        color = "green" if enabled[platform] else "yellow"
        click.echo(
            f"  {platform.value} ({', '.join(platform.hosts)}): "
            + click.style(state, fg=color)
        )


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        # Check Redis
        try:
            from telescope.storage.ledger import SubscriptionLedger
            ledger = SubscriptionLedger()
            await ledger.connect()
            results["redis"] = await ledger.health_check()
            await ledger.close()
        except Exception as e:
            results["redis"] = False
            logger.error("Redis health check failed", error=str(e))

        # Check configuration
        settings = get_settings()
        results["telegram_configured"] = settings.telegram_configured
        results["twitter_configured"] = settings.twitter_configured
        results["bilibili_enabled"] = settings.bilibili_enabled

        # Print results
        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("redis", "telegram_configured") and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
