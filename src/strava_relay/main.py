#!/usr/bin/env python3
"""
Main entry point for the Strava activity relay.

This module provides the CLI interface: running the webhook server, showing
the loaded configuration and running a one-off recovery sync.
"""

import asyncio
import sys

import click

from .pipeline.service import ActivityPipeline
from .utils.config import Config
from .utils.logging_config import setup_logging, get_logger
from .utils.error_handling import ConfigurationError, StravaRelayError
from .utils.security import mask_secret
from .webhook_server import PipelineRunner, StravaWebhookServer


# CLI Interface
@click.group()
@click.option('--log-level', default='INFO',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
              help='Set logging level')
@click.option('--env-file', type=click.Path(dir_okay=False), help='Path to a .env file')
@click.pass_context
def cli(ctx, log_level, env_file):
    """Strava Relay - posts club members' Strava activities to Discord after a delay"""

    setup_logging(log_level=log_level)
    logger = get_logger(__name__)

    try:
        config = Config.from_env(env_file)
        logger.info("Configuration loaded and validated successfully")
    except ConfigurationError as e:
        logger.error(f"Initialization failed: {e}")
        sys.exit(1)

    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', help='Host to bind to (default: HOST or 0.0.0.0)')
@click.option('--port', type=int, help='Port to bind to (default: PORT or 5000)')
@click.option('--catch-up-hours', type=float, default=0,
              help='Relay activities from the last N hours on startup')
@click.pass_context
def serve(ctx, host, port, catch_up_hours):
    """Run the webhook server"""
    config = ctx.obj['config']
    logger = get_logger(__name__)

    runner = PipelineRunner(ActivityPipeline.from_config(config))

    try:
        runner.start()

        if catch_up_hours > 0:
            runner.submit_recovery(catch_up_hours)

        StravaWebhookServer(config, runner).run(host=host, port=port)

    except KeyboardInterrupt:
        logger.info("Webhook server stopped by user")
    except Exception as e:
        logger.error(f"Webhook server failed: {e}")
        sys.exit(1)
    finally:
        runner.stop()


@cli.command()
@click.pass_context
def status(ctx):
    """Show configuration and posting settings"""
    config = ctx.obj['config']
    posting = config.posting

    click.echo("Strava Relay Status")
    click.echo("=" * 40)

    click.echo(f"\nMembers: {len(config.members)}")
    for member in config.members:
        discord = f", Discord {member.discord_user_id}" if member.discord_user_id else ""
        click.echo(f"  • {member.name} (athlete {member.athlete_id}{discord})")

    click.echo("\nPosting:")
    click.echo(f"  Delay: {posting.delay_minutes:g} minutes" + (" (immediate)" if posting.delay_minutes == 0 else ""))
    for window in (posting.short_window, posting.daily_window):
        click.echo(f"  Budget: {window.limit} calls per {window.label}")
    click.echo(f"  Spacing: {posting.spacing_seconds:g}s between calls")
    click.echo(f"  Dedup ledger: {posting.dedup_max_size} entries")
    click.echo(f"  Minimums: {posting.min_moving_time}s moving, {posting.min_distance:g} m, "
               f"max age {posting.max_age_hours:g}h")

    click.echo("\nEndpoints:")
    click.echo(f"  Server: {config.server.host}:{config.server.port}")
    click.echo(f"  Discord webhook: {mask_secret(config.discord.webhook_url, visible_chars=8)}")
    click.echo(f"  Strava client: {config.strava.client_id}")


@cli.command('sync-recent')
@click.option('--hours', type=float, default=24, show_default=True, help='How far back to look')
@click.pass_context
def sync_recent(ctx, hours):
    """Relay recent activities for every member right away.

    Runs with its own empty dedup ledger, so activities a running server has
    already posted are posted again. Use serve --catch-up-hours to sync from
    inside the server instead.
    """
    config = ctx.obj['config']
    logger = get_logger(__name__)
    logger.warning("sync-recent does not share the running server's dedup ledger")

    async def run_sync():
        async with ActivityPipeline.from_config(config) as pipeline:
            return await pipeline.process_recent_activities(hours_back=hours)

    try:
        count = asyncio.run(run_sync())
    except StravaRelayError as e:
        logger.error(f"Sync failed: {e}")
        click.echo(f"Sync failed: {e}")
        sys.exit(1)

    click.echo(f"Posted {count} activities from the last {hours:g} hours")


if __name__ == '__main__':
    cli()
