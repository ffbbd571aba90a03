"""Admin CLI for the reminder service (migrations and cron entry points)."""

from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timedelta, timezone

import click


def run_async(coro):
    """Run an async function in a new event loop."""
    return asyncio.run(coro)


@click.group()
def cli():
    """Reminder service administration CLI."""
    pass


# --- Setup ---


@cli.command()
def migrate():
    """Apply Alembic migrations up to head."""
    click.echo("Running database migrations...")
    _run_migrations()


def _run_migrations():
    """Run Alembic migrations using the Python API."""
    from alembic import command
    from alembic.config import Config

    # Look for alembic.ini in /app (Docker) or alongside this script (local)
    for candidate in ["/app/alembic.ini", os.path.join(os.path.dirname(__file__), "alembic.ini")]:
        if os.path.exists(candidate):
            alembic_cfg = Config(candidate)
            script_dir = os.path.join(os.path.dirname(candidate), "alembic")
            if os.path.isdir(script_dir):
                alembic_cfg.set_main_option("script_location", script_dir)
            db_url = os.environ.get("DATABASE_URL")
            if db_url:
                alembic_cfg.set_main_option("sqlalchemy.url", db_url)
            command.upgrade(alembic_cfg, "head")
            click.echo("Migrations applied.")
            return

    click.echo("  Warning: alembic.ini not found, skipping migrations.")


async def _with_services(fn):
    """Build the service graph, run ``fn(services)``, then release everything."""
    from modules.reminders.services import build_services
    from shared.config import get_settings
    from shared.database import dispose_engine, get_session_factory
    from shared.redis import close_redis, get_redis

    settings = get_settings()
    services = build_services(settings, get_session_factory(), get_redis(settings.redis_url))
    try:
        return await fn(services)
    finally:
        await services.close()
        await close_redis()
        await dispose_engine()


# --- Cron entry points ---


@cli.command("run-scheduler")
@click.option("--limit", default=None, type=int, help="Max notifications this pass")
def run_scheduler(limit):
    """Send every due notification once (for an external cron)."""
    result = run_async(_with_services(lambda s: _run_pass(s, limit)))
    click.echo(
        f"Processed {result.processed}: {result.succeeded} sent, {result.failed} failed."
    )


async def _run_pass(services, limit):
    return await services.orchestrator.process_scheduled_notifications(
        limit or services.scheduler.batch_size
    )


@cli.command()
@click.option(
    "--date",
    "day",
    default=None,
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Day to snapshot (default: yesterday)",
)
def snapshot(day):
    """Upsert the daily analytics snapshot."""
    target = day.date() if day else None
    saved = run_async(_with_services(lambda s: s.scheduler.create_daily_snapshot(target)))
    click.echo(f"Snapshot saved for {saved.isoformat()}.")


@cli.command()
def accuracy():
    """Show channel/time prediction accuracy."""
    metrics = run_async(_with_services(lambda s: s.ml.get_model_accuracy()))
    click.echo(f"Model {metrics['model_version']}")
    click.echo(
        f"  Accuracy: {metrics['accuracy'] * 100:.2f}% "
        f"({metrics['accurate_predictions']}/{metrics['total_predictions']})"
    )


@cli.command()
@click.option("--format", "fmt", default="CSV", type=click.Choice(["CSV", "JSON"]))
@click.option("--days", default=7, type=int, help="Report period ending now")
def report(fmt, days):
    """Print an engagement report for the last N days."""
    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days)
    text = run_async(_with_services(lambda s: s.analytics.export_report(fmt, start, end)))
    click.echo(text)


@cli.command()
def dashboard():
    """Print the last 24 hours of engagement as JSON."""
    metrics = run_async(_with_services(lambda s: s.analytics.get_dashboard_metrics()))
    click.echo(json.dumps(metrics, indent=2, default=str))


if __name__ == "__main__":
    cli()
