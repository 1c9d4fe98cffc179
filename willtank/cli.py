"""CLI tools for WillTank operations (cron-friendly)."""

import asyncio

import click

from willtank.core.structured_logging import configure_logging
from willtank.db.session import SessionLocal


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def cli(log_level: str | None):
    """WillTank CLI tools."""
    configure_logging(log_level)


@cli.command()
def scan():
    """
    Run the inactivity scanner once.

    Example:
        willtank scan
    """
    from willtank.services import scanner_service

    with SessionLocal() as db:
        result = scanner_service.run_scan(db)

    click.echo(f"✓ Scanned {result.scanned} overdue check-ins")
    click.echo(f"  Reminders scheduled: {result.reminders_scheduled}")
    click.echo(f"  Verification requests created: {result.requests_created}")
    click.echo(f"  Already open: {result.already_open}")
    if result.errors:
        click.echo(f"❌ Errors: {result.errors}")
        raise SystemExit(1)


@cli.command("process-jobs")
@click.option("--limit", default=None, type=int, help="Max jobs to run")
def process_jobs(limit: int | None):
    """Run one batch of due background jobs."""
    from willtank.worker import run_due_jobs

    with SessionLocal() as db:
        result = asyncio.run(run_due_jobs(db, limit=limit))

    click.echo(f"✓ Processed {result.processed} jobs ({result.succeeded} ok, {result.failed} failed)")


@cli.command("expire-requests")
def expire_requests():
    """Mark open verification requests past their deadline as expired."""
    from willtank.services import verification_service

    with SessionLocal() as db:
        count = verification_service.expire_stale_requests(db)

    click.echo(f"✓ Expired {count} verification requests")


if __name__ == "__main__":
    cli()
