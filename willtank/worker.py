"""
Background worker for processing scheduled jobs.

Usage:
    python -m willtank.worker

The worker polls for due jobs (PIN distribution, check-in reminders,
contact status checks) and processes them. Cron-only deployments can
instead call POST /internal/scheduled/process-jobs, which runs one batch.
"""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from willtank.core.config import settings
from willtank.core.structured_logging import build_log_context, configure_logging
from willtank.db.session import SessionLocal
from willtank.jobs.registry import resolve_job_handler
from willtank.services import email_service, job_service

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


async def process_job(db: Session, job) -> None:
    """Process a single job based on its type."""
    logger.info("Processing job %s (type=%s, attempt=%s)", job.id, job.job_type, job.attempts)
    handler = resolve_job_handler(job.job_type)
    await handler(db, job)


async def run_due_jobs(db: Session, limit: int | None = None) -> BatchResult:
    """Run one batch of due jobs. A failing job is marked failed; the batch continues."""
    result = BatchResult()
    jobs = job_service.get_pending_jobs(db, limit=limit or settings.WORKER_BATCH_SIZE)
    if jobs:
        logger.info("Found %d pending jobs", len(jobs))

    for job in jobs:
        result.processed += 1
        try:
            job_service.mark_job_running(db, job)
            await process_job(db, job)
            job_service.mark_job_completed(db, job)
            result.succeeded += 1
            logger.info("Job %s completed successfully", job.id)
        except Exception as e:
            db.rollback()
            job_service.mark_job_failed(db, job, f"{type(e).__name__}: {e}")
            result.failed += 1
            logger.error(
                "Job %s failed: %s",
                job.id,
                type(e).__name__,
                extra=build_log_context(
                    user_id=str(job.user_id) if job.user_id else None,
                    route=f"job:{job.job_type}",
                ),
            )
    return result


async def worker_loop() -> None:
    """Main worker loop - polls for and processes pending jobs."""
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s)",
        settings.WORKER_POLL_INTERVAL,
        settings.WORKER_BATCH_SIZE,
    )

    if not email_service.is_configured():
        logger.warning("RESEND_API_KEY not set - emails will be logged but not sent")

    while True:
        with SessionLocal() as db:
            try:
                await run_due_jobs(db)
            except Exception as e:
                logger.error("Error in worker loop: %s", e)

        await asyncio.sleep(settings.WORKER_POLL_INTERVAL)


def main() -> None:
    """Entry point for the worker."""
    configure_logging()
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        logger.exception(
            "Worker crashed",
            extra=build_log_context(route="worker", method="background"),
        )
        raise


if __name__ == "__main__":
    main()
