from datetime import timedelta

from click.testing import CliRunner

from willtank.cli import cli
from willtank.db.enums import ContactType, JobStatus, JobType, TriggerReason, VerificationStatus
from willtank.db.models import Job
from willtank.db.types import utcnow
from willtank.services import checkin_service, job_service, scanner_service, settings_service
from willtank.services import verification_service
from willtank.worker import run_due_jobs


def _overdue_user(db, user, days_ago=40):
    """Default 30/7 settings, last check-in `days_ago` days back."""
    settings_service.get_or_create_settings(db, user.id, open_checkin=False)
    return checkin_service.record_checkin(db, user.id, now=utcnow() - timedelta(days=days_ago))


async def test_distribute_job_sends_pins(db, test_user, make_contacts, sent_emails):
    make_contacts(ContactType.BENEFICIARY, ContactType.EXECUTOR)
    request, _ = verification_service.open_request(
        db,
        user_id=test_user.id,
        trigger_reason=TriggerReason.MISSED_CHECKINS,
        initiated_by="system",
        schedule_distribution=True,
    )

    result = await run_due_jobs(db)

    assert (result.processed, result.succeeded, result.failed) == (1, 1, 0)
    db.refresh(request)
    assert request.status == VerificationStatus.PINS_SENT.value
    assert len(sent_emails) == 2
    job = job_service.get_job_by_key(db, f"distribute_pins:{request.id}")
    assert job.status == JobStatus.COMPLETED.value
    assert job.attempts == 1


async def test_distribute_job_skips_already_distributed(db, test_user, make_contacts, sent_emails):
    make_contacts(ContactType.EXECUTOR)
    request, _ = verification_service.open_request(
        db,
        user_id=test_user.id,
        trigger_reason=TriggerReason.MISSED_CHECKINS,
        initiated_by="system",
        schedule_distribution=True,
    )
    await verification_service.trigger_verification(db, test_user.id)
    assert len(sent_emails) == 1

    result = await run_due_jobs(db)

    assert result.succeeded == 1
    assert len(sent_emails) == 1


async def test_checkin_before_distribution_sends_nothing(db, test_user, make_contacts, sent_emails):
    make_contacts(ContactType.BENEFICIARY, ContactType.EXECUTOR)
    request, _ = verification_service.open_request(
        db,
        user_id=test_user.id,
        trigger_reason=TriggerReason.MISSED_CHECKINS,
        initiated_by="system",
        schedule_distribution=True,
    )
    checkin_service.record_checkin(db, test_user.id)

    result = await run_due_jobs(db)

    assert result.succeeded == 1
    assert sent_emails == []
    db.refresh(request)
    assert request.status == VerificationStatus.CANCELED.value
    assert request.pins == []
    assert request.unlock_token is None


async def test_failed_job_is_not_retried(db, test_user):
    job = job_service.schedule_job(
        db, job_type=JobType.DISTRIBUTE_PINS, payload={}, user_id=test_user.id
    )

    first = await run_due_jobs(db)
    second = await run_due_jobs(db)

    assert first.failed == 1
    assert second.processed == 0
    db.refresh(job)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 1
    assert "Missing verification_id" in job.last_error


async def test_unknown_job_type_fails(db):
    job = Job(job_type="bogus", payload={}, run_at=utcnow())
    db.add(job)
    db.commit()

    result = await run_due_jobs(db)

    assert result.failed == 1
    db.refresh(job)
    assert job.last_error == "ValueError: Unknown job type: bogus"


async def test_future_jobs_wait(db, test_user):
    job_service.schedule_job(
        db,
        job_type=JobType.DISTRIBUTE_PINS,
        payload={},
        run_at=utcnow() + timedelta(hours=1),
    )

    result = await run_due_jobs(db)
    assert result.processed == 0


async def test_checkin_reminder_job(db, test_user, sent_emails):
    record = _overdue_user(db, test_user, days_ago=33)
    scan = scanner_service.run_scan(db)
    assert scan.reminders_scheduled == 1

    result = await run_due_jobs(db)

    assert result.succeeded == 1
    assert [m["to_email"] for m in sent_emails] == [test_user.email]
    assert "overdue" in sent_emails[0]["subject"]
    db.refresh(record)
    assert record.reminder_sent_at is not None


async def test_reminder_skipped_after_new_checkin(db, test_user, sent_emails):
    _overdue_user(db, test_user, days_ago=33)
    scanner_service.run_scan(db)
    checkin_service.record_checkin(db, test_user.id)

    result = await run_due_jobs(db)

    assert result.succeeded == 1
    assert sent_emails == []


async def test_process_jobs_endpoint(client, internal_headers, db, test_user, make_contacts, sent_emails):
    make_contacts(ContactType.EXECUTOR)
    _overdue_user(db, test_user)
    await client.post("/internal/scheduled/inactivity-scan", headers=internal_headers)

    response = await client.post("/internal/scheduled/process-jobs", headers=internal_headers)

    assert response.status_code == 200
    assert response.json() == {"processed": 1, "succeeded": 1, "failed": 0}
    assert len(sent_emails) == 1


async def test_expire_requests_endpoint(client, internal_headers, db, open_request):
    request = open_request(now=utcnow() - timedelta(days=8))

    response = await client.post("/internal/scheduled/expire-requests", headers=internal_headers)

    assert response.status_code == 200
    assert response.json() == {"expired": 1}
    db.refresh(request)
    assert request.status == VerificationStatus.EXPIRED.value
    assert request.verification_result == "expired"


def test_cli_expire_requests(db, open_request):
    open_request(now=utcnow() - timedelta(days=8))

    result = CliRunner().invoke(cli, ["expire-requests"])

    assert result.exit_code == 0
    assert "Expired 1 verification requests" in result.output


def test_cli_scan(db, test_user):
    _overdue_user(db, test_user)

    result = CliRunner().invoke(cli, ["scan"])

    assert result.exit_code == 0
    assert "Verification requests created: 1" in result.output
