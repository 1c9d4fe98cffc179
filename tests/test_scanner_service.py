from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from willtank.db.enums import (
    AuditAction, CheckinStatus, JobType, TriggerReason, VerificationStatus
)
from willtank.db.models import Job, VerificationLog, VerificationRequest
from willtank.schemas.death_verification import SettingsUpdate
from willtank.services import checkin_service, scanner_service, settings_service

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _day(n: float) -> datetime:
    return T0 + timedelta(days=n)


@pytest.fixture
def weekly_user(db, test_user):
    """Checked in on day 0 with frequency=7, grace=2."""
    settings_service.get_or_create_settings(db, test_user.id, open_checkin=False)
    settings_service.update_settings(
        db, test_user.id, SettingsUpdate(check_in_frequency_days=7, grace_period_days=2)
    )
    checkin_service.record_checkin(db, test_user.id, now=T0)
    return test_user


def _requests(db, user_id):
    return db.query(VerificationRequest).filter(VerificationRequest.user_id == user_id).all()


def test_within_grace_then_past_grace(db, weekly_user):
    day8 = scanner_service.run_scan(db, now=_day(8))
    assert day8.requests_created == 0
    assert day8.reminders_scheduled == 1
    assert _requests(db, weekly_user.id) == []

    day10 = scanner_service.run_scan(db, now=_day(10))
    assert day10.requests_created == 1
    [request] = _requests(db, weekly_user.id)
    assert request.trigger_reason == TriggerReason.MISSED_CHECKINS.value
    assert request.initiated_by == "system"
    assert request.status == VerificationStatus.PENDING.value
    assert request.expires_at == _day(17)
    assert day10.created_request_ids == [request.id]


def test_exactly_at_grace_deadline_is_not_overdue(db, weekly_user):
    result = scanner_service.run_scan(db, now=_day(9))
    assert result.requests_created == 0
    assert _requests(db, weekly_user.id) == []


def test_not_due_yet_is_not_scanned(db, weekly_user):
    result = scanner_service.run_scan(db, now=_day(6))
    assert result.scanned == 0
    assert result.reminders_scheduled == 0


def test_scan_is_idempotent_for_open_request(db, weekly_user):
    scanner_service.run_scan(db, now=_day(10))
    again = scanner_service.run_scan(db, now=_day(11))

    assert again.requests_created == 0
    assert again.already_open == 1
    assert len(_requests(db, weekly_user.id)) == 1


def test_scan_schedules_pin_distribution(db, weekly_user):
    result = scanner_service.run_scan(db, now=_day(10))

    job = db.query(Job).filter(Job.job_type == JobType.DISTRIBUTE_PINS.value).one()
    assert job.payload == {"verification_id": str(result.created_request_ids[0])}
    assert job.idempotency_key == f"distribute_pins:{result.created_request_ids[0]}"
    assert job.run_at == _day(10)


def test_disabled_user_never_triggers(db, weekly_user):
    settings_service.update_settings(
        db, weekly_user.id, SettingsUpdate(check_in_enabled=False)
    )

    for n in (8, 10, 30, 365):
        result = scanner_service.run_scan(db, now=_day(n))
        assert result.scanned == 0

    assert _requests(db, weekly_user.id) == []


def test_reminder_scheduled_once_per_checkin(db, weekly_user):
    scanner_service.run_scan(db, now=_day(7.5))
    second = scanner_service.run_scan(db, now=_day(8.5))

    assert second.reminders_scheduled == 0
    jobs = db.query(Job).filter(Job.job_type == JobType.CHECKIN_REMINDER.value).all()
    assert len(jobs) == 1
    latest = checkin_service.get_latest_checkin(db, weekly_user.id)
    assert latest.status == CheckinStatus.OVERDUE.value
    assert jobs[0].payload["checkin_id"] == str(latest.id)
    assert (
        db.query(VerificationLog)
        .filter(VerificationLog.action == AuditAction.CHECK_IN_OVERDUE.value)
        .count()
        == 1
    )


def test_new_checkin_clears_overdue(db, weekly_user):
    scanner_service.run_scan(db, now=_day(8))
    checkin_service.record_checkin(db, weekly_user.id, now=_day(8.5))

    result = scanner_service.run_scan(db, now=_day(10))
    assert result.scanned == 0
    assert _requests(db, weekly_user.id) == []


def test_failed_episode_is_not_reopened(db, weekly_user):
    scanner_service.run_scan(db, now=_day(10))
    [request] = _requests(db, weekly_user.id)
    request.status = VerificationStatus.FAILED.value
    db.commit()

    result = scanner_service.run_scan(db, now=_day(12))
    assert result.requests_created == 0
    assert result.already_open == 1
    assert len(_requests(db, weekly_user.id)) == 1


def test_checkin_cancels_open_request_and_restarts_clock(db, weekly_user):
    scanner_service.run_scan(db, now=_day(10))
    checkin_service.record_checkin(db, weekly_user.id, now=_day(11))

    [canceled] = _requests(db, weekly_user.id)
    assert canceled.status == VerificationStatus.CANCELED.value
    assert canceled.completed_at == _day(11)
    assert scanner_service.run_scan(db, now=_day(17)).scanned == 0

    result = scanner_service.run_scan(db, now=_day(21))
    assert result.requests_created == 1
    statuses = sorted(r.status for r in _requests(db, weekly_user.id))
    assert statuses == [VerificationStatus.CANCELED.value, VerificationStatus.PENDING.value]


def test_expired_episode_reopens(db, weekly_user):
    scanner_service.run_scan(db, now=_day(10))

    result = scanner_service.run_scan(db, now=_day(18))

    assert result.requests_created == 1
    statuses = sorted(r.status for r in _requests(db, weekly_user.id))
    assert statuses == [VerificationStatus.EXPIRED.value, VerificationStatus.PENDING.value]


def test_one_user_failure_does_not_stop_scan(db, weekly_user, monkeypatch):
    from willtank.db.models import User
    from willtank.services import verification_service

    other = User(email="other@test.com")
    db.add(other)
    db.commit()
    settings_service.get_or_create_settings(db, other.id, open_checkin=False)
    checkin_service.record_checkin(db, other.id, now=_day(-60))

    original = verification_service.open_request

    def flaky_open_request(db, user_id, **kwargs):
        if user_id == other.id:
            raise RuntimeError("boom")
        return original(db, user_id, **kwargs)

    monkeypatch.setattr(verification_service, "open_request", flaky_open_request)

    result = scanner_service.run_scan(db, now=_day(10))
    assert result.scanned == 2
    assert result.errors == 1
    assert result.requests_created == 1


def test_storage_rejects_second_open_request(db, test_user):
    for _ in range(2):
        db.add(
            VerificationRequest(
                user_id=test_user.id,
                status=VerificationStatus.PENDING.value,
                trigger_reason=TriggerReason.MANUAL.value,
                initiated_by="test",
                expires_at=_day(7),
            )
        )
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_storage_allows_open_request_after_terminal(db, test_user):
    db.add(
        VerificationRequest(
            user_id=test_user.id,
            status=VerificationStatus.EXPIRED.value,
            trigger_reason=TriggerReason.MANUAL.value,
            initiated_by="test",
            expires_at=_day(7),
        )
    )
    db.add(
        VerificationRequest(
            user_id=test_user.id,
            status=VerificationStatus.PENDING.value,
            trigger_reason=TriggerReason.MANUAL.value,
            initiated_by="test",
            expires_at=_day(7),
        )
    )
    db.commit()
    assert len(_requests(db, test_user.id)) == 2


async def test_inactivity_scan_endpoint(client, internal_headers, db, test_user):
    settings_service.get_or_create_settings(db, test_user.id, open_checkin=False)
    checkin_service.record_checkin(
        db, test_user.id, now=datetime.now(timezone.utc) - timedelta(days=60)
    )

    response = await client.post("/internal/scheduled/inactivity-scan", headers=internal_headers)

    assert response.status_code == 200
    assert response.json()["requests_created"] == 1


async def test_inactivity_scan_requires_secret(client):
    response = await client.post("/internal/scheduled/inactivity-scan")
    assert response.status_code == 401

    response = await client.post(
        "/internal/scheduled/inactivity-scan",
        headers={"X-Internal-Secret": "wrong"},
    )
    assert response.status_code == 401
