from datetime import datetime, timedelta, timezone

import pytest

from willtank.db.enums import AuditAction, CheckinStatus
from willtank.db.models import CheckinRecord, VerificationLog
from willtank.schemas.death_verification import SettingsUpdate
from willtank.services import checkin_service, settings_service

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_default_settings_round_trip(db, test_user):
    created = settings_service.get_or_create_settings(db, test_user.id)
    db.expire_all()

    loaded = settings_service.get_settings(db, test_user.id)
    assert loaded.id == created.id
    assert loaded.check_in_frequency_days == 30
    assert loaded.grace_period_days == 7
    assert loaded.check_in_enabled is True
    assert loaded.notification_preferences == ["email"]
    assert loaded.unlock_mode == "pin"


def test_default_settings_open_first_checkin(db, test_user):
    settings_service.get_or_create_settings(db, test_user.id, now=T0)

    latest = checkin_service.get_latest_checkin(db, test_user.id)
    assert latest is not None
    assert latest.checked_in_at == T0
    assert latest.next_check_in == T0 + timedelta(days=30)


def test_get_or_create_settings_is_idempotent(db, test_user):
    first = settings_service.get_or_create_settings(db, test_user.id)
    second = settings_service.get_or_create_settings(db, test_user.id)
    assert first.id == second.id
    assert db.query(CheckinRecord).filter(CheckinRecord.user_id == test_user.id).count() == 1


@pytest.mark.parametrize("frequency", [1, 7, 30, 365])
def test_checkin_sets_next_due_exactly(db, test_user, frequency):
    settings_service.get_or_create_settings(db, test_user.id, open_checkin=False)
    settings_service.update_settings(
        db, test_user.id, SettingsUpdate(check_in_frequency_days=frequency)
    )

    record = checkin_service.record_checkin(db, test_user.id, now=T0)

    assert record.checked_in_at == T0
    assert record.next_check_in == T0 + timedelta(days=frequency)
    assert record.status == CheckinStatus.ALIVE.value


def test_latest_checkin_is_authoritative(db, test_user):
    checkin_service.record_checkin(db, test_user.id, now=T0)
    later = checkin_service.record_checkin(db, test_user.id, now=T0 + timedelta(days=3))

    assert checkin_service.get_latest_checkin(db, test_user.id).id == later.id
    history = checkin_service.list_checkins(db, test_user.id)
    assert [r.checked_in_at for r in history] == [T0 + timedelta(days=3), T0]


def test_checkin_status_overdue(db, test_user):
    settings_service.get_or_create_settings(db, test_user.id, open_checkin=False)
    settings_service.update_settings(
        db, test_user.id, SettingsUpdate(check_in_frequency_days=7, grace_period_days=2)
    )
    checkin_service.record_checkin(db, test_user.id, now=T0)

    on_time = checkin_service.get_checkin_status(db, test_user.id, now=T0 + timedelta(days=2, hours=1))
    assert on_time.is_overdue is False
    assert on_time.days_remaining == 5

    late = checkin_service.get_checkin_status(db, test_user.id, now=T0 + timedelta(days=8))
    assert late.is_overdue is True
    assert late.days_remaining == 0
    assert late.grace_deadline == T0 + timedelta(days=9)


def test_update_settings_logs_changed_fields(db, test_user):
    settings_service.update_settings(
        db,
        test_user.id,
        SettingsUpdate(grace_period_days=3, check_in_enabled=False),
    )

    entry = (
        db.query(VerificationLog)
        .filter(VerificationLog.action == AuditAction.SETTINGS_UPDATED.value)
        .one()
    )
    assert entry.details == {"changed": {"grace_period_days": 3, "check_in_enabled": False}}


def test_update_settings_without_changes_writes_no_audit(db, test_user):
    settings_service.update_settings(db, test_user.id, SettingsUpdate(grace_period_days=7))

    assert (
        db.query(VerificationLog)
        .filter(VerificationLog.action == AuditAction.SETTINGS_UPDATED.value)
        .count()
        == 0
    )


def test_update_settings_rejects_explicit_null_frequency(db, test_user):
    with pytest.raises(settings_service.SettingsValidationError):
        settings_service.update_settings(
            db, test_user.id, SettingsUpdate(check_in_frequency_days=None)
        )


# =============================================================================
# HTTP
# =============================================================================

async def test_get_settings_creates_defaults(authed_client):
    response = await authed_client.get("/death-verification/settings")
    assert response.status_code == 200
    data = response.json()
    assert data["check_in_frequency_days"] == 30
    assert data["grace_period_days"] == 7
    assert data["check_in_enabled"] is True


async def test_put_settings_rejects_zero_frequency(authed_client):
    response = await authed_client.put(
        "/death-verification/settings",
        json={"check_in_frequency_days": 0},
    )
    assert response.status_code == 422


@pytest.mark.parametrize("mode", ["executor", "trusted"])
async def test_put_settings_rejects_unsupported_unlock_mode(authed_client, mode):
    response = await authed_client.put(
        "/death-verification/settings",
        json={"unlock_mode": mode},
    )
    assert response.status_code == 422

    current = await authed_client.get("/death-verification/settings")
    assert current.json()["unlock_mode"] == "pin"


async def test_put_settings_partial_update(authed_client):
    response = await authed_client.put(
        "/death-verification/settings",
        json={"grace_period_days": 0, "notification_preferences": ["sms", "email"]},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["grace_period_days"] == 0
    assert data["check_in_frequency_days"] == 30
    assert data["notification_preferences"] == ["email", "sms"]


async def test_check_in_endpoint(authed_client):
    response = await authed_client.post("/death-verification/check-in")
    assert response.status_code == 201
    record = response.json()
    assert record["status"] == "alive"

    status = await authed_client.get("/death-verification/check-in")
    assert status.status_code == 200
    assert status.json()["is_overdue"] is False
    assert status.json()["days_remaining"] == 30


async def test_owner_endpoints_require_session(client):
    response = await client.get("/death-verification/settings")
    assert response.status_code == 401


async def test_owner_endpoints_reject_bad_token(client):
    response = await client.get(
        "/death-verification/settings",
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert response.status_code == 401
