import uuid
from datetime import timedelta

from willtank.db.enums import AuditAction
from willtank.db.models import VerificationLog
from willtank.services import audit_service, checkin_service


async def _invoke(client, action, user_id):
    return await client.post(
        "/dev/test-executor-access",
        json={"action": action, "userId": str(user_id)},
    )


async def test_full_harness_flow(client, db, sent_emails):
    user_id = uuid.uuid4()

    setup = await _invoke(client, "setup_test_data", user_id)
    assert setup.status_code == 200
    assert setup.json()["contacts_created"] == 4
    assert setup.json()["settings"] == {"check_in_frequency_days": 7, "grace_period_days": 1}

    triggered = await _invoke(client, "trigger_death_verification", user_id)
    assert triggered.json()["success"] is True
    assert triggered.json()["status"] == "pins_sent"
    assert triggered.json()["pins_created"] == 4
    assert len(sent_emails) == 4

    status = (await _invoke(client, "get_verification_status", user_id)).json()
    verification = status["verification"]
    pins = [p["pin_code"] for p in sorted(verification["pins"], key=lambda p: p["index"])]
    assert len(pins) == 4

    unlock = await client.post(
        f"/executor/verifications/{verification['id']}/pins", json={"pins": pins}
    )
    assert unlock.json()["success"] is True

    cleanup = await _invoke(client, "cleanup_test_data", user_id)
    assert cleanup.json()["contacts_deleted"] == 4
    assert (
        db.query(VerificationLog)
        .filter(
            VerificationLog.user_id == user_id,
            VerificationLog.action == AuditAction.TEST_DATA_CLEANED.value,
        )
        .count()
        == 1
    )


async def test_trigger_without_contacts(client):
    response = await _invoke(client, "trigger_death_verification", uuid.uuid4())

    assert response.status_code == 200
    assert response.json()["success"] is False


async def test_status_without_request(client):
    response = await _invoke(client, "get_verification_status", uuid.uuid4())
    assert response.json()["verification"] is None


async def test_unknown_action(client):
    response = await _invoke(client, "drop_tables", uuid.uuid4())
    assert response.status_code == 400


async def test_setup_applies_weekly_cadence(client, db):
    user_id = uuid.uuid4()

    response = await _invoke(client, "setup_test_data", user_id)

    assert response.status_code == 200
    latest = checkin_service.get_latest_checkin(db, user_id)
    assert latest.next_check_in - latest.checked_in_at == timedelta(days=7)
    assert response.json()["next_check_in"] == latest.next_check_in.isoformat()
    actions = [e.action for e in audit_service.list_events(db, user_id)]
    assert AuditAction.SETTINGS_UPDATED.value in actions
    assert AuditAction.CHECK_IN.value in actions
