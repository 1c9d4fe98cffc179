from datetime import timedelta

import pytest

from willtank.db.enums import AuditAction, ContactType, VerificationStatus
from willtank.db.models import DocumentAccessSession, VerificationLog
from willtank.db.types import utcnow
from willtank.services import (
    audit_service,
    checkin_service,
    pin_service,
    unlock_service,
    verification_service,
)
from willtank.services.verification_service import RequestExpiredError, RequestNotFoundError


@pytest.fixture
async def distributed(db, make_contacts, open_request, sent_emails):
    """Request in pins_sent with stored PINs 111111, 222222, 999999."""
    make_contacts(ContactType.BENEFICIARY, ContactType.EXECUTOR, ContactType.TRUSTED)
    request = open_request()
    await pin_service.distribute_pins(db, request)
    for pin, code in zip(request.pins, ["111111", "222222", "999999"]):
        pin.pin_code = code
    db.commit()
    return request


CORRECT = ["111111", "222222", "999999"]


async def test_single_wrong_pin_reports_its_index(db, distributed):
    result = unlock_service.submit_pins(db, distributed.id, ["111111", "222222", "333333"])

    assert result.success is False
    assert result.invalid_pins == [2]
    assert result.access_token is None
    assert result.message == "1 PIN(s) are incorrect. Please check and try again."
    db.refresh(distributed)
    assert distributed.status == VerificationStatus.PINS_SENT.value


@pytest.mark.parametrize("wrong_index", [0, 1, 2])
async def test_any_single_wrong_value_leaves_status(db, distributed, wrong_index):
    pins = list(CORRECT)
    pins[wrong_index] = "000000"

    result = unlock_service.submit_pins(db, distributed.id, pins)

    assert result.invalid_pins == [wrong_index]
    assert distributed.status == VerificationStatus.PINS_SENT.value


async def test_order_matters(db, distributed):
    result = unlock_service.submit_pins(db, distributed.id, ["222222", "111111", "999999"])
    assert result.invalid_pins == [0, 1]


async def test_matched_pins_are_marked_used(db, distributed):
    unlock_service.submit_pins(db, distributed.id, ["111111", "000000", "000000"])

    used = {p.pin_index: p.used for p in distributed.pins}
    assert used == {0: True, 1: False, 2: False}
    status = verification_service.get_executor_status(db, distributed.id)
    assert status.pins_received == 1
    assert status.pins_required == 3


async def test_correct_pins_unlock(db, distributed):
    result = unlock_service.submit_pins(db, distributed.id, [" 111111", "222222 ", "999999"])

    assert result.success is True
    assert result.status == VerificationStatus.WILL_UNLOCKED.value
    assert result.access_token
    db.refresh(distributed)
    assert distributed.status == VerificationStatus.WILL_UNLOCKED.value
    assert distributed.completed_at is not None
    assert distributed.verification_result == "verified"

    session = (
        db.query(DocumentAccessSession)
        .filter(DocumentAccessSession.token == result.access_token)
        .one()
    )
    assert session.expires_at - session.granted_at == timedelta(minutes=30)

    actions = [e.action for e in audit_service.list_events(db, distributed.user_id)]
    assert AuditAction.VERIFICATION_VERIFIED.value in actions
    assert AuditAction.WILL_UNLOCKED.value in actions


async def test_retry_after_mismatch_succeeds(db, distributed):
    unlock_service.submit_pins(db, distributed.id, ["000000", "000000", "000000"])
    unlock_service.submit_pins(db, distributed.id, ["000000", "000000", "000000"])
    result = unlock_service.submit_pins(db, distributed.id, CORRECT)

    assert result.success is True
    assert (
        db.query(VerificationLog)
        .filter(VerificationLog.action == AuditAction.PIN_SUBMISSION_FAILED.value)
        .count()
        == 2
    )


async def test_wrong_count_is_rejected(db, distributed):
    with pytest.raises(unlock_service.PinCountMismatchError):
        unlock_service.submit_pins(db, distributed.id, ["111111", "222222"])
    assert distributed.status == VerificationStatus.PINS_SENT.value


async def test_unknown_request(db):
    import uuid

    with pytest.raises(RequestNotFoundError):
        unlock_service.submit_pins(db, uuid.uuid4(), CORRECT)


async def test_expired_request_is_marked_expired(db, distributed):
    later = distributed.expires_at + timedelta(seconds=1)

    with pytest.raises(RequestExpiredError):
        unlock_service.submit_pins(db, distributed.id, CORRECT, now=later)

    assert distributed.status == VerificationStatus.EXPIRED.value


async def test_pending_request_does_not_accept_pins(db, open_request):
    request = open_request()

    with pytest.raises(unlock_service.UnlockNotAvailableError):
        unlock_service.submit_pins(db, request.id, CORRECT)


async def test_reentry_before_archive_replaces_session(db, distributed):
    first = unlock_service.submit_pins(db, distributed.id, CORRECT)
    second = unlock_service.submit_pins(db, distributed.id, CORRECT)

    assert second.success is True
    assert second.access_token != first.access_token
    old = (
        db.query(DocumentAccessSession)
        .filter(DocumentAccessSession.token == first.access_token)
        .one()
    )
    assert old.revoked_at is not None


async def test_checkin_cancels_request_and_blocks_unlock(db, distributed):
    checkin_service.record_checkin(db, distributed.user_id)

    db.refresh(distributed)
    assert distributed.status == VerificationStatus.CANCELED.value
    assert distributed.verification_result == "check_in:user"
    with pytest.raises(unlock_service.UnlockNotAvailableError):
        unlock_service.submit_pins(db, distributed.id, CORRECT)

    assert db.query(DocumentAccessSession).count() == 0
    actions = [e.action for e in audit_service.list_events(db, distributed.user_id)]
    assert AuditAction.VERIFICATION_CANCELED.value in actions
    assert AuditAction.WILL_UNLOCKED.value not in actions
    assert audit_service.verify_chain(db, distributed.user_id) is True


async def test_canceled_request_is_gone_from_unlock_page(client, db, distributed):
    checkin_service.record_checkin(db, distributed.user_id)

    status = await client.get(f"/executor/verifications/{distributed.id}")
    assert status.status_code == 404

    response = await client.post(
        f"/executor/verifications/{distributed.id}/pins",
        json={"pins": CORRECT},
    )
    assert response.status_code == 409


async def test_no_reunlock_after_archive(db, distributed):
    unlock_service.submit_pins(db, distributed.id, CORRECT)
    distributed.archive_downloaded_at = utcnow()
    db.commit()

    with pytest.raises(unlock_service.ArchiveAlreadyDownloadedError):
        unlock_service.submit_pins(db, distributed.id, CORRECT)


async def test_audit_chain_verifies_after_full_flow(db, distributed):
    unlock_service.submit_pins(db, distributed.id, ["000000", "222222", "999999"])
    unlock_service.submit_pins(db, distributed.id, CORRECT)

    assert audit_service.verify_chain(db, distributed.user_id) is True


# =============================================================================
# HTTP
# =============================================================================

async def test_executor_status_endpoint(client, distributed):
    response = await client.get(f"/executor/verifications/{distributed.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "pins_sent"
    assert data["pins_required"] == 3
    assert data["pins_received"] == 0
    assert data["user_name"] == "Alex Owner"
    assert data["executor_name"] == "Executor 1"
    assert [s["contact_type"] for s in data["slots"]] == ["beneficiary", "executor", "trusted"]
    assert "pin_code" not in str(data)


async def test_unlock_link_resolves(client, distributed):
    response = await client.get(f"/executor/unlock/{distributed.unlock_token}")
    assert response.status_code == 200
    assert response.json()["verification_id"] == str(distributed.id)

    response = await client.get("/executor/unlock/not-a-token")
    assert response.status_code == 404


async def test_submit_pins_endpoint_mismatch(client, distributed):
    response = await client.post(
        f"/executor/verifications/{distributed.id}/pins",
        json={"pins": ["111111", "222222", "333333"]},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["invalidPins"] == [2]
    assert data["accessToken"] is None


async def test_submit_pins_endpoint_success(client, distributed):
    response = await client.post(
        f"/executor/verifications/{distributed.id}/pins",
        json={"pins": CORRECT},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["status"] == "will_unlocked"
    assert data["invalidPins"] == []
    assert data["accessToken"]
    assert data["accessExpiresAt"]


async def test_submit_pins_endpoint_wrong_count(client, distributed):
    response = await client.post(
        f"/executor/verifications/{distributed.id}/pins",
        json={"pins": ["111111"]},
    )
    assert response.status_code == 400


async def test_submit_pins_endpoint_unknown(client):
    response = await client.post(
        "/executor/verifications/00000000-0000-0000-0000-000000000001/pins",
        json={"pins": CORRECT},
    )
    assert response.status_code == 404


async def test_status_endpoint_expired(client, db, distributed):
    distributed.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    response = await client.get(f"/executor/verifications/{distributed.id}")

    assert response.status_code == 410
    db.refresh(distributed)
    assert distributed.status == VerificationStatus.EXPIRED.value
