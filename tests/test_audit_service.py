from willtank.db.enums import AuditAction
from willtank.db.models import User, VerificationLog
from willtank.services import audit_service


def _log(db, user_id, action=AuditAction.CHECK_IN, details=None):
    entry = audit_service.log_event(db, user_id=user_id, action=action, details=details)
    db.commit()
    return entry


def test_first_entry_links_to_genesis(db, test_user):
    entry = _log(db, test_user.id)

    assert entry.prev_hash == audit_service.GENESIS_HASH
    assert len(entry.entry_hash) == 64


def test_entries_chain_per_user(db, test_user):
    other = User(email="other@test.com")
    db.add(other)
    db.commit()

    first = _log(db, test_user.id)
    _log(db, other.id)
    second = _log(db, test_user.id, details={"b": 2, "a": 1})

    assert second.prev_hash == first.entry_hash
    assert audit_service.verify_chain(db, test_user.id) is True
    assert audit_service.verify_chain(db, other.id) is True


def test_tampering_breaks_chain(db, test_user):
    _log(db, test_user.id, details={"next_check_in": "2026-01-08T12:00:00+00:00"})
    entry = _log(db, test_user.id, action=AuditAction.SETTINGS_UPDATED, details={"changed": {}})

    entry.details = {"changed": {"check_in_enabled": False}}
    db.commit()

    assert audit_service.verify_chain(db, test_user.id) is False


def test_log_event_does_not_commit(db, test_user):
    audit_service.log_event(db, user_id=test_user.id, action=AuditAction.CHECK_IN)
    db.rollback()

    assert db.query(VerificationLog).count() == 0


def test_list_events_newest_first_with_filter(db, test_user):
    _log(db, test_user.id, action=AuditAction.CHECK_IN)
    _log(db, test_user.id, action=AuditAction.SETTINGS_UPDATED)
    _log(db, test_user.id, action=AuditAction.CHECK_IN)

    events = audit_service.list_events(db, test_user.id)
    assert [e.action for e in events] == ["check_in", "settings_updated", "check_in"]
    assert events[0].id > events[-1].id

    only_checkins = audit_service.list_events(db, test_user.id, action=AuditAction.CHECK_IN)
    assert len(only_checkins) == 2


def test_canonical_json_is_order_independent():
    assert audit_service.canonical_json({"b": 1, "a": 2}) == audit_service.canonical_json(
        {"a": 2, "b": 1}
    )
    assert audit_service.canonical_json(None) == "{}"


def test_hash_email_hides_address():
    hashed = audit_service.hash_email("sam@example.com")
    assert "example.com" not in hashed
    assert hashed.split("...")[1] == audit_service.hash_email("Sam@Example.com").split("...")[1]
    assert audit_service.hash_email(None) == ""


async def test_logs_endpoint_reports_chain(authed_client):
    await authed_client.post("/death-verification/check-in")
    await authed_client.put("/death-verification/settings", json={"grace_period_days": 3})

    response = await authed_client.get("/death-verification/logs")

    assert response.status_code == 200
    data = response.json()
    assert data["chain_valid"] is True
    assert [item["action"] for item in data["items"]] == ["settings_updated", "check_in"]
