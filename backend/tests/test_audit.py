"""
Audit trail tests.

Verifies:
- Exactly one record per successful state-changing privileged request
- No record for refused, failed or read-only requests
- Rows are append-only and carry a verifiable digest
- The sink never raises; drops and failures are counted
- Query filters and pagination
"""

import pytest
from sqlalchemy import func, select, text

from storeadmin.extensions import db, get_runtime
from storeadmin.metrics import registry
from storeadmin.models import AuditLog, ImmutableRecordError
from storeadmin.services import audit_service
from storeadmin.services.audit_service import AuditAction, AuditSink, build_entry


NEW_USER = {"email": "new@example.com", "password": "Another!Pw1", "role": "business_processing"}


def _logs():
    return db.session.execute(select(AuditLog).order_by(AuditLog.id)).scalars().all()


def _count():
    return db.session.execute(select(func.count()).select_from(AuditLog)).scalar_one()


def _metric(name):
    return registry.get_sample_value(name) or 0.0


# =============================================================================
# GATE BEHAVIOUR
# =============================================================================


class TestGateAuditing:

    def test_successful_mutation_writes_one_record(self, client, owner, owner_headers):
        resp = client.post("/api/admin/users", json=NEW_USER, headers=owner_headers)
        assert resp.status_code == 201

        logs = _logs()
        assert len(logs) == 1
        log = logs[0]
        assert log.action == "user_created"
        assert log.user_id == owner.id
        assert log.user_email == "owner@example.com"
        assert log.resource_type == "admin_user"
        assert log.resource_id == str(resp.get_json()["user"]["id"])
        assert log.details == {"email": "new@example.com", "role": "business_processing"}

    def test_password_never_reaches_details(self, client, owner_headers):
        client.post("/api/admin/users", json=NEW_USER, headers=owner_headers)
        assert "Another!Pw1" not in str(_logs()[0].details)

    def test_request_metadata_is_captured(self, client, owner_headers):
        client.post(
            "/api/admin/users",
            json=NEW_USER,
            headers={**owner_headers, "User-Agent": "pytest-agent"},
            environ_base={"REMOTE_ADDR": "198.51.100.7"},
        )
        log = _logs()[0]
        assert log.ip_address == "198.51.100.7"
        assert log.user_agent == "pytest-agent"

    def test_failed_mutation_writes_nothing(self, client, owner_headers):
        resp = client.post("/api/admin/users", json={"email": "bad"}, headers=owner_headers)
        assert resp.status_code == 400
        assert _count() == 0

    def test_reads_write_nothing(self, client, owner_headers):
        client.get("/api/admin/users", headers=owner_headers)
        client.get("/api/admin/settings", headers=owner_headers)
        assert _count() == 0

    def test_action_refined_by_endpoint(self, client, owner, owner_headers, make_admin):
        target = make_admin("target@example.com", role="business_processing")
        resp = client.put(
            f"/api/admin/users/{target.id}",
            json={"role": "website_admin"},
            headers=owner_headers,
        )
        assert resp.status_code == 200
        log = _logs()[0]
        assert log.action == "user_role_changed"
        assert log.details["changes"] == {"role": ["business_processing", "website_admin"]}

    def test_state_from_previous_request_does_not_leak(self, client, owner_headers, make_admin):
        target = make_admin("target@example.com", role="business_processing")
        client.put(f"/api/admin/users/{target.id}", json={"role": "website_admin"}, headers=owner_headers)
        client.put("/api/admin/settings", json={"companyName": "Shop"}, headers=owner_headers)
        actions = [log.action for log in _logs()]
        assert actions == ["user_role_changed", "settings_updated"]
        assert _logs()[1].details == {"updatedFields": ["companyName"]}


# =============================================================================
# IMMUTABILITY AND INTEGRITY
# =============================================================================


class TestIntegrity:

    def _one_record(self, owner):
        audit_service.write_entry(build_entry(AuditAction.LOGOUT, owner))
        return _logs()[0]

    def test_update_is_refused(self, owner):
        log = self._one_record(owner)
        log.action = "login_success"
        with pytest.raises(ImmutableRecordError):
            db.session.commit()
        db.session.rollback()

    def test_delete_is_refused(self, owner):
        log = self._one_record(owner)
        db.session.delete(log)
        with pytest.raises(ImmutableRecordError):
            db.session.commit()
        db.session.rollback()

    def test_digest_verifies(self, owner):
        log = self._one_record(owner)
        assert len(log.record_digest) == 64
        assert audit_service.verify_record(log)

    def test_out_of_band_edit_is_detected(self, owner):
        log = self._one_record(owner)
        db.session.execute(text("UPDATE audit_logs SET user_email = 'mallory@example.com' WHERE id = :id"), {"id": log.id})
        db.session.commit()
        db.session.expire_all()
        tampered = db.session.get(AuditLog, log.id)
        assert not audit_service.verify_record(tampered)

    def test_unknown_action_is_rejected(self):
        with pytest.raises(ValueError):
            build_entry("made_up_action")


# =============================================================================
# SINK
# =============================================================================


class TestSink:

    def test_inline_failure_is_swallowed_and_counted(self, app, owner, monkeypatch):
        def broken(entry):
            raise RuntimeError("disk full")

        monkeypatch.setattr(audit_service, "write_entry", broken)
        before = _metric("storeadmin_audit_write_failures_total")
        assert get_runtime().audit.emit(build_entry(AuditAction.LOGOUT, owner)) is False
        assert _metric("storeadmin_audit_write_failures_total") == before + 1

    def test_record_never_raises_on_bad_action(self, owner):
        assert audit_service.record("made_up_action", owner) is False
        assert _count() == 0

    def test_full_queue_drops_and_counts(self, app, owner, monkeypatch):
        sink = AuditSink(app, mode="thread", queue_size=1)
        monkeypatch.setattr(sink, "_ensure_worker", lambda: None)
        before = _metric("storeadmin_audit_dropped_total")

        assert sink.emit(build_entry(AuditAction.LOGOUT, owner)) is True
        assert sink.emit(build_entry(AuditAction.LOGOUT, owner)) is False
        assert _metric("storeadmin_audit_dropped_total") == before + 1

    def test_thread_mode_writes_in_background(self, app, owner):
        entry = build_entry(AuditAction.LOGOUT, owner)
        db.session.commit()

        sink = AuditSink(app, mode="thread", queue_size=10)
        assert sink.emit(entry) is True
        assert sink.drain(timeout=5.0)
        sink.stop()

        db.session.expire_all()
        assert [log.action for log in _logs()] == ["logout"]


# =============================================================================
# QUERY
# =============================================================================


class TestAuditQuery:

    @pytest.fixture
    def seeded(self, owner):
        for action in ("login_success", "logout", "login_success"):
            audit_service.write_entry(build_entry(action, owner))
        audit_service.write_entry(build_entry("login_failed", email="intruder@example.com"))

    def test_newest_first_with_pagination(self, client, owner_headers, seeded):
        resp = client.get("/api/admin/audit?limit=2", headers=owner_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert len(body["logs"]) == 2
        assert body["logs"][0]["action"] == "login_failed"
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 4, "pages": 2}

    def test_filter_by_action(self, client, owner_headers, seeded):
        body = client.get("/api/admin/audit?action=login_success", headers=owner_headers).get_json()
        assert body["pagination"]["total"] == 2
        assert {log["action"] for log in body["logs"]} == {"login_success"}

    def test_filter_by_email_fragment(self, client, owner_headers, seeded):
        body = client.get("/api/admin/audit?user_email=INTRUDER", headers=owner_headers).get_json()
        assert body["pagination"]["total"] == 1
        assert body["logs"][0]["user_id"] is None

    def test_limit_is_capped(self, client, owner_headers, seeded):
        body = client.get("/api/admin/audit?limit=1000", headers=owner_headers).get_json()
        assert body["pagination"]["limit"] == 100

    @pytest.mark.parametrize("query", ["page=0", "limit=abc", "from=yesterday", "user_id=x"])
    def test_bad_parameters(self, client, owner_headers, query):
        resp = client.get(f"/api/admin/audit?{query}", headers=owner_headers)
        assert resp.status_code == 400
