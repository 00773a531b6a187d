"""
Operator surface tests: CLI commands, /health and /metrics.
"""

import hashlib
import re

import pytest
from sqlalchemy import select, text

from storeadmin.extensions import db
from storeadmin.models import AdminBackupCode, AdminUser, AuditLog
from storeadmin.services import audit_service, gift_card_service
from storeadmin.services.audit_service import AuditAction, build_entry

from conftest import TEST_PASSWORD


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestSystemInit:

    def test_creates_first_owner(self, runner, db_session):
        result = runner.invoke(args=["system", "init", "--email", "Boss@Example.com", "--password", TEST_PASSWORD])
        assert result.exit_code == 0, result.output
        assert "PASS Created website_admin 'boss@example.com'" in result.output

        user = db.session.execute(select(AdminUser)).scalar_one()
        assert user.role == "website_admin"
        assert user.mfa_enabled is False

    def test_is_idempotent(self, runner, owner):
        result = runner.invoke(args=["system", "init", "--email", "boss@example.com", "--password", TEST_PASSWORD])
        assert result.exit_code == 0
        assert "nothing to do" in result.output
        assert db.session.execute(select(AdminUser.email)).scalars().all() == ["owner@example.com"]

    def test_weak_password(self, runner, db_session):
        result = runner.invoke(args=["system", "init", "--email", "boss@example.com", "--password", "short"])
        assert result.exit_code == 1
        assert result.output.strip().endswith("characters")


class TestUserCommands:

    def test_list(self, runner, owner, staff):
        result = runner.invoke(args=["users", "list"])
        assert "owner@example.com" in result.output
        assert "business_processing" in result.output

    def test_create_duplicate(self, runner, owner):
        result = runner.invoke(args=["users", "create", "--email", "owner@example.com", "--password", TEST_PASSWORD])
        assert result.exit_code == 1
        assert result.output.startswith("FAIL")

    def test_reset_password(self, runner, client, owner):
        result = runner.invoke(args=["users", "reset-password", "--email", "owner@example.com", "--password", "Fresh!Pw99"])
        assert result.exit_code == 0, result.output

        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "Fresh!Pw99"})
        assert resp.status_code == 200
        assert "password_changed" in db.session.execute(select(AuditLog.action)).scalars().all()

    def test_reset_mfa(self, runner, make_admin):
        user = make_admin("owner@example.com", backup_codes=("AAAA1111",))
        result = runner.invoke(args=["users", "reset-mfa", "--email", "owner@example.com"])
        assert result.exit_code == 0

        db.session.expire_all()
        user = db.session.get(AdminUser, user.id)
        assert user.mfa_enabled is False
        assert user.mfa_secret is None
        assert db.session.execute(select(AdminBackupCode)).scalars().all() == []

    def test_tag_legacy_hashes(self, runner, client, owner, staff):
        bare = hashlib.sha256((TEST_PASSWORD + "legacy-pepper").encode()).hexdigest()
        owner.password_hash = bare
        db.session.commit()

        result = runner.invoke(args=["users", "tag-legacy-hashes"])
        assert result.exit_code == 0, result.output
        assert "PASS Tagged 1 legacy password digest(s)" in result.output

        db.session.expire_all()
        assert db.session.get(AdminUser, owner.id).password_hash == f"sha256:{bare}"
        assert db.session.get(AdminUser, staff.id).password_hash.startswith("$2")

        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 200

        again = runner.invoke(args=["users", "tag-legacy-hashes"])
        assert "PASS Tagged 0 legacy password digest(s)" in again.output

    def test_unknown_user(self, runner, db_session):
        result = runner.invoke(args=["users", "reset-mfa", "--email", "ghost@example.com"])
        assert result.exit_code == 1


class TestMaintenanceCommands:

    def test_generate_key(self, runner):
        result = runner.invoke(args=["crypto", "generate-key"])
        assert re.fullmatch(r"[0-9a-f]{64}", result.output.strip())

    def test_verify_audit(self, runner, owner):
        audit_service.write_entry(build_entry(AuditAction.LOGOUT, owner))
        result = runner.invoke(args=["maintenance", "verify-audit"])
        assert result.exit_code == 0
        assert "PASS 1 audit row(s) verified" in result.output

        db.session.execute(text("UPDATE audit_logs SET action = 'login_success'"))
        db.session.commit()
        db.session.expire_all()
        result = runner.invoke(args=["maintenance", "verify-audit"])
        assert result.exit_code == 1

    def test_expire_gift_cards(self, runner, db_session):
        gift_card_service.create_promotional_card(10, "owner@example.com")
        result = runner.invoke(args=["maintenance", "expire-gift-cards"])
        assert "PASS Expired 0 gift card(s)" in result.output

    def test_cleanup_rate_limits(self, runner, db_session):
        result = runner.invoke(args=["maintenance", "cleanup-rate-limits"])
        assert result.exit_code == 0
        assert result.output.startswith("PASS")


class TestHealthAndMetrics:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["security"] == {"status": "healthy"}

    def test_metrics(self, client, db_session):
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert "storeadmin_audit_dropped_total" in resp.get_data(as_text=True)
