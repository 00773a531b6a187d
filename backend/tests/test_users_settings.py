"""
Admin account and site settings tests.

Verifies:
- Account creation, listing, edits and soft deletion
- Self-protection and last-owner guards
- Settings defaults, partial updates, validation and reset
"""

import pytest
from sqlalchemy import select

from storeadmin.extensions import db
from storeadmin.models import AdminUser, AuditLog
from storeadmin.services import auth_service, settings_service
from storeadmin.services.settings_service import DEFAULT_SETTINGS
from storeadmin.validation import ConflictError, ValidationError

from conftest import TEST_PASSWORD


def _actions():
    return [log.action for log in db.session.execute(select(AuditLog).order_by(AuditLog.id)).scalars()]


# =============================================================================
# ACCOUNT SERVICE
# =============================================================================


class TestAccountService:

    def test_create_normalizes_and_hashes(self, db_session):
        user = auth_service.create_user("  New@Example.COM ", "Another!Pw1", name="New")
        assert user.email == "new@example.com"
        assert user.role == "business_processing"
        assert user.password_hash.startswith("$2")
        assert "Another!Pw1" not in user.password_hash

    def test_duplicate_email(self, owner):
        with pytest.raises(ConflictError):
            auth_service.create_user("OWNER@example.com", "Another!Pw1")

    @pytest.mark.parametrize(
        "email,password,role",
        [
            ("not-an-email", "Another!Pw1", "website_admin"),
            ("x@example.com", "short", "website_admin"),
            ("x@example.com", "Another!Pw1", "customer"),
            ("x@example.com", "Another!Pw1", "root"),
            (None, "Another!Pw1", "website_admin"),
        ],
    )
    def test_create_rejections(self, db_session, email, password, role):
        with pytest.raises(ValidationError):
            auth_service.create_user(email, password, role=role)

    def test_cannot_change_own_role(self, owner, make_admin):
        make_admin("second@example.com")
        with pytest.raises(ValidationError):
            auth_service.update_user(owner.id, owner.id, {"role": "business_processing"})

    def test_cannot_deactivate_self(self, owner, make_admin):
        make_admin("second@example.com")
        with pytest.raises(ValidationError):
            auth_service.deactivate_user(owner.id, owner.id)

    def test_last_owner_cannot_be_demoted(self, owner, make_admin):
        staff_manager = make_admin("manager@example.com", role="business_processing")
        with pytest.raises(ValidationError):
            auth_service.update_user(staff_manager.id, owner.id, {"role": "business_processing"})

    def test_last_owner_cannot_be_deactivated(self, owner, make_admin):
        other = make_admin("other@example.com", role="business_processing")
        with pytest.raises(ValidationError):
            auth_service.deactivate_user(other.id, owner.id)

    def test_second_owner_can_be_demoted(self, owner, make_admin):
        second = make_admin("second@example.com")
        result = auth_service.update_user(owner.id, second.id, {"role": "business_processing"})
        assert result.action == "user_role_changed"
        assert result.changes == {"role": ["website_admin", "business_processing"]}

    @pytest.mark.parametrize(
        "payload,action",
        [
            ({"name": "Renamed"}, "user_updated"),
            ({"password": "Brand!New1"}, "password_changed"),
            ({"is_active": False}, "user_deactivated"),
        ],
    )
    def test_update_actions(self, owner, make_admin, payload, action):
        target = make_admin("target@example.com", role="business_processing")
        assert auth_service.update_user(owner.id, target.id, payload).action == action

    def test_password_change_is_recorded_without_value(self, owner, make_admin):
        target = make_admin("target@example.com", role="business_processing")
        result = auth_service.update_user(owner.id, target.id, {"password": "Brand!New1"})
        assert result.changes == {"password": True}
        assert auth_service.verify_password(target.password_hash, "Brand!New1").ok

    def test_no_changes(self, owner, make_admin):
        target = make_admin("target@example.com", role="business_processing")
        with pytest.raises(ValidationError):
            auth_service.update_user(owner.id, target.id, {"name": target.name})

    def test_email_collision_on_update(self, owner, make_admin):
        target = make_admin("target@example.com", role="business_processing")
        with pytest.raises(ConflictError):
            auth_service.update_user(owner.id, target.id, {"email": "owner@example.com"})

    def test_deactivation_keeps_the_row(self, owner, make_admin):
        target = make_admin("target@example.com", role="business_processing")
        auth_service.deactivate_user(owner.id, target.id)
        row = db.session.get(AdminUser, target.id)
        assert row is not None
        assert row.is_active is False
        with pytest.raises(ValidationError):
            auth_service.deactivate_user(owner.id, target.id)


# =============================================================================
# ACCOUNT ROUTES
# =============================================================================


class TestAccountRoutes:

    def test_list(self, client, owner, staff, owner_headers):
        resp = client.get("/api/admin/users", headers=owner_headers)
        assert resp.status_code == 200
        users = resp.get_json()["users"]
        assert {u["email"] for u in users} == {"owner@example.com", "staff@example.com"}
        for u in users:
            assert "password_hash" not in u
            assert "mfa_secret" not in u

    def test_create_then_log_in(self, client, owner_headers):
        resp = client.post(
            "/api/admin/users",
            json={"email": "fresh@example.com", "password": TEST_PASSWORD, "role": "business_processing"},
            headers=owner_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["user"]["mfa_enabled"] is False

        login = client.post("/api/auth/login", json={"email": "fresh@example.com", "password": TEST_PASSWORD})
        assert login.status_code == 200
        assert login.get_json()["requiresChallengeSetup"] is True

    def test_duplicate_via_route(self, client, owner_headers):
        resp = client.post(
            "/api/admin/users",
            json={"email": "owner@example.com", "password": TEST_PASSWORD},
            headers=owner_headers,
        )
        assert resp.status_code == 400
        assert _actions() == []

    def test_update_and_deactivate(self, client, owner_headers, staff):
        resp = client.put(f"/api/admin/users/{staff.id}", json={"name": "Renamed"}, headers=owner_headers)
        assert resp.status_code == 200
        assert resp.get_json()["user"]["name"] == "Renamed"

        resp = client.delete(f"/api/admin/users/{staff.id}", headers=owner_headers)
        assert resp.status_code == 200
        assert resp.get_json()["user"]["is_active"] is False
        assert _actions() == ["user_updated", "user_deactivated"]

    def test_self_deactivation_refused(self, client, owner, owner_headers):
        resp = client.delete(f"/api/admin/users/{owner.id}", headers=owner_headers)
        assert resp.status_code == 400
        assert _actions() == []

    def test_missing_user(self, client, owner_headers):
        assert client.put("/api/admin/users/999", json={"name": "x"}, headers=owner_headers).status_code == 404


# =============================================================================
# SETTINGS
# =============================================================================


class TestSettings:

    def test_defaults(self, client, owner_headers):
        resp = client.get("/api/admin/settings", headers=owner_headers)
        assert resp.status_code == 200
        assert resp.get_json() == DEFAULT_SETTINGS

    def test_partial_update_merges(self, client, owner_headers):
        resp = client.put(
            "/api/admin/settings",
            json={"companyName": "Shop", "shippingCost": 3.5},
            headers=owner_headers,
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["settings"]["companyName"] == "Shop"
        assert body["settings"]["shippingCost"] == 3.5
        assert body["settings"]["tagline"] == DEFAULT_SETTINGS["tagline"]

        client.put("/api/admin/settings", json={"tagline": "New"}, headers=owner_headers)
        merged = client.get("/api/admin/settings", headers=owner_headers).get_json()
        assert merged["companyName"] == "Shop"
        assert merged["tagline"] == "New"

    @pytest.mark.parametrize(
        "payload",
        [
            {"unknownKey": "x"},
            {},
            {"shippingCost": -1},
            {"maxQuantity": "ten"},
            {"maxQuantity": True},
            {"companyName": 7},
            {"companyName": "x" * 5000},
        ],
    )
    def test_rejections(self, client, owner_headers, payload):
        resp = client.put("/api/admin/settings", json=payload, headers=owner_headers)
        assert resp.status_code == 400
        assert _actions() == []

    def test_reset(self, client, owner_headers):
        client.put("/api/admin/settings", json={"companyName": "Shop"}, headers=owner_headers)
        resp = client.delete("/api/admin/settings", headers=owner_headers)
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True, "settings": DEFAULT_SETTINGS}
        assert settings_service.get_settings() == DEFAULT_SETTINGS
        assert _actions() == ["settings_updated", "settings_reset"]

    def test_updated_by_is_recorded(self, owner):
        settings_service.update_settings({"companyName": "Shop"}, owner.email)
        row = settings_service._current_row()
        assert row.updated_by == "owner@example.com"
