"""
Session pipeline tests.

Verifies:
- Password step answers identically for every failure branch
- The challenge step issues the three auth cookies
- Refresh rotates cookies and refuses anything but a refresh grant
- Enrollment (setup -> verify-setup) hands out backup codes exactly once
- Legacy sha256 verifiers are upgraded to bcrypt on successful login
"""

import hashlib

import pyotp
import pytest
from sqlalchemy import select

from storeadmin.extensions import db, get_runtime
from storeadmin.models import AdminBackupCode, AuditLog
from storeadmin.services import auth_service
from storeadmin.services.auth_service import verify_password

from conftest import (
    TEST_PASSWORD,
    bearer_headers,
    current_totp,
    login_with_challenge,
    set_cookie_headers,
)


def _wrong_code():
    return f"{(int(current_totp()) + 500000) % 1000000:06d}"


def _audit_actions():
    return [log.action for log in db.session.execute(select(AuditLog).order_by(AuditLog.id)).scalars()]


# =============================================================================
# PASSWORD STEP
# =============================================================================


class TestPasswordStep:

    def test_enrolled_user_gets_pre_challenge_token(self, client, owner):
        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["requiresChallenge"] is True
        assert body["preChallengeToken"]
        # No session cookies before the challenge
        assert resp.headers.getlist("Set-Cookie") == []

    def test_email_is_case_insensitive(self, client, owner):
        resp = client.post("/api/auth/login", json={"email": "  Owner@Example.COM ", "password": TEST_PASSWORD})
        assert resp.status_code == 200

    def test_unenrolled_user_gets_setup_token(self, client, make_admin):
        make_admin("fresh@example.com", mfa_secret=None)
        resp = client.post("/api/auth/login", json={"email": "fresh@example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["requiresChallengeSetup"] is True
        assert body["token"]

    @pytest.mark.parametrize(
        "email,password,reason",
        [
            ("nobody@example.com", TEST_PASSWORD, "unknown_email"),
            ("owner@example.com", "Wrong!Password", "wrong_password"),
            ("inactive@example.com", TEST_PASSWORD, "inactive"),
        ],
    )
    def test_failures_are_indistinguishable(self, client, owner, make_admin, email, password, reason):
        make_admin("inactive@example.com", is_active=False)
        resp = client.post("/api/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 401
        assert resp.get_json() == {"error": "Invalid credentials"}

        log = db.session.execute(
            select(AuditLog).where(AuditLog.action == "login_failed")
        ).scalar_one()
        assert log.details["reason"] == reason
        assert log.user_email == email

    @pytest.mark.parametrize("payload", [{}, {"email": "owner@example.com"}, {"password": "x"}])
    def test_missing_fields(self, client, db_session, payload):
        resp = client.post("/api/auth/login", json=payload)
        assert resp.status_code == 400

    def test_legacy_verifier_is_upgraded(self, app, client, owner):
        digest = hashlib.sha256((TEST_PASSWORD + "legacy-pepper").encode()).hexdigest()
        owner.password_hash = "sha256:" + digest
        db.session.commit()

        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 200

        db.session.refresh(owner)
        assert owner.password_hash.startswith("$2")
        assert verify_password(owner.password_hash, TEST_PASSWORD).ok

    def test_legacy_verifier_wrong_password(self, client, owner):
        owner.password_hash = "sha256:" + hashlib.sha256(b"other" + b"legacy-pepper").hexdigest()
        db.session.commit()
        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 401
        db.session.refresh(owner)
        assert owner.password_hash.startswith("sha256:")

    def test_imported_bare_digest_is_tagged_then_upgraded(self, client, owner, make_admin):
        bare = hashlib.sha256((TEST_PASSWORD + "legacy-pepper").encode()).hexdigest()
        owner.password_hash = bare
        db.session.commit()
        staff = make_admin("staff@example.com", role="business_processing")
        bcrypt_hash = staff.password_hash

        assert auth_service.tag_legacy_verifiers() == 1
        db.session.refresh(owner)
        db.session.refresh(staff)
        assert owner.password_hash == "sha256:" + bare
        assert staff.password_hash == bcrypt_hash

        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})
        assert resp.status_code == 200
        db.session.refresh(owner)
        assert owner.password_hash.startswith("$2")

        # Idempotent
        assert auth_service.tag_legacy_verifiers() == 0

    def test_unknown_verifier_format_never_matches(self, client, owner):
        owner.password_hash = "plaintext-password"
        db.session.commit()
        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "plaintext-password"})
        assert resp.status_code == 401


# =============================================================================
# CHALLENGE STEP
# =============================================================================


class TestChallengeStep:

    def test_success_sets_cookies_and_audits(self, client, owner):
        resp = login_with_challenge(client, "owner@example.com")
        body = resp.get_json()
        assert body["success"] is True
        assert body["user"]["email"] == "owner@example.com"
        assert len(body["csrfToken"]) == 64

        cookies = set_cookie_headers(resp)
        assert set(cookies) == {"fs_access_token", "fs_refresh_token", "fs_csrf_token"}
        assert _audit_actions()[-2:] == ["mfa_validated", "login_success"]

    def test_wrong_code(self, client, owner):
        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})
        pre_token = resp.get_json()["preChallengeToken"]
        resp = client.post("/api/auth/challenge", json={"code": _wrong_code(), "preChallengeToken": pre_token})
        assert resp.status_code == 401
        assert resp.headers.getlist("Set-Cookie") == []

    def test_code_format_is_validated(self, client, owner):
        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})
        pre_token = resp.get_json()["preChallengeToken"]
        resp = client.post("/api/auth/challenge", json={"code": "12ab56", "preChallengeToken": pre_token})
        assert resp.status_code == 400

    def test_code_with_spaces_is_accepted(self, client, owner):
        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})
        pre_token = resp.get_json()["preChallengeToken"]
        code = current_totp()
        resp = client.post("/api/auth/challenge", json={"code": f"{code[:3]} {code[3:]}", "preChallengeToken": pre_token})
        assert resp.status_code == 200

    def test_mfa_reset_after_password_step(self, client, owner):
        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})
        pre_token = resp.get_json()["preChallengeToken"]
        owner.mfa_enabled = False
        owner.mfa_secret = None
        db.session.commit()

        resp = client.post("/api/auth/challenge", json={"code": current_totp(), "preChallengeToken": pre_token})
        assert resp.status_code == 401
        assert resp.headers.getlist("Set-Cookie") == []

        log = db.session.execute(select(AuditLog).order_by(AuditLog.id.desc())).scalars().first()
        assert log.action == "login_failed"
        assert log.details == {"reason": "mfa_not_configured", "step": "challenge"}

    def test_access_token_cannot_stand_in_for_pre_challenge(self, client, owner):
        token = bearer_headers(owner)["Authorization"].split(" ", 1)[1]
        resp = client.post("/api/auth/challenge", json={"code": current_totp(), "preChallengeToken": token})
        assert resp.status_code == 401

    def test_challenge_lockout(self, client, owner):
        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})
        pre_token = resp.get_json()["preChallengeToken"]
        for _ in range(5):
            resp = client.post("/api/auth/challenge", json={"code": _wrong_code(), "preChallengeToken": pre_token})
            assert resp.status_code == 401

        # Even the right code is refused while locked
        resp = client.post("/api/auth/challenge", json={"code": current_totp(), "preChallengeToken": pre_token})
        assert resp.status_code == 429
        assert 0 < resp.get_json()["retry_after_seconds"] <= 900

    def test_backup_code_low_warning(self, client, make_admin):
        make_admin("owner@example.com", backup_codes=("AAAA1111", "BBBB2222", "CCCC3333"))
        resp = client.post("/api/auth/login", json={"email": "owner@example.com", "password": TEST_PASSWORD})
        pre_token = resp.get_json()["preChallengeToken"]

        resp = client.post("/api/auth/challenge-backup", json={"code": "aaaa-1111", "preChallengeToken": pre_token})
        assert resp.status_code == 200
        warning = resp.get_json()["warning"]
        assert "2 backup codes remaining" in warning
        assert "regenerate" in warning
        assert "mfa_backup_used" in _audit_actions()


# =============================================================================
# REFRESH / LOGOUT / VERIFY
# =============================================================================


class TestSessionLifecycle:

    def test_verify_with_cookie(self, client, owner):
        login_with_challenge(client, "owner@example.com")
        resp = client.get("/api/auth/verify")
        assert resp.status_code == 200
        assert resp.get_json()["user"]["email"] == "owner@example.com"

    def test_verify_without_credentials(self, client, db_session):
        resp = client.get("/api/auth/verify")
        assert resp.status_code == 401

    def test_refresh_rotates_cookies(self, client, owner):
        first = login_with_challenge(client, "owner@example.com")
        resp = client.post("/api/auth/refresh")
        assert resp.status_code == 200
        cookies = set_cookie_headers(resp)
        assert set(cookies) == {"fs_access_token", "fs_refresh_token", "fs_csrf_token"}
        assert resp.get_json()["csrfToken"] != first.get_json()["csrfToken"]
        assert "token_refreshed" in _audit_actions()

    def test_refresh_token_in_body(self, client, owner):
        token = get_runtime().tokens.issue_refresh(owner)
        resp = client.post("/api/auth/refresh", json={"refreshToken": token})
        assert resp.status_code == 200

    def test_refresh_refuses_access_token_and_clears_cookies(self, client, owner):
        token = bearer_headers(owner)["Authorization"].split(" ", 1)[1]
        resp = client.post("/api/auth/refresh", json={"refreshToken": token})
        assert resp.status_code == 401
        cookies = set_cookie_headers(resp)
        assert "Max-Age=0" in cookies["fs_access_token"]

    def test_refresh_after_deactivation(self, client, owner, make_admin):
        login_with_challenge(client, "owner@example.com")
        owner.is_active = False
        db.session.commit()
        resp = client.post("/api/auth/refresh")
        assert resp.status_code == 401

    def test_refresh_picks_up_role_change(self, client, owner, make_admin):
        make_admin("second@example.com")
        login_with_challenge(client, "owner@example.com")
        owner.role = "business_processing"
        db.session.commit()
        resp = client.post("/api/auth/refresh")
        assert resp.status_code == 200
        assert resp.get_json()["user"]["role"] == "business_processing"

    def test_logout_clears_cookies(self, client, owner):
        login_with_challenge(client, "owner@example.com")
        resp = client.post("/api/auth/logout")
        assert resp.status_code == 200
        cookies = set_cookie_headers(resp)
        for name in ("fs_access_token", "fs_refresh_token", "fs_csrf_token"):
            assert "Max-Age=0" in cookies[name]
        assert "logout" in _audit_actions()

        assert client.get("/api/auth/verify").status_code == 401

    def test_logout_without_session(self, client, db_session):
        resp = client.post("/api/auth/logout")
        assert resp.status_code == 200


# =============================================================================
# ENROLLMENT
# =============================================================================


class TestEnrollment:

    def _setup_token(self, client):
        resp = client.post("/api/auth/login", json={"email": "fresh@example.com", "password": TEST_PASSWORD})
        return resp.get_json()["token"]

    def test_full_enrollment(self, client, make_admin):
        user = make_admin("fresh@example.com", mfa_secret=None)
        headers = {"Authorization": f"Bearer {self._setup_token(client)}"}

        resp = client.post("/api/auth/challenge/setup", headers=headers)
        assert resp.status_code == 200
        setup = resp.get_json()
        assert setup["otpauth_uri"].startswith("otpauth://totp/")

        resp = client.get("/api/auth/challenge/status", headers=headers)
        assert resp.get_json() == {"mfa_enabled": False, "mfa_configured": True, "backup_codes_remaining": 0}

        code = pyotp.TOTP(setup["secret"]).now()
        resp = client.post("/api/auth/challenge/verify-setup", json={"code": code}, headers=headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert len(body["backupCodes"]) == 10
        assert all(len(c) == 8 for c in body["backupCodes"])
        assert len(set_cookie_headers(resp)) == 3

        db.session.refresh(user)
        assert user.mfa_enabled is True
        stored = db.session.execute(
            select(AdminBackupCode).where(AdminBackupCode.user_id == user.id)
        ).scalars().all()
        assert len(stored) == 10
        # Only salted digests are stored
        assert all(c.code_hash not in body["backupCodes"] for c in stored)

    def test_verify_setup_with_wrong_code(self, client, make_admin):
        make_admin("fresh@example.com", mfa_secret=None)
        headers = {"Authorization": f"Bearer {self._setup_token(client)}"}
        setup = client.post("/api/auth/challenge/setup", headers=headers).get_json()
        wrong = f"{(int(pyotp.TOTP(setup['secret']).now()) + 500000) % 1000000:06d}"
        resp = client.post("/api/auth/challenge/verify-setup", json={"code": wrong}, headers=headers)
        assert resp.status_code == 400

    def test_setup_token_cannot_reach_privileged_endpoints(self, client, make_admin):
        make_admin("fresh@example.com", mfa_secret=None)
        headers = {"Authorization": f"Bearer {self._setup_token(client)}"}
        assert client.get("/api/admin/users", headers=headers).status_code == 401

    def test_setup_refused_when_already_enrolled(self, client, owner, owner_headers):
        resp = client.post("/api/auth/challenge/setup", headers=owner_headers)
        assert resp.status_code == 400

    def test_regenerate_backup_codes(self, client, make_admin):
        user = make_admin("owner@example.com", backup_codes=("AAAA1111",))
        resp = client.post(
            "/api/auth/challenge/regenerate-backup-codes",
            json={"code": current_totp()},
            headers=bearer_headers(user),
        )
        assert resp.status_code == 200
        codes = resp.get_json()["backupCodes"]
        assert len(codes) == 10
        assert "AAAA1111" not in codes
        assert "mfa_backup_regenerated" in _audit_actions()
