# Overview: Flask API routes for the session pipeline; parses input, sets cookies and returns JSON responses.

"""
Authentication API routes

FLOW:
    POST /login                 -> {requiresChallenge, preChallengeToken}
                                   or {requiresChallengeSetup, token}
    POST /challenge             -> auth cookies + {success, user, csrfToken}
    POST /challenge-backup      -> same, plus an advisory `warning`
    POST /refresh               -> rotated auth cookies
    POST /logout                -> cleared auth cookies

Services raise; these routes map errors and write the audit trail for the
unauthenticated steps (the privileged gate audits everything else).
"""

from flask import Blueprint, current_app, g, jsonify, make_response, request

from ..decorators import privileged
from ..errors import HANDLED_ERRORS, AuthenticationError, RateLimitedError, error_response
from ..extensions import get_runtime
from ..services import audit_service, session_service
from ..services.audit_service import AuditAction
from ..services.cookie_service import (
    REFRESH_COOKIE,
    check_csrf,
    clear_auth_cookies,
    extract_request_token,
    set_auth_cookies,
)
from ..services.token_service import AuthenticatedSession, TokenError
from ..validation import require_json_object


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _payload() -> dict:
    return require_json_object(request.get_json(silent=True))


def _secure() -> bool:
    return get_runtime().settings.secure_cookies


def _session_response(issued, **extra):
    """200 with the three auth cookies set and the session user in the body."""
    body = {"success": True, "user": issued.user.to_session_user(), "csrfToken": issued.csrf_token}
    if issued.warning:
        body["warning"] = issued.warning
    body.update(extra)
    response = make_response(jsonify(body), 200)
    return set_auth_cookies(
        response,
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        csrf_token=issued.csrf_token,
        secure=_secure(),
    )


def _unexpected(step: str):
    current_app.logger.exception("Unhandled error during %s", step)
    return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/login")
def login_route():
    """
    Password step.

    SECURITY: the response is identical for unknown email, inactive account
    and wrong password; the audit record keeps the real reason.
    """
    data = {}
    try:
        data = _payload()
        email = data.get("email")
        address = audit_service.client_address(request, get_runtime().settings.trust_proxy_headers)
        result = session_service.login(email, data.get("password"), address)
    except RateLimitedError as exc:
        audit_service.record(AuditAction.LOGIN_FAILED, email=_safe_email(data), details={"reason": "rate_limited"})
        return error_response(exc)
    except AuthenticationError as exc:
        audit_service.record(AuditAction.LOGIN_FAILED, email=_safe_email(data), details={"reason": exc.reason})
        return error_response(exc)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return _unexpected("login")

    if result.requires_challenge:
        return jsonify({"requiresChallenge": True, "preChallengeToken": result.token}), 200
    return jsonify({"requiresChallengeSetup": True, "token": result.token}), 200


def _safe_email(data) -> str | None:
    email = data.get("email") if isinstance(data, dict) else None
    if isinstance(email, str):
        return email.strip().lower()[:254] or None
    return None


@auth_bp.post("/challenge")
def challenge_route():
    try:
        data = _payload()
        issued = session_service.complete_challenge(data.get("preChallengeToken"), data.get("code"))
    except AuthenticationError as exc:
        audit_service.record(AuditAction.LOGIN_FAILED, details={"reason": exc.reason, "step": "challenge"})
        return error_response(exc)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return _unexpected("challenge")

    audit_service.record(AuditAction.MFA_VALIDATED, issued.user, resource_type="admin_user", resource_id=issued.user.id)
    audit_service.record(AuditAction.LOGIN_SUCCESS, issued.user, details={"method": "totp"})
    return _session_response(issued)


@auth_bp.post("/challenge-backup")
def challenge_backup_route():
    try:
        data = _payload()
        issued = session_service.complete_backup_challenge(data.get("preChallengeToken"), data.get("code"))
    except AuthenticationError as exc:
        audit_service.record(AuditAction.LOGIN_FAILED, details={"reason": exc.reason, "step": "backup_code"})
        return error_response(exc)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return _unexpected("backup-code challenge")

    audit_service.record(AuditAction.MFA_BACKUP_USED, issued.user, resource_type="admin_user", resource_id=issued.user.id)
    audit_service.record(AuditAction.LOGIN_SUCCESS, issued.user, details={"method": "backup_code"})
    return _session_response(issued)


@auth_bp.get("/verify")
@privileged()
def verify_route():
    return jsonify({"valid": True, "user": g.current_user.to_session_user()}), 200


@auth_bp.post("/refresh")
def refresh_route():
    """Rotates all three cookies; the refresh token may also come from the JSON body."""
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get("refreshToken")

    try:
        issued = session_service.refresh(token)
    except HANDLED_ERRORS as exc:
        response = make_response(*error_response(exc))
        if isinstance(exc, (TokenError, AuthenticationError)):
            clear_auth_cookies(response, secure=_secure())
        return response
    except Exception:
        return _unexpected("refresh")

    audit_service.record(AuditAction.TOKEN_REFRESHED, issued.user)
    return _session_response(issued)


@auth_bp.post("/logout")
def logout_route():
    """Always clears the cookies; the logout is audited when the session was still valid."""
    token, _via_cookie = extract_request_token(request)
    if token and get_runtime().tokens.configured:
        try:
            session = get_runtime().tokens.verify_expecting(token, AuthenticatedSession)
        except TokenError:
            session = None
        if session is not None:
            audit_service.record(AuditAction.LOGOUT, session)

    response = make_response(jsonify({"success": True}), 200)
    return clear_auth_cookies(response, secure=_secure())


# -- challenge enrollment ------------------------------------------------------

def _enrollment_user():
    token, via_cookie = extract_request_token(request)
    user = session_service.enrollment_identity(token)
    if via_cookie:
        check_csrf(request)
    return user


@auth_bp.post("/challenge/setup")
def challenge_setup_route():
    try:
        user = _enrollment_user()
        setup = session_service.begin_challenge_setup(user)
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return _unexpected("challenge setup")

    audit_service.record(AuditAction.MFA_SETUP, user, resource_type="admin_user", resource_id=user.id)
    return jsonify(setup), 200


@auth_bp.post("/challenge/verify-setup")
def challenge_verify_setup_route():
    """Confirms enrollment; backup codes are shown exactly once, here."""
    try:
        user = _enrollment_user()
        issued = session_service.confirm_challenge_setup(user, _payload().get("code"))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        return _unexpected("challenge verification")

    audit_service.record(AuditAction.MFA_VERIFIED, user, resource_type="admin_user", resource_id=user.id)
    return _session_response(issued, backupCodes=issued.backup_codes)


@auth_bp.get("/challenge/status")
def challenge_status_route():
    try:
        user = _enrollment_user()
        return jsonify(session_service.challenge_status(user)), 200
    except HANDLED_ERRORS as exc:
        return error_response(exc)


@auth_bp.post("/challenge/regenerate-backup-codes")
@privileged(action=AuditAction.MFA_BACKUP_REGENERATED, resource_type="admin_user")
def regenerate_backup_codes_route():
    codes = session_service.regenerate_backup_codes(g.current_user, _payload().get("code"))
    g.audit_resource_id = g.current_user.id
    return jsonify({"success": True, "backupCodes": codes}), 200
