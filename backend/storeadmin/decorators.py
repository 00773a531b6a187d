# Overview: Privileged request gate wrapped around every admin endpoint.

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import (
    HANDLED_ERRORS,
    AuthenticationError,
    AuthorizationError,
    ServerMisconfiguredError,
    error_response,
)
from .extensions import db, get_runtime
from .models import AdminUser
from .permissions import has, has_any
from .services import audit_service
from .services.cookie_service import SAFE_METHODS, check_csrf, extract_request_token
from .services.token_service import AuthenticatedSession


def _authenticate():
    """
    Resolve the request's credential into an AuthenticatedSession.

    Raises TokenError / AuthenticationError / CsrfError; the caller maps them.
    """
    runtime = get_runtime()
    if not runtime.tokens.configured:
        raise ServerMisconfiguredError("JWT_SECRET is not configured")

    token, via_cookie = extract_request_token(request)
    session = runtime.tokens.verify_expecting(token, AuthenticatedSession)

    # Bearer credentials are not sent ambiently by browsers; only cookies need the check.
    if via_cookie:
        check_csrf(request)
    return session


def _audit_details(detail_fields) -> dict:
    details = {}
    if detail_fields:
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            details = {k: body[k] for k in detail_fields if k in body}
    details.update(getattr(g, "audit_details", None) or {})
    return details


def privileged(capability=None, *, any_of=None, action=None, resource_type=None, detail_fields=()):
    """
    Gate an admin endpoint.

    Order: secret configured -> credential -> CSRF (cookie path only) ->
    capability -> identity reload -> body -> audit.

    Sets:
    - g.current_user: the AdminUser row
    - g.session: the AuthenticatedSession descriptor

    The body may refine the audit record through g.audit_action,
    g.audit_resource_id and g.audit_details. Exactly one record is written per
    2xx response to a state-changing method when `action` is declared.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                session = _authenticate()

                # Capability is checked against the signed role before touching the database.
                if capability is not None and not has(session, capability):
                    raise AuthorizationError()
                if any_of and not has_any(session, any_of):
                    raise AuthorizationError()

                user = db.session.get(AdminUser, session.user_id)
                if user is None or not user.is_active:
                    raise AuthenticationError("Account is not active", reason="identity_unavailable")
            except ServerMisconfiguredError as exc:
                current_app.logger.error("Privileged request refused: %s", exc.detail)
                return error_response(exc)
            except HANDLED_ERRORS as exc:
                return error_response(exc)

            g.current_user = user
            g.session = session
            g.audit_action = None
            g.audit_resource_id = None
            g.audit_details = {}

            try:
                rv = f(*args, **kwargs)
            except HANDLED_ERRORS as exc:
                db.session.rollback()
                return error_response(exc)
            except Exception:
                db.session.rollback()
                current_app.logger.exception("Unhandled error in %s %s", request.method, request.path)
                return jsonify({"error": "Internal server error"}), 500

            response = current_app.make_response(rv)
            if action and request.method not in SAFE_METHODS and 200 <= response.status_code < 300:
                audit_service.record(
                    getattr(g, "audit_action", None) or action,
                    session,
                    resource_type=resource_type,
                    resource_id=getattr(g, "audit_resource_id", None),
                    details=_audit_details(detail_fields),
                )
            return response

        return decorated_function
    return decorator
