# Overview: Error taxonomy shared by services, the privileged gate and public routes.

"""
Every error a service raises on purpose is one of these classes. Routes never
build error bodies by hand for them: error_response() maps the exception to
its status code and a body that is safe to show the caller.

Authentication failures carry a private `reason` for the audit trail; the
public message never includes it.
"""

from __future__ import annotations

from flask import jsonify

from .validation import ValidationError, ConflictError


class ServiceError(Exception):
    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def to_body(self) -> dict:
        return {"error": self.message}


class AuthenticationError(ServiceError):
    """401. The caller-facing message is deliberately unspecific."""
    status_code = 401
    public_message = "Invalid credentials"

    def __init__(self, message: str | None = None, *, reason: str | None = None):
        super().__init__(message)
        self.reason = reason


class AuthorizationError(ServiceError):
    status_code = 403
    public_message = "insufficient permissions"

    def __init__(self):
        # The required capability is never echoed back.
        super().__init__(self.public_message)


class CsrfError(ServiceError):
    status_code = 403
    public_message = "Invalid CSRF token"


class NotFoundError(ServiceError):
    status_code = 404
    public_message = "Not found"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class RateLimitedError(ServiceError):
    status_code = 429
    public_message = "Too many attempts. Please try again later."

    def __init__(self, retry_after_seconds: int, message: str | None = None):
        super().__init__(message)
        self.retry_after_seconds = int(retry_after_seconds)

    def to_body(self) -> dict:
        return {"error": self.message, "retry_after_seconds": self.retry_after_seconds}


class ServerMisconfiguredError(ServiceError):
    """500. The detail goes to the log only."""
    status_code = 500
    public_message = "Server configuration error"

    def __init__(self, detail: str):
        super().__init__(self.public_message)
        self.detail = detail


def error_response(exc: Exception):
    """Map a taxonomy exception onto a (json, status) pair."""
    if isinstance(exc, ServiceError):
        return jsonify(exc.to_body()), exc.status_code
    if isinstance(exc, (ValidationError, ConflictError)):
        return jsonify({"error": str(exc)}), 400
    raise TypeError(f"{type(exc).__name__} is not part of the error taxonomy")


HANDLED_ERRORS = (ServiceError, ValidationError, ConflictError)
