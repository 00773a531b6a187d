# Overview: Auth cookie triple (access, refresh, anti-forgery) and the double-submit CSRF check.

from __future__ import annotations

import secrets

from ..errors import CsrfError
from .crypto_service import constant_time_equals
from .token_service import ACCESS_TTL, REFRESH_TTL


ACCESS_COOKIE = "fs_access_token"
REFRESH_COOKIE = "fs_refresh_token"
CSRF_COOKIE = "fs_csrf_token"
CSRF_HEADER = "x-csrf-token"

ACCESS_MAX_AGE = int(ACCESS_TTL.total_seconds())
REFRESH_MAX_AGE = int(REFRESH_TTL.total_seconds())
CSRF_MAX_AGE = ACCESS_MAX_AGE

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def new_csrf_token() -> str:
    """256 random bits as 64 hex characters."""
    return secrets.token_hex(32)


def _set(response, name: str, value: str, max_age: int, *, httponly: bool, secure: bool) -> None:
    response.set_cookie(
        name,
        value,
        max_age=max_age,
        path="/",
        secure=secure,
        httponly=httponly,
        samesite="Strict",
    )


def set_auth_cookies(response, *, access_token: str, refresh_token: str, csrf_token: str, secure: bool):
    _set(response, ACCESS_COOKIE, access_token, ACCESS_MAX_AGE, httponly=True, secure=secure)
    _set(response, REFRESH_COOKIE, refresh_token, REFRESH_MAX_AGE, httponly=True, secure=secure)
    # Readable by page script: the client echoes it in the x-csrf-token header.
    _set(response, CSRF_COOKIE, csrf_token, CSRF_MAX_AGE, httponly=False, secure=secure)
    return response


def clear_auth_cookies(response, *, secure: bool):
    _set(response, ACCESS_COOKIE, "", 0, httponly=True, secure=secure)
    _set(response, REFRESH_COOKIE, "", 0, httponly=True, secure=secure)
    _set(response, CSRF_COOKIE, "", 0, httponly=False, secure=secure)
    return response


def extract_request_token(request) -> tuple[str | None, bool]:
    """
    Returns (token, via_cookie).

    The access cookie wins when present; the Bearer header remains accepted
    for clients that still keep the token in local storage.
    """
    cookie_token = request.cookies.get(ACCESS_COOKIE)
    if cookie_token:
        return cookie_token, True

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        return (token or None), False
    return None, False


def check_csrf(request) -> None:
    """Header must equal the anti-forgery cookie on every state-changing method."""
    if request.method in SAFE_METHODS:
        return
    header_value = request.headers.get(CSRF_HEADER)
    cookie_value = request.cookies.get(CSRF_COOKIE)
    if not header_value or not cookie_value:
        raise CsrfError()
    if not constant_time_equals(header_value, cookie_value):
        raise CsrfError()
