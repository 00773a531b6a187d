# Overview: Session establishment pipeline: password step, TOTP/backup-code challenge, refresh, enrollment.

"""
Session pipeline.

    login()                      password step -> pre-challenge token
                                 (or challenge-setup token if MFA not enrolled)
    complete_challenge()         pre-challenge + TOTP -> authenticated session
    complete_backup_challenge()  pre-challenge + backup code -> authenticated session
    refresh()                    refresh grant -> rotated authenticated session

ORDERING:
- Rate-limit checks come before any credential is evaluated
- Password failures count against the client address and the submitted email;
  challenge failures count against the identity id
- Tokens are only issued at the end of a successful branch

Nothing here is kept server-side between requests except the rate-limit rows
and the identity row itself.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from dataclasses import dataclass, field

import pyotp
from sqlalchemy import delete, func, select, update

from ..errors import AuthenticationError, RateLimitedError
from ..extensions import db, get_runtime
from ..metrics import LOGIN_ATTEMPTS
from ..models import AdminBackupCode, AdminUser
from ..time_utils import utcnow
from ..validation import ValidationError
from . import auth_service
from .cookie_service import new_csrf_token
from .crypto_service import constant_time_equals
from .token_service import AuthenticatedSession, ChallengeSetupSession, PreChallengeSession, RefreshGrant


BACKUP_CODE_COUNT = 10
LOW_BACKUP_CODE_THRESHOLD = 3
TOTP_VALID_WINDOW = 1

PASSWORD_LOGIN = "password_login"
LOGIN_IDENTITY = "login_identity"
CHALLENGE_VALIDATION = "challenge_validation"
BACKUP_CODE = "backup_code"

_TOTP_RE = re.compile(r"^\d{6}$")


@dataclass
class LoginResult:
    user: AdminUser
    token: str
    requires_challenge: bool

    @property
    def requires_challenge_setup(self) -> bool:
        return not self.requires_challenge


@dataclass
class IssuedSession:
    user: AdminUser
    access_token: str
    refresh_token: str
    csrf_token: str
    warning: str | None = None
    backup_codes: list[str] = field(default_factory=list)


def _runtime():
    return get_runtime()


def _enforce(purpose: str, subject) -> None:
    decision = _runtime().limiter.check(purpose, subject)
    if not decision.allowed:
        raise RateLimitedError(decision.retry_after_seconds)


def _issue_session(user: AdminUser) -> IssuedSession:
    tokens = _runtime().tokens
    return IssuedSession(
        user=user,
        access_token=tokens.issue_access(user),
        refresh_token=tokens.issue_refresh(user),
        csrf_token=new_csrf_token(),
    )


def normalize_totp(code) -> str:
    normalized = re.sub(r"[\s-]", "", str(code or ""))
    if not _TOTP_RE.match(normalized):
        raise ValidationError("Verification code must be 6 digits")
    return normalized


def totp_matches(secret: str, code: str) -> bool:
    """Current 30-second step or one step either side."""
    return pyotp.TOTP(secret).verify(code, valid_window=TOTP_VALID_WINDOW)


# -- backup codes -------------------------------------------------------------

def normalize_backup_code(code) -> str:
    return re.sub(r"[\s-]", "", str(code or "")).upper()


def hash_backup_code(code: str, salt: str | None = None) -> str:
    salt = salt or secrets.token_hex(8)
    digest = hashlib.sha256(f"{salt}:{normalize_backup_code(code)}".encode("utf-8")).hexdigest()
    return f"{salt}${digest}"


def backup_code_matches(stored: str, candidate: str) -> bool:
    salt, sep, _digest = stored.partition("$")
    if not sep:
        return False
    return constant_time_equals(hash_backup_code(candidate, salt), stored)


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> list[str]:
    """8 upper-case hex characters each."""
    return [secrets.token_hex(4).upper() for _ in range(count)]


def replace_backup_codes(user: AdminUser, codes: list[str]) -> None:
    """Swap the user's whole backup-code set. Caller commits."""
    db.session.execute(
        delete(AdminBackupCode)
        .where(AdminBackupCode.user_id == user.id)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(user, ["backup_codes"])
    for code in codes:
        db.session.add(AdminBackupCode(user_id=user.id, code_hash=hash_backup_code(code)))


def remaining_backup_codes(user_id: int) -> int:
    return db.session.execute(
        select(func.count()).select_from(AdminBackupCode).where(
            AdminBackupCode.user_id == user_id,
            AdminBackupCode.used_at.is_(None),
        )
    ).scalar_one()


# -- password step --------------------------------------------------------------

def login(email, password, client_address: str | None) -> LoginResult:
    if not email or not password or not isinstance(email, str) or not isinstance(password, str):
        raise ValidationError("Email and password are required")

    limiter = _runtime().limiter
    email_key = email.strip().lower()
    address_key = client_address or "unknown"

    try:
        _enforce(PASSWORD_LOGIN, address_key)
        _enforce(LOGIN_IDENTITY, email_key)
    except RateLimitedError:
        LOGIN_ATTEMPTS.labels(outcome="rate_limited").inc()
        raise

    def fail(reason: str):
        limiter.record_failure(PASSWORD_LOGIN, address_key)
        limiter.record_failure(LOGIN_IDENTITY, email_key)
        LOGIN_ATTEMPTS.labels(outcome="failed").inc()
        # Same message for every branch: no account enumeration.
        return AuthenticationError("Invalid credentials", reason=reason)

    user = auth_service.find_by_email(email_key)
    if user is None:
        raise fail("unknown_email")
    if not user.is_active:
        raise fail("inactive")

    check = auth_service.verify_password(user.password_hash, password)
    if not check.ok:
        raise fail("wrong_password")

    limiter.clear(PASSWORD_LOGIN, address_key)
    limiter.clear(LOGIN_IDENTITY, email_key)

    if check.needs_rehash:
        auth_service.upgrade_password_hash(user, password)
    user.last_login_at = utcnow()
    db.session.commit()
    LOGIN_ATTEMPTS.labels(outcome="password_ok").inc()

    tokens = _runtime().tokens
    if user.mfa_enabled:
        return LoginResult(user=user, token=tokens.issue_pre_challenge(user), requires_challenge=True)
    return LoginResult(user=user, token=tokens.issue_challenge_setup(user), requires_challenge=False)


# -- challenge step -------------------------------------------------------------

def _challenge_identity(session: PreChallengeSession) -> AdminUser:
    user = db.session.get(AdminUser, session.user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("Invalid session", reason="identity_unavailable")
    if not user.mfa_enabled or not user.mfa_secret:
        # MFA was reset after the password step
        raise AuthenticationError("Invalid session", reason="mfa_not_configured")
    return user


def complete_challenge(pre_token: str | None, code) -> IssuedSession:
    session = _runtime().tokens.verify_expecting(pre_token, PreChallengeSession)
    _enforce(CHALLENGE_VALIDATION, session.user_id)
    user = _challenge_identity(session)
    normalized = normalize_totp(code)

    limiter = _runtime().limiter
    if not totp_matches(user.mfa_secret, normalized):
        limiter.record_failure(CHALLENGE_VALIDATION, user.id)
        raise AuthenticationError("Invalid verification code", reason="invalid_totp")

    limiter.clear(CHALLENGE_VALIDATION, user.id)
    return _issue_session(user)


def complete_backup_challenge(pre_token: str | None, code) -> IssuedSession:
    session = _runtime().tokens.verify_expecting(pre_token, PreChallengeSession)
    _enforce(BACKUP_CODE, session.user_id)
    user = _challenge_identity(session)

    normalized = normalize_backup_code(code)
    if not normalized:
        raise ValidationError("Backup code is required")

    limiter = _runtime().limiter
    unused = db.session.execute(
        select(AdminBackupCode).where(
            AdminBackupCode.user_id == user.id,
            AdminBackupCode.used_at.is_(None),
        )
    ).scalars().all()
    match = next((c for c in unused if backup_code_matches(c.code_hash, normalized)), None)

    spent = 0
    if match is not None:
        # Single-use: only one concurrent submission can flip used_at.
        spent = db.session.execute(
            update(AdminBackupCode)
            .where(AdminBackupCode.id == match.id, AdminBackupCode.used_at.is_(None))
            .values(used_at=utcnow())
            .execution_options(synchronize_session=False)
        ).rowcount
    if spent != 1:
        db.session.rollback()
        limiter.record_failure(BACKUP_CODE, user.id)
        raise AuthenticationError("Invalid backup code", reason="invalid_backup_code")

    db.session.commit()
    limiter.clear(BACKUP_CODE, user.id)

    remaining = remaining_backup_codes(user.id)
    warning = f"Backup code used. {remaining} backup codes remaining."
    if remaining < LOW_BACKUP_CODE_THRESHOLD:
        warning += " Please regenerate your backup codes soon."

    issued = _issue_session(user)
    issued.warning = warning
    return issued


# -- refresh ----------------------------------------------------------------------

def refresh(refresh_token: str | None) -> IssuedSession:
    grant = _runtime().tokens.verify_expecting(refresh_token, RefreshGrant)
    user = db.session.get(AdminUser, grant.user_id)
    if user is None or not user.is_active or not user.mfa_enabled:
        raise AuthenticationError("Invalid session", reason="identity_unavailable")
    # Role and name come from the row, so a demotion takes effect at the next refresh.
    return _issue_session(user)


# -- challenge enrollment ----------------------------------------------------------

def enrollment_identity(token: str | None) -> AdminUser:
    """Identity behind a challenge-setup or authenticated token."""
    session = _runtime().tokens.verify_expecting(token, ChallengeSetupSession, AuthenticatedSession)
    user = db.session.get(AdminUser, session.user_id)
    if user is None or not user.is_active:
        raise AuthenticationError("Invalid session", reason="identity_unavailable")
    return user


def begin_challenge_setup(user: AdminUser) -> dict:
    if user.mfa_enabled:
        raise ValidationError("Two-factor authentication is already enabled")
    secret = pyotp.random_base32()
    user.mfa_secret = secret
    db.session.commit()
    uri = pyotp.TOTP(secret).provisioning_uri(
        name=user.email,
        issuer_name=_runtime().settings.challenge_issuer,
    )
    return {"secret": secret, "otpauth_uri": uri}


def _verify_enrolled_code(user: AdminUser, code) -> None:
    _enforce(CHALLENGE_VALIDATION, user.id)
    normalized = normalize_totp(code)
    if not totp_matches(user.mfa_secret, normalized):
        _runtime().limiter.record_failure(CHALLENGE_VALIDATION, user.id)
        raise ValidationError("Invalid verification code")
    _runtime().limiter.clear(CHALLENGE_VALIDATION, user.id)


def confirm_challenge_setup(user: AdminUser, code) -> IssuedSession:
    if user.mfa_enabled:
        raise ValidationError("Two-factor authentication is already enabled")
    if not user.mfa_secret:
        raise ValidationError("Start two-factor setup first")
    _verify_enrolled_code(user, code)

    codes = generate_backup_codes()
    user.mfa_enabled = True
    replace_backup_codes(user, codes)
    db.session.commit()

    issued = _issue_session(user)
    issued.backup_codes = codes
    return issued


def challenge_status(user: AdminUser) -> dict:
    return {
        "mfa_enabled": bool(user.mfa_enabled),
        "mfa_configured": bool(user.mfa_secret),
        "backup_codes_remaining": remaining_backup_codes(user.id) if user.mfa_enabled else 0,
    }


def regenerate_backup_codes(user: AdminUser, code) -> list[str]:
    if not user.mfa_enabled or not user.mfa_secret:
        raise ValidationError("Two-factor authentication is not enabled")
    _verify_enrolled_code(user, code)
    codes = generate_backup_codes()
    replace_backup_codes(user, codes)
    db.session.commit()
    return codes


def reset_challenge(user: AdminUser) -> None:
    """Operator reset: the user enrolls again at next login."""
    user.mfa_enabled = False
    user.mfa_secret = None
    replace_backup_codes(user, [])
    db.session.commit()
