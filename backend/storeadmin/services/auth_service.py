# Overview: Service-layer operations for admin identities: password verifiers and account management.

"""
Admin identity service.

PASSWORD VERIFIERS: two formats live side by side in admin_users.password_hash,
told apart only by prefix, never by length:

    "sha256:<hex>"  LegacyDigestVerifier  sha256(password + pepper), from the
                    old admin console; upgraded to bcrypt on the next
                    successful login
    "$2..."         AdaptiveHashVerifier  bcrypt (cost 12 by default)

The transition is one-way: nothing ever writes a legacy verifier.

ACCOUNT RULES:
- Email is stored lower-cased and unique
- Accounts are deactivated, never deleted
- An admin cannot change their own role or deactivate themselves
- The last active website_admin cannot be demoted or deactivated
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

import bcrypt
from sqlalchemy import func, select, update

from ..errors import NotFoundError
from ..extensions import db, get_runtime
from ..models import AdminUser
from ..permissions import ADMIN_ROLES, WEBSITE_ADMIN
from ..validation import (
    MAX_NAME_LENGTH,
    ConflictError,
    ValidationError,
    normalize_email,
    optional_text,
)
from .crypto_service import constant_time_equals


MIN_PASSWORD_LENGTH = 8


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


@dataclass(frozen=True)
class PasswordCheck:
    ok: bool
    needs_rehash: bool = False


class LegacyDigestVerifier:
    prefix = "sha256:"

    def __init__(self, pepper: str | None):
        self._pepper = pepper

    def matches(self, stored: str) -> bool:
        return stored.startswith(self.prefix)

    def digest(self, password: str) -> str:
        if not self._pepper:
            raise ValueError("legacy verifier requires a pepper")
        hexdigest = hashlib.sha256((password + self._pepper).encode("utf-8")).hexdigest()
        return self.prefix + hexdigest

    def verify(self, stored: str, candidate: str) -> bool:
        if not self._pepper:
            return False
        return constant_time_equals(self.digest(candidate), stored)


class AdaptiveHashVerifier:
    prefix = "$2"

    def __init__(self, rounds: int = 12):
        self._rounds = rounds

    def matches(self, stored: str) -> bool:
        return stored.startswith(self.prefix)

    def hash(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify(self, stored: str, candidate: str) -> bool:
        try:
            return bcrypt.checkpw(candidate.encode("utf-8"), stored.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False


def _legacy() -> LegacyDigestVerifier:
    return LegacyDigestVerifier(get_runtime().settings.legacy_pepper)


def _adaptive() -> AdaptiveHashVerifier:
    return AdaptiveHashVerifier(get_runtime().settings.bcrypt_rounds)


def validate_password_strength(password) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def hash_password(password: str) -> str:
    """Validate and bcrypt-hash a new password."""
    validate_password_strength(password)
    return _adaptive().hash(password)


def verify_password(stored: str | None, candidate: str | None) -> PasswordCheck:
    if not stored or candidate is None:
        return PasswordCheck(ok=False)

    legacy = _legacy()
    if legacy.matches(stored):
        ok = legacy.verify(stored, candidate)
        return PasswordCheck(ok=ok, needs_rehash=ok)

    adaptive = _adaptive()
    if adaptive.matches(stored):
        return PasswordCheck(ok=adaptive.verify(stored, candidate))

    return PasswordCheck(ok=False)


def upgrade_password_hash(user: AdminUser, password: str) -> None:
    """Replace a legacy verifier in place after it matched. Caller commits."""
    user.password_hash = _adaptive().hash(password)


def tag_legacy_verifiers_statement():
    """
    UPDATE that prefixes bare legacy digests imported from the old console.

    The old console stored sha256(password + pepper) as plain hex. Anything that
    is neither bcrypt nor already tagged gets the legacy prefix, so the verifier
    choice stays keyed on the prefix alone.
    """
    table = AdminUser.__table__
    column = table.c.password_hash
    return (
        update(table)
        .where(
            ~column.startswith(AdaptiveHashVerifier.prefix),
            ~column.startswith(LegacyDigestVerifier.prefix),
        )
        .values(password_hash=LegacyDigestVerifier.prefix + column)
    )


def tag_legacy_verifiers() -> int:
    """Tag imported legacy rows; returns how many were changed."""
    result = db.session.execute(tag_legacy_verifiers_statement())
    db.session.commit()
    return result.rowcount


# -- lookups ------------------------------------------------------------------

def find_by_email(email: str | None) -> AdminUser | None:
    if not email or not isinstance(email, str):
        return None
    return db.session.execute(
        select(AdminUser).where(AdminUser.email == email.strip().lower())
    ).scalar_one_or_none()


def get_user(user_id: int) -> AdminUser:
    user = db.session.get(AdminUser, user_id)
    if user is None:
        raise NotFoundError("User")
    return user


def list_users() -> list[AdminUser]:
    return db.session.execute(
        select(AdminUser).order_by(AdminUser.created_at.desc(), AdminUser.id.desc())
    ).scalars().all()


def _validate_role(role) -> str:
    if role not in ADMIN_ROLES:
        raise ValidationError(f"Invalid role. Must be one of: {', '.join(ADMIN_ROLES)}")
    return role


def _active_owner_count() -> int:
    return db.session.execute(
        select(func.count()).select_from(AdminUser).where(
            AdminUser.role == WEBSITE_ADMIN,
            AdminUser.is_active.is_(True),
        )
    ).scalar_one()


# -- mutations ----------------------------------------------------------------

def create_user(email, password, name=None, role="business_processing") -> AdminUser:
    email = normalize_email(email)
    role = _validate_role(role)
    name = optional_text(name, "name", MAX_NAME_LENGTH)
    password_hash = hash_password(password)

    if find_by_email(email) is not None:
        raise ConflictError("A user with this email already exists")

    user = AdminUser(
        email=email,
        password_hash=password_hash,
        name=name,
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


@dataclass
class UserUpdate:
    user: AdminUser
    action: str
    changes: dict


def update_user(actor_id: int, user_id: int, payload: dict) -> UserUpdate:
    """
    Apply an admin edit. Returns the audit action that best describes it:
    user_role_changed, user_deactivated, password_changed or user_updated.
    """
    user = get_user(user_id)
    changes: dict = {}
    action = "user_updated"

    if "role" in payload and payload["role"] != user.role:
        new_role = _validate_role(payload["role"])
        if user.id == actor_id:
            raise ValidationError("You cannot change your own role")
        if user.role == WEBSITE_ADMIN and user.is_active and _active_owner_count() <= 1:
            raise ValidationError("Cannot demote the last active website admin")
        changes["role"] = [user.role, new_role]
        user.role = new_role
        action = "user_role_changed"

    if "is_active" in payload:
        is_active = payload["is_active"]
        if not isinstance(is_active, bool):
            raise ValidationError("is_active must be a boolean")
        if is_active != user.is_active:
            if not is_active:
                _guard_deactivation(actor_id, user)
                action = "user_deactivated"
            changes["is_active"] = [user.is_active, is_active]
            user.is_active = is_active

    if "name" in payload:
        name = optional_text(payload["name"], "name", MAX_NAME_LENGTH)
        if name != user.name:
            changes["name"] = [user.name, name]
            user.name = name

    if "email" in payload:
        email = normalize_email(payload["email"])
        if email != user.email:
            existing = find_by_email(email)
            if existing is not None and existing.id != user.id:
                raise ConflictError("A user with this email already exists")
            changes["email"] = [user.email, email]
            user.email = email

    if payload.get("password"):
        user.password_hash = hash_password(payload["password"])
        changes["password"] = True
        if action == "user_updated":
            action = "password_changed"

    if not changes:
        raise ValidationError("No changes provided")

    db.session.commit()
    return UserUpdate(user=user, action=action, changes=changes)


def _guard_deactivation(actor_id: int, user: AdminUser) -> None:
    if user.id == actor_id:
        raise ValidationError("You cannot deactivate your own account")
    if user.role == WEBSITE_ADMIN and user.is_active and _active_owner_count() <= 1:
        raise ValidationError("Cannot deactivate the last active website admin")


def deactivate_user(actor_id: int, user_id: int) -> AdminUser:
    """Soft delete: clears is_active, keeps the row."""
    user = get_user(user_id)
    if not user.is_active:
        raise ValidationError("User is already deactivated")
    _guard_deactivation(actor_id, user)
    user.is_active = False
    db.session.commit()
    return user


def reset_password(user: AdminUser, password: str) -> None:
    user.password_hash = hash_password(password)
    db.session.commit()
