# Overview: Signed session descriptors (pre-challenge, challenge-setup, access, refresh) over PyJWT.

"""
Token kinds travel through the same channels (cookie or Authorization header),
so verify() returns a tagged variant rather than a generic claims dict:

    PreChallengeSession     -> usable only at /challenge and /challenge-backup
    ChallengeSetupSession   -> usable only at the challenge enrollment endpoints
    AuthenticatedSession    -> the only kind the privileged gate admits
    RefreshGrant            -> exchanged at /refresh for a new access token
"""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Union

import jwt

from ..errors import ServiceError, ServerMisconfiguredError
from ..time_utils import utcnow, epoch_seconds


ALGORITHM = "HS256"

PRE_CHALLENGE_TTL = timedelta(minutes=5)
CHALLENGE_SETUP_TTL = timedelta(minutes=10)
ACCESS_TTL = timedelta(minutes=15)
REFRESH_TTL = timedelta(days=7)


class TokenError(ServiceError):
    status_code = 401

    MESSAGES = {
        "NO_TOKEN": "Authentication required",
        "BAD_TOKEN": "Invalid token",
        "EXPIRED_TOKEN": "Token expired",
        "WRONG_TOKEN_KIND": "Invalid token type",
    }

    def __init__(self, code: str):
        super().__init__(self.MESSAGES.get(code, "Invalid token"))
        self.code = code


@dataclass(frozen=True)
class PreChallengeSession:
    user_id: int
    email: str
    issued_at: int
    expires_at: int
    kind = "pre_challenge"


@dataclass(frozen=True)
class ChallengeSetupSession:
    user_id: int
    email: str
    name: str | None
    role: str
    issued_at: int
    expires_at: int
    kind = "challenge_setup"


@dataclass(frozen=True)
class AuthenticatedSession:
    user_id: int
    email: str
    name: str | None
    role: str
    issued_at: int
    expires_at: int
    kind = "authenticated"


@dataclass(frozen=True)
class RefreshGrant:
    user_id: int
    email: str
    name: str | None
    role: str
    token_id: str
    issued_at: int
    expires_at: int
    kind = "refresh"


Session = Union[PreChallengeSession, ChallengeSetupSession, AuthenticatedSession, RefreshGrant]


def _canonical_segments(token: str) -> bool:
    """Each base64url segment must be the canonical encoding of its bytes."""
    parts = token.split(".")
    if len(parts) != 3:
        return False
    for part in parts:
        padded = part + "=" * (-len(part) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded)
        except ValueError:
            return False
        if base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=") != part:
            return False
    return True


class TokenService:
    def __init__(self, secret: str | None):
        self._secret = secret

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def _require_secret(self) -> str:
        if not self._secret:
            raise ServerMisconfiguredError("JWT_SECRET is not configured")
        return self._secret

    def _encode(self, claims: dict, ttl: timedelta) -> str:
        secret = self._require_secret()
        now = utcnow()
        payload = dict(claims)
        payload["iat"] = epoch_seconds(now)
        payload["exp"] = epoch_seconds(now + ttl)
        return jwt.encode(payload, secret, algorithm=ALGORITHM)

    # -- issuance ----------------------------------------------------------

    def issue_pre_challenge(self, identity) -> str:
        return self._encode(
            {"sub": str(identity.id), "email": identity.email, "preChallenge": True},
            PRE_CHALLENGE_TTL,
        )

    def issue_challenge_setup(self, identity) -> str:
        return self._encode(
            {
                "sub": str(identity.id),
                "email": identity.email,
                "name": identity.name,
                "role": identity.role,
                "challengeSetupRequired": True,
            },
            CHALLENGE_SETUP_TTL,
        )

    def issue_access(self, identity) -> str:
        return self._encode(
            {
                "sub": str(identity.id),
                "email": identity.email,
                "name": identity.name,
                "role": identity.role,
                "type": "access",
            },
            ACCESS_TTL,
        )

    def issue_refresh(self, identity) -> str:
        return self._encode(
            {
                "sub": str(identity.id),
                "email": identity.email,
                "name": identity.name,
                "role": identity.role,
                "type": "refresh",
                "jti": secrets.token_hex(16),
            },
            REFRESH_TTL,
        )

    # -- verification ------------------------------------------------------

    def verify(self, token: str | None) -> Session:
        secret = self._require_secret()
        if not token:
            raise TokenError("NO_TOKEN")
        if not _canonical_segments(token):
            raise TokenError("BAD_TOKEN")

        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[ALGORITHM],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenError("EXPIRED_TOKEN")
        except jwt.InvalidTokenError:
            raise TokenError("BAD_TOKEN")

        try:
            user_id = int(claims["sub"])
            email = claims["email"]
        except (KeyError, TypeError, ValueError):
            raise TokenError("BAD_TOKEN")
        iat, exp = int(claims["iat"]), int(claims["exp"])

        if claims.get("preChallenge") is True:
            return PreChallengeSession(user_id=user_id, email=email, issued_at=iat, expires_at=exp)

        role = claims.get("role")
        if not role:
            raise TokenError("BAD_TOKEN")
        name = claims.get("name")

        if claims.get("challengeSetupRequired") is True:
            return ChallengeSetupSession(
                user_id=user_id, email=email, name=name, role=role, issued_at=iat, expires_at=exp
            )
        token_type = claims.get("type")
        if token_type == "refresh":
            return RefreshGrant(
                user_id=user_id,
                email=email,
                name=name,
                role=role,
                token_id=claims.get("jti") or "",
                issued_at=iat,
                expires_at=exp,
            )
        if token_type == "access":
            return AuthenticatedSession(
                user_id=user_id, email=email, name=name, role=role, issued_at=iat, expires_at=exp
            )
        raise TokenError("BAD_TOKEN")

    def verify_expecting(self, token: str | None, *kinds: type) -> Session:
        session = self.verify(token)
        if not isinstance(session, kinds):
            raise TokenError("WRONG_TOKEN_KIND")
        return session
