# Overview: Application configuration and the immutable security settings record.

# backend/storeadmin/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Purpose -> (max_attempts, window_seconds)
DEFAULT_RATE_LIMIT_POLICIES = {
    "password_login": (5, 15 * 60),
    "login_identity": (5, 15 * 60),
    "challenge_validation": (5, 15 * 60),
    "backup_code": (5, 15 * 60),
}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///storeadmin.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Token signing secret. No default: the privileged gate answers 500 without it.
    JWT_SECRET = os.environ.get("JWT_SECRET")

    # 64 hex chars (AES-256). Missing/invalid key degrades PII sealing to identity.
    PII_ENCRYPTION_KEY = os.environ.get("PII_ENCRYPTION_KEY")

    # Legacy sha256 verifiers were peppered with the signing secret.
    LEGACY_PASSWORD_PEPPER = os.environ.get("LEGACY_PASSWORD_PEPPER") or os.environ.get("JWT_SECRET")

    WEBHOOK_SECRETS = {
        "stripe": os.environ.get("STRIPE_WEBHOOK_SECRET"),
    }

    ALLOWED_ORIGINS = _env_list(
        "ALLOWED_ORIGINS",
        "http://localhost:8888,http://localhost:5173,http://127.0.0.1:5173",
    )

    # "production" sets Secure on every auth cookie; "development" does not.
    COOKIE_PROFILE = os.environ.get("COOKIE_PROFILE", "production")

    # Take the client address from the first X-Forwarded-For hop.
    TRUST_PROXY_HEADERS = _env_bool("TRUST_PROXY_HEADERS", False)

    # "thread" writes audit records from a background worker; "inline" writes them in-request.
    AUDIT_MODE = os.environ.get("AUDIT_MODE", "thread")
    AUDIT_QUEUE_SIZE = int(os.environ.get("AUDIT_QUEUE_SIZE", "1000"))

    RATE_LIMIT_POLICIES = dict(DEFAULT_RATE_LIMIT_POLICIES)

    CHALLENGE_ISSUER = os.environ.get("CHALLENGE_ISSUER", "Store Admin")

    # bcrypt cost factor for new verifiers
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class RateLimitPolicy:
    max_attempts: int
    window_seconds: int


@dataclass(frozen=True)
class SecuritySettings:
    """
    Process-wide secrets and policies, read once at startup.

    Components receive this record (or the values they need from it) through
    their constructors; nothing reads os.environ after create_app().
    """
    jwt_secret: str | None
    pii_key_hex: str | None
    legacy_pepper: str | None
    webhook_secrets: Mapping[str, str | None]
    allowed_origins: tuple[str, ...]
    secure_cookies: bool
    trust_proxy_headers: bool
    rate_limits: Mapping[str, RateLimitPolicy] = field(default_factory=dict)
    audit_mode: str = "thread"
    audit_queue_size: int = 1000
    challenge_issuer: str = "Store Admin"
    bcrypt_rounds: int = 12

    @classmethod
    def from_mapping(cls, config: Mapping) -> "SecuritySettings":
        policies = {}
        for purpose, value in (config.get("RATE_LIMIT_POLICIES") or {}).items():
            if isinstance(value, RateLimitPolicy):
                policies[purpose] = value
            else:
                max_attempts, window_seconds = value
                policies[purpose] = RateLimitPolicy(int(max_attempts), int(window_seconds))
        for purpose, (max_attempts, window_seconds) in DEFAULT_RATE_LIMIT_POLICIES.items():
            policies.setdefault(purpose, RateLimitPolicy(max_attempts, window_seconds))

        audit_mode = config.get("AUDIT_MODE", "thread")
        if audit_mode not in {"thread", "inline"}:
            raise ValueError(f"AUDIT_MODE must be 'thread' or 'inline', got {audit_mode!r}")

        return cls(
            jwt_secret=config.get("JWT_SECRET") or None,
            pii_key_hex=config.get("PII_ENCRYPTION_KEY") or None,
            legacy_pepper=config.get("LEGACY_PASSWORD_PEPPER") or config.get("JWT_SECRET") or None,
            webhook_secrets=dict(config.get("WEBHOOK_SECRETS") or {}),
            allowed_origins=tuple(config.get("ALLOWED_ORIGINS") or ()),
            secure_cookies=config.get("COOKIE_PROFILE", "production") != "development",
            trust_proxy_headers=bool(config.get("TRUST_PROXY_HEADERS", False)),
            rate_limits=policies,
            audit_mode=audit_mode,
            audit_queue_size=int(config.get("AUDIT_QUEUE_SIZE", 1000)),
            challenge_issuer=config.get("CHALLENGE_ISSUER") or "Store Admin",
            bcrypt_rounds=int(config.get("BCRYPT_ROUNDS", 12)),
        )

    def policy_for(self, purpose: str) -> RateLimitPolicy:
        try:
            return self.rate_limits[purpose]
        except KeyError:
            raise KeyError(f"No rate-limit policy configured for {purpose!r}") from None
