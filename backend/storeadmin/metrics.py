# Overview: Prometheus counters for the security plane's silent-degradation paths.

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, generate_latest, CONTENT_TYPE_LATEST

registry = CollectorRegistry(auto_describe=True)

RATE_LIMITER_FAIL_OPEN = Counter(
    "storeadmin_rate_limiter_fail_open_total",
    "Rate-limiter storage failures that were allowed through (fail-open).",
    ["operation"],
    registry=registry,
)

AUDIT_DROPPED = Counter(
    "storeadmin_audit_dropped_total",
    "Audit entries dropped because the background queue was full.",
    registry=registry,
)

AUDIT_WRITE_FAILURES = Counter(
    "storeadmin_audit_write_failures_total",
    "Audit entries that could not be persisted.",
    registry=registry,
)

LOGIN_ATTEMPTS = Counter(
    "storeadmin_login_attempts_total",
    "Password login attempts by outcome.",
    ["outcome"],
    registry=registry,
)


def render_latest() -> tuple[bytes, str]:
    return generate_latest(registry), CONTENT_TYPE_LATEST
