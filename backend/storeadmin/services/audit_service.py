# Overview: Append-only audit trail: entry building, best-effort sink (background or inline) and query side.

from __future__ import annotations

import hashlib
import json
import logging
import math
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from flask import has_request_context, request
from sqlalchemy import func, select

from ..extensions import db, get_runtime
from ..metrics import AUDIT_DROPPED, AUDIT_WRITE_FAILURES
from ..models import AuditLog
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import ValidationError, parse_positive_int


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50


class AuditAction:
    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    TOKEN_REFRESHED = "token_refreshed"
    MFA_SETUP = "mfa_setup"
    MFA_VERIFIED = "mfa_verified"
    MFA_VALIDATED = "mfa_validated"
    MFA_BACKUP_USED = "mfa_backup_used"
    MFA_BACKUP_REGENERATED = "mfa_backup_regenerated"
    PASSWORD_CHANGED = "password_changed"

    # Orders
    ORDER_CREATED = "order_created"
    ORDER_STATUS_UPDATED = "order_status_updated"

    # Settings
    SETTINGS_UPDATED = "settings_updated"
    SETTINGS_RESET = "settings_reset"

    # Users
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DEACTIVATED = "user_deactivated"
    USER_ROLE_CHANGED = "user_role_changed"

    # Gift cards
    GIFT_CARD_CREATED = "gift_card_created"
    GIFT_CARD_ACTIVATED = "gift_card_activated"
    GIFT_CARD_REDEEMED = "gift_card_redeemed"
    GIFT_CARD_REFUNDED = "gift_card_refunded"
    GIFT_CARD_CANCELLED = "gift_card_cancelled"
    GIFT_CARD_ADJUSTED = "gift_card_adjusted"
    GIFT_CARD_SENT = "gift_card_sent"
    GIFT_CARD_UPDATED = "gift_card_updated"

    @classmethod
    def all(cls) -> frozenset[str]:
        return frozenset(
            value for name, value in vars(cls).items()
            if name.isupper() and isinstance(value, str)
        )


@dataclass(frozen=True)
class AuditEntry:
    action: str
    user_id: int | None = None
    user_email: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime = field(default_factory=utcnow)


def client_address(req=None, trust_proxy_headers: bool = False) -> str | None:
    req = req or request
    if trust_proxy_headers:
        forwarded = req.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first[:45]
    return req.remote_addr


def build_entry(
    action: str,
    actor: Any = None,
    *,
    email: str | None = None,
    resource_type: str | None = None,
    resource_id: Any = None,
    details: dict | None = None,
) -> AuditEntry:
    """
    Assemble an entry for the current request.

    `actor` may be an AdminUser row or a session descriptor; `email` covers
    anonymous attempts (failed logins) where only the submitted email is known.
    """
    if action not in AuditAction.all():
        raise ValueError(f"Unknown audit action: {action}")

    user_id = None
    user_email = email
    if actor is not None:
        user_id = getattr(actor, "user_id", None) or getattr(actor, "id", None)
        user_email = getattr(actor, "email", None) or email

    ip_address = user_agent = None
    if has_request_context():
        ip_address = client_address(request, get_runtime().settings.trust_proxy_headers)
        user_agent = (request.headers.get("User-Agent") or "")[:512] or None

    return AuditEntry(
        action=action,
        user_id=user_id,
        user_email=user_email,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        details=dict(details or {}),
        ip_address=ip_address,
        user_agent=user_agent,
    )


def compute_digest(
    *,
    action,
    user_id,
    user_email,
    resource_type,
    resource_id,
    details,
    ip_address,
    user_agent,
    created_at,
) -> str:
    canonical = json.dumps(
        {
            "action": action,
            "user_id": user_id,
            "user_email": user_email,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "details": details or {},
            "ip_address": ip_address,
            "user_agent": user_agent,
            "created_at": created_at.replace(microsecond=0).isoformat() if created_at else None,
        },
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def verify_record(log: AuditLog) -> bool:
    return log.record_digest == compute_digest(
        action=log.action,
        user_id=log.user_id,
        user_email=log.user_email,
        resource_type=log.resource_type,
        resource_id=log.resource_id,
        details=log.details,
        ip_address=log.ip_address,
        user_agent=log.user_agent,
        created_at=log.created_at,
    )


def write_entry(entry: AuditEntry) -> AuditLog:
    """Persist one entry and commit. Raises on storage failure."""
    # Second resolution keeps the digest stable across backends.
    created_at = entry.created_at.replace(microsecond=0)
    details = json.loads(json.dumps(entry.details, default=str))
    log = AuditLog(
        action=entry.action,
        user_id=entry.user_id,
        user_email=entry.user_email,
        resource_type=entry.resource_type,
        resource_id=entry.resource_id,
        details=details,
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        created_at=created_at,
        record_digest=compute_digest(
            action=entry.action,
            user_id=entry.user_id,
            user_email=entry.user_email,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            details=details,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            created_at=created_at,
        ),
    )
    db.session.add(log)
    db.session.commit()
    return log


_STOP = object()


class AuditSink:
    """
    Fire-and-forget audit writer.

    thread mode: entries go on a bounded queue drained by one daemon worker
    that writes inside its own app context. A full queue drops the entry and
    bumps storeadmin_audit_dropped_total.

    inline mode: the entry is written before emit() returns, inside a
    best-effort boundary. Used where no background worker can run (tests, CLI).

    emit() never raises: the audited action has already happened.
    """

    def __init__(self, app, mode: str = "thread", queue_size: int = 1000):
        self._app = app
        self.mode = mode
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, queue_size))
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()

    def emit(self, entry: AuditEntry) -> bool:
        try:
            if self.mode == "inline":
                return self._write_guarded(entry)
            self._ensure_worker()
            self._queue.put_nowait(entry)
            return True
        except queue.Full:
            AUDIT_DROPPED.inc()
            logger.warning("Audit queue full; dropped %s entry for user %s", entry.action, entry.user_email)
            return False
        except Exception:
            AUDIT_WRITE_FAILURES.inc()
            logger.exception("Audit emit failed for %s", entry.action)
            return False

    def _write_guarded(self, entry: AuditEntry) -> bool:
        try:
            write_entry(entry)
            return True
        except Exception:
            db.session.rollback()
            AUDIT_WRITE_FAILURES.inc()
            logger.exception("Failed to write audit entry %s", entry.action)
            return False

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._run, name="audit-sink", daemon=True)
                self._worker.start()
                logger.info("Audit worker started (queue size %d)", self._queue.maxsize)

    def _run(self) -> None:
        while True:
            entry = self._queue.get()
            try:
                if entry is _STOP:
                    return
                with self._app.app_context():
                    self._write_guarded(entry)
            finally:
                self._queue.task_done()

    def drain(self, timeout: float = 5.0) -> bool:
        """Wait until every queued entry has been processed. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._queue.mutex:
                if self._queue.unfinished_tasks == 0:
                    return True
            time.sleep(0.01)
        return False

    def stop(self, timeout: float = 5.0) -> None:
        worker = self._worker
        if worker is None or not worker.is_alive():
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Audit worker did not accept stop signal within %.1fs", timeout)
            return
        worker.join(timeout)


def record(action: str, actor: Any = None, **kwargs) -> bool:
    """Build an entry for the current request and hand it to the app's sink."""
    try:
        entry = build_entry(action, actor, **kwargs)
    except Exception:
        logger.exception("Could not build audit entry for %s", action)
        return False
    return get_runtime().audit.emit(entry)


# -- query side -------------------------------------------------------------

def _parse_bound(value: str | None, field_name: str) -> datetime | None:
    if not value:
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime")


def query_audit_logs(filters: dict, page=None, limit=None) -> dict:
    """
    Newest-first, paginated audit search.

    Filters: action, user_id, user_email (case-insensitive contains),
    resource_type, resource_id, from, to.
    """
    page = parse_positive_int(page, "page", 1)
    limit = parse_positive_int(limit, "limit", DEFAULT_PAGE_SIZE, maximum=MAX_PAGE_SIZE)

    conditions = []
    if filters.get("action"):
        conditions.append(AuditLog.action == filters["action"])
    if filters.get("user_id"):
        try:
            conditions.append(AuditLog.user_id == int(filters["user_id"]))
        except (TypeError, ValueError):
            raise ValidationError("user_id must be an integer")
    if filters.get("user_email"):
        conditions.append(AuditLog.user_email.ilike(f"%{filters['user_email']}%"))
    if filters.get("resource_type"):
        conditions.append(AuditLog.resource_type == filters["resource_type"])
    if filters.get("resource_id"):
        conditions.append(AuditLog.resource_id == str(filters["resource_id"]))
    start = _parse_bound(filters.get("from"), "from")
    if start is not None:
        conditions.append(AuditLog.created_at >= start)
    end = _parse_bound(filters.get("to"), "to")
    if end is not None:
        conditions.append(AuditLog.created_at <= end)

    total = db.session.execute(
        select(func.count()).select_from(AuditLog).where(*conditions)
    ).scalar_one()
    logs = db.session.execute(
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    return {
        "logs": [log.to_dict() for log in logs],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }
