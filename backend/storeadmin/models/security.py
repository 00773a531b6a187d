from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class RateLimit(db.Model):
    """
    Failure counter for one (purpose, subject) pair.

    subject_hash is sha256("<purpose>:<subject>") so raw emails and client
    addresses are not kept in this table.
    """
    __tablename__ = "rate_limits"
    __table_args__ = (
        db.UniqueConstraint("purpose", "subject_hash", name="uq_rate_limits_purpose_subject"),
        db.Index("ix_rate_limits_first_attempt", "first_attempt_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purpose = db.Column(db.String(64), nullable=False)
    subject_hash = db.Column(db.String(64), nullable=False)
    first_attempt_at = db.Column(db.DateTime, nullable=False)
    attempt_count = db.Column(db.Integer, nullable=False, default=1)
    window_seconds = db.Column(db.Integer, nullable=False)
    max_attempts = db.Column(db.Integer, nullable=False)


class AuditLog(db.Model):
    """
    Record of one privileged action.

    IMMUTABLE: Never update or delete. Append-only for audit integrity; the
    mapper refuses UPDATE and DELETE flushes, and record_digest lets
    `flask maintenance verify-audit` detect rows edited out-of-band.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_created", "created_at"),
        db.Index("ix_audit_logs_action_created", "action", "created_at"),
        db.Index("ix_audit_logs_user_email", "user_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(64), nullable=False)
    user_id = db.Column(db.Integer, nullable=True, index=True)  # Nullable for anonymous attempts
    user_email = db.Column(db.String(254), nullable=True)
    resource_type = db.Column(db.String(64), nullable=True)
    resource_id = db.Column(db.String(64), nullable=True)
    details = db.Column(db.JSON, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    record_digest = db.Column(db.String(64), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": to_utc_z(self.created_at),
        }


class ImmutableRecordError(RuntimeError):
    pass


@event.listens_for(AuditLog, "before_update")
def _audit_log_no_update(mapper, connection, target):
    raise ImmutableRecordError("audit_logs rows are append-only")


@event.listens_for(AuditLog, "before_delete")
def _audit_log_no_delete(mapper, connection, target):
    raise ImmutableRecordError("audit_logs rows are append-only")
