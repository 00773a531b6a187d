from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class AdminUser(db.Model):
    """
    Admin console identity.

    Email is stored lower-cased and is unique. Rows are never hard-deleted:
    deactivation clears is_active so audit records keep a valid actor.

    password_hash holds one of two verifier formats, told apart by prefix
    (see services.auth_service).
    """
    __tablename__ = "admin_users"
    __table_args__ = (
        db.CheckConstraint(
            "NOT mfa_enabled OR mfa_secret IS NOT NULL",
            name="ck_admin_users_mfa_secret_present",
        ),
        db.CheckConstraint(
            "role IN ('website_admin', 'business_processing', 'customer')",
            name="ck_admin_users_role",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(254), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(100), nullable=True)
    role = db.Column(db.String(32), nullable=False, default="business_processing")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Base32 TOTP secret; set during enrollment before mfa_enabled flips on.
    mfa_secret = db.Column(db.String(64), nullable=True)
    mfa_enabled = db.Column(db.Boolean, nullable=False, default=False)

    last_login_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    backup_codes = db.relationship(
        "AdminBackupCode",
        backref="user",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="AdminBackupCode.id",
    )

    def unused_backup_code_count(self) -> int:
        return sum(1 for c in self.backup_codes if c.used_at is None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "is_active": self.is_active,
            "mfa_enabled": self.mfa_enabled,
            "last_login_at": to_utc_z(self.last_login_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    def to_session_user(self) -> dict:
        """Shape returned to the admin client after login/verify."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
        }


class AdminBackupCode(db.Model):
    """
    Single-use challenge fallback.

    Only a salted SHA-256 digest is stored. A code is spent by setting used_at
    in one conditional UPDATE, so two concurrent submissions cannot both win.
    """
    __tablename__ = "admin_backup_codes"
    __table_args__ = (
        db.Index("ix_admin_backup_codes_user_unused", "user_id", "used_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("admin_users.id"), nullable=False, index=True)
    code_hash = db.Column(db.String(128), nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
