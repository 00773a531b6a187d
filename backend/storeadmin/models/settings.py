from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class SiteSettings(db.Model):
    """
    Single-row site configuration.

    Only the keys the admin has changed are stored in `settings_json`; readers merge
    them over settings_service.DEFAULT_SETTINGS.
    """
    __tablename__ = "site_settings"

    id = db.Column(db.Integer, primary_key=True)
    settings_json = db.Column(db.JSON, nullable=False, default=dict)
    updated_by = db.Column(db.String(254), nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "values": dict(self.settings_json or {}),
            "updated_by": self.updated_by,
            "updated_at": to_utc_z(self.updated_at),
        }
