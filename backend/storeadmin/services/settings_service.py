# Overview: Site configuration row: defaults, partial updates and reset.

from __future__ import annotations

from sqlalchemy import delete, select

from ..extensions import db
from ..models import SiteSettings
from ..validation import MAX_TEXT_LENGTH, ValidationError


DEFAULT_SETTINGS = {
    "companyName": "Fidget Street",
    "tagline": "Playful Calm for Busy Hands",
    "logoUrl": "",
    "faviconUrl": "",
    "primaryColor": "#71c7e1",
    "secondaryColor": "#A8E0A2",
    "contactEmail": "hello@fidgetstreet.co.uk",
    "contactPhone": "",
    "businessAddress": "",
    "instagramUrl": "https://instagram.com/fidgetstreet",
    "facebookUrl": "",
    "twitterUrl": "",
    "defaultTitleSuffix": "Fidget Street",
    "defaultDescription": "Playful fidget toys and sensory items for everyone.",
    "ogImageUrl": "",
    "freeShippingThreshold": 20,
    "shippingCost": 2.99,
    "currency": "GBP",
    "maxQuantity": 10,
    "footerTagline": "Playful calm for busy hands.",
    "copyrightText": "Fidget Street. All rights reserved.",
    "footerNote": "UK-based sensory toy specialist",
}

NUMERIC_KEYS = frozenset({"freeShippingThreshold", "shippingCost", "maxQuantity"})


def _current_row() -> SiteSettings | None:
    return db.session.execute(select(SiteSettings).order_by(SiteSettings.id).limit(1)).scalar_one_or_none()


def get_settings() -> dict:
    """Defaults overlaid with whatever the admins have changed."""
    row = _current_row()
    stored = dict(row.settings_json or {}) if row else {}
    return {**DEFAULT_SETTINGS, **stored}


def _clean(payload: dict) -> dict:
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("No settings provided")

    unknown = sorted(set(payload) - set(DEFAULT_SETTINGS))
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(unknown)}")

    cleaned = {}
    for key, value in payload.items():
        if key in NUMERIC_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ValidationError(f"{key} must be a non-negative number")
        elif not isinstance(value, str):
            raise ValidationError(f"{key} must be a string")
        elif len(value) > MAX_TEXT_LENGTH:
            raise ValidationError(f"{key} exceeds max length {MAX_TEXT_LENGTH}")
        cleaned[key] = value
    return cleaned


def update_settings(payload: dict, actor_email: str | None) -> tuple[dict, list[str]]:
    """Upsert the single row. Returns the merged settings and the keys that were written."""
    cleaned = _clean(payload)

    row = _current_row()
    if row is None:
        row = SiteSettings(settings_json={})
        db.session.add(row)

    # Reassign so the JSON column sees the change
    row.settings_json = {**(row.settings_json or {}), **cleaned}
    row.updated_by = actor_email
    db.session.commit()
    return get_settings(), sorted(cleaned)


def reset_settings() -> dict:
    db.session.execute(delete(SiteSettings))
    db.session.commit()
    return dict(DEFAULT_SETTINGS)
