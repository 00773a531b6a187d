from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .time_utils import parse_iso_datetime, utcnow


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 254
MAX_NAME_LENGTH = 100
MAX_TEXT_LENGTH = 500

CENTS = Decimal("0.01")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """400-level business rule conflict (e.g., duplicate email)."""


def require_json_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def require_fields(payload: dict, *names: str) -> None:
    missing = [n for n in names if payload.get(n) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def normalize_email(value: Any, field: str = "email", *, required: bool = True) -> str | None:
    """Trim, lower-case and check an email address."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    email = value.strip().lower()
    if len(email) > MAX_EMAIL_LENGTH:
        raise ValidationError(f"{field} exceeds max length {MAX_EMAIL_LENGTH}")
    if not EMAIL_RE.match(email):
        raise ValidationError(f"Invalid {field} format")
    return email


def optional_text(value: Any, field: str, max_length: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return value


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_money(
    value: Any,
    field: str = "amount",
    *,
    minimum: Decimal | None = None,
    maximum: Decimal | None = None,
) -> Decimal:
    """
    Parse a money amount into a 2dp Decimal.

    Floats are accepted via their shortest repr (JSON numbers arrive as floats),
    never via binary expansion.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        if isinstance(value, float):
            amount = Decimal(repr(value))
        else:
            amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number")
    try:
        amount = quantize_money(amount)
    except InvalidOperation:
        # 2dp result needs more digits than the decimal context holds
        raise ValidationError(f"{field} is out of range")
    if minimum is not None and amount < minimum:
        raise ValidationError(f"{field} must be at least {minimum:.2f}")
    if maximum is not None and amount > maximum:
        raise ValidationError(f"{field} cannot exceed {maximum:.2f}")
    return amount


def parse_future_datetime(value: Any, field: str = "expires_at") -> datetime | None:
    """ISO-8601 -> naive UTC; rejects instants already in the past."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        dt = parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    if dt is not None and dt <= utcnow():
        raise ValidationError(f"{field} must be in the future")
    return dt


def parse_positive_int(value: Any, field: str, default: int, *, maximum: int | None = None) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if number < 1:
        raise ValidationError(f"{field} must be >= 1")
    if maximum is not None:
        number = min(number, maximum)
    return number
