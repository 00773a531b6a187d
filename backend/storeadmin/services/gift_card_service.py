# Overview: Gift-card ledger: code allocation, balance/status transitions and the append-only transaction log.

"""
Gift-card ledger.

LEDGER INVARIANTS (hold after every committed operation):
- current_balance = sum(txn.amount) over the card's transactions
  (the activation line carries +initial_balance)
- 0 <= current_balance <= initial_balance
- status == "depleted"  <=> balance is 0 and the last balance change was a
  redemption or adjustment
- expired and cancelled are terminal; neither accepts redemption

Every balance change is one locked read of the card row, the new balance,
and one GiftCardTransaction insert, committed together.

STATE MACHINE:
    pending -> active -> depleted -> active (refund/adjustment)
               active -> expired   (on discovery, or maintenance sweep)
    pending/active/depleted -> cancelled (balance zeroed by a compensating line)
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, or_, select

from ..errors import NotFoundError, ServiceError
from ..extensions import db
from ..models import GiftCard, GiftCardTransaction
from ..models.gift_cards import GIFT_CARD_STATUSES
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    MAX_EMAIL_LENGTH,
    MAX_NAME_LENGTH,
    MAX_TEXT_LENGTH,
    ValidationError,
    normalize_email,
    optional_text,
    parse_future_datetime,
    parse_money,
    parse_positive_int,
    quantize_money,
)
from .concurrency import lock_for_update, run_with_retry
from .crypto_service import random_code


CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_GROUPS = 3
CODE_GROUP_LENGTH = 4
MAX_CODE_ATTEMPTS = 10
CODE_PATTERN = re.compile(r"^GC-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")

MIN_AMOUNT = Decimal("1.00")
MAX_AMOUNT = Decimal("500.00")
ZERO = Decimal("0.00")

STATUS_MESSAGES = {
    "pending": "This gift card has not been activated yet",
    "depleted": "This gift card has no remaining balance",
    "expired": "This gift card has expired",
    "cancelled": "This gift card has been cancelled",
}


class GiftCardError(ServiceError):
    """
    Ledger refusal. `code` is stable for clients:
    INVALID_CODE, CARD_NOT_ACTIVE, INSUFFICIENT_BALANCE, CODE_EXHAUSTED.
    """
    status_code = 400

    def __init__(self, code: str, message: str | None = None, *, reason: str | None = None):
        super().__init__(message or code)
        self.code = code
        self.reason = reason

    def to_body(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.reason:
            body["reason"] = self.reason
        return body


@dataclass(frozen=True)
class GiftCardQuote:
    code: str
    balance: Decimal
    applicable: Decimal
    remaining_after_use: Decimal
    covers_full_order: bool
    expires_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "valid": True,
            "code": self.code,
            "balance": float(self.balance),
            "applicable": float(self.applicable),
            "applicable_amount": float(self.applicable),
            "remaining_after_use": float(self.remaining_after_use),
            "covers_full_order": self.covers_full_order,
            "expires_at": to_utc_z(self.expires_at),
        }


def _d(value) -> Decimal:
    return quantize_money(Decimal(value))


# -- codes ---------------------------------------------------------------------

def normalize_code(code) -> str:
    if not isinstance(code, str):
        return ""
    return code.strip().upper()


def _candidate_code() -> str:
    groups = [random_code(CODE_ALPHABET, CODE_GROUP_LENGTH) for _ in range(CODE_GROUPS)]
    return "GC-" + "-".join(groups)


def generate_unique_code() -> str:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = _candidate_code()
        taken = db.session.execute(select(GiftCard.id).where(GiftCard.code == code)).first()
        if taken is None:
            return code
    raise GiftCardError("CODE_EXHAUSTED", "Could not allocate a unique gift card code")


# -- ledger primitives ----------------------------------------------------------

def _append(
    card: GiftCard,
    transaction_type: str,
    amount: Decimal,
    *,
    notes: str | None = None,
    order_id=None,
    order_number: str | None = None,
    actor_email: str | None = None,
    by_admin: bool = False,
) -> GiftCardTransaction:
    """Apply a signed amount to the card and write the matching ledger line."""
    new_balance = _d(card.current_balance) + _d(amount)
    if new_balance < ZERO:
        raise GiftCardError("INSUFFICIENT_BALANCE", "Insufficient gift card balance")
    if new_balance > _d(card.initial_balance):
        raise ValidationError("Balance cannot exceed the card's initial value")

    card.current_balance = new_balance
    txn = GiftCardTransaction(
        gift_card_id=card.id,
        transaction_type=transaction_type,
        amount=_d(amount),
        balance_after=new_balance,
        order_id=str(order_id) if order_id is not None else None,
        order_number=order_number,
        notes=notes,
        performed_by_email=actor_email,
        performed_by_admin=by_admin,
    )
    db.session.add(txn)
    return txn


def _expire(card: GiftCard, actor_email: str | None = None) -> None:
    """active -> expired; the remaining balance leaves via an expiration line."""
    _append(
        card,
        "expiration",
        -_d(card.current_balance),
        notes="expired",
        actor_email=actor_email,
        by_admin=actor_email is not None,
    )
    card.status = "expired"


def _locked_card(*, card_id: int | None = None, code: str | None = None) -> GiftCard | None:
    query = select(GiftCard)
    if card_id is not None:
        query = query.where(GiftCard.id == card_id)
    else:
        query = query.where(GiftCard.code == normalize_code(code))
    return db.session.execute(lock_for_update(query).execution_options(populate_existing=True)).scalar_one_or_none()


def _expire_if_due(card: GiftCard, now: datetime) -> bool:
    """Expire-on-discovery. Commits so the transition survives the refusal that follows."""
    if card.status == "active" and card.is_expired_at(now):
        _expire(card)
        db.session.commit()
        return True
    return False


def _require_active(card: GiftCard) -> None:
    if card.status != "active":
        raise GiftCardError(
            "CARD_NOT_ACTIVE",
            STATUS_MESSAGES.get(card.status, "This gift card is not active"),
            reason=card.status,
        )


def ledger_consistent(card: GiftCard) -> bool:
    total = db.session.execute(
        select(func.coalesce(func.sum(GiftCardTransaction.amount), 0)).where(
            GiftCardTransaction.gift_card_id == card.id
        )
    ).scalar_one()
    balance = _d(card.current_balance)
    return _d(total) == balance and ZERO <= balance <= _d(card.initial_balance)


# -- issuance --------------------------------------------------------------------

def create_promotional_card(
    amount,
    actor_email: str | None,
    *,
    recipient_email=None,
    recipient_name=None,
    personal_message=None,
    expires_at=None,
    notes=None,
) -> GiftCard:
    amount = parse_money(amount, "amount", minimum=MIN_AMOUNT, maximum=MAX_AMOUNT)
    recipient_email = normalize_email(recipient_email, "recipient_email", required=False)
    recipient_name = optional_text(recipient_name, "recipient_name", MAX_NAME_LENGTH)
    personal_message = optional_text(personal_message, "personal_message", MAX_TEXT_LENGTH)
    notes = optional_text(notes, "notes", MAX_TEXT_LENGTH)
    expires = parse_future_datetime(expires_at) if not isinstance(expires_at, datetime) else expires_at

    def _op():
        now = utcnow()
        card = GiftCard(
            code=generate_unique_code(),
            initial_balance=amount,
            current_balance=ZERO,
            currency="GBP",
            status="active",
            source="promotional",
            recipient_email=recipient_email,
            recipient_name=recipient_name,
            personal_message=personal_message,
            expires_at=expires,
            activated_at=now,
            created_by=actor_email,
            notes=notes,
        )
        db.session.add(card)
        db.session.flush()
        _append(card, "activation", amount, notes="Promotional gift card", actor_email=actor_email, by_admin=True)
        db.session.commit()
        return card

    return run_with_retry(_op)


def create_pending_card(
    amount,
    *,
    purchaser_email=None,
    purchaser_name=None,
    recipient_email=None,
    recipient_name=None,
    personal_message=None,
    order_id=None,
    expires_at=None,
) -> GiftCard:
    """Purchased card awaiting payment confirmation. Balance stays 0 until activation."""
    amount = parse_money(amount, "amount", minimum=MIN_AMOUNT, maximum=MAX_AMOUNT)
    card = GiftCard(
        code=generate_unique_code(),
        initial_balance=amount,
        current_balance=ZERO,
        currency="GBP",
        status="pending",
        source="purchase",
        purchaser_email=normalize_email(purchaser_email, "purchaser_email", required=False),
        purchaser_name=optional_text(purchaser_name, "purchaser_name", MAX_NAME_LENGTH),
        recipient_email=normalize_email(recipient_email, "recipient_email", required=False),
        recipient_name=optional_text(recipient_name, "recipient_name", MAX_NAME_LENGTH),
        personal_message=optional_text(personal_message, "personal_message", MAX_TEXT_LENGTH),
        order_id=str(order_id) if order_id is not None else None,
        expires_at=expires_at if isinstance(expires_at, datetime) else parse_future_datetime(expires_at),
    )
    db.session.add(card)
    db.session.commit()
    return card


def activate_card(card_id: int, *, reference: str | None = None, actor_email: str | None = None) -> GiftCard:
    """pending -> active. Re-delivery of the same activation is a no-op."""
    def _op():
        card = _locked_card(card_id=card_id)
        if card is None:
            raise NotFoundError("Gift card")
        if card.status == "active":
            db.session.rollback()
            return card
        if card.status != "pending":
            raise GiftCardError("CARD_NOT_ACTIVE", "Only pending gift cards can be activated", reason=card.status)

        _append(
            card,
            "activation",
            _d(card.initial_balance),
            notes="Gift card purchase completed",
            order_id=reference,
            actor_email=actor_email or card.purchaser_email,
        )
        card.status = "active"
        card.activated_at = utcnow()
        db.session.commit()
        return card

    return run_with_retry(_op)


# -- checkout ----------------------------------------------------------------------

def validate(code, subtotal) -> GiftCardQuote:
    canonical = normalize_code(code)
    if not canonical:
        raise ValidationError("Gift card code is required")
    subtotal = parse_money(subtotal, "subtotal", minimum=ZERO)

    try:
        card = _locked_card(code=canonical)
        if card is None:
            raise GiftCardError("INVALID_CODE", "Invalid gift card code")
        _expire_if_due(card, utcnow())
        _require_active(card)

        balance = _d(card.current_balance)
        if balance <= ZERO:
            raise GiftCardError("CARD_NOT_ACTIVE", STATUS_MESSAGES["depleted"], reason="depleted")
    finally:
        # read-only from here; release the row lock
        db.session.rollback()

    applicable = min(balance, subtotal)
    return GiftCardQuote(
        code=canonical,
        balance=balance,
        applicable=applicable,
        remaining_after_use=balance - applicable,
        covers_full_order=balance >= subtotal,
        expires_at=card.expires_at,
    )


def redeem(
    code,
    amount,
    *,
    order_id=None,
    order_number: str | None = None,
    performed_by_email: str | None = None,
    by_admin: bool = False,
) -> tuple[GiftCard, GiftCardTransaction]:
    canonical = normalize_code(code)
    amount = parse_money(amount, "amount", minimum=Decimal("0.01"))

    def _op():
        card = _locked_card(code=canonical)
        if card is None:
            raise GiftCardError("INVALID_CODE", "Invalid gift card code")
        _expire_if_due(card, utcnow())
        _require_active(card)

        if amount > _d(card.current_balance):
            raise GiftCardError("INSUFFICIENT_BALANCE", "Insufficient gift card balance")

        txn = _append(
            card,
            "redemption",
            -amount,
            notes=f"Order {order_number}" if order_number else None,
            order_id=order_id,
            order_number=order_number,
            actor_email=performed_by_email,
            by_admin=by_admin,
        )
        if _d(card.current_balance) == ZERO:
            card.status = "depleted"
        db.session.commit()
        return card, txn

    try:
        return run_with_retry(_op)
    except (GiftCardError, ValidationError):
        db.session.rollback()
        raise


# -- administration ---------------------------------------------------------------

def _admin_card(card_id: int) -> GiftCard:
    card = _locked_card(card_id=card_id)
    if card is None:
        raise NotFoundError("Gift card")
    return card


def refund(card_id: int, amount, *, order_id=None, notes=None, actor_email: str | None = None):
    amount = parse_money(amount, "amount", minimum=Decimal("0.01"))
    notes = optional_text(notes, "notes", MAX_TEXT_LENGTH)

    def _op():
        card = _admin_card(card_id)
        if card.status not in ("active", "depleted"):
            raise GiftCardError("CARD_NOT_ACTIVE", STATUS_MESSAGES.get(card.status, "Card cannot be refunded"), reason=card.status)
        txn = _append(
            card,
            "refund",
            amount,
            notes=notes or "Refund",
            order_id=order_id,
            actor_email=actor_email,
            by_admin=actor_email is not None,
        )
        card.status = "active"
        db.session.commit()
        return card, txn

    try:
        return run_with_retry(_op)
    except (GiftCardError, ValidationError):
        db.session.rollback()
        raise


def adjust_balance(card_id: int, new_balance, *, reason=None, actor_email: str | None = None):
    """Set the balance to an exact value, recording the signed delta."""
    new_balance = parse_money(new_balance, "new_balance", minimum=ZERO)
    reason = optional_text(reason, "reason", MAX_TEXT_LENGTH)

    def _op():
        card = _admin_card(card_id)
        if card.status not in ("active", "depleted"):
            raise GiftCardError(
                "CARD_NOT_ACTIVE",
                STATUS_MESSAGES.get(card.status, "Card cannot be adjusted"),
                reason=card.status,
            )
        if new_balance > _d(card.initial_balance):
            raise ValidationError(f"new_balance cannot exceed the initial balance of {_d(card.initial_balance):.2f}")

        old_balance = _d(card.current_balance)
        delta = new_balance - old_balance
        txn = None
        if delta != ZERO:
            txn = _append(
                card,
                "adjustment",
                delta,
                notes=reason or "Balance adjustment",
                actor_email=actor_email,
                by_admin=True,
            )
            card.status = "depleted" if new_balance == ZERO else "active"
        db.session.commit()
        return card, txn, old_balance

    try:
        return run_with_retry(_op)
    except (GiftCardError, ValidationError):
        db.session.rollback()
        raise


def cancel_card(card_id: int, *, actor_email: str | None = None, reason=None) -> GiftCard:
    """Cancel from any non-terminal state; a positive balance is written off first."""
    reason = optional_text(reason, "reason", MAX_TEXT_LENGTH)

    def _op():
        card = _admin_card(card_id)
        if card.status in ("cancelled", "expired"):
            raise GiftCardError(
                "CARD_NOT_ACTIVE",
                STATUS_MESSAGES[card.status],
                reason=card.status,
            )
        balance = _d(card.current_balance)
        if balance > ZERO:
            _append(
                card,
                "adjustment",
                -balance,
                notes="cancelled" if not reason else f"cancelled: {reason}",
                actor_email=actor_email,
                by_admin=True,
            )
        card.status = "cancelled"
        db.session.commit()
        return card

    try:
        return run_with_retry(_op)
    except GiftCardError:
        db.session.rollback()
        raise


def mark_sent(card_id: int) -> GiftCard:
    card = get_card(card_id)
    if card.status in ("pending", "cancelled"):
        raise ValidationError(f"Cannot mark a {card.status} gift card as sent")
    card.is_sent = True
    card.sent_at = utcnow()
    db.session.commit()
    return card


UPDATABLE_FIELDS = ("recipient_email", "recipient_name", "personal_message", "expires_at", "notes")


def update_card(card_id: int, payload: dict) -> tuple[GiftCard, list[str]]:
    """Non-ledger edits. Returns the card and the names of fields that changed."""
    card = get_card(card_id)
    if card.status in ("cancelled", "expired"):
        raise ValidationError(f"Cannot edit a {card.status} gift card")

    changed = []
    if "recipient_email" in payload:
        card.recipient_email = normalize_email(payload["recipient_email"], "recipient_email", required=False)
        changed.append("recipient_email")
    if "recipient_name" in payload:
        card.recipient_name = optional_text(payload["recipient_name"], "recipient_name", MAX_NAME_LENGTH)
        changed.append("recipient_name")
    if "personal_message" in payload:
        card.personal_message = optional_text(payload["personal_message"], "personal_message", MAX_TEXT_LENGTH)
        changed.append("personal_message")
    if "expires_at" in payload:
        card.expires_at = parse_future_datetime(payload["expires_at"])
        changed.append("expires_at")
    if "notes" in payload:
        card.notes = optional_text(payload["notes"], "notes", MAX_TEXT_LENGTH)
        changed.append("notes")

    if not changed:
        raise ValidationError(f"No updatable fields provided. Allowed: {', '.join(UPDATABLE_FIELDS)}")
    db.session.commit()
    return card, changed


def expire_due_cards(now: datetime | None = None) -> int:
    """Maintenance sweep: expire every active card past its expiry."""
    now = now or utcnow()
    due_ids = db.session.execute(
        select(GiftCard.id).where(
            GiftCard.status == "active",
            GiftCard.expires_at.is_not(None),
            GiftCard.expires_at <= now,
        )
    ).scalars().all()
    expired = 0
    for card_id in due_ids:
        card = _locked_card(card_id=card_id)
        if card is not None and _expire_if_due(card, now):
            expired += 1
    return expired


# -- reads --------------------------------------------------------------------------

def get_card(card_id: int) -> GiftCard:
    card = db.session.get(GiftCard, card_id)
    if card is None:
        raise NotFoundError("Gift card")
    return card


def list_cards(search: str | None = None, status: str | None = None, page=None, limit=None) -> dict:
    page = parse_positive_int(page, "page", 1)
    limit = parse_positive_int(limit, "limit", 50, maximum=100)

    conditions = []
    if status and status != "all":
        if status not in GIFT_CARD_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(GIFT_CARD_STATUSES)}")
        conditions.append(GiftCard.status == status)
    if search:
        term = f"%{search.strip()}%"
        conditions.append(or_(
            GiftCard.code.ilike(term),
            GiftCard.recipient_email.ilike(term),
            GiftCard.purchaser_email.ilike(term),
            GiftCard.recipient_name.ilike(term),
        ))

    total = db.session.execute(select(func.count()).select_from(GiftCard).where(*conditions)).scalar_one()
    cards = db.session.execute(
        select(GiftCard)
        .where(*conditions)
        .order_by(GiftCard.created_at.desc(), GiftCard.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    return {
        "gift_cards": [c.to_dict() for c in cards],
        "stats": card_stats(),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


def card_stats() -> dict:
    rows = db.session.execute(
        select(GiftCard.status, func.count(), func.coalesce(func.sum(GiftCard.current_balance), 0))
        .group_by(GiftCard.status)
    ).all()
    by_status = {s: 0 for s in GIFT_CARD_STATUSES}
    outstanding = ZERO
    for status, count, balance in rows:
        by_status[status] = count
        if status == "active":
            outstanding = _d(balance)
    issued = db.session.execute(
        select(func.coalesce(func.sum(GiftCard.initial_balance), 0)).where(GiftCard.status != "pending")
    ).scalar_one()
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "total_outstanding": float(outstanding),
        "total_issued": float(_d(issued)),
    }


def check_balance(code) -> dict:
    """Public lookup: redacted card view plus its history."""
    canonical = normalize_code(code)
    if not CODE_PATTERN.match(canonical):
        raise ValidationError("Invalid gift card code format")

    card = _locked_card(code=canonical)
    if card is None:
        db.session.rollback()
        raise GiftCardError("INVALID_CODE", "Gift card not found")
    _expire_if_due(card, utcnow())

    result = {
        "code": card.code,
        "balance": float(_d(card.current_balance)),
        "initial_balance": float(_d(card.initial_balance)),
        "currency": card.currency,
        "status": card.status,
        "expires_at": to_utc_z(card.expires_at),
        "transactions": [t.to_public_dict() for t in card.transactions],
    }
    db.session.rollback()
    return result
