from __future__ import annotations

from decimal import Decimal

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


GIFT_CARD_STATUSES = ("pending", "active", "depleted", "expired", "cancelled")
GIFT_CARD_SOURCES = ("purchase", "promotional", "refund")
TRANSACTION_TYPES = ("activation", "redemption", "refund", "adjustment", "expiration")


def _money(value) -> float | None:
    if value is None:
        return None
    return float(Decimal(value))


class GiftCard(db.Model):
    """
    Stored-value card.

    LEDGER: current_balance always equals the sum of this card's transaction
    amounts. Services change the balance only together with a
    GiftCardTransaction insert, inside one locked transaction.
    """
    __tablename__ = "gift_cards"
    __table_args__ = (
        db.CheckConstraint("current_balance >= 0", name="ck_gift_cards_balance_non_negative"),
        db.CheckConstraint("current_balance <= initial_balance", name="ck_gift_cards_balance_le_initial"),
        db.Index("ix_gift_cards_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(17), nullable=False, unique=True, index=True)

    initial_balance = db.Column(db.Numeric(10, 2), nullable=False)
    current_balance = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    currency = db.Column(db.String(3), nullable=False, default="GBP")

    status = db.Column(db.String(16), nullable=False, default="pending")
    source = db.Column(db.String(16), nullable=False, default="purchase")

    purchaser_email = db.Column(db.String(254), nullable=True)
    purchaser_name = db.Column(db.String(100), nullable=True)
    recipient_email = db.Column(db.String(254), nullable=True)
    recipient_name = db.Column(db.String(100), nullable=True)
    personal_message = db.Column(db.String(500), nullable=True)
    order_id = db.Column(db.String(64), nullable=True)

    is_sent = db.Column(db.Boolean, nullable=False, default=False)
    sent_at = db.Column(db.DateTime, nullable=True)

    expires_at = db.Column(db.DateTime, nullable=True)
    activated_at = db.Column(db.DateTime, nullable=True)
    created_by = db.Column(db.String(254), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    transactions = db.relationship(
        "GiftCardTransaction",
        backref="gift_card",
        lazy=True,
        order_by="GiftCardTransaction.id",
    )
    # Stale writes raise StaleDataError; SQLite ignores FOR UPDATE.
    __mapper_args__ = {"version_id_col": version_id}

    def is_expired_at(self, now) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self, include_transactions: bool = False) -> dict:
        data = {
            "id": self.id,
            "code": self.code,
            "initial_balance": _money(self.initial_balance),
            "current_balance": _money(self.current_balance),
            "currency": self.currency,
            "status": self.status,
            "source": self.source,
            "purchaser_email": self.purchaser_email,
            "purchaser_name": self.purchaser_name,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "personal_message": self.personal_message,
            "order_id": self.order_id,
            "is_sent": self.is_sent,
            "sent_at": to_utc_z(self.sent_at),
            "expires_at": to_utc_z(self.expires_at),
            "activated_at": to_utc_z(self.activated_at),
            "created_by": self.created_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_transactions:
            data["transactions"] = [t.to_dict() for t in self.transactions]
        return data


class GiftCardTransaction(db.Model):
    """
    Ledger line. IMMUTABLE once written.

    amount is signed (positive raises the balance); balance_after is the card
    balance immediately after this line was applied.
    """
    __tablename__ = "gift_card_transactions"
    __table_args__ = (
        db.Index("ix_gift_card_txn_card_id", "gift_card_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    gift_card_id = db.Column(db.Integer, db.ForeignKey("gift_cards.id"), nullable=False)
    transaction_type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    balance_after = db.Column(db.Numeric(10, 2), nullable=False)
    order_id = db.Column(db.String(64), nullable=True)
    order_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.String(500), nullable=True)
    performed_by_email = db.Column(db.String(254), nullable=True)
    performed_by_admin = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gift_card_id": self.gift_card_id,
            "transaction_type": self.transaction_type,
            "amount": _money(self.amount),
            "balance_after": _money(self.balance_after),
            "order_id": self.order_id,
            "order_number": self.order_number,
            "notes": self.notes,
            "performed_by_email": self.performed_by_email,
            "performed_by_admin": self.performed_by_admin,
            "created_at": to_utc_z(self.created_at),
        }

    def to_public_dict(self) -> dict:
        return {
            "type": self.transaction_type,
            "amount": _money(self.amount),
            "balance_after": _money(self.balance_after),
            "date": to_utc_z(self.created_at),
        }


@event.listens_for(GiftCardTransaction, "before_update")
def _txn_no_update(mapper, connection, target):
    raise RuntimeError("gift_card_transactions rows are immutable")


@event.listens_for(GiftCardTransaction, "before_delete")
def _txn_no_delete(mapper, connection, target):
    raise RuntimeError("gift_card_transactions rows are immutable")
