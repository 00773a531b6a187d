from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


ORDER_STATUSES = ("pending", "paid", "processing", "shipped", "delivered", "cancelled", "refunded")


class Order(db.Model):
    """
    Order row as far as the admin plane needs it.

    PII: phone and shipping_address hold sealed envelopes (text). Never read
    them directly for display; go through order_service, which opens them.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    customer_email = db.Column(db.String(254), nullable=True, index=True)
    customer_name = db.Column(db.String(100), nullable=True)

    phone = db.Column(db.Text, nullable=True)
    shipping_address = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending")
    total = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def stored_values(self) -> dict:
        """Column values as persisted (PII still sealed)."""
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "phone": self.phone,
            "shipping_address": self.shipping_address,
            "status": self.status,
            "total": float(Decimal(self.total)) if self.total is not None else None,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
