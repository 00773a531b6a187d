# Overview: Service-layer operations for orders; every read and write goes through the PII envelope.

from __future__ import annotations

import secrets
from decimal import Decimal

from sqlalchemy import select

from ..errors import NotFoundError
from ..extensions import db, get_runtime
from ..models import Order
from ..models.orders import ORDER_STATUSES
from ..time_utils import utcnow
from ..validation import (
    MAX_NAME_LENGTH,
    MAX_TEXT_LENGTH,
    ConflictError,
    ValidationError,
    normalize_email,
    optional_text,
    parse_money,
    parse_positive_int,
)
from .pii_service import open_order_fields, seal_order_fields


def _cipher():
    return get_runtime().cipher


def serialize_order(order: Order) -> dict:
    return open_order_fields(order.stored_values(), _cipher())


def generate_order_number() -> str:
    return f"ORD-{utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


def create_order(payload: dict) -> Order:
    """Record an order; phone and shipping_address are sealed before they reach the row."""
    address = payload.get("shipping_address")
    if address is not None and not isinstance(address, (dict, str)):
        raise ValidationError("shipping_address must be an object")
    phone = payload.get("phone")
    if phone is not None and not isinstance(phone, str):
        raise ValidationError("phone must be a string")

    status = payload.get("status") or "pending"
    if status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")

    values = seal_order_fields(
        {"phone": phone, "shipping_address": address},
        _cipher(),
    )
    order_number = optional_text(payload.get("order_number"), "order_number", 32) or generate_order_number()
    if db.session.execute(select(Order.id).where(Order.order_number == order_number)).first():
        raise ConflictError(f"Order number {order_number} already exists")

    order = Order(
        order_number=order_number,
        customer_email=normalize_email(payload.get("customer_email"), "customer_email", required=False),
        customer_name=optional_text(payload.get("customer_name"), "customer_name", MAX_NAME_LENGTH),
        phone=values["phone"],
        shipping_address=values["shipping_address"],
        status=status,
        total=parse_money(payload.get("total", 0), "total", minimum=Decimal("0.00")),
        notes=optional_text(payload.get("notes"), "notes", MAX_TEXT_LENGTH),
    )
    db.session.add(order)
    db.session.commit()
    return order


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order")
    return order


def list_orders(status: str | None = None, page=None, limit=None) -> dict:
    page = parse_positive_int(page, "page", 1)
    limit = parse_positive_int(limit, "limit", 50, maximum=100)
    query = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
    if status:
        query = query.where(Order.status == status)
    orders = db.session.execute(query.offset((page - 1) * limit).limit(limit)).scalars().all()
    return {"orders": [serialize_order(o) for o in orders], "page": page, "limit": limit}


def update_order(order_id: int, payload: dict) -> tuple[Order, dict]:
    """Change status and/or notes. Returns the order and the {field: [old, new]} changes."""
    order = get_order(order_id)
    changes = {}

    if "status" in payload:
        status = payload.get("status")
        if status not in ORDER_STATUSES:
            raise ValidationError(f"Invalid status. Must be one of: {', '.join(ORDER_STATUSES)}")
        if status != order.status:
            changes["status"] = [order.status, status]
            order.status = status

    if "notes" in payload:
        notes = optional_text(payload.get("notes"), "notes", MAX_TEXT_LENGTH)
        if notes != order.notes:
            changes["notes"] = True
            order.notes = notes

    if not changes:
        raise ValidationError("No changes provided")

    db.session.commit()
    return order, changes
