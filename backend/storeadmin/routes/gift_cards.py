# Overview: Flask API routes for gift cards: admin ledger operations and the public checkout lookups.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import privileged
from ..errors import HANDLED_ERRORS, error_response
from ..services import gift_card_service
from ..services.audit_service import AuditAction
from ..validation import ValidationError, require_json_object


gift_cards_bp = Blueprint("gift_cards", __name__, url_prefix="/api/admin/gift-cards")
public_gift_cards_bp = Blueprint("public_gift_cards", __name__, url_prefix="/api")


def _payload() -> dict:
    return require_json_object(request.get_json(silent=True))


# -- admin ---------------------------------------------------------------------

@gift_cards_bp.get("")
@privileged("VIEW_GIFT_CARDS")
def list_gift_cards_route():
    result = gift_card_service.list_cards(
        search=request.args.get("search"),
        status=request.args.get("status"),
        page=request.args.get("page"),
        limit=request.args.get("limit"),
    )
    return jsonify(result), 200


@gift_cards_bp.get("/<int:card_id>")
@privileged("VIEW_GIFT_CARDS")
def get_gift_card_route(card_id: int):
    card = gift_card_service.get_card(card_id)
    return jsonify({"gift_card": card.to_dict(include_transactions=True)}), 200


@gift_cards_bp.post("")
@privileged(
    "MANAGE_GIFT_CARDS",
    action=AuditAction.GIFT_CARD_CREATED,
    resource_type="gift_card",
    detail_fields=("amount", "recipient_email"),
)
def create_gift_card_route():
    """Issue a promotional card; it is active immediately."""
    data = _payload()
    card = gift_card_service.create_promotional_card(
        data.get("amount"),
        g.current_user.email,
        recipient_email=data.get("recipient_email"),
        recipient_name=data.get("recipient_name"),
        personal_message=data.get("personal_message"),
        expires_at=data.get("expires_at"),
        notes=data.get("notes"),
    )
    g.audit_resource_id = card.id
    g.audit_details = {"code": card.code}
    return jsonify({"success": True, "gift_card": card.to_dict(include_transactions=True)}), 201


@gift_cards_bp.put("/<int:card_id>")
@privileged("MANAGE_GIFT_CARDS", action=AuditAction.GIFT_CARD_UPDATED, resource_type="gift_card")
def update_gift_card_route(card_id: int):
    """
    Body shapes:
    - {"action": "mark_sent"}
    - {"action": "adjust_balance", "new_balance": 12.5, "reason": "..."}
    - any of recipient_email, recipient_name, personal_message, expires_at, notes
    """
    data = _payload()
    action = data.get("action")
    g.audit_resource_id = card_id

    if action == "mark_sent":
        card = gift_card_service.mark_sent(card_id)
        g.audit_action = AuditAction.GIFT_CARD_SENT
    elif action == "adjust_balance":
        if "new_balance" not in data:
            raise ValidationError("new_balance is required")
        card, txn, old_balance = gift_card_service.adjust_balance(
            card_id,
            data.get("new_balance"),
            reason=data.get("reason"),
            actor_email=g.current_user.email,
        )
        g.audit_action = AuditAction.GIFT_CARD_ADJUSTED
        g.audit_details = {
            "old_balance": float(old_balance),
            "new_balance": float(card.current_balance),
            "reason": data.get("reason"),
        }
    elif action is None:
        card, changed = gift_card_service.update_card(card_id, data)
        g.audit_details = {"updated_fields": changed}
    else:
        raise ValidationError("Invalid action. Must be one of: mark_sent, adjust_balance")

    return jsonify({"success": True, "gift_card": card.to_dict(include_transactions=True)}), 200


@gift_cards_bp.delete("/<int:card_id>")
@privileged("MANAGE_GIFT_CARDS", action=AuditAction.GIFT_CARD_CANCELLED, resource_type="gift_card")
def cancel_gift_card_route(card_id: int):
    data = request.get_json(silent=True) or {}
    reason = data.get("reason") if isinstance(data, dict) else None
    card = gift_card_service.cancel_card(card_id, actor_email=g.current_user.email, reason=reason)
    g.audit_resource_id = card.id
    g.audit_details = {"code": card.code, "reason": reason}
    return jsonify({"success": True, "gift_card": card.to_dict(include_transactions=True)}), 200


@gift_cards_bp.post("/<int:card_id>/redeem")
@privileged(
    "MANAGE_GIFT_CARDS",
    action=AuditAction.GIFT_CARD_REDEEMED,
    resource_type="gift_card",
    detail_fields=("amount", "order_id", "order_number"),
)
def redeem_gift_card_route(card_id: int):
    data = _payload()
    card = gift_card_service.get_card(card_id)
    card, txn = gift_card_service.redeem(
        card.code,
        data.get("amount"),
        order_id=data.get("order_id"),
        order_number=data.get("order_number"),
        performed_by_email=g.current_user.email,
        by_admin=True,
    )
    g.audit_resource_id = card.id
    return jsonify({
        "success": True,
        "gift_card": card.to_dict(),
        "transaction": txn.to_dict(),
    }), 200


@gift_cards_bp.post("/<int:card_id>/refund")
@privileged(
    "MANAGE_GIFT_CARDS",
    action=AuditAction.GIFT_CARD_REFUNDED,
    resource_type="gift_card",
    detail_fields=("amount", "order_id", "notes"),
)
def refund_gift_card_route(card_id: int):
    data = _payload()
    card, txn = gift_card_service.refund(
        card_id,
        data.get("amount"),
        order_id=data.get("order_id"),
        notes=data.get("notes"),
        actor_email=g.current_user.email,
    )
    g.audit_resource_id = card.id
    return jsonify({
        "success": True,
        "gift_card": card.to_dict(),
        "transaction": txn.to_dict(),
    }), 200


# -- public --------------------------------------------------------------------

@public_gift_cards_bp.post("/validate-gift-card")
def validate_gift_card_route():
    """Checkout preview. Redacted: no ids, emails or messages."""
    try:
        data = _payload()
        quote = gift_card_service.validate(data.get("code"), data.get("subtotal", 0))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Gift card validation failed")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(quote.to_dict()), 200


@public_gift_cards_bp.post("/check-gift-card")
def check_gift_card_route():
    try:
        data = _payload()
        result = gift_card_service.check_balance(data.get("code"))
    except HANDLED_ERRORS as exc:
        return error_response(exc)
    except Exception:
        current_app.logger.exception("Gift card balance check failed")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 200
