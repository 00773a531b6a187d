# Overview: Signed payment-provider webhooks; activates purchased gift cards.

"""
Webhook receiver

POST /api/webhooks/<provider>

RETRY POLICY (the provider redelivers on any non-2xx):
- bad signature / unparseable body / unknown card -> 400, never retried
- transient datastore failure                     -> 500, retried
- activation of an already active card             -> 200 (redelivery is harmless)
"""

import json

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import OperationalError

from ..errors import HANDLED_ERRORS, NotFoundError, ServerMisconfiguredError, error_response
from ..extensions import db, get_runtime
from ..services import audit_service, gift_card_service
from ..services.audit_service import AuditAction
from ..services.crypto_service import require_webhook_signature


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")

SIGNATURE_HEADERS = {
    "stripe": "Stripe-Signature",
}

GIFT_CARD_PURCHASE = "gift_card_purchase"


def _activate_purchased_card(session_object: dict):
    metadata = session_object.get("metadata") or {}
    if metadata.get("type") != GIFT_CARD_PURCHASE or not metadata.get("gift_card_id"):
        return None
    try:
        card_id = int(metadata["gift_card_id"])
    except (TypeError, ValueError):
        raise NotFoundError("Gift card")

    card = gift_card_service.activate_card(card_id, reference=session_object.get("id"))
    audit_service.record(
        AuditAction.GIFT_CARD_ACTIVATED,
        email=card.purchaser_email,
        resource_type="gift_card",
        resource_id=card.id,
        details={"code": card.code, "reference": session_object.get("id")},
    )
    return card


@webhooks_bp.post("/<provider>")
def receive_webhook_route(provider: str):
    secrets_by_provider = get_runtime().settings.webhook_secrets
    if provider not in secrets_by_provider or provider not in SIGNATURE_HEADERS:
        return jsonify({"error": "Unknown webhook provider"}), 404

    secret = secrets_by_provider.get(provider)
    raw_body = request.get_data(cache=False)

    try:
        if not secret:
            raise ServerMisconfiguredError(f"webhook secret for {provider} is not configured")
        require_webhook_signature(raw_body, request.headers.get(SIGNATURE_HEADERS[provider]), secret)
    except ServerMisconfiguredError as exc:
        current_app.logger.error("Webhook refused: %s", exc.detail)
        return error_response(exc)
    except HANDLED_ERRORS as exc:
        current_app.logger.warning("Rejected %s webhook with a bad signature", provider)
        return error_response(exc)

    try:
        event = json.loads(raw_body)
    except ValueError:
        return jsonify({"error": "Invalid JSON payload"}), 400
    if not isinstance(event, dict):
        return jsonify({"error": "Invalid JSON payload"}), 400

    event_type = event.get("type")
    data = event.get("data")
    session_object = data.get("object") if isinstance(data, dict) else None

    try:
        if event_type == "checkout.session.completed" and isinstance(session_object, dict):
            _activate_purchased_card(session_object)
    except OperationalError:
        db.session.rollback()
        current_app.logger.exception("Transient failure handling %s webhook %s", provider, event.get("id"))
        return jsonify({"error": "Temporary failure, please retry"}), 500
    except HANDLED_ERRORS as exc:
        db.session.rollback()
        current_app.logger.warning("Permanent failure handling %s webhook %s: %s", provider, event.get("id"), exc)
        return error_response(exc)[0], 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Unhandled error in %s webhook %s", provider, event.get("id"))
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"received": True}), 200
