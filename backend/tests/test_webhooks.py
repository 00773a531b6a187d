"""
Payment webhook tests.

Verifies:
- Only correctly signed, fresh deliveries are processed
- A completed gift-card checkout activates the pending card exactly once
- Permanent failures answer 400, unknown providers 404
"""

import json
import time
from dataclasses import replace

import pytest
from sqlalchemy import select

from storeadmin.extensions import db, get_runtime
from storeadmin.models import AuditLog, GiftCard, GiftCardTransaction
from storeadmin.services import gift_card_service
from storeadmin.services.crypto_service import compute_webhook_signature

from conftest import TEST_WEBHOOK_SECRET


def _event(card_id, event_type="checkout.session.completed"):
    return {
        "id": "evt_1",
        "type": event_type,
        "data": {
            "object": {
                "id": "cs_test_123",
                "metadata": {"type": "gift_card_purchase", "gift_card_id": str(card_id)},
            }
        },
    }


def _post(client, payload, *, secret=TEST_WEBHOOK_SECRET, timestamp=None, provider="stripe"):
    body = json.dumps(payload).encode() if not isinstance(payload, bytes) else payload
    ts = timestamp if timestamp is not None else int(time.time())
    signature = compute_webhook_signature(body, ts, secret)
    return client.post(
        f"/api/webhooks/{provider}",
        data=body,
        headers={"Stripe-Signature": f"t={ts},v1={signature}", "Content-Type": "application/json"},
    )


@pytest.fixture
def pending_card(db_session):
    return gift_card_service.create_pending_card(40, purchaser_email="buyer@example.com")


def _activations(card_id):
    return db.session.execute(
        select(GiftCardTransaction).where(
            GiftCardTransaction.gift_card_id == card_id,
            GiftCardTransaction.transaction_type == "activation",
        )
    ).scalars().all()


class TestSignature:

    def test_bad_signature(self, client, pending_card):
        resp = _post(client, _event(pending_card.id), secret="whsec_wrong")
        assert resp.status_code == 400
        assert resp.get_json() == {"error": "BAD_SIGNATURE"}
        db.session.expire_all()
        assert db.session.get(GiftCard, pending_card.id).status == "pending"

    def test_missing_signature_header(self, client, pending_card):
        resp = client.post("/api/webhooks/stripe", data=json.dumps(_event(pending_card.id)))
        assert resp.status_code == 400

    def test_stale_delivery(self, client, pending_card):
        resp = _post(client, _event(pending_card.id), timestamp=int(time.time()) - 3600)
        assert resp.status_code == 400

    def test_unknown_provider(self, client, db_session):
        resp = _post(client, {"type": "x"}, provider="paypal")
        assert resp.status_code == 404

    def test_unconfigured_secret(self, client, db_session, monkeypatch):
        runtime = get_runtime()
        monkeypatch.setattr(runtime, "settings", replace(runtime.settings, webhook_secrets={"stripe": None}))
        resp = _post(client, {"type": "x"})
        assert resp.status_code == 500


class TestActivation:

    def test_activates_pending_card(self, client, pending_card):
        resp = _post(client, _event(pending_card.id))
        assert resp.status_code == 200
        assert resp.get_json() == {"received": True}

        db.session.expire_all()
        card = db.session.get(GiftCard, pending_card.id)
        assert card.status == "active"
        assert float(card.current_balance) == 40.0
        assert len(_activations(card.id)) == 1
        assert gift_card_service.ledger_consistent(card)

        log = db.session.execute(select(AuditLog)).scalar_one()
        assert log.action == "gift_card_activated"
        assert log.details["reference"] == "cs_test_123"

    def test_redelivery_is_harmless(self, client, pending_card):
        assert _post(client, _event(pending_card.id)).status_code == 200
        assert _post(client, _event(pending_card.id)).status_code == 200
        assert len(_activations(pending_card.id)) == 1

    def test_unknown_card(self, client, db_session):
        resp = _post(client, _event(424242))
        assert resp.status_code == 400

    def test_cancelled_card_is_not_activated(self, client, pending_card):
        gift_card_service.cancel_card(pending_card.id)
        resp = _post(client, _event(pending_card.id))
        assert resp.status_code == 400
        assert _activations(pending_card.id) == []

    def test_other_events_are_acknowledged(self, client, pending_card):
        resp = _post(client, _event(pending_card.id, event_type="payment_intent.created"))
        assert resp.status_code == 200
        db.session.expire_all()
        assert db.session.get(GiftCard, pending_card.id).status == "pending"

    def test_invalid_json(self, client, db_session):
        resp = _post(client, b"not json")
        assert resp.status_code == 400
