# Overview: Field-level sealing of order contact details (phone, shipping address).

from __future__ import annotations

import json
from typing import Any

from .crypto_service import FieldCipher


PII_FIELDS = ("phone", "shipping_address")


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def seal_order_fields(values: dict, cipher: FieldCipher) -> dict:
    """Return a copy of `values` with the PII fields replaced by envelopes."""
    sealed = dict(values)
    if "phone" in sealed and sealed["phone"] is not None:
        sealed["phone"] = cipher.encrypt(str(sealed["phone"]))
    if "shipping_address" in sealed and sealed["shipping_address"] is not None:
        address = sealed["shipping_address"]
        text = address if isinstance(address, str) else canonical_json(address)
        sealed["shipping_address"] = cipher.encrypt(text)
    return sealed


def open_order_fields(values: dict, cipher: FieldCipher) -> dict:
    """
    Inverse of seal_order_fields.

    Rows written before encryption was enabled come back unchanged; an address
    stored as JSON text (sealed or not) is re-inflated to an object.
    """
    opened = dict(values)
    if opened.get("phone") is not None:
        opened["phone"] = cipher.decrypt(opened["phone"])
    if opened.get("shipping_address") is not None:
        text = cipher.decrypt(opened["shipping_address"])
        opened["shipping_address"] = _inflate_address(text)
    return opened


def _inflate_address(text: str):
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return text
    return parsed if isinstance(parsed, dict) else text
