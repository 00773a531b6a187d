# Overview: Crypto primitives: field-level AEAD, webhook signatures, constant-time compare, random codes.

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import os
import secrets
import time

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import ServiceError


logger = logging.getLogger(__name__)

NONCE_BYTES = 12
TAG_BYTES = 16
ENVELOPE_SEPARATOR = ":"
WEBHOOK_TOLERANCE_SECONDS = 300


class WebhookSignatureError(ServiceError):
    status_code = 400
    public_message = "BAD_SIGNATURE"
    code = "BAD_SIGNATURE"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64_strict(text: str) -> bytes | None:
    """Decode standard base64, accepting only the canonical encoding of the bytes."""
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return None
    if _b64(raw) != text:
        return None
    return raw


def generate_key_hex() -> str:
    return secrets.token_hex(32)


class FieldCipher:
    """
    AES-256-GCM over text fields.

    Envelope: base64(nonce) ":" base64(tag) ":" base64(ciphertext).

    Without a usable key both directions are the identity, so a deployment
    that never configured PII_ENCRYPTION_KEY keeps serving plaintext rows. A
    warning is logged once per cipher. Values that are not envelopes (legacy
    plaintext) and envelopes that fail authentication are returned as given.
    """

    def __init__(self, key_hex: str | None):
        self._aead: AESGCM | None = None
        self._problem: str | None = None
        self._warned = False

        if not key_hex:
            self._problem = "PII_ENCRYPTION_KEY is not set"
        else:
            try:
                key = bytes.fromhex(key_hex.strip())
            except ValueError:
                key = b""
            if len(key) != 32:
                self._problem = "PII_ENCRYPTION_KEY must be 64 hex characters (256 bits)"
            else:
                self._aead = AESGCM(key)

    @property
    def enabled(self) -> bool:
        return self._aead is not None

    def _warn_disabled(self) -> None:
        if not self._warned:
            self._warned = True
            logger.warning("PII encryption disabled: %s; fields are stored in plaintext", self._problem)

    def encrypt(self, plaintext: str | None) -> str | None:
        if plaintext is None or plaintext == "":
            return plaintext
        if self._aead is None:
            self._warn_disabled()
            return plaintext

        nonce = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return ENVELOPE_SEPARATOR.join((_b64(nonce), _b64(tag), _b64(ciphertext)))

    def decrypt(self, envelope: str | None) -> str | None:
        if envelope is None or envelope == "":
            return envelope
        if self._aead is None:
            self._warn_disabled()
            return envelope

        parts = envelope.split(ENVELOPE_SEPARATOR)
        if len(parts) != 3:
            return envelope
        decoded = [_b64_strict(p) for p in parts]
        if any(d is None for d in decoded):
            return envelope
        nonce, tag, ciphertext = decoded
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            return envelope

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            logger.warning("PII envelope failed authentication; returning stored value unchanged")
            return envelope
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            return envelope

    def is_envelope(self, value: str | None) -> bool:
        if not value:
            return False
        parts = value.split(ENVELOPE_SEPARATOR)
        return len(parts) == 3 and all(_b64_strict(p) is not None for p in parts)


def constant_time_equals(a: str | bytes | None, b: str | bytes | None) -> bool:
    if a is None or b is None:
        return False
    if isinstance(a, str):
        a = a.encode("utf-8")
    if isinstance(b, str):
        b = b.encode("utf-8")
    return hmac.compare_digest(a, b)


def random_code(alphabet: str, length: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def _parse_signature_header(header: str) -> tuple[str | None, list[str]]:
    timestamp = None
    signatures: list[str] = []
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value
        elif len(key) > 1 and key[0] == "v" and key[1:].isdigit():
            signatures.append(value)
    return timestamp, signatures


def compute_webhook_signature(raw_body: bytes, timestamp: str | int, secret: str) -> str:
    signed = str(timestamp).encode("ascii") + b"." + raw_body
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_webhook(
    raw_body: bytes | str,
    signature_header: str | None,
    secret: str | None,
    *,
    tolerance: int = WEBHOOK_TOLERANCE_SECONDS,
    now: float | None = None,
) -> bool:
    """
    Check a `t=<unix>,v1=<hex>` signature header against the raw request body.

    Any versioned signature matching HMAC-SHA256(secret, "<t>.<body>") passes,
    provided the timestamp is within `tolerance` seconds of now.
    """
    if not signature_header or not secret:
        return False
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")

    timestamp, signatures = _parse_signature_header(signature_header)
    if timestamp is None or not signatures:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if abs(current - ts) > tolerance:
        return False

    expected = compute_webhook_signature(raw_body, timestamp, secret)
    matched = False
    for candidate in signatures:
        # Compare against every entry so timing does not reveal which one matched.
        if constant_time_equals(expected, candidate):
            matched = True
    return matched


def require_webhook_signature(raw_body, signature_header, secret, **kwargs) -> None:
    if not verify_webhook(raw_body, signature_header, secret, **kwargs):
        raise WebhookSignatureError()


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
