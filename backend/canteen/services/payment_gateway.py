# Overview: Payment gateway collaborators; checkout signature verification.

"""
The gateway signs every successful checkout with
HMAC-SHA256(key_secret, "<gateway_order_id>|<gateway_payment_id>") and the
client hands the hex digest back to us. Verifying it is the only gateway
interaction the backend performs; order creation on the gateway side and
payment fetches are handled outside this service.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Protocol

from flask import current_app

logger = logging.getLogger(__name__)


class SignatureVerifier(Protocol):
    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...


class RazorpaySignatureVerifier:
    """Checkout signature verification against the configured key secret."""

    def __init__(self, key_secret: str):
        self._key_secret = key_secret or ""

    def expected_signature(self, order_id: str, payment_id: str) -> str:
        message = f"{order_id}|{payment_id}".encode("utf-8")
        return hmac.new(self._key_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self._key_secret:
            logger.warning("RAZORPAY_KEY_SECRET is not configured; rejecting gateway signature")
            return False
        if not (order_id and payment_id and signature):
            return False
        return hmac.compare_digest(self.expected_signature(order_id, payment_id), signature)


def default_verifier() -> SignatureVerifier:
    """The app-wide verifier registered by create_app."""
    verifier = current_app.extensions.get("signature_verifier")
    if verifier is None:
        verifier = RazorpaySignatureVerifier(current_app.config.get("RAZORPAY_KEY_SECRET", ""))
        current_app.extensions["signature_verifier"] = verifier
    return verifier
