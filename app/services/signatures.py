"""HMAC signature helpers for gateway callbacks and webhooks.

Two distinct secrets are in play:

* the order (key) secret signs ``"<order_id>|<payment_id>"`` and is checked
  when the browser reports a completed checkout;
* the webhook secret signs the exact raw webhook body.

Both checks use :func:`hmac.compare_digest`.
"""
from __future__ import annotations

import hashlib
import hmac


def compute_order_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Return the hex HMAC-SHA256 the gateway issues for a completed checkout."""

    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def compute_webhook_signature(secret: str, raw_body: bytes) -> str:
    """Return the hex HMAC-SHA256 of a webhook body."""

    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def _matches(expected: str, provided: str) -> bool:
    # Headers arrive latin-1 decoded; non-ASCII input must compare unequal.
    return hmac.compare_digest(expected.encode("ascii"), provided.encode("utf-8", "surrogateescape"))


def verify_order_signature(secret: str | None, order_id: str, payment_id: str, signature: str | None) -> bool:
    if not secret or not signature:
        return False
    expected = compute_order_signature(secret, order_id, payment_id)
    return _matches(expected, signature)


def verify_webhook_signature(secret: str | None, raw_body: bytes, signature: str | None) -> bool:
    if not secret or not signature:
        return False
    expected = compute_webhook_signature(secret, raw_body)
    return _matches(expected, signature)


def secret_fingerprint(secret: str | None) -> str | None:
    """Return a short, non-reversible marker for logging which secret is configured."""

    if not secret:
        return None
    return "sha256:" + hashlib.sha256(secret.encode("utf-8")).hexdigest()[:8]


__all__ = [
    "compute_order_signature",
    "compute_webhook_signature",
    "verify_order_signature",
    "verify_webhook_signature",
    "secret_fingerprint",
]
