"""HMAC-SHA256 signatures used by the payment gateway.

Checkout callbacks are signed over ``"{order_id}|{payment_id}"`` with the key
secret; webhooks are signed over the raw request body with the webhook secret.
Both are hex digests compared in constant time.
"""

import hashlib
import hmac

from internhub.core.exceptions import SignatureVerificationError


def compute_signature(secret: str, message: str | bytes) -> str:
    """Hex HMAC-SHA256 of ``message`` keyed with ``secret``."""
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def compute_checkout_signature(secret: str, order_id: str, payment_id: str) -> str:
    return compute_signature(secret, f"{order_id}|{payment_id}")


def signatures_match(expected: str, provided: str | None) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(expected.encode(), provided.strip().lower().encode())


def verify_checkout_signature(
    secret: str,
    order_id: str,
    payment_id: str,
    signature: str | None,
) -> None:
    """Raise SignatureVerificationError unless the checkout signature matches.

    Args:
        secret: Gateway key secret
        order_id: Gateway order id returned at order creation
        payment_id: Gateway payment id reported by the client
        signature: Hex signature reported by the client
    """
    if not secret:
        raise SignatureVerificationError(
            "Payment gateway secret is not configured", "gateway_not_configured"
        )
    expected = compute_checkout_signature(secret, order_id, payment_id)
    if not signatures_match(expected, signature):
        raise SignatureVerificationError("Payment signature verification failed")


def verify_webhook_signature(secret: str, body: bytes, signature: str | None) -> None:
    """Raise SignatureVerificationError unless the webhook body signature matches."""
    if not secret:
        raise SignatureVerificationError(
            "Webhook secret is not configured", "gateway_not_configured"
        )
    if not signatures_match(compute_signature(secret, body), signature):
        raise SignatureVerificationError("Webhook signature verification failed")
