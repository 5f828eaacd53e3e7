"""HMAC signature validation for vendor callbacks.

Callbacks are authenticated only when a signing secret is configured; the
sender puts the hex HMAC-SHA256 of the raw body in X-Callback-Signature.
"""

import hashlib
import hmac

SIGNATURE_HEADER = "X-Callback-Signature"


def compute_callback_signature(raw_body: bytes, signing_secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(
        key=signing_secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha256
    ).hexdigest()


def validate_callback_signature(raw_body: bytes, signature: str, signing_secret: str) -> bool:
    """Validate a callback signature using HMAC-SHA256.

    Args:
        raw_body: Raw request body bytes, exactly as received
        signature: Hex signature from the X-Callback-Signature header
        signing_secret: Shared secret configured for callbacks

    Returns:
        True if the signature matches, False otherwise

    Security:
        Uses hmac.compare_digest() for constant-time comparison.
    """
    expected = compute_callback_signature(raw_body, signing_secret)
    return hmac.compare_digest(expected, signature.strip().lower())
