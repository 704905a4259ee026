# src/api/webhook_verify.py
#
#   Verifies authenticity of billing webhooks using HMAC-SHA256.
#   Header format: "t=<unix timestamp>,v1=<hex digest>[,v1=<hex digest>...]"
#   The signed message is "<timestamp>." followed by the raw request body.

import hmac
import hashlib
import logging
import time
from typing import Optional

from config.settings import BILLING_SIGNATURE_TOLERANCE

logger = logging.getLogger(__name__)


def parse_signature_header(signature_header: str) -> dict:
    """
    Split a signature header into its timestamp and v1 signatures.

    Returns:
        dict with 'timestamp' (int or None) and 'signatures' (list of str)
    """
    timestamp = None
    signatures = []
    for part in (signature_header or "").split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                timestamp = None
        elif key == "v1" and value:
            signatures.append(value)
    return {"timestamp": timestamp, "signatures": signatures}


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=signed,
        digestmod=hashlib.sha256
    ).hexdigest()


def verify_billing_signature(payload: bytes, signature_header: str, secret: Optional[str],
                             tolerance: int = None, now: float = None) -> bool:
    """
    Verify that a webhook request came from the payment processor.

    Args:
        payload: Raw request body bytes
        signature_header: Value of the Billing-Signature header
        secret: Shared webhook signing secret
        tolerance: Maximum age of the timestamp in seconds
        now: Current unix time (tests pin it)

    Returns:
        True if signature is valid, False otherwise
    """
    if not secret:
        # No secret configured (local/test mode), skip verification
        logger.warning("BILLING_WEBHOOK_SECRET not set; skipping webhook signature verification")
        return True

    if not signature_header:
        return False

    parsed = parse_signature_header(signature_header)
    if parsed["timestamp"] is None or not parsed["signatures"]:
        return False

    tolerance = BILLING_SIGNATURE_TOLERANCE if tolerance is None else tolerance
    now = time.time() if now is None else now
    if abs(now - parsed["timestamp"]) > tolerance:
        logger.warning(f"Webhook timestamp {parsed['timestamp']} outside tolerance of {tolerance}s")
        return False

    expected = compute_signature(payload, parsed["timestamp"], secret)

    # Constant-time comparison against every v1 signature (secret rotation)
    return any(hmac.compare_digest(expected, candidate) for candidate in parsed["signatures"])
