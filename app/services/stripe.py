"""Stripe webhook authentication."""

from __future__ import annotations

import hashlib
import hmac
import logging
import time

from app.config import settings

logger = logging.getLogger(__name__)

SIGNATURE_SCHEME = "v1"


def _parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)
    return timestamp, signatures


def compute_signature(body: bytes, timestamp: int, secret: str) -> str:
    signed_payload = f"{timestamp}.".encode() + body
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    body: bytes,
    signature_header: str | None,
    secret: str | None = None,
    tolerance: int | None = None,
    now: float | None = None,
) -> bool:
    """Verify a ``Stripe-Signature`` header (``t=...,v1=...``).

    Args:
        body: Raw request body bytes.
        signature_header: Value of the Stripe-Signature header.
        secret: Endpoint signing secret; defaults to STRIPE_WEBHOOK_SECRET.
        tolerance: Maximum age of the signed timestamp in seconds.
        now: Current unix time, for tests.

    Returns:
        True if one of the v1 signatures matches and the timestamp is fresh.
    """
    secret = secret or settings.stripe_webhook_secret
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured")
        return False
    if not signature_header:
        return False

    timestamp, signatures = _parse_signature_header(signature_header)
    if timestamp is None or not signatures:
        return False

    tolerance = settings.stripe_webhook_tolerance_seconds if tolerance is None else tolerance
    current = time.time() if now is None else now
    if tolerance and abs(current - timestamp) > tolerance:
        logger.warning("Stripe webhook timestamp %s outside tolerance", timestamp)
        return False

    expected = compute_signature(body, timestamp, secret)
    return any(hmac.compare_digest(expected, candidate) for candidate in signatures)
