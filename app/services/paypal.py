"""PayPal webhook authentication through the verify-webhook-signature API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

TRANSMISSION_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


def get_access_token(client: httpx.Client | None = None) -> str:
    """Fetch an OAuth access token with the client-credentials grant.

    Raises:
        httpx.HTTPStatusError: On non-2xx response from PayPal.
        ValueError: If credentials are not configured.
    """
    settings.validate_paypal_config()
    http = client or httpx
    resp = http.post(
        f"{settings.paypal_api_base()}/v1/oauth2/token",
        data={"grant_type": "client_credentials"},
        auth=(settings.paypal_client_id, settings.paypal_client_secret),
        timeout=30,
    )
    resp.raise_for_status()
    return resp.json()["access_token"]


def verify_webhook_signature(
    event: dict[str, Any],
    headers: dict[str, str],
    client: httpx.Client | None = None,
) -> bool:
    """Ask PayPal whether the delivery with ``headers`` produced ``event``.

    Returns:
        True if PayPal answers ``SUCCESS``; False on a missing header,
        missing configuration or any HTTP failure.
    """
    lowered = {key.lower(): value for key, value in headers.items()}
    body: dict[str, Any] = {}
    for field, header in TRANSMISSION_HEADERS.items():
        value = lowered.get(header)
        if not value:
            logger.warning("PayPal webhook missing %s header", header)
            return False
        body[field] = value
    body["webhook_id"] = settings.paypal_webhook_id
    body["webhook_event"] = event

    http = client or httpx
    try:
        token = get_access_token(client)
        resp = http.post(
            f"{settings.paypal_api_base()}/v1/notifications/verify-webhook-signature",
            json=body,
            headers={"Authorization": f"Bearer {token}"},
            timeout=30,
        )
        resp.raise_for_status()
    except ValueError as exc:
        logger.error("PayPal webhook verification not configured: %s", exc)
        return False
    except httpx.HTTPError as exc:
        logger.error("PayPal webhook verification failed: %s", exc)
        return False
    return resp.json().get("verification_status") == "SUCCESS"
