"""Tests for provider webhook authentication."""

import json

import httpx
import pytest

from app.config import settings
from app.services import paypal, stripe

BODY = b'{"id":"evt_1","type":"payment_intent.succeeded"}'
SECRET = "whsec_unit"
NOW = 1_760_000_000


def _header(*signatures, timestamp=NOW):
    parts = [f"t={timestamp}"] + [f"v1={sig}" for sig in signatures]
    return ",".join(parts)


# =============================================================================
# Stripe
# =============================================================================


class TestStripeSignature:
    def test_valid_signature(self):
        signature = stripe.compute_signature(BODY, NOW, SECRET)

        assert stripe.verify_webhook_signature(BODY, _header(signature), secret=SECRET, now=NOW)

    def test_tampered_body_is_rejected(self):
        signature = stripe.compute_signature(BODY, NOW, SECRET)

        assert not stripe.verify_webhook_signature(
            BODY + b" ", _header(signature), secret=SECRET, now=NOW
        )

    def test_expired_timestamp_is_rejected(self):
        signature = stripe.compute_signature(BODY, NOW, SECRET)

        assert not stripe.verify_webhook_signature(
            BODY, _header(signature), secret=SECRET, tolerance=300, now=NOW + 301
        )

    def test_zero_tolerance_disables_age_check(self):
        signature = stripe.compute_signature(BODY, NOW, SECRET)

        assert stripe.verify_webhook_signature(
            BODY, _header(signature), secret=SECRET, tolerance=0, now=NOW + 86400
        )

    def test_any_matching_v1_signature_is_accepted(self):
        signature = stripe.compute_signature(BODY, NOW, SECRET)

        assert stripe.verify_webhook_signature(
            BODY, _header("deadbeef", signature), secret=SECRET, now=NOW
        )

    @pytest.mark.parametrize(
        "header",
        [None, "", "v1=abc", "t=notanumber,v1=abc", f"t={NOW}"],
    )
    def test_incomplete_header_is_rejected(self, header):
        assert not stripe.verify_webhook_signature(BODY, header, secret=SECRET, now=NOW)

    def test_missing_secret_is_rejected(self, monkeypatch, caplog):
        monkeypatch.setattr(
            "app.services.stripe.settings",
            settings.model_copy(update={"stripe_webhook_secret": None}),
        )
        signature = stripe.compute_signature(BODY, NOW, "")

        assert not stripe.verify_webhook_signature(BODY, _header(signature), now=NOW)
        assert "STRIPE_WEBHOOK_SECRET" in caplog.text


# =============================================================================
# PayPal
# =============================================================================

PAYPAL_HEADERS = {
    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    "PAYPAL-CERT-URL": "https://api.paypal.com/cert.pem",
    "PAYPAL-TRANSMISSION-ID": "tx-1",
    "PAYPAL-TRANSMISSION-SIG": "sig",
    "PAYPAL-TRANSMISSION-TIME": "2026-10-01T10:00:00Z",
}


@pytest.fixture()
def paypal_settings(monkeypatch):
    monkeypatch.setattr(
        "app.services.paypal.settings",
        settings.model_copy(
            update={
                "paypal_client_id": "client",
                "paypal_client_secret": "secret",
                "paypal_webhook_id": "WH-ID",
                "paypal_mode": "sandbox",
            }
        ),
    )


def _paypal_client(verification_status="SUCCESS", verify_status_code=200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "token-1"})
        if seen is not None:
            seen.append(request)
        return httpx.Response(verify_status_code, json={"verification_status": verification_status})

    return httpx.Client(transport=httpx.MockTransport(handler))


class TestPayPalVerification:
    def test_success(self, paypal_settings):
        seen = []
        event = {"id": "WH-1", "event_type": "PAYMENT.CAPTURE.COMPLETED"}

        result = paypal.verify_webhook_signature(event, PAYPAL_HEADERS, client=_paypal_client(seen=seen))

        assert result is True
        request = seen[0]
        assert request.url.host == "api-m.sandbox.paypal.com"
        assert request.headers["Authorization"] == "Bearer token-1"
        body = json.loads(request.content)
        assert body["webhook_id"] == "WH-ID"
        assert body["transmission_id"] == "tx-1"
        assert body["webhook_event"] == event

    def test_failure_status(self, paypal_settings):
        client = _paypal_client(verification_status="FAILURE")

        assert paypal.verify_webhook_signature({}, PAYPAL_HEADERS, client=client) is False

    def test_http_error_is_rejected(self, paypal_settings):
        client = _paypal_client(verify_status_code=500)

        assert paypal.verify_webhook_signature({}, PAYPAL_HEADERS, client=client) is False

    def test_missing_header_is_rejected_without_calls(self, paypal_settings):
        seen = []
        headers = dict(PAYPAL_HEADERS)
        headers.pop("PAYPAL-TRANSMISSION-SIG")

        assert paypal.verify_webhook_signature({}, headers, client=_paypal_client(seen=seen)) is False
        assert seen == []

    def test_missing_credentials_is_rejected(self, monkeypatch):
        monkeypatch.setattr(
            "app.services.paypal.settings",
            settings.model_copy(update={"paypal_client_id": None}),
        )

        assert paypal.verify_webhook_signature({}, PAYPAL_HEADERS, client=_paypal_client()) is False

    def test_live_mode_uses_live_api(self):
        live = settings.model_copy(update={"paypal_mode": "live"})

        assert live.paypal_api_base() == "https://api-m.paypal.com"
