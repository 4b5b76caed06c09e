"""
Tests for core/log_sanitizer.py

Ensures gateway secrets, payment keys and webhook signatures never reach logs.
"""

import os
from unittest.mock import patch

from core.log_sanitizer import (
    REDACTED,
    safe_log_request,
    sanitize,
    sanitize_dict,
    sanitize_headers,
    sanitize_url,
)


class TestSanitizeHeaders:
    """Tests for header sanitization."""

    def test_redacts_webhook_signatures(self):
        """Toss and Stripe signature headers should be redacted."""
        headers = {
            "TossPayments-Webhook-Signature": "v1:abc",
            "Stripe-Signature": "t=1,v1=abc",
            "Content-Type": "application/json",
        }
        result = sanitize_headers(headers)
        assert result["TossPayments-Webhook-Signature"] == REDACTED
        assert result["Stripe-Signature"] == REDACTED
        assert result["Content-Type"] == "application/json"

    def test_redacts_authorization_and_idempotency(self):
        """Basic auth for the confirm call and its idempotency key should be redacted."""
        headers = {"Authorization": "Basic dGVzdDo=", "Idempotency-Key": "order-1"}
        result = sanitize_headers(headers)
        assert result["Authorization"] == REDACTED
        assert result["Idempotency-Key"] == REDACTED

    def test_user_headers_pass_through(self):
        """Identity headers are not secrets."""
        result = sanitize_headers({"X-User-Id": "u1"})
        assert result["X-User-Id"] == "u1"

    def test_empty_headers(self):
        """Empty headers should return empty dict."""
        assert sanitize_headers({}) == {}
        assert sanitize_headers(None) == {}


class TestSanitizeDict:
    """Tests for payload sanitization."""

    def test_redacts_payment_key(self):
        """paymentKey in a confirm payload should be redacted."""
        payload = {"paymentKey": "pk_abc", "orderId": "o1", "amount": 10000}
        result = sanitize_dict(payload)
        assert result["paymentKey"] == REDACTED
        assert result["orderId"] == "o1"
        assert result["amount"] == 10000

    def test_redacts_nested(self):
        """Nested dictionaries and lists of dicts should be sanitized."""
        data = {"data": {"secret": "s", "status": "DONE"}, "items": [{"token": "t"}, 3]}
        result = sanitize_dict(data)
        assert result["data"]["secret"] == REDACTED
        assert result["data"]["status"] == "DONE"
        assert result["items"][0]["token"] == REDACTED
        assert result["items"][1] == 3

    def test_redacts_env_secret_values(self):
        """A value equal to a configured secret is redacted wherever it appears."""
        with patch.dict(os.environ, {"TOSS_SECRET_KEY": "super-secret-value"}):
            result = sanitize_dict({"note": "super-secret-value"})
        assert result["note"] == REDACTED


class TestSanitizeUrl:
    """Tests for URL query sanitization."""

    def test_redacts_payment_key_param(self):
        """The success redirect carries paymentKey in the query string."""
        url = "https://app.test/payment/toss/success?paymentKey=pk_1&orderId=o1&amount=10000"
        result = sanitize_url(url)
        assert "pk_1" not in result
        assert "orderId=o1" in result
        assert "amount=10000" in result

    def test_empty_url(self):
        assert sanitize_url("") == ""


class TestSanitizeText:
    """Tests for free-text sanitization."""

    def test_redacts_toss_keys(self):
        assert "test_sk_" not in sanitize("key=test_sk_abc123XYZ")
        assert "live_gsk_" not in sanitize("using live_gsk_zzz999")

    def test_redacts_stripe_secret_and_signature(self):
        text = "secret whsec_abc123 header t=1,v1=0123456789abcdef0123"
        result = sanitize(text)
        assert "whsec_abc123" not in result
        assert "0123456789abcdef0123" not in result

    def test_redacts_auth_schemes(self):
        assert "dGVzdDo=" not in sanitize("Authorization: Basic dGVzdDo=")
        assert "abc.def" not in sanitize("Bearer abc.def")

    def test_plain_text_untouched(self):
        assert sanitize("Payment completed for order o1") == "Payment completed for order o1"
        assert sanitize("") == ""


class TestSafeLogRequest:
    """Tests for the outbound request log line."""

    def test_confirm_request(self):
        line = safe_log_request(
            "POST",
            "https://api.tosspayments.com/v1/payments/confirm",
            {"paymentKey": "pk_1", "orderId": "o1", "amount": 10000},
            {"Authorization": "Basic dGVzdDo="},
        )
        assert line.startswith("POST https://api.tosspayments.com/v1/payments/confirm")
        assert "pk_1" not in line
        assert "(auth headers present)" in line
