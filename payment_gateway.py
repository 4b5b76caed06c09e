"""
payment_gateway.py - Toss confirm client and webhook signature checks

Responsibilities:
- Confirm a Toss payment with consistent timeout/retry
- Verify Toss-style (base64 HMAC-SHA256) webhook signatures
- Verify Stripe-style (t=...,v1=...) signed headers with a replay window

Only timeouts, transport errors and 5xx are retried; a 4xx from the
gateway is a definitive rejection.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from core.invariants import WEBHOOK_TOLERANCE_SECONDS
from core.log_sanitizer import safe_log_request, sanitize
from env_config import Config

logger = logging.getLogger(__name__)

TOSS_CONFIRM_PATH = "/v1/payments/confirm"


@dataclass(frozen=True)
class ConfirmResult:
    ok: bool
    payment_key: Optional[str] = None
    method: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class TossGateway:
    """
    Server-side confirm step for Toss Payments.

    Usage:
        gateway = TossGateway(secret_key=Config.TOSS_SECRET_KEY)
        result = await gateway.confirm(payment_key, order_id, amount)
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 10.0,
        retries: int = 2,
        backoff_s: float = 0.5,
    ):
        self.secret_key = secret_key if secret_key is not None else (Config.TOSS_SECRET_KEY or "")
        self.base_url = (base_url or Config.TOSS_API_BASE).rstrip("/")
        self.client = client
        self.timeout_s = timeout_s
        self.retries = retries
        self.backoff_s = backoff_s

    def _headers(self, order_id: str) -> Dict[str, str]:
        token = base64.b64encode(f"{self.secret_key}:".encode()).decode()
        return {
            "Authorization": f"Basic {token}",
            "Content-Type": "application/json",
            "Idempotency-Key": order_id,
        }

    async def _post(self, url: str, payload: Dict[str, object], headers: Dict[str, str]) -> httpx.Response:
        if self.client is None:
            async with httpx.AsyncClient(timeout=self.timeout_s) as local_client:
                return await local_client.post(url, json=payload, headers=headers)
        return await self.client.post(url, json=payload, headers=headers, timeout=self.timeout_s)

    async def confirm(self, payment_key: str, order_id: str, amount: int) -> ConfirmResult:
        """
        POST /v1/payments/confirm.

        Returns:
            ConfirmResult; ok=False carries the gateway's error code, or
            "confirmation_failed" after retries are exhausted
        """
        url = f"{self.base_url}{TOSS_CONFIRM_PATH}"
        payload = {"paymentKey": payment_key, "orderId": order_id, "amount": amount}
        headers = self._headers(order_id)
        logger.debug("Toss confirm %s", safe_log_request("POST", url, payload, headers))

        attempt = 0
        last_error: Optional[str] = None

        while attempt <= self.retries:
            attempt += 1
            try:
                resp = await self._post(url, payload, headers)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = type(e).__name__
                logger.warning("Toss confirm attempt %d failed: %s", attempt, last_error)
            else:
                if resp.status_code < 500:
                    return self._parse(resp, payment_key)
                last_error = f"HTTP_{resp.status_code}"
                logger.warning("Toss confirm attempt %d got %s", attempt, last_error)

            if attempt <= self.retries:
                await asyncio.sleep(self.backoff_s * attempt)

        logger.error("Toss confirm gave up for order %s: %s", order_id, last_error)
        return ConfirmResult(ok=False, error_code="confirmation_failed", error_message=last_error)

    @staticmethod
    def _parse(resp: httpx.Response, payment_key: str) -> ConfirmResult:
        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code == 200:
            return ConfirmResult(
                ok=True,
                payment_key=body.get("paymentKey", payment_key),
                method=body.get("method"),
            )

        code = body.get("code", f"HTTP_{resp.status_code}")
        message = body.get("message")
        logger.warning("Toss confirm rejected: %s %s", code, sanitize(message or ""))
        return ConfirmResult(ok=False, error_code=code, error_message=message)


# =============================================================================
# WEBHOOK SIGNATURES
# =============================================================================

def _hmac_sha256(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode(), message, hashlib.sha256).digest()


def verify_hmac_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    base64(HMAC-SHA256(secret, raw_body)); an optional "v1:" prefix is stripped.

    A missing secret or signature never verifies.
    """
    if not secret or not signature:
        return False
    provided = signature.strip()
    if provided.startswith("v1:"):
        provided = provided[len("v1:"):]
    expected = base64.b64encode(_hmac_sha256(secret, raw_body)).decode()
    return hmac.compare_digest(expected.encode(), provided.encode())


def parse_stripe_header(header: str) -> Dict[str, list]:
    parts: Dict[str, list] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            parts.setdefault(key, []).append(value)
    return parts


def verify_stripe_signature(
    raw_body: bytes,
    header: Optional[str],
    secret: Optional[str],
    now: Optional[float] = None,
    tolerance: int = WEBHOOK_TOLERANCE_SECONDS,
) -> bool:
    """
    Stripe-Signature: t=<unix>,v1=<hex hmac of "t.body">.

    Rejects timestamps outside `tolerance` seconds of `now`.
    """
    if not secret or not header:
        return False

    parts = parse_stripe_header(header)
    try:
        timestamp = int(parts.get("t", [""])[0])
    except ValueError:
        return False

    now = time.time() if now is None else now
    if abs(now - timestamp) > tolerance:
        return False

    signed = f"{timestamp}.".encode() + raw_body
    expected = _hmac_sha256(secret, signed).hex()
    return any(hmac.compare_digest(expected.encode(), c.encode()) for c in parts.get("v1", []))
