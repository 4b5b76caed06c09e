"""
HTTP-level tests for the fortune, payment and points routers.

A bare FastAPI app with the three routers is used so the application
lifespan (logging setup, production DB init) does not run.
"""

import base64
import hashlib
import hmac
import json
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.structured_logging import RequestCorrelationMiddleware
from database import store_transaction
from entitlement_ledger import TX_PURCHASE, credit_points
from payment_reconciliation import ReconcileOutcome
from routers import fortune_router, payment_router, points_router

USER = {"X-User-Id": "web-user", "X-User-Email": "web@example.com"}
ADMIN = {"X-User-Id": "admin-user", "X-User-Email": "admin@example.com"}

BIRTH = {"birth_date": "1990-05-15", "birth_hour": 12, "gender": "female"}


@pytest.fixture
def client(db):
    app = FastAPI()
    app.add_middleware(RequestCorrelationMiddleware)
    app.include_router(fortune_router)
    app.include_router(payment_router)
    app.include_router(points_router)
    return TestClient(app)


class TestFortuneRoutes:

    def test_anonymous_analysis_is_blinded(self, client):
        resp = client.post("/fortune/saju/analyze", json=BIRTH)
        assert resp.status_code == 200
        data = resp.json()
        assert data["meta"]["is_blinded"] is True
        assert data["result"]["chart"]["hour"]["heavenly_stem"] == "戊"

    def test_request_id_echoed(self, client):
        resp = client.post("/fortune/saju/analyze", json=BIRTH, headers={"X-Request-ID": "req-test123"})
        assert resp.headers["X-Request-ID"] == "req-test123"

    def test_admin_analysis_unlocked(self, client):
        resp = client.post("/fortune/saju/analyze", json={**BIRTH, "mbti": "infp"}, headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json()["meta"]["access"] == "admin"
        assert resp.json()["meta"]["is_blinded"] is False

    def test_insufficient_points_is_402_with_remediation(self, client):
        for _ in range(3):
            assert client.post("/fortune/saju/analyze", json=BIRTH, headers=USER).status_code == 200

        resp = client.post("/fortune/saju/analyze", json=BIRTH, headers=USER)
        assert resp.status_code == 402
        error = resp.json()["errors"][0]
        assert error["code"] == "INSUFFICIENT_POINTS"
        assert error["required"] == 500
        assert error["shortage"] == 500

    def test_invalid_body_is_422(self, client):
        resp = client.post("/fortune/saju/analyze", json={"birth_date": "1990-05-15", "birth_hour": 24})
        assert resp.status_code == 422

    @pytest.mark.parametrize("mbti", ["ABC", "ABCD", "INFPX"])
    def test_bad_mbti_is_422(self, client, mbti):
        resp = client.post("/fortune/saju/analyze", json={**BIRTH, "mbti": mbti})
        assert resp.status_code == 422

    def test_group_for_admin(self, client):
        body = {
            "members": [
                {"name": "A", "birth_date": "1990-01-26"},
                {"name": "B", "birth_date": "1990-01-28"},
            ],
            "relation_type": "team",
        }
        resp = client.post("/fortune/saju/group", json=body, headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json()["result"]["overall_harmony"] == 88

    def test_group_too_small(self, client):
        body = {"members": [{"name": "A", "birth_date": "1990-01-26"}]}
        resp = client.post("/fortune/saju/group", json=body, headers=ADMIN)
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "members"

    def test_compatibility_without_voucher(self, client):
        body = {
            "person1": {"name": "A", "birth_date": "1990-01-26"},
            "person2": {"name": "B", "birth_date": "1990-01-28"},
        }
        resp = client.post("/fortune/saju/compatibility", json=body, headers=USER)
        assert resp.status_code == 402
        assert resp.json()["errors"][0]["code"] == "NO_VOUCHER"

    def test_unblind_flow(self, client):
        analysis_id = client.post("/fortune/saju/analyze", json=BIRTH, headers=USER).json()["meta"]["analysis_id"]
        with store_transaction() as store:
            credit_points(store, "web-user", 500, TX_PURCHASE)

        resp = client.post(f"/fortune/analyses/{analysis_id}/unblind", headers=USER)
        assert resp.status_code == 200
        assert resp.json()["meta"]["point_balance"] == 0

        again = client.post(f"/fortune/analyses/{analysis_id}/unblind", headers=USER)
        assert again.status_code == 409

    def test_unblind_requires_login(self, client):
        assert client.post("/fortune/analyses/x/unblind").status_code == 401

    def test_free_status(self, client):
        resp = client.get("/fortune/free-status", headers=USER)
        assert resp.json() == {"can_use": True, "remaining": 3, "limit": 3}


class TestPointsRoutes:

    def test_signup_bonus_once(self, client):
        first = client.post("/points/signup-bonus", headers=USER).json()
        second = client.post("/points/signup-bonus", headers=USER).json()
        assert first["profile"]["points"] == 500
        assert second["profile"]["points"] == 500

        history = client.get("/points/history", headers=USER).json()["transactions"]
        assert len(history) == 1
        assert history[0]["type"] == "signup_bonus"

    def test_balance(self, client):
        resp = client.get("/points/balance", headers=USER)
        assert resp.json()["points"] == 0
        assert resp.json()["free_analysis"]["remaining"] == 3

    def test_history_limit_validated(self, client):
        assert client.get("/points/history?limit=0", headers=USER).status_code == 422


class TestPaymentRoutes:

    def test_create_requires_login(self, client):
        assert client.post("/payment/create", json={"type": "point", "reference_id": "point_basic"}).status_code == 401

    def test_create_by_locale(self, client):
        resp = client.post(
            "/payment/create",
            json={"type": "point", "reference_id": "point_basic", "locale": "ja"},
            headers=USER,
        )
        assert resp.status_code == 200
        payment = resp.json()["payment"]
        assert payment["currency"] == "jpy"
        assert payment["amount"] == 1100
        assert payment["provider"] == "stripe"
        assert resp.json()["client_key"] is None

    def test_create_defaults_to_korean_checkout(self, client):
        resp = client.post("/payment/create", json={"type": "point", "reference_id": "point_basic"}, headers=USER)
        assert resp.status_code == 200
        payment = resp.json()["payment"]
        assert payment["currency"] == "krw"
        assert payment["amount"] == 10000
        assert payment["provider"] == "toss"

    def test_create_unknown_product(self, client):
        resp = client.post("/payment/create", json={"type": "point", "reference_id": "nope"}, headers=USER)
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["code"] == "unknown_product"

    def test_success_missing_params_redirects_to_fail(self, client):
        resp = client.get("/payment/toss/success", follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"] == "https://fortune.test/payment/fail?error=missing_params"

    def test_success_redirect_target(self, client):
        outcome = ReconcileOutcome("completed", "order-1")
        with patch("routers.payment.reconcile_redirect", new=AsyncMock(return_value=outcome)) as mock:
            resp = client.get(
                "/payment/toss/success?paymentKey=pk&orderId=order-1&amount=10000",
                headers=USER,
                follow_redirects=False,
            )
        assert resp.status_code == 303
        assert resp.headers["location"] == "https://fortune.test/my/dashboard?payment=success"
        assert mock.await_args.kwargs["user"].id == "web-user"

    def test_success_json_mode(self, client):
        resp = client.get("/payment/toss/success?paymentKey=pk&orderId=bad&amount=10&redirect=false")
        data = resp.json()
        assert data["success"] is False
        assert data["error"] == "invalid_order_id"
        assert data["redirect_to"].endswith("/payment/fail?error=invalid_order_id")

    def test_webhook_completes_payment(self, client):
        order = client.post(
            "/payment/create", json={"type": "point", "reference_id": "point_basic"}, headers=USER,
        ).json()["order_id"]
        body = json.dumps({"data": {"orderId": order, "status": "DONE", "totalAmount": 10000}}).encode()
        sig = base64.b64encode(hmac.new(b"toss-webhook-test-secret", body, hashlib.sha256).digest()).decode()

        resp = client.post("/payment/webhook", content=body, headers={"TossPayments-Webhook-Signature": sig})
        assert resp.status_code == 200
        assert resp.json() == {"received": True, "action": "completed"}
        assert client.get("/points/balance", headers=USER).json()["points"] == 1100

    def test_webhook_bad_signature(self, client):
        resp = client.post("/payment/webhook", content=b"{}", headers={"TossPayments-Webhook-Signature": "nope"})
        assert resp.status_code == 401
        assert resp.json() == {"received": False, "error": "invalid_signature"}

    def test_packages(self, client):
        data = client.get("/payment/packages?locale=en").json()
        assert data["currency"] == "usd"
        assert data["points"][1]["price"] == 7.99

    def test_packages_default_locale(self, client):
        assert client.get("/payment/packages").json()["currency"] == "krw"
