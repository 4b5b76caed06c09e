"""
Tests for payment_reconciliation.py

Covers:
- Guarded pending -> terminal transitions (idempotent fulfilment)
- Ownership / amount checks that never mutate state
- Referral payout exactly once
- Toss and Stripe webhooks (signature first, retries acknowledged)
"""

import asyncio
import base64
import hashlib
import hmac
import json
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.auth import CurrentUser
from core.error_responses import ErrorCode
from database import Payment, PaymentStatus, PointTransaction, Profile, Referral, Subscription, store_transaction
from entitlement_ledger import TX_PURCHASE, TX_REFERRAL_COMMISSION, TX_REFERRAL_REWARD, credit_points, get_point_balance
from payment_gateway import ConfirmResult
from payment_reconciliation import (
    FAIL_REDIRECT,
    SUCCESS_REDIRECT,
    PaymentError,
    create_payment,
    detect_provider,
    handle_webhook,
    reconcile_redirect,
)

TOSS_SECRET = "toss-webhook-test-secret"
STRIPE_SECRET = "whsec_testsecret123"

BUYER = CurrentUser(id="buyer-1", email="buyer@example.com")


def _gateway(ok=True, code=None):
    gateway = MagicMock()
    gateway.confirm = AsyncMock(return_value=ConfirmResult(
        ok=ok, payment_key="pk_live_1" if ok else None, method="card" if ok else None, error_code=code,
    ))
    return gateway


def _payment(order_id):
    with store_transaction() as store:
        return store.select_one(Payment, Payment.id == order_id)


def _balance(user_id):
    with store_transaction() as store:
        return get_point_balance(store, user_id)


def _ledger(user_id):
    with store_transaction() as store:
        return store.select(PointTransaction, PointTransaction.user_id == user_id)


def _toss_signed(payload):
    body = json.dumps(payload).encode()
    sig = base64.b64encode(hmac.new(TOSS_SECRET.encode(), body, hashlib.sha256).digest()).decode()
    return body, {"TossPayments-Webhook-Signature": f"v1:{sig}", "Content-Type": "application/json"}


def _stripe_signed(payload, timestamp=1_700_000_000):
    body = json.dumps(payload).encode()
    sig = hmac.new(STRIPE_SECRET.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return body, {"Stripe-Signature": f"t={timestamp},v1={sig}"}


class TestCreatePayment:

    def test_point_package_priced_server_side(self, db):
        created = create_payment(BUYER, "point", "point_basic")
        assert created["amount"] == 10000
        assert created["status"] == "pending"
        assert created["provider"] == "toss"

    def test_usd_uses_minor_units_and_stripe(self, db):
        created = create_payment(BUYER, "point", "point_basic", currency="usd")
        assert created["amount"] == 799
        assert created["provider"] == "stripe"

    def test_unknown_product(self, db):
        with pytest.raises(PaymentError) as exc:
            create_payment(BUYER, "point", "point_mega")
        assert exc.value.code == ErrorCode.UNKNOWN_PRODUCT

    def test_analysis_requires_positive_amount(self, db):
        with pytest.raises(PaymentError) as exc:
            create_payment(BUYER, "analysis", "saju_deep", amount=0)
        assert exc.value.code == ErrorCode.INVALID_AMOUNT
        assert create_payment(BUYER, "analysis", "saju_deep", amount=9900)["amount"] == 9900


class TestRedirectReconciliation:

    def test_point_purchase_credits_once(self, db):
        with store_transaction() as store:
            credit_points(store, BUYER.id, 500, TX_PURCHASE)
        order = create_payment(BUYER, "point", "point_basic")
        gateway = _gateway()

        first = asyncio.run(reconcile_redirect("pk_1", order["id"], 10000, BUYER, gateway=gateway))
        second = asyncio.run(reconcile_redirect("pk_1", order["id"], 10000, BUYER, gateway=gateway))

        assert first.status == "completed"
        assert first.redirect_to == SUCCESS_REDIRECT
        assert second.status == "already_processed"
        assert second.success
        assert gateway.confirm.await_count == 1

        assert _balance(BUYER.id) == 1600
        purchase_rows = [r for r in _ledger(BUYER.id) if r.type == TX_PURCHASE and r.reference_id == order["id"]]
        assert len(purchase_rows) == 1
        assert purchase_rows[0].balance_after == 1600

        row = _payment(order["id"])
        assert row.status == PaymentStatus.COMPLETED
        assert row.payment_key == "pk_live_1"
        assert row.completed_at is not None

    def test_concurrent_redirects_fulfil_once(self, db):
        """A refreshed success page racing the first visit credits points once."""
        order = create_payment(BUYER, "point", "point_basic")

        async def slow_confirm(payment_key, order_id, amount):
            await asyncio.sleep(0.05)
            return ConfirmResult(ok=True, payment_key="pk_live_1", method="card")

        gateway = MagicMock()
        gateway.confirm = AsyncMock(side_effect=slow_confirm)

        async def both():
            return await asyncio.gather(
                reconcile_redirect("pk_1", order["id"], 10000, BUYER, gateway=gateway),
                reconcile_redirect("pk_1", order["id"], 10000, BUYER, gateway=gateway),
            )

        outcomes = asyncio.run(both())

        assert sorted(o.status for o in outcomes) == ["already_processed", "completed"]
        assert _balance(BUYER.id) == 1100
        purchase_rows = [r for r in _ledger(BUYER.id) if r.type == TX_PURCHASE]
        assert len(purchase_rows) == 1

    def test_amount_mismatch_never_mutates(self, db):
        order = create_payment(BUYER, "point", "point_basic")
        gateway = _gateway()

        outcome = asyncio.run(reconcile_redirect("pk_1", order["id"], 100, BUYER, gateway=gateway))

        assert outcome.status == "rejected"
        assert outcome.error_code == ErrorCode.AMOUNT_MISMATCH
        assert outcome.redirect_to == FAIL_REDIRECT.format(code="amount_mismatch")
        gateway.confirm.assert_not_awaited()
        assert _payment(order["id"]).status == PaymentStatus.PENDING
        assert _balance(BUYER.id) == 0

    def test_ownership_mismatch_never_mutates(self, db):
        order = create_payment(BUYER, "point", "point_basic")
        other = CurrentUser(id="someone-else")

        outcome = asyncio.run(reconcile_redirect("pk_1", order["id"], 10000, other, gateway=_gateway()))

        assert outcome.error_code == ErrorCode.OWNERSHIP_MISMATCH
        assert _payment(order["id"]).status == PaymentStatus.PENDING

    @pytest.mark.parametrize("order_id,amount,code", [
        ("not-a-uuid", 10000, ErrorCode.INVALID_ORDER_ID),
        (None, 10000, ErrorCode.INVALID_ORDER_ID),
        ("11111111-1111-1111-1111-111111111111", "abc", ErrorCode.INVALID_AMOUNT),
        ("11111111-1111-1111-1111-111111111111", -5, ErrorCode.INVALID_AMOUNT),
        ("11111111-1111-1111-1111-111111111111", 10000, ErrorCode.PAYMENT_NOT_FOUND),
    ])
    def test_input_rejections(self, db, order_id, amount, code):
        outcome = asyncio.run(reconcile_redirect("pk_1", order_id, amount, BUYER, gateway=_gateway()))
        assert outcome.status == "rejected"
        assert outcome.error_code == code

    def test_gateway_rejection_marks_failed(self, db):
        order = create_payment(BUYER, "point", "point_basic")
        gateway = _gateway(ok=False, code="REJECT_CARD_COMPANY")

        outcome = asyncio.run(reconcile_redirect("pk_1", order["id"], 10000, BUYER, gateway=gateway))

        assert outcome.status == "failed"
        assert outcome.redirect_to == FAIL_REDIRECT.format(code="REJECT_CARD_COMPANY")
        row = _payment(order["id"])
        assert row.status == PaymentStatus.FAILED
        assert row.failure_code == "REJECT_CARD_COMPANY"
        assert _balance(BUYER.id) == 0

        # terminal: a later success redirect does not revive it
        again = asyncio.run(reconcile_redirect("pk_1", order["id"], 10000, BUYER, gateway=_gateway()))
        assert again.error_code == ErrorCode.PAYMENT_NOT_FOUND

    def test_subscription_sets_membership(self, db):
        order = create_payment(BUYER, "subscription", "sub_pro")
        outcome = asyncio.run(reconcile_redirect("pk_1", order["id"], 19900, BUYER, gateway=_gateway()))
        assert outcome.status == "completed"

        with store_transaction() as store:
            profile = store.select_one(Profile, Profile.user_id == BUYER.id)
            sub = store.select_one(Subscription, Subscription.user_id == BUYER.id)
            assert profile.membership_tier == "pro"
            assert profile.membership_expires_at is not None
            assert sub.plan_id == "sub_pro"
            assert sub.payment_id == order["id"]
            assert profile.total_spent == 19900


class TestReferral:

    def _refer(self, rate=20):
        with store_transaction() as store:
            store.insert(Referral(referrer_id="referrer-1", referee_id=BUYER.id, commission_rate=rate))

    def test_first_purchase_pays_once(self, db):
        self._refer()
        first = create_payment(BUYER, "point", "point_basic")
        second = create_payment(BUYER, "point", "point_basic")

        asyncio.run(reconcile_redirect("pk_1", first["id"], 10000, BUYER, gateway=_gateway()))
        asyncio.run(reconcile_redirect("pk_2", second["id"], 10000, BUYER, gateway=_gateway()))

        assert _balance("referrer-1") == 2300
        types = sorted(r.type for r in _ledger("referrer-1"))
        assert types == sorted([TX_REFERRAL_REWARD, TX_REFERRAL_COMMISSION])

        with store_transaction() as store:
            referral = store.select_one(Referral, Referral.referee_id == BUYER.id)
            profile = store.select_one(Profile, Profile.user_id == "referrer-1")
            assert referral.first_purchase_processed is True
            assert referral.commission_paid == 2300
            assert profile.total_referrals == 1
            assert profile.referral_earnings == 2300

    def test_payment_succeeds_without_referral(self, db):
        order = create_payment(BUYER, "point", "point_starter")
        outcome = asyncio.run(reconcile_redirect("pk_1", order["id"], 5000, BUYER, gateway=_gateway()))
        assert outcome.status == "completed"
        assert _balance(BUYER.id) == 500


class TestTossWebhook:

    def test_bad_signature_is_401_and_no_mutation(self, db):
        order = create_payment(BUYER, "point", "point_basic")
        body, _ = _toss_signed({"data": {"orderId": order["id"], "status": "DONE", "totalAmount": 10000}})

        outcome = asyncio.run(handle_webhook(body, {"TossPayments-Webhook-Signature": "v1:forged"}))

        assert outcome.status_code == 401
        assert outcome.error_code == ErrorCode.INVALID_SIGNATURE
        assert _payment(order["id"]).status == PaymentStatus.PENDING

    def test_missing_signature_is_401(self, db):
        outcome = asyncio.run(handle_webhook(b"{}", {}))
        assert outcome.status_code == 401

    def test_done_completes_and_retry_is_acknowledged(self, db):
        order = create_payment(BUYER, "point", "point_basic")
        body, headers = _toss_signed({
            "eventType": "PAYMENT_STATUS_CHANGED",
            "data": {"orderId": order["id"], "status": "DONE", "paymentKey": "pk_w", "totalAmount": 10000},
        })

        first = asyncio.run(handle_webhook(body, headers))
        retry = asyncio.run(handle_webhook(body, headers))

        assert first.action == "completed"
        assert retry.received
        assert retry.action == "already_processed"
        assert _balance(BUYER.id) == 1100

    def test_webhook_then_redirect_credits_once(self, db):
        order = create_payment(BUYER, "point", "point_basic")
        body, headers = _toss_signed({"data": {"orderId": order["id"], "status": "DONE", "totalAmount": 10000}})
        asyncio.run(handle_webhook(body, headers))

        gateway = _gateway()
        outcome = asyncio.run(reconcile_redirect("pk_1", order["id"], 10000, BUYER, gateway=gateway))

        assert outcome.status == "already_processed"
        gateway.confirm.assert_not_awaited()
        assert _balance(BUYER.id) == 1100

    def test_canceled(self, db):
        order = create_payment(BUYER, "point", "point_basic")
        body, headers = _toss_signed({"data": {"orderId": order["id"], "status": "CANCELED"}})
        outcome = asyncio.run(handle_webhook(body, headers))
        assert outcome.action == "canceled"
        assert _payment(order["id"]).status == PaymentStatus.CANCELED

    def test_amount_mismatch_rejected(self, db):
        order = create_payment(BUYER, "point", "point_basic")
        body, headers = _toss_signed({"data": {"orderId": order["id"], "status": "DONE", "totalAmount": 1}})
        outcome = asyncio.run(handle_webhook(body, headers))
        assert outcome.status_code == 400
        assert outcome.error_code == ErrorCode.AMOUNT_MISMATCH
        assert _payment(order["id"]).status == PaymentStatus.PENDING

    def test_unknown_order_is_404(self, db):
        body, headers = _toss_signed({"data": {"orderId": str(uuid.uuid4()), "status": "DONE"}})
        outcome = asyncio.run(handle_webhook(body, headers))
        assert outcome.status_code == 404

    def test_non_terminal_status_ignored(self, db):
        order = create_payment(BUYER, "point", "point_basic")
        body, headers = _toss_signed({"data": {"orderId": order["id"], "status": "IN_PROGRESS"}})
        outcome = asyncio.run(handle_webhook(body, headers))
        assert outcome.action == "ignored"
        assert _payment(order["id"]).status == PaymentStatus.PENDING

    def test_non_object_payload_is_400(self, db):
        body, headers = _toss_signed(["DONE"])
        outcome = asyncio.run(handle_webhook(body, headers))
        assert outcome.status_code == 400
        assert outcome.error_code == ErrorCode.VALIDATION_ERROR


class TestStripeWebhook:

    def test_checkout_completed(self, db):
        order = create_payment(BUYER, "point", "point_basic", currency="usd")
        body, headers = _stripe_signed({
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_1", "amount_total": 799, "metadata": {"order_id": order["id"]}}},
        })

        outcome = asyncio.run(handle_webhook(body, headers, now=1_700_000_010))

        assert outcome.action == "completed"
        assert _balance(BUYER.id) == 1100

    def test_stale_timestamp_rejected(self, db):
        order = create_payment(BUYER, "point", "point_basic", currency="usd")
        body, headers = _stripe_signed({
            "type": "checkout.session.completed",
            "data": {"object": {"amount_total": 799, "metadata": {"order_id": order["id"]}}},
        })
        outcome = asyncio.run(handle_webhook(body, headers, now=1_700_000_000 + 301))
        assert outcome.status_code == 401
        assert _payment(order["id"]).status == PaymentStatus.PENDING

    def test_detect_provider(self):
        assert detect_provider({"Stripe-Signature": "t=1,v1=x"}) == "stripe"
        assert detect_provider({"TossPayments-Webhook-Signature": "x"}) == "toss"
        assert detect_provider({}, provider_hint="stripe") == "stripe"
