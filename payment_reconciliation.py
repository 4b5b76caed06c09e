"""
PAYMENT_RECONCILIATION.PY - Payment state machine and idempotent fulfillment

    pending -> completed | failed | canceled | expired   (all terminal)

Two entry points reach the same guarded transition:

    reconcile_redirect()  user returns from the gateway with paymentKey/orderId/amount
    handle_webhook()      gateway posts a status change (Toss or Stripe)

The transition is `UPDATE payments ... WHERE id = :id AND status = 'pending'`.
Only the caller whose UPDATE hits a row fulfils, and fulfilment runs in
the same transaction, so duplicate confirmations (webhook retries, a
refreshed success page) are harmless no-ops reported as already processed.

Referral payout runs afterwards in its own transaction, guarded on
first_purchase_processed = false. It is non-fatal: a payout failure never
fails the payment. The spend counter is best-effort.

Store work runs in worker threads (asyncio.to_thread) so the event loop
only waits on the gateway.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Dict, Mapping, Optional
from urllib.parse import quote

from sqlalchemy.exc import SQLAlchemyError

from core.auth import CurrentUser
from core.error_responses import ErrorCode
from core.invariants import (
    PAYMENT_TYPES,
    REFERRAL_REWARD_POINTS,
    SUBSCRIPTION_PERIOD_MONTHS,
    validate_payment_transition,
)
from core.structured_logging import log_info, log_suspicious, log_warning
from core.time_kst import add_months, utc_now
from database import (
    Payment,
    PaymentStatus,
    Profile,
    Referral,
    ReferralStatus,
    RelationalStore,
    StoreError,
    Subscription,
    store_transaction,
)
from entitlement_ledger import (
    TX_PURCHASE,
    TX_REFERRAL_COMMISSION,
    TX_REFERRAL_REWARD,
    credit_points,
)
from env_config import get_env
from payment_gateway import TossGateway, verify_hmac_signature, verify_stripe_signature
from pricing import (
    ADDON_COSTS,
    ANALYSIS_COSTS,
    SUPPORTED_CURRENCIES,
    UnknownProductError,
    get_point_package,
    membership_tier_for,
    provider_for_currency,
    resolve_product,
)

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], ContextManager[RelationalStore]]

SUCCESS_REDIRECT = "/my/dashboard?payment=success"
FAIL_REDIRECT = "/payment/fail?error={code}"

# Toss webhook status -> terminal payment status
TOSS_TERMINAL_STATUSES = {
    "DONE": PaymentStatus.COMPLETED,
    "CANCELED": PaymentStatus.CANCELED,
    "ABORTED": PaymentStatus.CANCELED,
    "EXPIRED": PaymentStatus.EXPIRED,
}

STRIPE_COMPLETED_EVENTS = ("checkout.session.completed", "payment_intent.succeeded")
STRIPE_FAILED_EVENTS = ("payment_intent.payment_failed", "checkout.session.async_payment_failed")


class PaymentError(Exception):
    """Rejected before any state change (validation or security)."""

    def __init__(self, code: str, message: str, status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


@dataclass
class ReconcileOutcome:
    """
    status: completed | already_processed | failed | rejected
    """
    status: str
    payment_id: Optional[str] = None
    error_code: Optional[str] = None
    payment_type: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status in ("completed", "already_processed")

    @property
    def redirect_to(self) -> str:
        if self.success:
            return SUCCESS_REDIRECT
        return FAIL_REDIRECT.format(code=quote(self.error_code or ErrorCode.CONFIRMATION_FAILED))


@dataclass
class WebhookOutcome:
    received: bool
    status_code: int = 200
    action: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"received": self.received}
        if self.action:
            body["action"] = self.action
        if self.error_code:
            body["error"] = self.error_code
        return body


@dataclass(frozen=True)
class _PendingPayment:
    """Snapshot of a pending row read before the gateway call."""
    id: str
    user_id: str
    type: str
    reference_id: str
    amount: int


# =============================================================================
# CREATE
# =============================================================================

def create_payment(
    user: CurrentUser,
    payment_type: str,
    reference_id: str,
    currency: str = "krw",
    amount: Optional[int] = None,
    store_factory: StoreFactory = store_transaction,
) -> Dict[str, Any]:
    """
    Insert a pending payment for checkout.

    Catalog products (point/subscription/qr) are priced server-side; analysis
    and addon payments carry a caller amount that must be positive.

    Raises:
        PaymentError: unknown product or non-positive amount
    """
    currency = (currency or "krw").lower()
    if payment_type not in PAYMENT_TYPES or currency not in SUPPORTED_CURRENCIES:
        raise PaymentError(ErrorCode.UNKNOWN_PRODUCT, f"Unknown product {payment_type}:{reference_id}")

    if payment_type in ("analysis", "addon"):
        known = ANALYSIS_COSTS if payment_type == "analysis" else ADDON_COSTS
        if reference_id not in known:
            raise PaymentError(ErrorCode.UNKNOWN_PRODUCT, f"Unknown product {payment_type}:{reference_id}")
        if amount is None or amount <= 0:
            raise PaymentError(ErrorCode.INVALID_AMOUNT, "Amount must be positive")
    else:
        try:
            amount = resolve_product(payment_type, reference_id, currency)
        except UnknownProductError as e:
            raise PaymentError(ErrorCode.UNKNOWN_PRODUCT, f"Unknown product {e}") from e

    with store_factory() as store:
        payment = store.insert(Payment(
            user_id=user.id,
            type=payment_type,
            reference_id=reference_id,
            amount=amount,
            currency=currency,
            provider=provider_for_currency(currency),
            status=PaymentStatus.PENDING,
        ))
        created = payment.to_dict()

    log_info(logger, "Payment created", order_id=created["id"], user_id=user.id,
             payment_type=payment_type, amount=amount)
    return created


# =============================================================================
# GUARDED TRANSITIONS & FULFILMENT
# =============================================================================

def _load_pending(store: RelationalStore, order_id: str) -> Optional[_PendingPayment]:
    row = store.select_one(Payment, Payment.id == order_id, Payment.status == PaymentStatus.PENDING)
    if row is None:
        return None
    return _PendingPayment(row.id, row.user_id, row.type, row.reference_id, row.amount)


def _is_completed(store: RelationalStore, order_id: str) -> bool:
    return store.select_one(Payment, Payment.id == order_id, Payment.status == PaymentStatus.COMPLETED) is not None


def _transition(store: RelationalStore, order_id: str, new_status: PaymentStatus, **patch: Any) -> bool:
    """pending -> new_status; False when the row is no longer pending."""
    valid, reason = validate_payment_transition(PaymentStatus.PENDING.value, new_status.value)
    if not valid:
        raise ValueError(reason)
    patch["status"] = new_status
    if new_status == PaymentStatus.COMPLETED:
        patch.setdefault("completed_at", utc_now())
    rows = store.update(
        Payment, patch,
        Payment.id == order_id,
        Payment.status == PaymentStatus.PENDING,
    )
    return bool(rows)


def fulfil(store: RelationalStore, payment: _PendingPayment) -> None:
    """Type-specific side effect; runs once, inside the completing transaction."""
    if payment.type == "point":
        package = get_point_package(payment.reference_id)
        if package is None:
            raise UnknownProductError(payment.reference_id)
        credit_points(
            store, payment.user_id, package.total_points, TX_PURCHASE,
            description=f"포인트 충전 ({package.id})",
            reference_id=payment.id,
        )
    elif payment.type in ("subscription", "qr"):
        start = utc_now()
        end = add_months(start, SUBSCRIPTION_PERIOD_MONTHS)
        store.upsert(Subscription, {
            "user_id": payment.user_id,
            "plan_id": payment.reference_id,
            "status": "active",
            "payment_id": payment.id,
            "current_period_start": start,
            "current_period_end": end,
        }, conflict_key="user_id")
        store.insert_ignore(Profile, {"user_id": payment.user_id, "points": 0}, ["user_id"])
        store.update(
            Profile,
            {"membership_tier": membership_tier_for(payment.reference_id), "membership_expires_at": end},
            Profile.user_id == payment.user_id,
        )
    # analysis / addon: the deliverable already exists, completion is enough


def _complete(store_factory: StoreFactory, payment: _PendingPayment,
              payment_key: Optional[str], method: Optional[str]) -> bool:
    """Guarded completion plus fulfilment in one transaction. True if this call won."""
    with store_factory() as store:
        won = _transition(store, payment.id, PaymentStatus.COMPLETED, payment_key=payment_key, method=method)
        if won:
            fulfil(store, payment)
    return won


def _mark_terminal(store_factory: StoreFactory, order_id: str, status: PaymentStatus, failure_code: str) -> bool:
    with store_factory() as store:
        return _transition(store, order_id, status, failure_code=failure_code)


def _lookup_for_redirect(store_factory: StoreFactory, order_id: str):
    """(pending payment or None, already completed)"""
    with store_factory() as store:
        pending = _load_pending(store, order_id)
        return pending, pending is None and _is_completed(store, order_id)


def _lookup_for_webhook(store_factory: StoreFactory, order_id: str):
    """(pending payment or None, order exists at all)"""
    with store_factory() as store:
        pending = _load_pending(store, order_id)
        return pending, pending is not None or store.select_one(Payment, Payment.id == order_id) is not None


def process_referral(store: RelationalStore, referee_id: str, amount: int) -> Optional[int]:
    """
    Pay the referrer once per referred user's lifetime.

    Returns:
        Points paid to the referrer, or None when there is nothing to pay
    """
    rows = store.update(
        Referral,
        {
            "first_purchase_processed": True,
            "status": ReferralStatus.COMPLETED,
            "completed_at": utc_now(),
        },
        Referral.referee_id == referee_id,
        Referral.status == ReferralStatus.PENDING,
        Referral.first_purchase_processed.is_(False),
        returning=[Referral.referrer_id, Referral.commission_rate],
    )
    if not rows:
        return None

    referrer_id, rate = rows[0]
    commission = amount * rate // 100
    total = REFERRAL_REWARD_POINTS + commission

    credit_points(store, referrer_id, REFERRAL_REWARD_POINTS, TX_REFERRAL_REWARD,
                  description="추천 보상", reference_id=referee_id)
    if commission > 0:
        credit_points(store, referrer_id, commission, TX_REFERRAL_COMMISSION,
                      description=f"추천 커미션 ({rate}%)", reference_id=referee_id)

    store.update(
        Profile,
        {
            "total_referrals": Profile.total_referrals + 1,
            "referral_earnings": Profile.referral_earnings + total,
        },
        Profile.user_id == referrer_id,
    )
    store.update(Referral, {"commission_paid": total}, Referral.referee_id == referee_id)

    log_info(logger, "Referral reward paid", referrer_id=referrer_id, referee_id=referee_id, reward=total)
    return total


def _after_completion(store_factory: StoreFactory, payment: _PendingPayment) -> None:
    """Referral payout and spend counter; neither can fail the payment."""
    try:
        with store_factory() as store:
            process_referral(store, payment.user_id, payment.amount)
    except (SQLAlchemyError, StoreError, ValueError) as e:
        log_warning(logger, "Referral payout failed", order_id=payment.id, error=str(e))

    try:
        with store_factory() as store:
            store.update(
                Profile,
                {"total_spent": Profile.total_spent + payment.amount},
                Profile.user_id == payment.user_id,
            )
    except (SQLAlchemyError, StoreError) as e:
        log_warning(logger, "Spend counter update failed", order_id=payment.id, error=str(e))


# =============================================================================
# REDIRECT CONFIRMATION
# =============================================================================

def _valid_order_id(order_id: Optional[str]) -> bool:
    try:
        uuid.UUID(str(order_id))
    except ValueError:
        return False
    return True


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def reconcile_redirect(
    payment_key: Optional[str],
    order_id: Optional[str],
    amount: Any,
    user: Optional[CurrentUser] = None,
    gateway: Optional[TossGateway] = None,
    store_factory: StoreFactory = store_transaction,
) -> ReconcileOutcome:
    """
    Confirm a payment the user was redirected back with.

    Validation, then pending lookup, ownership, amount, gateway confirm,
    guarded completion with fulfilment, referral and spend counter.
    Security rejections never mutate state.
    """
    if not payment_key or not _valid_order_id(order_id):
        return ReconcileOutcome("rejected", order_id, ErrorCode.INVALID_ORDER_ID)
    amount = _as_int(amount)
    if amount is None or amount <= 0:
        return ReconcileOutcome("rejected", order_id, ErrorCode.INVALID_AMOUNT)

    pending, already = await asyncio.to_thread(_lookup_for_redirect, store_factory, order_id)

    if pending is None:
        if already:
            log_info(logger, "Payment already processed", order_id=order_id)
            return ReconcileOutcome("already_processed", order_id)
        return ReconcileOutcome("rejected", order_id, ErrorCode.PAYMENT_NOT_FOUND)

    if user is not None and pending.user_id != user.id:
        log_suspicious(logger, "payment ownership mismatch", order_id=order_id, user_id=user.id)
        return ReconcileOutcome("rejected", order_id, ErrorCode.OWNERSHIP_MISMATCH, pending.type)

    if pending.amount != amount:
        log_suspicious(logger, "payment amount mismatch", order_id=order_id,
                       expected=pending.amount, received=amount)
        return ReconcileOutcome("rejected", order_id, ErrorCode.AMOUNT_MISMATCH, pending.type)

    gateway = gateway or TossGateway()
    confirm = await gateway.confirm(payment_key, order_id, amount)

    if not confirm.ok:
        code = confirm.error_code or ErrorCode.CONFIRMATION_FAILED
        await asyncio.to_thread(_mark_terminal, store_factory, order_id, PaymentStatus.FAILED, code[:64])
        log_warning(logger, "Payment confirmation failed", order_id=order_id, error_code=code)
        return ReconcileOutcome("failed", order_id, code, pending.type)

    won = await asyncio.to_thread(
        _complete, store_factory, pending, confirm.payment_key or payment_key, confirm.method,
    )
    if not won:
        return ReconcileOutcome("already_processed", order_id, payment_type=pending.type)

    await asyncio.to_thread(_after_completion, store_factory, pending)
    log_info(logger, "Payment completed", order_id=order_id, payment_type=pending.type, amount=amount)
    return ReconcileOutcome("completed", order_id, payment_type=pending.type)


# =============================================================================
# WEBHOOKS
# =============================================================================

def detect_provider(headers: Mapping[str, str], provider_hint: Optional[str] = None) -> str:
    if provider_hint in ("toss", "stripe"):
        return provider_hint
    lowered = {k.lower() for k in headers.keys()}
    return "stripe" if "stripe-signature" in lowered else "toss"


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def _toss_event(payload: Dict[str, Any]):
    data = payload.get("data") or payload
    status = TOSS_TERMINAL_STATUSES.get(str(data.get("status", "")).upper())
    return data.get("orderId"), status, data.get("paymentKey"), data.get("totalAmount"), data.get("method")


def _stripe_event(payload: Dict[str, Any]):
    event_type = payload.get("type", "")
    obj = (payload.get("data") or {}).get("object") or {}
    metadata = obj.get("metadata") or {}
    order_id = metadata.get("order_id") or obj.get("client_reference_id")
    if event_type in STRIPE_COMPLETED_EVENTS:
        status = PaymentStatus.COMPLETED
    elif event_type in STRIPE_FAILED_EVENTS:
        status = PaymentStatus.FAILED
    else:
        status = None
    amount = obj.get("amount_total", obj.get("amount"))
    return order_id, status, obj.get("payment_intent") or obj.get("id"), amount, None


async def handle_webhook(
    raw_body: bytes,
    headers: Mapping[str, str],
    provider_hint: Optional[str] = None,
    toss_secret: Optional[str] = None,
    stripe_secret: Optional[str] = None,
    now: Optional[float] = None,
    store_factory: StoreFactory = store_transaction,
) -> WebhookOutcome:
    """
    Apply a gateway status event.

    The signature is verified before anything else; a bad signature is a
    401 with no mutation. Completion goes through the same guarded
    transition as the redirect path, so retries are acknowledged without
    side effects.
    """
    provider = detect_provider(headers, provider_hint)

    if provider == "stripe":
        secret = stripe_secret if stripe_secret is not None else get_env("STRIPE_WEBHOOK_SECRET")
        verified = verify_stripe_signature(raw_body, _header(headers, "stripe-signature"), secret, now=now)
    else:
        secret = toss_secret if toss_secret is not None else get_env("TOSS_WEBHOOK_SECRET")
        signature = _header(headers, "tosspayments-webhook-signature") or _header(headers, "x-toss-signature")
        verified = verify_hmac_signature(raw_body, signature, secret)

    if not verified:
        log_suspicious(logger, "webhook signature rejected", provider=provider)
        return WebhookOutcome(received=False, status_code=401, error_code=ErrorCode.INVALID_SIGNATURE)

    try:
        payload = json.loads(raw_body)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        return WebhookOutcome(received=False, status_code=400, error_code=ErrorCode.VALIDATION_ERROR)

    order_id, status, payment_key, amount, method = (
        _stripe_event(payload) if provider == "stripe" else _toss_event(payload)
    )
    if status is None:
        return WebhookOutcome(received=True, action="ignored")
    if not _valid_order_id(order_id):
        return WebhookOutcome(received=False, status_code=400, error_code=ErrorCode.INVALID_ORDER_ID)

    pending, known = await asyncio.to_thread(_lookup_for_webhook, store_factory, order_id)

    if pending is None:
        if not known:
            return WebhookOutcome(received=False, status_code=404, error_code=ErrorCode.PAYMENT_NOT_FOUND)
        log_info(logger, "Webhook for terminal payment acknowledged", order_id=order_id, provider=provider)
        return WebhookOutcome(received=True, action="already_processed")

    if status != PaymentStatus.COMPLETED:
        changed = await asyncio.to_thread(_mark_terminal, store_factory, order_id, status, f"{provider}_webhook")
        return WebhookOutcome(received=True, action=status.value if changed else "already_processed")

    if amount is not None and _as_int(amount) != pending.amount:
        log_suspicious(logger, "webhook amount mismatch", order_id=order_id,
                       expected=pending.amount, received=amount)
        return WebhookOutcome(received=False, status_code=400, error_code=ErrorCode.AMOUNT_MISMATCH)

    if not await asyncio.to_thread(_complete, store_factory, pending, payment_key, method):
        return WebhookOutcome(received=True, action="already_processed")

    await asyncio.to_thread(_after_completion, store_factory, pending)
    log_info(logger, "Payment completed via webhook", order_id=order_id, provider=provider)
    return WebhookOutcome(received=True, action="completed")
