"""
ENTITLEMENT_LEDGER.PY - Free quota, point balance and vouchers

Every balance mutation is a single conditional UPDATE whose row count is
the success signal, followed by exactly one PointTransaction row in the
same transaction:

    deduct:  UPDATE profiles SET points = points - :cost
             WHERE user_id = :uid AND points >= :cost RETURNING points
    credit:  UPDATE profiles SET points = points + :amt
             WHERE user_id = :uid RETURNING points

The free quota is a keyed counter (user_id, period_key) incremented only
while count < limit, so concurrent requests can never overshoot it.

All functions take a RelationalStore and never commit; the caller owns
the transaction (see database.store_transaction).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Union

from core.auth import AllowListAuthorizer, CurrentUser
from core.error_responses import ErrorCode
from core.invariants import (
    ADMIN_UNLIMITED_SENTINEL,
    DEFAULT_TIER,
    SIGNUP_BONUS_POINTS,
    TIER_COSTS,
)
from core.structured_logging import log_info
from core.time_kst import period_key as current_period_key, utc_now
from database import FreeAnalysisUsage, PointTransaction, Profile, RelationalStore, UserVoucher
from env_config import Config

logger = logging.getLogger(__name__)

# Ledger transaction types
TX_SIGNUP_BONUS = "signup_bonus"
TX_PURCHASE = "purchase"
TX_ANALYSIS = "analysis"
TX_UNBLIND = "unblind"
TX_REFERRAL_REWARD = "referral_reward"
TX_REFERRAL_COMMISSION = "referral_commission"

VOUCHER_ACTIVE = "active"
VOUCHER_USED = "used"


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class FreeAnalysisStatus:
    can_use: bool
    remaining: int
    limit: int

    def to_dict(self) -> Dict[str, object]:
        return {"can_use": self.can_use, "remaining": self.remaining, "limit": self.limit}


@dataclass(frozen=True)
class DeductResult:
    success: bool
    balance: int
    required: int
    shortage: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class CreditResult:
    success: bool
    balance: int
    amount: int


@dataclass(frozen=True)
class VoucherResult:
    success: bool
    remaining: int = 0
    voucher_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class AccessDecision:
    """
    Outcome of the per-request entitlement policy.

    mode: admin | free | points | rejected
    unlocked: True only for admins and point-payers; free results stay blinded
    """
    mode: str
    unlocked: bool
    points_charged: int = 0
    balance: Optional[int] = None
    free_status: Optional[FreeAnalysisStatus] = None
    error: Optional[str] = None
    required: int = 0
    shortage: int = 0

    @property
    def rejected(self) -> bool:
        return self.mode == "rejected"


# =============================================================================
# FREE QUOTA
# =============================================================================

def _free_limit(limit: Optional[int]) -> int:
    return Config.FREE_ANALYSIS_LIMIT if limit is None else limit


def can_use_free_analysis(
    store: RelationalStore,
    user: CurrentUser,
    authorizer: AllowListAuthorizer,
    period: Optional[str] = None,
    limit: Optional[int] = None,
) -> FreeAnalysisStatus:
    """Free-quota status for the user's current KST day."""
    if authorizer.is_user_privileged(user):
        return FreeAnalysisStatus(True, ADMIN_UNLIMITED_SENTINEL, ADMIN_UNLIMITED_SENTINEL)

    limit = _free_limit(limit)
    row = store.select_one(
        FreeAnalysisUsage,
        FreeAnalysisUsage.user_id == user.id,
        FreeAnalysisUsage.period_key == (period or current_period_key()),
    )
    used = row.count if row is not None else 0
    remaining = max(0, limit - used)
    return FreeAnalysisStatus(remaining > 0, remaining, limit)


def increment_free_analysis(
    store: RelationalStore,
    user_id: str,
    period: Optional[str] = None,
    limit: Optional[int] = None,
) -> bool:
    """
    Consume one free analysis.

    Returns:
        False when the period's quota is already used up
    """
    limit = _free_limit(limit)
    period = period or current_period_key()

    store.insert_ignore(
        FreeAnalysisUsage,
        {"user_id": user_id, "period_key": period, "count": 0},
        ["user_id", "period_key"],
    )
    updated = store.update(
        FreeAnalysisUsage,
        {"count": FreeAnalysisUsage.count + 1, "updated_at": utc_now()},
        FreeAnalysisUsage.user_id == user_id,
        FreeAnalysisUsage.period_key == period,
        FreeAnalysisUsage.count < limit,
    )
    return bool(updated)


# =============================================================================
# POINTS
# =============================================================================

def tier_cost(tier: str) -> int:
    if tier not in TIER_COSTS:
        raise ValueError(f"Unknown tier: {tier}")
    return TIER_COSTS[tier]


def get_point_balance(store: RelationalStore, user_id: str) -> int:
    profile = store.select_one(Profile, Profile.user_id == user_id)
    return profile.points if profile is not None else 0


def _record(store: RelationalStore, user_id: str, tx_type: str, amount: int, balance_after: int,
            description: Optional[str], reference_id: Optional[str]) -> PointTransaction:
    return store.insert(PointTransaction(
        user_id=user_id,
        type=tx_type,
        amount=amount,
        balance_after=balance_after,
        description=description,
        reference_id=reference_id,
    ))


def deduct_points(
    store: RelationalStore,
    user_id: str,
    cost: Union[int, str],
    tx_type: str = TX_ANALYSIS,
    description: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> DeductResult:
    """
    Atomically charge `cost` points (an amount or a tier name).

    Never drives the balance negative; on shortage nothing is written.
    """
    amount = tier_cost(cost) if isinstance(cost, str) else cost
    if amount <= 0:
        raise ValueError(f"Deduction must be positive, got {amount}")

    rows = store.update(
        Profile,
        {"points": Profile.points - amount, "updated_at": utc_now()},
        Profile.user_id == user_id,
        Profile.points >= amount,
        returning=Profile.points,
    )
    if not rows:
        balance = get_point_balance(store, user_id)
        return DeductResult(
            success=False,
            balance=balance,
            required=amount,
            shortage=amount - balance,
            error=ErrorCode.INSUFFICIENT_POINTS,
        )

    balance = rows[0]
    _record(store, user_id, tx_type, -amount, balance, description, reference_id)
    log_info(logger, "Points deducted", user_id=user_id, amount=amount, balance_after=balance)
    return DeductResult(success=True, balance=balance, required=amount)


def credit_points(
    store: RelationalStore,
    user_id: str,
    amount: int,
    tx_type: str,
    description: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> CreditResult:
    """Atomically add points, creating the profile if needed."""
    if amount <= 0:
        raise ValueError(f"Credit must be positive, got {amount}")

    store.insert_ignore(Profile, {"user_id": user_id, "points": 0}, ["user_id"])
    rows = store.update(
        Profile,
        {"points": Profile.points + amount, "updated_at": utc_now()},
        Profile.user_id == user_id,
        returning=Profile.points,
    )
    balance = rows[0]
    _record(store, user_id, tx_type, amount, balance, description, reference_id)
    log_info(logger, "Points credited", user_id=user_id, amount=amount, balance_after=balance, tx_type=tx_type)
    return CreditResult(success=True, balance=balance, amount=amount)


def ensure_profile(store: RelationalStore, user_id: str, email: Optional[str] = None) -> Profile:
    """
    Create the profile if missing and grant the signup bonus exactly once.

    The bonus flip is guarded on signup_bonus_granted = false, so repeated
    or concurrent calls credit it at most once.
    """
    store.insert_ignore(Profile, {"user_id": user_id, "email": email, "points": 0}, ["user_id"])
    rows = store.update(
        Profile,
        {
            "points": Profile.points + SIGNUP_BONUS_POINTS,
            "signup_bonus_granted": True,
            "updated_at": utc_now(),
        },
        Profile.user_id == user_id,
        Profile.signup_bonus_granted.is_(False),
        returning=Profile.points,
    )
    if rows:
        _record(store, user_id, TX_SIGNUP_BONUS, SIGNUP_BONUS_POINTS, rows[0], "가입 축하 포인트", None)
        log_info(logger, "Signup bonus granted", user_id=user_id, balance_after=rows[0])
    return store.select_one(Profile, Profile.user_id == user_id)


def get_point_history(store: RelationalStore, user_id: str, limit: int = 50) -> List[PointTransaction]:
    return store.select(
        PointTransaction,
        PointTransaction.user_id == user_id,
        order_by=PointTransaction.created_at.desc(),
        limit=limit,
    )


# =============================================================================
# VOUCHERS
# =============================================================================

def _usable_vouchers(store: RelationalStore, user_id: str, service_type: str,
                     now: Optional[datetime]) -> List[UserVoucher]:
    now = now or utc_now()
    vouchers = store.select(
        UserVoucher,
        UserVoucher.user_id == user_id,
        UserVoucher.service_type == service_type,
        UserVoucher.status == VOUCHER_ACTIVE,
        UserVoucher.remaining_quantity > 0,
        order_by=UserVoucher.created_at,
    )
    return [v for v in vouchers if v.expires_at is None or v.expires_at > now]


def check_voucher(store: RelationalStore, user_id: str, service_type: str,
                  now: Optional[datetime] = None) -> VoucherResult:
    vouchers = _usable_vouchers(store, user_id, service_type, now)
    if not vouchers:
        return VoucherResult(success=False, error=ErrorCode.NO_VOUCHER)
    return VoucherResult(
        success=True,
        remaining=sum(v.remaining_quantity for v in vouchers),
        voucher_id=vouchers[0].id,
    )


def use_voucher(store: RelationalStore, user_id: str, service_type: str,
                now: Optional[datetime] = None) -> VoucherResult:
    """Conditionally decrement the oldest usable voucher; status flips to used at 0."""
    for voucher in _usable_vouchers(store, user_id, service_type, now):
        rows = store.update(
            UserVoucher,
            {"remaining_quantity": UserVoucher.remaining_quantity - 1},
            UserVoucher.id == voucher.id,
            UserVoucher.status == VOUCHER_ACTIVE,
            UserVoucher.remaining_quantity > 0,
            returning=UserVoucher.remaining_quantity,
        )
        if not rows:
            continue
        if rows[0] == 0:
            store.update(UserVoucher, {"status": VOUCHER_USED}, UserVoucher.id == voucher.id)
        return VoucherResult(success=True, remaining=rows[0], voucher_id=voucher.id)
    return VoucherResult(success=False, error=ErrorCode.NO_VOUCHER)


def issue_voucher(store: RelationalStore, user_id: str, service_type: str, quantity: int = 1,
                  expires_at: Optional[datetime] = None) -> UserVoucher:
    if quantity <= 0:
        raise ValueError(f"Voucher quantity must be positive, got {quantity}")
    return store.insert(UserVoucher(
        user_id=user_id,
        service_type=service_type,
        total_quantity=quantity,
        remaining_quantity=quantity,
        status=VOUCHER_ACTIVE,
        expires_at=expires_at,
    ))


# =============================================================================
# DECISION POLICY
# =============================================================================

def decide_access(
    store: RelationalStore,
    user: CurrentUser,
    authorizer: AllowListAuthorizer,
    tier: str = DEFAULT_TIER,
    period: Optional[str] = None,
    limit: Optional[int] = None,
    reference_id: Optional[str] = None,
) -> AccessDecision:
    """
    admin -> unlocked; free quota left -> consume it, still blinded;
    otherwise charge the tier cost -> unlocked; else rejected.
    """
    if authorizer.is_user_privileged(user):
        return AccessDecision(mode="admin", unlocked=True)

    period = period or current_period_key()
    status = can_use_free_analysis(store, user, authorizer, period, limit)
    if status.can_use and increment_free_analysis(store, user.id, period, limit):
        after = FreeAnalysisStatus(status.remaining > 1, status.remaining - 1, status.limit)
        return AccessDecision(mode="free", unlocked=False, free_status=after)

    exhausted = FreeAnalysisStatus(False, 0, status.limit)
    cost = tier_cost(tier)
    result = deduct_points(
        store, user.id, cost,
        tx_type=TX_ANALYSIS,
        description=f"사주 분석 ({tier})",
        reference_id=reference_id,
    )
    if result.success:
        return AccessDecision(
            mode="points", unlocked=True, points_charged=cost,
            balance=result.balance, free_status=exhausted,
        )

    return AccessDecision(
        mode="rejected",
        unlocked=False,
        balance=result.balance,
        free_status=exhausted,
        error=ErrorCode.INSUFFICIENT_POINTS,
        required=result.required,
        shortage=result.shortage,
    )
