"""
ANALYSIS_SERVICE.PY - Analysis orchestration

birth input -> chart -> oheng -> scores/personality -> narrative/zodiac
-> entitlement decision -> redaction -> persist -> response

The engines are pure; everything that touches the store happens here.
Saving an analysis is non-fatal: a store failure is logged and the
computed result is still returned (without an analysis_id).
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, ContextManager, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from blinding import redact
from compatibility_engine import GroupMember, GroupSizeError, analyze_couple, analyze_group as group_report, validate_group_size
from core.auth import AllowListAuthorizer, CurrentUser
from core.error_responses import ErrorCode
from core.invariants import (
    ANALYSIS_RETENTION_DAYS,
    DEFAULT_TIER,
    TIER_COSTS,
    UNBLIND_PRICE,
    validate_element_balance,
    validate_score_range,
)
from core.structured_logging import log_info, log_warning
from core.time_kst import today_kst, utc_now
from database import FortuneAnalysis, RelationalStore, StoreError, store_transaction
from entitlement_ledger import (
    TX_ANALYSIS,
    TX_UNBLIND,
    decide_access,
    deduct_points,
    get_point_balance,
    use_voucher,
)
from fortune_scoring import analyze_personality, calculate_scores
from models.analysis_schema import AnalysisResult
from narrative_builder import build_narrative
from oheng_engine import analyze_oheng
from pricing import ANALYSIS_COSTS
from saju_calendar import BirthInput, BirthInputError, calculate_daeun, calculate_saju, validate_birth_input
from zodiac_engine import analyze_zodiac, sign_compatibility, zodiac_sign

logger = logging.getLogger(__name__)

StoreFactory = Callable[[], ContextManager[RelationalStore]]


class AnalysisError(Exception):
    """Request-level failure carrying an ErrorCode and remediation data."""

    def __init__(self, code: str, message: str, status_code: int = 400, **extra: Any):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.extra = extra


@dataclass(frozen=True)
class NamedBirth:
    name: str
    birth: BirthInput


def _validate(birth: BirthInput) -> None:
    try:
        validate_birth_input(birth)
    except BirthInputError as e:
        raise AnalysisError(ErrorCode.INVALID_DATE, str(e), 400) from e


def _require_user(user: Optional[CurrentUser]) -> CurrentUser:
    if user is None:
        raise AnalysisError(ErrorCode.UNAUTHORIZED, "Login required", 401)
    return user


def _insufficient(balance: int, required: int, shortage: int) -> AnalysisError:
    return AnalysisError(
        ErrorCode.INSUFFICIENT_POINTS,
        "Not enough points",
        402,
        required=required,
        current=balance,
        shortage=shortage,
    )


# =============================================================================
# PURE PIPELINE
# =============================================================================

def build_analysis(
    birth: BirthInput,
    mbti: Optional[str] = None,
    blood_type: Optional[str] = None,
    tier: str = DEFAULT_TIER,
    today: Optional[date] = None,
) -> AnalysisResult:
    """Full (unredacted) analysis for a validated birth input."""
    today = today or today_kst()

    chart = calculate_saju(birth)
    oheng = analyze_oheng(chart)
    scores = calculate_scores(chart, oheng)
    personality = analyze_personality(chart, mbti, blood_type)
    daeun = calculate_daeun(chart, birth.gender)
    narrative = build_narrative(birth, chart, oheng, scores, personality, daeun, today)

    ok, msg = validate_score_range(scores.to_dict())
    if not ok:
        logger.error("Score invariant violated: %s", msg)
    ok, msg = validate_element_balance(oheng.balance.to_dict(), birth.has_time)
    if not ok:
        logger.error("Element balance invariant violated: %s", msg)

    return AnalysisResult(
        name=birth.name,
        birth={
            "birth_date": birth.birth_date.isoformat(),
            "birth_hour": birth.birth_hour,
            "birth_minute": birth.birth_minute if birth.has_time else None,
            "gender": birth.gender,
            "calendar_system": birth.calendar_system,
            "is_leap_month": birth.is_leap_month,
            "solar_date": chart.solar_date.isoformat() if chart.solar_date else None,
        },
        chart=chart.to_dict(),
        oheng=oheng.to_dict(),
        scores=scores.to_dict(),
        personality=personality.to_dict(),
        narrative=narrative,
        daeun=[luck.to_dict() for luck in daeun],
        zodiac=analyze_zodiac(chart.solar_date, oheng.balance.dominant),
        tier=tier,
    )


# =============================================================================
# SINGLE ANALYSIS
# =============================================================================

def _save(store_factory: StoreFactory, user: CurrentUser, result: AnalysisResult,
          unlocked: bool, points_paid: int) -> Optional[str]:
    try:
        with store_factory() as store:
            record = store.insert(FortuneAnalysis(
                user_id=user.id,
                product_type=f"saju_{result.tier}",
                result_json=json.dumps(result.model_dump(), ensure_ascii=False),
                is_premium=unlocked,
                is_blinded=not unlocked,
                points_paid=points_paid,
                expires_at=utc_now() + timedelta(days=ANALYSIS_RETENTION_DAYS),
            ))
            return record.id
    except (SQLAlchemyError, StoreError) as e:
        log_warning(logger, "Analysis save failed, returning unsaved result", user_id=user.id, error=str(e))
        return None


def analyze_fortune(
    birth: BirthInput,
    user: Optional[CurrentUser],
    authorizer: AllowListAuthorizer,
    mbti: Optional[str] = None,
    blood_type: Optional[str] = None,
    tier: str = DEFAULT_TIER,
    store_factory: StoreFactory = store_transaction,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Compute, gate, redact and persist one analysis.

    Returns:
        {"result": <redacted AnalysisResult>, "meta": {is_blinded, point_balance,
         free_analysis_status, upgrade_cost, analysis_id, access}}

    Raises:
        AnalysisError: invalid input, unknown tier, INSUFFICIENT_POINTS
    """
    _validate(birth)
    if tier not in TIER_COSTS:
        raise AnalysisError(ErrorCode.INVALID_PARAMETER, f"Unknown tier: {tier}", 400, field="tier")

    full = build_analysis(birth, mbti, blood_type, tier, today)

    if user is None:
        # Anonymous preview: blinded and never persisted
        return {
            "result": redact(full, unlocked=False).model_dump(),
            "meta": {
                "is_blinded": True,
                "access": "anonymous",
                "point_balance": None,
                "free_analysis_status": None,
                "upgrade_cost": UNBLIND_PRICE,
                "analysis_id": None,
            },
        }

    try:
        with store_factory() as store:
            decision = decide_access(store, user, authorizer, tier)
    except (SQLAlchemyError, StoreError) as e:
        logger.error("Entitlement check failed for %s: %s", user.id, e)
        raise AnalysisError(ErrorCode.SERVICE_UNAVAILABLE, "Entitlement store unavailable", 503) from e

    if decision.rejected:
        raise _insufficient(decision.balance or 0, decision.required, decision.shortage)

    shown = redact(full, decision.unlocked)
    analysis_id = _save(store_factory, user, full, decision.unlocked, decision.points_charged)

    balance = decision.balance
    if balance is None:
        try:
            with store_factory() as store:
                balance = get_point_balance(store, user.id)
        except (SQLAlchemyError, StoreError):
            balance = None

    log_info(logger, "Analysis served", user_id=user.id, access=decision.mode,
             analysis_id=analysis_id, tier=tier)
    return {
        "result": shown.model_dump(),
        "meta": {
            "is_blinded": not decision.unlocked,
            "access": decision.mode,
            "point_balance": balance,
            "free_analysis_status": decision.free_status.to_dict() if decision.free_status else None,
            "upgrade_cost": 0 if decision.unlocked else UNBLIND_PRICE,
            "analysis_id": analysis_id,
        },
    }


# =============================================================================
# GROUP / COMPATIBILITY
# =============================================================================

def _members(people: List[NamedBirth]) -> List[GroupMember]:
    for person in people:
        _validate(person.birth)
    return [GroupMember(name=p.name, chart=calculate_saju(p.birth)) for p in people]


def analyze_group(
    people: List[NamedBirth],
    user: Optional[CurrentUser],
    authorizer: AllowListAuthorizer,
    relation_type: str = "friends",
    store_factory: StoreFactory = store_transaction,
) -> Dict[str, Any]:
    """Group report; charges the group analysis cost unless the caller is an admin."""
    try:
        validate_group_size(len(people))
    except GroupSizeError as e:
        raise AnalysisError(ErrorCode.INVALID_PARAMETER, str(e), 400, field="members") from e

    report = group_report(_members(people))
    cost = ANALYSIS_COSTS["group"]

    points_charged = 0
    balance = None
    if not authorizer.is_user_privileged(user):
        user = _require_user(user)
        with store_factory() as store:
            result = deduct_points(store, user.id, cost, tx_type=TX_ANALYSIS,
                                   description=f"그룹 궁합 ({len(people)}명)")
        if not result.success:
            raise _insufficient(result.balance, result.required, result.shortage)
        points_charged, balance = cost, result.balance

    body = report.to_dict()
    body["relation_type"] = relation_type
    return {"result": body, "meta": {"points_charged": points_charged, "point_balance": balance}}


def analyze_compatibility(
    person1: NamedBirth,
    person2: NamedBirth,
    user: Optional[CurrentUser],
    authorizer: AllowListAuthorizer,
    store_factory: StoreFactory = store_transaction,
) -> Dict[str, Any]:
    """Two-person compatibility; consumes a compatibility voucher unless admin."""
    m1, m2 = _members([person1, person2])
    report = analyze_couple(m1, m2)

    remaining = None
    if not authorizer.is_user_privileged(user):
        user = _require_user(user)
        with store_factory() as store:
            voucher = use_voucher(store, user.id, "compatibility")
        if not voucher.success:
            raise AnalysisError(ErrorCode.NO_VOUCHER, "Compatibility voucher required", 402)
        remaining = voucher.remaining

    body = report.to_dict()
    sign1 = zodiac_sign(m1.chart.solar_date)
    sign2 = zodiac_sign(m2.chart.solar_date)
    body["zodiac"] = {"sign1": sign1, "sign2": sign2, "score": sign_compatibility(sign1, sign2)}
    return {"result": body, "meta": {"voucher_remaining": remaining}}


# =============================================================================
# UNBLIND
# =============================================================================

def unblind_analysis(
    analysis_id: str,
    user: CurrentUser,
    store_factory: StoreFactory = store_transaction,
) -> Dict[str, Any]:
    """
    Unlock a stored blinded analysis for UNBLIND_PRICE points.

    The flip (guarded on is_blinded = true) and the deduction share one
    transaction; a failed deduction rolls the flip back.
    """
    with store_factory() as store:
        row = store.select_one(
            FortuneAnalysis,
            FortuneAnalysis.id == analysis_id,
            FortuneAnalysis.user_id == user.id,
        )
        if row is None or (row.expires_at is not None and row.expires_at < utc_now()):
            raise AnalysisError(ErrorCode.NOT_FOUND, "Analysis not found", 404)
        if not row.is_blinded:
            raise AnalysisError(ErrorCode.ALREADY_UNLOCKED, "Analysis already unlocked", 409)

        flipped = store.update(
            FortuneAnalysis,
            {
                "is_blinded": False,
                "is_premium": True,
                "points_paid": FortuneAnalysis.points_paid + UNBLIND_PRICE,
            },
            FortuneAnalysis.id == analysis_id,
            FortuneAnalysis.is_blinded.is_(True),
        )
        if not flipped:
            raise AnalysisError(ErrorCode.ALREADY_UNLOCKED, "Analysis already unlocked", 409)

        result = deduct_points(store, user.id, UNBLIND_PRICE, tx_type=TX_UNBLIND,
                               description="분석 잠금 해제", reference_id=analysis_id)
        if not result.success:
            raise _insufficient(result.balance, result.required, result.shortage)

        full = AnalysisResult.model_validate(row.result)

    log_info(logger, "Analysis unblinded", user_id=user.id, analysis_id=analysis_id)
    return {
        "result": full.model_dump(),
        "meta": {
            "is_blinded": False,
            "point_balance": result.balance,
            "analysis_id": analysis_id,
            "upgrade_cost": 0,
        },
    }
