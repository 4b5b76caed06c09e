"""
SYSTEM INVARIANTS - Single Source of Truth

This module defines the numeric rules the fortune engine and the
monetization ledger rely on. Runtime code and tests both import from here;
a literal duplicated elsewhere is a bug.

These constants are used by:
1. Runtime code (scoring, strength classification, gating, fulfillment)
2. Tests (invariant validation)
"""

from typing import Dict, Any, List
import logging

logger = logging.getLogger(__name__)

# =============================================================================
# FIVE ELEMENTS
# =============================================================================

# Fixed precedence order; used to break ties for dominant/missing elements
ELEMENT_ORDER = ["wood", "fire", "earth", "metal", "water"]

# Known pillars per chart (hour pillar is optional)
PILLARS_WITHOUT_HOUR = 3
PILLARS_WITH_HOUR = 4


# =============================================================================
# DAY-MASTER STRENGTH (configurable, no documented derivation)
# =============================================================================

# support = dm count + RESOURCE_WEIGHT * resource count (+ month bonus)
STRENGTH_RESOURCE_WEIGHT = 0.7
# Month branch element equal to dm or its resource
STRENGTH_MONTH_SUPPORT_BONUS = 1.5

# drain = officer count + OUTPUT_WEIGHT * output + WEALTH_WEIGHT * wealth
STRENGTH_OUTPUT_WEIGHT = 0.5
STRENGTH_WEALTH_WEIGHT = 0.5

# strong if support > drain * STRONG_RATIO, weak if support < drain * WEAK_RATIO
STRENGTH_STRONG_RATIO = 1.3
STRENGTH_WEAK_RATIO = 0.7

# Balanced charts: yongsin from missing elements, gisin from crowded ones
BALANCED_YONGSIN_MAX = 2
BALANCED_GISIN_MIN_COUNT = 2


# =============================================================================
# FORTUNE SCORES
# =============================================================================

SCORE_MIN = 50
SCORE_MAX = 95

BASE_SCORE_BY_STRENGTH = {
    "balanced": 80,
    "strong": 75,
    "weak": 70,
}

# hash mod SCORE_VARIANCE_SPAN - SCORE_VARIANCE_SPAN // 2 -> [-10, 9]
SCORE_VARIANCE_SPAN = 20

SCORE_CATEGORIES = ["overall", "wealth", "love", "career", "health"]

# Stem x MBTI cross-analysis
MBTI_DEFAULT_MATCH_RATE = 75
MBTI_HIGH_CONSISTENCY_MIN = 85
MBTI_COMPLEMENTARY_MIN = 70


# =============================================================================
# COMPATIBILITY
# =============================================================================

PAIR_SCORE_SAME = 70
PAIR_SCORE_GENERATING = 88
PAIR_SCORE_CONTROLLING = 55
PAIR_SCORE_NEUTRAL = 75

GROUP_MIN_MEMBERS = 2
GROUP_MAX_MEMBERS = 5

# Branch relation adjustments applied to the group harmony mean
SIX_HARMONY_BONUS = 3
CLASH_PENALTY = 4
TRIPLE_HARMONY_BONUS = 5

# Pairs under this score get a conflict warning
PAIR_WARNING_BELOW = 60


# =============================================================================
# ENTITLEMENT & QUOTA
# =============================================================================

FREE_ANALYSIS_LIMIT = 3
# Reported as the limit for privileged identities (they bypass the check)
ADMIN_UNLIMITED_SENTINEL = 999

# Point cost per analysis tier
TIER_COSTS: Dict[str, int] = {
    "basic": 500,
    "deep": 1000,
    "premium": 2000,
}
DEFAULT_TIER = "basic"

SIGNUP_BONUS_POINTS = 500

# Persisted analysis lifetime and the price to unlock a blinded one later
ANALYSIS_RETENTION_DAYS = 45
UNBLIND_PRICE = 500


# =============================================================================
# PAYMENTS & REFERRALS
# =============================================================================

PAYMENT_TYPES = ["point", "subscription", "analysis", "addon", "qr"]

# Terminal statuses; there is no transition out of any of them
TERMINAL_PAYMENT_STATUSES = frozenset({"completed", "failed", "canceled", "expired"})

REFERRAL_DEFAULT_COMMISSION_RATE = 20
REFERRAL_REWARD_POINTS = 300

# Stripe-style signed header replay window
WEBHOOK_TOLERANCE_SECONDS = 300

SUBSCRIPTION_PERIOD_MONTHS = 1


# =============================================================================
# VALIDATION FUNCTIONS
# =============================================================================

def validate_score_range(scores: Dict[str, Any]) -> tuple:
    """
    Validate every score category is an int inside [SCORE_MIN, SCORE_MAX].

    Returns:
        (is_valid, error_message)
    """
    for category in SCORE_CATEGORIES:
        if category not in scores:
            return False, f"Missing score category: {category}"
        value = scores[category]
        if not isinstance(value, int):
            return False, f"{category} must be int, got {type(value).__name__}"
        if value < SCORE_MIN or value > SCORE_MAX:
            return False, f"{category}={value} outside [{SCORE_MIN}, {SCORE_MAX}]"
    return True, ""


def validate_element_balance(balance: Dict[str, int], has_hour: bool) -> tuple:
    """
    Element counts must cover every element and sum to the pillar count.

    Returns:
        (is_valid, error_message)
    """
    missing: List[str] = [e for e in ELEMENT_ORDER if e not in balance]
    if missing:
        return False, f"Missing elements: {missing}"

    expected = PILLARS_WITH_HOUR if has_hour else PILLARS_WITHOUT_HOUR
    total = sum(balance[e] for e in ELEMENT_ORDER)
    if total != expected:
        return False, f"Element counts sum to {total}, expected {expected}"
    return True, ""


def validate_payment_transition(current: str, new: str) -> tuple:
    """
    Only pending payments may move, and only to a terminal status.

    Returns:
        (is_valid, error_message)
    """
    if current != "pending":
        return False, f"Payment already terminal ({current})"
    if new not in TERMINAL_PAYMENT_STATUSES:
        return False, f"Unknown terminal status: {new}"
    return True, ""
