"""
Core module - System invariants and single source of truth
"""

from .invariants import (
    # Five elements
    ELEMENT_ORDER,
    PILLARS_WITHOUT_HOUR,
    PILLARS_WITH_HOUR,

    # Scores
    SCORE_MIN,
    SCORE_MAX,
    SCORE_CATEGORIES,

    # Entitlement
    FREE_ANALYSIS_LIMIT,
    TIER_COSTS,
    SIGNUP_BONUS_POINTS,
    UNBLIND_PRICE,

    # Payments
    PAYMENT_TYPES,
    TERMINAL_PAYMENT_STATUSES,

    # Validation functions
    validate_score_range,
    validate_element_balance,
    validate_payment_transition,
)

# Import time_kst (SINGLE SOURCE OF TRUTH for KST timezone)
from .time_kst import (
    KST,
    now_kst,
    today_kst,
    period_key,
    add_months,
)

__all__ = [
    # Invariants
    'ELEMENT_ORDER',
    'PILLARS_WITHOUT_HOUR',
    'PILLARS_WITH_HOUR',
    'SCORE_MIN',
    'SCORE_MAX',
    'SCORE_CATEGORIES',
    'FREE_ANALYSIS_LIMIT',
    'TIER_COSTS',
    'SIGNUP_BONUS_POINTS',
    'UNBLIND_PRICE',
    'PAYMENT_TYPES',
    'TERMINAL_PAYMENT_STATUSES',
    'validate_score_range',
    'validate_element_balance',
    'validate_payment_transition',

    # Time handling (SINGLE SOURCE OF TRUTH)
    'KST',
    'now_kst',
    'today_kst',
    'period_key',
    'add_months',
]
