"""
OHENG_ENGINE.PY - Five-Element (Oheng) Analyzer

Aggregates element counts across the known pillars, classifies day-master
strength and derives favorable (yongsin) / unfavorable (gisin) elements.

The generating / controlling relations are plain dicts so they can be
tested and reused (compatibility, zodiac harmony) without going through
the analyzer.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from core.invariants import (
    ELEMENT_ORDER,
    STRENGTH_RESOURCE_WEIGHT,
    STRENGTH_MONTH_SUPPORT_BONUS,
    STRENGTH_OUTPUT_WEIGHT,
    STRENGTH_WEALTH_WEIGHT,
    STRENGTH_STRONG_RATIO,
    STRENGTH_WEAK_RATIO,
    BALANCED_YONGSIN_MAX,
    BALANCED_GISIN_MIN_COUNT,
)
from saju_calendar import SajuChart

logger = logging.getLogger(__name__)

# =============================================================================
# RELATION TABLES
# =============================================================================

# element -> element it creates (상생)
GENERATES: Dict[str, str] = {
    "wood": "fire",
    "fire": "earth",
    "earth": "metal",
    "metal": "water",
    "water": "wood",
}

# element -> element it overcomes (상극)
CONTROLS: Dict[str, str] = {
    "wood": "earth",
    "earth": "water",
    "water": "fire",
    "fire": "metal",
    "metal": "wood",
}

GENERATED_BY: Dict[str, str] = {child: parent for parent, child in GENERATES.items()}
CONTROLLED_BY: Dict[str, str] = {target: source for source, target in CONTROLS.items()}

ELEMENT_INFO: Dict[str, Dict[str, object]] = {
    "wood": {"korean": "목", "hanja": "木", "color": "초록", "direction": "동쪽", "numbers": [3, 8]},
    "fire": {"korean": "화", "hanja": "火", "color": "빨강", "direction": "남쪽", "numbers": [2, 7]},
    "earth": {"korean": "토", "hanja": "土", "color": "노랑", "direction": "중앙", "numbers": [5, 10]},
    "metal": {"korean": "금", "hanja": "金", "color": "흰색", "direction": "서쪽", "numbers": [4, 9]},
    "water": {"korean": "수", "hanja": "水", "color": "검정", "direction": "북쪽", "numbers": [1, 6]},
}


def element_label(element: str) -> str:
    info = ELEMENT_INFO[element]
    return f"{info['korean']}({info['hanja']})"


def relation_between(a: str, b: str) -> Tuple[str, Optional[str]]:
    """
    Relation of two elements.

    Returns:
        (kind, direction) where kind is same | generating | controlling | neutral
        and direction is "forward" when a acts on b, "reverse" when b acts on a.
    """
    if a == b:
        return "same", None
    if GENERATES[a] == b:
        return "generating", "forward"
    if GENERATES[b] == a:
        return "generating", "reverse"
    if CONTROLS[a] == b:
        return "controlling", "forward"
    if CONTROLS[b] == a:
        return "controlling", "reverse"
    return "neutral", None


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class ElementBalance:
    counts: Dict[str, int]

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def dominant(self) -> str:
        # max() keeps the first maximum, so ELEMENT_ORDER breaks ties
        return max(ELEMENT_ORDER, key=lambda e: self.counts[e])

    @property
    def missing(self) -> List[str]:
        return [e for e in ELEMENT_ORDER if self.counts[e] == 0]

    def __getitem__(self, element: str) -> int:
        return self.counts[element]

    def to_dict(self) -> Dict[str, int]:
        return {e: self.counts[e] for e in ELEMENT_ORDER}


@dataclass(frozen=True)
class OhengResult:
    balance: ElementBalance
    day_master_element: str
    strength: str  # weak | balanced | strong
    yongsin: List[str]
    gisin: List[str]

    def to_dict(self) -> Dict[str, object]:
        return {
            "balance": self.balance.to_dict(),
            "dominant": self.balance.dominant,
            "missing": self.balance.missing,
            "day_master_element": self.day_master_element,
            "day_master_strength": self.strength,
            "yongsin": list(self.yongsin),
            "gisin": list(self.gisin),
        }


# =============================================================================
# ANALYSIS
# =============================================================================

def count_elements(chart: SajuChart) -> ElementBalance:
    """One count per known pillar, keyed by the pillar's stem element."""
    counts = {e: 0 for e in ELEMENT_ORDER}
    for pillar in chart.pillars():
        counts[pillar.element] += 1
    return ElementBalance(counts)


def classify_strength(chart: SajuChart, balance: ElementBalance) -> str:
    dm = chart.day_element
    resource = GENERATED_BY[dm]

    support = balance[dm] + STRENGTH_RESOURCE_WEIGHT * balance[resource]
    if chart.month.branch_element in (dm, resource):
        support += STRENGTH_MONTH_SUPPORT_BONUS

    drain = (
        balance[CONTROLLED_BY[dm]]
        + STRENGTH_OUTPUT_WEIGHT * balance[GENERATES[dm]]
        + STRENGTH_WEALTH_WEIGHT * balance[CONTROLS[dm]]
    )

    if support > drain * STRENGTH_STRONG_RATIO:
        return "strong"
    if support < drain * STRENGTH_WEAK_RATIO:
        return "weak"
    return "balanced"


def favorable_elements(dm: str, strength: str, balance: ElementBalance) -> Tuple[List[str], List[str]]:
    """
    (yongsin, gisin) for a day-master element.

    A strong day master is drained (output) and controlled (officer);
    a weak one is supported (peer) and fed (resource).
    """
    if strength == "strong":
        return [GENERATES[dm], CONTROLLED_BY[dm]], [dm, GENERATED_BY[dm]]
    if strength == "weak":
        return [dm, GENERATED_BY[dm]], [CONTROLLED_BY[dm], CONTROLS[dm]]

    yongsin = balance.missing[:BALANCED_YONGSIN_MAX] or [GENERATES[dm]]
    gisin = [
        e for e in ELEMENT_ORDER
        if e != dm and balance[e] >= BALANCED_GISIN_MIN_COUNT and e not in yongsin
    ]
    return yongsin, gisin


def analyze_oheng(chart: SajuChart) -> OhengResult:
    balance = count_elements(chart)
    strength = classify_strength(chart, balance)
    yongsin, gisin = favorable_elements(chart.day_element, strength, balance)

    logger.debug(
        "oheng: dm=%s strength=%s balance=%s yongsin=%s",
        chart.day_master, strength, balance.to_dict(), yongsin,
    )
    return OhengResult(
        balance=balance,
        day_master_element=chart.day_element,
        strength=strength,
        yongsin=yongsin,
        gisin=gisin,
    )
