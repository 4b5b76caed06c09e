"""
COMPATIBILITY_ENGINE.PY - Pairwise and Group Compatibility

Pair score comes from the relation between the two day elements:

    same         -> 70
    generating   -> 88   (either direction)
    controlling  -> 55   (direction only changes the narrative)
    neutral      -> 75

Group harmony is the mean pair score adjusted by day-branch relations
(six harmony, triple harmony, clashes), clamped to 0..100.

Group size must be 2..5; anything else raises GroupSizeError.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Optional

from core.invariants import (
    ELEMENT_ORDER,
    GROUP_MIN_MEMBERS,
    GROUP_MAX_MEMBERS,
    PAIR_SCORE_SAME,
    PAIR_SCORE_GENERATING,
    PAIR_SCORE_CONTROLLING,
    PAIR_SCORE_NEUTRAL,
    SIX_HARMONY_BONUS,
    CLASH_PENALTY,
    TRIPLE_HARMONY_BONUS,
    PAIR_WARNING_BELOW,
)
from oheng_engine import element_label, relation_between
from saju_calendar import SajuChart

logger = logging.getLogger(__name__)

PAIR_SCORES = {
    "same": PAIR_SCORE_SAME,
    "generating": PAIR_SCORE_GENERATING,
    "controlling": PAIR_SCORE_CONTROLLING,
    "neutral": PAIR_SCORE_NEUTRAL,
}

# 육합
SIX_HARMONY: Dict[str, str] = {
    "子": "丑", "丑": "子",
    "寅": "亥", "亥": "寅",
    "卯": "戌", "戌": "卯",
    "辰": "酉", "酉": "辰",
    "巳": "申", "申": "巳",
    "午": "未", "未": "午",
}

# 충
BRANCH_CLASH: Dict[str, str] = {
    "子": "午", "午": "子",
    "丑": "未", "未": "丑",
    "寅": "申", "申": "寅",
    "卯": "酉", "酉": "卯",
    "辰": "戌", "戌": "辰",
    "巳": "亥", "亥": "巳",
}

# 삼합; two of three present counts as a (half) harmony
TRIPLE_HARMONY: Dict[str, List[str]] = {
    "water": ["申", "子", "辰"],
    "wood": ["亥", "卯", "未"],
    "fire": ["寅", "午", "戌"],
    "metal": ["巳", "酉", "丑"],
}
TRIPLE_HARMONY_MIN_MATCH = 2

ROLE_TRAITS: Dict[str, Dict[str, str]] = {
    "wood": {"role": "개척자/선구자", "strength": "새로운 아이디어와 시작을 이끔"},
    "fire": {"role": "동기부여자/리더", "strength": "열정으로 팀에 활력을 불어넣음"},
    "earth": {"role": "조율자/중재자", "strength": "갈등을 조율하고 안정감 제공"},
    "metal": {"role": "실행자/완결자", "strength": "결단력 있게 마무리를 담당"},
    "water": {"role": "전략가/분석가", "strength": "유연하게 상황을 파악하고 조언"},
}

GROUP_STRENGTHS: Dict[str, str] = {
    "wood": "성장 지향적이고 새로운 도전을 두려워하지 않는 그룹",
    "fire": "열정과 추진력이 넘치는 활기찬 그룹",
    "earth": "안정적이고 신뢰를 기반으로 움직이는 그룹",
    "metal": "결단력 있고 실행력이 강한 그룹",
    "water": "유연하고 지혜로운 전략적 그룹",
}


class GroupSizeError(ValueError):
    """Group analysis needs 2..5 members."""


@dataclass(frozen=True)
class GroupMember:
    name: str
    chart: SajuChart

    @property
    def element(self) -> str:
        return self.chart.day_element

    @property
    def branch(self) -> str:
        return self.chart.day.branch


@dataclass(frozen=True)
class PairCompatibility:
    member1: str
    member2: str
    relation: str
    score: int
    description: str
    branch_relation: Optional[str] = None  # six_harmony | clash

    def to_dict(self) -> Dict[str, object]:
        return {
            "member1": self.member1,
            "member2": self.member2,
            "relation": self.relation,
            "score": self.score,
            "description": self.description,
            "branch_relation": self.branch_relation,
        }


@dataclass
class GroupCompatibility:
    members: List[Dict[str, object]]
    pairs: List[PairCompatibility]
    overall_harmony: int
    dominant_element: str
    missing_element: Optional[str]
    group_strength: str
    best_pair: Optional[PairCompatibility] = None
    challenging_pair: Optional[PairCompatibility] = None
    warnings: List[Dict[str, object]] = field(default_factory=list)
    tips: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "members": self.members,
            "pairs": [p.to_dict() for p in self.pairs],
            "overall_harmony": self.overall_harmony,
            "dominant_element": self.dominant_element,
            "missing_element": self.missing_element,
            "group_strength": self.group_strength,
            "best_pair": self.best_pair.to_dict() if self.best_pair else None,
            "challenging_pair": self.challenging_pair.to_dict() if self.challenging_pair else None,
            "warnings": self.warnings,
            "tips": self.tips,
        }


# =============================================================================
# PAIRS
# =============================================================================

def pair_score(element1: str, element2: str) -> int:
    kind, _ = relation_between(element1, element2)
    return PAIR_SCORES[kind]


def _describe(name1: str, e1: str, name2: str, e2: str, kind: str, direction: Optional[str]) -> str:
    if kind == "same":
        return f"{name1}님과 {name2}님은 같은 {element_label(e1)} 기운으로 서로를 잘 이해하지만 경쟁할 수 있습니다."
    if kind == "generating":
        giver, receiver = (name1, name2) if direction == "forward" else (name2, name1)
        return f"{giver}님이 {receiver}님을 북돋아 주는 상생 관계입니다."
    if kind == "controlling":
        ruler, ruled = (name1, name2) if direction == "forward" else (name2, name1)
        return f"{ruler}님이 {ruled}님을 누르기 쉬운 상극 관계로, 배려가 필요합니다."
    return f"{name1}님과 {name2}님은 서로 독립적으로 작용하는 관계입니다."


def branch_relation(branch1: str, branch2: str) -> Optional[str]:
    if SIX_HARMONY.get(branch1) == branch2:
        return "six_harmony"
    if BRANCH_CLASH.get(branch1) == branch2:
        return "clash"
    return None


def analyze_pair(m1: GroupMember, m2: GroupMember) -> PairCompatibility:
    kind, direction = relation_between(m1.element, m2.element)
    return PairCompatibility(
        member1=m1.name,
        member2=m2.name,
        relation=kind,
        score=PAIR_SCORES[kind],
        description=_describe(m1.name, m1.element, m2.name, m2.element, kind, direction),
        branch_relation=branch_relation(m1.branch, m2.branch),
    )


# =============================================================================
# GROUP
# =============================================================================

def validate_group_size(count: int) -> None:
    if not GROUP_MIN_MEMBERS <= count <= GROUP_MAX_MEMBERS:
        raise GroupSizeError(
            f"Group must have {GROUP_MIN_MEMBERS}-{GROUP_MAX_MEMBERS} members, got {count}"
        )


def dominant_element(elements: List[str]) -> str:
    """Mode of the member elements, ties broken by ELEMENT_ORDER."""
    counts = Counter(elements)
    return max(ELEMENT_ORDER, key=lambda e: counts.get(e, 0))


def missing_element(elements: List[str]) -> Optional[str]:
    for e in ELEMENT_ORDER:
        if e not in elements:
            return e
    return None


def count_triple_harmonies(branches: List[str]) -> int:
    present = set(branches)
    return sum(
        1 for members in TRIPLE_HARMONY.values()
        if len(present.intersection(members)) >= TRIPLE_HARMONY_MIN_MATCH
    )


def group_harmony(pairs: List[PairCompatibility], branches: List[str]) -> int:
    mean = sum(p.score for p in pairs) / len(pairs)
    harmonies = sum(1 for p in pairs if p.branch_relation == "six_harmony")
    clashes = sum(1 for p in pairs if p.branch_relation == "clash")
    adjusted = (
        mean
        + SIX_HARMONY_BONUS * harmonies
        - CLASH_PENALTY * clashes
        + TRIPLE_HARMONY_BONUS * count_triple_harmonies(branches)
    )
    return int(max(0, min(100, round(adjusted))))


def assign_roles(members: List[GroupMember]) -> List[Dict[str, object]]:
    return [
        {
            "name": m.name,
            "day_master": m.chart.day_master,
            "element": m.element,
            "role": ROLE_TRAITS[m.element]["role"],
            "strength": ROLE_TRAITS[m.element]["strength"],
        }
        for m in members
    ]


def _warnings(members: List[GroupMember], pairs: List[PairCompatibility]) -> List[Dict[str, object]]:
    warnings: List[Dict[str, object]] = []

    for p in pairs:
        if p.score < PAIR_WARNING_BELOW:
            warnings.append({
                "members": [p.member1, p.member2],
                "issue": "상극 관계로 의견 충돌 가능성이 높습니다",
                "prevention": "결정 전에 서로의 입장을 먼저 정리해 공유하세요",
            })
        if p.branch_relation == "clash":
            warnings.append({
                "members": [p.member1, p.member2],
                "issue": "일지 충으로 생활 리듬이 엇갈리기 쉽습니다",
                "prevention": "일정과 역할을 미리 합의하세요",
            })

    by_stem: Dict[str, List[str]] = {}
    for m in members:
        by_stem.setdefault(m.chart.day_master, []).append(m.name)
    for names in by_stem.values():
        if len(names) >= 2:
            warnings.append({
                "members": names,
                "issue": "같은 일간으로 경쟁 의식이 생길 수 있습니다",
                "prevention": "서로 다른 영역에서 활동하도록 역할을 분리하세요",
            })

    fire = [m.name for m in members if m.element == "fire"]
    if len(fire) >= 2:
        warnings.append({
            "members": fire,
            "issue": "열정이 충돌하여 과열될 수 있습니다",
            "prevention": "토론 시 쿨다운 시간을 두고, 중재자를 지정하세요",
        })
    return warnings


def _tips(dominant: str, missing: Optional[str]) -> List[str]:
    tips = [f"그룹의 중심 기운은 {element_label(dominant)}입니다. {ROLE_TRAITS[dominant]['strength']} 역할을 살리세요."]
    if missing:
        tips.append(
            f"{element_label(missing)} 기운이 없습니다. {ROLE_TRAITS[missing]['role']} 역할을 의식적으로 나눠 맡으세요."
        )
    return tips


def analyze_group(members: List[GroupMember]) -> GroupCompatibility:
    """
    Group compatibility report.

    Raises:
        GroupSizeError: member count outside 2..5
    """
    validate_group_size(len(members))

    pairs = [analyze_pair(a, b) for a, b in combinations(members, 2)]
    elements = [m.element for m in members]
    branches = [m.branch for m in members]

    harmony = group_harmony(pairs, branches)
    dominant = dominant_element(elements)
    missing = missing_element(elements)

    strength = GROUP_STRENGTHS[dominant]
    if harmony >= 80:
        strength += ". 전체적인 조화도가 매우 높습니다."
    elif harmony >= 65:
        strength += ". 적절한 균형을 이루고 있습니다."
    else:
        strength += ". 서로의 차이를 이해하는 노력이 필요합니다."

    ranked = sorted(pairs, key=lambda p: p.score)
    return GroupCompatibility(
        members=assign_roles(members),
        pairs=pairs,
        overall_harmony=harmony,
        dominant_element=dominant,
        missing_element=missing,
        group_strength=strength,
        best_pair=ranked[-1],
        challenging_pair=ranked[0],
        warnings=_warnings(members, pairs),
        tips=_tips(dominant, missing),
    )


def analyze_couple(m1: GroupMember, m2: GroupMember) -> GroupCompatibility:
    """Two-person compatibility is a group of two."""
    return analyze_group([m1, m2])
