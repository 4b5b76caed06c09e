"""
FORTUNE_SCORING.PY - Score & Personality Generator

Deterministic category scores and table-driven personality analysis.

SCORE RULE:
    score = clamp(base(strength) + (hash mod 20 - 10) + category_bonus, 50, 95)
    hash  = stable 32-bit rolling hash of day_stem + day_branch + category

Same chart + same category always yields the same score; nothing here
reads the clock or a random source.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from core.invariants import (
    SCORE_MIN,
    SCORE_MAX,
    SCORE_VARIANCE_SPAN,
    SCORE_CATEGORIES,
    BASE_SCORE_BY_STRENGTH,
    MBTI_DEFAULT_MATCH_RATE,
    MBTI_HIGH_CONSISTENCY_MIN,
    MBTI_COMPLEMENTARY_MIN,
)
from oheng_engine import OhengResult
from saju_calendar import SajuChart

logger = logging.getLogger(__name__)

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


def stable_hash(text: str) -> int:
    """Polynomial rolling hash (h * 31 + c), wrapped to signed 32 bits, absolute value."""
    h = 0
    for ch in text:
        h = (((h << 5) - h) + ord(ch)) & _INT32_MASK
    if h & _INT32_SIGN:
        h -= 1 << 32
    return abs(h)


def clamp_score(value: int) -> int:
    return max(SCORE_MIN, min(SCORE_MAX, value))


@dataclass(frozen=True)
class FortuneScores:
    overall: int
    wealth: int
    love: int
    career: int
    health: int

    def to_dict(self) -> Dict[str, int]:
        return {c: getattr(self, c) for c in SCORE_CATEGORIES}


def category_bonuses(oheng: OhengResult) -> Dict[str, int]:
    balance = oheng.balance

    if balance["metal"] >= 2:
        wealth = 8
    elif balance["metal"] >= 1:
        wealth = 4
    else:
        wealth = 0

    if balance["wood"] >= 2:
        career = 8
    elif balance["fire"] >= 2:
        career = 6
    else:
        career = 0

    if balance["fire"] >= 2:
        love = 8
    elif balance["water"] >= 2:
        love = 5
    else:
        love = 0

    health = 10 if oheng.strength == "balanced" else 0

    return {"overall": 0, "wealth": wealth, "love": love, "career": career, "health": health}


def category_score(chart: SajuChart, oheng: OhengResult, category: str, bonus: int = 0) -> int:
    base = BASE_SCORE_BY_STRENGTH[oheng.strength]
    h = stable_hash(chart.day.stem + chart.day.branch + category)
    variance = h % SCORE_VARIANCE_SPAN - SCORE_VARIANCE_SPAN // 2
    return clamp_score(base + variance + bonus)


def calculate_scores(chart: SajuChart, oheng: OhengResult) -> FortuneScores:
    bonuses = category_bonuses(oheng)
    return FortuneScores(**{
        c: category_score(chart, oheng, c, bonuses[c]) for c in SCORE_CATEGORIES
    })


# =============================================================================
# PERSONALITY TABLES
# =============================================================================

DAY_STEM_TRAITS: Dict[str, List[str]] = {
    "甲": ["추진력이 강함", "리더십 있음", "정의감이 강함", "때로는 고집스러움"],
    "乙": ["유연하고 적응력 높음", "협조적", "섬세함", "우유부단할 수 있음"],
    "丙": ["밝고 활기참", "열정적", "사교적", "충동적일 수 있음"],
    "丁": ["섬세하고 따뜻함", "지적이고 분석적", "헌신적", "내성적일 수 있음"],
    "戊": ["듬직하고 신뢰감", "책임감 강함", "실용적", "보수적일 수 있음"],
    "己": ["배려심 깊음", "인내심 강함", "꼼꼼함", "소극적일 수 있음"],
    "庚": ["결단력 있음", "정의로움", "실행력 강함", "완고할 수 있음"],
    "辛": ["섬세하고 세련됨", "미적 감각 뛰어남", "완벽주의", "예민할 수 있음"],
    "壬": ["지혜롭고 포용적", "창의적", "유연함", "변덕스러울 수 있음"],
    "癸": ["직관적", "감수성 풍부", "깊은 사고", "감정 기복 있을 수 있음"],
}

MBTI_TRAITS: Dict[str, List[str]] = {
    "INTJ": ["전략적 사고", "독립적", "혁신적"],
    "INTP": ["논리적", "분석적", "호기심 많음"],
    "ENTJ": ["리더십", "결단력", "효율 중시"],
    "ENTP": ["창의적", "논쟁적", "다재다능"],
    "INFJ": ["통찰력", "이상주의", "헌신적"],
    "INFP": ["이상주의", "창의적", "공감 능력"],
    "ENFJ": ["카리스마", "이타적", "설득력"],
    "ENFP": ["열정적", "창의적", "사교적"],
    "ISTJ": ["신뢰성", "체계적", "책임감"],
    "ISFJ": ["배려심", "충실함", "헌신적"],
    "ESTJ": ["조직적", "실용적", "리더십"],
    "ESFJ": ["사교적", "협조적", "배려심"],
    "ISTP": ["논리적", "실용적", "독립적"],
    "ISFP": ["예술적", "온화함", "적응력"],
    "ESTP": ["활동적", "현실적", "대담함"],
    "ESFP": ["사교적", "낙천적", "유연함"],
}

# Sparse: absent pairs fall back to MBTI_DEFAULT_MATCH_RATE
STEM_MBTI_MATCH: Dict[str, Dict[str, int]] = {
    "甲": {"ENTJ": 90, "ESTJ": 85, "INTJ": 82, "ENTP": 78},
    "乙": {"INFP": 88, "ENFP": 85, "ISFP": 80, "INFJ": 78},
    "丙": {"ENFP": 90, "ESFP": 88, "ENFJ": 85, "ESTP": 82},
    "丁": {"INTJ": 88, "INFJ": 90, "INTP": 82, "INFP": 80},
    "戊": {"ISTJ": 90, "ESTJ": 88, "ISFJ": 85, "ESFJ": 82},
    "己": {"ISFJ": 90, "ESFJ": 88, "INFJ": 82, "ISTJ": 80},
    "庚": {"ENTJ": 88, "ESTJ": 90, "INTJ": 85, "ISTJ": 82},
    "辛": {"INTJ": 85, "INFJ": 82, "ISFP": 88, "INFP": 80},
    "壬": {"ENTP": 90, "INTP": 88, "ENFP": 82, "INFP": 80},
    "癸": {"INFP": 90, "INFJ": 88, "INTP": 85, "ISFP": 82},
}

CROSS_ANALYSIS_TIERS = {
    "high_consistency": {
        "synergy": "높은 일관성 - 내면과 외면이 조화롭습니다. 자신의 강점을 잘 발휘할 수 있습니다.",
        "conflict": "과도한 일관성으로 인해 경직될 수 있습니다. 다양한 관점 수용이 필요합니다.",
        "resolution": "새로운 시도와 다른 의견에 열린 자세를 가지세요.",
    },
    "complementary": {
        "synergy": "보완적 구조 - 서로 다른 면이 균형을 이룹니다.",
        "conflict": "내면 갈등이 있을 수 있어 중요 결정 시 혼란이 올 수 있습니다.",
        "resolution": "중요 결정 전 24시간 숙고하고, 신뢰할 수 있는 사람의 조언을 구하세요.",
    },
    "unique_combination": {
        "synergy": "독특한 조합 - 다양한 가능성이 있습니다.",
        "conflict": "자기 이해에 시간이 필요할 수 있습니다.",
        "resolution": "자기 성찰의 시간을 갖고, 다양한 경험을 통해 자신을 알아가세요.",
    },
}

CORE_KEYWORDS: Dict[str, Dict[str, str]] = {
    "甲": {"ENTJ": "정복하는 리더", "ESTJ": "실행하는 장군", "default": "성장하는 나무"},
    "乙": {"INFP": "꿈꾸는 풀꽃", "ENFP": "춤추는 덩굴", "default": "유연한 풀"},
    "丙": {"ENFP": "빛나는 태양", "ESFP": "열정의 불꽃", "default": "뜨거운 태양"},
    "丁": {"INTJ": "따뜻한 전략가", "INFJ": "섬세한 촛불", "default": "조용한 촛불"},
    "戊": {"ISTJ": "든든한 산", "ESTJ": "굳건한 대지", "default": "믿음직한 대지"},
    "己": {"ISFJ": "기르는 땅", "ESFJ": "품는 대지", "default": "부드러운 흙"},
    "庚": {"ENTJ": "결단의 검", "ESTJ": "정의의 도끼", "default": "날카로운 쇠"},
    "辛": {"INTJ": "빛나는 보석", "ISFP": "섬세한 귀금속", "default": "정교한 금"},
    "壬": {"ENTP": "흐르는 강", "INTP": "깊은 바다", "default": "넓은 바다"},
    "癸": {"INFP": "촉촉한 이슬", "INFJ": "고요한 샘물", "default": "맑은 시냇물"},
}


@dataclass(frozen=True)
class CrossAnalysis:
    match_rate: int
    tier: str
    synergy: str
    conflict: str
    resolution: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "match_rate": self.match_rate,
            "tier": self.tier,
            "synergy": self.synergy,
            "conflict": self.conflict,
            "resolution": self.resolution,
        }


@dataclass(frozen=True)
class PersonalityAnalysis:
    saju_traits: List[str]
    core_keyword: str
    mbti_traits: Optional[List[str]] = None
    cross_analysis: Optional[CrossAnalysis] = None
    blood_type: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "saju_traits": list(self.saju_traits),
            "mbti_traits": list(self.mbti_traits) if self.mbti_traits else None,
            "cross_analysis": self.cross_analysis.to_dict() if self.cross_analysis else None,
            "core_keyword": self.core_keyword,
            "blood_type": self.blood_type,
        }


def normalize_mbti(mbti: Optional[str]) -> Optional[str]:
    """Upper-case a known MBTI code; unknown or empty input yields None."""
    if not mbti:
        return None
    code = mbti.strip().upper()
    return code if code in MBTI_TRAITS else None


def match_tier(rate: int) -> str:
    if rate >= MBTI_HIGH_CONSISTENCY_MIN:
        return "high_consistency"
    if rate >= MBTI_COMPLEMENTARY_MIN:
        return "complementary"
    return "unique_combination"


def cross_analyze(day_stem: str, mbti: str) -> CrossAnalysis:
    rate = STEM_MBTI_MATCH.get(day_stem, {}).get(mbti, MBTI_DEFAULT_MATCH_RATE)
    tier = match_tier(rate)
    return CrossAnalysis(match_rate=rate, tier=tier, **CROSS_ANALYSIS_TIERS[tier])


def core_keyword(day_stem: str, mbti: Optional[str] = None) -> str:
    keywords = CORE_KEYWORDS.get(day_stem, {})
    if mbti and mbti in keywords:
        return keywords[mbti]
    return keywords.get("default", "독자적 존재")


def analyze_personality(
    chart: SajuChart,
    mbti: Optional[str] = None,
    blood_type: Optional[str] = None,
) -> PersonalityAnalysis:
    stem = chart.day.stem
    code = normalize_mbti(mbti)
    if mbti and code is None:
        logger.debug("Ignoring unknown MBTI %r", mbti)

    return PersonalityAnalysis(
        saju_traits=list(DAY_STEM_TRAITS[stem]),
        core_keyword=core_keyword(stem, code),
        mbti_traits=list(MBTI_TRAITS[code]) if code else None,
        cross_analysis=cross_analyze(stem, code) if code else None,
        blood_type=blood_type.upper() if blood_type else None,
    )
