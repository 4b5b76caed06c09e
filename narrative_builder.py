"""
NARRATIVE_BUILDER.PY - Template narrative for an analysis

Deterministic stand-in for the AI narrative: every sentence is picked
from tables keyed by day master, strength, yongsin/gisin and scores.
`today` is always passed in so output never depends on the wall clock.
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from fortune_scoring import FortuneScores, PersonalityAnalysis
from models.analysis_schema import AINarrative, CoreMessage, FortuneAdvice, PeerComparison
from oheng_engine import ELEMENT_INFO, OhengResult, element_label
from saju_calendar import (
    BirthInput,
    LuckPillar,
    SajuChart,
    calculate_age,
    calculate_year_pillar_for,
    current_daeun,
)

logger = logging.getLogger(__name__)

STRENGTH_LABELS = {"strong": "신강", "balanced": "중화", "weak": "신약"}

DAY_MASTER_IMAGES: Dict[str, str] = {
    "甲": "곧게 뻗는 큰 나무",
    "乙": "바람에 유연한 풀과 꽃",
    "丙": "세상을 비추는 태양",
    "丁": "어둠을 밝히는 촛불",
    "戊": "묵직한 산",
    "己": "곡식을 기르는 논밭",
    "庚": "단단한 바위와 쇠",
    "辛": "다듬어진 보석",
    "壬": "넓게 흐르는 강과 바다",
    "癸": "스며드는 이슬과 비",
}

ELEMENT_ACTIONS: Dict[str, str] = {
    "wood": "새 프로젝트를 시작하고 아침 산책으로 하루를 여세요",
    "fire": "사람들 앞에 나서서 생각을 표현하는 자리를 만드세요",
    "earth": "일정과 재정을 정리하고 기반을 다지세요",
    "metal": "미뤄둔 결정을 마무리하고 불필요한 것을 정리하세요",
    "water": "배움과 독서로 흐름을 읽는 시간을 가지세요",
}

ELEMENT_CAUTIONS: Dict[str, str] = {
    "wood": "고집을 앞세운 확장",
    "fire": "감정에 치우친 결정",
    "earth": "변화를 거부하는 태도",
    "metal": "지나친 비판과 날선 말",
    "water": "우유부단과 미루기",
}

SCORE_BANDS = [(85, "매우 좋은"), (75, "좋은"), (65, "무난한"), (0, "조심이 필요한")]

# Age-group baselines for peer comparison
PEER_BASELINES = [
    (25, {"career": 40, "stability": 35, "wealth": 30}),
    (30, {"career": 50, "stability": 45, "wealth": 40}),
    (35, {"career": 60, "stability": 55, "wealth": 50}),
    (40, {"career": 65, "stability": 60, "wealth": 55}),
    (45, {"career": 70, "stability": 65, "wealth": 60}),
    (50, {"career": 75, "stability": 70, "wealth": 65}),
    (55, {"career": 80, "stability": 75, "wealth": 70}),
    (60, {"career": 75, "stability": 80, "wealth": 75}),
    (65, {"career": 70, "stability": 85, "wealth": 80}),
]
PEER_BASELINE_SENIOR = {"career": 65, "stability": 90, "wealth": 85}

DAY_MASTER_PEER_BONUS: Dict[str, Dict[str, int]] = {
    "甲": {"career": 6, "stability": 4, "wealth": 3},
    "乙": {"career": 4, "stability": 5, "wealth": 4},
    "丙": {"career": 7, "stability": 3, "wealth": 5},
    "丁": {"career": 5, "stability": 6, "wealth": 4},
    "戊": {"career": 4, "stability": 7, "wealth": 5},
    "己": {"career": 3, "stability": 6, "wealth": 6},
    "庚": {"career": 6, "stability": 5, "wealth": 6},
    "辛": {"career": 5, "stability": 6, "wealth": 5},
    "壬": {"career": 6, "stability": 4, "wealth": 5},
    "癸": {"career": 4, "stability": 5, "wealth": 4},
}


def _band(score: int) -> str:
    for floor, label in SCORE_BANDS:
        if score >= floor:
            return label
    return SCORE_BANDS[-1][1]


# =============================================================================
# PEER COMPARISON
# =============================================================================

def _percentile(score: float, baseline: int) -> int:
    return max(1, min(99, round(50 - (score - baseline) * 1.5)))


def _peer_baseline(age: int) -> Dict[str, int]:
    for upper, stats in PEER_BASELINES:
        if age < upper:
            return stats
    return PEER_BASELINE_SENIOR


def peer_comparison(
    chart: SajuChart,
    oheng: OhengResult,
    scores: FortuneScores,
    age: int,
    gender: Optional[str] = None,
) -> PeerComparison:
    counts = oheng.balance.counts
    spread = max(counts.values()) - min(counts.values())
    bonus = DAY_MASTER_PEER_BONUS[chart.day_master]
    baseline = _peer_baseline(age)

    stability = max(0, 100 - spread * 12) + (10 if counts["earth"] >= 2 else 0)
    stability = min(100, stability)

    career = _percentile(scores.career + bonus["career"] + (4 if counts["wood"] >= 2 else 0), baseline["career"])
    decision = _percentile(stability + bonus["stability"], baseline["stability"])
    wealth = _percentile(scores.wealth + bonus["wealth"] + (4 if counts["metal"] >= 2 else 0), baseline["wealth"])

    risk = 50
    if counts["fire"] >= 3:
        risk += 10
    if counts["metal"] == 0:
        risk += 15
    elif counts["metal"] <= 1:
        risk += 8
    if counts["water"] >= 3:
        risk += 15
    if 45 <= age <= 52:
        risk += 8
    elif 25 <= age <= 35:
        risk += 5
    exposure = "low" if risk < 40 else "high" if risk > 70 else "average"

    who = f"{age}세 {'남성' if gender == 'male' else '여성' if gender == 'female' else ''}".strip()
    highlights: List[str] = []
    if career <= 25:
        highlights.append(f"커리어 성숙도 상위 {career}%")
    if decision <= 25:
        highlights.append("결정 안정성 우수")
    if wealth <= 35:
        highlights.append(f"재물 관리 능력 상위 {wealth}%")
    if exposure == "high":
        highlights.append("단, 위험 노출도 주의 필요")
    elif exposure == "low":
        highlights.append("위험 관리 능력 양호")

    if highlights:
        summary = f"{who} 동년배 기준: " + ". ".join(highlights) + "."
    else:
        summary = f"{who} 동년배 평균 수준의 안정적인 상태입니다. 꾸준한 성장을 통해 상위권 진입이 가능합니다."

    return PeerComparison(
        career_maturity=career,
        decision_stability=decision,
        wealth_management=wealth,
        risk_exposure=exposure,
        summary=summary,
    )


# =============================================================================
# NARRATIVE
# =============================================================================

def _core_message(chart: SajuChart, oheng: OhengResult, scores: FortuneScores, keyword: str) -> CoreMessage:
    weakest = min(("wealth", "love", "career", "health"), key=lambda c: getattr(scores, c))
    concern_text = {
        "wealth": "돈이 모이지 않는다고 느끼고 있지 않나요?",
        "love": "관계에서 마음이 엇갈린다고 느끼고 있지 않나요?",
        "career": "지금 하는 일이 맞는 길인지 고민하고 있지 않나요?",
        "health": "몸과 마음이 쉽게 지친다고 느끼고 있지 않나요?",
    }[weakest]
    yong = oheng.yongsin[0]
    return CoreMessage(
        concern=concern_text,
        hook=f"당신은 '{keyword}', {DAY_MASTER_IMAGES[chart.day_master]}의 기운을 타고났습니다.",
        insight=f"{element_label(yong)} 기운을 채우면 막힌 흐름이 풀립니다.",
        urgency="올해 하반기의 선택이 앞으로 3년의 방향을 정합니다.",
        cta="프리미엄 분석에서 구체적인 시기와 실행 전략을 확인하세요.",
    )


def _fortune_advice(oheng: OhengResult, scores: FortuneScores) -> FortuneAdvice:
    yong = oheng.yongsin[0]
    gi = oheng.gisin[0] if oheng.gisin else None
    caution = f" {ELEMENT_CAUTIONS[gi]}은 피하세요." if gi else ""
    return FortuneAdvice(
        overall=(
            f"전체적으로 {_band(scores.overall)} 흐름입니다. "
            f"{ELEMENT_ACTIONS[yong]}.{caution}"
        ),
        wealth=(
            f"재물운은 {_band(scores.wealth)} 편입니다. "
            f"{element_label(yong)} 기운의 분야에 꾸준히 투자하고 충동 지출을 줄이세요."
        ),
        love=(
            f"애정운은 {_band(scores.love)} 편입니다. "
            "상대의 속도에 맞추고 솔직한 대화를 늘리세요."
        ),
        career=(
            f"직업운은 {_band(scores.career)} 편입니다. "
            "전문성을 보여줄 수 있는 결과물을 하나 완성하세요."
        ),
        health=(
            f"건강운은 {_band(scores.health)} 편입니다. "
            f"{ELEMENT_INFO[yong]['direction']} 방향의 산책과 규칙적인 수면이 도움이 됩니다."
        ),
    )


def build_narrative(
    birth: BirthInput,
    chart: SajuChart,
    oheng: OhengResult,
    scores: FortuneScores,
    personality: PersonalityAnalysis,
    daeun: List[LuckPillar],
    today: date,
) -> AINarrative:
    dm = chart.day_master
    strength = STRENGTH_LABELS[oheng.strength]
    yong = oheng.yongsin[0]
    yong_info = ELEMENT_INFO[yong]
    age = calculate_age(chart.solar_date or birth.birth_date, today)
    luck = current_daeun(daeun, age)
    this_year = calculate_year_pillar_for(today.year)
    missing = oheng.balance.missing

    traits = ", ".join(personality.saju_traits[:3])
    reading = f"{personality.core_keyword}. {traits}의 성향을 가졌습니다."
    if personality.cross_analysis is not None:
        reading += f" MBTI와의 일치도는 {personality.cross_analysis.match_rate}%입니다."

    if luck is not None:
        ten_year = (
            f"현재 {luck.age}세부터 시작된 {luck.pillar.korean} 대운 구간입니다. "
            f"{element_label(luck.pillar.element)} 기운이 10년의 배경이 됩니다."
        )
    else:
        ten_year = f"첫 대운은 {daeun[0].age}세에 시작합니다. 그 전까지는 타고난 원국의 기운이 그대로 드러납니다."

    return AINarrative(
        core_message=_core_message(chart, oheng, scores, personality.core_keyword),
        personality_reading=reading,
        peer_comparison=peer_comparison(chart, oheng, scores, age, birth.gender),
        fortune_advice=_fortune_advice(oheng, scores),
        warning_advice=(
            f"{', '.join(element_label(e) for e in oheng.gisin) or '과한 기운'}을 경계하세요. "
            f"특히 {ELEMENT_CAUTIONS[oheng.gisin[0] if oheng.gisin else yong]}이 문제를 키웁니다."
        ),
        action_plan=[
            f"이번 주: {ELEMENT_ACTIONS[yong]}",
            f"이번 달: {yong_info['color']} 계열 소품을 가까이 두고 {yong_info['direction']}을 활용하세요",
            f"올해: 행운의 숫자 {yong_info['numbers'][0]}, {yong_info['numbers'][1]}이 들어간 날에 중요한 약속을 잡으세요",
        ],
        life_path=(
            f"{DAY_MASTER_IMAGES[dm]}처럼 {strength} 사주입니다. "
            f"{element_label(yong)} 기운을 만날 때 인생의 전환점이 열립니다."
        ),
        day_master_analysis=(
            f"일간 {dm}({chart.day.korean[0]})은 {element_label(chart.day_element)}의 기운이며 {strength}으로 분류됩니다. "
            + (f"원국에 {', '.join(element_label(e) for e in missing)} 기운이 없습니다." if missing
               else "오행이 고르게 갖춰져 있습니다.")
        ),
        ten_year_fortune=ten_year,
        yearly_fortune=(
            f"{today.year}년은 {this_year.korean}년으로 {element_label(this_year.element)} 기운이 들어옵니다. "
            + ("용신과 맞닿아 기회가 늘어납니다." if this_year.element in oheng.yongsin
               else "꾸준함으로 기반을 다지는 해입니다.")
        ),
        monthly_fortune=(
            f"{today.month}월에는 {element_label(yong)} 기운을 의식적으로 채우세요. "
            "월 중순 이후 흐름이 좋아집니다."
        ),
        relationship_analysis=(
            f"{element_label(chart.day_element)} 일간은 {element_label(yong)} 기운의 사람과 편안합니다. "
            "갈등이 생기면 감정보다 사실을 먼저 나누세요."
        ),
        career_guidance=(
            f"{element_label(yong)} 기운의 분야가 잘 맞습니다. "
            f"직업운 점수 {scores.career}점을 살려 전문 영역을 좁히세요."
        ),
        wealth_strategy=(
            f"재물운 점수는 {scores.wealth}점입니다. "
            "수입의 일정 비율을 자동 저축으로 먼저 떼어두는 구조가 맞습니다."
        ),
        health_advice=(
            f"건강운 점수는 {scores.health}점입니다. "
            f"{element_label(oheng.balance.dominant)} 기운이 치우치지 않도록 휴식 리듬을 지키세요."
        ),
        spiritual_guidance=(
            f"{yong_info['color']}과 {yong_info['direction']}이 마음을 안정시킵니다. "
            "하루 10분 조용히 생각을 정리하는 시간을 가지세요."
        ),
    )
