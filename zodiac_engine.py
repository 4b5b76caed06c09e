"""
ZODIAC_ENGINE.PY - Western zodiac cross-analysis

Sign lookup by birth month/day, sign-to-sign compatibility, and the
harmony between a sign's classical element and the chart's dominant
oheng element (air is read as metal).
"""

from datetime import date
from typing import Dict, List

from oheng_engine import CONTROLS, GENERATES, element_label

# (sign, first month, first day) in calendar order; a sign runs until the next starts
SIGN_STARTS = [
    ("capricorn", 1, 1),
    ("aquarius", 1, 20),
    ("pisces", 2, 19),
    ("aries", 3, 21),
    ("taurus", 4, 20),
    ("gemini", 5, 21),
    ("cancer", 6, 22),
    ("leo", 7, 23),
    ("virgo", 8, 23),
    ("libra", 9, 23),
    ("scorpio", 10, 23),
    ("sagittarius", 11, 22),
    ("capricorn", 12, 22),
]

SIGNS: Dict[str, Dict[str, object]] = {
    "aries": {"name": "양자리", "symbol": "♈", "element": "fire",
              "keywords": ["리더십", "열정", "용기", "개척정신"], "strengths": ["용기", "결단력"]},
    "taurus": {"name": "황소자리", "symbol": "♉", "element": "earth",
               "keywords": ["안정", "인내", "감각", "실용성"], "strengths": ["인내심", "신뢰성"]},
    "gemini": {"name": "쌍둥이자리", "symbol": "♊", "element": "air",
               "keywords": ["소통", "지적호기심", "적응력", "다재다능"], "strengths": ["소통능력", "적응력"]},
    "cancer": {"name": "게자리", "symbol": "♋", "element": "water",
               "keywords": ["가정", "감성", "보호", "직관"], "strengths": ["공감능력", "직관력"]},
    "leo": {"name": "사자자리", "symbol": "♌", "element": "fire",
            "keywords": ["자신감", "창조성", "카리스마", "관대함"], "strengths": ["창의성", "자신감"]},
    "virgo": {"name": "처녀자리", "symbol": "♍", "element": "earth",
              "keywords": ["분석", "완벽", "봉사", "실용성"], "strengths": ["분석력", "근면함"]},
    "libra": {"name": "천칭자리", "symbol": "♎", "element": "air",
              "keywords": ["균형", "조화", "정의", "파트너십"], "strengths": ["외교력", "공정함"]},
    "scorpio": {"name": "전갈자리", "symbol": "♏", "element": "water",
                "keywords": ["열정", "통찰", "변화", "집중력"], "strengths": ["통찰력", "결단력"]},
    "sagittarius": {"name": "사수자리", "symbol": "♐", "element": "fire",
                    "keywords": ["자유", "모험", "철학", "낙관"], "strengths": ["낙관성", "정직함"]},
    "capricorn": {"name": "염소자리", "symbol": "♑", "element": "earth",
                  "keywords": ["책임", "야망", "인내", "현실성"], "strengths": ["책임감", "인내심"]},
    "aquarius": {"name": "물병자리", "symbol": "♒", "element": "air",
                 "keywords": ["독창성", "자유", "인도주의", "혁신"], "strengths": ["독창성", "독립성"]},
    "pisces": {"name": "물고기자리", "symbol": "♓", "element": "water",
               "keywords": ["직관", "공감", "예술", "영성"], "strengths": ["직관력", "공감 능력"]},
}

YEAR_FORECASTS: Dict[str, str] = {
    "aries": "새로운 시작의 해입니다. 과감한 도전이 성공을 가져옵니다.",
    "taurus": "안정과 풍요의 해입니다. 꾸준함이 보상받습니다.",
    "gemini": "소통과 학습의 해입니다. 새로운 지식이 기회를 열어줍니다.",
    "cancer": "가정과 내면 성장의 해입니다. 감정의 지혜를 얻습니다.",
    "leo": "빛나는 성취의 해입니다. 리더십이 인정받습니다.",
    "virgo": "완성과 정리의 해입니다. 세심함이 빛을 발합니다.",
    "libra": "관계와 협력의 해입니다. 파트너십이 발전합니다.",
    "scorpio": "변화와 재탄생의 해입니다. 깊은 통찰을 얻습니다.",
    "sagittarius": "확장과 모험의 해입니다. 새로운 세계가 열립니다.",
    "capricorn": "성취와 인정의 해입니다. 노력이 결실을 맺습니다.",
    "aquarius": "혁신과 자유의 해입니다. 독창성이 빛납니다.",
    "pisces": "직관과 영성의 해입니다. 내면의 목소리를 따르세요.",
}

_ORDER = ["aries", "taurus", "gemini", "cancer", "leo", "virgo",
          "libra", "scorpio", "sagittarius", "capricorn", "aquarius", "pisces"]

# Row/column order follows _ORDER (0-100)
_MATRIX: List[List[int]] = [
    [65, 55, 80, 45, 90, 50, 75, 60, 95, 45, 80, 55],
    [55, 70, 50, 90, 60, 95, 70, 85, 45, 95, 50, 85],
    [80, 50, 70, 55, 85, 50, 95, 45, 80, 50, 95, 55],
    [45, 90, 55, 75, 60, 85, 55, 95, 45, 70, 50, 95],
    [90, 60, 85, 60, 70, 55, 85, 55, 95, 50, 70, 55],
    [50, 95, 50, 85, 55, 70, 60, 80, 50, 95, 50, 70],
    [75, 70, 95, 55, 85, 60, 70, 60, 85, 55, 95, 65],
    [60, 85, 45, 95, 55, 80, 60, 75, 50, 80, 50, 95],
    [95, 45, 80, 45, 95, 50, 85, 50, 75, 55, 90, 55],
    [45, 95, 50, 70, 50, 95, 55, 80, 55, 70, 60, 75],
    [80, 50, 95, 50, 70, 50, 95, 50, 90, 60, 70, 65],
    [55, 85, 55, 95, 55, 70, 65, 95, 55, 75, 65, 70],
]

# Classical element -> oheng element
ZODIAC_TO_OHENG = {"fire": "fire", "earth": "earth", "air": "metal", "water": "water"}


def zodiac_sign(birth: date) -> str:
    key = (birth.month, birth.day)
    sign = "capricorn"
    for name, month, day in SIGN_STARTS:
        if key >= (month, day):
            sign = name
    return sign


def sign_compatibility(sign1: str, sign2: str) -> int:
    return _MATRIX[_ORDER.index(sign1)][_ORDER.index(sign2)]


def zodiac_saju_harmony(sign: str, dominant: str) -> Dict[str, object]:
    z = ZODIAC_TO_OHENG[SIGNS[sign]["element"]]

    if z == dominant:
        return {"score": 95, "description": "별자리와 사주의 기운이 완벽하게 일치합니다. 타고난 기질이 조화롭게 발현됩니다."}
    if GENERATES[z] == dominant:
        return {"score": 85, "description": "별자리가 사주의 기운을 자연스럽게 키워줍니다. 서양과 동양의 운명이 서로를 강화합니다."}
    if GENERATES[dominant] == z:
        return {"score": 80, "description": "사주가 별자리의 기운을 자연스럽게 성장시킵니다. 내면의 힘이 외적으로 잘 표현됩니다."}
    if CONTROLS[z] == dominant:
        return {"score": 60, "description": "별자리와 사주 사이에 긴장이 있습니다. 이 에너지를 잘 활용하면 성장의 원동력이 됩니다."}
    return {"score": 70, "description": "별자리와 사주가 독립적으로 작용합니다. 다양한 면모를 가진 복합적인 성격입니다."}


def analyze_zodiac(birth: date, dominant: str) -> Dict[str, object]:
    sign = zodiac_sign(birth)
    info = SIGNS[sign]
    harmony = zodiac_saju_harmony(sign, dominant)
    keywords = info["keywords"]
    strengths = info["strengths"]

    return {
        "sign": sign,
        "name": info["name"],
        "symbol": info["symbol"],
        "element": info["element"],
        "keywords": list(keywords),
        "harmony_score": harmony["score"],
        "harmony_description": harmony["description"],
        "integrated_insight": (
            f"{info['name']}의 기운과 사주의 {element_label(dominant)} 기운이 만나 "
            f"{', '.join(keywords[:2])}의 특성이 더욱 강화됩니다. "
            f"{strengths[0]}과(와) {strengths[1]}이(가) 당신의 핵심 강점입니다."
        ),
        "year_forecast": YEAR_FORECASTS[sign],
    }
