"""
Tests for zodiac_engine.py and narrative_builder.py
"""

from datetime import date

import pytest

from fortune_scoring import FortuneScores, analyze_personality, calculate_scores
from narrative_builder import build_narrative, peer_comparison
from oheng_engine import analyze_oheng
from saju_calendar import BirthInput, calculate_daeun, calculate_saju
from zodiac_engine import analyze_zodiac, sign_compatibility, zodiac_saju_harmony, zodiac_sign


class TestZodiac:

    @pytest.mark.parametrize("day,sign", [
        (date(1990, 1, 1), "capricorn"),
        (date(1990, 1, 19), "capricorn"),
        (date(1990, 1, 20), "aquarius"),
        (date(1990, 3, 21), "aries"),
        (date(1990, 5, 15), "taurus"),
        (date(1990, 12, 21), "sagittarius"),
        (date(1990, 12, 22), "capricorn"),
    ])
    def test_sign_boundaries(self, day, sign):
        assert zodiac_sign(day) == sign

    def test_matrix_is_symmetric(self):
        assert sign_compatibility("aries", "leo") == sign_compatibility("leo", "aries") == 90

    def test_harmony(self):
        # taurus is earth
        assert zodiac_saju_harmony("taurus", "earth")["score"] == 95
        assert zodiac_saju_harmony("taurus", "metal")["score"] == 85
        assert zodiac_saju_harmony("taurus", "fire")["score"] == 80
        assert zodiac_saju_harmony("taurus", "water")["score"] == 60
        assert zodiac_saju_harmony("taurus", "wood")["score"] == 70

    def test_air_reads_as_metal(self):
        assert zodiac_saju_harmony("gemini", "metal")["score"] == 95

    def test_analyze(self):
        block = analyze_zodiac(date(1990, 5, 15), "water")
        assert block["sign"] == "taurus"
        assert block["name"] == "황소자리"
        assert block["harmony_score"] == 60


@pytest.fixture
def engines():
    birth = BirthInput(birth_date=date(1990, 5, 15), gender="male")
    chart = calculate_saju(birth)
    oheng = analyze_oheng(chart)
    scores = calculate_scores(chart, oheng)
    return birth, chart, oheng, scores


class TestPeerComparison:

    def test_percentiles_in_range(self, engines):
        _, chart, oheng, scores = engines
        peer = peer_comparison(chart, oheng, scores, 36, "male")
        for value in (peer.career_maturity, peer.decision_stability, peer.wealth_management):
            assert 1 <= value <= 99
        assert peer.summary.startswith("36세 남성")

    def test_low_metal_raises_risk(self, engines):
        _, chart, oheng, scores = engines
        # metal 1 (+8), age 30 (+5): 63 -> average
        assert peer_comparison(chart, oheng, scores, 30).risk_exposure == "average"

    def test_extreme_scores_clamp(self, engines):
        _, chart, oheng, _ = engines
        high = FortuneScores(overall=95, wealth=95, love=95, career=95, health=95)
        peer = peer_comparison(chart, oheng, high, 22)
        assert peer.career_maturity == 1
        assert peer.wealth_management == 1


class TestNarrative:

    def test_deterministic_for_fixed_today(self, engines):
        birth, chart, oheng, scores = engines
        personality = analyze_personality(chart)
        daeun = calculate_daeun(chart, birth.gender)
        a = build_narrative(birth, chart, oheng, scores, personality, daeun, date(2026, 10, 19))
        b = build_narrative(birth, chart, oheng, scores, personality, daeun, date(2026, 10, 19))
        assert a == b

    def test_premium_text_has_multiple_sentences(self, engines):
        birth, chart, oheng, scores = engines
        narrative = build_narrative(
            birth, chart, oheng, scores, analyze_personality(chart),
            calculate_daeun(chart, birth.gender), date(2026, 10, 19),
        )
        assert narrative.fortune_advice.overall.count(".") >= 2
        assert narrative.warning_advice.count(".") >= 2
        assert len(narrative.action_plan) == 3
        assert "2026년" in narrative.yearly_fortune

    def test_before_first_luck_pillar(self):
        birth = BirthInput(birth_date=date(2025, 3, 1), gender="female")
        chart = calculate_saju(birth)
        oheng = analyze_oheng(chart)
        narrative = build_narrative(
            birth, chart, oheng, calculate_scores(chart, oheng), analyze_personality(chart),
            calculate_daeun(chart, birth.gender), date(2026, 10, 19),
        )
        assert narrative.ten_year_fortune.startswith("첫 대운은 3세")
