"""
Tests for oheng_engine.py - element counts, strength, yongsin/gisin
"""

from datetime import date

from core.invariants import validate_element_balance
from oheng_engine import (
    CONTROLS,
    GENERATES,
    ElementBalance,
    analyze_oheng,
    classify_strength,
    count_elements,
    favorable_elements,
    relation_between,
)
from saju_calendar import BirthInput, Pillar, SajuChart, calculate_saju


def _chart(*pairs):
    pillars = [Pillar(s, b) for s, b in pairs]
    hour = pillars[3] if len(pillars) == 4 else None
    return SajuChart(year=pillars[0], month=pillars[1], day=pillars[2], hour=hour)


class TestRelations:

    def test_cycles_are_closed(self):
        for element in GENERATES:
            seen = element
            for _ in range(5):
                seen = GENERATES[seen]
            assert seen == element

    def test_relation_directions(self):
        assert relation_between("wood", "wood") == ("same", None)
        assert relation_between("wood", "fire") == ("generating", "forward")
        assert relation_between("fire", "wood") == ("generating", "reverse")
        assert relation_between("wood", "earth") == ("controlling", "forward")
        assert relation_between("earth", "wood") == ("controlling", "reverse")

    def test_every_pair_is_related(self):
        # with five elements every distinct pair is generating or controlling
        for a in GENERATES:
            for b in GENERATES:
                kind, _ = relation_between(a, b)
                assert kind != "neutral"

    def test_controls_is_a_permutation(self):
        assert sorted(CONTROLS.values()) == sorted(CONTROLS.keys())


class TestCounts:

    def test_counts_sum_to_known_pillars(self):
        chart = calculate_saju(BirthInput(birth_date=date(1990, 5, 15)))
        balance = count_elements(chart)
        assert balance.total == 3
        assert balance.to_dict() == {"wood": 0, "fire": 0, "earth": 0, "metal": 1, "water": 2}
        assert validate_element_balance(balance.to_dict(), has_hour=False)[0]

    def test_counts_with_hour(self):
        chart = calculate_saju(BirthInput(birth_date=date(1990, 5, 15), birth_hour=12))
        balance = count_elements(chart)
        assert balance.total == 4
        assert balance["earth"] == 1

    def test_dominant_tie_breaks_by_order(self):
        balance = ElementBalance({"wood": 0, "fire": 1, "earth": 0, "metal": 1, "water": 1})
        assert balance.dominant == "fire"
        assert balance.missing == ["wood", "earth"]


class TestStrength:

    def test_supported_day_master_is_strong(self):
        chart = calculate_saju(BirthInput(birth_date=date(1990, 5, 15)))
        result = analyze_oheng(chart)
        assert result.day_master_element == "water"
        assert result.strength == "strong"
        assert result.yongsin == ["wood", "earth"]
        assert result.gisin == ["water", "metal"]

    def test_drained_day_master_is_weak(self):
        # dm 甲 wood; earth and metal around it, month branch 申 metal
        chart = _chart(("庚", "申"), ("戊", "申"), ("甲", "子"))
        assert classify_strength(chart, count_elements(chart)) == "weak"
        result = analyze_oheng(chart)
        assert result.yongsin == ["wood", "water"]
        assert result.gisin == ["metal", "earth"]

    def test_balanced_yongsin_from_missing_elements(self):
        balance = ElementBalance({"wood": 1, "fire": 1, "earth": 0, "metal": 0, "water": 1})
        yongsin, gisin = favorable_elements("wood", "balanced", balance)
        assert yongsin == ["earth", "metal"]
        assert gisin == []

    def test_balanced_without_missing_uses_output(self):
        balance = ElementBalance({"wood": 1, "fire": 1, "earth": 1, "metal": 2, "water": 1})
        yongsin, gisin = favorable_elements("wood", "balanced", balance)
        assert yongsin == ["fire"]
        assert gisin == ["metal"]

    def test_to_dict_shape(self):
        chart = calculate_saju(BirthInput(birth_date=date(1990, 5, 15)))
        data = analyze_oheng(chart).to_dict()
        assert data["day_master_strength"] == "strong"
        assert data["dominant"] == "water"
        assert data["missing"] == ["wood", "fire", "earth"]
