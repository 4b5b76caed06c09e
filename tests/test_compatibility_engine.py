"""
Tests for compatibility_engine.py - pair scores and group harmony
"""

import pytest

from compatibility_engine import (
    GroupMember,
    GroupSizeError,
    analyze_couple,
    analyze_group,
    branch_relation,
    count_triple_harmonies,
    dominant_element,
    missing_element,
    pair_score,
)
from saju_calendar import Pillar, SajuChart


def member(name, stem, branch):
    day = Pillar(stem, branch)
    return GroupMember(name=name, chart=SajuChart(year=day, month=day, day=day))


class TestPairScore:

    @pytest.mark.parametrize("e1,e2,score", [
        ("wood", "wood", 70),
        ("wood", "fire", 88),
        ("fire", "wood", 88),
        ("wood", "earth", 55),
        ("earth", "wood", 55),
    ])
    def test_relation_scores(self, e1, e2, score):
        assert pair_score(e1, e2) == score

    def test_branch_relations(self):
        assert branch_relation("子", "丑") == "six_harmony"
        assert branch_relation("子", "午") == "clash"
        assert branch_relation("子", "寅") is None


class TestGroup:

    def test_two_member_generating_group(self):
        result = analyze_group([member("A", "甲", "子"), member("B", "丙", "寅")])
        assert len(result.pairs) == 1
        assert result.pairs[0].relation == "generating"
        assert result.pairs[0].score == 88
        assert result.overall_harmony == 88
        assert result.missing_element == "earth"
        assert result.dominant_element == "wood"

    def test_pair_count_is_n_choose_2(self):
        people = [
            member("A", "甲", "子"),
            member("B", "丙", "寅"),
            member("C", "戊", "辰"),
            member("D", "庚", "午"),
            member("E", "壬", "申"),
        ]
        assert len(analyze_group(people).pairs) == 10

    @pytest.mark.parametrize("count", [0, 1, 6])
    def test_size_limits(self, count):
        people = [member(str(i), "甲", "子") for i in range(count)]
        with pytest.raises(GroupSizeError):
            analyze_group(people)

    def test_clash_lowers_harmony(self):
        plain = analyze_group([member("A", "甲", "子"), member("B", "丙", "寅")])
        clash = analyze_group([member("A", "甲", "子"), member("B", "丙", "午")])
        # 子午 clash, but 午 shares no triple with 子
        assert clash.overall_harmony == plain.overall_harmony - 4

    def test_six_harmony_and_triple_raise_harmony(self):
        # 子丑 six harmony; 丑 and 子 share no triple
        result = analyze_group([member("A", "甲", "子"), member("B", "丙", "丑")])
        assert result.overall_harmony == 88 + 3

    def test_triple_half_harmony(self):
        assert count_triple_harmonies(["申", "子"]) == 1
        assert count_triple_harmonies(["申", "子", "辰"]) == 1
        assert count_triple_harmonies(["子", "卯"]) == 0

    def test_harmony_is_clamped(self):
        people = [member(str(i), "甲", b) for i, b in enumerate(["申", "子", "辰", "亥", "卯"])]
        assert 0 <= analyze_group(people).overall_harmony <= 100

    def test_same_stem_warning(self):
        result = analyze_group([member("A", "甲", "子"), member("B", "甲", "寅")])
        issues = [w["members"] for w in result.warnings]
        assert ["A", "B"] in issues

    def test_controlling_pair_warns(self):
        result = analyze_couple(member("A", "甲", "子"), member("B", "戊", "寅"))
        assert result.pairs[0].score == 55
        assert any(w["members"] == ["A", "B"] for w in result.warnings)
        assert result.best_pair is result.challenging_pair

    def test_roles(self):
        result = analyze_group([member("A", "甲", "子"), member("B", "壬", "寅")])
        assert result.members[0]["role"] == "개척자/선구자"
        assert result.members[1]["element"] == "water"

    def test_helpers(self):
        assert dominant_element(["fire", "water", "water"]) == "water"
        assert dominant_element(["water", "fire"]) == "fire"
        assert missing_element(["wood", "fire", "earth", "metal", "water"]) is None
