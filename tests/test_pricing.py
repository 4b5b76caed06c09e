"""
Tests for pricing.py - catalog lookups and minor units
"""

import pytest

from pricing import (
    POINT_PACKAGES,
    UnknownProductError,
    currency_for_locale,
    list_packages,
    membership_tier_for,
    provider_for_currency,
    resolve_product,
    to_minor_units,
)


class TestCatalog:

    def test_point_packages(self):
        assert POINT_PACKAGES["point_basic"].total_points == 1100
        assert POINT_PACKAGES["point_vip"].total_points == 15000
        assert POINT_PACKAGES["point_starter"].bonus == 0

    def test_resolve_prices(self):
        assert resolve_product("point", "point_basic") == 10000
        assert resolve_product("point", "point_basic", "usd") == 799
        assert resolve_product("subscription", "sub_pro", "KRW") == 19900
        assert resolve_product("qr", "qr_basic") == 4900

    @pytest.mark.parametrize("ptype,ref,currency", [
        ("point", "point_mega", "krw"),
        ("subscription", "point_basic", "krw"),
        ("analysis", "saju_basic", "krw"),
        ("coupon", "x", "krw"),
        ("point", "point_basic", "eur"),
    ])
    def test_unknown_products(self, ptype, ref, currency):
        with pytest.raises(UnknownProductError):
            resolve_product(ptype, ref, currency)

    def test_membership_tier(self):
        assert membership_tier_for("sub_business") == "business"
        assert membership_tier_for("qr_pro") == "qr_pro"

    def test_list_packages_falls_back_to_krw(self):
        listing = list_packages("eur")
        assert listing["currency"] == "krw"
        assert listing["provider"] == "toss"
        assert len(listing["points"]) == 5
        assert listing["analysis_costs"]["group"] == 1500


class TestCurrency:

    @pytest.mark.parametrize("locale,currency", [
        ("ko", "krw"),
        ("ko-KR", "krw"),
        ("ja_JP", "jpy"),
        ("en", "usd"),
        (None, "usd"),
    ])
    def test_locale(self, locale, currency):
        assert currency_for_locale(locale) == currency

    def test_provider(self):
        assert provider_for_currency("krw") == "toss"
        assert provider_for_currency("usd") == "stripe"
        assert provider_for_currency("jpy") == "stripe"

    def test_minor_units(self):
        assert to_minor_units(7.99, "usd") == 799
        assert to_minor_units(23.99, "usd") == 2399
        assert to_minor_units(1100, "jpy") == 1100
        assert to_minor_units(9900, "krw") == 9900
