"""
PRICING.PY - Product catalog

Point packages, subscription and QR plans, and the point cost of each
paid analysis. Prices are stored per currency in display units; payments
always carry integer minor units (see to_minor_units).
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional

from core.invariants import PAYMENT_TYPES, TIER_COSTS

SUPPORTED_CURRENCIES = ("krw", "jpy", "usd")

# Checkout and catalog requests without a locale are priced for Korea
DEFAULT_LOCALE = "ko"

# Minor-unit exponent; KRW and JPY have no subunit
CURRENCY_EXPONENT = {"krw": 0, "jpy": 0, "usd": 2}


@dataclass(frozen=True)
class PointPackage:
    id: str
    points: int
    bonus: int
    prices: Dict[str, float]

    @property
    def total_points(self) -> int:
        return self.points + self.bonus

    def to_dict(self, currency: str = "krw") -> Dict[str, object]:
        return {
            "id": self.id,
            "points": self.points,
            "bonus": self.bonus,
            "total_points": self.total_points,
            "price": self.prices[currency],
            "currency": currency,
        }


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    prices: Dict[str, float]
    tier: str

    def to_dict(self, currency: str = "krw") -> Dict[str, object]:
        return {"id": self.id, "name": self.name, "price": self.prices[currency], "tier": self.tier}


POINT_PACKAGES: Dict[str, PointPackage] = {
    p.id: p for p in [
        PointPackage("point_starter", 500, 0, {"krw": 5000, "jpy": 550, "usd": 3.99}),
        PointPackage("point_basic", 1000, 100, {"krw": 10000, "jpy": 1100, "usd": 7.99}),
        PointPackage("point_standard", 3000, 600, {"krw": 30000, "jpy": 3300, "usd": 23.99}),
        PointPackage("point_premium", 5000, 1500, {"krw": 50000, "jpy": 5500, "usd": 39.99}),
        PointPackage("point_vip", 10000, 5000, {"krw": 100000, "jpy": 11000, "usd": 79.99}),
    ]
}

# Membership tier = plan id without the "sub_" prefix
SUBSCRIPTION_PLANS: Dict[str, Plan] = {
    p.id: p for p in [
        Plan("sub_basic", "베이직", {"krw": 9900, "jpy": 1100, "usd": 7.99}, "basic"),
        Plan("sub_pro", "프로", {"krw": 19900, "jpy": 2200, "usd": 15.99}, "pro"),
        Plan("sub_business", "비즈니스", {"krw": 49900, "jpy": 5500, "usd": 39.99}, "business"),
    ]
}

QR_PLANS: Dict[str, Plan] = {
    p.id: p for p in [
        Plan("qr_basic", "QR 베이직", {"krw": 4900, "jpy": 550, "usd": 3.99}, "qr_basic"),
        Plan("qr_pro", "QR 프로", {"krw": 9900, "jpy": 1100, "usd": 7.99}, "qr_pro"),
        Plan("qr_business", "QR 비즈니스", {"krw": 29900, "jpy": 3300, "usd": 23.99}, "qr_business"),
    ]
}

# Point cost per paid analysis (saju tiers come from TIER_COSTS)
ANALYSIS_COSTS: Dict[str, int] = {
    "saju_basic": TIER_COSTS["basic"],
    "saju_deep": TIER_COSTS["deep"],
    "saju_premium": TIER_COSTS["premium"],
    "face": 500,
    "compatibility": 800,
    "group": 1500,
    "integrated": 1200,
}

ADDON_COSTS: Dict[str, int] = {
    "pdf": 300,
    "audio": 400,
    "bundle": 500,
}


class UnknownProductError(ValueError):
    """reference_id does not name a product of the payment type."""


def currency_for_locale(locale: Optional[str]) -> str:
    """ko -> krw, ja -> jpy, anything else -> usd."""
    lang = (locale or "").lower().split("-")[0].split("_")[0]
    if lang == "ko":
        return "krw"
    if lang == "ja":
        return "jpy"
    return "usd"


def provider_for_currency(currency: str) -> str:
    return "toss" if currency.lower() == "krw" else "stripe"


def to_minor_units(price: float, currency: str) -> int:
    """
    Display price -> integer minor units.

    Example:
        >>> to_minor_units(7.99, "usd")
        799
    """
    exponent = CURRENCY_EXPONENT[currency.lower()]
    scaled = Decimal(str(price)).scaleb(exponent)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def get_point_package(package_id: str) -> Optional[PointPackage]:
    return POINT_PACKAGES.get(package_id)


def membership_tier_for(reference_id: str) -> str:
    if reference_id.startswith("sub_"):
        return reference_id[len("sub_"):]
    return reference_id


def resolve_product(payment_type: str, reference_id: str, currency: str = "krw") -> int:
    """
    Catalog price of a purchasable product in minor units.

    Analysis and addon payments are priced by the caller (they are paid
    per deliverable), so only point/subscription/qr are resolved here.

    Raises:
        UnknownProductError: unknown type, product or currency
    """
    currency = currency.lower()
    if payment_type not in PAYMENT_TYPES or currency not in SUPPORTED_CURRENCIES:
        raise UnknownProductError(f"{payment_type}:{reference_id} ({currency})")

    catalog = {"point": POINT_PACKAGES, "subscription": SUBSCRIPTION_PLANS, "qr": QR_PLANS}.get(payment_type)
    if catalog is None:
        raise UnknownProductError(f"{payment_type} is not a catalog product")

    product = catalog.get(reference_id)
    if product is None:
        raise UnknownProductError(f"{payment_type}:{reference_id}")
    return to_minor_units(product.prices[currency], currency)


def list_packages(currency: str = "krw") -> Dict[str, object]:
    currency = currency.lower() if currency.lower() in SUPPORTED_CURRENCIES else "krw"
    return {
        "currency": currency,
        "provider": provider_for_currency(currency),
        "points": [p.to_dict(currency) for p in POINT_PACKAGES.values()],
        "subscriptions": [p.to_dict(currency) for p in SUBSCRIPTION_PLANS.values()],
        "qr": [p.to_dict(currency) for p in QR_PLANS.values()],
        "analysis_costs": dict(ANALYSIS_COSTS),
        "addon_costs": dict(ADDON_COSTS),
    }
