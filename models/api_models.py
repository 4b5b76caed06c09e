"""
Pydantic models for API request validation.
Provides type safety, automatic validation, and OpenAPI documentation.
"""

import re
from datetime import date
from enum import Enum
from typing import Optional, List, Literal

from pydantic import BaseModel, Field, field_validator

from core.invariants import DEFAULT_TIER, GROUP_MAX_MEMBERS, GROUP_MIN_MEMBERS
from pricing import DEFAULT_LOCALE
from saju_calendar import BirthInput

MBTI_PATTERN = re.compile(r"^[EI][SN][TF][JP]$")


# ============================================================================
# ENUMS
# ============================================================================

class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class CalendarSystem(str, Enum):
    SOLAR = "solar"
    LUNAR = "lunar"


class AnalysisTier(str, Enum):
    BASIC = "basic"
    DEEP = "deep"
    PREMIUM = "premium"


class PaymentType(str, Enum):
    POINT = "point"
    SUBSCRIPTION = "subscription"
    ANALYSIS = "analysis"
    ADDON = "addon"
    QR = "qr"


# ============================================================================
# FORTUNE MODELS
# ============================================================================

class BirthInfo(BaseModel):
    """Birth data as entered by the user."""
    name: Optional[str] = Field(None, max_length=50, description="Display name")
    birth_date: date = Field(..., description="Birth date (YYYY-MM-DD)")
    birth_hour: Optional[int] = Field(None, ge=0, le=23, description="Birth hour, omit if unknown")
    birth_minute: int = Field(default=0, ge=0, le=59)
    gender: Optional[Gender] = None
    calendar_system: CalendarSystem = Field(default=CalendarSystem.SOLAR)
    is_leap_month: bool = Field(default=False, description="Lunar leap month (lunar input only)")

    def to_birth_input(self) -> BirthInput:
        return BirthInput(
            birth_date=self.birth_date,
            birth_hour=self.birth_hour,
            birth_minute=self.birth_minute,
            gender=self.gender.value if self.gender else None,
            calendar_system=self.calendar_system.value,
            is_leap_month=self.is_leap_month,
            name=self.name,
        )


class FortuneAnalyzeRequest(BirthInfo):
    """Request model for a single saju analysis."""
    mbti: Optional[str] = Field(None, description="MBTI code, e.g. INTJ")
    blood_type: Optional[Literal["A", "B", "O", "AB", "a", "b", "o", "ab"]] = None
    tier: AnalysisTier = Field(default=AnalysisTier(DEFAULT_TIER))

    @field_validator("mbti")
    @classmethod
    def validate_mbti(cls, v):
        if v is None or not v.strip():
            return None
        v = v.strip().upper()
        if not MBTI_PATTERN.match(v):
            raise ValueError(f"Invalid MBTI: {v}")
        return v


class GroupMemberInfo(BirthInfo):
    name: str = Field(..., min_length=1, max_length=50)


class GroupAnalyzeRequest(BaseModel):
    """Request model for group compatibility."""
    members: List[GroupMemberInfo] = Field(..., description=f"{GROUP_MIN_MEMBERS}-{GROUP_MAX_MEMBERS} members")
    relation_type: Literal["friends", "family", "team", "couple"] = "friends"


class CompatibilityRequest(BaseModel):
    """Request model for two-person compatibility."""
    person1: GroupMemberInfo
    person2: GroupMemberInfo


# ============================================================================
# PAYMENT MODELS
# ============================================================================

class CreatePaymentRequest(BaseModel):
    """Request model for starting checkout."""
    type: PaymentType
    reference_id: str = Field(..., min_length=1, max_length=64, description="Package or plan id")
    currency: Optional[str] = Field(None, description="krw | jpy | usd (default from locale)")
    locale: str = Field(DEFAULT_LOCALE, description="ko | ja | en")
    amount: Optional[int] = Field(None, gt=0, description="Required for analysis/addon payments")

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v):
        if v is None:
            return None
        v = v.lower()
        if v not in ("krw", "jpy", "usd"):
            raise ValueError(f"Unsupported currency: {v}")
        return v

