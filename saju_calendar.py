"""
SAJU_CALENDAR.PY - Stem-Branch Calendar Engine

Converts a birth date/time into the four pillars (year, month, day, hour),
each a heavenly-stem / earthly-branch pair.

ACCURACY NOTE:
    This is an arithmetic approximation, not an astronomical lunisolar
    ephemeris. Year changes on Feb 4, month boundaries come from a
    per-year solar-term day table (2024-2030, per-month defaults elsewhere),
    and the day cycle is anchored to a fixed epoch. Results can disagree
    with almanac tables near term boundaries and for the day pillar.

Usage:
    from saju_calendar import BirthInput, calculate_saju

    chart = calculate_saju(BirthInput(birth_date=date(1990, 5, 15)))
    chart.day.stem        # day master
    chart.hour            # None when birth time is unknown
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

from korean_lunar_calendar import KoreanLunarCalendar

logger = logging.getLogger(__name__)

# =============================================================================
# SYMBOL TABLES
# =============================================================================

HEAVENLY_STEMS = ["甲", "乙", "丙", "丁", "戊", "己", "庚", "辛", "壬", "癸"]
STEMS_KOREAN = ["갑", "을", "병", "정", "무", "기", "경", "신", "임", "계"]

EARTHLY_BRANCHES = ["子", "丑", "寅", "卯", "辰", "巳", "午", "未", "申", "酉", "戌", "亥"]
BRANCHES_KOREAN = ["자", "축", "인", "묘", "진", "사", "오", "미", "신", "유", "술", "해"]
BRANCH_ANIMALS = ["쥐", "소", "호랑이", "토끼", "용", "뱀", "말", "양", "원숭이", "닭", "개", "돼지"]

STEM_ELEMENTS: Dict[str, str] = {
    "甲": "wood", "乙": "wood",
    "丙": "fire", "丁": "fire",
    "戊": "earth", "己": "earth",
    "庚": "metal", "辛": "metal",
    "壬": "water", "癸": "water",
}

BRANCH_ELEMENTS: Dict[str, str] = {
    "寅": "wood", "卯": "wood",
    "巳": "fire", "午": "fire",
    "辰": "earth", "戌": "earth", "丑": "earth", "未": "earth",
    "申": "metal", "酉": "metal",
    "亥": "water", "子": "water",
}

# =============================================================================
# CALENDAR CONSTANTS
# =============================================================================

# 1984 is 甲子 year
YEAR_CYCLE_BASE = 1984
# Year pillar switches at 입춘 (approximated as Feb 4)
YEAR_START_MONTH = 2
YEAR_START_DAY = 4

# Month stem of the first month, indexed by year stem (甲己 -> 丙, 乙庚 -> 戊, ...)
MONTH_STEM_BASE = [2, 4, 6, 8, 0, 2, 4, 6, 8, 0]

# Hour stem of the 子 hour, indexed by day stem
HOUR_STEM_BASE = [0, 2, 4, 6, 8, 0, 2, 4, 6, 8]

# Julian day number whose day is index 0 (甲子) of the 60-day cycle
DAY_CYCLE_EPOCH_JDN = 2447918

# 子 hour starts at 23:30 local clock time; each slot is 2 hours
HOUR_SLOT_START_MINUTES = 23 * 60 + 30
HOUR_SLOT_MINUTES = 120
MINUTES_PER_DAY = 24 * 60

# Day of month on which each month's solar term (절기) begins
SOLAR_TERMS_DATA: Dict[int, Dict[int, int]] = {
    2024: {1: 6, 2: 4, 3: 5, 4: 4, 5: 5, 6: 5, 7: 6, 8: 7, 9: 7, 10: 8, 11: 7, 12: 7},
    2025: {1: 5, 2: 3, 3: 5, 4: 4, 5: 5, 6: 5, 7: 7, 8: 7, 9: 7, 10: 8, 11: 7, 12: 7},
    2026: {1: 5, 2: 4, 3: 5, 4: 5, 5: 5, 6: 5, 7: 7, 8: 7, 9: 7, 10: 8, 11: 7, 12: 7},
    2027: {1: 5, 2: 4, 3: 5, 4: 5, 5: 5, 6: 6, 7: 7, 8: 7, 9: 8, 10: 8, 11: 7, 12: 7},
    2028: {1: 6, 2: 4, 3: 5, 4: 4, 5: 5, 6: 5, 7: 6, 8: 7, 9: 7, 10: 8, 11: 7, 12: 6},
    2029: {1: 5, 2: 3, 3: 5, 4: 4, 5: 5, 6: 5, 7: 6, 8: 7, 9: 7, 10: 8, 11: 7, 12: 7},
    2030: {1: 5, 2: 4, 3: 5, 4: 5, 5: 5, 6: 5, 7: 7, 8: 7, 9: 7, 10: 8, 11: 7, 12: 7},
}
DEFAULT_SOLAR_TERM_DAYS = {1: 6, 2: 4, 3: 6, 4: 5, 5: 6, 6: 6, 7: 7, 8: 8, 9: 8, 10: 8, 11: 7, 12: 7}

DAEUN_START_AGE = 3
DAEUN_COUNT = 8

# korean-lunar-calendar supported range
LUNAR_MIN_YEAR = 1000
LUNAR_MAX_YEAR = 2050


class BirthInputError(ValueError):
    """Malformed birth input (rejected before any computation)."""


# =============================================================================
# DATA MODEL
# =============================================================================

@dataclass(frozen=True)
class BirthInput:
    """Birth data for one person. Immutable, never persisted on its own."""

    birth_date: date
    birth_hour: Optional[int] = None  # 0-23; None when unknown
    birth_minute: int = 0
    gender: Optional[str] = None  # "male" | "female"
    calendar_system: str = "solar"  # "solar" | "lunar"
    is_leap_month: bool = False  # lunar input only
    name: Optional[str] = None

    @property
    def has_time(self) -> bool:
        return self.birth_hour is not None


@dataclass(frozen=True)
class Pillar:
    stem: str
    branch: str

    @property
    def element(self) -> str:
        return STEM_ELEMENTS[self.stem]

    @property
    def branch_element(self) -> str:
        return BRANCH_ELEMENTS[self.branch]

    @property
    def stem_index(self) -> int:
        return HEAVENLY_STEMS.index(self.stem)

    @property
    def branch_index(self) -> int:
        return EARTHLY_BRANCHES.index(self.branch)

    @property
    def korean(self) -> str:
        return STEMS_KOREAN[self.stem_index] + BRANCHES_KOREAN[self.branch_index]

    def to_dict(self) -> Dict[str, str]:
        return {
            "heavenly_stem": self.stem,
            "earthly_branch": self.branch,
            "element": self.element,
            "korean": self.korean,
        }


@dataclass(frozen=True)
class SajuChart:
    year: Pillar
    month: Pillar
    day: Pillar
    hour: Optional[Pillar] = None
    solar_date: Optional[date] = None

    @property
    def day_master(self) -> str:
        return self.day.stem

    @property
    def day_element(self) -> str:
        return self.day.element

    def pillars(self) -> List[Pillar]:
        """Known pillars only (3 without birth time, 4 with)."""
        known = [self.year, self.month, self.day]
        if self.hour is not None:
            known.append(self.hour)
        return known

    def to_dict(self) -> Dict[str, Optional[Dict[str, str]]]:
        return {
            "year": self.year.to_dict(),
            "month": self.month.to_dict(),
            "day": self.day.to_dict(),
            "hour": self.hour.to_dict() if self.hour else None,
        }


@dataclass(frozen=True)
class LuckPillar:
    age: int
    pillar: Pillar

    def to_dict(self) -> Dict[str, object]:
        return {"age": self.age, **self.pillar.to_dict()}


# =============================================================================
# VALIDATION & LUNAR CONVERSION
# =============================================================================

def validate_birth_input(birth: BirthInput) -> None:
    """
    Raise BirthInputError for input the engine cannot compute.

    Callers validate shape before invoking the pure calculation functions.
    """
    if not isinstance(birth.birth_date, date):
        raise BirthInputError("birth_date is required")
    if birth.calendar_system not in ("solar", "lunar"):
        raise BirthInputError(f"Unknown calendar system: {birth.calendar_system}")
    if birth.birth_hour is not None and not 0 <= birth.birth_hour <= 23:
        raise BirthInputError(f"birth_hour out of range: {birth.birth_hour}")
    if not 0 <= birth.birth_minute <= 59:
        raise BirthInputError(f"birth_minute out of range: {birth.birth_minute}")
    if birth.gender is not None and birth.gender not in ("male", "female"):
        raise BirthInputError(f"Unknown gender: {birth.gender}")
    if birth.calendar_system == "lunar":
        lunar_to_solar(birth.birth_date, birth.is_leap_month)


def lunar_to_solar(lunar: date, is_leap_month: bool = False) -> date:
    """
    Convert a Korean lunar date to its solar date.

    Raises:
        BirthInputError: date outside the supported range or not a valid lunar date
    """
    if not LUNAR_MIN_YEAR <= lunar.year <= LUNAR_MAX_YEAR:
        raise BirthInputError(f"Lunar year {lunar.year} outside {LUNAR_MIN_YEAR}-{LUNAR_MAX_YEAR}")

    cal = KoreanLunarCalendar()
    if not cal.setLunarDate(lunar.year, lunar.month, lunar.day, is_leap_month):
        raise BirthInputError(f"Invalid lunar date: {lunar.isoformat()} (leap={is_leap_month})")
    return date(cal.solarYear, cal.solarMonth, cal.solarDay)


def resolve_solar_date(birth: BirthInput) -> date:
    if birth.calendar_system == "lunar":
        return lunar_to_solar(birth.birth_date, birth.is_leap_month)
    return birth.birth_date


# =============================================================================
# PILLARS
# =============================================================================

def _pillar(stem_idx: int, branch_idx: int) -> Pillar:
    return Pillar(HEAVENLY_STEMS[stem_idx % 10], EARTHLY_BRANCHES[branch_idx % 12])


def year_pillar(solar: date) -> Pillar:
    year = solar.year
    if solar.month < YEAR_START_MONTH or (solar.month == YEAR_START_MONTH and solar.day < YEAR_START_DAY):
        year -= 1
    diff = year - YEAR_CYCLE_BASE
    return _pillar(diff % 10, diff % 12)


def calculate_year_pillar_for(year: int) -> Pillar:
    """Pillar of a whole calendar year (세운)."""
    diff = year - YEAR_CYCLE_BASE
    return _pillar(diff % 10, diff % 12)


def solar_term_day(year: int, month: int) -> int:
    return SOLAR_TERMS_DATA.get(year, DEFAULT_SOLAR_TERM_DAYS).get(month, DEFAULT_SOLAR_TERM_DAYS[month])


def month_pillar(solar: date, year_stem_idx: int) -> Pillar:
    month = solar.month
    if solar.day < solar_term_day(solar.year, month):
        month = 12 if month == 1 else month - 1

    branch_idx = (month + 1) % 12
    stem_idx = (MONTH_STEM_BASE[year_stem_idx] + month - 1) % 10
    return _pillar(stem_idx, branch_idx)


def julian_day_number(solar: date) -> int:
    a = (14 - solar.month) // 12
    y = solar.year + 4800 - a
    m = solar.month + 12 * a - 3
    return solar.day + (153 * m + 2) // 5 + 365 * y + y // 4 - y // 100 + y // 400 - 32045


def day_pillar(solar: date) -> Pillar:
    index = julian_day_number(solar) - DAY_CYCLE_EPOCH_JDN
    return _pillar(index % 10, index % 12)


def hour_slot(hour: int, minute: int = 0) -> int:
    """Branch index of the 2-hour slot containing hour:minute (子 from 23:30)."""
    minutes = (hour * 60 + minute - HOUR_SLOT_START_MINUTES) % MINUTES_PER_DAY
    return minutes // HOUR_SLOT_MINUTES


def hour_pillar(hour: int, minute: int, day_stem_idx: int) -> Pillar:
    branch_idx = hour_slot(hour, minute)
    stem_idx = (HOUR_STEM_BASE[day_stem_idx] + branch_idx) % 10
    return _pillar(stem_idx, branch_idx)


def calculate_saju(birth: BirthInput) -> SajuChart:
    """
    Four-pillar chart for a validated BirthInput.

    The hour pillar is omitted when the birth time is unknown.
    """
    solar = resolve_solar_date(birth)

    year = year_pillar(solar)
    month = month_pillar(solar, year.stem_index)
    day = day_pillar(solar)
    hour = None
    if birth.has_time:
        hour = hour_pillar(birth.birth_hour, birth.birth_minute, day.stem_index)

    return SajuChart(year=year, month=month, day=day, hour=hour, solar_date=solar)


# =============================================================================
# LUCK CYCLES
# =============================================================================

def calculate_daeun(chart: SajuChart, gender: Optional[str]) -> List[LuckPillar]:
    """
    Ten-year luck pillars (대운), stepped from the month pillar.

    Forward for a yang day stem with male, or yin with female; backward
    otherwise. Start age is fixed at DAEUN_START_AGE in this approximation.
    """
    is_yang = chart.day.stem_index % 2 == 0
    forward = (is_yang and gender == "male") or (not is_yang and gender == "female")
    step = 1 if forward else -1

    luck: List[LuckPillar] = []
    for i in range(DAEUN_COUNT):
        offset = step * (i + 1)
        pillar = _pillar(chart.month.stem_index + offset, chart.month.branch_index + offset)
        luck.append(LuckPillar(age=DAEUN_START_AGE + i * 10, pillar=pillar))
    return luck


def current_daeun(luck: List[LuckPillar], age: int) -> Optional[LuckPillar]:
    current = None
    for entry in luck:
        if entry.age <= age:
            current = entry
    return current


def calculate_age(birth: date, today: date) -> int:
    """International age on `today`."""
    age = today.year - birth.year
    if (today.month, today.day) < (birth.month, birth.day):
        age -= 1
    return age
