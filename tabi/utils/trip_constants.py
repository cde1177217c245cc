"""
Field limits, enumerations and date helpers shared by the prompt builder,
the response parser, the materializer and the stores.
"""

import math
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union

DateLike = Union[date, datetime, str, None]


class TripStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"


class ActivityCategory(str, Enum):
    SIGHTSEEING = "sightseeing"
    DINING = "dining"
    SHOPPING = "shopping"
    TRANSPORTATION = "transportation"
    ACCOMMODATION = "accommodation"
    GENERAL = "general"


# Categories a model may return; GENERAL is the fallback for anything else
GENERATED_ACTIVITY_CATEGORIES = [
    ActivityCategory.SIGHTSEEING.value,
    ActivityCategory.DINING.value,
    ActivityCategory.SHOPPING.value,
    ActivityCategory.TRANSPORTATION.value,
    ActivityCategory.ACCOMMODATION.value,
]
FALLBACK_ACTIVITY_CATEGORY = ActivityCategory.GENERAL.value

TRIP_VALIDATION = {
    "name": {"required": True, "min_length": 1, "max_length": 100},
    "location": {"required": True, "min_length": 1, "max_length": 100},
    "description": {"required": False, "min_length": 0, "max_length": 500},
    "start_date": {"required": True},
    "end_date": {"required": True},
}

ACTIVITY_VALIDATION = {
    "title": {"min_length": 1, "max_length": 100},
    "description": {"min_length": 1, "max_length": 300},
    "notes": {"min_length": 0, "max_length": 500},
    "location": {"min_length": 0, "max_length": 200},
}

PROMPT_INPUT_MIN_LENGTH = 3
PROMPT_INPUT_MAX_LENGTH = 500
AI_PROMPT_ECHO_LENGTH = 200

DATE_FORMAT_HINT = "YYYY-MM-DD"
TIME_FORMAT_HINT = "HH:MM"
TIME_PATTERN = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"


def to_date(value: DateLike) -> Optional[date]:
    """Coerce a date, datetime or ISO string into a calendar date.

    Returns None for missing or unparseable values.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        return None


def shift_years(day: date, years: int) -> date:
    """Same month/day ``years`` away; Feb 29 falls back to Feb 28."""
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        return day.replace(year=day.year + years, day=28)


def is_within_one_year(day: date, today: Optional[date] = None) -> bool:
    today = today or date.today()
    return shift_years(today, -1) <= day <= shift_years(today, 1)


def calculate_trip_days(start_date: DateLike, end_date: DateLike) -> int:
    """Number of calendar days covered by a trip, both ends inclusive."""
    start = to_date(start_date)
    end = to_date(end_date)
    if not start or not end:
        return 0
    return math.ceil(abs((end - start).days)) + 1


def infer_trip_status(start_date: DateLike, end_date: DateLike, today: Optional[date] = None) -> TripStatus:
    """Derive a trip's status from its dates relative to today."""
    start = to_date(start_date)
    end = to_date(end_date)
    if not start or not end:
        return TripStatus.UPCOMING

    today = today or date.today()
    if end < today:
        return TripStatus.COMPLETED
    if start <= today <= end:
        return TripStatus.ONGOING
    return TripStatus.UPCOMING


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)
