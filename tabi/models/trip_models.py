"""
Stored shapes of trips, itineraries, days and activities.
"""

import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from tabi.utils.trip_constants import (
    ACTIVITY_VALIDATION,
    ActivityCategory,
    TIME_PATTERN,
    TripStatus,
    time_to_minutes,
)

_TIME_RE = re.compile(TIME_PATTERN)


class Activity(BaseModel):
    id: str
    title: str
    start_time: str
    end_time: str
    notes: str = ""
    location: Optional[str] = None
    category: ActivityCategory = ActivityCategory.GENERAL
    ai_generated: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class Day(BaseModel):
    id: str
    date: Optional[str] = None  # YYYY-MM-DD
    weather: Optional[Any] = None
    notes: str = ""
    activities: List[Activity] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ItinerarySettings(BaseModel):
    time_zone: str = "UTC"
    default_start_time: str = "09:00"
    default_end_time: str = "17:00"
    time_slot_duration: int = 30
    allow_overlapping: bool = False


class Itinerary(BaseModel):
    id: str
    trip_id: str
    user_id: str
    title: str = ""
    days: List[Day] = Field(default_factory=list)
    settings: ItinerarySettings = Field(default_factory=ItinerarySettings)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Trip(BaseModel):
    id: str
    user_id: str
    name: str
    location: str
    start_date: date
    end_date: date
    description: str = ""
    status: TripStatus = TripStatus.UPCOMING
    duration: Optional[int] = None
    ai_generated: bool = False
    ai_prompt: str = ""
    generated_at: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TripPage(BaseModel):
    trips: List[Trip] = Field(default_factory=list)
    next_cursor: Optional[str] = None  # id of the last trip on this page
    has_more: bool = False
    page_size: int
    total_retrieved: int = 0


class ActivityCreate(BaseModel):
    """Validated input for adding an activity to a day"""
    title: str
    start_time: str
    end_time: str
    notes: str = ""
    location: Optional[str] = None
    category: ActivityCategory = ActivityCategory.GENERAL

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = (v or "").strip()
        limits = ACTIVITY_VALIDATION["title"]
        if not (limits["min_length"] <= len(v) <= limits["max_length"]):
            raise ValueError(f"Activity title must be {limits['min_length']}-{limits['max_length']} characters")
        return v

    @field_validator("notes")
    @classmethod
    def validate_notes(cls, v: str) -> str:
        v = (v or "").strip()
        if len(v) > ACTIVITY_VALIDATION["notes"]["max_length"]:
            raise ValueError(f"Activity notes must be {ACTIVITY_VALIDATION['notes']['max_length']} characters or less")
        return v

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time_format(cls, v: str) -> str:
        if not isinstance(v, str) or not _TIME_RE.match(v):
            raise ValueError("Invalid time format (expected HH:MM)")
        return v

    @model_validator(mode="after")
    def validate_time_order(self):
        if time_to_minutes(self.start_time) >= time_to_minutes(self.end_time):
            raise ValueError("Start time must be before end time")
        return self


class DayDeletion(BaseModel):
    """Outcome of deleting a day: the compacted days and the day to show next"""
    days: List[Day]
    selected_day: int  # one-based


def itinerary_days_payload(days: List[Day]) -> List[Dict[str, Any]]:
    return [d.model_dump(mode="json") for d in days]
