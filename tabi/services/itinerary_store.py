"""
Itinerary persistence. One itinerary per (trip, owner), holding an ordered
list of days addressed by zero-based position. Deleting a day compacts the
list, so later days shift down by one.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from tabi.models.trip_models import (
    Activity,
    ActivityCreate,
    Day,
    DayDeletion,
    Itinerary,
    ItinerarySettings,
    itinerary_days_payload,
)
from tabi.utils.config import get_settings
from tabi.utils.document_store import DocumentStore
from tabi.utils.errors import ActivityNotFoundError, DayNotFoundError, TripValidationError
from tabi.utils.trip_constants import calculate_trip_days, to_date

ActivityInput = Union[ActivityCreate, Dict[str, Any]]


def select_day_after_delete(deleted_day: int, selected_day: int, day_count: int) -> int:
    """Day to show after deleting ``deleted_day`` (one-based).

    ``day_count`` is the number of days before the deletion. Deleting the
    selected day moves to the previous day when it was the last one, and
    otherwise stays on the same number, which now holds the following day.
    Deleting any other day leaves the selection unchanged.
    """
    if day_count <= 1:
        return 1
    if deleted_day == selected_day:
        if deleted_day == day_count:
            return deleted_day - 1
        return deleted_day
    return selected_day


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _validate_activity(data: ActivityInput) -> ActivityCreate:
    if isinstance(data, ActivityCreate):
        return data
    try:
        return ActivityCreate(**data)
    except ValidationError as e:
        raise TripValidationError([err["msg"].removeprefix("Value error, ") for err in e.errors()]) from e


class ItineraryStore:

    def __init__(self, documents: DocumentStore, collection: Optional[str] = None):
        self.documents = documents
        self.collection = collection or get_settings().FIRESTORE_ITINERARIES_COLLECTION
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _require_ids(trip_id: str, user_id: str):
        if not trip_id:
            raise TripValidationError("Trip ID is required")
        if not user_id:
            raise TripValidationError("User ID is required")

    @staticmethod
    def _require_index(day_index: int):
        if not isinstance(day_index, int) or day_index < 0:
            raise TripValidationError("Day index must be non-negative")

    async def _find(self, trip_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        docs = await self.documents.query(
            self.collection,
            filters=[("trip_id", "==", trip_id), ("user_id", "==", user_id)],
            limit=1,
        )
        return docs[0] if docs else None

    async def get_or_create_itinerary(self, trip_id: str, user_id: str) -> Itinerary:
        self._require_ids(trip_id, user_id)
        doc = await self._find(trip_id, user_id)
        if doc is not None:
            doc.setdefault("days", [])
            return Itinerary(**doc)

        data = {
            "trip_id": trip_id,
            "user_id": user_id,
            "title": f"Itinerary for Trip {trip_id}",
            "days": [],
            "settings": ItinerarySettings().model_dump(),
        }
        itinerary_id = await self.documents.add(self.collection, data)
        self.logger.info(f"[itinerary] created itinerary {itinerary_id} for trip {trip_id}")
        return Itinerary(id=itinerary_id, **data)

    async def _save_days(self, itinerary: Itinerary, days: List[Day]):
        await self.documents.update(
            self.collection,
            itinerary.id,
            {"days": itinerary_days_payload(days)},
        )
        itinerary.days = days

    async def _get_day_for_update(self, trip_id: str, user_id: str, day_index: int):
        self._require_index(day_index)
        itinerary = await self.get_or_create_itinerary(trip_id, user_id)
        if day_index >= len(itinerary.days):
            raise DayNotFoundError(day_index)
        return itinerary, list(itinerary.days)

    async def add_day(self, trip_id: str, user_id: str, day_data: Optional[Dict[str, Any]] = None) -> Day:
        day_data = day_data or {}
        itinerary = await self.get_or_create_itinerary(trip_id, user_id)
        now = _now_iso()
        day = Day(
            id=_new_id("day"),
            date=day_data.get("date"),
            weather=day_data.get("weather"),
            notes=day_data.get("notes") or "",
            activities=day_data.get("activities") or [],
            created_at=now,
            updated_at=now,
        )
        await self._save_days(itinerary, [*itinerary.days, day])
        return day

    async def get_day(self, trip_id: str, user_id: str, day_index: int) -> Optional[Day]:
        self._require_index(day_index)
        itinerary = await self.get_or_create_itinerary(trip_id, user_id)
        if day_index >= len(itinerary.days):
            return None
        return itinerary.days[day_index]

    async def update_day(self, trip_id: str, user_id: str, day_index: int, changes: Dict[str, Any]) -> Day:
        if not changes:
            raise TripValidationError("Update data is required")
        itinerary, days = await self._get_day_for_update(trip_id, user_id, day_index)
        merged = {**days[day_index].model_dump(), **changes, "id": days[day_index].id, "updated_at": _now_iso()}
        try:
            days[day_index] = Day(**merged)
        except ValidationError as e:
            raise TripValidationError([err["msg"] for err in e.errors()]) from e
        await self._save_days(itinerary, days)
        return days[day_index]

    async def delete_day(
        self,
        trip_id: str,
        user_id: str,
        day_index: int,
        selected_day: Optional[int] = None,
    ) -> DayDeletion:
        """Remove the day at ``day_index`` and compact the list.

        ``selected_day`` is the one-based day the caller is showing; the
        result carries the day to show next.
        """
        itinerary, days = await self._get_day_for_update(trip_id, user_id, day_index)
        day_count = len(days)
        remaining = [d for i, d in enumerate(days) if i != day_index]
        await self._save_days(itinerary, remaining)

        deleted_day = day_index + 1
        next_day = select_day_after_delete(deleted_day, selected_day or deleted_day, day_count)
        self.logger.info(
            f"[itinerary] deleted day {deleted_day} of trip {trip_id}",
            extra={"remaining": len(remaining), "selected_day": next_day}
        )
        return DayDeletion(days=remaining, selected_day=next_day)

    async def get_trip_days(self, trip_id: str, user_id: str) -> List[Day]:
        return (await self.get_or_create_itinerary(trip_id, user_id)).days

    async def reorder_days(self, trip_id: str, user_id: str, new_order: Sequence[int]) -> List[Day]:
        """Reorder days; ``new_order`` lists every current index exactly once"""
        itinerary = await self.get_or_create_itinerary(trip_id, user_id)
        max_index = len(itinerary.days) - 1
        for index in new_order:
            if not isinstance(index, int) or index < 0 or index > max_index:
                raise TripValidationError(f"Invalid day index: {index}")
        if sorted(new_order) != list(range(len(itinerary.days))):
            raise TripValidationError("New order must contain each day index exactly once")

        reordered = [itinerary.days[i] for i in new_order]
        await self._save_days(itinerary, reordered)
        return reordered

    async def add_multiple_days(self, trip_id: str, user_id: str, start_day: int, end_day: int) -> List[Day]:
        """Append empty days so that day numbers start_day..end_day (one-based) exist"""
        if not start_day or not end_day or start_day < 1 or start_day > end_day:
            raise TripValidationError("Valid start and end day numbers are required")

        itinerary = await self.get_or_create_itinerary(trip_id, user_id)
        current_count = len(itinerary.days)
        now = _now_iso()
        new_days = [
            Day(id=_new_id("day"), created_at=now, updated_at=now)
            for day_number in range(start_day, end_day + 1)
            if day_number > current_count
        ]
        if new_days:
            await self._save_days(itinerary, [*itinerary.days, *new_days])
        return new_days

    async def initialize_itinerary_for_trip(self, trip_id: str, user_id: str, start_date: Any, end_date: Any) -> Itinerary:
        """Create one dated day per trip day; an itinerary that already has days is left as is"""
        start = to_date(start_date)
        if start is None or to_date(end_date) is None:
            raise TripValidationError("Start date and end date are required")

        itinerary = await self.get_or_create_itinerary(trip_id, user_id)
        if itinerary.days:
            return itinerary

        now = _now_iso()
        days = [
            Day(id=_new_id("day"), date=(start + timedelta(days=i)).isoformat(), created_at=now, updated_at=now)
            for i in range(calculate_trip_days(start_date, end_date))
        ]
        await self._save_days(itinerary, days)
        self.logger.info(f"[itinerary] initialized {len(days)} days for trip {trip_id}")
        return itinerary

    def _build_activity(self, data: ActivityCreate, ai_generated: bool) -> Activity:
        now = _now_iso()
        return Activity(
            id=_new_id("activity"),
            title=data.title,
            start_time=data.start_time,
            end_time=data.end_time,
            notes=data.notes,
            location=data.location or None,
            category=data.category,
            ai_generated=ai_generated,
            created_at=now,
            updated_at=now,
        )

    async def add_activity_to_day(
        self,
        trip_id: str,
        user_id: str,
        day_index: int,
        activity_data: ActivityInput,
        ai_generated: bool = False,
    ) -> Activity:
        activity = self._build_activity(_validate_activity(activity_data), ai_generated)
        itinerary, days = await self._get_day_for_update(trip_id, user_id, day_index)
        day = days[day_index]
        days[day_index] = day.model_copy(update={"activities": [*day.activities, activity], "updated_at": _now_iso()})
        await self._save_days(itinerary, days)
        return activity

    async def update_activity_in_day(
        self,
        trip_id: str,
        user_id: str,
        day_index: int,
        activity_id: str,
        changes: Dict[str, Any],
    ) -> Activity:
        if not activity_id:
            raise TripValidationError("Activity ID is required")
        if not changes:
            raise TripValidationError("Update data is required")

        itinerary, days = await self._get_day_for_update(trip_id, user_id, day_index)
        day = days[day_index]
        position = next((i for i, a in enumerate(day.activities) if a.id == activity_id), None)
        if position is None:
            raise ActivityNotFoundError(activity_id)

        current = day.activities[position]
        editable = {k: v for k, v in changes.items() if k in ActivityCreate.model_fields}
        checked = _validate_activity({**current.model_dump(include=set(ActivityCreate.model_fields)), **editable})
        updated = current.model_copy(update={**checked.model_dump(), "updated_at": _now_iso()})

        activities = list(day.activities)
        activities[position] = updated
        days[day_index] = day.model_copy(update={"activities": activities, "updated_at": _now_iso()})
        await self._save_days(itinerary, days)
        return updated

    async def delete_activity_from_day(self, trip_id: str, user_id: str, day_index: int, activity_id: str) -> bool:
        if not activity_id:
            raise TripValidationError("Activity ID is required")
        itinerary, days = await self._get_day_for_update(trip_id, user_id, day_index)
        day = days[day_index]
        remaining = [a for a in day.activities if a.id != activity_id]
        if len(remaining) == len(day.activities):
            raise ActivityNotFoundError(activity_id)

        days[day_index] = day.model_copy(update={"activities": remaining, "updated_at": _now_iso()})
        await self._save_days(itinerary, days)
        return True

    async def get_day_activities(self, trip_id: str, user_id: str, day_index: int) -> List[Activity]:
        day = await self.get_day(trip_id, user_id, day_index)
        return day.activities if day else []

    async def set_day_activities(
        self,
        trip_id: str,
        user_id: str,
        day_index: int,
        activities: Sequence[ActivityInput],
        ai_generated: bool = False,
    ) -> List[Activity]:
        """Replace every activity of a day in one write"""
        built = [self._build_activity(_validate_activity(a), ai_generated) for a in activities]
        itinerary, days = await self._get_day_for_update(trip_id, user_id, day_index)
        days[day_index] = days[day_index].model_copy(update={"activities": built, "updated_at": _now_iso()})
        await self._save_days(itinerary, days)
        return built

    async def delete_itinerary(self, trip_id: str, user_id: str) -> bool:
        self._require_ids(trip_id, user_id)
        doc = await self._find(trip_id, user_id)
        if doc is None:
            return False
        await self.documents.delete(self.collection, doc["id"])
        self.logger.info(f"[itinerary] deleted itinerary for trip {trip_id}")
        return True
