import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from tabi.models.response_models import ParsedActivity, ParsedTrip, ParsedTripPlan, SaveResult
from tabi.models.trip_models import ActivityCreate, Trip
from tabi.services.itinerary_store import ItineraryStore
from tabi.services.trip_store import TripStore
from tabi.utils.errors import ErrorCategory, MaterializationError, TabiError, TripValidationError
from tabi.utils.formatters import TripFormatter, sanitize_ai_text
from tabi.utils.trip_constants import (
    ACTIVITY_VALIDATION,
    TRIP_VALIDATION,
    calculate_trip_days,
    infer_trip_status,
)
from tabi.utils.validators import TripDataValidator

ItineraryData = Dict[str, List[ParsedActivity]]


class TripMaterializer:
    """Turns a validated plan into a stored trip and its itinerary.

    Persistence runs in two phases without a transaction: the trip document is
    authoritative, and populating the itinerary is best effort. A failed
    second phase is reported through the result, never as an error, and can
    be repeated later with ``populate_itinerary``.
    """

    def __init__(self, trip_store: TripStore, itinerary_store: ItineraryStore):
        self.trip_store = trip_store
        self.itinerary_store = itinerary_store
        self.logger = logging.getLogger(__name__)

    def enhance_trip_data(self, trip: ParsedTrip, today: Optional[date] = None) -> Dict[str, Any]:
        """Sanitized trip fields plus computed name, description, duration and status"""
        name = sanitize_ai_text(trip.name, TRIP_VALIDATION["name"]["max_length"])
        location = sanitize_ai_text(trip.location, TRIP_VALIDATION["location"]["max_length"])
        description = sanitize_ai_text(trip.description, TRIP_VALIDATION["description"]["max_length"])

        if not name:
            name = TripFormatter.fallback_trip_name(location, trip.start_date)
        if not description:
            description = TripFormatter.fallback_description(location, trip.start_date, trip.end_date)

        return {
            "name": name,
            "location": location,
            "description": description,
            "start_date": trip.start_date,
            "end_date": trip.end_date,
            "duration": calculate_trip_days(trip.start_date, trip.end_date),
            "status": infer_trip_status(trip.start_date, trip.end_date, today),
            "ai_generated": True,
            "ai_prompt": trip.ai_prompt,
            "generated_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }

    async def materialize(self, plan: ParsedTripPlan, owner_id: str, today: Optional[date] = None) -> SaveResult:
        """Persist a plan for ``owner_id``.

        Raises ``TripValidationError`` when the enhanced trip breaks a business
        rule and ``MaterializationError`` when the trip cannot be stored.
        """
        enhanced = self.enhance_trip_data(plan.trip, today)

        check = TripDataValidator.validate_trip(enhanced, today)
        if not check['valid']:
            self.logger.warning("[materializer] generated trip failed validation", extra={"errors": check['errors']})
            raise TripValidationError(check['errors'])

        try:
            trip_id = await self.trip_store.create_trip(enhanced, owner_id, today)
        except TabiError:
            raise
        except Exception as e:
            self.logger.exception("[materializer] failed to create trip")
            raise MaterializationError(
                "Failed to save the trip",
                category=ErrorCategory.SERVICE,
                code="trip-create-failed",
                details={"error": str(e)},
            ) from e

        self.logger.info(f"[materializer] created trip {trip_id}", extra={"owner_id": owner_id})

        # Once created, the trip id is reported even if reading it back fails.
        trip: Optional[Trip] = None
        try:
            trip = await self.trip_store.get_trip(trip_id, owner_id)
        except Exception as e:
            self.logger.warning(
                f"[materializer] trip {trip_id} was saved but could not be read back",
                extra={"error": str(e)}
            )

        try:
            populated = await self.populate_itinerary(
                trip_id, owner_id, trip=trip if trip is not None else enhanced, itinerary=plan.itinerary
            )
        except Exception as e:
            self.logger.warning(
                f"[materializer] itinerary for trip {trip_id} could not be created; trip was saved",
                extra={"error": str(e)}
            )
            return SaveResult(success=True, trip_id=trip_id, trip=trip, activities_created=0, itinerary_initialized=False)

        return SaveResult(
            success=True,
            trip_id=trip_id,
            trip=trip,
            activities_created=populated["activities_created"],
            itinerary_initialized=populated["itinerary_initialized"],
        )

    async def populate_itinerary(
        self,
        trip_id: str,
        owner_id: str,
        trip: Optional[Union[Trip, Dict[str, Any]]] = None,
        itinerary: Optional[ItineraryData] = None,
    ) -> Dict[str, Any]:
        """Create the trip's days and write generated activities.

        Safe to repeat: days are only created when the itinerary has none, and
        each generated day's activities are replaced rather than appended.
        """
        if trip is None:
            trip = await self.trip_store.get_trip(trip_id, owner_id)
        trip_data = trip.model_dump() if isinstance(trip, Trip) else dict(trip)

        stored = await self.itinerary_store.initialize_itinerary_for_trip(
            trip_id, owner_id, trip_data.get("start_date"), trip_data.get("end_date")
        )

        activities_created = 0
        for day_key, activities in sorted((itinerary or {}).items(), key=lambda kv: _day_number(kv[0])):
            day_index = _day_number(day_key) - 1
            if day_index < 0 or day_index >= len(stored.days):
                self.logger.warning(f"[materializer] no stored day for {day_key}", extra={"trip_id": trip_id})
                continue

            prepared = [a for a in (self._prepare_activity(item) for item in activities) if a is not None]
            written = await self.itinerary_store.set_day_activities(
                trip_id, owner_id, day_index, prepared, ai_generated=True
            )
            activities_created += len(written)

        self.logger.info(
            f"[materializer] itinerary ready for trip {trip_id}",
            extra={"days": len(stored.days), "activities_created": activities_created}
        )
        return {"itinerary_initialized": True, "activities_created": activities_created}

    def _prepare_activity(self, activity: ParsedActivity) -> Optional[ActivityCreate]:
        try:
            return ActivityCreate(
                title=sanitize_ai_text(activity.title, ACTIVITY_VALIDATION["title"]["max_length"]),
                start_time=activity.start_time,
                end_time=activity.end_time,
                notes=sanitize_ai_text(activity.description, ACTIVITY_VALIDATION["notes"]["max_length"]),
                location=sanitize_ai_text(activity.location, ACTIVITY_VALIDATION["location"]["max_length"]) or None,
                category=activity.category,
            )
        except ValidationError as e:
            self.logger.warning("[materializer] skipping activity", extra={"title": activity.title, "error": str(e)})
            return None


def _day_number(day_key: str) -> int:
    try:
        return int(day_key.split("_", 1)[1])
    except (IndexError, ValueError):
        return 0
