from datetime import date, timedelta

import pytest

from tabi.models.response_models import ParsedTrip, ParsedTripPlan
from tabi.services.itinerary_store import ItineraryStore
from tabi.services.trip_data_parser import parse_trip_planning_response
from tabi.services.trip_materializer import TripMaterializer
from tabi.services.trip_store import TripStore
from tabi.utils.errors import TripValidationError
from tabi.utils.trip_constants import TripStatus

from conftest import build_plan_json


class BrokenItineraryStore(ItineraryStore):
    async def initialize_itinerary_for_trip(self, trip_id, user_id, start_date, end_date):
        raise ConnectionError("itinerary backend unreachable")


def _plan(**kwargs) -> ParsedTripPlan:
    return parse_trip_planning_response(build_plan_json(**kwargs)).data


def _parsed_trip(**overrides) -> ParsedTrip:
    start = date.today() + timedelta(days=20)
    data = {
        "name": "Oslo Fjords",
        "location": "Oslo, Norway",
        "start_date": start,
        "end_date": start + timedelta(days=2),
        "description": "",
        "generated_at": "2026-01-01T00:00:00Z",
    }
    data.update(overrides)
    return ParsedTrip(**data)


def test_enhance_computes_duration_status_and_fallbacks(materializer):
    enhanced = materializer.enhance_trip_data(_parsed_trip(description="<b>Fjords</b> and ferries"))

    assert enhanced["duration"] == 3
    assert enhanced["status"] == TripStatus.UPCOMING
    assert enhanced["description"] == "Fjords and ferries"
    assert enhanced["ai_generated"] is True

    fallback = materializer.enhance_trip_data(_parsed_trip(name="<i></i>"))
    assert fallback["name"] == f"Oslo Trip {(date.today() + timedelta(days=20)).year}"
    assert fallback["description"] == "A 3-day trip to Oslo, planned with AI assistance."


def test_enhance_marks_current_trip_ongoing(materializer):
    today = date.today()
    enhanced = materializer.enhance_trip_data(
        _parsed_trip(start_date=today - timedelta(days=1), end_date=today + timedelta(days=1)), today
    )
    assert enhanced["status"] == TripStatus.ONGOING


@pytest.mark.asyncio
async def test_materialize_creates_trip_and_activities(materializer, itinerary_store):
    result = await materializer.materialize(_plan(), "owner-1")

    assert result.success is True
    assert result.trip.user_id == "owner-1"
    assert result.activities_created == 3
    days = await itinerary_store.get_trip_days(result.trip_id, "owner-1")
    assert len(days) == 5


@pytest.mark.asyncio
async def test_trip_only_plan_gets_empty_days(materializer, itinerary_store):
    result = await materializer.materialize(_plan(include_itinerary=False), "owner-1")

    assert result.activities_created == 0
    assert result.itinerary_initialized is True
    days = await itinerary_store.get_trip_days(result.trip_id, "owner-1")
    assert len(days) == 5
    assert all(not d.activities for d in days)


@pytest.mark.asyncio
async def test_itinerary_failure_keeps_trip(documents):
    broken = BrokenItineraryStore(documents, collection="itineraries")
    trip_store = TripStore(documents, itinerary_store=broken, collection="trips")
    materializer = TripMaterializer(trip_store, broken)

    result = await materializer.materialize(_plan(), "owner-1")

    assert result.success is True
    assert result.activities_created == 0
    assert result.itinerary_initialized is False
    stored = await trip_store.get_trip(result.trip_id, "owner-1")
    assert stored.name == "Lisbon Slow Travel"


@pytest.mark.asyncio
async def test_invalid_trip_is_rejected_before_storage(materializer, trip_store):
    today = date.today()
    plan = ParsedTripPlan(trip=_parsed_trip(start_date=today + timedelta(days=500), end_date=today + timedelta(days=502)))

    with pytest.raises(TripValidationError):
        await materializer.materialize(plan, "owner-1")

    assert await trip_store.get_user_trips("owner-1") == []


@pytest.mark.asyncio
async def test_populate_itinerary_is_repeatable(materializer, itinerary_store):
    plan = _plan()
    result = await materializer.materialize(plan, "owner-1")

    populated = await materializer.populate_itinerary(result.trip_id, "owner-1", itinerary=plan.itinerary)

    assert populated == {"itinerary_initialized": True, "activities_created": 3}
    days = await itinerary_store.get_trip_days(result.trip_id, "owner-1")
    assert len(days) == 5
    assert sum(len(d.activities) for d in days) == 3


@pytest.mark.asyncio
async def test_day_keys_beyond_stored_days_are_skipped(materializer, itinerary_store):
    plan = _plan()
    result = await materializer.materialize(plan.model_copy(update={"itinerary": None}), "owner-1")
    await itinerary_store.delete_day(result.trip_id, "owner-1", 4)
    await itinerary_store.delete_day(result.trip_id, "owner-1", 3)
    await itinerary_store.delete_day(result.trip_id, "owner-1", 2)
    await itinerary_store.delete_day(result.trip_id, "owner-1", 1)

    populated = await materializer.populate_itinerary(result.trip_id, "owner-1", itinerary=plan.itinerary)

    assert populated["activities_created"] == 2


class UnreadableTripStore(TripStore):
    async def get_trip(self, trip_id, user_id):
        raise ConnectionError("read timed out")


@pytest.mark.asyncio
async def test_trip_read_back_failure_still_reports_created_trip(documents, itinerary_store):
    trip_store = UnreadableTripStore(documents, itinerary_store=itinerary_store, collection="trips")
    materializer = TripMaterializer(trip_store, itinerary_store)

    result = await materializer.materialize(_plan(), "owner-1")

    assert result.success is True
    assert result.trip_id
    assert result.trip is None
    assert result.activities_created == 3
    assert len(await documents.query("trips", filters=[("user_id", "==", "owner-1")])) == 1
    days = await itinerary_store.get_trip_days(result.trip_id, "owner-1")
    assert len(days) == 5
