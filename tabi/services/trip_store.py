import logging
from datetime import date
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from tabi.models.trip_models import Trip, TripPage
from tabi.utils.config import get_settings
from tabi.utils.document_store import DocumentStore
from tabi.utils.errors import AccessDeniedError, TripNotFoundError, TripValidationError
from tabi.utils.trip_constants import calculate_trip_days, infer_trip_status
from tabi.utils.validators import TripDataValidator

if TYPE_CHECKING:
    from tabi.services.itinerary_store import ItineraryStore

_TRIP_FIELDS = (
    "name", "location", "description", "start_date", "end_date",
    "ai_generated", "ai_prompt", "generated_at",
)


class TripStore:
    """Trip persistence with owner access control.

    Status and duration are derived from the date pair on every read and
    write; a caller-supplied status is ignored.
    """

    def __init__(
        self,
        documents: DocumentStore,
        itinerary_store: Optional["ItineraryStore"] = None,
        collection: Optional[str] = None,
    ):
        settings = get_settings()
        self.documents = documents
        self.itinerary_store = itinerary_store
        self.collection = collection or settings.FIRESTORE_TRIPS_COLLECTION
        self.default_page_size = settings.TRIPS_DEFAULT_PAGE_SIZE
        self.max_page_size = settings.TRIPS_MAX_PAGE_SIZE
        self.logger = logging.getLogger(__name__)

    def _to_trip(self, doc: Dict[str, Any], today: Optional[date] = None) -> Trip:
        data = dict(doc)
        data["status"] = infer_trip_status(data.get("start_date"), data.get("end_date"), today)
        data["duration"] = calculate_trip_days(data.get("start_date"), data.get("end_date"))
        return Trip(**{k: v for k, v in data.items() if k in Trip.model_fields})

    async def create_trip(self, trip_data: Dict[str, Any], user_id: str, today: Optional[date] = None) -> str:
        if not user_id:
            raise TripValidationError("User ID is required")

        payload = {k: trip_data.get(k) for k in _TRIP_FIELDS if k in trip_data}
        payload.setdefault("description", "")
        payload.setdefault("ai_generated", False)
        payload.setdefault("ai_prompt", "")

        check = TripDataValidator.validate_trip(payload, today)
        if not check['valid']:
            raise TripValidationError(check['errors'])

        payload["user_id"] = user_id
        payload["status"] = infer_trip_status(payload["start_date"], payload["end_date"], today)
        payload["duration"] = calculate_trip_days(payload["start_date"], payload["end_date"])

        trip_id = await self.documents.add(self.collection, payload)
        self.logger.info(f"[trips] created trip {trip_id}", extra={"user_id": user_id, "status": payload["status"].value})
        return trip_id

    async def _get_owned_doc(self, trip_id: str, user_id: str) -> Dict[str, Any]:
        if not trip_id:
            raise TripValidationError("Trip ID is required")
        if not user_id:
            raise TripValidationError("User ID is required")

        doc = await self.documents.get(self.collection, trip_id)
        if doc is None:
            raise TripNotFoundError(trip_id)
        if doc.get("user_id") != user_id:
            self.logger.warning(f"[trips] access denied to trip {trip_id}", extra={"user_id": user_id})
            raise AccessDeniedError(trip_id)
        return doc

    async def get_trip(self, trip_id: str, user_id: str) -> Trip:
        return self._to_trip(await self._get_owned_doc(trip_id, user_id))

    async def get_user_trips(self, user_id: str) -> List[Trip]:
        """All trips of a user, newest first"""
        if not user_id:
            raise TripValidationError("User ID is required")
        docs = await self.documents.query(
            self.collection,
            filters=[("user_id", "==", user_id)],
            order_by="created_at",
            descending=True,
        )
        self.logger.debug(f"[trips] retrieved {len(docs)} trips", extra={"user_id": user_id})
        return [self._to_trip(d) for d in docs]

    async def get_user_trips_paginated(
        self,
        user_id: str,
        page_size: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> TripPage:
        """One page of a user's trips, newest first; ``cursor`` is the last trip id of the previous page"""
        if not user_id:
            raise TripValidationError("User ID is required")

        size = page_size if page_size is not None else self.default_page_size
        size = min(max(1, size), self.max_page_size)
        docs = await self.documents.query(
            self.collection,
            filters=[("user_id", "==", user_id)],
            order_by="created_at",
            descending=True,
            limit=size,
            start_after=cursor,
        )
        trips = [self._to_trip(d) for d in docs]
        return TripPage(
            trips=trips,
            next_cursor=trips[-1].id if trips else None,
            has_more=len(trips) == size,
            page_size=size,
            total_retrieved=len(trips),
        )

    async def update_trip(self, trip_id: str, changes: Dict[str, Any], user_id: str, today: Optional[date] = None) -> Trip:
        if not changes:
            raise TripValidationError("Update data is required")
        current = await self._get_owned_doc(trip_id, user_id)

        updates = {k: v for k, v in changes.items() if k in _TRIP_FIELDS}
        check = TripDataValidator.validate_trip_update(updates, current, today)
        if not check['valid']:
            raise TripValidationError(check['errors'])

        for field in ("name", "location", "description"):
            if isinstance(updates.get(field), str):
                updates[field] = updates[field].strip()

        if "start_date" in updates or "end_date" in updates:
            start = updates.get("start_date", current.get("start_date"))
            end = updates.get("end_date", current.get("end_date"))
            updates["status"] = infer_trip_status(start, end, today)
            updates["duration"] = calculate_trip_days(start, end)

        await self.documents.update(self.collection, trip_id, updates)
        self.logger.info(f"[trips] updated trip {trip_id}", extra={"fields": sorted(updates.keys())})
        return await self.get_trip(trip_id, user_id)

    async def delete_trip(self, trip_id: str, user_id: str) -> bool:
        """Delete a trip and its itinerary"""
        await self._get_owned_doc(trip_id, user_id)
        if self.itinerary_store is not None:
            await self.itinerary_store.delete_itinerary(trip_id, user_id)
        await self.documents.delete(self.collection, trip_id)
        self.logger.info(f"[trips] deleted trip {trip_id}")
        return True

    async def search_trips(self, user_id: str, search_term: str) -> List[Trip]:
        """Case-insensitive substring match over name, location and description"""
        if not search_term or not search_term.strip():
            raise TripValidationError("Search term is required")
        needle = search_term.strip().lower()
        trips = await self.get_user_trips(user_id)
        matches = [
            t for t in trips
            if needle in t.name.lower()
            or needle in t.location.lower()
            or (t.description and needle in t.description.lower())
        ]
        self.logger.debug(f"[trips] {len(matches)} trips match '{search_term}'")
        return matches
