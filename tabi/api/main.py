from fastapi import FastAPI, HTTPException, Header, Query
import os
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from tabi.models.request_models import PlanRequest, SuggestActivitiesRequest, TripUpdateRequest
from tabi.models.response_models import PlanOutcome
from tabi.services.generation_client import VertexGenerationClient
from tabi.services.itinerary_store import ItineraryStore
from tabi.services.planning_sessions import PlanningSessionRegistry, orchestrator_factory
from tabi.services.trip_materializer import TripMaterializer
from tabi.services.trip_planning_orchestrator import TripPlanningOrchestrator
from tabi.services.trip_store import TripStore
from tabi.utils.config import get_settings, validate_settings
from tabi.utils.document_store import DocumentStore, create_document_store
from tabi.utils.errors import TabiError, TripValidationError

# Configure logging
logging.basicConfig(
    level=getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO),
    format=get_settings().LOG_FORMAT
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Tabi Trip Planner API",
    description="Plan trips from free text with Google Vertex AI Gemini and keep them with their day-by-day itineraries",
    version=get_settings().API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global services (initialized on startup or by configure_services)
generation_client: Optional[VertexGenerationClient] = None
document_store: Optional[DocumentStore] = None
trip_store: Optional[TripStore] = None
itinerary_store: Optional[ItineraryStore] = None
materializer: Optional[TripMaterializer] = None
sessions: Optional[PlanningSessionRegistry] = None


def configure_services(
    client: Optional[VertexGenerationClient] = None,
    documents: Optional[DocumentStore] = None,
):
    """Wire the service graph; defaults come from settings"""
    global generation_client, document_store, trip_store, itinerary_store, materializer, sessions

    generation_client = client or VertexGenerationClient()
    document_store = documents or create_document_store()
    itinerary_store = ItineraryStore(document_store)
    trip_store = TripStore(document_store, itinerary_store=itinerary_store)
    materializer = TripMaterializer(trip_store, itinerary_store)
    settings = get_settings()
    sessions = PlanningSessionRegistry(
        orchestrator_factory(generation_client, materializer),
        max_sessions=settings.PLANNING_SESSION_MAX,
        idle_seconds=settings.PLANNING_SESSION_IDLE_SECONDS,
    )
    logger.info(
        "Services configured",
        extra={"generation_available": generation_client.is_available(), "store": type(document_store).__name__}
    )


def services_configured() -> bool:
    return sessions is not None


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup"""
    if services_configured():
        return
    try:
        settings = get_settings()

        if not validate_settings():
            logger.warning("Text generation is not configured; planning requests will report a configuration error")

        # Ensure GOOGLE_APPLICATION_CREDENTIALS is exported for ADC (Vertex AI)
        if settings.GOOGLE_APPLICATION_CREDENTIALS:
            os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = settings.GOOGLE_APPLICATION_CREDENTIALS
            logger.info("ADC path set from settings", extra={"gac_path": settings.GOOGLE_APPLICATION_CREDENTIALS})
        else:
            logger.info("No GOOGLE_APPLICATION_CREDENTIALS in settings; relying on gcloud ADC if present")

        logger.info("Initializing services...")
        configure_services()
        logger.info("All services initialized successfully")

    except Exception as e:
        logger.error(f"Failed to initialize services: {str(e)}")
        raise


def _require_services():
    if not services_configured():
        raise HTTPException(status_code=503, detail="Services are not initialized")


def _require_user(user_id: Optional[str]) -> str:
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return user_id.strip()


def _planner(user_id: Optional[str], session_id: Optional[str]) -> TripPlanningOrchestrator:
    _require_services()
    uid = _require_user(user_id)
    return sessions.get(session_id or uid, uid)


def _http_error(e: TabiError) -> HTTPException:
    detail: Dict[str, Any] = {"message": e.message, "code": e.code}
    if isinstance(e, TripValidationError):
        detail["errors"] = e.errors
    return HTTPException(status_code=e.status_code or 500, detail=detail)


def _outcome_payload(outcome: PlanOutcome, planner: TripPlanningOrchestrator) -> Dict[str, Any]:
    return {
        "success": outcome.success,
        "superseded": outcome.superseded,
        "from_cache": outcome.from_cache,
        "plan": outcome.plan.to_response_dict() if outcome.plan else None,
        "error": outcome.error.model_dump(mode="json") if outcome.error else None,
        "state": planner.state.model_dump(mode="json", by_alias=True),
    }


# =============================================================================
# PLANNING ENDPOINTS
# =============================================================================

@app.post("/api/v1/plan")
async def plan_trip(
    request: PlanRequest,
    x_user_id: Optional[str] = Header(None),
    x_session_id: Optional[str] = Header(None),
):
    """Plan a trip from free text. Failures are reported in the body with the planner state."""
    planner = _planner(x_user_id, x_session_id)
    logger.info("Planning request received", extra={"session": x_session_id or x_user_id})
    outcome = await planner.plan(request.input, request.options)
    return _outcome_payload(outcome, planner)


@app.post("/api/v1/plan/retry")
async def retry_plan(x_user_id: Optional[str] = Header(None), x_session_id: Optional[str] = Header(None)):
    planner = _planner(x_user_id, x_session_id)
    outcome = await planner.retry()
    return _outcome_payload(outcome, planner)


@app.post("/api/v1/plan/save")
async def save_plan(x_user_id: Optional[str] = Header(None), x_session_id: Optional[str] = Header(None)):
    """Persist the session's current plan as a trip with its itinerary"""
    planner = _planner(x_user_id, x_session_id)
    result = await planner.save()
    return result.model_dump(mode="json")


@app.post("/api/v1/plan/save/itinerary")
async def retry_plan_itinerary(x_user_id: Optional[str] = Header(None), x_session_id: Optional[str] = Header(None)):
    planner = _planner(x_user_id, x_session_id)
    result = await planner.retry_itinerary()
    return result.model_dump(mode="json")


@app.post("/api/v1/plan/reset")
async def reset_plan(x_user_id: Optional[str] = Header(None), x_session_id: Optional[str] = Header(None)):
    planner = _planner(x_user_id, x_session_id)
    planner.reset()
    return planner.state.model_dump(mode="json", by_alias=True)


@app.post("/api/v1/plan/clear-error")
async def clear_plan_error(x_user_id: Optional[str] = Header(None), x_session_id: Optional[str] = Header(None)):
    planner = _planner(x_user_id, x_session_id)
    planner.clear_error()
    return planner.state.model_dump(mode="json", by_alias=True)


@app.get("/api/v1/plan/state")
async def get_plan_state(x_user_id: Optional[str] = Header(None), x_session_id: Optional[str] = Header(None)):
    planner = _planner(x_user_id, x_session_id)
    return planner.state.model_dump(mode="json", by_alias=True)


@app.delete("/api/v1/plan/session")
async def close_plan_session(x_user_id: Optional[str] = Header(None), x_session_id: Optional[str] = Header(None)):
    """Discard the caller's planning session and its cached plans"""
    _require_services()
    uid = _require_user(x_user_id)
    session_id = x_session_id or uid
    planner = sessions.peek(session_id)
    closed = planner is not None and planner.user_id == uid and sessions.close(session_id)
    return {"closed": closed, "session_id": session_id}


@app.post("/api/v1/plan/suggest-activities")
async def suggest_activities(
    request: SuggestActivitiesRequest,
    x_user_id: Optional[str] = Header(None),
    x_session_id: Optional[str] = Header(None),
):
    """Suggest activities for one of the caller's trips"""
    planner = _planner(x_user_id, x_session_id)
    try:
        trip = await trip_store.get_trip(request.trip_id, planner.user_id)
    except TabiError as e:
        raise _http_error(e)
    result = await planner.suggest_activities(trip, request.request)
    return result.model_dump(mode="json", by_alias=True)


# =============================================================================
# TRIP ENDPOINTS
# =============================================================================

@app.get("/api/v1/trips")
async def list_trips(
    page_size: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = Query(None, description="Id of the last trip of the previous page"),
    x_user_id: Optional[str] = Header(None),
):
    _require_services()
    user_id = _require_user(x_user_id)
    try:
        page = await trip_store.get_user_trips_paginated(user_id, page_size=page_size, cursor=cursor)
    except TabiError as e:
        raise _http_error(e)
    return page.model_dump(mode="json")


@app.get("/api/v1/trips/search")
async def search_trips(q: str = Query(..., description="Text matched against name, location and description"), x_user_id: Optional[str] = Header(None)):
    _require_services()
    user_id = _require_user(x_user_id)
    try:
        trips = await trip_store.search_trips(user_id, q)
    except TabiError as e:
        raise _http_error(e)
    return {"trips": [t.model_dump(mode="json") for t in trips], "count": len(trips)}


@app.get("/api/v1/trips/{trip_id}")
async def get_trip(trip_id: str, x_user_id: Optional[str] = Header(None)):
    _require_services()
    user_id = _require_user(x_user_id)
    try:
        trip = await trip_store.get_trip(trip_id, user_id)
    except TabiError as e:
        raise _http_error(e)
    return trip.model_dump(mode="json")


@app.patch("/api/v1/trips/{trip_id}")
async def update_trip(trip_id: str, request: TripUpdateRequest, x_user_id: Optional[str] = Header(None)):
    _require_services()
    user_id = _require_user(x_user_id)
    try:
        trip = await trip_store.update_trip(trip_id, request.changes(), user_id)
    except TabiError as e:
        raise _http_error(e)
    return trip.model_dump(mode="json")


@app.delete("/api/v1/trips/{trip_id}")
async def delete_trip(trip_id: str, x_user_id: Optional[str] = Header(None)):
    _require_services()
    user_id = _require_user(x_user_id)
    try:
        await trip_store.delete_trip(trip_id, user_id)
    except TabiError as e:
        raise _http_error(e)
    logger.info(f"Deleted trip {trip_id}")
    return {"deleted": True, "trip_id": trip_id}


@app.get("/api/v1/trips/{trip_id}/itinerary")
async def get_trip_itinerary(trip_id: str, x_user_id: Optional[str] = Header(None)):
    _require_services()
    user_id = _require_user(x_user_id)
    try:
        await trip_store.get_trip(trip_id, user_id)
        itinerary = await itinerary_store.get_or_create_itinerary(trip_id, user_id)
    except TabiError as e:
        raise _http_error(e)
    return itinerary.model_dump(mode="json")


@app.delete("/api/v1/trips/{trip_id}/itinerary/days/{day_index}")
async def delete_itinerary_day(
    trip_id: str,
    day_index: int,
    selected_day: Optional[int] = Query(None, ge=1, description="One-based day currently shown"),
    x_user_id: Optional[str] = Header(None),
):
    """Delete a day by zero-based position; later days move up by one"""
    _require_services()
    user_id = _require_user(x_user_id)
    try:
        await trip_store.get_trip(trip_id, user_id)
        deletion = await itinerary_store.delete_day(trip_id, user_id, day_index, selected_day=selected_day)
    except TabiError as e:
        raise _http_error(e)
    return deletion.model_dump(mode="json")


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    try:
        services_healthy = services_configured()
        generation_ready = generation_client is not None and generation_client.is_available()

        return {
            "status": "healthy" if services_healthy and generation_ready else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {
                "generation": generation_ready,
                "document_store": document_store is not None,
                "planning_sessions": len(sessions) if sessions is not None else 0
            },
            "version": get_settings().API_VERSION
        }

    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "error": str(e)
            }
        )


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Tabi Trip Planner API",
        "version": get_settings().API_VERSION,
        "description": "Plan trips from free text with AI",
        "docs": "/docs",
        "health": "/health"
    }
