"""
Request orchestration for AI trip planning.

A planner moves through ``idle -> analyzing -> generating -> parsing ->
validating -> complete`` and lands in ``error`` on any failure. Starting a new
request supersedes the one in flight: its token is cancelled and every later
step of the old request returns without touching state. Successful plans are
replayed from a bounded cache.
"""

import asyncio
import logging
from datetime import date
from typing import Any, Callable, Dict, Optional, Union

from tabi.models.request_models import PlanOptions
from tabi.models.response_models import (
    ErrorInfo,
    LOADING_STATES,
    ParsedTripPlan,
    PlannerSnapshot,
    PlanningState,
    PlanOutcome,
    SaveResult,
    SuggestionResult,
    TokenUsage,
)
from tabi.models.trip_models import Trip
from tabi.prompts.trip_prompts import (
    build_activity_suggestion_prompt,
    build_trip_planning_prompt,
    validate_prompt_input,
)
from tabi.services.generation_client import VertexGenerationClient
from tabi.services.plan_cache import CachedPlan, PlanCache
from tabi.services.trip_data_parser import (
    parse_activity_suggestions,
    parse_response_structure,
    validate_trip_plan,
)
from tabi.services.trip_materializer import TripMaterializer
from tabi.utils.config import get_settings
from tabi.utils.errors import ErrorCategory, TabiError, friendly_error_message, is_retryable


class CancellationToken:
    """Marks a request as superseded; checked before every state change"""

    def __init__(self):
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def error_info(
    category: ErrorCategory,
    message: Optional[str] = None,
    code: Optional[str] = None,
    status_code: Optional[int] = None,
    detail: Optional[str] = None,
) -> ErrorInfo:
    return ErrorInfo(
        message=message or friendly_error_message(category),
        category=category,
        can_retry=is_retryable(category),
        code=code,
        status_code=status_code,
        detail=detail,
    )


def error_info_from_exception(exc: TabiError) -> ErrorInfo:
    message = exc.message if exc.category in (ErrorCategory.VALIDATION, ErrorCategory.CONFIGURATION) else None
    return error_info(exc.category, message=message, code=exc.code, status_code=exc.status_code, detail=exc.message)


class TripPlanningOrchestrator:

    def __init__(
        self,
        client: VertexGenerationClient,
        materializer: Optional[TripMaterializer] = None,
        cache: Optional[PlanCache] = None,
        user_id: Optional[str] = None,
        analyzing_delay: Optional[float] = None,
        parsing_delay: Optional[float] = None,
        validating_delay: Optional[float] = None,
        today: Optional[Callable[[], date]] = None,
    ):
        settings = get_settings()
        self.client = client
        self.materializer = materializer
        self.cache = cache if cache is not None else PlanCache(
            max_entries=settings.PLAN_CACHE_MAX_ENTRIES,
            ttl_seconds=settings.PLAN_CACHE_TTL_SECONDS,
            evict_fraction=settings.PLAN_CACHE_EVICT_FRACTION,
        )
        self.user_id = user_id
        self.analyzing_delay = settings.ANALYZING_DELAY_SECONDS if analyzing_delay is None else analyzing_delay
        self.parsing_delay = settings.PARSING_DELAY_SECONDS if parsing_delay is None else parsing_delay
        self.validating_delay = settings.VALIDATING_DELAY_SECONDS if validating_delay is None else validating_delay
        self._today = today or date.today
        self.logger = logging.getLogger(__name__)

        self._token: Optional[CancellationToken] = None
        self._save_key: Optional[str] = None
        self._save_task: Optional[asyncio.Task] = None
        self._last_saved_trip_id: Optional[str] = None
        self._last_saved_plan: Optional[ParsedTripPlan] = None
        self._clear_state()

    def _clear_state(self):
        self._state = PlanningState.IDLE
        self._error: Optional[ErrorInfo] = None
        self._plan: Optional[ParsedTripPlan] = None
        self._from_cache = False
        self._usage: Optional[TokenUsage] = None
        self._response_time_ms: Optional[int] = None
        self._request_id: Optional[str] = None
        self._model: Optional[str] = None
        self._retry_count = 0
        self._last_input: Optional[str] = None
        self._last_options: Optional[PlanOptions] = None
        self._last_save: Optional[SaveResult] = None

    # Read-only view

    @property
    def state(self) -> PlannerSnapshot:
        return PlannerSnapshot(
            state=self._state,
            is_loading=self._state in LOADING_STATES,
            is_saving=self.is_saving,
            error=self._error,
            trip=self._plan.trip if self._plan else None,
            itinerary=self._plan.itinerary if self._plan else None,
            from_cache=self._from_cache,
            usage=self._usage,
            response_time_ms=self._response_time_ms,
            request_id=self._request_id,
            model=self._model,
            retry_count=self._retry_count,
            last_input=self._last_input,
            last_save=self._last_save,
        )

    @property
    def plan_result(self) -> Optional[ParsedTripPlan]:
        return self._plan

    @property
    def is_saving(self) -> bool:
        return self._save_task is not None and not self._save_task.done()

    # State transitions

    def _set_state(self, new_state: PlanningState):
        self.logger.debug(f"[planner] {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _supersede(self) -> CancellationToken:
        if self._token is not None:
            self._token.cancel()
        self._token = CancellationToken()
        return self._token

    def _fail(self, info: ErrorInfo) -> PlanOutcome:
        self._error = info
        self._set_state(PlanningState.ERROR)
        self.logger.warning(
            f"[planner] request failed: {info.detail or info.message}",
            extra={"category": info.category.value, "code": info.code, "can_retry": info.can_retry}
        )
        return PlanOutcome(success=False, error=info)

    @staticmethod
    def _superseded() -> PlanOutcome:
        return PlanOutcome(success=False, superseded=True)

    def _clear_save_guard(self):
        self._save_key = None
        self._save_task = None
        self._last_save = None

    async def _pause(self, seconds: float):
        if seconds and seconds > 0:
            await asyncio.sleep(seconds)

    # Caller-facing operations

    async def plan(self, user_input: Any, options: Optional[PlanOptions] = None) -> PlanOutcome:
        """Plan a trip from free text; the latest call wins"""
        check = validate_prompt_input(user_input)
        if not check['valid']:
            self._supersede()
            return self._fail(error_info(ErrorCategory.VALIDATION, message=check['error'], code="invalid-input"))

        if not self.client.is_available():
            self._supersede()
            return self._fail(error_info(
                ErrorCategory.CONFIGURATION,
                message=self.client.unavailable_reason,
                code="configuration-invalid",
            ))

        return await self._run(check['sanitized_input'], options or PlanOptions(), retry_count=0)

    async def retry(self) -> PlanOutcome:
        """Repeat the last accepted request with the same input and options"""
        if self._last_input is None or self._error is None or not self._error.can_retry:
            return PlanOutcome(success=False, error=error_info(
                ErrorCategory.VALIDATION, message="No request to retry", code="nothing-to-retry"
            ))
        self.logger.info("[planner] retrying last request", extra={"retry_count": self._retry_count + 1})
        return await self._run(self._last_input, self._last_options or PlanOptions(), retry_count=self._retry_count + 1)

    async def _run(self, user_input: str, options: PlanOptions, retry_count: int) -> PlanOutcome:
        token = self._supersede()
        self._clear_save_guard()
        self._error = None
        self._plan = None
        self._from_cache = False
        self._usage = None
        self._response_time_ms = None
        self._request_id = None
        self._model = None
        self._last_input = user_input
        self._last_options = options
        self._retry_count = retry_count

        try:
            return await self._run_steps(token, user_input, options)
        except Exception as e:
            if token.cancelled:
                return self._superseded()
            self.logger.exception("[planner] unexpected error during trip planning")
            return self._fail(error_info(ErrorCategory.UNKNOWN, code="unexpected-error", detail=str(e)))

    async def _run_steps(self, token: CancellationToken, user_input: str, options: PlanOptions) -> PlanOutcome:
        self._set_state(PlanningState.ANALYZING)
        await self._pause(self.analyzing_delay)
        if token.cancelled:
            return self._superseded()

        cache_key = PlanCache.make_key(user_input, options)
        cached = self.cache.get(cache_key)
        if cached is not None:
            self.logger.info("[planner] using cached plan", extra={"input": user_input[:50]})
            self._apply(cached, from_cache=True)
            return PlanOutcome(success=True, from_cache=True, plan=cached.plan)

        self._set_state(PlanningState.GENERATING)
        today = self._today()
        prompt = build_trip_planning_prompt(user_input, options, today=today)
        try:
            response = await self.client.generate(prompt)
        except TabiError as e:
            if token.cancelled:
                return self._superseded()
            return self._fail(error_info_from_exception(e))
        if token.cancelled:
            return self._superseded()

        self._set_state(PlanningState.PARSING)
        await self._pause(self.parsing_delay)
        if token.cancelled:
            return self._superseded()
        structure = parse_response_structure(response.text)
        if not structure['valid']:
            return self._fail(error_info(
                ErrorCategory.PARSING,
                code="parsing-failed",
                detail=structure['original_error'] or structure['error'],
            ))

        self._set_state(PlanningState.VALIDATING)
        await self._pause(self.validating_delay)
        if token.cancelled:
            return self._superseded()
        result = validate_trip_plan(structure['data'], today)
        if not result.success:
            return self._fail(error_info(ErrorCategory.VALIDATION, code=result.code, detail=result.error))

        entry = CachedPlan(
            plan=result.data,
            raw_text=response.text,
            usage=response.usage,
            response_time_ms=response.response_time_ms,
            request_id=response.request_id,
            model=response.model,
        )
        self.cache.set(cache_key, entry)
        self._apply(entry, from_cache=False)
        self.logger.info(
            "[planner] trip planning completed",
            extra={"trip_name": result.data.trip.name, "response_time_ms": response.response_time_ms}
        )
        return PlanOutcome(success=True, plan=result.data)

    def _apply(self, entry: CachedPlan, from_cache: bool):
        self._plan = entry.plan
        self._from_cache = from_cache
        self._usage = entry.usage
        self._response_time_ms = entry.response_time_ms
        self._request_id = entry.request_id
        self._model = entry.model
        self._error = None
        self._set_state(PlanningState.COMPLETE)

    def reset(self):
        """Abandon any in-flight request and return to idle"""
        if self._token is not None:
            self._token.cancel()
            self._token = None
        self._clear_save_guard()
        self._clear_state()

    def clear_error(self):
        self._error = None
        if self._state == PlanningState.ERROR:
            self._set_state(PlanningState.IDLE)

    def clear_cache(self):
        self.cache.clear()

    def set_user(self, user_id: Optional[str]):
        """Switch the active user; cached plans and drafts of the previous user are dropped"""
        if user_id == self.user_id:
            return
        self.clear_cache()
        if self.user_id is not None:
            self.reset()
            self._last_saved_trip_id = None
            self._last_saved_plan = None
        self.user_id = user_id

    # Persistence

    async def save(self) -> SaveResult:
        """Persist the current plan once.

        Concurrent calls for the same plan share one materialization, and a
        call after a successful save returns the stored result.
        """
        if self._plan is None:
            return self._save_failed(error_info(ErrorCategory.VALIDATION, message="No trip plan to save", code="nothing-to-save"))
        if not self.user_id:
            return self._save_failed(error_info(
                ErrorCategory.VALIDATION,
                message="User not authenticated. Please log in and try again.",
                code="not-authenticated",
            ))
        if self.materializer is None:
            return self._save_failed(error_info(ErrorCategory.CONFIGURATION, message="Trip saving is not configured", code="no-materializer"))

        key = self._request_id or str(id(self._plan))
        if self._save_key != key or self._save_task is None:
            self._save_key = key
            self._save_task = asyncio.ensure_future(self._run_save(key, self._plan, self.user_id))
        return await asyncio.shield(self._save_task)

    async def _run_save(self, key: str, plan: ParsedTripPlan, user_id: str) -> SaveResult:
        try:
            result = await self.materializer.materialize(plan, user_id, today=self._today())
        except TabiError as e:
            result = SaveResult(success=False, error=error_info_from_exception(e))
        except Exception as e:
            self.logger.exception("[planner] unexpected error while saving trip")
            result = SaveResult(success=False, error=error_info(ErrorCategory.SERVICE, code="save-failed", detail=str(e)))

        if self._save_key != key:
            return result
        if result.success:
            self._last_save = result
            self._last_saved_trip_id = result.trip_id
            self._last_saved_plan = plan
            self.logger.info(
                f"[planner] trip saved {result.trip_id}",
                extra={"activities_created": result.activities_created}
            )
        else:
            # A failed save may be attempted again
            self._save_key = None
            self._save_task = None
            self._error = result.error
        return result

    def _save_failed(self, info: ErrorInfo) -> SaveResult:
        self._error = info
        return SaveResult(success=False, error=info)

    async def retry_itinerary(self) -> SaveResult:
        """Repeat itinerary creation for the most recently saved trip"""
        if not self._last_saved_trip_id or self.materializer is None or not self.user_id:
            return SaveResult(success=False, error=error_info(
                ErrorCategory.VALIDATION, message="No saved trip to complete", code="nothing-to-retry"
            ))
        trip_id = self._last_saved_trip_id
        itinerary = self._last_saved_plan.itinerary if self._last_saved_plan else None
        try:
            populated = await self.materializer.populate_itinerary(trip_id, self.user_id, itinerary=itinerary)
        except TabiError as e:
            return SaveResult(success=False, trip_id=trip_id, error=error_info_from_exception(e))
        except Exception as e:
            self.logger.warning(f"[planner] itinerary retry failed for trip {trip_id}", extra={"error": str(e)})
            return SaveResult(success=False, trip_id=trip_id, error=error_info(ErrorCategory.SERVICE, code="itinerary-failed", detail=str(e)))

        result = SaveResult(
            success=True,
            trip_id=trip_id,
            activities_created=populated["activities_created"],
            itinerary_initialized=populated["itinerary_initialized"],
        )
        if self._last_save is not None and self._last_save.trip_id == trip_id:
            self._last_save = self._last_save.model_copy(update={
                "activities_created": result.activities_created,
                "itinerary_initialized": result.itinerary_initialized,
            })
        return result

    # Suggestions

    async def suggest_activities(self, trip: Union[Trip, Dict[str, Any]], activity_request: Any) -> SuggestionResult:
        """Suggest activities for an existing trip without changing planner state"""
        check = validate_prompt_input(activity_request)
        if not trip or not check['valid']:
            return SuggestionResult(success=False, error=error_info(
                ErrorCategory.VALIDATION,
                message="Please provide valid trip data and activity request",
                code="invalid-input",
            ))
        if not self.client.is_available():
            return SuggestionResult(success=False, error=error_info(
                ErrorCategory.CONFIGURATION, message=self.client.unavailable_reason, code="configuration-invalid"
            ))

        trip_data = trip.model_dump(mode="json") if isinstance(trip, Trip) else dict(trip)
        prompt = build_activity_suggestion_prompt(trip_data, check['sanitized_input'])
        try:
            response = await self.client.generate(prompt)
        except TabiError as e:
            return SuggestionResult(success=False, error=error_info_from_exception(e))

        parsed = parse_activity_suggestions(response.text)
        if not parsed['success']:
            return SuggestionResult(
                success=False,
                usage=response.usage,
                error=error_info(ErrorCategory.PARSING, code="parsing-failed", detail=parsed['error']),
            )
        self.logger.info("[planner] activity suggestions generated", extra={"count": len(parsed['activities'])})
        return SuggestionResult(success=True, activities=parsed['activities'], usage=response.usage)
