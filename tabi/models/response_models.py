import json
from pydantic import BaseModel, Field, ConfigDict
from datetime import date, datetime, timezone
from typing import List, Optional, Dict, Any
from enum import Enum

from tabi.models.trip_models import Trip
from tabi.utils.errors import ErrorCategory

class TokenUsage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

class GenerationResponse(BaseModel):
    """Raw outcome of a single generation call"""
    text: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    response_time_ms: int = 0
    request_id: str
    model: str

# Parsed plan, wire names are camelCase
class ParsedTrip(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    location: str
    start_date: date = Field(..., alias="startDate")
    end_date: date = Field(..., alias="endDate")
    description: str = ""
    ai_generated: bool = Field(True, alias="aiGenerated")
    ai_prompt: str = Field("", alias="aiPrompt")
    generated_at: str = Field(..., alias="generatedAt")

class ParsedActivity(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str
    start_time: str = Field(..., alias="startTime")
    end_time: str = Field(..., alias="endTime")
    location: Optional[str] = None
    category: str

class PlanMetadata(BaseModel):
    parsed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ai_generated: bool = True
    has_itinerary: bool = False

class ParsedTripPlan(BaseModel):
    trip: ParsedTrip
    itinerary: Optional[Dict[str, List[ParsedActivity]]] = None  # "day_N" -> activities
    metadata: PlanMetadata = Field(default_factory=PlanMetadata)

    def to_response_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"trip": self.trip.model_dump(mode="json", by_alias=True)}
        if self.itinerary:
            payload["itinerary"] = {
                day_key: [a.model_dump(mode="json", by_alias=True, exclude_none=True) for a in activities]
                for day_key, activities in self.itinerary.items()
            }
        return payload

    def to_response_json(self) -> str:
        """Serialize back into the envelope a model is asked to produce"""
        return json.dumps(self.to_response_dict(), ensure_ascii=False)

class ParseResult(BaseModel):
    """Tagged outcome of parsing generated text: either data or an error"""
    success: bool
    data: Optional[ParsedTripPlan] = None
    error: Optional[str] = None
    category: Optional[ErrorCategory] = None
    code: Optional[str] = None
    original_error: Optional[str] = None

    @classmethod
    def ok(cls, data: ParsedTripPlan) -> "ParseResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, category: ErrorCategory, code: str, original_error: Optional[str] = None) -> "ParseResult":
        return cls(success=False, error=error, category=category, code=code, original_error=original_error)

class ErrorInfo(BaseModel):
    message: str
    category: ErrorCategory = ErrorCategory.UNKNOWN
    can_retry: bool = True
    code: Optional[str] = None
    status_code: Optional[int] = None
    detail: Optional[str] = None  # technical message for logs and debugging

class PlanningState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    PARSING = "parsing"
    VALIDATING = "validating"
    COMPLETE = "complete"
    ERROR = "error"

LOADING_STATES = {
    PlanningState.ANALYZING,
    PlanningState.GENERATING,
    PlanningState.PARSING,
    PlanningState.VALIDATING,
}

class SaveResult(BaseModel):
    success: bool
    trip_id: Optional[str] = None
    trip: Optional[Trip] = None
    activities_created: int = 0
    itinerary_initialized: bool = False
    error: Optional[ErrorInfo] = None

class PlannerSnapshot(BaseModel):
    """Read-only view of a planner's state"""
    state: PlanningState = PlanningState.IDLE
    is_loading: bool = False
    is_saving: bool = False
    error: Optional[ErrorInfo] = None
    trip: Optional[ParsedTrip] = None
    itinerary: Optional[Dict[str, List[ParsedActivity]]] = None
    from_cache: bool = False
    usage: Optional[TokenUsage] = None
    response_time_ms: Optional[int] = None
    request_id: Optional[str] = None
    model: Optional[str] = None
    retry_count: int = 0
    last_input: Optional[str] = None
    last_save: Optional[SaveResult] = None

class PlanOutcome(BaseModel):
    """What a single plan/retry call produced"""
    success: bool
    superseded: bool = False
    from_cache: bool = False
    plan: Optional[ParsedTripPlan] = None
    error: Optional[ErrorInfo] = None

class ActivitySuggestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str
    suggested_duration: Optional[str] = Field(None, alias="suggestedDuration")
    location: Optional[str] = None
    category: str
    estimated_cost: Optional[str] = Field(None, alias="estimatedCost")
    best_time_to_visit: Optional[str] = Field(None, alias="bestTimeToVisit")

class SuggestionResult(BaseModel):
    success: bool
    activities: List[ActivitySuggestion] = Field(default_factory=list)
    error: Optional[ErrorInfo] = None
    usage: Optional[TokenUsage] = None
