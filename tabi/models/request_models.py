from pydantic import BaseModel, Field
from datetime import date
from typing import List, Optional, Dict, Any
from enum import Enum

class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

class PlanOptions(BaseModel):
    """Options that shape a trip planning prompt"""
    include_itinerary: bool = True
    max_days: int = Field(14, ge=1, le=30)
    budget: Optional[str] = Field(None, max_length=100, description="Free-text budget hint, e.g. 'mid-range'")
    travel_style: Optional[str] = Field(None, max_length=100, description="Free-text style hint, e.g. 'relaxed'")

class GenerationMessage(BaseModel):
    role: MessageRole
    content: str

class GenerationPrompt(BaseModel):
    """Structured instruction payload for the generation client"""
    messages: List[GenerationMessage]
    model: Optional[str] = None  # client default when None
    temperature: float = 0.7
    max_tokens: int = 1000
    response_format: Dict[str, Any] = Field(default_factory=lambda: {"type": "json_object"})

    def system_instructions(self) -> List[str]:
        return [m.content for m in self.messages if m.role == MessageRole.SYSTEM]

    def conversation(self) -> List[GenerationMessage]:
        return [m for m in self.messages if m.role != MessageRole.SYSTEM]

# API request bodies
class PlanRequest(BaseModel):
    # Bounds are enforced by the prompt builder so that invalid input is
    # reported through the planner's validation error path
    input: Any = None
    options: PlanOptions = Field(default_factory=PlanOptions)

    class Config:
        json_schema_extra = {
            "examples": [
                {
                    "input": "5-day trip to Lisbon, relaxed pace",
                    "options": {"include_itinerary": True, "max_days": 5}
                }
            ]
        }

class SuggestActivitiesRequest(BaseModel):
    trip_id: str = Field(..., min_length=1)
    request: str = Field(..., description="What kind of activities to suggest")

class TripUpdateRequest(BaseModel):
    name: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)
