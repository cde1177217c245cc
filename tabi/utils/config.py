from pydantic_settings import BaseSettings
from typing import Optional, Tuple

class Settings(BaseSettings):
    # Google Cloud Configuration
    GOOGLE_CLOUD_PROJECT: str = "your-project-id"
    GOOGLE_CLOUD_LOCATION: str = "us-central1"
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None

    # Text generation (Vertex AI Gemini)
    AI_ENABLED: bool = True
    GENERATION_MODEL: str = "gemini-2.5-flash"
    GENERATION_MAX_TOKENS: int = 4000
    GENERATION_TEMPERATURE: float = 0.7
    GENERATION_TIMEOUT_SECONDS: float = 30.0
    GENERATION_MAX_RETRY_ATTEMPTS: int = 3
    GENERATION_RETRY_MIN_WAIT_SECONDS: float = 2.0
    GENERATION_RETRY_MAX_WAIT_SECONDS: float = 10.0

    # Firestore
    USE_FIRESTORE: bool = True
    FIRESTORE_PROJECT_ID: Optional[str] = None
    FIRESTORE_CREDENTIALS: Optional[str] = None  # path to Firestore service account json
    FIRESTORE_DATABASE_ID: Optional[str] = None  # defaults to '(default)'
    FIRESTORE_TRIPS_COLLECTION: str = "trips"
    FIRESTORE_ITINERARIES_COLLECTION: str = "itineraries"

    # API Configuration
    API_VERSION: str = "1.0.0"
    DEBUG_MODE: bool = False
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Plan cache (per planning session)
    PLAN_CACHE_MAX_ENTRIES: int = 20
    PLAN_CACHE_TTL_SECONDS: int = 3600
    PLAN_CACHE_EVICT_FRACTION: float = 0.25

    # Planning sessions (one planner per X-Session-Id)
    PLANNING_SESSION_MAX: int = 1000
    PLANNING_SESSION_IDLE_SECONDS: int = 3600

    # Artificial pacing between planner states (seconds, 0 disables)
    ANALYZING_DELAY_SECONDS: float = 0.0
    PARSING_DELAY_SECONDS: float = 0.0
    VALIDATING_DELAY_SECONDS: float = 0.0

    # Trip listing
    TRIPS_DEFAULT_PAGE_SIZE: int = 10
    TRIPS_MAX_PAGE_SIZE: int = 50

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    model_config = {"env_file": ".env", "case_sensitive": True}

# Global settings instance
settings = Settings()

def get_settings() -> Settings:
    """Get the global settings instance"""
    return settings

def validate_generation_settings() -> Tuple[bool, Optional[str]]:
    """Check whether the text generation service can be used.

    Returns a ``(valid, reason)`` pair; ``reason`` is a human-readable
    explanation when generation is not configured.
    """
    if not settings.AI_ENABLED:
        return False, "AI trip planning is disabled. Set AI_ENABLED=true to enable it."
    if not settings.GOOGLE_CLOUD_PROJECT or settings.GOOGLE_CLOUD_PROJECT == "your-project-id":
        return False, "GOOGLE_CLOUD_PROJECT is missing. Please add it to your .env file or environment variables."
    if not settings.GENERATION_MODEL:
        return False, "GENERATION_MODEL is missing."
    return True, None

def validate_settings() -> bool:
    """Validate that all required settings are configured"""
    valid, reason = validate_generation_settings()
    if not valid:
        print(f"Missing or invalid settings: {reason}")
        print("Please configure these settings in your .env file or environment variables")
        return False

    # If FIRESTORE_PROJECT_ID not set, fallback to GOOGLE_CLOUD_PROJECT (but allow split-projects)
    if not settings.FIRESTORE_PROJECT_ID:
        settings.FIRESTORE_PROJECT_ID = settings.GOOGLE_CLOUD_PROJECT

    return True
