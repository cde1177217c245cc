import asyncio
import logging
import time
import uuid
from typing import Any, Callable, List, Optional

import vertexai
from vertexai.generative_models import GenerativeModel
from google.api_core import exceptions as google_exceptions
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from tabi.models.request_models import GenerationPrompt
from tabi.models.response_models import GenerationResponse, TokenUsage
from tabi.utils.config import get_settings, validate_generation_settings
from tabi.utils.errors import ErrorCategory, GenerationError

# Failures worth another attempt at the transport level
TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    asyncio.TimeoutError,
    ConnectionError,
)

ModelFactory = Callable[[str, List[str]], Any]


def _default_model_factory(model_name: str, system_instruction: List[str]) -> GenerativeModel:
    return GenerativeModel(model_name, system_instruction=system_instruction or None)


class VertexGenerationClient:
    """Single request/response text generation against a Vertex AI Gemini model.

    System messages of a prompt become the model's system instruction and the
    remaining messages are sent as contents. Transient transport failures are
    retried with exponential backoff; every other failure surfaces as a
    ``GenerationError`` carrying an ``ErrorCategory``.
    """

    def __init__(
        self,
        project_id: Optional[str] = None,
        location: Optional[str] = None,
        model_name: Optional[str] = None,
        model_factory: Optional[ModelFactory] = None,
        timeout_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        min_wait_seconds: Optional[float] = None,
        max_wait_seconds: Optional[float] = None,
    ):
        settings = get_settings()
        self.logger = logging.getLogger(__name__)
        self.project_id = project_id or settings.GOOGLE_CLOUD_PROJECT
        self.location = location or settings.GOOGLE_CLOUD_LOCATION
        self.model_name = model_name or settings.GENERATION_MODEL
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.GENERATION_TIMEOUT_SECONDS
        self.max_attempts = max_attempts or settings.GENERATION_MAX_RETRY_ATTEMPTS
        self.min_wait_seconds = min_wait_seconds if min_wait_seconds is not None else settings.GENERATION_RETRY_MIN_WAIT_SECONDS
        self.max_wait_seconds = max_wait_seconds if max_wait_seconds is not None else settings.GENERATION_RETRY_MAX_WAIT_SECONDS

        self._model_factory = model_factory or _default_model_factory
        self._uses_vertex = model_factory is None
        self._vertex_initialized = False

        if self._uses_vertex:
            self._available, self._unavailable_reason = validate_generation_settings()
        else:
            self._available, self._unavailable_reason = True, None

    def is_available(self) -> bool:
        return self._available

    @property
    def unavailable_reason(self) -> Optional[str]:
        return self._unavailable_reason

    def _ensure_initialized(self):
        if not self._uses_vertex or self._vertex_initialized:
            return
        try:
            vertexai.init(project=self.project_id, location=self.location)
            self._vertex_initialized = True
            self.logger.info(f"[generation] Vertex AI initialized for project {self.project_id}")
        except Exception as e:
            self.logger.error(f"[generation] Failed to initialize Vertex AI: {str(e)}")
            raise GenerationError(
                "Text generation is not configured",
                category=ErrorCategory.CONFIGURATION,
                code="init-failed",
                details={"error": str(e)},
            ) from e

    async def generate(self, prompt: GenerationPrompt) -> GenerationResponse:
        """Send one prompt and return the raw text with usage metadata"""
        if not self._available:
            raise GenerationError(
                self._unavailable_reason or "Text generation is not configured",
                category=ErrorCategory.CONFIGURATION,
                code="not-configured",
            )
        self._ensure_initialized()

        model_name = prompt.model or self.model_name
        model = self._model_factory(model_name, prompt.system_instructions())
        contents = [m.content for m in prompt.conversation()]
        generation_config = {
            "temperature": prompt.temperature,
            "max_output_tokens": prompt.max_tokens,
            "candidate_count": 1,
        }
        if prompt.response_format.get("type") == "json_object":
            generation_config["response_mime_type"] = "application/json"

        self.logger.debug(
            "[generation] sending prompt",
            extra={"model": model_name, "messages": len(prompt.messages), "max_tokens": prompt.max_tokens}
        )

        started = time.monotonic()
        try:
            response = await self._generate_with_retry(model, contents, generation_config)
        except GenerationError:
            raise
        except Exception as e:
            error = self._to_generation_error(e)
            self.logger.error(
                f"[generation] request failed: {error.message}",
                extra={"category": error.category.value, "code": error.code, "status_code": error.status_code}
            )
            raise error from e
        elapsed_ms = int((time.monotonic() - started) * 1000)

        text = self._extract_response_text(response)
        if not text:
            self.logger.error("[generation] empty response", extra={"model": model_name})
            raise GenerationError(
                "No response from the text generation service",
                category=ErrorCategory.SERVICE,
                code="empty-response",
            )

        usage = self._extract_usage(response)
        request_id = getattr(response, "response_id", None) or str(uuid.uuid4())
        self.logger.info(
            "[generation] response received",
            extra={
                "model": model_name,
                "response_time_ms": elapsed_ms,
                "total_tokens": usage.total_tokens,
                "chars": len(text),
            }
        )
        return GenerationResponse(
            text=text,
            usage=usage,
            response_time_ms=elapsed_ms,
            request_id=str(request_id),
            model=model_name,
        )

    async def _generate_with_retry(self, model: Any, contents: List[str], generation_config: dict) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=self.min_wait_seconds, max=self.max_wait_seconds),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    self.logger.warning(
                        "[generation] retrying after transient failure",
                        extra={"attempt": attempt.retry_state.attempt_number}
                    )
                return await asyncio.wait_for(
                    model.generate_content_async(contents, generation_config=generation_config),
                    timeout=self.timeout_seconds,
                )

    def _to_generation_error(self, exc: Exception) -> GenerationError:
        if isinstance(exc, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
            return GenerationError(
                "Text generation credentials were rejected",
                category=ErrorCategory.CONFIGURATION,
                code="auth-failed",
                status_code=getattr(exc, "code", None),
            )
        if isinstance(exc, asyncio.TimeoutError):
            return GenerationError(
                f"Text generation timed out after {self.timeout_seconds} seconds",
                category=ErrorCategory.NETWORK,
                code="timeout",
            )
        if isinstance(exc, TRANSIENT_ERRORS):
            return GenerationError(
                str(exc) or "Text generation service unreachable",
                category=ErrorCategory.NETWORK,
                code="network-error",
                status_code=getattr(exc, "code", None),
            )
        if isinstance(exc, google_exceptions.GoogleAPICallError):
            return GenerationError(
                exc.message or str(exc),
                category=ErrorCategory.SERVICE,
                code="service-error",
                status_code=exc.code,
            )
        return GenerationError(str(exc) or exc.__class__.__name__, category=ErrorCategory.UNKNOWN, code="unexpected")

    def _extract_response_text(self, response: Any) -> Optional[str]:
        """Join text parts across candidates; strips a surrounding code fence"""
        parts_text: List[str] = []
        for cand in getattr(response, "candidates", None) or []:
            content = getattr(cand, "content", None)
            for part in (getattr(content, "parts", None) or []):
                t = getattr(part, "text", None)
                if t:
                    parts_text.append(t)

        if not parts_text:
            # Fall back to the convenience accessor, which raises on blocked output
            try:
                text_attr = getattr(response, "text", None)
            except ValueError:
                text_attr = None
            if isinstance(text_attr, str):
                parts_text.append(text_attr)

        combined = "\n".join(parts_text).strip()
        if combined.startswith("```"):
            combined = combined.strip("`")
            if combined.lower().startswith("json"):
                combined = combined[4:]
            combined = combined.strip()
        return combined or None

    def _extract_usage(self, response: Any) -> TokenUsage:
        usage = getattr(response, "usage_metadata", None)
        if not usage:
            return TokenUsage()
        return TokenUsage(
            prompt_tokens=getattr(usage, "prompt_token_count", None),
            completion_tokens=getattr(usage, "candidates_token_count", None),
            total_tokens=getattr(usage, "total_token_count", None),
        )
