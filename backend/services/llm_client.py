"""LLM Client for Groq API integration."""
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional
from groq import AsyncGroq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError
import logging

from config import GROQ_API_KEY, CLASSIFIER_MODEL

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_AFTER = 60
SDK_ERRORS = [
    (RateLimitError, "RATE_LIMIT_ERROR", "Rate limit exceeded. Please try again in a few moments."),
    (AuthenticationError, "AUTHENTICATION_ERROR", "Authentication failed. Please check your API key."),
    (APITimeoutError, "TIMEOUT_ERROR", "Request timed out. Please try again."),
]


@dataclass
class LLMResponse:
    """Response from LLM completion."""
    text: str
    tokens_input: int
    tokens_output: int
    latency_ms: int
    model_used: str


@dataclass
class LLMError:
    """Structured error response from LLM operations."""
    code: str
    message: str
    details: Dict[str, Any]


class LLMClientError(Exception):
    """Custom exception for LLM client errors with structured error information."""

    def __init__(self, error: LLMError):
        self.error = error
        super().__init__(error.message)


class LLMClient:
    """Async client for the Groq chat completion API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: str = CLASSIFIER_MODEL,
        timeout: float = 30.0
    ):
        """
        Initialize LLM client with Groq API key.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
            default_model: Model used when a call does not name one
            timeout: Request timeout in seconds
        """
        self.api_key = api_key or GROQ_API_KEY
        if not self.api_key:
            raise ValueError("GROQ_API_KEY must be provided or set in environment")

        self.default_model = default_model
        self.client = AsyncGroq(api_key=self.api_key, timeout=timeout)
        logger.info(f"LLMClient initialized with default model: {default_model}")

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 500,
        model: Optional[str] = None
    ) -> LLMResponse:
        """
        Run a chat completion.

        Args:
            messages: Chat messages ({"role": ..., "content": ...})
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            model: Model name (defaults to the client's default model)

        Returns:
            LLMResponse with text, token counts, and latency

        Raises:
            LLMClientError: Structured error with code, message, and details
        """
        model = model or self.default_model
        start_time = time.time()

        try:
            logger.debug(f"Completing with model: {model}")
            response = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature
            )

            latency_ms = int((time.time() - start_time) * 1000)
            text = response.choices[0].message.content or ""
            usage = response.usage
            tokens_input = usage.prompt_tokens if usage else 0
            tokens_output = usage.completion_tokens if usage else 0

            logger.debug(
                f"Completion done: model={model}, "
                f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
                f"latency={latency_ms}ms"
            )

            return LLMResponse(
                text=text,
                tokens_input=tokens_input,
                tokens_output=tokens_output,
                latency_ms=latency_ms,
                model_used=model
            )
        except Exception as e:
            raise self._to_client_error(e, model, start_time) from e

    async def stream(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 500,
        model: Optional[str] = None
    ) -> AsyncIterator[str]:
        """
        Stream a chat completion, yielding text tokens as they arrive.

        Raises:
            LLMClientError: If the stream cannot be opened or breaks midway
        """
        model = model or self.default_model
        start_time = time.time()

        try:
            stream = await self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                stream=True
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except Exception as e:
            raise self._to_client_error(e, model, start_time) from e

    @staticmethod
    def _to_client_error(e: Exception, model: str, start_time: float) -> LLMClientError:
        """Map a Groq SDK exception to an LLMClientError and log it."""
        latency_ms = int((time.time() - start_time) * 1000)
        details = {"model": model, "latency_ms": latency_ms, "original_error": str(e)}

        # Checked before APIError, which they all subclass
        for error_type, code, message in SDK_ERRORS:
            if isinstance(e, error_type):
                break
        else:
            if isinstance(e, APIError):
                code, message = "API_ERROR", f"Groq API error: {str(e)}"
            else:
                details["error_type"] = type(e).__name__
                code, message = "UNKNOWN_ERROR", f"Unexpected error during completion: {str(e)}"
        if code == "RATE_LIMIT_ERROR":
            details["retry_after"] = RATE_LIMIT_RETRY_AFTER

        error = LLMError(code=code, message=message, details=details)
        logger.error(
            f"{code}: model={model}, latency={latency_ms}ms, error={e}",
            extra={"error_code": code, "error_details": details}
        )
        return LLMClientError(error)
