"""Unit tests for LLMClient."""
import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import AsyncMock, Mock, patch
from services.llm_client import LLMClient, LLMResponse, LLMClientError
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError

MESSAGES = [{"role": "user", "content": "Classify this"}]


def make_client(mock_groq_class, create):
    """LLMClient whose Groq completions call is `create`."""
    mock_client = Mock()
    mock_client.chat.completions.create = create
    mock_groq_class.return_value = mock_client
    return LLMClient(api_key="test_key", default_model="llama-3.1-8b-instant")


def completion(text, prompt_tokens=100, completion_tokens=10):
    response = Mock()
    response.choices = [Mock(message=Mock(content=text))]
    response.usage = Mock(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    return response


class StreamStub:
    """Async iterator over streamed completion deltas."""

    def __init__(self, deltas):
        self._chunks = [Mock(choices=[Mock(delta=Mock(content=d))]) for d in deltas]

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)


class TestLLMClient:
    """Test suite for LLMClient class."""

    def test_initialization_with_api_key(self):
        """Test LLMClient initializes with provided API key."""
        client = LLMClient(api_key="test_key")
        assert client.api_key == "test_key"

    def test_initialization_without_api_key_raises_error(self):
        """Test LLMClient raises error when no API key provided."""
        with patch('services.llm_client.GROQ_API_KEY', None):
            with pytest.raises(ValueError, match="GROQ_API_KEY must be provided"):
                LLMClient()

    @patch('services.llm_client.AsyncGroq')
    def test_complete_success(self, mock_groq_class):
        """Test successful completion."""
        create = AsyncMock(return_value=completion("experience", 150, 2))
        client = make_client(mock_groq_class, create)

        response = asyncio.run(client.complete(MESSAGES, temperature=0.0, max_tokens=10))

        assert isinstance(response, LLMResponse)
        assert response.text == "experience"
        assert response.tokens_input == 150
        assert response.tokens_output == 2
        assert response.model_used == "llama-3.1-8b-instant"
        assert isinstance(response.latency_ms, int)
        assert response.latency_ms >= 0
        create.assert_awaited_once()
        assert create.call_args.kwargs["messages"] == MESSAGES
        assert create.call_args.kwargs["max_tokens"] == 10

    @patch('services.llm_client.AsyncGroq')
    def test_complete_with_explicit_model(self, mock_groq_class):
        """Test that a per-call model overrides the default."""
        create = AsyncMock(return_value=completion("Answer"))
        client = make_client(mock_groq_class, create)

        response = asyncio.run(client.complete(MESSAGES, model="llama-3.3-70b-versatile"))

        assert response.model_used == "llama-3.3-70b-versatile"
        assert create.call_args.kwargs["model"] == "llama-3.3-70b-versatile"

    @patch('services.llm_client.AsyncGroq')
    def test_complete_handles_missing_usage(self, mock_groq_class):
        """Test that a response without usage reports zero tokens."""
        response = completion("Answer")
        response.usage = None
        client = make_client(mock_groq_class, AsyncMock(return_value=response))

        result = asyncio.run(client.complete(MESSAGES))

        assert result.tokens_input == 0
        assert result.tokens_output == 0

    @patch('services.llm_client.AsyncGroq')
    def test_complete_handles_unknown_error(self, mock_groq_class):
        """Test that unexpected errors are raised with structured error."""
        client = make_client(mock_groq_class, AsyncMock(side_effect=Exception("API Error")))

        with pytest.raises(LLMClientError) as exc_info:
            asyncio.run(client.complete(MESSAGES))

        error = exc_info.value.error
        assert error.code == "UNKNOWN_ERROR"
        assert "Unexpected error" in error.message
        assert error.details["model"] == "llama-3.1-8b-instant"
        assert error.details["error_type"] == "Exception"

    @patch('services.llm_client.AsyncGroq')
    def test_complete_handles_rate_limit_error(self, mock_groq_class):
        """Test that rate limit errors are handled with retry suggestion."""
        create = AsyncMock(side_effect=RateLimitError(
            message="Rate limit exceeded",
            response=Mock(status_code=429),
            body=None
        ))
        client = make_client(mock_groq_class, create)

        with pytest.raises(LLMClientError) as exc_info:
            asyncio.run(client.complete(MESSAGES))

        error = exc_info.value.error
        assert error.code == "RATE_LIMIT_ERROR"
        assert error.details["retry_after"] == 60

    @patch('services.llm_client.AsyncGroq')
    def test_complete_handles_authentication_error(self, mock_groq_class):
        """Test that authentication errors are handled properly."""
        create = AsyncMock(side_effect=AuthenticationError(
            message="Invalid API key",
            response=Mock(status_code=401),
            body=None
        ))
        client = make_client(mock_groq_class, create)

        with pytest.raises(LLMClientError) as exc_info:
            asyncio.run(client.complete(MESSAGES))

        assert exc_info.value.error.code == "AUTHENTICATION_ERROR"
        assert "Authentication failed" in exc_info.value.error.message

    @patch('services.llm_client.AsyncGroq')
    def test_complete_handles_timeout_error(self, mock_groq_class):
        """Test that timeout errors are handled properly."""
        client = make_client(mock_groq_class, AsyncMock(side_effect=APITimeoutError(request=Mock())))

        with pytest.raises(LLMClientError) as exc_info:
            asyncio.run(client.complete(MESSAGES))

        assert exc_info.value.error.code == "TIMEOUT_ERROR"
        assert "timed out" in exc_info.value.error.message

    @patch('services.llm_client.AsyncGroq')
    def test_complete_handles_generic_api_error(self, mock_groq_class):
        """Test that generic API errors are handled properly."""
        create = AsyncMock(side_effect=APIError(
            message="Service unavailable",
            request=Mock(),
            body=None
        ))
        client = make_client(mock_groq_class, create)

        with pytest.raises(LLMClientError) as exc_info:
            asyncio.run(client.complete(MESSAGES))

        assert exc_info.value.error.code == "API_ERROR"
        assert "Groq API error" in exc_info.value.error.message

    @patch('services.llm_client.AsyncGroq')
    def test_stream_yields_deltas(self, mock_groq_class):
        """Test that streaming yields non-empty text deltas in order."""
        create = AsyncMock(return_value=StreamStub(["Hel", None, "lo"]))
        client = make_client(mock_groq_class, create)

        async def collect():
            return [token async for token in client.stream(MESSAGES)]

        assert asyncio.run(collect()) == ["Hel", "lo"]
        assert create.call_args.kwargs["stream"] is True

    @patch('services.llm_client.AsyncGroq')
    def test_stream_wraps_errors(self, mock_groq_class):
        """Test that a failing stream raises LLMClientError."""
        client = make_client(mock_groq_class, AsyncMock(side_effect=Exception("boom")))

        async def collect():
            return [token async for token in client.stream(MESSAGES)]

        with pytest.raises(LLMClientError):
            asyncio.run(collect())
