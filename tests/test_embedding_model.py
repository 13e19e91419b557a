"""Unit tests for EmbeddingModel class."""
import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import AsyncMock, Mock, patch, MagicMock
import httpx
from models.chunk import Chunk
from services.embedding_model import EmbeddingModel, cosine_similarity, prepare_embedding_text


def response(status_code=200, payload=None, text=""):
    mock_response = Mock()
    mock_response.status_code = status_code
    mock_response.json.return_value = payload
    mock_response.text = text
    return mock_response


def http_client(mock_client_class, *responses):
    """Wire httpx.AsyncClient to return (or raise) `responses` in order."""
    mock_client = MagicMock()
    post = AsyncMock(side_effect=list(responses))
    mock_client.__aenter__.return_value.post = post
    mock_client_class.return_value = mock_client
    return post


class TestHelpers:
    """Test suite for similarity and embedding text helpers."""

    def test_cosine_similarity(self):
        """Test identical, orthogonal and degenerate vectors."""
        assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 3.0]) == pytest.approx(0.0)
        assert cosine_similarity([1.0, 0.0], [1.0]) == 0.0
        assert cosine_similarity(None, [1.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_prepare_embedding_text(self):
        """Test the category prefix, tags and processing type."""
        chunk = Chunk(content="Built billing APIs", category="resume", tags=["backend"])
        text = prepare_embedding_text(chunk)

        assert text.startswith("Professional background and career information:")
        assert "Built billing APIs" in text
        assert "Tags: backend" in text
        assert "Type:" not in text

        style = Chunk(content="hey!", category="communication", processing_type="style")
        assert prepare_embedding_text(style).endswith("Type: style")
        assert prepare_embedding_text(Chunk(content="x", category="other")).startswith("Professional information:")


class TestEmbeddingModel:
    """Test suite for EmbeddingModel."""

    def test_initialization_success(self):
        """Test successful initialization with API key."""
        model = EmbeddingModel(api_key="test_key")
        assert model.api_key == "test_key"
        assert model.model_name == "sentence-transformers/all-mpnet-base-v2"
        assert model.max_retries == 5

    def test_initialization_without_api_key(self):
        """Test initialization fails without API key."""
        with pytest.raises(ValueError, match="HUGGINGFACE_API_KEY"):
            EmbeddingModel(api_key=None)

    def test_embed_text_empty_string(self):
        """Test embed_text raises error for empty string."""
        model = EmbeddingModel(api_key="test_key")

        with pytest.raises(ValueError, match="Text cannot be empty"):
            asyncio.run(model.embed_text(""))

        with pytest.raises(ValueError, match="Text cannot be empty"):
            asyncio.run(model.embed_text("   "))

    def test_embed_batch_empty_list(self):
        """Test embed_batch raises error for empty list."""
        model = EmbeddingModel(api_key="test_key")

        with pytest.raises(ValueError, match="Texts list cannot be empty"):
            asyncio.run(model.embed_batch([]))

    def test_embed_batch_all_empty_strings(self):
        """Test embed_batch raises error when all strings are empty."""
        model = EmbeddingModel(api_key="test_key")

        with pytest.raises(ValueError, match="All texts in batch are empty"):
            asyncio.run(model.embed_batch(["", "   ", ""]))

    @patch('services.embedding_model.httpx.AsyncClient')
    def test_embed_text_success(self, mock_client_class):
        """Test successful single text embedding."""
        post = http_client(mock_client_class, response(payload=[[0.1, 0.2, 0.3]]))

        model = EmbeddingModel(api_key="test_key")
        result = asyncio.run(model.embed_text("test text"))

        assert result == [0.1, 0.2, 0.3]
        assert post.call_args.kwargs["json"]["inputs"] == ["test text"]
        assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer test_key"

    @patch('services.embedding_model.httpx.AsyncClient')
    def test_embed_batch_success(self, mock_client_class):
        """Test successful batch embedding."""
        http_client(mock_client_class, response(payload=[[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]]))

        model = EmbeddingModel(api_key="test_key")
        result = asyncio.run(model.embed_batch(["text1", "", "text2"]))

        assert result == [[0.1, 0.2, 0.3], [0.4, 0.5, 0.6]]

    @patch('services.embedding_model.asyncio.sleep', new_callable=AsyncMock)
    @patch('services.embedding_model.httpx.AsyncClient')
    def test_retry_on_503_success(self, mock_client_class, mock_sleep):
        """Test retry logic succeeds after 503 error."""
        post = http_client(
            mock_client_class,
            response(503, text='{"estimated_time": 10}'),
            response(payload=[[0.1, 0.2, 0.3]])
        )

        model = EmbeddingModel(api_key="test_key", initial_delay=1.0)
        result = asyncio.run(model.embed_text("test text"))

        assert result == [0.1, 0.2, 0.3]
        mock_sleep.assert_awaited_once_with(1.0)
        assert post.await_count == 2

    @patch('services.embedding_model.asyncio.sleep', new_callable=AsyncMock)
    @patch('services.embedding_model.httpx.AsyncClient')
    def test_retry_exhausted_on_503(self, mock_client_class, mock_sleep):
        """Test retry logic fails after max retries on 503."""
        post = http_client(mock_client_class, *[response(503)] * 3)

        model = EmbeddingModel(api_key="test_key", max_retries=3, initial_delay=0.1)

        with pytest.raises(RuntimeError, match="Failed to generate embeddings"):
            asyncio.run(model.embed_text("test text"))

        assert post.await_count == 3

    @patch('services.embedding_model.asyncio.sleep', new_callable=AsyncMock)
    @patch('services.embedding_model.httpx.AsyncClient')
    def test_exponential_backoff_delays(self, mock_client_class, mock_sleep):
        """Test that exponential backoff increases delays correctly."""
        http_client(mock_client_class, *[response(503)] * 3)

        model = EmbeddingModel(api_key="test_key", max_retries=3, initial_delay=2.0)

        with pytest.raises(RuntimeError):
            asyncio.run(model.embed_text("test text"))

        # 3 attempts = 2 sleeps: 2s, then doubled
        assert [c.args[0] for c in mock_sleep.await_args_list] == [2.0, 4.0]

    @patch('services.embedding_model.httpx.AsyncClient')
    def test_rate_limit_error(self, mock_client_class):
        """Test handling of 429 rate limit error."""
        http_client(mock_client_class, response(429))

        model = EmbeddingModel(api_key="test_key")

        with pytest.raises(RuntimeError, match="Rate limit exceeded"):
            asyncio.run(model.embed_text("test text"))

    @patch('services.embedding_model.httpx.AsyncClient')
    def test_authentication_error(self, mock_client_class):
        """Test handling of 401 authentication error."""
        http_client(mock_client_class, response(401))

        model = EmbeddingModel(api_key="invalid_key")

        with pytest.raises(RuntimeError, match="Invalid API key"):
            asyncio.run(model.embed_text("test text"))

    @patch('services.embedding_model.asyncio.sleep', new_callable=AsyncMock)
    @patch('services.embedding_model.httpx.AsyncClient')
    def test_timeout_with_retry(self, mock_client_class, mock_sleep):
        """Test handling of timeout with retry."""
        http_client(mock_client_class, httpx.TimeoutException("Timeout"), response(payload=[[0.1, 0.2, 0.3]]))

        model = EmbeddingModel(api_key="test_key", initial_delay=0.1)
        result = asyncio.run(model.embed_text("test text"))

        assert result == [0.1, 0.2, 0.3]
        mock_sleep.assert_awaited()

    @patch('services.embedding_model.asyncio.sleep', new_callable=AsyncMock)
    @patch('services.embedding_model.httpx.AsyncClient')
    def test_network_error_with_retry(self, mock_client_class, mock_sleep):
        """Test handling of network error with retry."""
        http_client(mock_client_class, httpx.RequestError("Network error"), response(payload=[[0.1, 0.2, 0.3]]))

        model = EmbeddingModel(api_key="test_key", initial_delay=0.1)
        result = asyncio.run(model.embed_text("test text"))

        assert result == [0.1, 0.2, 0.3]
        mock_sleep.assert_awaited()

    @patch('services.embedding_model.asyncio.sleep', new_callable=AsyncMock)
    def test_embed_many_batches_and_aligns(self, mock_sleep):
        """Test batching, the pause between batches and output alignment."""
        model = EmbeddingModel(api_key="test_key")
        model._embed_with_retry = AsyncMock(side_effect=lambda texts: [[float(len(t))] for t in texts])

        result = asyncio.run(model.embed_many(["a", "bb", "", "dddd", "eeeee"], batch_size=2, delay=0.5))

        assert result == [[1.0], [2.0], None, [4.0], [5.0]]
        assert model._embed_with_retry.await_count == 3
        assert mock_sleep.await_count == 2

    @patch('services.embedding_model.asyncio.sleep', new_callable=AsyncMock)
    def test_embed_many_retries_failed_batch_per_item(self, mock_sleep):
        """Test that a failed batch is retried item by item."""
        calls = []

        async def embed(texts):
            calls.append(list(texts))
            if len(texts) > 1 or texts[0] == "bad":
                raise RuntimeError("batch failed")
            return [[1.0]]

        model = EmbeddingModel(api_key="test_key")
        model._embed_with_retry = embed

        result = asyncio.run(model.embed_many(["good", "bad"], batch_size=2, delay=0))

        assert result == [[1.0], None]
        assert calls == [["good", "bad"], ["good"], ["bad"]]

    @patch('services.embedding_model.httpx.AsyncClient')
    def test_warmup_success(self, mock_client_class):
        """Test successful model warmup."""
        post = http_client(mock_client_class, response(payload=[[0.1, 0.2, 0.3]]))

        model = EmbeddingModel(api_key="test_key")

        assert asyncio.run(model.warmup()) is True
        post.assert_awaited_once()

    @patch('services.embedding_model.httpx.AsyncClient')
    def test_warmup_failure(self, mock_client_class):
        """Test model warmup handles failure gracefully."""
        http_client(mock_client_class, Exception("API error"))

        model = EmbeddingModel(api_key="test_key")

        assert asyncio.run(model.warmup()) is False
