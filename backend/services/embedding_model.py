"""Embedding model integration with Hugging Face Inference API."""
import asyncio
import time
import logging
from typing import List, Optional
import httpx
import numpy as np
from config import HUGGINGFACE_API_KEY, EMBEDDING_MODEL
from models.chunk import Chunk

logger = logging.getLogger(__name__)

CATEGORY_CONTEXT = {
    "resume": "Professional background and career information:",
    "experience": "Professional experience and behavioral examples:",
    "projects": "Technical projects and implementation details:",
    "communication": "Communication style and interaction examples:",
    "skills": "Technical skills and professional preferences:",
}
DEFAULT_CONTEXT = "Professional information:"
MAX_RETRY_DELAY = 60.0


def cosine_similarity(a, b) -> float:
    """Cosine similarity of two vectors; 0.0 for mismatched or zero vectors."""
    if a is None or b is None or len(a) != len(b) or len(a) == 0:
        return 0.0
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def prepare_embedding_text(chunk: Chunk) -> str:
    """Prefix chunk content with category context, tags and processing type."""
    parts = [CATEGORY_CONTEXT.get(chunk.category, DEFAULT_CONTEXT), chunk.content]
    if chunk.tags:
        parts.append(f"Tags: {', '.join(chunk.tags)}")
    if chunk.processing_type != "information":
        parts.append(f"Type: {chunk.processing_type}")
    return "\n".join(parts)


class EmbeddingModel:
    """Async wrapper for Hugging Face Inference API embedding model."""

    def __init__(
        self,
        api_key: str = HUGGINGFACE_API_KEY,
        model_name: str = EMBEDDING_MODEL,
        max_retries: int = 5,
        initial_delay: float = 5.0,
        timeout: float = 120.0
    ):
        """
        Initialize the embedding model client.

        Args:
            api_key: Hugging Face API key
            model_name: Model identifier (default: sentence-transformers/all-mpnet-base-v2)
            max_retries: Maximum number of retry attempts for 503 errors
            initial_delay: Initial delay in seconds for exponential backoff
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ValueError("HUGGINGFACE_API_KEY environment variable is required")

        self.api_key = api_key
        self.model_name = model_name
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.timeout = timeout
        self.api_url = f"https://api-inference.huggingface.co/models/{model_name}"
        self.headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

        logger.info(f"Initialized EmbeddingModel with model: {model_name}")

    async def embed_text(self, text: str) -> List[float]:
        """
        Generate embedding for a single text string.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as list of floats

        Raises:
            ValueError: If text is empty
            RuntimeError: If API request fails after all retries
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        return (await self._embed_with_retry([text]))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts in a single API call.

        Raises:
            ValueError: If texts list is empty or every text is empty
            RuntimeError: If API request fails after all retries
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")

        valid_texts = [t for t in texts if t and t.strip()]
        if len(valid_texts) < len(texts):
            logger.warning(f"Filtered out {len(texts) - len(valid_texts)} empty texts from batch")

        if not valid_texts:
            raise ValueError("All texts in batch are empty")

        return await self._embed_with_retry(valid_texts)

    async def embed_many(
        self,
        texts: List[str],
        batch_size: int = 10,
        delay: float = 1.0
    ) -> List[Optional[List[float]]]:
        """
        Embed a long list in fixed-size batches with a pause between batches.

        Output is aligned with `texts`. A failed batch is retried item by
        item; an item that still fails gets None instead of aborting the run.

        Args:
            texts: Texts to embed
            batch_size: Texts per API call
            delay: Seconds to wait between batches

        Returns:
            One embedding (or None) per input text
        """
        results: List[Optional[List[float]]] = [None] * len(texts)
        batches = [range(i, min(i + batch_size, len(texts))) for i in range(0, len(texts), batch_size)]

        for batch_number, indexes in enumerate(batches):
            if batch_number > 0 and delay > 0:
                await asyncio.sleep(delay)

            wanted = [i for i in indexes if texts[i] and texts[i].strip()]
            if not wanted:
                continue

            try:
                vectors = await self._embed_with_retry([texts[i] for i in wanted])
                for i, vector in zip(wanted, vectors):
                    results[i] = vector
                continue
            except RuntimeError as e:
                logger.warning(f"Batch {batch_number + 1}/{len(batches)} failed, retrying items: {e}")

            for i in wanted:
                try:
                    results[i] = (await self._embed_with_retry([texts[i]]))[0]
                except RuntimeError as e:
                    logger.error(f"Embedding failed for item {i}: {e}")

        failed = sum(1 for r in results if r is None)
        logger.info(f"Embedded {len(texts) - failed}/{len(texts)} texts in {len(batches)} batches")
        return results

    def _check_response(self, response: httpx.Response) -> Optional[List[List[float]]]:
        """Embeddings from a response, or None while the hosted model is still loading."""
        status = response.status_code
        if status == 503:
            return None
        if status == 429:
            logger.error("Rate limit exceeded for Hugging Face API")
            raise RuntimeError("Rate limit exceeded. Please try again later.")
        if status == 401:
            logger.error("Authentication failed for Hugging Face API")
            raise RuntimeError("Invalid API key")
        if status != 200:
            error_msg = f"Embedding request failed with status {status}: {response.text}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)
        return response.json()

    async def _embed_with_retry(self, texts: List[str]) -> List[List[float]]:
        """
        POST texts to the inference endpoint with exponential backoff.

        Hosted models sleep when idle, so 503s, timeouts and network errors
        are retried; rate limit, auth and other HTTP errors are not.

        Raises:
            RuntimeError: If the request fails or retries run out
        """
        payload = {"inputs": texts, "options": {"wait_for_model": True}}
        delay = self.initial_delay
        last_error = None

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    start_time = time.time()
                    response = await client.post(self.api_url, headers=self.headers, json=payload)
                    vectors = self._check_response(response)
                    if vectors is not None:
                        logger.debug(
                            f"Embedded {len(texts)} texts in {time.time() - start_time:.2f}s (attempt {attempt})"
                        )
                        return vectors
                    last_error = "model still loading (503)"
                except httpx.TimeoutException:
                    last_error = f"timeout after {self.timeout}s"
                except httpx.RequestError as e:
                    last_error = f"network error: {str(e)}"

                if attempt == self.max_retries:
                    break
                logger.warning(
                    f"Embedding attempt {attempt}/{self.max_retries} failed ({last_error}), retrying in {delay}s"
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, MAX_RETRY_DELAY)

        error_msg = f"Failed to generate embeddings after {self.max_retries} attempts: {last_error}"
        logger.error(error_msg)
        raise RuntimeError(error_msg)

    async def warmup(self) -> bool:
        """Embed a dummy query so the hosted model is loaded before real traffic."""
        try:
            logger.info("Warming up embedding model...")
            start_time = time.time()
            await self.embed_text("warmup query")
            logger.info(f"Model warmup completed in {time.time() - start_time:.1f}s")
            return True
        except Exception as e:
            logger.error(f"Model warmup failed: {str(e)}")
            return False
