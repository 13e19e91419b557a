"""Chunking engine: dispatches content to the category chunking strategies."""
import logging
import re
import time
from typing import Dict, List, Optional

from config import STYLE_SOURCE_TAG
from models.chunk import Chunk, reindex
from models.search import ChunkingResult, ValidationReport
from services.chunkers import BaseChunker, build_chunkers
from services.chunkers.communication import CommunicationChunker
from services.oracle import NullOracle

logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 50
MAX_CONTENT_CHARS = 50000

# Loose signals that content has the shape its category expects
STRUCTURE_INDICATORS: Dict[str, List[re.Pattern]] = {
    "resume": [
        re.compile(r"experience|work|employment", re.IGNORECASE),
        re.compile(r"education|school|university", re.IGNORECASE),
        re.compile(r"skills|technical", re.IGNORECASE),
        re.compile(r"\d{4}[-\s]\d{4}|\d{4}\s*-\s*present", re.IGNORECASE),
    ],
    "experience": [
        re.compile(r"situation|task|action|result", re.IGNORECASE),
        re.compile(r"challenge|problem|solve", re.IGNORECASE),
        re.compile(r"led|managed|improved|achieved", re.IGNORECASE),
        re.compile(r"tell me about a time|example of", re.IGNORECASE),
    ],
    "projects": [
        re.compile(r"react|vue|angular|javascript|python|java", re.IGNORECASE),
        re.compile(r"database|api|server|cloud", re.IGNORECASE),
        re.compile(r"built|developed|implemented|designed", re.IGNORECASE),
        re.compile(r"architecture|framework|library", re.IGNORECASE),
    ],
    "communication": [
        re.compile(r"^\w+:\s", re.MULTILINE),
        re.compile(r"^<\w+>\s", re.MULTILINE),
        re.compile(r"^\[\d+:\d+\]", re.MULTILINE),
        re.compile(r"@\w+"),
    ],
    "skills": [
        re.compile(r"react|python|java|javascript", re.IGNORECASE),
        re.compile(r"years?|expert|intermediate|beginner", re.IGNORECASE),
        re.compile(r"prefer|like|enjoy|avoid", re.IGNORECASE),
        re.compile(r"\d+/10|\d+\s*years?", re.IGNORECASE),
    ],
}
STRUCTURE_WARNINGS = {
    "resume": "Content does not appear to have typical resume structure",
    "experience": "Content does not appear to contain behavioral examples or STAR stories",
    "projects": "Content does not appear to contain technical project details",
    "communication": "Content does not appear to be in conversation format",
    "skills": "Content does not appear to contain skills or preferences",
}


class ChunkingEngine:
    """Runs the chunking strategy registered for a content category."""

    def __init__(self, oracle=None, chunkers: Optional[Dict[str, BaseChunker]] = None):
        """
        Initialize ChunkingEngine.

        Args:
            oracle: Optional LLM oracle used by the resume strategy
            chunkers: Category -> chunker map (defaults to build_chunkers)
        """
        self.chunkers = chunkers or build_chunkers(oracle or NullOracle())

    @property
    def categories(self) -> List[str]:
        return list(self.chunkers.keys())

    def get_chunker(self, category: str) -> BaseChunker:
        chunker = self.chunkers.get(category)
        if chunker is None:
            raise ValueError(f"No chunker available for category: {category}")
        return chunker

    async def chunk_content(
        self,
        category: str,
        content: str,
        tags: Optional[List[str]] = None,
        source_id: Optional[str] = None
    ) -> ChunkingResult:
        """
        Chunk one document with its category's strategy.

        Args:
            category: Content category (resume, experience, ...)
            content: Raw document text
            tags: Tags copied onto every chunk
            source_id: Identifier of the source document

        Returns:
            ChunkingResult with chunks and processing statistics

        Raises:
            ValueError: If no strategy exists for the category
            RuntimeError: If the strategy fails
        """
        chunker = self.get_chunker(category)
        start_time = time.time()

        try:
            chunks = await chunker.chunk(content, list(tags or []), source_id)
        except Exception as e:
            error_msg = f"Failed to process {category} content: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg) from e

        result = self._result(chunks, start_time)
        logger.info(
            f"Chunked {category} content into {result.total_chunks} chunks "
            f"in {result.processing_time:.0f}ms"
        )
        return result

    async def batch_chunk_content(self, items: List[Dict]) -> List[ChunkingResult]:
        """
        Chunk several documents in order.

        Each item is a dict with category, content and optional tags and
        source_id. Failed items are logged and left out of the output.
        """
        results = []
        for item in items:
            category = item.get("category")
            try:
                results.append(await self.chunk_content(
                    category,
                    item.get("content", ""),
                    item.get("tags"),
                    item.get("source_id"),
                ))
            except (ValueError, RuntimeError) as e:
                logger.error(f"Failed to process content for category {category}: {str(e)}")
        return results

    async def chunk_cross_category(
        self,
        primary_category: str,
        content: str,
        tags: Optional[List[str]] = None,
        source_id: Optional[str] = None
    ) -> ChunkingResult:
        """
        Chunk with the primary strategy and add communication style chunks.

        Style chunks are added only for content tagged as a style source.
        Chunk indices are renumbered across the combined list.
        """
        tags = list(tags or [])
        start_time = time.time()
        primary = await self.chunk_content(primary_category, content, tags, source_id)
        chunks = list(primary.chunks)

        is_style_source = STYLE_SOURCE_TAG in tags
        communication = self.chunkers.get("communication")
        if is_style_source and primary_category != "communication" and isinstance(communication, CommunicationChunker):
            style = communication.style_chunks(content, tags, source_id)
            logger.debug(f"Adding {len(style)} style chunks to {primary_category} content")
            chunks.extend(style)

        result = self._result(reindex(chunks), start_time)
        result.has_dual_purpose = result.has_dual_purpose or is_style_source
        return result

    def validate_content(self, category: str, content: str) -> ValidationReport:
        """Check content before chunking; errors block it, warnings do not."""
        errors: List[str] = []
        warnings: List[str] = []
        content = content or ""

        if not content.strip():
            errors.append("Content cannot be empty")
        if len(content) < MIN_CONTENT_CHARS:
            warnings.append("Content is very short and may not provide meaningful chunks")
        if len(content) > MAX_CONTENT_CHARS:
            warnings.append("Content is very long and may take significant time to process")
        if category not in self.chunkers:
            errors.append(f"Unsupported category: {category}")

        indicators = STRUCTURE_INDICATORS.get(category)
        if indicators and content.strip() and not any(p.search(content) for p in indicators):
            warnings.append(STRUCTURE_WARNINGS[category])

        return ValidationReport(is_valid=not errors, errors=errors, warnings=warnings)

    def _result(self, chunks: List[Chunk], start_time: float) -> ChunkingResult:
        information = sum(1 for c in chunks if c.processing_type == "information")
        style = sum(1 for c in chunks if c.processing_type == "style")
        return ChunkingResult(
            chunks=chunks,
            total_chunks=len(chunks),
            processing_time=(time.time() - start_time) * 1000,
            has_dual_purpose=any(c.processing_type in ("style", "dual") for c in chunks),
            category_stats={"information": information, "style": style},
        )
