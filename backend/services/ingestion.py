"""Ingestion: chunk a document, build its hierarchy, extract metadata, embed and store."""
import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from config import SearchSettings
from models.chunk import HierarchicalChunk, reindex
from models.search import ChunkingResult
from services.chunking_engine import ChunkingEngine
from services.cross_reference import EXTRACTED_KEY
from services.embedding_model import prepare_embedding_text
from services.hierarchy_builder import HierarchyBuilder

logger = logging.getLogger(__name__)


@dataclass
class IngestionOutcome:
    """What happened to one ingested document."""
    category: str
    source_id: Optional[str] = None
    chunk_group_id: Optional[str] = None
    style_group_id: Optional[str] = None
    total_chunks: int = 0
    stored_chunks: int = 0
    levels: Dict[int, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    processing_time: float = 0.0  # milliseconds
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.stored_chunks > 0


class IngestionPipeline:
    """
    Turn raw documents into stored chunk hierarchies.

    Information chunks form one hierarchy (levels 0..N sharing a group id).
    Communication style chunks are stored as a separate, flat group so they
    never become children of information parents.
    """

    def __init__(
        self,
        chunking_engine: ChunkingEngine,
        hierarchy_builder: HierarchyBuilder,
        embedding_model,
        vector_store,
        metadata_extractor=None,
        settings: Optional[SearchSettings] = None
    ):
        self.chunking_engine = chunking_engine
        self.hierarchy_builder = hierarchy_builder
        self.embedding_model = embedding_model
        self.vector_store = vector_store
        self.metadata_extractor = metadata_extractor
        self.settings = settings or SearchSettings()

    async def ingest(
        self,
        category: str,
        text: str,
        tags: Optional[List[str]] = None,
        source_id: Optional[str] = None,
        group_id: Optional[str] = None,
        hierarchical: Optional[bool] = None,
        chunking_result: Optional[ChunkingResult] = None
    ) -> IngestionOutcome:
        """
        Ingest one document.

        Args:
            category: Content category selecting the chunking strategy
            text: Raw document text
            tags: Tags copied onto every chunk
            source_id: Identifier of the source document
            group_id: Reuse this hierarchy group id (generated when omitted)
            hierarchical: Build parent levels; defaults to the strategy's own setting
            chunking_result: Chunks already produced for this text; skips re-chunking

        Returns:
            IngestionOutcome with the group id and stored chunk count

        Raises:
            ValueError: If the content fails validation or the category is unknown
            RuntimeError: If chunking or storage fails
        """
        start_time = time.time()
        outcome, hierarchy, embeddings = await self._prepare(
            category, text, tags, source_id, group_id, hierarchical, chunking_result
        )
        if not hierarchy:
            return outcome
        return await self._store(outcome, hierarchy, embeddings, start_time)

    async def _prepare(
        self,
        category: str,
        text: str,
        tags: Optional[List[str]],
        source_id: Optional[str],
        group_id: Optional[str],
        hierarchical: Optional[bool],
        chunking_result: Optional[ChunkingResult]
    ) -> Tuple[IngestionOutcome, List[HierarchicalChunk], List]:
        """Chunk, build, annotate and embed without touching the store."""
        outcome = IngestionOutcome(category=category, source_id=source_id)

        report = self.chunking_engine.validate_content(category, text)
        if not report.is_valid:
            raise ValueError(f"Invalid {category} content: {'; '.join(report.errors)}")
        outcome.warnings = list(report.warnings)
        for warning in report.warnings:
            logger.warning(f"{category} content: {warning}")

        result = chunking_result
        if result is None:
            result = await self.chunking_engine.chunk_cross_category(category, text, tags, source_id)
        # Each stored group is numbered on its own; the batch result keeps its numbering
        information = reindex([copy.copy(c) for c in result.chunks if c.processing_type != "style"])
        style = reindex([copy.copy(c) for c in result.chunks if c.processing_type == "style"])
        chunker = self.chunking_engine.get_chunker(category)
        base_budget = chunker.max_chunk_size
        if hierarchical is None:
            hierarchical = chunker.hierarchical

        hierarchy = self.hierarchy_builder.build(
            information,
            group_id=group_id,
            base_budget=base_budget,
            max_levels=None if hierarchical else 0,
        )
        if hierarchy:
            outcome.chunk_group_id = hierarchy[0].chunk_group_id
        if style:
            style_chunks = self.hierarchy_builder.build(style, base_budget=base_budget, max_levels=0)
            outcome.style_group_id = style_chunks[0].chunk_group_id
            hierarchy.extend(style_chunks)

        outcome.total_chunks = len(hierarchy)
        for chunk in hierarchy:
            outcome.levels[chunk.chunk_level] = outcome.levels.get(chunk.chunk_level, 0) + 1
        if not hierarchy:
            outcome.error = "Chunking produced no chunks"
            logger.warning(f"No chunks produced for {category} content {source_id}")
            return outcome, hierarchy, []

        await self._attach_metadata(hierarchy)

        embeddings = await self.embedding_model.embed_many(
            [prepare_embedding_text(chunk) for chunk in hierarchy],
            batch_size=self.settings.embedding_batch_size,
            delay=self.settings.embedding_batch_delay,
        )
        return outcome, hierarchy, embeddings

    async def _store(
        self,
        outcome: IngestionOutcome,
        hierarchy: List[HierarchicalChunk],
        embeddings: List,
        start_time: float
    ) -> IngestionOutcome:
        stored = await self.vector_store.store_hierarchy(hierarchy, embeddings, outcome.source_id)
        outcome.stored_chunks = len(stored)
        outcome.processing_time = (time.time() - start_time) * 1000

        logger.info(
            f"Ingested {outcome.category} content {outcome.source_id or ''}: stored {outcome.stored_chunks}/"
            f"{outcome.total_chunks} chunks in group {outcome.chunk_group_id} "
            f"({outcome.processing_time:.0f}ms)"
        )
        return outcome

    async def _attach_metadata(self, chunks: List[HierarchicalChunk]) -> None:
        # One at a time; the LLM endpoint rate-limits parallel calls
        if self.metadata_extractor is None:
            return
        for chunk in chunks:
            metadata = await self.metadata_extractor.extract(chunk.content, chunk.category)
            chunk.metadata[EXTRACTED_KEY] = metadata.to_dict()

    async def reingest(
        self,
        group_id: str,
        category: str,
        text: str,
        tags: Optional[List[str]] = None,
        source_id: Optional[str] = None
    ) -> IngestionOutcome:
        """
        Replace an existing group with new text under the same group id.

        The old rows are deleted only once the new hierarchy is chunked and
        embedded, so a failure before that point leaves the group intact.
        """
        start_time = time.time()
        outcome, hierarchy, embeddings = await self._prepare(
            category, text, tags, source_id, group_id, None, None
        )
        if not hierarchy:
            return outcome
        await self.vector_store.delete_group(group_id)
        return await self._store(outcome, hierarchy, embeddings, start_time)

    async def ingest_many(self, items: List[Dict]) -> List[IngestionOutcome]:
        """
        Ingest several documents in order.

        Each item is a dict with category, content and optional tags and
        source_id. A failed item is reported through its outcome's `error`
        and does not stop the rest.
        """
        outcomes = []
        for item in items:
            category = item.get("category", "")
            try:
                outcomes.append(await self.ingest(
                    category,
                    item.get("content", ""),
                    item.get("tags"),
                    item.get("source_id"),
                ))
            except (ValueError, RuntimeError) as e:
                logger.error(f"Failed to ingest {category} content {item.get('source_id')}: {str(e)}")
                outcomes.append(IngestionOutcome(
                    category=category,
                    source_id=item.get("source_id"),
                    error=str(e),
                ))
        succeeded = sum(1 for o in outcomes if o.succeeded)
        logger.info(f"Ingestion finished: {succeeded}/{len(outcomes)} documents stored")
        return outcomes
