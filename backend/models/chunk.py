"""Chunk data models."""
import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

PROCESSING_TYPES = ("information", "style", "dual")


def estimate_tokens(text: str) -> int:
    """Rough token estimate (one token per four characters)."""
    return math.ceil(len(text) / 4) if text else 0


@dataclass
class Chunk:
    """A retrievable unit of content produced by a category chunker."""
    content: str
    category: str
    chunk_index: int = 0
    total_chunks: int = 1
    tags: List[str] = field(default_factory=list)
    processing_type: str = "information"
    source_id: Optional[str] = None
    # Category-specific fields (story components, tech stack, proficiency, ...)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def token_count(self) -> int:
        return estimate_tokens(self.content)


@dataclass
class SemanticBoundaries:
    """Context excerpts from neighbouring chunks plus temporal markers."""
    start_context: str = ""
    end_context: str = ""
    temporal_markers: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_context": self.start_context,
            "end_context": self.end_context,
            "temporal_markers": list(self.temporal_markers),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SemanticBoundaries":
        if not data:
            return cls()
        return cls(
            start_context=data.get("start_context") or data.get("startContext") or "",
            end_context=data.get("end_context") or data.get("endContext") or "",
            temporal_markers=list(
                data.get("temporal_markers") or data.get("temporalMarkers") or []
            ),
        )


@dataclass
class HierarchicalChunk(Chunk):
    """Chunk with hierarchy attributes (level, group, sequence, parent link)."""
    id: Optional[str] = None
    chunk_level: int = 0
    chunk_group_id: Optional[str] = None
    sequence_order: int = 0
    parent_chunk_id: Optional[str] = None
    semantic_boundaries: SemanticBoundaries = field(default_factory=SemanticBoundaries)
    overlap_strategy: str = "semantic"
    # Sequence numbers of the level below that were merged into this chunk
    child_sequence: List[int] = field(default_factory=list)
    embedding: Optional[List[float]] = None
    similarity: Optional[float] = None

    @property
    def temporal_markers(self) -> List[str]:
        return self.semantic_boundaries.temporal_markers

    def to_row(self) -> Dict[str, Any]:
        """Serialise to a store row (embedding and ids are added by the store)."""
        return {
            "content": self.content,
            "category": self.category,
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
            "tags": list(self.tags),
            "processing_type": self.processing_type,
            "source_id": self.source_id,
            "metadata": self.metadata,
            "chunk_level": self.chunk_level,
            "chunk_group_id": self.chunk_group_id,
            "sequence_order": self.sequence_order,
            "parent_chunk_id": self.parent_chunk_id,
            "semantic_boundaries": self.semantic_boundaries.to_dict(),
            "overlap_strategy": self.overlap_strategy,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "HierarchicalChunk":
        """Build a chunk from a store row, tolerating missing columns."""
        metadata = row.get("metadata") or {}
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                metadata = {}

        boundaries = row.get("semantic_boundaries")
        if isinstance(boundaries, str):
            try:
                boundaries = json.loads(boundaries)
            except ValueError:
                boundaries = None

        embedding = row.get("embedding")
        if isinstance(embedding, str):
            # pgvector columns come back as "[0.1,0.2,...]"
            try:
                embedding = json.loads(embedding)
            except ValueError:
                embedding = None

        return cls(
            id=row.get("id"),
            content=row.get("content") or "",
            category=row.get("category") or "general",
            chunk_index=row.get("chunk_index") or 0,
            total_chunks=row.get("total_chunks") or 1,
            tags=list(row.get("tags") or []),
            processing_type=row.get("processing_type") or "information",
            source_id=row.get("source_id"),
            metadata=metadata,
            chunk_level=row.get("chunk_level") or 0,
            chunk_group_id=row.get("chunk_group_id"),
            sequence_order=row.get("sequence_order") or 0,
            parent_chunk_id=row.get("parent_chunk_id"),
            semantic_boundaries=SemanticBoundaries.from_dict(boundaries),
            overlap_strategy=row.get("overlap_strategy") or "semantic",
            embedding=embedding,
            similarity=row.get("similarity"),
        )


def reindex(chunks: List[Chunk]) -> List[Chunk]:
    """Recompute chunk_index/total_chunks after a batch's membership changes."""
    total = len(chunks)
    for index, chunk in enumerate(chunks):
        chunk.chunk_index = index
        chunk.total_chunks = total
    return chunks
