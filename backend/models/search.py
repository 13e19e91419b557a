"""Search and chunking result models."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models.chunk import Chunk, HierarchicalChunk


@dataclass
class CategoryWeight:
    """Per-query relevance of a content category."""
    category: str
    weight: float  # 0.0 to 1.0
    reason: str = ""


def merge_category_weights(*sources: List[CategoryWeight]) -> List[CategoryWeight]:
    """
    Merge weight lists, keeping the higher weight per category.

    Reasons of every contributing source are concatenated so provenance
    survives the merge. Output is sorted by weight descending.
    """
    merged: Dict[str, CategoryWeight] = {}
    for weights in sources:
        for weight in weights:
            existing = merged.get(weight.category)
            if existing is None:
                merged[weight.category] = CategoryWeight(
                    weight.category, weight.weight, weight.reason
                )
                continue
            reasons = [r for r in (existing.reason, weight.reason) if r]
            existing.weight = max(existing.weight, weight.weight)
            existing.reason = "; ".join(dict.fromkeys(reasons))
    return sorted(merged.values(), key=lambda w: w.weight, reverse=True)


@dataclass
class TemporalContext:
    """A query's "before X" / "after X" anchor. Never persisted."""
    type: str  # "before" or "after"
    reference: str
    reference_year: Optional[int] = None
    # Month of the anchor's start ("before") or end ("after"), when known
    reference_month: Optional[int] = None


@dataclass
class SearchOptions:
    """Caller options for a search."""
    limit: int = 10
    threshold: Optional[float] = None
    categories: Optional[List[str]] = None
    enable_hierarchical_search: bool = True
    prefer_parent_chunks: Optional[bool] = None  # None: decided from the query
    enable_cross_references: bool = True


@dataclass
class SearchResult:
    """A scored candidate chunk."""
    chunk: HierarchicalChunk
    similarity: float
    category_score: float = 0.0
    tag_match_score: float = 0.0
    final_score: float = 0.0
    rank: int = 0
    date_boost: float = 1.0
    boosts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.chunk.id,
            "content": self.chunk.content,
            "category": self.chunk.category,
            "tags": self.chunk.tags,
            "chunk_level": self.chunk.chunk_level,
            "chunk_group_id": self.chunk.chunk_group_id,
            "similarity": round(self.similarity, 4),
            "category_score": round(self.category_score, 4),
            "tag_match_score": round(self.tag_match_score, 4),
            "final_score": round(self.final_score, 4),
            "rank": self.rank,
        }


@dataclass
class SearchResponse:
    """Result object returned from every search call, even on failure."""
    results: List[SearchResult] = field(default_factory=list)
    category_weights: List[CategoryWeight] = field(default_factory=list)
    query_tags: List[str] = field(default_factory=list)
    search_time: float = 0.0  # milliseconds
    cross_references: Optional[Any] = None
    search_method: str = "none"
    temporal_context: Optional[TemporalContext] = None
    error: Optional[str] = None


@dataclass
class ChunkingResult:
    """Output of chunking one document."""
    chunks: List[Chunk]
    total_chunks: int
    processing_time: float  # milliseconds
    has_dual_purpose: bool = False
    category_stats: Dict[str, int] = field(
        default_factory=lambda: {"information": 0, "style": 0}
    )


@dataclass
class ValidationReport:
    """Content validation outcome prior to chunking."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
