"""Data models for the Persona Retrieval Engine."""
from .chunk import Chunk, HierarchicalChunk, SemanticBoundaries, estimate_tokens, reindex
from .search import (
    CategoryWeight,
    ChunkingResult,
    SearchOptions,
    SearchResponse,
    SearchResult,
    TemporalContext,
    ValidationReport,
    merge_category_weights,
)
from .metadata import ExtractedMetadata
from .cross_reference import CrossReference, CrossReferenceContext, CrossReferenceResult
from .api import SearchRequest, SearchResponseModel, ChunkRequest, ChunkResponse

__all__ = [
    "Chunk",
    "HierarchicalChunk",
    "SemanticBoundaries",
    "estimate_tokens",
    "reindex",
    "CategoryWeight",
    "ChunkingResult",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "TemporalContext",
    "ValidationReport",
    "merge_category_weights",
    "ExtractedMetadata",
    "CrossReference",
    "CrossReferenceContext",
    "CrossReferenceResult",
    "SearchRequest",
    "SearchResponseModel",
    "ChunkRequest",
    "ChunkResponse",
]
