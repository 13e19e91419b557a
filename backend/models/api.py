"""API request and response models."""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class SearchRequest(BaseModel):
    """Body of POST /search."""
    query: Optional[str] = None
    limit: int = Field(default=10, ge=1, le=50)
    threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    categories: Optional[List[str]] = None
    enable_hierarchical_search: bool = True
    prefer_parent_chunks: Optional[bool] = None
    enable_cross_references: bool = True


class CategoryWeightModel(BaseModel):
    category: str
    weight: float
    reason: str = ""


class SearchResultModel(BaseModel):
    id: Optional[str] = None
    content: str
    category: str
    tags: List[str] = []
    chunk_level: int = 0
    chunk_group_id: Optional[str] = None
    similarity: float
    category_score: float
    tag_match_score: float
    final_score: float
    rank: int


class SearchResponseModel(BaseModel):
    """Body returned from POST /search."""
    results: List[SearchResultModel]
    category_weights: List[CategoryWeightModel]
    query_tags: List[str]
    search_time_ms: float
    search_method: str
    cross_references: Optional[Dict[str, Any]] = None
    temporal_context: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ChunkRequest(BaseModel):
    """Body of POST /chunk."""
    category: str
    content: str
    tags: List[str] = []
    source_id: Optional[str] = None
    store: bool = False


class ChunkModel(BaseModel):
    content: str
    category: str
    chunk_index: int
    total_chunks: int
    tags: List[str]
    processing_type: str
    metadata: Dict[str, Any] = {}


class ChunkResponse(BaseModel):
    """Body returned from POST /chunk."""
    chunks: List[ChunkModel]
    total_chunks: int
    processing_time_ms: float
    has_dual_purpose: bool
    category_stats: Dict[str, int]
    warnings: List[str] = []
    stored_chunks: Optional[int] = None
    chunk_group_id: Optional[str] = None
    error: Optional[str] = None
