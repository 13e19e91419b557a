"""Cross-reference models."""
from dataclasses import dataclass, field
from typing import List, Optional, Set

from models.chunk import HierarchicalChunk
from models.metadata import ExtractedMetadata

REFERENCE_TYPES = ("metadata", "hierarchical", "temporal")


@dataclass
class CrossReferenceContext:
    """What the query is about, used to find and score related chunks."""
    query: str
    metadata: ExtractedMetadata = field(default_factory=ExtractedMetadata)
    primary_categories: List[str] = field(default_factory=list)
    secondary_categories: List[str] = field(default_factory=list)
    # Any of temporal, tool, entity, context; None means detect from the query
    intents: Optional[Set[str]] = None

    @property
    def terms(self) -> List[str]:
        return self.metadata.all_terms()


@dataclass
class CrossReference:
    """A chunk related to a primary result by something other than similarity."""
    chunk: HierarchicalChunk
    reference_type: str
    relationship: str
    relevance: float
    source_chunk_id: Optional[str] = None
    details: List[str] = field(default_factory=list)
    score: float = 0.0


@dataclass
class CrossReferenceResult:
    """Related chunks folded into a search response."""
    related: List[CrossReference] = field(default_factory=list)
    hierarchical: List[CrossReference] = field(default_factory=list)
    total_references: int = 0
    cross_category_count: int = 0

    def to_dict(self) -> dict:
        def serialise(ref: CrossReference) -> dict:
            return {
                "id": ref.chunk.id,
                "content": ref.chunk.content,
                "category": ref.chunk.category,
                "reference_type": ref.reference_type,
                "relationship": ref.relationship,
                "score": round(ref.score, 4),
            }

        return {
            "related": [serialise(r) for r in self.related],
            "hierarchical": [serialise(r) for r in self.hierarchical],
            "total_references": self.total_references,
            "cross_category_count": self.cross_category_count,
        }
