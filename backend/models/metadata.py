"""Metadata extracted from content or queries by the metadata extractor."""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List

TEMPORAL_CONTEXTS = ("historical", "recent", "current", "mixed", "timeless")
COMPLEXITY_LEVELS = ("basic", "intermediate", "advanced", "expert")
SCOPES = ("narrow", "focused", "broad", "comprehensive")


@dataclass
class ExtractedMetadata:
    """Entities, topics, tools and temporal signals found in a piece of text."""
    entities: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    key_topics: List[str] = field(default_factory=list)
    tools: List[str] = field(default_factory=list)
    concepts: List[str] = field(default_factory=list)
    relationships: List[str] = field(default_factory=list)
    environment: List[str] = field(default_factory=list)
    outcomes: List[str] = field(default_factory=list)
    challenges: List[str] = field(default_factory=list)
    temporal_relationships: List[str] = field(default_factory=list)
    time_references: List[str] = field(default_factory=list)
    content_structure: List[str] = field(default_factory=list)
    temporal_context: str = "timeless"
    complexity_level: str = "intermediate"
    scope: str = "focused"
    domain_specific: Dict[str, Any] = field(default_factory=dict)

    def all_terms(self) -> List[str]:
        """Entities, tools, topics and concepts in one lower-cased list."""
        terms = self.entities + self.tools + self.key_topics + self.concepts
        return [t.lower() for t in terms if t]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractedMetadata":
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})
