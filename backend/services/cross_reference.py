"""Find chunks related to search results through metadata, hierarchy and time."""
import asyncio
import logging
import re
from typing import Dict, List, Optional, Set

from config import SearchSettings
from models.chunk import HierarchicalChunk
from models.cross_reference import CrossReference, CrossReferenceContext, CrossReferenceResult
from models.metadata import ExtractedMetadata

logger = logging.getLogger(__name__)

EXTRACTED_KEY = "extracted"
MAX_SIBLINGS = 3
MAX_SCORE = 10.0

TEMPORAL_INTENT = re.compile(r"\b(before|after|when|during|timeline|history|previous|next|earlier|later)\b")
TECHNICAL_INTENT = re.compile(r"\b(tech|technology|framework|language|tool|build|implement|code|system)\b")
ENTITY_INTENT = re.compile(r"\b(who|person|company|organization|team|role|position)\b")

TEMPORAL_CONTEXT_CUES = {
    "historical": (re.compile(r"\b(before|previous|earlier|past)\b", re.IGNORECASE),
                   re.compile(r"\b(ago|before|earlier|previous)\b", re.IGNORECASE), 1.5),
    "recent": (re.compile(r"\b(recent|current|now|latest)\b", re.IGNORECASE),
               re.compile(r"\b(recent|current|now|today)\b", re.IGNORECASE), 1.4),
    "current": (re.compile(r"\b(current|now|present)\b", re.IGNORECASE),
                re.compile(r"\b(current|now|present|today)\b", re.IGNORECASE), 1.3),
}

QUERY_STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "what", "how", "when", "where", "why", "did", "do", "does", "you", "your", "i", "me", "my",
})

HIERARCHY_RELEVANCE = {"parent": 0.8, "child": 0.6, "sibling": 0.4}
METADATA_FIELDS = (
    ("entity", "entities"),
    ("tool", "tools"),
    ("topic", "key_topics"),
    ("concept", "concepts"),
)


def detect_intents(query: str) -> Set[str]:
    """Every intent the query shows; a query can be temporal and technical at once."""
    lowered = (query or "").lower()
    intents = set()
    if TEMPORAL_INTENT.search(lowered):
        intents.add("temporal")
    if TECHNICAL_INTENT.search(lowered):
        intents.add("tool")
    if ENTITY_INTENT.search(lowered):
        intents.add("entity")
    if "context" in lowered:
        intents.add("context")
    return intents


def extract_query_terms(query: str) -> List[str]:
    terms = []
    for word in (query or "").lower().split():
        if len(word) <= 2 or word in QUERY_STOP_WORDS:
            continue
        cleaned = re.sub(r"[^\w]", "", word)
        if len(cleaned) > 1:
            terms.append(cleaned)
    return terms


def chunk_metadata(chunk: HierarchicalChunk) -> ExtractedMetadata:
    """Extracted metadata stored on a chunk at ingestion, or empty metadata."""
    return ExtractedMetadata.from_dict(chunk.metadata.get(EXTRACTED_KEY) or {})


def _overlap(wanted: List[str], present: List[str]) -> List[str]:
    lowered = {w.lower() for w in wanted}
    return [item for item in present if item.lower() in lowered]


class CrossReferenceEngine:
    """
    Enrich primary results with related chunks.

    Three sources are combined: shared metadata terms in other categories,
    the hierarchy around each result, and chunks with temporal metadata.
    References are deduplicated by chunk id and ranked by a composite score.
    """

    def __init__(self, vector_store, settings: Optional[SearchSettings] = None):
        self.vector_store = vector_store
        self.settings = settings or SearchSettings()

    async def find_cross_references(
        self,
        context: CrossReferenceContext,
        primary_chunks: List[HierarchicalChunk],
        limit: int = 15
    ) -> CrossReferenceResult:
        """
        Args:
            context: Query, query metadata and category split
            primary_chunks: Chunks already in the search results
            limit: Maximum related references (hierarchical ones get half)

        Returns:
            Ranked references; empty on failure
        """
        if not primary_chunks:
            return CrossReferenceResult()

        primary_ids = [c.id for c in primary_chunks if c.id]
        temporal = context.metadata.temporal_context not in (None, "", "timeless")

        lookups = [
            self.metadata_references(context, primary_ids, limit),
            self.hierarchical_references(primary_chunks, limit),
        ]
        if temporal:
            lookups.append(self.temporal_references(context, primary_ids, limit))
        results = await asyncio.gather(*lookups, return_exceptions=True)

        references: List[CrossReference] = []
        for result in results:
            if isinstance(result, Exception):
                logger.warning(f"Cross-reference lookup failed: {result}")
                continue
            references.extend(result)

        excluded = set(primary_ids)
        ranked = self.rank(self.deduplicate(references, excluded), context)
        related = [r for r in ranked if r.reference_type != "hierarchical"][:limit]
        hierarchical = [r for r in ranked if r.reference_type == "hierarchical"][:max(1, limit // 2)]

        categories = {c.category for c in primary_chunks}
        categories.update(r.chunk.category for r in related + hierarchical)
        logger.info(
            f"Found {len(ranked)} cross references "
            f"({len(related)} related, {len(hierarchical)} hierarchical)"
        )
        return CrossReferenceResult(
            related=related,
            hierarchical=hierarchical,
            total_references=len(ranked),
            cross_category_count=len(categories),
        )

    async def metadata_references(
        self,
        context: CrossReferenceContext,
        primary_ids: List[str],
        limit: int
    ) -> List[CrossReference]:
        """Chunks outside the primary categories sharing entities, tools, topics or concepts."""
        if not [t for t in context.terms if len(t) > 2]:
            return []

        candidates = await self.vector_store.fetch_excluding(
            primary_ids, limit=limit * 2, exclude_categories=context.primary_categories
        )

        query_fields = {
            "entity": context.metadata.entities,
            "tool": context.metadata.tools,
            "topic": context.metadata.key_topics,
            "concept": context.metadata.concepts,
        }
        max_possible = max(1, max(len(v) for v in query_fields.values()))

        references = []
        for chunk in candidates:
            extracted = chunk_metadata(chunk)
            overlaps: Dict[str, List[str]] = {
                kind: _overlap(query_fields[kind], getattr(extracted, attr))
                for kind, attr in METADATA_FIELDS
            }
            total = sum(len(v) for v in overlaps.values())
            if total == 0:
                continue
            # Ties keep the earlier kind: entity, tool, topic, concept
            primary_kind = max(overlaps, key=lambda kind: len(overlaps[kind]))
            details = [f"{kind}: {', '.join(values)}" for kind, values in overlaps.items() if values]
            references.append(CrossReference(
                chunk=chunk,
                reference_type="metadata",
                relationship=primary_kind,
                relevance=min(total / max_possible, 1.0),
                details=details,
            ))
        return references[:limit]

    async def hierarchical_references(
        self,
        primary_chunks: List[HierarchicalChunk],
        limit: int
    ) -> List[CrossReference]:
        """Parents, children and a few siblings of each primary chunk."""
        related = await asyncio.gather(
            *(self.vector_store.find_related_chunks(chunk) for chunk in primary_chunks),
            return_exceptions=True
        )
        references = []
        for chunk, family in zip(primary_chunks, related):
            if isinstance(family, Exception):
                logger.warning(f"Failed to load hierarchy for chunk {chunk.id}: {family}")
                continue
            groups = (
                ("parent", family.get("parents", []), f"Parent context of {chunk.category} chunk"),
                ("child", family.get("children", []), f"Detailed context within {chunk.category}"),
                ("sibling", family.get("siblings", [])[:MAX_SIBLINGS], f"Related {chunk.category} context"),
            )
            for relationship, members, detail in groups:
                for member in members:
                    references.append(CrossReference(
                        chunk=member,
                        reference_type="hierarchical",
                        relationship=relationship,
                        relevance=HIERARCHY_RELEVANCE[relationship],
                        source_chunk_id=chunk.id,
                        details=[detail],
                    ))
        return references[:limit]

    async def temporal_references(
        self,
        context: CrossReferenceContext,
        primary_ids: List[str],
        limit: int
    ) -> List[CrossReference]:
        """Chunks whose temporal context or time references line up with the query."""
        candidates = await self.vector_store.fetch_with_temporal_metadata(limit, exclude_ids=primary_ids)
        context_terms = [context.query.lower()]
        context_terms.extend(e.lower() for e in context.metadata.entities)
        context_terms.extend(t.lower() for t in context.metadata.key_topics)

        references = []
        for chunk in candidates:
            extracted = chunk_metadata(chunk)
            temporal_terms = [t.lower() for t in extracted.temporal_relationships + extracted.time_references]
            temporal_terms.extend(m.lower() for m in chunk.temporal_markers)
            same_context = extracted.temporal_context == context.metadata.temporal_context
            overlaps = any(
                term in ctx or ctx in term
                for term in temporal_terms if term
                for ctx in context_terms if ctx
            )
            if not (same_context or overlaps):
                continue
            references.append(CrossReference(
                chunk=chunk,
                reference_type="temporal",
                relationship="temporal",
                relevance=0.7,
                details=[f"Temporal context: {extracted.temporal_context or 'related timeframe'}"],
            ))
        return references

    def deduplicate(self, references: List[CrossReference], excluded: Optional[set] = None) -> List[CrossReference]:
        seen = set(excluded or ())
        unique = []
        for ref in references:
            if not ref.chunk.id or ref.chunk.id in seen:
                continue
            seen.add(ref.chunk.id)
            unique.append(ref)
        return unique

    def rank(self, references: List[CrossReference], context: CrossReferenceContext) -> List[CrossReference]:
        for ref in references:
            ref.score = self.composite_score(ref, context)
        return sorted(references, key=lambda r: r.score, reverse=True)

    def composite_score(self, ref: CrossReference, context: CrossReferenceContext) -> float:
        """relevance x relationship weight x semantic boost x category x temporal x diversity, clamped to [0, 10]."""
        score = (
            ref.relevance
            * self.relationship_weight(ref, context)
            * self.semantic_boost(ref, context)
            * self.category_multiplier(ref, context)
            * self.temporal_boost(ref, context)
            * (0.9 if ref.reference_type == "hierarchical" else 1.0)
        )
        return max(0.0, min(MAX_SCORE, score))

    def relationship_weight(self, ref: CrossReference, context: CrossReferenceContext) -> float:
        intents = context.intents if context.intents is not None else detect_intents(context.query)
        weight = 0.8 if ref.reference_type == "hierarchical" else 1.0

        if "temporal" in intents and ref.reference_type == "temporal":
            return weight * 2.0
        if "tool" in intents and ref.relationship == "tool":
            return weight * 1.8
        if "entity" in intents and ref.relationship == "entity":
            return weight * 1.8
        if ref.reference_type == "hierarchical" and intents & {"temporal", "context"}:
            return weight * 1.5
        return weight

    def semantic_boost(self, ref: CrossReference, context: CrossReferenceContext) -> float:
        terms = extract_query_terms(context.query)
        content = ref.chunk.content.lower()
        boost = 1.0
        boost += 0.3 * sum(1 for t in terms if t in content)

        details = " ".join(ref.details).lower()
        if details:
            boost += 0.2 * sum(1 for t in terms if t in details or details in t)

        metadata_terms = chunk_metadata(ref.chunk).all_terms()
        boost += 0.15 * sum(
            1 for t in terms if any(m in t or t in m for m in metadata_terms)
        )
        return min(boost, 3.0)

    def category_multiplier(self, ref: CrossReference, context: CrossReferenceContext) -> float:
        if ref.chunk.category in context.primary_categories:
            return 1.0
        if ref.chunk.category in context.secondary_categories:
            return 0.7
        return 0.3

    def temporal_boost(self, ref: CrossReference, context: CrossReferenceContext) -> float:
        temporal_context = context.metadata.temporal_context
        if not temporal_context:
            return 1.0

        boost = 1.0
        cues = TEMPORAL_CONTEXT_CUES.get(temporal_context)
        if cues:
            relationship_cue, time_cue, factor = cues
            extracted = chunk_metadata(ref.chunk)
            if (any(relationship_cue.search(r) for r in extracted.temporal_relationships)
                    or any(time_cue.search(t) for t in extracted.time_references)):
                boost *= factor
        if ref.reference_type == "temporal" and temporal_context != "timeless":
            boost *= 1.2
        return boost
