"""Retrieval engine: multi-signal ranking over the hierarchical chunk store."""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from config import SearchSettings
from models.chunk import HierarchicalChunk
from models.cross_reference import CrossReferenceContext, CrossReferenceResult
from models.metadata import ExtractedMetadata
from models.search import CategoryWeight, SearchOptions, SearchResponse, SearchResult, TemporalContext
from services.cross_reference import detect_intents
from services.embedding_model import cosine_similarity
from services.query_classifier import is_preference_query
from services.tag_extractor import extract_tags, normalize_tag
from services.temporal import (
    compute_date_boost,
    count_mentions,
    detect_temporal_context,
    favors_broad_context,
    is_temporal_query,
    mention_penalty,
    parse_date_ranges,
)

logger = logging.getLogger(__name__)

PREFERENCE_SKILL_TYPES = ("preferences", "career-goals")
PREFERENCE_PHRASES = (
    "i prefer", "ideal role", "day-to-day", "day to day", "looking for",
    "work best", "i enjoy", "i'd like to",
)


def matches_preference_signals(chunk: HierarchicalChunk, preference_tags: List[str]) -> bool:
    """Preference tags, a preference skill type, or a preference phrase in the content."""
    wanted = {normalize_tag(t) for t in preference_tags}
    if wanted & {normalize_tag(t) for t in chunk.tags}:
        return True
    if chunk.metadata.get("skill_type") in PREFERENCE_SKILL_TYPES:
        return True
    content = chunk.content.lower()
    return any(phrase in content for phrase in PREFERENCE_PHRASES)


@dataclass
class QueryProfile:
    """What the query looks like; decides retrieval strategy and thresholds."""
    query: str
    tags: List[str]
    is_temporal: bool
    is_preference: bool
    temporal_context: Optional[TemporalContext]
    hierarchical: bool
    prefer_parent: bool


class RetrievalEngine:
    """
    Rank chunks for a query.

    Candidates come from one weighted vector search (all hierarchy levels
    for temporal queries, base level otherwise). Each candidate is scored
    from similarity, category weight and tag overlap, then adjusted by
    hierarchy level, date ranges and preference signals. When the weighted
    search fails or finds nothing, a local cosine search over recent chunks
    runs instead. search() returns a response even when everything fails.
    """

    def __init__(
        self,
        vector_store,
        embedding_model,
        classifier,
        settings: Optional[SearchSettings] = None,
        resolver=None,
        metadata_extractor=None,
        cross_reference_engine=None,
        config_service=None,
        today: Optional[date] = None
    ):
        """
        Initialize the retrieval engine.

        Args:
            vector_store: VectorStore for candidate retrieval
            embedding_model: EmbeddingModel for the query embedding
            classifier: QueryClassifier producing category weights
            settings: Scoring and boost constants
            resolver: TemporalReferenceResolver for "before/after X" anchors
            metadata_extractor: Extracts query metadata for cross references
            cross_reference_engine: Adds related chunks to hierarchical searches
            config_service: SearchConfigService supplying method thresholds
            today: Fixed date for open-ended ranges (tests)
        """
        self.vector_store = vector_store
        self.embedding_model = embedding_model
        self.classifier = classifier
        self.settings = settings or SearchSettings()
        self.resolver = resolver
        self.metadata_extractor = metadata_extractor
        self.cross_reference_engine = cross_reference_engine
        self.config_service = config_service
        self.today = today
        self._stats: Dict[str, Any] = {
            "searches": 0,
            "failures": 0,
            "empty": 0,
            "total_time_ms": 0.0,
            "methods": {"hierarchical": 0, "weighted": 0, "basic": 0, "none": 0},
        }
        logger.info("Initialized RetrievalEngine")

    def profile(self, query: str, options: SearchOptions) -> QueryProfile:
        temporal_context = detect_temporal_context(query)
        is_temporal = is_temporal_query(query) or temporal_context is not None
        prefer_parent = options.prefer_parent_chunks
        if prefer_parent is None:
            prefer_parent = is_temporal or favors_broad_context(query)
        return QueryProfile(
            query=query,
            tags=extract_tags(query),
            is_temporal=is_temporal,
            is_preference=is_preference_query(query),
            temporal_context=temporal_context,
            hierarchical=options.enable_hierarchical_search and is_temporal,
            prefer_parent=prefer_parent,
        )

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        """
        Search for chunks relevant to `query`.

        Args:
            query: User query
            options: Limit, threshold, category filter and hierarchy flags

        Returns:
            SearchResponse; on failure it has no results and `error` set

        Raises:
            ValueError: If the query is empty or the limit is not positive
        """
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")
        options = options or SearchOptions()
        if options.limit <= 0:
            raise ValueError("limit must be a positive integer")

        start_time = time.time()
        profile = self.profile(query.strip(), options)
        logger.debug(
            f"Query profile: temporal={profile.is_temporal}, preference={profile.is_preference}, "
            f"hierarchical={profile.hierarchical}, context={profile.temporal_context}"
        )

        try:
            response = await self._search(profile, options)
        except Exception as e:
            error_msg = f"Search failed: {str(e)}"
            logger.error(error_msg)
            self._stats["failures"] += 1
            response = SearchResponse(
                query_tags=profile.tags,
                temporal_context=profile.temporal_context,
                error=error_msg,
            )

        response.search_time = (time.time() - start_time) * 1000
        self._record(response)
        logger.info(
            f"Search returned {len(response.results)} results via {response.search_method} "
            f"in {response.search_time:.0f}ms"
        )
        return response

    async def _search(self, profile: QueryProfile, options: SearchOptions) -> SearchResponse:
        wants_cross_references = (
            profile.hierarchical
            and options.enable_cross_references
            and self.cross_reference_engine is not None
        )
        embedding, weights, query_metadata, temporal_context = await asyncio.gather(
            self.embedding_model.embed_text(profile.query),
            self.classifier.classify(profile.query),
            self._query_metadata(profile.query, wants_cross_references),
            self._resolve(profile.temporal_context),
            return_exceptions=True
        )
        if isinstance(embedding, Exception):
            raise RuntimeError(f"Query embedding failed: {embedding}")
        if isinstance(weights, Exception):
            logger.warning(f"Query classification failed, using static weights: {weights}")
            weights = self.classifier.static_weights()
        if isinstance(query_metadata, Exception):
            logger.warning(f"Query metadata extraction failed: {query_metadata}")
            query_metadata = None
        if isinstance(temporal_context, Exception):
            logger.warning(f"Temporal reference resolution failed: {temporal_context}")
        else:
            profile.temporal_context = temporal_context

        weight_map = {w.category: w.weight for w in weights}
        method = "hierarchical" if profile.hierarchical else "weighted"
        threshold = await self._threshold(options, method)

        try:
            results = await self._weighted_results(profile, options, embedding, weight_map, threshold)
        except (RuntimeError, ValueError) as e:
            logger.warning(f"{method.capitalize()} search failed, falling back to basic search: {e}")
            results = []
        results = await self._ensure_coverage(profile, options, embedding, weight_map, results, threshold)
        results = self.finalize(results, options.limit)

        if not results:
            method = "basic"
            basic_threshold = min(await self._threshold(options, "basic"), self.settings.basic_fallback_threshold)
            try:
                results = await self._basic_results(options, embedding, weight_map, basic_threshold)
            except RuntimeError as e:
                logger.error(f"Basic search failed: {str(e)}")
                results = []
            if not results:
                method = "none"

        cross_references = None
        if results and wants_cross_references:
            cross_references = await self._cross_references(profile, weights, query_metadata, results, options.limit)

        return SearchResponse(
            results=results,
            category_weights=weights,
            query_tags=profile.tags,
            cross_references=cross_references,
            search_method=method,
            temporal_context=profile.temporal_context,
        )

    async def _query_metadata(self, query: str, wanted: bool) -> Optional[ExtractedMetadata]:
        if not wanted or self.metadata_extractor is None:
            return None
        return await self.metadata_extractor.extract(query, "general")

    async def _resolve(self, context: Optional[TemporalContext]) -> Optional[TemporalContext]:
        if context is None or self.resolver is None:
            return context
        return await self.resolver.resolve(context)

    async def _threshold(self, options: SearchOptions, method: str) -> float:
        if options.threshold is not None:
            return options.threshold
        if self.config_service is not None:
            return await self.config_service.method_threshold(method)
        return self.settings.default_threshold

    async def _weighted_results(
        self,
        profile: QueryProfile,
        options: SearchOptions,
        embedding: List[float],
        weight_map: Dict[str, float],
        threshold: float
    ) -> List[SearchResult]:
        superset = profile.hierarchical or profile.is_preference or profile.temporal_context is not None
        count = options.limit * self.settings.superset_factor if superset else options.limit

        # The database filter only removes hopeless rows; relaxed thresholds apply below
        db_threshold = threshold
        if profile.temporal_context is not None:
            db_threshold = min(db_threshold, self.settings.temporal_threshold_floor)
        if profile.is_preference:
            db_threshold = min(db_threshold, self.settings.preference_threshold_floor)

        chunks = await self.vector_store.weighted_search(
            embedding,
            db_threshold,
            count,
            weight_map,
            profile.tags,
            chunk_level=None if profile.hierarchical else 0,
        )

        results = []
        for chunk in chunks:
            if options.categories and chunk.category not in options.categories:
                continue
            result = self.score(chunk, profile, weight_map, embedding)
            if self.passes_threshold(result, threshold):
                results.append(result)
        logger.debug(f"Kept {len(results)} of {len(chunks)} candidates at threshold {threshold}")
        return results

    def score(
        self,
        chunk: HierarchicalChunk,
        profile: QueryProfile,
        weight_map: Dict[str, float],
        query_embedding: Optional[List[float]] = None
    ) -> SearchResult:
        """Score one candidate: weighted base score times level, date and preference factors."""
        settings = self.settings
        similarity = chunk.similarity
        if similarity is None:
            similarity = cosine_similarity(query_embedding, chunk.embedding)
        category_score = weight_map.get(chunk.category, settings.unweighted_category_weight)
        tag_score = self.tag_match_score(chunk, profile.tags)

        score = (
            similarity * settings.similarity_weight
            + category_score * settings.category_weight
            + tag_score * settings.tag_weight
        )
        boosts: List[str] = []

        if profile.hierarchical:
            level_weights = settings.prefer_parent_level_weights if profile.prefer_parent else settings.prefer_base_level_weights
            score *= level_weights.get(chunk.chunk_level, 1.0)
            if chunk.chunk_level == 1:
                score *= settings.parent_level_temporal_boost
                boosts.append("parent-level")
            if chunk.temporal_markers:
                score *= settings.temporal_marker_boost
                boosts.append("temporal-markers")

        date_boost = 1.0
        context = profile.temporal_context
        if context is not None:
            ranges = parse_date_ranges(chunk.content, self.today)
            date_boost = compute_date_boost(context, ranges, settings) * mention_penalty(chunk.content, context, settings)
            score *= date_boost
            if date_boost != 1.0:
                boosts.append(f"date:{date_boost:.3g}")

        if profile.is_preference and matches_preference_signals(chunk, settings.preference_tags):
            score *= settings.preference_boost
            boosts.append("preference")

        return SearchResult(
            chunk=chunk,
            similarity=similarity,
            category_score=category_score,
            tag_match_score=tag_score,
            final_score=score,
            date_boost=date_boost,
            boosts=boosts,
        )

    def tag_match_score(self, chunk: HierarchicalChunk, query_tags: List[str]) -> float:
        if not query_tags or not chunk.tags:
            return 0.0
        chunk_tags = {normalize_tag(t) for t in chunk.tags}
        matches = sum(1 for tag in query_tags if normalize_tag(tag) in chunk_tags)
        return matches * self.settings.tag_boost

    def preference_threshold(self, threshold: float) -> float:
        settings = self.settings
        return min(settings.preference_threshold_cap,
                   max(settings.preference_threshold_floor, threshold * settings.preference_threshold_factor))

    def passes_threshold(self, result: SearchResult, threshold: float) -> bool:
        """Similarity check with relaxed floors for date-boosted and preference results."""
        effective = threshold
        if result.date_boost > 1.0:
            effective = max(self.settings.temporal_threshold_floor, threshold * self.settings.temporal_threshold_factor)
        if "preference" in result.boosts:
            effective = min(effective, self.preference_threshold(threshold))
        return result.similarity >= effective

    async def _ensure_coverage(
        self,
        profile: QueryProfile,
        options: SearchOptions,
        embedding: List[float],
        weight_map: Dict[str, float],
        results: List[SearchResult],
        threshold: float
    ) -> List[SearchResult]:
        if profile.is_preference:
            results = results + await self._preference_supplement(options, embedding, weight_map, results, threshold)
        context = profile.temporal_context
        if context is not None and context.type == "before":
            results = self.demote_before(results, context)
        return results

    async def _preference_supplement(
        self,
        options: SearchOptions,
        embedding: List[float],
        weight_map: Dict[str, float],
        results: List[SearchResult],
        threshold: float
    ) -> List[SearchResult]:
        """Preference-tagged chunks the vector search missed, placed just above the weakest result."""
        present = [r.chunk.id for r in results if r.chunk.id]
        try:
            chunks = await self.vector_store.fetch_by_tags(
                self.settings.preference_tags,
                self.settings.preference_supplement_limit,
                exclude_ids=present,
            )
        except RuntimeError as e:
            logger.warning(f"Preference supplement fetch failed: {e}")
            return []

        weakest = min((r.final_score for r in results), default=threshold)
        synthetic = weakest * self.settings.preference_supplement_factor
        supplement = []
        for chunk in chunks:
            if chunk.id in present:
                continue
            if options.categories and chunk.category not in options.categories:
                continue
            supplement.append(SearchResult(
                chunk=chunk,
                similarity=cosine_similarity(embedding, chunk.embedding),
                category_score=weight_map.get(chunk.category, self.settings.unweighted_category_weight),
                final_score=synthetic,
                boosts=["preference-supplement"],
            ))
        if supplement:
            logger.info(f"Added {len(supplement)} preference chunks missed by vector search")
        return supplement

    def demote_before(self, results: List[SearchResult], context: TemporalContext) -> List[SearchResult]:
        """
        Push results that mention the anchor or run past it below every other result.

        Nothing is removed; when every result would be demoted the order is
        left alone.
        """
        flagged = {
            id(r) for r in results
            if r.date_boost < 1.0 or count_mentions(r.chunk.content, context.reference) > 0
        }
        kept = [r for r in results if id(r) not in flagged]
        if not flagged or not kept:
            return results

        ceiling = min(r.final_score for r in kept) * self.settings.demotion_factor
        for result in results:
            if id(result) in flagged:
                result.final_score = min(result.final_score, ceiling)
                result.boosts.append("demoted")
        logger.debug(f"Demoted {len(flagged)} results for 'before {context.reference}'")
        return results

    def finalize(self, results: List[SearchResult], limit: int) -> List[SearchResult]:
        """Deduplicate by chunk id, sort by score, truncate and assign ranks 1..n."""
        best: Dict[str, SearchResult] = {}
        anonymous: List[SearchResult] = []
        for result in results:
            key = result.chunk.id
            if not key:
                anonymous.append(result)
            elif key not in best or result.final_score > best[key].final_score:
                best[key] = result

        ordered = sorted(list(best.values()) + anonymous, key=lambda r: r.final_score, reverse=True)[:limit]
        for rank, result in enumerate(ordered, start=1):
            result.rank = rank
        return ordered

    async def _basic_results(
        self,
        options: SearchOptions,
        embedding: List[float],
        weight_map: Dict[str, float],
        threshold: float
    ) -> List[SearchResult]:
        chunks = await self.vector_store.fetch_candidates(options.limit * 3, categories=options.categories)
        results = []
        for chunk in chunks:
            similarity = cosine_similarity(embedding, chunk.embedding)
            if similarity < threshold:
                continue
            results.append(SearchResult(
                chunk=chunk,
                similarity=similarity,
                category_score=weight_map.get(chunk.category, self.settings.unweighted_category_weight),
                final_score=similarity,
            ))
        logger.info(f"Basic search kept {len(results)} of {len(chunks)} chunks at threshold {threshold}")
        return self.finalize(results, options.limit)

    async def _cross_references(
        self,
        profile: QueryProfile,
        weights: List[CategoryWeight],
        query_metadata: Optional[ExtractedMetadata],
        results: List[SearchResult],
        limit: int
    ) -> Optional[CrossReferenceResult]:
        primary = self.settings.primary_category_weight
        secondary = self.settings.secondary_category_weight
        context = CrossReferenceContext(
            query=profile.query,
            metadata=query_metadata or ExtractedMetadata(),
            primary_categories=[w.category for w in weights if w.weight >= primary],
            secondary_categories=[w.category for w in weights if secondary <= w.weight < primary],
            intents=detect_intents(profile.query),
        )
        try:
            return await self.cross_reference_engine.find_cross_references(
                context,
                [r.chunk for r in results],
                min(self.settings.cross_reference_limit, limit),
            )
        except (RuntimeError, ValueError) as e:
            logger.warning(f"Cross-reference enrichment failed: {e}")
            return None

    def _record(self, response: SearchResponse) -> None:
        self._stats["searches"] += 1
        self._stats["total_time_ms"] += response.search_time
        self._stats["methods"][response.search_method] = self._stats["methods"].get(response.search_method, 0) + 1
        if not response.results:
            self._stats["empty"] += 1

    async def search_stats(self) -> Dict[str, Any]:
        """In-process search counters plus chunk store statistics."""
        searches = self._stats["searches"]
        stats = {
            "searches": searches,
            "failures": self._stats["failures"],
            "empty_results": self._stats["empty"],
            "average_search_time_ms": self._stats["total_time_ms"] / searches if searches else 0.0,
            "methods": dict(self._stats["methods"]),
        }
        try:
            stats["store"] = await self.vector_store.hierarchy_statistics()
        except RuntimeError as e:
            logger.warning(f"Could not load store statistics: {e}")
            stats["store"] = None
        return stats
