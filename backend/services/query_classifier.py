"""Per-query category relevance weights."""
import logging
import re
from typing import List, Optional

from config import DEFAULT_CATEGORIES, SearchSettings
from models.search import CategoryWeight, merge_category_weights
from services.category_registry import CategoryInfo, CategoryRegistry
from services.embedding_model import cosine_similarity

logger = logging.getLogger(__name__)

PREFERENCE_QUERY_PATTERNS = [
    re.compile(r"\bprefer(?:s|red|ence|ences)?\b", re.IGNORECASE),
    re.compile(r"\bday[- ]to[- ]day\b", re.IGNORECASE),
    re.compile(r"\bideal\s+(?:role|job|position|team|company|environment)\b", re.IGNORECASE),
    re.compile(r"\bwork(?:ing)?\s+(?:style|environment|preferences?)\b", re.IGNORECASE),
    re.compile(r"\blooking for\b", re.IGNORECASE),
    re.compile(r"\b(?:remote|hybrid|on-?site)\b", re.IGNORECASE),
    re.compile(r"\bwhat kind of (?:role|work|team|company)\b", re.IGNORECASE),
]
SKILL_QUERY = re.compile(r"\b(?:skills?|strengths?)\b", re.IGNORECASE)

CLASSIFICATION_PROMPT = """Given this user query and available content categories, determine relevance weights (0.0 to 1.0) for each category.

Query: "{query}"

Available categories:
{categories}

Consider:
- Direct topic matches (1.0 for perfect match)
- Related/supporting information (0.5-0.8)
- Tangentially related (0.2-0.4)
- Unrelated (0.0-0.1)

Respond in JSON format:
{{"weights": [{{"category": "category_name", "weight": 0.8, "reason": "explanation"}}]}}"""


def is_preference_query(query: str) -> bool:
    return any(p.search(query or "") for p in PREFERENCE_QUERY_PATTERNS)


class QueryClassifier:
    """
    Weight each known category for a query.

    Order of attempts: LLM weights over the discovered categories, then
    embedding similarity between the query and category descriptions, then
    equal static weights. A keyword overlay runs last and can only raise
    weights.
    """

    def __init__(
        self,
        registry: CategoryRegistry,
        oracle=None,
        embedding_model=None,
        settings: Optional[SearchSettings] = None
    ):
        self.registry = registry
        self.oracle = oracle
        self.embedding_model = embedding_model
        self.settings = settings or SearchSettings()

    async def classify(self, query: str) -> List[CategoryWeight]:
        """
        Args:
            query: User query

        Returns:
            Category weights sorted by weight, never empty
        """
        try:
            discovered = await self.registry.categories()
        except Exception as e:
            logger.error(f"Category discovery failed: {str(e)}")
            discovered = []

        if not discovered:
            weights = self.static_weights()
        else:
            weights = await self.llm_weights(query, discovered)
            if not weights:
                weights = await self.semantic_weights(query, discovered)
            if not weights:
                weights = self.static_weights()

        return merge_category_weights(weights, self.keyword_overlay(query))

    async def llm_weights(self, query: str, categories: List[CategoryInfo]) -> List[CategoryWeight]:
        if self.oracle is None:
            return []
        prompt = CLASSIFICATION_PROMPT.format(
            query=query,
            categories="\n".join(f"- {c.category}: {c.description}" for c in categories),
        )
        payload = await self.oracle.complete_json(
            "You classify search queries against content categories. Respond with JSON only.",
            prompt,
            max_tokens=300,
        )
        if not payload or not isinstance(payload.get("weights"), list):
            return []

        known = {c.category for c in categories}
        weights = []
        for item in payload["weights"]:
            if not isinstance(item, dict) or item.get("category") not in known:
                continue
            try:
                value = float(item.get("weight") or 0)
            except (TypeError, ValueError):
                continue
            weights.append(CategoryWeight(
                category=item["category"],
                weight=max(0.0, min(1.0, value)),
                reason=item.get("reason") or "LLM classification",
            ))
        if not weights:
            return []

        # Categories the LLM skipped still get a weight
        seen = {w.category for w in weights}
        for category in known - seen:
            weights.append(CategoryWeight(category, self.settings.unweighted_category_weight, "Not weighted by LLM"))
        return sorted(weights, key=lambda w: w.weight, reverse=True)

    async def semantic_weights(self, query: str, categories: List[CategoryInfo]) -> List[CategoryWeight]:
        if self.embedding_model is None:
            return []
        try:
            vectors = await self.embedding_model.embed_batch([query] + [c.description for c in categories])
        except (ValueError, RuntimeError) as e:
            logger.warning(f"Semantic category weighting failed: {str(e)}")
            return []
        if len(vectors) != len(categories) + 1:
            return []

        query_vector = vectors[0]
        weights = []
        for info, vector in zip(categories, vectors[1:]):
            similarity = cosine_similarity(query_vector, vector)
            weights.append(CategoryWeight(
                category=info.category,
                weight=max(self.settings.semantic_floor_weight, min(1.0, similarity)),
                reason=f"Semantic similarity: {round(similarity * 100)}%",
            ))
        return sorted(weights, key=lambda w: w.weight, reverse=True)

    def static_weights(self) -> List[CategoryWeight]:
        return [
            CategoryWeight(category, self.settings.static_fallback_weight, "Fallback")
            for category in DEFAULT_CATEGORIES
        ]

    def keyword_overlay(self, query: str) -> List[CategoryWeight]:
        """Minimum weights implied by strong lexical cues in the query."""
        overlay = []
        if is_preference_query(query):
            overlay.extend(
                CategoryWeight(category, self.settings.preference_min_weight, "Preference keywords")
                for category in self.settings.preference_categories
            )
        if SKILL_QUERY.search(query or ""):
            overlay.append(CategoryWeight("skills", self.settings.skills_min_weight, "Skill keywords"))
        return overlay
