"""Runtime search thresholds stored in the search_configuration table."""
import asyncio
import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config import EMBEDDING_MODEL, SEARCH_CONFIG_TABLE
from services.expiring_cache import ExpiringCache

logger = logging.getLogger(__name__)

CONFIG_KEY = "active"
METHOD_FIELDS = {
    "hierarchical": "hierarchical_search",
    "weighted": "weighted_search",
    "basic": "basic_search",
    "vector_db": "vector_search_db",
}


@dataclass
class SearchThresholds:
    high_confidence: float = 0.40
    moderate_confidence: float = 0.30
    low_confidence: float = 0.20
    minimum_threshold: float = 0.20
    hierarchical_search: float = 0.20
    weighted_search: float = 0.20
    basic_search: float = 0.20
    vector_search_db: float = 0.20
    cache_similarity: float = 0.85

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SearchThresholds":
        known = {f.name for f in fields(cls)}
        return cls(**{k: float(v) for k, v in (data or {}).items() if k in known})


@dataclass
class SearchConfig:
    thresholds: SearchThresholds = field(default_factory=SearchThresholds)
    embedding_model: str = EMBEDDING_MODEL
    last_updated: str = ""
    version: int = 1


def validate_thresholds(thresholds: SearchThresholds) -> None:
    """
    Check threshold ordering and range.

    Raises:
        ValueError: If the confidence bands are out of order or any value
            falls outside [0, 1]
    """
    if thresholds.minimum_threshold >= thresholds.low_confidence:
        raise ValueError("minimum_threshold must be less than low_confidence")
    if thresholds.low_confidence >= thresholds.moderate_confidence:
        raise ValueError("low_confidence must be less than moderate_confidence")
    if thresholds.moderate_confidence >= thresholds.high_confidence:
        raise ValueError("moderate_confidence must be less than high_confidence")

    for name, value in asdict(thresholds).items():
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"Threshold {name} must be a number between 0 and 1, got: {value}")

    for method in METHOD_FIELDS.values():
        value = getattr(thresholds, method)
        if value < thresholds.minimum_threshold:
            logger.warning(f"{method} threshold ({value}) is below minimum_threshold ({thresholds.minimum_threshold})")
    if thresholds.cache_similarity < 0.8:
        logger.warning(f"cache_similarity ({thresholds.cache_similarity}) should be >= 0.8 for effective caching")


class SearchConfigService:
    """
    Load thresholds from the database with a short-lived cache.

    Any failure to read the table yields the built-in defaults, so callers
    always get a usable configuration.
    """

    def __init__(self, client=None, table_name: str = SEARCH_CONFIG_TABLE, ttl_seconds: float = 300.0):
        """
        Args:
            client: Supabase client; None means defaults only
            table_name: Configuration table name
            ttl_seconds: How long a loaded configuration is reused
        """
        self.client = client
        self.table_name = table_name
        self._cache: ExpiringCache[SearchConfig] = ExpiringCache(ttl_seconds, max_entries=1)

    async def get_config(self) -> SearchConfig:
        config = await self._cache.get_or_load(CONFIG_KEY, self._load)
        return config or SearchConfig()

    async def get_thresholds(self) -> SearchThresholds:
        return (await self.get_config()).thresholds

    async def _load(self) -> SearchConfig:
        if self.client is None:
            return SearchConfig()
        try:
            query = (
                self.client.table(self.table_name)
                .select("*")
                .eq("active", True)
                .order("version", desc=True)
                .limit(1)
            )
            response = await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.warning(f"Error loading search configuration, using defaults: {e}")
            return SearchConfig()

        if not response.data:
            logger.info("No search configuration found in database, using defaults")
            return SearchConfig()

        row = response.data[0]
        return SearchConfig(
            thresholds=SearchThresholds.from_dict(row.get("thresholds")),
            embedding_model=row.get("embedding_model") or EMBEDDING_MODEL,
            last_updated=row.get("updated_at") or "",
            version=int(row.get("version") or 1),
        )

    async def method_threshold(self, method: str) -> float:
        """
        Threshold for one search method (hierarchical, weighted, basic, vector_db).

        Raises:
            ValueError: If the method is unknown
        """
        if method not in METHOD_FIELDS:
            raise ValueError(f"Unknown search method: {method}")
        thresholds = await self.get_thresholds()
        return getattr(thresholds, METHOD_FIELDS[method])

    async def confidence_level(self, similarity: float) -> str:
        thresholds = await self.get_thresholds()
        if similarity >= thresholds.high_confidence:
            return "high"
        if similarity >= thresholds.moderate_confidence:
            return "moderate"
        if similarity >= thresholds.low_confidence:
            return "low"
        return "insufficient"

    async def meets_minimum(self, similarity: float) -> bool:
        return similarity >= (await self.get_thresholds()).minimum_threshold

    async def update_thresholds(self, updates: Dict[str, float]) -> SearchConfig:
        """
        Store a new configuration version with `updates` applied.

        Raises:
            ValueError: If the merged thresholds are invalid
            RuntimeError: If there is no database or the write fails
        """
        current = await self.get_config()
        merged = SearchThresholds.from_dict({**asdict(current.thresholds), **updates})
        validate_thresholds(merged)

        if self.client is None:
            raise RuntimeError("No database client configured for search configuration updates")

        now = datetime.now(timezone.utc).isoformat()
        new_config = SearchConfig(
            thresholds=merged,
            embedding_model=current.embedding_model,
            last_updated=now,
            version=current.version + 1,
        )
        table = self.client.table(self.table_name)
        try:
            await asyncio.to_thread(table.insert({
                "thresholds": asdict(merged),
                "embedding_model": new_config.embedding_model,
                "version": new_config.version,
                "active": True,
                "created_at": now,
                "updated_at": now,
            }).execute)
            await asyncio.to_thread(
                table.update({"active": False}).lt("version", new_config.version).execute
            )
        except Exception as e:
            error_msg = f"Failed to update search configuration: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

        self.clear_cache()
        logger.info(f"Search configuration updated to version {new_config.version}")
        return new_config

    def clear_cache(self) -> None:
        self._cache.clear()
