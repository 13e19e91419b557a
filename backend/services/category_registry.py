"""Discovered content categories with LLM-written descriptions."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from config import SearchSettings
from services.expiring_cache import ExpiringCache

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "categories"
SAMPLE_CHARS = 500


@dataclass
class CategoryInfo:
    category: str
    description: str
    sample_content: str = ""


class CategoryRegistry:
    """
    TTL-bound snapshot of the categories present in the store.

    The snapshot is rebuilt lazily when it expires, or explicitly through
    refresh(). A failed rebuild keeps serving the previous snapshot.
    """

    def __init__(self, vector_store, metadata_extractor=None, settings: Optional[SearchSettings] = None):
        self.vector_store = vector_store
        self.metadata_extractor = metadata_extractor
        self.settings = settings or SearchSettings()
        self.cache: ExpiringCache[List[CategoryInfo]] = ExpiringCache(
            self.settings.category_registry_ttl, max_entries=1
        )
        self._refresh_task: Optional[asyncio.Task] = None

    async def categories(self) -> List[CategoryInfo]:
        """Current snapshot; an empty list means discovery found nothing."""
        snapshot = await self.cache.get_or_load(SNAPSHOT_KEY, self._discover)
        return snapshot or []

    async def refresh(self) -> List[CategoryInfo]:
        """Rebuild the snapshot now."""
        try:
            snapshot = await self._discover()
        except Exception as e:
            logger.warning(f"Category refresh failed, keeping previous snapshot: {e}")
            return await self.categories()
        if snapshot:
            self.cache.set(SNAPSHOT_KEY, snapshot)
        return snapshot

    async def _discover(self) -> List[CategoryInfo]:
        chunks = await self.vector_store.sample_chunks(self.settings.category_sample_size)
        groups: Dict[str, List[str]] = {}
        for chunk in chunks:
            if chunk.category:
                groups.setdefault(chunk.category, []).append(chunk.content)
        if not groups:
            logger.info("No categories discovered in the chunk store")
            return []

        async def describe(category: str, contents: List[str]) -> CategoryInfo:
            sample = "\n".join(contents[:3])[:SAMPLE_CHARS]
            description = None
            if self.metadata_extractor is not None:
                description = await self.metadata_extractor.describe_category(category, sample)
            return CategoryInfo(
                category=category,
                description=description or f"Content related to {category}",
                sample_content=sample[:200],
            )

        infos = await asyncio.gather(*(describe(c, contents) for c, contents in groups.items()))
        logger.info(f"Discovered {len(infos)} categories: {', '.join(i.category for i in infos)}")
        return list(infos)

    def start_background_refresh(self, interval: Optional[float] = None) -> asyncio.Task:
        """Refresh the snapshot every `interval` seconds on the running loop."""
        interval = interval or self.settings.category_registry_ttl

        async def loop():
            while True:
                await self.refresh()
                await asyncio.sleep(interval)

        self._refresh_task = asyncio.create_task(loop())
        return self._refresh_task

    async def stop(self) -> None:
        if self._refresh_task is None:
            return
        self._refresh_task.cancel()
        try:
            await self._refresh_task
        except asyncio.CancelledError:
            pass
        self._refresh_task = None
