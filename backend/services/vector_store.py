"""Hierarchical chunk store backed by Supabase pgvector."""
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence
from supabase import create_client, Client
from models.chunk import HierarchicalChunk
from config import SUPABASE_URL, SUPABASE_KEY, CHUNKS_TABLE, EMBEDDING_DIMENSION

logger = logging.getLogger(__name__)

# SQL functions expected in the database:
#   vector_search(query_embedding vector, match_threshold float, match_count int,
#                 category_weights jsonb, query_tags text[], filter_level int)
#     -> rows of content_chunks plus `similarity`; filter_level NULL searches every level
#   get_parent_chain(child_id uuid) -> ancestor rows, nearest first
#   get_child_chunks(parent_id uuid) -> direct children ordered by sequence_order


class VectorStore:
    """Store hierarchical chunks and their embeddings; run similarity searches."""

    def __init__(
        self,
        supabase_url: str = SUPABASE_URL,
        supabase_key: str = SUPABASE_KEY,
        table_name: str = CHUNKS_TABLE,
        embedding_dimension: int = EMBEDDING_DIMENSION
    ):
        """
        Initialize the vector store with Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            table_name: Name of the chunk table
            embedding_dimension: Expected embedding length; other rows are skipped

        Raises:
            ValueError: If Supabase credentials are missing
        """
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")

        self.table_name = table_name
        self.embedding_dimension = embedding_dimension
        self.client: Client = create_client(supabase_url, supabase_key)

        logger.info(f"Initialized VectorStore with table: {table_name}")

    async def _execute(self, query) -> Any:
        """Run a blocking supabase query builder off the event loop."""
        return await asyncio.to_thread(query.execute)

    def _table(self):
        return self.client.table(self.table_name)

    def valid_embedding(self, embedding: Optional[Sequence[float]]) -> bool:
        return embedding is not None and len(embedding) == self.embedding_dimension

    def _to_chunks(self, rows: Optional[List[Dict[str, Any]]]) -> List[HierarchicalChunk]:
        chunks = []
        for row in rows or []:
            try:
                chunks.append(HierarchicalChunk.from_row(row))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed chunk row {row.get('id')}: {e}")
        return chunks

    async def store_hierarchy(
        self,
        chunks: List[HierarchicalChunk],
        embeddings: List[Optional[List[float]]],
        source_id: Optional[str] = None
    ) -> List[HierarchicalChunk]:
        """
        Insert a chunk hierarchy with its embeddings.

        Ids must already be assigned and parent links set (see
        HierarchyBuilder.link_parents). Rows whose embedding is missing or
        has the wrong dimension are skipped; children of a skipped parent
        are stored without a parent link.

        Args:
            chunks: Chunks of every level for one group
            embeddings: One embedding (or None) per chunk
            source_id: Filled in on chunks that have none

        Returns:
            The chunks that were stored

        Raises:
            ValueError: If chunks is empty or lengths differ
            RuntimeError: If the insert fails
        """
        if not chunks:
            raise ValueError("Chunks list cannot be empty")
        if len(chunks) != len(embeddings):
            raise ValueError("Each chunk needs exactly one embedding slot")

        stored: List[HierarchicalChunk] = []
        skipped_ids = set()
        for chunk, embedding in zip(chunks, embeddings):
            if not self.valid_embedding(embedding):
                logger.warning(
                    f"Skipping chunk {chunk.id} (level {chunk.chunk_level}): invalid embedding"
                )
                skipped_ids.add(chunk.id)
                continue
            chunk.embedding = list(embedding)
            if source_id and not chunk.source_id:
                chunk.source_id = source_id
            stored.append(chunk)

        # Parents first so foreign keys resolve
        stored.sort(key=lambda c: (-c.chunk_level, c.sequence_order))
        records = []
        for chunk in stored:
            if chunk.parent_chunk_id in skipped_ids:
                chunk.parent_chunk_id = None
            record = chunk.to_row()
            record["id"] = chunk.id or str(uuid.uuid4())
            record["embedding"] = chunk.embedding
            records.append(record)

        if not records:
            logger.warning("No chunks with valid embeddings to store")
            return []

        try:
            await self._execute(self._table().upsert(records))
        except Exception as e:
            error_msg = f"Failed to store chunk hierarchy: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

        logger.info(f"Stored {len(records)} chunks ({len(skipped_ids)} skipped)")
        return stored

    async def weighted_search(
        self,
        query_embedding: List[float],
        threshold: float,
        count: int,
        category_weights: Optional[Dict[str, float]] = None,
        tags: Optional[List[str]] = None,
        chunk_level: Optional[int] = 0
    ) -> List[HierarchicalChunk]:
        """
        Similarity search through the `vector_search` SQL function.

        Args:
            query_embedding: Query vector
            threshold: Minimum cosine similarity
            count: Maximum rows
            category_weights: Category -> weight map passed to the function
            tags: Query tags passed to the function
            chunk_level: Restrict to one hierarchy level, None for all levels

        Returns:
            Chunks with `similarity` set, best first

        Raises:
            ValueError: If the query embedding is empty
            RuntimeError: If the call fails
        """
        if not query_embedding:
            raise ValueError("Query embedding cannot be empty")

        try:
            response = await self._execute(self.client.rpc(
                "vector_search",
                {
                    "query_embedding": query_embedding,
                    "match_threshold": threshold,
                    "match_count": count,
                    "category_weights": category_weights or {},
                    "query_tags": tags or [],
                    "filter_level": chunk_level,
                }
            ))
        except Exception as e:
            error_msg = f"Weighted vector search failed: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

        chunks = self._to_chunks(response.data)
        logger.debug(f"vector_search returned {len(chunks)} rows (level={chunk_level})")
        return chunks

    async def fetch_candidates(
        self,
        limit: int,
        categories: Optional[List[str]] = None,
        exclude_categories: Optional[List[str]] = None,
        with_embeddings: bool = True
    ) -> List[HierarchicalChunk]:
        """
        Read recent base-level chunks for local scoring.

        Rows whose embedding has the wrong dimension are dropped when
        `with_embeddings` is set.

        Raises:
            RuntimeError: If the read fails
        """
        try:
            query = self._table().select("*").eq("chunk_level", 0)
            if categories:
                query = query.in_("category", categories)
            if exclude_categories:
                query = query.not_.in_("category", exclude_categories)
            query = query.order("created_at", desc=True).limit(limit)
            response = await self._execute(query)
        except Exception as e:
            error_msg = f"Failed to fetch candidate chunks: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

        chunks = self._to_chunks(response.data)
        if not with_embeddings:
            return chunks

        valid = [c for c in chunks if self.valid_embedding(c.embedding)]
        if len(valid) < len(chunks):
            logger.warning(f"Skipped {len(chunks) - len(valid)} chunks with invalid embeddings")
        return valid

    async def fetch_by_tags(
        self,
        tags: List[str],
        limit: int,
        exclude_ids: Optional[List[str]] = None
    ) -> List[HierarchicalChunk]:
        """Base-level chunks carrying any of `tags`."""
        if not tags:
            return []
        try:
            query = self._table().select("*").eq("chunk_level", 0).overlaps("tags", tags)
            if exclude_ids:
                query = query.not_.in_("id", exclude_ids)
            response = await self._execute(query.limit(limit))
        except Exception as e:
            error_msg = f"Failed to fetch chunks by tags: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)
        return self._to_chunks(response.data)

    async def search_level(self, chunk_level: int, limit: int = 50) -> List[HierarchicalChunk]:
        """Chunks of one hierarchy level in group and sequence order."""
        try:
            response = await self._execute(
                self._table()
                .select("*")
                .eq("chunk_level", chunk_level)
                .order("chunk_group_id")
                .order("sequence_order")
                .limit(limit)
            )
        except Exception as e:
            error_msg = f"Failed to load level {chunk_level} chunks: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)
        return self._to_chunks(response.data)

    async def fetch_excluding(
        self,
        exclude_ids: List[str],
        categories: Optional[List[str]] = None,
        limit: int = 20,
        exclude_categories: Optional[List[str]] = None
    ) -> List[HierarchicalChunk]:
        """Base chunks not in `exclude_ids`, optionally filtered by category."""
        try:
            query = self._table().select("*").eq("chunk_level", 0)
            if exclude_ids:
                query = query.not_.in_("id", exclude_ids)
            if categories:
                query = query.in_("category", categories)
            if exclude_categories:
                query = query.not_.in_("category", exclude_categories)
            response = await self._execute(query.limit(limit))
        except Exception as e:
            error_msg = f"Failed to fetch chunks: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)
        return self._to_chunks(response.data)

    async def fetch_with_temporal_metadata(
        self,
        limit: int = 20,
        exclude_ids: Optional[List[str]] = None
    ) -> List[HierarchicalChunk]:
        """Base chunks whose semantic boundaries carry temporal markers."""
        try:
            query = (
                self._table()
                .select("*")
                .eq("chunk_level", 0)
                .not_.is_("semantic_boundaries->temporal_markers", "null")
            )
            if exclude_ids:
                query = query.not_.in_("id", exclude_ids)
            response = await self._execute(query.limit(limit))
        except Exception as e:
            error_msg = f"Failed to fetch chunks with temporal metadata: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)
        return [c for c in self._to_chunks(response.data) if c.temporal_markers]

    async def find_by_content(self, term: str, chunk_level: int = 0, limit: int = 20) -> List[HierarchicalChunk]:
        """Case-insensitive substring lookup on chunk content."""
        try:
            response = await self._execute(
                self._table()
                .select("id, content, category, semantic_boundaries, chunk_level")
                .eq("chunk_level", chunk_level)
                .ilike("content", f"%{term}%")
                .limit(limit)
            )
        except Exception as e:
            error_msg = f"Failed to search chunk content for {term!r}: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)
        return self._to_chunks(response.data)

    async def get_group(self, group_id: str) -> List[HierarchicalChunk]:
        """All chunks of one group, ordered by level then sequence."""
        try:
            response = await self._execute(
                self._table()
                .select("*")
                .eq("chunk_group_id", group_id)
                .order("chunk_level")
                .order("sequence_order")
            )
        except Exception as e:
            error_msg = f"Failed to load chunk group {group_id}: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)
        return self._to_chunks(response.data)

    async def find_related_chunks(
        self,
        chunk: HierarchicalChunk,
        include_siblings: bool = True,
        include_parents: bool = True,
        include_children: bool = True
    ) -> Dict[str, List[HierarchicalChunk]]:
        """
        Siblings (same group and level), ancestors and children of `chunk`.

        Each relation is loaded independently; a failing lookup yields an
        empty list for that relation only.
        """
        related: Dict[str, List[HierarchicalChunk]] = {"siblings": [], "parents": [], "children": []}
        if not chunk.id:
            return related

        async def siblings():
            if not include_siblings or not chunk.chunk_group_id:
                return []
            response = await self._execute(
                self._table()
                .select("*")
                .eq("chunk_group_id", chunk.chunk_group_id)
                .eq("chunk_level", chunk.chunk_level)
                .neq("id", chunk.id)
                .order("sequence_order")
            )
            return self._to_chunks(response.data)

        async def parents():
            if not include_parents or not chunk.parent_chunk_id:
                return []
            response = await self._execute(self.client.rpc("get_parent_chain", {"child_id": chunk.id}))
            return self._to_chunks(response.data)

        async def children():
            if not include_children or chunk.chunk_level == 0:
                return []
            response = await self._execute(self.client.rpc("get_child_chunks", {"parent_id": chunk.id}))
            return self._to_chunks(response.data)

        results = await asyncio.gather(siblings(), parents(), children(), return_exceptions=True)
        for name, result in zip(("siblings", "parents", "children"), results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to load {name} of chunk {chunk.id}: {result}")
                continue
            related[name] = result
        return related

    async def delete_group(self, group_id: str) -> None:
        """
        Delete every chunk of a group (used before re-deriving a document).

        Raises:
            RuntimeError: If the delete fails
        """
        try:
            await self._execute(self._table().delete().eq("chunk_group_id", group_id))
            logger.info(f"Deleted chunk group {group_id}")
        except Exception as e:
            error_msg = f"Failed to delete chunk group {group_id}: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

    async def sample_chunks(self, limit: int = 100) -> List[HierarchicalChunk]:
        """A sample of base chunks (category and content only)."""
        try:
            response = await self._execute(
                self._table().select("category, content").eq("chunk_level", 0).limit(limit)
            )
        except Exception as e:
            error_msg = f"Failed to sample chunks: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)
        return self._to_chunks(response.data)

    async def hierarchy_statistics(self) -> Dict[str, Any]:
        """Chunk counts per hierarchy level plus the number of groups."""
        stats: Dict[str, Any] = {"levels": {}}
        try:
            for level in (0, 1, 2):
                response = await self._execute(
                    self._table().select("id", count="exact").eq("chunk_level", level)
                )
                stats["levels"][level] = response.count or 0
            response = await self._execute(self._table().select("chunk_group_id").eq("chunk_level", 0))
            stats["groups"] = len({row.get("chunk_group_id") for row in response.data or []})
        except Exception as e:
            error_msg = f"Failed to compute hierarchy statistics: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)
        stats["total"] = sum(stats["levels"].values())
        return stats

    async def count(self) -> int:
        """
        Get the total number of chunks in the store.

        Raises:
            RuntimeError: If database operation fails
        """
        try:
            response = await self._execute(self._table().select("id", count="exact"))
            return response.count if response.count is not None else 0
        except Exception as e:
            error_msg = f"Failed to count chunks in vector store: {str(e)}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)
