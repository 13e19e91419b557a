"""Unit tests for VectorStore class."""
import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import Mock, patch, MagicMock
from models.chunk import HierarchicalChunk
from services.vector_store import VectorStore


def row(chunk_id, content="text", **fields):
    return {"id": chunk_id, "content": content, "category": "resume", **fields}


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def store(client):
    with patch('services.vector_store.create_client', return_value=client):
        yield VectorStore(
            supabase_url="https://test.supabase.co",
            supabase_key="test_key",
            table_name="content_chunks",
            embedding_dimension=3
        )


def hierarchy():
    """One parent with two children; ids and links already assigned."""
    return [
        HierarchicalChunk(content="a", category="resume", id="c0", sequence_order=0, parent_chunk_id="p0"),
        HierarchicalChunk(content="b", category="resume", id="c1", sequence_order=1, parent_chunk_id="p0"),
        HierarchicalChunk(content="a\n\nb", category="resume", id="p0", chunk_level=1),
    ]


class TestVectorStore:
    """Test suite for VectorStore."""

    @patch('services.vector_store.create_client')
    def test_initialization_success(self, mock_create_client):
        """Test successful initialization with credentials."""
        mock_create_client.return_value = MagicMock()

        store = VectorStore(supabase_url="https://test.supabase.co", supabase_key="test_key")

        assert store.table_name == "content_chunks"
        mock_create_client.assert_called_once_with("https://test.supabase.co", "test_key")

    def test_initialization_without_credentials(self):
        """Test initialization fails without Supabase credentials."""
        with pytest.raises(ValueError, match="SUPABASE_URL and SUPABASE_KEY"):
            VectorStore(supabase_url=None, supabase_key="test_key")

        with pytest.raises(ValueError, match="SUPABASE_URL and SUPABASE_KEY"):
            VectorStore(supabase_url="https://test.supabase.co", supabase_key=None)

    def test_store_hierarchy_validates_input(self, store):
        """Test empty input and mismatched embedding counts."""
        with pytest.raises(ValueError, match="cannot be empty"):
            asyncio.run(store.store_hierarchy([], []))
        with pytest.raises(ValueError, match="exactly one embedding"):
            asyncio.run(store.store_hierarchy(hierarchy(), [[0.1, 0.2, 0.3]]))

    def test_store_hierarchy_parents_first(self, store, client):
        """Test that parents are written before children with embeddings attached."""
        vectors = [[0.1, 0.2, 0.3]] * 3

        stored = asyncio.run(store.store_hierarchy(hierarchy(), vectors, source_id="cv"))

        records = client.table.return_value.upsert.call_args.args[0]
        assert [r["id"] for r in records] == ["p0", "c0", "c1"]
        assert records[1]["parent_chunk_id"] == "p0"
        assert records[0]["embedding"] == [0.1, 0.2, 0.3]
        assert all(c.source_id == "cv" for c in stored)
        client.table.assert_called_with("content_chunks")

    def test_store_hierarchy_skips_invalid_embeddings(self, store, client):
        """Test that bad embeddings are skipped and orphaned children unlinked."""
        vectors = [[0.1, 0.2, 0.3], None, [0.1, 0.2]]

        stored = asyncio.run(store.store_hierarchy(hierarchy(), vectors))

        assert [c.id for c in stored] == ["c0"]
        records = client.table.return_value.upsert.call_args.args[0]
        assert records[0]["parent_chunk_id"] is None

    def test_store_hierarchy_nothing_valid(self, store, client):
        """Test that no valid embedding means no write."""
        assert asyncio.run(store.store_hierarchy(hierarchy(), [None, None, None])) == []
        client.table.return_value.upsert.assert_not_called()

    def test_store_hierarchy_failure(self, store, client):
        """Test that insert failures raise RuntimeError."""
        client.table.return_value.upsert.return_value.execute.side_effect = Exception("constraint violation")

        with pytest.raises(RuntimeError, match="Failed to store chunk hierarchy"):
            asyncio.run(store.store_hierarchy(hierarchy(), [[0.1, 0.2, 0.3]] * 3))

    def test_weighted_search(self, store, client):
        """Test the vector_search call and row conversion."""
        client.rpc.return_value.execute.return_value = Mock(data=[
            row("a", similarity=0.82, chunk_level=1, semantic_boundaries='{"temporal_markers": ["2019"]}'),
        ])

        chunks = asyncio.run(store.weighted_search([0.1, 0.2, 0.3], 0.3, 10, {"resume": 0.8}, ["python"], chunk_level=None))

        name, params = client.rpc.call_args.args
        assert name == "vector_search"
        assert params["match_threshold"] == 0.3
        assert params["category_weights"] == {"resume": 0.8}
        assert params["query_tags"] == ["python"]
        assert params["filter_level"] is None
        assert chunks[0].similarity == 0.82
        assert chunks[0].chunk_level == 1
        assert chunks[0].temporal_markers == ["2019"]

    def test_weighted_search_errors(self, store, client):
        """Test empty embeddings and rpc failures."""
        with pytest.raises(ValueError, match="Query embedding cannot be empty"):
            asyncio.run(store.weighted_search([], 0.3, 10))

        client.rpc.return_value.execute.side_effect = Exception("function does not exist")
        with pytest.raises(RuntimeError, match="Weighted vector search failed"):
            asyncio.run(store.weighted_search([0.1, 0.2, 0.3], 0.3, 10))

    def test_fetch_candidates_drops_bad_embeddings(self, store, client):
        """Test that pgvector strings are parsed and wrong dimensions dropped."""
        query = client.table.return_value.select.return_value.eq.return_value
        query.order.return_value.limit.return_value.execute.return_value = Mock(data=[
            row("a", embedding="[0.1,0.2,0.3]"),
            row("b", embedding=[0.1, 0.2]),
            row("c"),
        ])

        chunks = asyncio.run(store.fetch_candidates(10))

        assert [c.id for c in chunks] == ["a"]
        assert chunks[0].embedding == [0.1, 0.2, 0.3]

    def test_fetch_by_tags_without_tags(self, store, client):
        """Test that no tags means no query."""
        assert asyncio.run(store.fetch_by_tags([], 5)) == []
        client.table.assert_not_called()

    def test_find_related_chunks(self, store, client):
        """Test siblings, ancestors and children of a mid-level chunk."""
        siblings = client.table.return_value.select.return_value.eq.return_value.eq.return_value
        siblings.neq.return_value.order.return_value.execute.return_value = Mock(data=[row("s1")])
        rpc_rows = {"get_parent_chain": [row("top", chunk_level=2)], "get_child_chunks": [row("c0"), row("c1")]}

        def rpc(name, params):
            call = MagicMock()
            call.execute.return_value = Mock(data=rpc_rows[name])
            return call

        client.rpc.side_effect = rpc
        chunk = HierarchicalChunk(content="x", category="resume", id="mid", chunk_level=1,
                                  chunk_group_id="g1", parent_chunk_id="top")

        related = asyncio.run(store.find_related_chunks(chunk))

        assert [c.id for c in related["siblings"]] == ["s1"]
        assert [c.id for c in related["parents"]] == ["top"]
        assert [c.id for c in related["children"]] == ["c0", "c1"]

    def test_find_related_chunks_partial_failure(self, store, client):
        """Test that one failing relation leaves the others empty but intact."""
        client.rpc.side_effect = Exception("rpc down")
        chunk = HierarchicalChunk(content="x", category="resume", id="base", parent_chunk_id="p0")

        related = asyncio.run(store.find_related_chunks(chunk, include_siblings=False))

        assert related == {"siblings": [], "parents": [], "children": []}

    def test_find_related_chunks_without_id(self, store, client):
        """Test that an unsaved chunk has no relations."""
        related = asyncio.run(store.find_related_chunks(HierarchicalChunk(content="x", category="resume")))
        assert related == {"siblings": [], "parents": [], "children": []}
        client.table.assert_not_called()

    def test_hierarchy_statistics(self, store, client):
        """Test level counts, group count and total."""
        client.table.return_value.select.return_value.eq.return_value.execute.side_effect = [
            Mock(count=5), Mock(count=2), Mock(count=0),
            Mock(data=[{"chunk_group_id": "g1"}, {"chunk_group_id": "g1"}, {"chunk_group_id": "g2"}]),
        ]

        stats = asyncio.run(store.hierarchy_statistics())

        assert stats == {"levels": {0: 5, 1: 2, 2: 0}, "groups": 2, "total": 7}

    def test_search_level(self, store, client):
        """Test loading one level ordered by group and sequence."""
        query = client.table.return_value.select.return_value.eq.return_value
        query.order.return_value.order.return_value.limit.return_value.execute.return_value = Mock(
            data=[row("p0", chunk_level=1)]
        )

        chunks = asyncio.run(store.search_level(1, limit=5))

        assert [c.chunk_level for c in chunks] == [1]
        client.table.return_value.select.return_value.eq.assert_called_with("chunk_level", 1)
        query.order.assert_called_with("chunk_group_id")
        query.order.return_value.order.return_value.limit.assert_called_with(5)

    def test_get_group(self, store, client):
        """Test loading every level of a group."""
        query = client.table.return_value.select.return_value.eq.return_value
        query.order.return_value.order.return_value.execute.return_value = Mock(data=[
            row("c0", chunk_group_id="g1"), row("p0", chunk_group_id="g1", chunk_level=1),
        ])

        chunks = asyncio.run(store.get_group("g1"))

        assert [c.id for c in chunks] == ["c0", "p0"]
        client.table.return_value.select.return_value.eq.assert_called_with("chunk_group_id", "g1")

    def test_get_group_failure(self, store, client):
        """Test that group lookups raise RuntimeError on failure."""
        query = client.table.return_value.select.return_value.eq.return_value
        query.order.return_value.order.return_value.execute.side_effect = Exception("timeout")

        with pytest.raises(RuntimeError, match="Failed to load chunk group g1"):
            asyncio.run(store.get_group("g1"))

    def test_delete_group_failure(self, store, client):
        """Test that delete failures raise RuntimeError."""
        client.table.return_value.delete.return_value.eq.return_value.execute.side_effect = Exception("denied")

        with pytest.raises(RuntimeError, match="Failed to delete chunk group g1"):
            asyncio.run(store.delete_group("g1"))

    def test_count(self, store, client):
        """Test counting chunks."""
        client.table.return_value.select.return_value.execute.return_value = Mock(count=12)
        assert asyncio.run(store.count()) == 12

    def test_count_failure(self, store, client):
        """Test that count failures raise RuntimeError."""
        client.table.return_value.select.return_value.execute.side_effect = Exception("timeout")

        with pytest.raises(RuntimeError, match="Failed to count chunks"):
            asyncio.run(store.count())
