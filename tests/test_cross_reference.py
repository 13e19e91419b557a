"""Unit tests for CrossReferenceEngine."""
import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import AsyncMock, Mock
from models.chunk import HierarchicalChunk
from models.cross_reference import CrossReference, CrossReferenceContext
from models.metadata import ExtractedMetadata
from services.cross_reference import (
    EXTRACTED_KEY,
    CrossReferenceEngine,
    detect_intents,
    extract_query_terms,
)

QUERY = "what did you build with Kafka at Acme"


def chunk(chunk_id, category="resume", content="plain text", **extracted):
    metadata = {EXTRACTED_KEY: ExtractedMetadata(**extracted).to_dict()} if extracted else {}
    return HierarchicalChunk(id=chunk_id, content=content, category=category, metadata=metadata)


def make_store(candidates=None, family=None, temporal=None):
    store = Mock()
    store.fetch_excluding = AsyncMock(return_value=candidates or [])
    store.find_related_chunks = AsyncMock(return_value=family or {"parents": [], "children": [], "siblings": []})
    store.fetch_with_temporal_metadata = AsyncMock(return_value=temporal or [])
    return store


def make_context(query=QUERY, temporal_context="timeless", **fields):
    metadata = ExtractedMetadata(
        entities=fields.pop("entities", ["Acme"]),
        tools=fields.pop("tools", ["Kafka"]),
        temporal_context=temporal_context,
    )
    return CrossReferenceContext(
        query=query,
        metadata=metadata,
        primary_categories=["resume"],
        secondary_categories=["projects"],
    )


class TestHelpers:
    """Test suite for intent detection and query terms."""

    @pytest.mark.parametrize("query,intents", [
        ("what did you do before Globex", {"temporal"}),
        ("which framework do you use", {"tool"}),
        ("which company hired you", {"entity"}),
        ("give me more context", {"context"}),
        ("what did you build before joining that team", {"temporal", "tool", "entity"}),
        ("hello there", set()),
    ])
    def test_detect_intents(self, query, intents):
        """Test that every matching intent is reported."""
        assert detect_intents(query) == intents

    def test_query_terms(self):
        """Test that stop words and short words are dropped."""
        assert extract_query_terms(QUERY) == ["build", "kafka", "acme"]


class TestCrossReferenceEngine:
    """Test suite for CrossReferenceEngine."""

    def test_metadata_references(self):
        """Test that shared entities and tools produce a metadata reference."""
        related = chunk("c1", "projects", entities=["Acme"], tools=["kafka"])
        unrelated = chunk("c2", "projects", tools=["Rails"])
        store = make_store(candidates=[related, unrelated])
        engine = CrossReferenceEngine(store)

        refs = asyncio.run(engine.metadata_references(make_context(), ["p1"], limit=5))

        assert len(refs) == 1
        assert refs[0].chunk.id == "c1"
        assert refs[0].relationship == "entity"
        assert refs[0].relevance == 1.0
        assert "tool: kafka" in refs[0].details
        store.fetch_excluding.assert_awaited_once_with(["p1"], limit=10, exclude_categories=["resume"])

    def test_metadata_references_need_terms(self):
        """Test that a query without metadata terms skips the lookup."""
        store = make_store()
        context = make_context(entities=[], tools=[])

        assert asyncio.run(CrossReferenceEngine(store).metadata_references(context, [], 5)) == []
        store.fetch_excluding.assert_not_awaited()

    def test_hierarchical_references_cap_siblings(self):
        """Test parent, child and at most three siblings per primary chunk."""
        family = {
            "parents": [chunk("parent")],
            "children": [chunk("child")],
            "siblings": [chunk(f"s{i}") for i in range(5)],
        }
        engine = CrossReferenceEngine(make_store(family=family))

        refs = asyncio.run(engine.hierarchical_references([chunk("p1")], limit=10))

        assert [r.relationship for r in refs] == ["parent", "child", "sibling", "sibling", "sibling"]
        assert refs[0].relevance == 0.8
        assert all(r.source_chunk_id == "p1" for r in refs)

    def test_temporal_references(self):
        """Test that matching temporal context yields temporal references."""
        same = chunk("t1", temporal_context="historical", time_references=["2019"])
        other = chunk("t2", temporal_context="current")
        engine = CrossReferenceEngine(make_store(temporal=[same, other]))

        refs = asyncio.run(engine.temporal_references(make_context(temporal_context="historical"), ["p1"], 5))

        assert [r.chunk.id for r in refs] == ["t1"]
        assert refs[0].reference_type == "temporal"

    def test_deduplicate_excludes_primary_and_repeats(self):
        """Test that primary ids, repeats and id-less chunks are removed."""
        engine = CrossReferenceEngine(make_store())
        refs = [
            CrossReference(chunk("p1"), "metadata", "entity", 1.0),
            CrossReference(chunk("c1"), "metadata", "entity", 1.0),
            CrossReference(chunk("c1"), "hierarchical", "parent", 0.8),
            CrossReference(chunk(None), "metadata", "tool", 1.0),
        ]

        unique = engine.deduplicate(refs, {"p1"})

        assert [(r.chunk.id, r.reference_type) for r in unique] == [("c1", "metadata")]

    def test_composite_score_clamped(self):
        """Test that composite scores stay within [0, 10]."""
        engine = CrossReferenceEngine(make_store())
        ref = CrossReference(chunk("c1", content="kafka acme build"), "metadata", "tool", 50.0)

        assert engine.composite_score(ref, make_context()) == 10.0
        ref.relevance = -1.0
        assert engine.composite_score(ref, make_context()) == 0.0

    def test_category_multiplier(self):
        """Test primary, secondary and other category multipliers."""
        engine = CrossReferenceEngine(make_store())
        context = make_context()

        assert engine.category_multiplier(CrossReference(chunk("a", "resume"), "metadata", "entity", 1), context) == 1.0
        assert engine.category_multiplier(CrossReference(chunk("b", "projects"), "metadata", "entity", 1), context) == 0.7
        assert engine.category_multiplier(CrossReference(chunk("c", "skills"), "metadata", "entity", 1), context) == 0.3

    def test_tool_intent_weights_tool_relationships(self):
        """Test that technical queries favour tool relationships."""
        engine = CrossReferenceEngine(make_store())
        tool_ref = CrossReference(chunk("a"), "metadata", "tool", 1.0)
        entity_ref = CrossReference(chunk("b"), "metadata", "entity", 1.0)

        assert engine.relationship_weight(tool_ref, make_context()) == 1.8
        assert engine.relationship_weight(entity_ref, make_context()) == 1.0

    def test_context_intents_drive_weights(self):
        """Test that intents on the context are used instead of re-reading the query."""
        engine = CrossReferenceEngine(make_store())
        context = make_context()
        context.intents = {"entity"}
        tool_ref = CrossReference(chunk("a"), "metadata", "tool", 1.0)
        entity_ref = CrossReference(chunk("b"), "metadata", "entity", 1.0)

        assert engine.relationship_weight(tool_ref, context) == 1.0
        assert engine.relationship_weight(entity_ref, context) == 1.8

    def test_find_cross_references_splits_results(self):
        """Test ranking and the related/hierarchical split."""
        family = {
            "parents": [chunk("parent")],
            "children": [chunk("child")],
            "siblings": [chunk(f"s{i}") for i in range(3)],
        }
        candidates = [chunk("c1", "projects", entities=["Acme"])]
        engine = CrossReferenceEngine(make_store(candidates=candidates, family=family))

        result = asyncio.run(engine.find_cross_references(make_context(), [chunk("p1")], limit=4))

        assert [r.chunk.id for r in result.related] == ["c1"]
        assert [r.chunk.id for r in result.hierarchical] == ["parent", "child"]
        assert result.total_references == 6
        assert result.cross_category_count == 2
        assert result.related[0].score > 0

    def test_failed_lookup_does_not_abort(self):
        """Test that one failing source leaves the others intact."""
        store = make_store(family={"parents": [chunk("parent")], "children": [], "siblings": []})
        store.fetch_excluding = AsyncMock(side_effect=RuntimeError("db down"))

        result = asyncio.run(CrossReferenceEngine(store).find_cross_references(make_context(), [chunk("p1")]))

        assert result.related == []
        assert [r.chunk.id for r in result.hierarchical] == ["parent"]

    def test_no_primary_chunks(self):
        """Test the empty result for no primary chunks."""
        result = asyncio.run(CrossReferenceEngine(make_store()).find_cross_references(make_context(), []))
        assert result.total_references == 0
