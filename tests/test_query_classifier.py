"""Unit tests for QueryClassifier."""
import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import AsyncMock, Mock
from config import DEFAULT_CATEGORIES
from services.category_registry import CategoryInfo
from services.query_classifier import QueryClassifier, is_preference_query

CATEGORIES = [
    CategoryInfo("resume", "Work history and roles"),
    CategoryInfo("skills", "Technical skills and preferences"),
]


def registry_with(categories):
    registry = Mock()
    registry.categories = AsyncMock(return_value=categories)
    return registry


def oracle_with(payload):
    oracle = Mock()
    oracle.complete_json = AsyncMock(return_value=payload)
    return oracle


def as_map(weights):
    return {w.category: w.weight for w in weights}


class TestPreferenceDetection:
    """Test suite for is_preference_query."""

    @pytest.mark.parametrize("query", [
        "what do you prefer to work on",
        "describe your ideal team",
        "are you open to remote work",
        "what does your day-to-day look like",
        "what are you looking for next",
    ])
    def test_preference_queries(self, query):
        """Test preference wording."""
        assert is_preference_query(query)

    def test_plain_query(self):
        """Test a query without preference wording."""
        assert not is_preference_query("where did you study")
        assert not is_preference_query(None)


class TestQueryClassifier:
    """Test suite for QueryClassifier."""

    def test_llm_weights_fill_missing_categories(self):
        """Test LLM weights with unknown categories dropped and skipped ones filled."""
        oracle = oracle_with({"weights": [
            {"category": "resume", "weight": 0.9, "reason": "Career question"},
            {"category": "hobbies", "weight": 1.0},
        ]})
        classifier = QueryClassifier(registry_with(CATEGORIES), oracle=oracle)

        weights = asyncio.run(classifier.classify("what did you do at Acme"))

        assert as_map(weights) == {"resume": 0.9, "skills": 0.1}
        assert weights[0].reason == "Career question"
        assert weights[1].reason == "Not weighted by LLM"

    def test_llm_weights_clamped(self):
        """Test that out-of-range and malformed weights are handled."""
        oracle = oracle_with({"weights": [
            {"category": "resume", "weight": 1.7},
            {"category": "skills", "weight": "high"},
        ]})
        classifier = QueryClassifier(registry_with(CATEGORIES), oracle=oracle)

        weights = as_map(asyncio.run(classifier.classify("Acme role")))

        assert weights["resume"] == 1.0
        assert weights["skills"] == 0.1

    def test_semantic_fallback(self):
        """Test embedding similarity weights when the LLM gives nothing."""
        embedding_model = Mock()
        embedding_model.embed_batch = AsyncMock(return_value=[[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        classifier = QueryClassifier(
            registry_with(CATEGORIES),
            oracle=oracle_with(None),
            embedding_model=embedding_model
        )

        weights = asyncio.run(classifier.classify("career history"))

        assert as_map(weights) == {"resume": 1.0, "skills": 0.2}
        assert weights[0].reason == "Semantic similarity: 100%"
        texts = embedding_model.embed_batch.call_args.args[0]
        assert texts == ["career history", "Work history and roles", "Technical skills and preferences"]

    def test_semantic_failure_falls_to_static(self):
        """Test static weights when both the LLM and embeddings fail."""
        embedding_model = Mock()
        embedding_model.embed_batch = AsyncMock(side_effect=RuntimeError("HF down"))
        classifier = QueryClassifier(registry_with(CATEGORIES), oracle=oracle_with(None), embedding_model=embedding_model)

        weights = asyncio.run(classifier.classify("career history"))

        assert as_map(weights) == {category: 0.5 for category in DEFAULT_CATEGORIES}

    def test_static_when_nothing_discovered(self):
        """Test static weights when the store has no categories."""
        oracle = oracle_with({"weights": []})
        classifier = QueryClassifier(registry_with([]), oracle=oracle)

        weights = asyncio.run(classifier.classify("anything"))

        assert as_map(weights) == {category: 0.5 for category in DEFAULT_CATEGORIES}
        oracle.complete_json.assert_not_awaited()

    def test_discovery_error_falls_to_static(self):
        """Test that a registry failure still yields weights."""
        registry = Mock()
        registry.categories = AsyncMock(side_effect=RuntimeError("db down"))

        weights = asyncio.run(QueryClassifier(registry).classify("anything"))
        assert len(weights) == len(DEFAULT_CATEGORIES)

    def test_preference_overlay(self):
        """Test that preference wording raises the preference categories."""
        weights = as_map(asyncio.run(QueryClassifier(registry_with([])).classify("do you prefer remote work")))

        assert weights["skills"] == 0.9
        assert weights["personal"] == 0.9
        assert weights["resume"] == 0.5

    def test_skill_overlay(self):
        """Test that skill wording raises the skills category."""
        weights = asyncio.run(QueryClassifier(registry_with([])).classify("what are your strongest skills"))

        assert weights[0].category == "skills"
        assert weights[0].weight == 0.8
        assert "Skill keywords" in weights[0].reason

    def test_overlay_never_lowers(self):
        """Test that the overlay keeps a higher LLM weight."""
        oracle = oracle_with({"weights": [{"category": "skills", "weight": 1.0, "reason": "Direct match"}]})
        classifier = QueryClassifier(registry_with(CATEGORIES), oracle=oracle)

        weights = asyncio.run(classifier.classify("what are your skills"))

        assert as_map(weights)["skills"] == 1.0
        assert weights[0].reason == "Direct match; Skill keywords"
