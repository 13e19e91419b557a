"""Unit tests for SearchConfigService and threshold validation."""
import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import MagicMock, Mock
from services.search_config import (
    SearchConfig,
    SearchConfigService,
    SearchThresholds,
    validate_thresholds,
)


def client_with_rows(rows):
    """Supabase client mock whose select chain returns `rows`."""
    client = MagicMock()
    select_chain = client.table.return_value.select.return_value.eq.return_value.order.return_value.limit.return_value
    select_chain.execute.return_value = Mock(data=rows)
    return client


class TestSearchThresholds:
    """Test suite for SearchThresholds and validate_thresholds."""

    def test_defaults_are_valid(self):
        """Test that the built-in defaults pass validation."""
        validate_thresholds(SearchThresholds())

    def test_from_dict_ignores_unknown_keys(self):
        """Test that unknown keys are dropped and values coerced to float."""
        thresholds = SearchThresholds.from_dict({"basic_search": "0.25", "bogus": 1})

        assert thresholds.basic_search == 0.25
        assert thresholds.high_confidence == 0.40

    @pytest.mark.parametrize("updates,message", [
        ({"minimum_threshold": 0.2, "low_confidence": 0.2}, "minimum_threshold"),
        ({"low_confidence": 0.35}, "low_confidence"),
        ({"moderate_confidence": 0.45}, "moderate_confidence"),
    ])
    def test_ordering_errors(self, updates, message):
        """Test that confidence bands must be strictly increasing."""
        values = {"minimum_threshold": 0.1, **updates}
        with pytest.raises(ValueError, match=message):
            validate_thresholds(SearchThresholds(**values))

    def test_range_error(self):
        """Test that values outside [0, 1] are rejected."""
        with pytest.raises(ValueError, match="between 0 and 1"):
            validate_thresholds(SearchThresholds(minimum_threshold=0.1, basic_search=1.5))


class TestSearchConfigService:
    """Test suite for SearchConfigService."""

    def test_defaults_without_client(self):
        """Test that no client yields the default configuration."""
        config = asyncio.run(SearchConfigService().get_config())

        assert isinstance(config, SearchConfig)
        assert config.thresholds == SearchThresholds()

    def test_loads_active_row(self):
        """Test that the newest active row is used."""
        client = client_with_rows([{
            "thresholds": {"hierarchical_search": 0.15, "basic_search": 0.25},
            "embedding_model": "custom-model",
            "version": 3,
            "updated_at": "2026-10-01T00:00:00+00:00",
        }])
        service = SearchConfigService(client)

        config = asyncio.run(service.get_config())

        assert config.version == 3
        assert config.embedding_model == "custom-model"
        assert asyncio.run(service.method_threshold("hierarchical")) == 0.15
        assert asyncio.run(service.method_threshold("basic")) == 0.25
        client.table.assert_called_with("search_configuration")

    def test_load_is_cached(self):
        """Test that the table is read once within the ttl."""
        client = client_with_rows([])
        service = SearchConfigService(client)

        asyncio.run(service.get_config())
        asyncio.run(service.get_config())

        assert client.table.call_count == 1

    def test_database_error_gives_defaults(self):
        """Test that a read failure falls back to defaults."""
        client = MagicMock()
        client.table.side_effect = Exception("connection refused")

        config = asyncio.run(SearchConfigService(client).get_config())
        assert config.thresholds == SearchThresholds()

    def test_unknown_method(self):
        """Test that an unknown search method is rejected."""
        with pytest.raises(ValueError, match="Unknown search method"):
            asyncio.run(SearchConfigService().method_threshold("fuzzy"))

    def test_confidence_levels(self):
        """Test the confidence band for a similarity."""
        service = SearchConfigService()

        assert asyncio.run(service.confidence_level(0.5)) == "high"
        assert asyncio.run(service.confidence_level(0.35)) == "moderate"
        assert asyncio.run(service.confidence_level(0.25)) == "low"
        assert asyncio.run(service.confidence_level(0.1)) == "insufficient"
        assert asyncio.run(service.meets_minimum(0.2))
        assert not asyncio.run(service.meets_minimum(0.19))

    def test_update_without_client(self):
        """Test that updates need a database client."""
        with pytest.raises(RuntimeError, match="No database client"):
            asyncio.run(SearchConfigService().update_thresholds({"basic_search": 0.3}))

    def test_update_validates_before_writing(self):
        """Test that invalid updates never reach the database."""
        client = client_with_rows([])
        service = SearchConfigService(client)

        with pytest.raises(ValueError):
            asyncio.run(service.update_thresholds({"low_confidence": 0.9}))
        client.table.return_value.insert.assert_not_called()

    def test_update_writes_new_version(self):
        """Test that an update inserts the next version and deactivates older ones."""
        client = client_with_rows([])
        service = SearchConfigService(client)

        config = asyncio.run(service.update_thresholds({"basic_search": 0.3}))

        assert config.version == 2
        assert config.thresholds.basic_search == 0.3
        table = client.table.return_value
        inserted = table.insert.call_args.args[0]
        assert inserted["version"] == 2
        assert inserted["active"] is True
        table.update.assert_called_once_with({"active": False})
        table.update.return_value.lt.assert_called_once_with("version", 2)

    def test_update_failure_raises_runtime_error(self):
        """Test that a failed write raises RuntimeError."""
        client = client_with_rows([])
        client.table.return_value.insert.return_value.execute.side_effect = Exception("write failed")

        with pytest.raises(RuntimeError, match="Failed to update search configuration"):
            asyncio.run(SearchConfigService(client).update_thresholds({"basic_search": 0.3}))
