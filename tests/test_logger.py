"""Unit tests for the JSON log formatter."""
import json
import logging
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from logger import JSONFormatter, setup_logging


def make_record(**extra):
    record = logging.LogRecord("services.retrieval_engine", logging.INFO, __file__, 1, "Search done: %s", ("ok",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Test suite for JSONFormatter."""

    def test_basic_fields(self):
        """Test level, logger and formatted message."""
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "services.retrieval_engine"
        assert data["message"] == "Search done: ok"
        assert "timestamp" in data

    def test_extra_fields_included(self):
        """Test that fields passed through extra= appear in the output."""
        data = json.loads(JSONFormatter().format(make_record(error_code="RATE_LIMIT_ERROR", group_id="g1")))

        assert data["error_code"] == "RATE_LIMIT_ERROR"
        assert data["group_id"] == "g1"
        assert "args" not in data

    def test_unserializable_extra(self):
        """Test that non-JSON values are stringified."""
        data = json.loads(JSONFormatter().format(make_record(details={"at": object})))
        assert "object" in data["details"]["at"]


class TestSetupLogging:
    """Test suite for setup_logging."""

    def test_replaces_root_handlers(self):
        """Test a single handler with the requested format and level."""
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging("debug", "json")
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.DEBUG

            setup_logging("WARNING", "text")
            assert not isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.WARNING
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)
