"""Test correlation ID handling."""

from testimony_digest.core.logging import (
    add_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


class TestCorrelationId:
    """Correlation IDs stamped on log events."""

    def test_explicit_id_is_kept(self):
        assert set_correlation_id("cycle-42") == "cycle-42"
        assert get_correlation_id() == "cycle-42"

    def test_generated_when_missing(self):
        generated = set_correlation_id()

        assert len(generated) == 8
        assert get_correlation_id() == generated

    def test_processor_stamps_events(self):
        set_correlation_id("cycle-7")

        event = add_correlation_id(None, "info", {"event": "Digest built"})

        assert event["correlation_id"] == "cycle-7"

    def test_processor_keeps_explicit_value(self):
        set_correlation_id("cycle-7")

        event = add_correlation_id(None, "info", {"event": "x", "correlation_id": "other"})

        assert event["correlation_id"] == "other"
