"""Tests for log context and formatters."""

import json
import logging

import pytest

from ridemetrics.log_config import JSONFormatter, TextFormatter, log_context


def make_record(message, **extra):
    record = logging.LogRecord("ridemetrics.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogContext:
    def test_prefixes_and_drops_none(self):
        assert log_context(athlete_id=3, activity_id=None, batch_size=2) == {
            "rm_athlete_id": 3,
            "rm_batch_size": 2,
        }

    def test_unknown_key(self):
        with pytest.raises(ValueError):
            log_context(user_id=1)


class TestFormatters:
    def test_json_carries_context(self):
        record = make_record("Updating", **log_context(athlete_id=3, unseen=1))
        entry = json.loads(JSONFormatter().format(record))
        assert entry["service"] == "ridemetrics"
        assert entry["message"] == "Updating"
        assert entry["context"] == {"athlete_id": 3, "unseen": 1}

    def test_json_without_context(self):
        entry = json.loads(JSONFormatter().format(make_record("Started")))
        assert "context" not in entry

    def test_text_appends_context(self):
        record = make_record("Updating", **log_context(athlete_id=3, batch_size=5))
        line = TextFormatter().format(record)
        assert line.endswith("ridemetrics.test: Updating [athlete_id=3 batch_size=5]")
