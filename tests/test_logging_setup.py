"""Tests for log formatting and redaction."""

import json
import logging

import pytest

from core import config
from core.logging_setup import (
    REDACTED,
    JsonFormatter,
    PlainFormatter,
    RedactFilter,
    extra_fields,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "vector_store.sqlite_store", logging.INFO, __file__, 1, "batch_stored", None, None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
def test_extra_fields_ignores_standard_attributes():
    record = _record(collection="docs", records=3, run_id="r1")
    assert extra_fields(record) == {"collection": "docs", "records": 3}


@pytest.mark.unit
def test_json_formatter_includes_extra_fields():
    record = _record(collection="docs", records=3, path=object())
    payload = json.loads(JsonFormatter().format(record))

    assert payload["event"] == "batch_stored"
    assert payload["run_id"] == "-"
    assert payload["collection"] == "docs"
    assert payload["records"] == 3
    assert "path" in payload


@pytest.mark.unit
def test_plain_formatter_appends_key_value_pairs():
    line = PlainFormatter().format(_record(collection="docs", records=3))
    assert "[run=-] batch_stored" in line
    assert line.endswith("collection=docs records=3")


@pytest.mark.unit
def test_plain_formatter_without_extra_is_unchanged():
    line = PlainFormatter().format(_record())
    assert line.endswith("batch_stored")


@pytest.mark.unit
def test_redaction_masks_content_fields(monkeypatch):
    monkeypatch.setattr(config, "LOG_REDACT_CONTENT", True)
    record = _record(item_id="secret/doc.txt", query="private words", records=2)

    assert RedactFilter().filter(record)
    payload = json.loads(JsonFormatter().format(record))

    assert payload["item_id"] == REDACTED
    assert payload["query"] == REDACTED
    assert payload["records"] == 2


@pytest.mark.unit
def test_redaction_off_leaves_fields(monkeypatch):
    monkeypatch.setattr(config, "LOG_REDACT_CONTENT", False)
    record = _record(item_id="doc.txt")
    RedactFilter().filter(record)
    assert record.item_id == "doc.txt"
