import io
import json
import re

import pytest

from lambdaloop.log import JsonLogger, Level, parse_level


def _lines(buf):
    return [json.loads(line) for line in buf.getvalue().splitlines()]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("DEBUG", Level.DEBUG),
        ("debug", Level.DEBUG),
        ("WARN", Level.WARN),
        ("WARNING", Level.WARN),
        (" ERROR ", Level.ERROR),
        ("INFO", Level.INFO),
        ("nonsense", Level.INFO),
        ("", Level.INFO),
    ],
)
def test_parse_level(text, expected):
    assert parse_level(text) == expected


def test_core_fields_present():
    buf = io.StringIO()
    JsonLogger(Level.INFO, buf).info("hello")
    (entry,) = _lines(buf)
    assert entry["level"] == "INFO"
    assert entry["message"] == "hello"
    assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{9}Z", entry["timestamp"])


def test_level_filtering():
    buf = io.StringIO()
    logger = JsonLogger(Level.WARN, buf)
    logger.debug("d")
    logger.info("i")
    logger.warn("w")
    logger.error("e")
    assert [e["level"] for e in _lines(buf)] == ["WARN", "ERROR"]


def test_keys_sorted_and_one_line_per_entry():
    buf = io.StringIO()
    logger = JsonLogger(Level.DEBUG, buf)
    logger.debug("m", "zeta", 1, "alpha", 2)
    logger.info("n")
    raw = buf.getvalue().splitlines()
    assert len(raw) == 2
    keys = list(json.loads(raw[0]).keys())
    assert keys == sorted(keys)


def test_call_fields_key_value_pairs():
    buf = io.StringIO()
    JsonLogger(Level.INFO, buf).info("m", "request_id", "req-123", 7, "skipped", "odd")
    (entry,) = _lines(buf)
    assert entry["request_id"] == "req-123"
    assert "odd" not in entry
    assert "skipped" not in entry.values()


def test_single_dict_argument():
    buf = io.StringIO()
    JsonLogger(Level.INFO, buf).info("m", {"outcome": "success", "total_ms": 5})
    (entry,) = _lines(buf)
    assert entry["outcome"] == "success"
    assert entry["total_ms"] == 5


def test_bind_adds_persistent_fields_without_touching_parent():
    buf = io.StringIO()
    parent = JsonLogger(Level.INFO, buf)
    child = parent.bind("service", "api")
    grandchild = child.bind({"request_id": "r1"})
    child.info("a")
    grandchild.info("b", "service", "override")
    parent.info("c")
    a, b, c = _lines(buf)
    assert a["service"] == "api"
    assert b["request_id"] == "r1"
    assert b["service"] == "override"
    assert "service" not in c


def test_with_error():
    buf = io.StringIO()
    logger = JsonLogger(Level.INFO, buf)
    assert logger.with_error(None) is logger
    logger.with_error(ValueError("boom")).error("failed")
    (entry,) = _lines(buf)
    assert entry["error"] == "boom"
    assert entry["level"] == "ERROR"


def test_html_characters_escaped():
    buf = io.StringIO()
    JsonLogger(Level.INFO, buf).info("<a&b>")
    raw = buf.getvalue()
    assert "<" not in raw and ">" not in raw and "&" not in raw
    assert json.loads(raw)["message"] == "<a&b>"


def test_unserializable_value_falls_back():
    buf = io.StringIO()
    JsonLogger(Level.INFO, buf).info("m", "obj", object())
    (entry,) = _lines(buf)
    assert entry["message"] == "failed to marshal log entry"
    assert entry["level"] == "ERROR"


def test_none_output_discards():
    logger = JsonLogger(Level.DEBUG, None)
    logger.error("nothing")
    assert logger.level == Level.DEBUG