import logging
import sys
from pathlib import Path

import orjson
import pytest

from pubchem_harvest.utils.logging import JsonFormatter, TEXT_FORMAT, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(msg="Fetch attempt failed", args=(), exc_info=None, **extra):
    record = logging.LogRecord("pubchem_harvest.test", logging.INFO, __file__, 1, msg, args, exc_info)
    record.__dict__.update(extra)
    return record


def test_json_formatter_merges_extra_fields():
    payload = orjson.loads(JsonFormatter().format(make_record(cid=42, route="direct", attempt=3)))

    assert payload["message"] == "Fetch attempt failed"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "pubchem_harvest.test"
    assert payload["cid"] == 42
    assert payload["route"] == "direct"
    assert payload["attempt"] == 3
    assert "msg" not in payload
    assert "ts" in payload


def test_json_formatter_interpolates_args_and_serializes_unknown_types():
    payload = orjson.loads(JsonFormatter().format(
        make_record("Wrote %d artifacts", args=(5,), path=Path("/data/x.json"))
    ))

    assert payload["message"] == "Wrote 5 artifacts"
    assert payload["path"] == "/data/x.json"


def test_json_formatter_includes_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = make_record(exc_info=sys.exc_info())

    payload = orjson.loads(JsonFormatter().format(record))

    assert "RuntimeError: boom" in payload["exc_info"]


def test_setup_logging_text_format():
    setup_logging(level="debug", format_type="text", output="stderr")
    root = logging.getLogger()

    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert root.handlers[0].formatter._fmt == TEXT_FORMAT
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_json_format():
    setup_logging(format_type="json")

    assert isinstance(logging.getLogger().handlers[0].formatter, JsonFormatter)


@pytest.mark.parametrize("kwargs", [{"format_type": "xml"}, {"output": "file"}])
def test_setup_logging_rejects_unknown_options(kwargs):
    with pytest.raises(ValueError):
        setup_logging(**kwargs)
