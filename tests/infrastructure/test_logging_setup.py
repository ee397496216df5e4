"""
Infrastructure Layer Tests: logging configuration
"""

import json
import logging
import sys

from skiff.infrastructure.logging import JSONFormatter, configure_logging


def make_record(message="hello", **extra):
    record = logging.LogRecord("skiff.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_fields():
    entry = json.loads(JSONFormatter().format(make_record()))
    assert entry["level"] == "INFO"
    assert entry["logger"] == "skiff.test"
    assert entry["message"] == "hello"
    assert "timestamp" in entry
    assert "job_id" not in entry


def test_json_formatter_includes_job_id():
    entry = json.loads(JSONFormatter().format(make_record(job_id="deploy_1_abcdefg")))
    assert entry["job_id"] == "deploy_1_abcdefg"


def test_json_formatter_includes_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord(
            "skiff.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
        )
    entry = json.loads(JSONFormatter().format(record))
    assert "RuntimeError: boom" in entry["exception"]


def test_configure_logging_replaces_handlers():
    configure_logging(logging.DEBUG)
    configure_logging(logging.WARNING, json_format=True)
    root = logging.getLogger("skiff")
    assert root.level == logging.WARNING
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JSONFormatter)
    root.handlers.clear()
    root.setLevel(logging.NOTSET)


def test_plain_format_tags_job_id():
    configure_logging(logging.INFO)
    handler = logging.getLogger("skiff").handlers[0]
    record = make_record(job_id="deploy_1_abcdefg")
    assert handler.filter(record)
    assert "[deploy_1_abcdefg] hello" in handler.format(record)

    untagged = make_record()
    handler.filter(untagged)
    assert handler.format(untagged).endswith("skiff.test: hello")
    logging.getLogger("skiff").handlers.clear()
    logging.getLogger("skiff").setLevel(logging.NOTSET)
