"""Tests for structured logging helpers."""

from __future__ import annotations

import json
import logging

import pytest

from ReleaseHub.logging_utils import JSONFormatter, mask_sensitive_data, setup_logging


@pytest.fixture
def restore_logger():
    logger = logging.getLogger("ReleaseHub")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
    logger.propagate = propagate


def test_mask_sensitive_data():
    masked = mask_sensitive_data(
        {"salt": "s", "nested": {"api_token": "t", "count": 3}, "items": [{"signature": "x"}]}
    )
    assert masked == {"salt": "***", "nested": {"api_token": "***", "count": 3}, "items": [{"signature": "***"}]}


def test_json_formatter_includes_extra_fields():
    record = logging.LogRecord("ReleaseHub.sync", logging.INFO, __file__, 1, "fetched %d", (3,), None)
    record.extra_fields = {"source": "circleci", "token": "secret"}
    payload = json.loads(JSONFormatter().format(record))
    assert payload["message"] == "fetched 3"
    assert payload["level"] == "INFO"
    assert payload["source"] == "circleci"
    assert payload["token"] == "***"
    assert payload["timestamp"].endswith("Z")


def test_setup_logging_writes_jsonl(tmp_path, restore_logger):
    logger = setup_logging(level="DEBUG", log_dir=tmp_path)
    logging.getLogger("ReleaseHub.test").info("hello", extra={"extra_fields": {"k": 1}})
    for handler in logger.handlers:
        handler.flush()

    files = list(tmp_path.glob("releasehub-*.jsonl"))
    assert len(files) == 1
    entry = json.loads(files[0].read_text().splitlines()[-1])
    assert entry["message"] == "hello"
    assert entry["k"] == 1


def test_setup_logging_is_idempotent(restore_logger):
    setup_logging()
    setup_logging()
    managed = [h for h in restore_logger.handlers if getattr(h, "_releasehub_managed", False)]
    assert len(managed) == 1
