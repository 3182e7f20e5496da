"""Logging helper regression coverage.

Validates masking of sensitive fields, the structured JSON file output, and
that repeated setup does not stack handlers.
"""

from __future__ import annotations

import json
import logging
import os
import time

import pytest

from CaskFetch.ArtifactDownload.logging_config import (
    LOGGER_NAME,
    CorrelationAdapter,
    JSONFormatter,
    generate_correlation_id,
    mask_sensitive_data,
    setup_logging,
)


@pytest.fixture
def package_logger():
    logger = logging.getLogger(LOGGER_NAME)
    previous_level = logger.level
    yield logger
    for handler in list(logger.handlers):
        if getattr(handler, "_caskfetch_managed", False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(previous_level)


def test_mask_sensitive_data_masks_tokens():
    masked = mask_sensitive_data(
        {"Authorization": "Bearer abc", "url": "https://x/?apikey=1", "cask": "firefox", "password": "p"}
    )
    assert masked == {
        "Authorization": "***masked***",
        "url": "***masked***",
        "cask": "firefox",
        "password": "***masked***",
    }


def test_correlation_ids_are_short_and_unique():
    ids = {generate_correlation_id() for _ in range(20)}
    assert len(ids) == 20
    assert all(len(value) == 12 for value in ids)


def test_json_formatter_includes_extras():
    record = logging.makeLogRecord(
        {"name": LOGGER_NAME, "levelname": "INFO", "msg": "downloaded %s", "args": ("App.dmg",)}
    )
    record.cask = "example-app"
    record.stage = "fetch"
    record.attempt = 2
    record.path = object()
    payload = json.loads(JSONFormatter().format(record))
    assert payload["message"] == "downloaded App.dmg"
    assert payload["cask"] == "example-app"
    assert payload["stage"] == "fetch"
    assert payload["attempt"] == 2
    assert isinstance(payload["path"], str)
    assert payload["timestamp"].endswith("Z")


def test_setup_logging_emits_structured_json(make_settings, tmp_path, package_logger):
    settings = make_settings()
    settings = settings.model_copy(
        update={"logging": settings.logging.model_copy(update={"emit_json_logs": True, "level": "DEBUG"})}
    )
    logger = setup_logging(settings, log_dir=tmp_path / "logs")
    adapter = CorrelationAdapter(logger, {"cask": "example-app", "correlation_id": "abc123abc123"})
    adapter.info("artifact available", extra={"stage": "fetch", "token": "secret-value"})
    for handler in logger.handlers:
        handler.flush()

    files = list((tmp_path / "logs").glob("caskfetch-*.jsonl"))
    assert len(files) == 1
    entries = [json.loads(line) for line in files[0].read_text(encoding="utf-8").splitlines()]
    entry = entries[-1]
    assert entry["message"] == "artifact available"
    assert entry["cask"] == "example-app"
    assert entry["correlation_id"] == "abc123abc123"
    assert entry["stage"] == "fetch"
    assert entry["token"] == "***masked***"
    assert entry["level"] == "INFO"


def test_setup_logging_replaces_its_own_handlers(settings, package_logger):
    foreign = logging.NullHandler()
    package_logger.addHandler(foreign)
    try:
        setup_logging(settings)
        setup_logging(settings)
        managed = [h for h in package_logger.handlers if getattr(h, "_caskfetch_managed", False)]
        assert len(managed) == 1
        assert foreign in package_logger.handlers
    finally:
        package_logger.removeHandler(foreign)


def test_old_logs_are_compressed(make_settings, tmp_path, package_logger):
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    stale = log_dir / "caskfetch-20000101.jsonl"
    stale.write_text("{}\n", encoding="utf-8")
    old = time.time() - 90 * 86400
    os.utime(stale, (old, old))

    settings = make_settings()
    settings = settings.model_copy(
        update={"logging": settings.logging.model_copy(update={"emit_json_logs": True})}
    )
    setup_logging(settings, log_dir=log_dir)

    assert not stale.exists()
    assert (log_dir / "caskfetch-20000101.jsonl.gz").exists()
