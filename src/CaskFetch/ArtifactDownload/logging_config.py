"""
Structured Logging Utilities

Logging setup for the artifact download pipeline.  Records carry their
context (cask token, stage, correlation id) through ``extra`` so the console
stays readable while the JSON file handler keeps every field for later
inspection.  Secrets found in URLs or headers passed as log fields are masked
before anything is written to disk.
"""

from __future__ import annotations

import gzip
import json
import logging
import sys
import uuid
from datetime import datetime, timedelta, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from .settings import ArtifactDownloadSettings

LOGGER_NAME = "CaskFetch.ArtifactDownload"

_RESERVED_RECORD_FIELDS = frozenset(
    logging.makeLogRecord({}).__dict__.keys() | {"message", "asctime"}
)


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Examples:
        >>> mask_sensitive_data({"token": "secret", "cask": "firefox"})
        {'token': '***masked***', 'cask': 'firefox'}
    """
    sensitive_keys = {"authorization", "api_key", "apikey", "token", "secret", "password", "cookie"}
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        lower = key.lower()
        if lower in sensitive_keys:
            masked[key] = "***masked***"
        elif isinstance(value, str) and "apikey" in value.lower():
            masked[key] = "***masked***"
        else:
            masked[key] = value
    return masked


def generate_correlation_id() -> str:
    """Create a short identifier linking the log records of one fetch attempt.

    Examples:
        >>> len(generate_correlation_id())
        12
    """
    return uuid.uuid4().hex[:12]


class JSONFormatter(logging.Formatter):
    """Formatter emitting one JSON object per record.

    Fields passed through ``extra`` are copied into the payload. The cask
    token is logged under ``cask`` since ``token`` is a masked key.
    """

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        log_obj: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "cask": getattr(record, "cask", None),
            "stage": getattr(record, "stage", None),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_RECORD_FIELDS or key in log_obj or key.startswith("_"):
                continue
            log_obj[key] = value if isinstance(value, (str, int, float, bool, type(None))) else str(value)
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj))


def _compress_old_log(path: Path) -> None:
    compressed_path = path.with_suffix(path.suffix + ".gz")
    with path.open("rb") as source, gzip.open(compressed_path, "wb") as target:
        target.write(source.read())
    path.unlink(missing_ok=True)


def _cleanup_logs(log_dir: Path, retention_days: int) -> None:
    """Compress logs older than the retention window, delete expired archives."""
    now = datetime.now(timezone.utc)
    retention_delta = timedelta(days=retention_days)
    for file in log_dir.glob("*.jsonl"):
        mtime = datetime.fromtimestamp(file.stat().st_mtime, tz=timezone.utc)
        if now - mtime > retention_delta:
            _compress_old_log(file)
    for file in log_dir.glob("*.jsonl.gz"):
        mtime = datetime.fromtimestamp(file.stat().st_mtime, tz=timezone.utc)
        if now - mtime > 2 * retention_delta:
            file.unlink(missing_ok=True)


def setup_logging(
    settings: ArtifactDownloadSettings, log_dir: Optional[Path] = None
) -> logging.Logger:
    """Configure console and JSON file handlers for artifact downloads.

    Calling this repeatedly replaces the handlers installed by earlier calls
    and leaves handlers added by the host application alone.

    Args:
        settings: Settings providing level, rotation size, and retention.
        log_dir: Optional directory override for JSON log files.

    Returns:
        The package logger.
    """
    config = settings.logging
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(config.level_int())

    for handler in list(logger.handlers):
        if getattr(handler, "_caskfetch_managed", False):
            logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    stream_handler._caskfetch_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    if config.emit_json_logs:
        target_dir = Path(log_dir) if log_dir is not None else settings.resolved_log_dir()
        target_dir.mkdir(parents=True, exist_ok=True)
        _cleanup_logs(target_dir, config.retention_days)
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        file_handler = RotatingFileHandler(
            target_dir / f"caskfetch-{today}.jsonl",
            maxBytes=int(config.max_log_size_mb * 1024 * 1024),
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler._caskfetch_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    logger.propagate = True
    return logger


class CorrelationAdapter(logging.LoggerAdapter):
    """Logger adapter stamping the cask token and correlation id on every record."""

    def process(self, msg, kwargs):
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


__all__ = [
    "LOGGER_NAME",
    "JSONFormatter",
    "CorrelationAdapter",
    "setup_logging",
    "mask_sensitive_data",
    "generate_correlation_id",
]
