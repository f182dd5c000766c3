"""
Structured Logging Utilities

This module centralizes structured logging setup for the dataset
synchronisation subsystem. It provides helpers for masking sensitive fields,
emitting JSON log records, attaching correlation identifiers to a run, and
rolling log files to maintain a clean retention window.
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

from .settings import LoggingConfiguration

LOGGER_NAME = "NexusSDE.DatasetSync"

_STRUCTURED_FIELDS = ("stage", "artifact", "record_id", "progress", "status")


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Remove secrets from structured payloads prior to logging.

    Args:
        payload: Arbitrary key-value pairs that may contain credentials or
            tokens gathered from record store requests.

    Returns:
        Copy of the payload where common secret fields are replaced with
        `***masked***`.

    Examples:
        >>> mask_sensitive_data({"token": "secret", "status": "ok"})
        {'token': '***masked***', 'status': 'ok'}
    """
    sensitive_keys = {"authorization", "api_key", "api_token", "token", "secret", "password"}
    masked: Dict[str, object] = {}
    for key, value in payload.items():
        lower = key.lower()
        if lower in sensitive_keys:
            masked[key] = "***masked***"
        elif isinstance(value, str) and value.lower().startswith("bearer "):
            masked[key] = "***masked***"
        else:
            masked[key] = value
    return masked


def generate_correlation_id() -> str:
    """Create a short-lived identifier that links the log entries of one run.

    Returns:
        Twelve character hexadecimal identifier.

    Examples:
        >>> cid = generate_correlation_id()
        >>> len(cid)
        12
    """
    return uuid.uuid4().hex[:12]


class CorrelationFilter(logging.Filter):
    """Stamp every record passing through a handler with a correlation id."""

    def __init__(self, correlation_id: str) -> None:
        super().__init__()
        self.correlation_id = correlation_id

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = self.correlation_id
        return True


class JSONFormatter(logging.Formatter):
    """Formatter emitting JSON structured logs.

    Examples:
        >>> formatter = JSONFormatter()
        >>> isinstance(formatter.format(logging.makeLogRecord({'msg': 'test'})), str)
        True
    """

    def format(self, record: logging.LogRecord) -> str:
        """Serialize a logging record into a JSON line.

        Args:
            record: Log record emitted by the synchronisation components.

        Returns:
            JSON string with masked secrets and correlation context.
        """
        now = datetime.now(timezone.utc)
        log_obj: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }
        for field in _STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_obj[field] = value
        if hasattr(record, "extra_fields") and isinstance(record.extra_fields, dict):
            log_obj.update(record.extra_fields)
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj), default=str)


def _compress_old_log(path: Path) -> None:
    """Compress a log file in-place using gzip to reclaim disk space."""
    compressed_path = path.with_suffix(path.suffix + ".gz")
    with path.open("rb") as source, gzip.open(compressed_path, "wb") as target:
        target.write(source.read())
    path.unlink(missing_ok=True)


def _cleanup_logs(log_dir: Path, retention_days: int) -> None:
    """Apply rotation and retention policy to the log directory.

    Args:
        log_dir: Directory containing daily log files.
        retention_days: Number of days to keep uncompressed or compressed logs
            before deleting them.
    """
    now = datetime.now(timezone.utc)
    retention_delta = timedelta(days=retention_days)
    for file in log_dir.glob("*.jsonl"):
        mtime = datetime.fromtimestamp(file.stat().st_mtime, tz=timezone.utc)
        if now - mtime > retention_delta:
            _compress_old_log(file)
    for file in log_dir.glob("*.jsonl.gz"):
        mtime = datetime.fromtimestamp(file.stat().st_mtime, tz=timezone.utc)
        if now - mtime > retention_delta:
            file.unlink(missing_ok=True)


def setup_logging(
    config: LoggingConfiguration,
    log_dir: Path,
    *,
    correlation_id: Optional[str] = None,
    console: bool = True,
) -> logging.Logger:
    """Configure structured logging handlers for dataset synchronisation.

    Calling this again replaces the handlers installed by the previous call,
    so it is safe to invoke once per CLI command.

    Args:
        config: Logging configuration containing level, size, and retention.
        log_dir: Directory receiving the JSON-lines log files.
        correlation_id: Identifier stamped on every record; generated when omitted.
        console: Whether to install the human readable stderr handler.

    Returns:
        Configured logger instance scoped to the synchronisation package.

    Examples:
        >>> import tempfile
        >>> logger = setup_logging(LoggingConfiguration(), Path(tempfile.mkdtemp()))
        >>> logger.name
        'NexusSDE.DatasetSync'
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    _cleanup_logs(log_dir, config.retention_days)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_sdesync_managed", False):
            logger.removeHandler(handler)
            handler.close()

    correlation = CorrelationFilter(correlation_id or generate_correlation_id())

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        stream_handler.addFilter(correlation)
        stream_handler._sdesync_managed = True  # type: ignore[attr-defined]
        logger.addHandler(stream_handler)

    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    file_handler = RotatingFileHandler(
        log_dir / f"sdesync-{today}.jsonl",
        maxBytes=int(config.max_log_size_mb * 1024 * 1024),
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(JSONFormatter())
    file_handler.addFilter(correlation)
    file_handler._sdesync_managed = True  # type: ignore[attr-defined]
    logger.addHandler(file_handler)

    logger.propagate = True

    return logger


__all__ = [
    "LOGGER_NAME",
    "CorrelationFilter",
    "JSONFormatter",
    "setup_logging",
    "mask_sensitive_data",
    "generate_correlation_id",
]
