# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Logging for beadview.

Two outputs:
- Diagnostics: a daily JSON-lines file plus optional human-readable stderr.
  stdout is reserved for the CLI's JSON summary.
- Build metrics: one JSON object per snapshot build in build_metrics.jsonl,
  written by a dedicated non-propagating logger so metrics never reach the
  console.

Records carry the thread name, which tells the worker, phase-2 and watcher
debounce threads apart.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

DEFAULT_LOG_DIR_NAME = ".beadview_logs"
METRICS_LOGGER_NAME = "beadview.metrics"
METRICS_FILE_NAME = "build_metrics.jsonl"
CONSOLE_FORMAT = "%(asctime)s [%(threadName)s] %(name)s %(levelname)s: %(message)s"
CONSOLE_DATEFMT = "%H:%M:%S"

# Third-party loggers that are only useful when debugging beadview itself
NOISY_LOGGERS = ("watchdog",)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: timestamp (UTC, Z suffix), level, logger, thread, message, plus
    exception when present and every key of the record's extra_fields dict.
    """

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data: Dict[str, Any] = {
            "timestamp": stamp.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update(extra_fields)
        return json.dumps(log_data, default=str)


def _resolve_log_dir(log_dir: Optional[Path]) -> Path:
    path = Path(log_dir) if log_dir is not None else Path.cwd() / DEFAULT_LOG_DIR_NAME
    path.mkdir(parents=True, exist_ok=True)
    return path


def _replace_handlers(target: logging.Logger, *handlers: logging.Handler) -> None:
    for handler in list(target.handlers):
        target.removeHandler(handler)
        handler.close()
    for handler in handlers:
        target.addHandler(handler)


def _json_file_handler(path: Path, level: int) -> logging.FileHandler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter())
    return handler


def console_handler(log_level: int = logging.INFO) -> logging.Handler:
    """Human-readable stderr handler."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT))
    return handler


def setup_logging(
    log_dir: Optional[Path] = None,
    log_level: int = logging.INFO,
    console_output: bool = True,
) -> Path:
    """Route diagnostics to a daily JSON file and, optionally, stderr.

    Existing root handlers are replaced. Below DEBUG the loggers listed in
    NOISY_LOGGERS are limited to warnings.

    Args:
        log_dir: Directory for log files. If None, uses .beadview_logs/
        log_level: Root logging level.
        console_output: Also log to stderr.

    Returns:
        Path of the JSON log file.
    """
    log_dir = _resolve_log_dir(log_dir)
    log_file = log_dir / f"beadview_{datetime.now(timezone.utc):%Y%m%d}.log"

    handlers = [_json_file_handler(log_file, log_level)]
    if console_output:
        handlers.append(console_handler(log_level))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    _replace_handlers(root_logger, *handlers)
    quiet_third_party(log_level)

    logging.getLogger(__name__).info(f"Logging to {log_file}")
    return log_file


def setup_console_logging(log_level: int = logging.INFO) -> None:
    """stderr-only logging, for runs without a log directory.

    Like logging.basicConfig, leaves the root logger's handlers alone if it
    already has some.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    if not root_logger.handlers:
        root_logger.addHandler(console_handler(log_level))
    quiet_third_party(log_level)


def quiet_third_party(log_level: int) -> None:
    level = logging.WARNING if log_level > logging.DEBUG else logging.DEBUG
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def get_metrics_logger(log_dir: Optional[Path] = None) -> logging.Logger:
    """Logger writing build metrics to build_metrics.jsonl.

    Args:
        log_dir: Directory for the metrics file. If None, uses .beadview_logs/

    Returns:
        Non-propagating logger; records go to the metrics file only.
    """
    metrics_file = _resolve_log_dir(log_dir) / METRICS_FILE_NAME

    metrics_logger = logging.getLogger(METRICS_LOGGER_NAME)
    metrics_logger.setLevel(logging.INFO)
    metrics_logger.propagate = False
    _replace_handlers(metrics_logger, _json_file_handler(metrics_file, logging.INFO))
    return metrics_logger


def log_metrics(metrics_logger: logging.Logger, event: str, fields: Mapping[str, Any]) -> None:
    """Write one metrics record; the event name is both message and "event" key."""
    record = {"event": event}
    record.update(fields)
    metrics_logger.info(event, extra={"extra_fields": record})
