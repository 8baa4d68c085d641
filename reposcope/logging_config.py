"""
Logging configuration for analysis runs.

This module provides structured (JSON) logging of run events such as
collected, skipped and analyzed records, detector failures and progress.
"""

import json
import logging
from logging.handlers import TimedRotatingFileHandler
from typing import Any

RUN_LOGGER_NAME = "reposcope"


class RunEventFormatter(logging.Formatter):
    """Custom formatter for analysis run logs."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log records with structured data."""
        log_entry: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "event"):
            log_entry["event"] = record.event

        # Record-level fields
        for field in ["path", "kind", "rule_id", "size_bytes"]:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        # Run-level fields
        for field in ["stage", "percent", "records", "findings", "elapsed_ms"]:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        for field in ["reason", "error"]:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


def configure_logging(
    log_file: str | None = None,
    log_level: str = "INFO",
    enable_console: bool = True,
) -> logging.Logger:
    """
    Configure logging for analysis runs.

    Args:
        log_file: Path to a log file for run events (optional)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_console: Whether to also log to console

    Returns:
        The configured ``reposcope`` logger
    """
    logger = logging.getLogger(RUN_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.propagate = False

    logger.handlers.clear()

    formatter = RunEventFormatter()

    if log_file:
        file_handler = TimedRotatingFileHandler(
            log_file,
            when="D",
            interval=1,
            backupCount=7,
            encoding="utf-8",
            utc=False,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if enable_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def summarize_run_log(log_file: str) -> dict[str, Any]:
    """
    Aggregate a JSON run log into per-event statistics.

    Args:
        log_file: Path to the log file

    Returns:
        Dictionary with analysis results
    """
    stats: dict[str, Any] = {
        "runs": 0,
        "records_analyzed": 0,
        "records_skipped": 0,
        "detector_failures": 0,
        "parse_failures": 0,
        "skip_reasons": {},
        "failing_rules": {},
    }

    try:
        with open(log_file, encoding="utf-8") as f:
            for line in f:
                try:
                    entry = json.loads(line.strip())
                except json.JSONDecodeError:
                    continue

                event = entry.get("event")
                if event == "run_completed":
                    stats["runs"] += 1
                elif event == "record_analyzed":
                    stats["records_analyzed"] += 1
                elif event == "record_skipped":
                    stats["records_skipped"] += 1
                    reason = entry.get("reason", "unknown")
                    stats["skip_reasons"][reason] = stats["skip_reasons"].get(reason, 0) + 1
                elif event == "detector_failed":
                    stats["detector_failures"] += 1
                    rule_id = entry.get("rule_id", "unknown")
                    stats["failing_rules"][rule_id] = stats["failing_rules"].get(rule_id, 0) + 1
                elif event == "parse_failed":
                    stats["parse_failures"] += 1

    except FileNotFoundError:
        pass

    return stats
