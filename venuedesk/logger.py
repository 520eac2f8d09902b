"""
Structured logging for the workflow engine.

Provides centralized logging with console and file outputs, plus
counters for store calls and saga outcomes so partial failures and
compensations can be monitored.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for store health and saga outcomes.
    """

    def __init__(
        self,
        name: str = "venuedesk",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()

        self.metrics = {
            "store_calls": 0,
            "store_failures": 0,
            "sagas_started": 0,
            "sagas_committed": 0,
            "sagas_rolled_back": 0,
            "compensation_failures": 0,
            "errors_by_type": {},
            "saga_outcomes": {},
        }

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"venuedesk_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_store_call(self):
        """Increment store call counter."""
        self.metrics["store_calls"] += 1

    def record_store_failure(self, error_type: str):
        """Record a failed store call."""
        self.metrics["store_failures"] += 1
        self._count_error(error_type)

    def record_saga_start(self, saga: str):
        """Record a saga run for the named operation."""
        self.metrics["sagas_started"] += 1
        if saga not in self.metrics["saga_outcomes"]:
            self.metrics["saga_outcomes"][saga] = {
                "started": 0,
                "committed": 0,
                "rolled_back": 0,
            }
        self.metrics["saga_outcomes"][saga]["started"] += 1

    def record_saga_commit(self, saga: str):
        """Record a saga whose steps all succeeded."""
        self.metrics["sagas_committed"] += 1
        if saga in self.metrics["saga_outcomes"]:
            self.metrics["saga_outcomes"][saga]["committed"] += 1

    def record_saga_rollback(self, saga: str, error_type: str):
        """Record a saga that ran its compensations."""
        self.metrics["sagas_rolled_back"] += 1
        if saga in self.metrics["saga_outcomes"]:
            self.metrics["saga_outcomes"][saga]["rolled_back"] += 1
        self._count_error(error_type)

    def record_compensation_failure(self, error_type: str):
        """Record a compensation step that itself failed."""
        self.metrics["compensation_failures"] += 1
        self._count_error(error_type)

    def _count_error(self, error_type: str):
        if error_type not in self.metrics["errors_by_type"]:
            self.metrics["errors_by_type"][error_type] = 0
        self.metrics["errors_by_type"][error_type] += 1

    def get_metrics(self) -> dict:
        """Return current metrics."""
        metrics_copy = self.metrics.copy()
        for saga, stats in metrics_copy["saga_outcomes"].items():
            if stats["started"] > 0:
                stats["commit_rate"] = round(
                    stats["committed"] / stats["started"], 3
                )

        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        total_sagas = metrics["sagas_started"]
        committed = metrics["sagas_committed"]
        overall_rate = 0
        if total_sagas > 0:
            overall_rate = round(committed / total_sagas * 100, 1)

        self.info("=== Workflow Metrics ===")
        self.info(f"Store calls: {metrics['store_calls']} ({metrics['store_failures']} failed)")
        self.info(f"Sagas: {committed}/{total_sagas} committed ({overall_rate}%)")
        self.info(f"Compensation failures: {metrics['compensation_failures']}")

        if metrics["saga_outcomes"]:
            self.info("Saga outcomes:")
            for saga, stats in metrics["saga_outcomes"].items():
                rate = stats.get("commit_rate", 0) * 100
                self.info(f"  {saga}: {stats['committed']}/{stats['started']} ({rate:.1f}%)")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "venuedesk",
    level: Optional[str] = None,
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (defaults to VENUEDESK_LOG_LEVEL or INFO)
        **kwargs: Additional arguments passed to StructuredLogger;
            log_dir defaults to VENUEDESK_LOG_DIR or logs/

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        level = level or os.getenv("VENUEDESK_LOG_LEVEL", "INFO")
        kwargs.setdefault("log_dir", Path(os.getenv("VENUEDESK_LOG_DIR", "logs")))
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
