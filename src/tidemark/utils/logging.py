"""
Logging configuration for Tidemark.

This module provides centralized logging setup with:
- Structured logging with rich console formatting
- Log rotation for regular and error logs
- Metrics logging for sync cycle timings
- Optional Sentry error forwarding
"""

import logging
import logging.handlers
import sys
import os
import functools
import inspect
import time
from pathlib import Path
from typing import Optional, Dict, Any
import json
from datetime import datetime, timezone
import structlog
from rich.logging import RichHandler
from rich.console import Console
from rich.traceback import install as install_rich_traceback
import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration


# Install rich traceback handler for better error display
install_rich_traceback()

console = Console(file=sys.stderr)


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    _RESERVED = (
        'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
        'levelno', 'lineno', 'module', 'msecs', 'message', 'pathname', 'process',
        'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
        'exc_text', 'stack_info', 'taskName',
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_obj = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'process': record.process,
        }

        for key, value in record.__dict__.items():
            if key in self._RESERVED:
                continue
            try:
                json.dumps(value)
                log_obj[key] = value
            except (TypeError, ValueError):
                log_obj[key] = str(value)

        if record.exc_info:
            log_obj['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


class MetricsLogger:
    """Logger for sync metrics."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def log_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None):
        """Log a metric value."""
        self.logger.info(
            "metric",
            extra={
                "metric_name": name,
                "metric_value": value,
                "metric_tags": tags or {},
                "metric_timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    def log_duration(self, name: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Log a duration metric."""
        self.log_metric(f"{name}.duration_ms", duration_ms, tags)

    def log_count(self, name: str, count: int = 1, tags: Optional[Dict[str, str]] = None):
        """Log a count metric."""
        self.log_metric(f"{name}.count", count, tags)

    def log_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        """Log a gauge metric."""
        self.log_metric(f"{name}.gauge", value, tags)


def setup_logging(
    app_name: str = "tidemark",
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    enable_json: bool = True,
    enable_console: bool = True,
    enable_sentry: bool = False,
    sentry_dsn: Optional[str] = None,
    enable_metrics: bool = True
) -> Dict[str, Any]:
    """
    Set up logging for the application.

    Args:
        app_name: Application name for log identification
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (defaults to ~/.tidemark/logs)
        enable_json: Write JSON lines to the log files
        enable_console: Attach the rich console handler
        enable_sentry: Enable Sentry error tracking
        sentry_dsn: Sentry DSN for error tracking
        enable_metrics: Enable metrics logging

    Returns:
        Dictionary with logger instances and configuration
    """
    if log_dir is None:
        log_dir = Path.home() / ".tidemark" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    renderer = structlog.processors.JSONRenderer() if enable_json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if enable_console:
        console_handler = RichHandler(
            console=console,
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_suppress=["click", "asyncio"],
        )
        console_handler.setLevel(getattr(logging, log_level.upper()))
        console_handler.setFormatter(logging.Formatter('%(message)s'))
        root_logger.addHandler(console_handler)

    file_formatter: logging.Formatter
    if enable_json:
        file_formatter = JSONFormatter()
    else:
        file_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
        )

    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{app_name}.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(file_formatter)
    root_logger.addHandler(file_handler)

    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{app_name}-errors.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(file_formatter)
    root_logger.addHandler(error_handler)

    metrics_logger = None
    if enable_metrics:
        metrics_logger_instance = logging.getLogger(f"{app_name}.metrics")
        metrics_handler = logging.handlers.RotatingFileHandler(
            log_dir / f"{app_name}-metrics.jsonl",
            maxBytes=50 * 1024 * 1024,  # 50MB
            backupCount=10,
            encoding='utf-8'
        )
        metrics_handler.setLevel(logging.INFO)
        metrics_handler.setFormatter(JSONFormatter())
        metrics_logger_instance.addHandler(metrics_handler)
        metrics_logger_instance.propagate = False
        metrics_logger = MetricsLogger(metrics_logger_instance)

    if enable_sentry and sentry_dsn:
        sentry_logging = LoggingIntegration(
            level=logging.INFO,
            event_level=logging.ERROR
        )
        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[sentry_logging],
            traces_sample_rate=0.1,
        )

    logger = structlog.get_logger(app_name)
    logger.info(
        "logging_initialized",
        log_level=log_level,
        log_dir=str(log_dir),
        json_files=enable_json,
        sentry=bool(enable_sentry and sentry_dsn),
        metrics=metrics_logger is not None,
        pid=os.getpid(),
    )

    return {
        'logger': logger,
        'log_dir': log_dir,
        'console': console,
        'metrics': metrics_logger,
    }


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance by name."""
    return structlog.get_logger(name)


def log_function_call(logger: structlog.BoundLogger):
    """Decorator for store round-trips: debug timing, error with the failure."""
    def decorator(func):
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"log_function_call expects a coroutine function, got {func.__name__}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            started = time.monotonic()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    "store_call_failed",
                    operation=func.__name__,
                    duration_ms=round((time.monotonic() - started) * 1000, 3),
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise
            logger.debug(
                "store_call",
                operation=func.__name__,
                duration_ms=round((time.monotonic() - started) * 1000, 3)
            )
            return result

        return wrapper

    return decorator


__all__ = [
    'setup_logging',
    'get_logger',
    'log_function_call',
    'MetricsLogger',
    'JSONFormatter',
]
