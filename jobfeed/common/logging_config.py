"""
Structured JSON logging with import correlation IDs.

Provides logging with:
- JSON format for log aggregation
- An import ID attached to every record emitted during a run
- Structured metadata passed as keyword fields
- Duration tracking for pipeline stages
"""

import logging
import json
import time
import uuid
from contextvars import ContextVar
from typing import Optional, Dict, Any
from datetime import datetime

# Context variable for the running import's ID (thread-safe)
import_id_ctx: ContextVar[Optional[str]] = ContextVar(
    "import_id", default=None)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in JSON format with standardized fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        import_id = get_import_id()
        if import_id:
            log_data["import_id"] = import_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields from ContextLogger or the extra parameter
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class ContextLogger:
    """
    Logger accepting structured fields as keyword arguments.

    Usage:
        log = get_structured_logger(__name__)
        log.info("Batch flushed", written=998, rejected=2)
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _log(self, level: int, msg: str, **kwargs):
        if not self.logger.isEnabledFor(level):
            return
        exc_info = kwargs.pop("exc_info", None)
        self.logger.log(
            level, msg, exc_info=exc_info,
            extra={"extra_fields": kwargs}, stacklevel=3)

    def debug(self, msg: str, **kwargs):
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs):
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs):
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, **kwargs):
        self._log(logging.ERROR, msg, **kwargs)


class PerformanceTracker:
    """
    Context manager for timing a pipeline stage.

    Usage:
        with PerformanceTracker("batch_flush", logger, batch_size=1000):
            executor.apply(batch)
    """

    def __init__(
        self,
        operation: str,
        logger: logging.Logger,
        log_level: int = logging.DEBUG,
        **extra_fields,
    ):
        """
        Initialize performance tracker.

        Args:
            operation: Operation name
            logger: Logger instance
            log_level: Log level for completion message
            **extra_fields: Additional structured fields
        """
        self.operation = operation
        self.logger = logger
        self.log_level = log_level
        self.extra_fields = extra_fields
        self.start_time: Optional[float] = None
        self.duration_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = round((time.monotonic() - self.start_time) * 1000, 2)
        extra = {
            "operation": self.operation,
            "duration_ms": self.duration_ms,
            **self.extra_fields,
        }

        if exc_type:
            extra["error"] = str(exc_val)
            extra["error_type"] = exc_type.__name__
            self.logger.warning(
                f"Operation failed: {self.operation}",
                extra={"extra_fields": extra},
            )
        else:
            self.logger.log(
                self.log_level,
                f"Operation completed: {self.operation}",
                extra={"extra_fields": extra},
            )


def setup_logging(log_level: str = "INFO", json_format: bool = True):
    """
    Configure application logging.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting if True, standard format if False
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level.upper()))

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Quiet per-request client logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def set_import_id(import_id: Optional[str] = None) -> str:
    """
    Set the import ID in context.

    Args:
        import_id: Import ID (generated if not provided)

    Returns:
        Import ID
    """
    if import_id is None:
        import_id = str(uuid.uuid4())
    import_id_ctx.set(import_id)
    return import_id


def get_import_id() -> Optional[str]:
    """Get current import ID from context."""
    return import_id_ctx.get()


def clear_import_id():
    """Clear import ID from context."""
    import_id_ctx.set(None)


def get_structured_logger(name: str) -> ContextLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name

    Returns:
        ContextLogger instance
    """
    return ContextLogger(logging.getLogger(name))
