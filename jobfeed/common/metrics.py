"""
Prometheus metrics for monitoring and observability.

Provides counters and histograms for tracking:
- Import runs and their final status
- Records written and rejected
- Batch flush latency
"""

import time
from typing import Callable
from functools import wraps
from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
)

# Create a global registry
REGISTRY = CollectorRegistry()

# ========== Counters ==========

# Import runs
import_runs_total = Counter(
    "import_runs_total",
    "Total number of import runs",
    ["feed_format", "status"],  # ndjson/csv/tsv, done/aborted/failed
    registry=REGISTRY,
)

# Records by outcome
import_records_total = Counter(
    "import_records_total",
    "Total number of imported records by outcome",
    ["outcome"],  # written/rejected/would_write
    registry=REGISTRY,
)

# ========== Histograms ==========

# Batch flush latency
import_batch_flush_seconds = Histogram(
    "import_batch_flush_seconds",
    "Time to apply one batch to the sink",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

# Whole import duration
import_duration_seconds = Histogram(
    "import_duration_seconds",
    "Time to run one import from first byte to report",
    ["feed_format"],
    buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0),
    registry=REGISTRY,
)


# ========== Metric Helpers ==========

def track_flush_time(func: Callable):
    """Decorator to track batch flush latency."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            return func(*args, **kwargs)
        finally:
            import_batch_flush_seconds.observe(time.time() - start_time)

    return wrapper


def record_import_run(feed_format: str, status: str, duration: float) -> None:
    """
    Record the outcome of one import run.

    Args:
        feed_format: Feed format label (ndjson/csv/tsv)
        status: Final run status (done/aborted/failed)
        duration: Run duration in seconds
    """
    import_duration_seconds.labels(feed_format=feed_format).observe(duration)
    import_runs_total.labels(feed_format=feed_format, status=status).inc()


def record_outcomes(written: int = 0, rejected: int = 0, would_write: int = 0) -> None:
    """Add record counts from one flush to the outcome counter."""
    if written:
        import_records_total.labels(outcome="written").inc(written)
    if rejected:
        import_records_total.labels(outcome="rejected").inc(rejected)
    if would_write:
        import_records_total.labels(outcome="would_write").inc(would_write)


def get_metrics() -> bytes:
    """
    Get current metrics in Prometheus format.

    Returns:
        Metrics as bytes
    """
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get content type for metrics response."""
    return CONTENT_TYPE_LATEST
