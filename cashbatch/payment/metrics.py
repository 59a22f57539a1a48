"""Prometheus metrics instrumentation for cash application.

Provides metrics collection for monitoring matching throughput, which search
stage resolves payments, and ERP invoice-source health.
"""

from typing import Any

from prometheus_client import Counter, Histogram, start_http_server

from ..utils.logging import get_logger

logger = get_logger(__name__)

# ============================================================================
# Metric Definitions
# ============================================================================

# Counter: Payments processed by an auto-apply run
payments_processed_total = Counter(
    "cashbatch_payments_processed_total",
    "Total number of payments processed by auto-apply",
    ["outcome"],  # labels: auto_applied/unresolved/no_match/source_unavailable/kept/conflict/fault
)

# Counter: Exact matches found per search stage
match_stage_hits_total = Counter(
    "cashbatch_match_stage_hits_total",
    "Total number of exact-match searches resolved by each stage",
    ["stage"],  # labels: single/pairwise/greedy/dfs/none
)

# Counter: Open-invoice source failures
invoice_source_failures_total = Counter(
    "cashbatch_invoice_source_failures_total",
    "Total number of open-invoice queries that could not be completed",
    ["reason"],  # labels: unavailable/timeout
)

# Counter: ERP export runs
exports_written_total = Counter(
    "cashbatch_exports_written_total",
    "Total number of payments written to ERP export files",
)

# Histogram: Exact-match search duration
matching_duration_seconds = Histogram(
    "cashbatch_matching_duration_seconds",
    "Time taken to search one payment for an exact invoice combination",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

# Histogram: Batch run duration
batch_run_duration_seconds = Histogram(
    "cashbatch_batch_run_duration_seconds",
    "Time taken to auto-apply a whole batch",
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0),
)


# ============================================================================
# Metrics Server
# ============================================================================


def start_metrics_server(port: int = 8000) -> bool:
    """Start Prometheus metrics HTTP server.

    Args:
        port: Port to expose metrics on (default: 8000)

    Returns:
        True when the server started, False when the port was unavailable
    """
    try:
        start_http_server(port)
    except OSError as e:
        logger.warning("metrics_server_unavailable", port=port, error=str(e))
        return False
    logger.info("metrics_server_started", port=port)
    return True


# ============================================================================
# Convenience Functions
# ============================================================================


def record_payment_outcome(outcome: str) -> None:
    """Record one processed payment.

    Args:
        outcome: Payment outcome label
    """
    payments_processed_total.labels(outcome=outcome).inc()


def record_match_stage(stage: str) -> None:
    """Record which search stage produced (or failed to produce) a match.

    Args:
        stage: Stage name, or ``none`` when every stage failed
    """
    match_stage_hits_total.labels(stage=stage).inc()


def record_invoice_source_failure(reason: str) -> None:
    """Record an open-invoice query failure.

    Args:
        reason: Failure reason (unavailable, timeout)
    """
    invoice_source_failures_total.labels(reason=reason).inc()


def record_export(count: int) -> None:
    """Record payments written to an export."""
    exports_written_total.inc(count)


# ============================================================================
# Context Managers for Duration Tracking
# ============================================================================


class track_matching_duration:
    """Context manager to track exact-match search duration."""

    def __init__(self) -> None:
        self.timer: Any = None

    def __enter__(self) -> "track_matching_duration":
        self.timer = matching_duration_seconds.time()
        self.timer.__enter__()
        return self

    def __exit__(self, *args: Any) -> None:
        if self.timer:
            self.timer.__exit__(*args)


class track_batch_duration:
    """Context manager to track auto-apply batch duration."""

    def __init__(self) -> None:
        self.timer: Any = None

    def __enter__(self) -> "track_batch_duration":
        self.timer = batch_run_duration_seconds.time()
        self.timer.__enter__()
        return self

    def __exit__(self, *args: Any) -> None:
        if self.timer:
            self.timer.__exit__(*args)
