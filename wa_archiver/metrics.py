"""
Prometheus metrics for the archiver service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Event outcome counter (event_type, result)
- Archive upload outcome counter (result)
- Counter of messages stored by history sync

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# event_type: message, history_sync, invalid
# result: ok, degraded, ignored, invalid_signature, validation_error
events_total = Counter(
    "events_total",
    "Total inbound event outcomes",
    labelnames=["event_type", "result"]
)

# result: uploaded, duplicate, oversize, bucket_missing, media_error, error
archive_uploads_total = Counter(
    "archive_uploads_total",
    "Total archive upload outcomes",
    labelnames=["result"]
)

history_messages_stored_total = Counter(
    "history_messages_stored_total",
    "Messages stored from history sync batches"
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_event_outcome(event_type: str, result: str) -> None:
    events_total.labels(event_type=event_type, result=result).inc()


def record_archive_outcome(result: str) -> None:
    archive_uploads_total.labels(result=result).inc()


def record_history_messages_stored(count: int) -> None:
    history_messages_stored_total.inc(count)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """Content type string for Prometheus exposition format."""
    return CONTENT_TYPE_LATEST
