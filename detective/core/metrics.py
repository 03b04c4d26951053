"""Prometheus metrics definitions for URL Metric collection.

Metric Naming Conventions:
- All metrics are prefixed with 'detective_'
- Counters end with '_total'

Usage:
    from detective.core.metrics import record_submission_outcome

    record_submission_outcome("stored")
"""

from prometheus_client import REGISTRY, Counter, generate_latest

_registry = REGISTRY

URL_METRIC_SUBMISSIONS_TOTAL = Counter(
    "detective_url_metric_submissions_total",
    "URL Metric submissions by outcome (stored or the rejection error code)",
    labelnames=["outcome"],
    registry=_registry,
)

URL_METRIC_GROUPS_COMPLETED_TOTAL = Counter(
    "detective_url_metric_groups_completed_total",
    "Number of times a stored URL Metric made its group complete",
    registry=_registry,
)

URL_METRIC_NOTIFICATION_FAILURES_TOTAL = Counter(
    "detective_url_metric_notification_failures_total",
    "Failed publications of URL Metric stored notifications",
    registry=_registry,
)


def record_submission_outcome(outcome: str) -> None:
    """Record the outcome of a URL Metric submission.

    Args:
        outcome: "stored" or the error code of the rejection
    """
    URL_METRIC_SUBMISSIONS_TOTAL.labels(outcome=outcome).inc()


def record_group_completed() -> None:
    """Record that a submission completed its URL Metric group."""
    URL_METRIC_GROUPS_COMPLETED_TOTAL.inc()


def record_notification_failure() -> None:
    """Record a failed stored-notification publication."""
    URL_METRIC_NOTIFICATION_FAILURES_TOTAL.inc()


def get_metrics_response() -> bytes:
    """Render all registered metrics in Prometheus exposition format."""
    return generate_latest(_registry)
