"""URL Metric group: the stored metrics for one viewport width range."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from detective.core.exceptions import InvalidViewportWidthError
from detective.services.breakpoints import ViewportWidthRange
from detective.services.url_metric import UrlMetric


class UrlMetricGroup:
    """URL Metrics whose viewport width falls within ``[minimum, maximum)``.

    A group holds at most ``sample_size`` metrics: adding a metric beyond that
    evicts the oldest ones. Freshness is evaluated against the reference time
    the owning collection was built with, so stale metrics remain stored but
    are excluded from the fresh count that determines completeness.
    """

    def __init__(
        self,
        width_range: ViewportWidthRange,
        sample_size: int,
        freshness_ttl: float,
        current_time: float,
    ) -> None:
        self.width_range = width_range
        self.sample_size = sample_size
        self.freshness_ttl = freshness_ttl
        self.current_time = current_time
        self._url_metrics: list[UrlMetric] = []

    @property
    def minimum_viewport_width(self) -> int:
        return self.width_range.minimum_viewport_width

    @property
    def maximum_viewport_width(self) -> int | None:
        return self.width_range.maximum_viewport_width

    def is_viewport_width_in_range(self, viewport_width: int) -> bool:
        return self.width_range.contains(viewport_width)

    def add_url_metric(self, url_metric: UrlMetric) -> None:
        """Add a URL Metric, keeping only the newest ``sample_size`` metrics.

        Raises:
            InvalidViewportWidthError: If the metric's viewport width is outside this group
        """
        if not self.is_viewport_width_in_range(url_metric.viewport_width):
            raise InvalidViewportWidthError(
                "URL Metric is not in the viewport range for group",
                viewport_width=url_metric.viewport_width,
            )
        self._url_metrics.append(url_metric)
        # Newest first; sorted() is stable so equal timestamps keep insertion order.
        self._url_metrics = sorted(self._url_metrics, key=lambda m: m.timestamp, reverse=True)
        del self._url_metrics[self.sample_size :]

    @property
    def url_metrics(self) -> tuple[UrlMetric, ...]:
        """All stored URL Metrics in the group, newest first, fresh or not."""
        return tuple(self._url_metrics)

    def get_fresh_url_metrics(self) -> list[UrlMetric]:
        return [
            url_metric
            for url_metric in self._url_metrics
            if url_metric.is_fresh(self.current_time, self.freshness_ttl)
        ]

    @property
    def fresh_count(self) -> int:
        return len(self.get_fresh_url_metrics())

    @property
    def complete(self) -> bool:
        """Whether the group has at least ``sample_size`` fresh URL Metrics."""
        return self.fresh_count >= self.sample_size

    def __iter__(self) -> Iterator[UrlMetric]:
        return iter(self._url_metrics)

    def __len__(self) -> int:
        return len(self._url_metrics)

    def __repr__(self) -> str:
        return (
            f"UrlMetricGroup(range=[{self.minimum_viewport_width}, "
            f"{self.maximum_viewport_width}), stored={len(self)}, fresh={self.fresh_count})"
        )

    def to_status_dict(self) -> dict[str, Any]:
        """Serialize the group's completeness status for the client eligibility feed."""
        return {
            "minimum_viewport_width": self.minimum_viewport_width,
            "maximum_viewport_width": self.maximum_viewport_width,
            "complete": self.complete,
        }

    def to_debug_dict(self) -> dict[str, Any]:
        data = self.to_status_dict()
        data["url_metrics"] = [
            {"uuid": url_metric.uuid, "timestamp": url_metric.timestamp}
            for url_metric in self._url_metrics
        ]
        return data
