"""URL Metric group collection for one page identity.

The collection is rebuilt from the complete persisted metric history on every
request, so each decision reflects the current configuration and the current
wall-clock time. No state is retained between requests.

Example:
    collection = UrlMetricGroupCollection(
        url_metrics,
        breakpoints=[400, 600],
        sample_size=3,
        freshness_ttl=86400,
    )
    group = collection.get_group_for_viewport_width(500)
    if not collection.is_group_complete(group):
        collection.add_url_metric(new_url_metric)
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator
from typing import Any

from detective.core.exceptions import InvalidViewportWidthError
from detective.services.breakpoints import (
    get_group_index,
    normalize_breakpoints,
    partition_viewport_widths,
)
from detective.services.url_metric import UrlMetric
from detective.services.url_metric_group import UrlMetricGroup


class UrlMetricGroupCollection:
    """All URL Metric groups for one page identity, lowest width range first."""

    def __init__(
        self,
        url_metrics: Iterable[UrlMetric],
        breakpoints: Iterable[int],
        sample_size: int,
        freshness_ttl: float,
        current_time: float | None = None,
    ) -> None:
        """Build the groups and distribute the metric history among them.

        Args:
            url_metrics: Full persisted metric history for the page identity
            breakpoints: Configured breakpoint widths (any order, duplicates allowed)
            sample_size: Number of fresh metrics that makes a group complete
            freshness_ttl: Maximum age in seconds of a fresh metric
            current_time: Reference time for freshness; defaults to now

        Raises:
            ValueError: If sample_size < 1 or freshness_ttl < 0
        """
        if sample_size < 1:
            raise ValueError(f"Sample size must be at least 1, got: {sample_size}")
        if freshness_ttl < 0:
            raise ValueError(f"Freshness TTL must not be negative, got: {freshness_ttl}")

        self.breakpoints = normalize_breakpoints(breakpoints)
        self.sample_size = sample_size
        self.freshness_ttl = freshness_ttl
        self.current_time = time.time() if current_time is None else current_time

        self._groups = [
            UrlMetricGroup(width_range, sample_size, freshness_ttl, self.current_time)
            for width_range in partition_viewport_widths(self.breakpoints)
        ]

        for url_metric in url_metrics:
            self.add_url_metric(url_metric)

    def get_groups(self) -> list[UrlMetricGroup]:
        return list(self._groups)

    def get_group_for_viewport_width(self, viewport_width: int) -> UrlMetricGroup:
        """Get the group whose range contains the viewport width.

        Raises:
            InvalidViewportWidthError: If viewport_width is not a positive integer
        """
        if (
            isinstance(viewport_width, bool)
            or not isinstance(viewport_width, int)
            or viewport_width < 1
        ):
            raise InvalidViewportWidthError(viewport_width=viewport_width)
        return self._groups[get_group_index(self.breakpoints, viewport_width)]

    def is_group_complete(self, group: UrlMetricGroup) -> bool:
        return group.complete

    def add_url_metric(self, url_metric: UrlMetric) -> UrlMetricGroup:
        """Place a URL Metric into its group and return that group."""
        group = self.get_group_for_viewport_width(url_metric.viewport_width)
        group.add_url_metric(url_metric)
        return group

    def is_every_group_complete(self) -> bool:
        return all(group.complete for group in self._groups)

    def is_every_group_populated(self) -> bool:
        return all(len(group) > 0 for group in self._groups)

    def get_flattened_url_metrics(self) -> list[UrlMetric]:
        """Get every stored URL Metric across groups, for persistence."""
        return [url_metric for group in self._groups for url_metric in group]

    def get_group_statuses(self) -> list[dict[str, Any]]:
        return [group.to_status_dict() for group in self._groups]

    def to_debug_dict(self) -> dict[str, Any]:
        return {
            "breakpoints": list(self.breakpoints),
            "sample_size": self.sample_size,
            "freshness_ttl": self.freshness_ttl,
            "groups": [group.to_debug_dict() for group in self._groups],
        }

    def __iter__(self) -> Iterator[UrlMetricGroup]:
        return iter(self._groups)

    def __len__(self) -> int:
        return len(self._groups)
