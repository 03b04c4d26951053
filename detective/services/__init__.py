"""URL Metric domain model and services."""

from .breakpoints import (
    ViewportWidthRange,
    get_group_index,
    normalize_breakpoints,
    partition_viewport_widths,
)
from .storage_lock import StorageLock
from .url_metric import DOMRect, ElementData, UrlMetric, Viewport
from .url_metric_group import UrlMetricGroup
from .url_metric_group_collection import UrlMetricGroupCollection

__all__ = [
    "DOMRect",
    "ElementData",
    "StorageLock",
    "UrlMetric",
    "UrlMetricGroup",
    "UrlMetricGroupCollection",
    "Viewport",
    "ViewportWidthRange",
    "get_group_index",
    "normalize_breakpoints",
    "partition_viewport_widths",
]
