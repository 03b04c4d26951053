"""Pydantic schemas for API request/response validation."""

from detective.api.schemas.url_metrics import (
    DetectionConfig,
    DOMRectSchema,
    ElementDataSchema,
    UrlMetricGroupStatus,
    UrlMetricPayload,
    UrlMetricStoreResponse,
    ViewportSchema,
)

__all__ = [
    "DOMRectSchema",
    "DetectionConfig",
    "ElementDataSchema",
    "UrlMetricGroupStatus",
    "UrlMetricPayload",
    "UrlMetricStoreResponse",
    "ViewportSchema",
]
