"""Client-side URL Metric detection."""

from detective.client.controller import DetectionController, DetectionState, is_viewport_needed
from detective.client.environment import (
    IntersectionEntry,
    LCPCandidate,
    PageEnvironment,
    WebVitalsHooks,
)
from detective.client.extensions import FinalizeArgs, InitializeArgs, UrlMetricRecord
from detective.client.storage_lock import ClientStorageLock
from detective.client.transport import Transport, build_submission_url

__all__ = [
    "ClientStorageLock",
    "DetectionController",
    "DetectionState",
    "FinalizeArgs",
    "InitializeArgs",
    "IntersectionEntry",
    "LCPCandidate",
    "PageEnvironment",
    "Transport",
    "UrlMetricRecord",
    "WebVitalsHooks",
    "build_submission_url",
    "is_viewport_needed",
]
