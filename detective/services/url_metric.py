"""URL Metric entities.

A URL Metric is one client observation of a page: the viewport dimensions and
the intersection/LCP data of every breadcrumbed element visible in the initial
viewport. The server stamps each metric with its own clock and a UUID.

The wire format (JSON) uses camelCase element keys, matching what the client
detection controller produces:

    {
        "url": "https://example.com/",
        "viewport": {"width": 500, "height": 800},
        "elements": [
            {
                "xpath": "/*[1][self::HTML]/*[2][self::BODY]/*[1][self::IMG]",
                "isLCP": true,
                "isLCPCandidate": true,
                "intersectionRatio": 1.0,
                "intersectionRect": {"x": 0, "y": 0, "width": 500, "height": 300},
                "boundingClientRect": {"x": 0, "y": 0, "width": 500, "height": 300}
            }
        ],
        "timestamp": 1735689600.0,
        "uuid": "2c4a..."
    }
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from detective.core.exceptions import UrlMetricValidationError

RESERVED_ROOT_KEYS = frozenset({"url", "viewport", "elements"})
SERVER_ROOT_KEYS = frozenset({"timestamp", "uuid"})
RESERVED_ELEMENT_KEYS = frozenset(
    {
        "isLCP",
        "isLCPCandidate",
        "xpath",
        "intersectionRatio",
        "intersectionRect",
        "boundingClientRect",
    }
)


@dataclass(frozen=True, slots=True)
class DOMRect:
    """Rectangle in viewport-relative client pixels."""

    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DOMRect:
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )


@dataclass(frozen=True, slots=True)
class Viewport:
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class ElementData:
    """Observation data for one breadcrumbed element.

    Attributes:
        xpath: Stable structural identifier of the element
        is_lcp: Whether this is the finally-resolved LCP element
        is_lcp_candidate: Whether the element was ever an LCP candidate
        intersection_ratio: Visible fraction of the element in [0, 1]
        intersection_rect: Visible portion of the element
        bounding_client_rect: Full bounds of the element
        extra: Additional keys attached by extensions
    """

    xpath: str
    is_lcp: bool
    is_lcp_candidate: bool
    intersection_ratio: float
    intersection_rect: DOMRect
    bounding_client_rect: DOMRect
    extra: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "xpath": self.xpath,
                "isLCP": self.is_lcp,
                "isLCPCandidate": self.is_lcp_candidate,
                "intersectionRatio": self.intersection_ratio,
                "intersectionRect": self.intersection_rect.to_dict(),
                "boundingClientRect": self.bounding_client_rect.to_dict(),
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ElementData:
        return cls(
            xpath=data["xpath"],
            is_lcp=bool(data["isLCP"]),
            is_lcp_candidate=bool(data["isLCPCandidate"]),
            intersection_ratio=float(data["intersectionRatio"]),
            intersection_rect=DOMRect.from_dict(data["intersectionRect"]),
            bounding_client_rect=DOMRect.from_dict(data["boundingClientRect"]),
            extra={k: v for k, v in data.items() if k not in RESERVED_ELEMENT_KEYS},
        )


@dataclass(frozen=True, slots=True)
class UrlMetric:
    """One stored client observation of a page.

    Instances are immutable; a stored metric is only ever superseded by
    eviction from its group, never mutated.
    """

    url: str
    viewport: Viewport
    elements: tuple[ElementData, ...]
    timestamp: float
    uuid: str
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.viewport.width < 1 or self.viewport.height < 1:
            raise UrlMetricValidationError(
                "Viewport dimensions must be positive integers", field="viewport"
            )
        lcp_count = 0
        for element in self.elements:
            if element.is_lcp:
                lcp_count += 1
                if not element.is_lcp_candidate:
                    raise UrlMetricValidationError(
                        f"LCP element {element.xpath} must also be an LCP candidate",
                        field="elements",
                    )
        if lcp_count > 1:
            raise UrlMetricValidationError(
                "At most one element may be the LCP element", field="elements"
            )

    @property
    def viewport_width(self) -> int:
        return self.viewport.width

    def is_fresh(self, current_time: float, freshness_ttl: float) -> bool:
        """Whether the metric is no older than the freshness TTL at current_time."""
        return current_time - self.timestamp <= freshness_ttl

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = dict(self.extra)
        data.update(
            {
                "url": self.url,
                "viewport": {"width": self.viewport.width, "height": self.viewport.height},
                "elements": [element.to_dict() for element in self.elements],
                "timestamp": self.timestamp,
                "uuid": self.uuid,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UrlMetric:
        excluded = RESERVED_ROOT_KEYS | SERVER_ROOT_KEYS
        return cls(
            url=data["url"],
            viewport=Viewport(
                width=int(data["viewport"]["width"]),
                height=int(data["viewport"]["height"]),
            ),
            elements=tuple(ElementData.from_dict(element) for element in data["elements"]),
            timestamp=float(data["timestamp"]),
            uuid=data["uuid"],
            extra={k: v for k, v in data.items() if k not in excluded},
        )
