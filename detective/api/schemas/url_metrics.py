"""Pydantic schemas for URL Metric submission and the detection config feed.

The submission payload is what the client detection controller sends: the
page URL, the viewport, and one entry per breadcrumbed element that the
intersection observer reported. Extensions may attach additional keys on the
root and on elements, so unknown keys are allowed, but the server-owned keys
(timestamp, uuid) may never be supplied by the client.

The detection config is computed server-side once per page render and handed
to the client; the client never recomputes grouping itself.
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from detective.services.url_metric import SERVER_ROOT_KEYS

# XPath produced by the server-side breadcrumbing, e.g. /*[1][self::HTML]/*[2][self::BODY]
_XPATH_PATTERN = re.compile(r"^(/\*\[\d+\]\[self::[a-zA-Z][a-zA-Z0-9-]*\])+$")


class DOMRectSchema(BaseModel):
    """Rectangle in viewport-relative client pixels."""

    model_config = ConfigDict(extra="ignore")

    x: float
    y: float
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)


class ViewportSchema(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    width: int = Field(..., ge=1, description="Viewport width in CSS pixels")
    height: int = Field(..., ge=1, description="Viewport height in CSS pixels")


class ElementDataSchema(BaseModel):
    """Observation data for one breadcrumbed element."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    xpath: str = Field(..., max_length=2048)
    is_lcp: bool = Field(..., alias="isLCP", strict=True)
    is_lcp_candidate: bool = Field(..., alias="isLCPCandidate", strict=True)
    intersection_ratio: float = Field(..., alias="intersectionRatio", ge=0.0, le=1.0)
    intersection_rect: DOMRectSchema = Field(..., alias="intersectionRect")
    bounding_client_rect: DOMRectSchema = Field(..., alias="boundingClientRect")

    @field_validator("xpath")
    @classmethod
    def validate_xpath(cls, v: str) -> str:
        if not _XPATH_PATTERN.match(v):
            raise ValueError(f"Malformed element XPath: {v[:100]}")
        return v


class UrlMetricPayload(BaseModel):
    """URL Metric as submitted by the client."""

    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "url": "https://example.com/",
                "viewport": {"width": 500, "height": 800},
                "elements": [
                    {
                        "xpath": "/*[1][self::HTML]/*[2][self::BODY]/*[1][self::IMG]",
                        "isLCP": True,
                        "isLCPCandidate": True,
                        "intersectionRatio": 1.0,
                        "intersectionRect": {"x": 0, "y": 0, "width": 500, "height": 300},
                        "boundingClientRect": {"x": 0, "y": 0, "width": 500, "height": 300},
                    }
                ],
            }
        },
    )

    url: str = Field(..., min_length=1, max_length=2048, pattern=r"^https?://")
    viewport: ViewportSchema
    elements: list[ElementDataSchema]

    @model_validator(mode="after")
    def validate_url_metric(self) -> "UrlMetricPayload":
        for key in self.model_extra or {}:
            if key in SERVER_ROOT_KEYS:
                raise ValueError(f"The '{key}' property is set by the server")
        lcp_elements = [element for element in self.elements if element.is_lcp]
        if len(lcp_elements) > 1:
            raise ValueError("At most one element may have isLCP set")
        for element in lcp_elements:
            if not element.is_lcp_candidate:
                raise ValueError("The LCP element must also be an LCP candidate")
        return self

    def to_wire_dict(self) -> dict[str, Any]:
        """Dump using the camelCase wire keys, including extension properties."""
        return self.model_dump(by_alias=True)


class UrlMetricStoreResponse(BaseModel):
    success: bool = Field(True, description="Whether the URL Metric was stored")

    model_config = ConfigDict(json_schema_extra={"example": {"success": True}})


class UrlMetricGroupStatus(BaseModel):
    """Completeness of one viewport group, as seen by the client."""

    minimum_viewport_width: int = Field(..., ge=0)
    maximum_viewport_width: int | None = Field(
        None, description="Exclusive upper bound; null for the last group"
    )
    complete: bool


class DetectionConfig(BaseModel):
    """Eligibility and configuration feed injected into a rendered page.

    Attributes:
        url: Page URL the config was computed for
        slug: Page identity token
        hmac: Auth tag binding slug and URL
        rest_api_endpoint: Where the client submits its URL Metric
        group_statuses: Per-group completeness, lowest width range first
        needs_detection: False when every group is already complete
        url_metric_group_collection: Stored collection summary (debug mode only)
    """

    url: str
    slug: str
    hmac: str
    rest_api_endpoint: str
    group_statuses: list[UrlMetricGroupStatus]
    needs_detection: bool
    freshness_ttl: int = Field(..., ge=0)
    sample_size: int = Field(..., ge=1)
    min_viewport_aspect_ratio: float = Field(..., gt=0)
    max_viewport_aspect_ratio: float = Field(..., gt=0)
    storage_lock_ttl: int = Field(..., ge=0)
    extension_modules: list[str] = Field(default_factory=list)
    is_debug: bool = False
    url_metric_group_collection: dict[str, Any] | None = None
