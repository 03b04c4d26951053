"""URL Metric API routes.

Usage:
    GET  /api/url-metrics/detection-config?url=https://example.com/
        -> DetectionConfig injected into the rendered page

    POST /api/url-metrics:store?slug=<slug>&hmac=<tag>[&od_prime=1]
    Origin: https://example.com
    {
        "url": "https://example.com/",
        "viewport": {"width": 500, "height": 800},
        "elements": [...]
    }
        -> {"success": true}
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Request

from detective.api.dependencies import get_client_ip, get_url_metric_store_service
from detective.api.schemas.url_metrics import (
    DetectionConfig,
    UrlMetricPayload,
    UrlMetricStoreResponse,
)
from detective.core.logging import get_logger
from detective.services.url_metric_store import UrlMetricStoreService, UrlMetricSubmission

logger = get_logger(__name__)

router = APIRouter(tags=["url-metrics"])


@router.get(
    "/api/url-metrics/detection-config",
    response_model=DetectionConfig,
    summary="Get detection config",
    description="Compute group completeness and detection settings for a page URL.",
    responses={400: {"description": "Invalid URL"}},
)
async def get_detection_config(
    url: str = Query(..., min_length=1, max_length=2048, pattern=r"^https?://"),
    service: UrlMetricStoreService = Depends(get_url_metric_store_service),
) -> DetectionConfig:
    return await service.build_detection_config(url)


@router.post(
    "/api/url-metrics:store",
    response_model=UrlMetricStoreResponse,
    summary="Store URL Metric",
    description="Store a URL Metric collected by the client detection controller.",
    responses={
        400: {"description": "Invalid parameter(s) or viewport width"},
        403: {
            "description": (
                "Storage locked, cross-origin request, invalid HMAC, priming not allowed, "
                "or URL Metric group already complete"
            )
        },
    },
)
async def store_url_metric(
    payload: UrlMetricPayload,
    request: Request,
    slug: str = Query(..., description="Page identity slug"),
    hmac: str = Query(..., description="HMAC originally computed by the server"),
    od_prime: bool = Query(False, description="Privileged priming request"),
    origin: str | None = Header(None),
    x_priming_key: str | None = Header(None),
    service: UrlMetricStoreService = Depends(get_url_metric_store_service),
) -> UrlMetricStoreResponse:
    """Store a URL Metric into its viewport group.

    The response does not reveal whether downstream notifications succeeded.
    """
    submission = UrlMetricSubmission(
        slug=slug,
        hmac=hmac,
        client_ip=get_client_ip(request),
        origin=origin,
        prime=od_prime,
        priming_key=x_priming_key,
    )
    await service.store_url_metric(payload, submission)
    return UrlMetricStoreResponse(success=True)
