"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST

from detective.core.metrics import get_metrics_response

router = APIRouter(tags=["metrics"])


@router.get("/api/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=get_metrics_response(), media_type=CONTENT_TYPE_LATEST)
