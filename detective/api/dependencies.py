"""FastAPI dependency functions for URL Metric routes.

Services are injected through Depends() so tests can replace them with
``app.dependency_overrides``:

    app.dependency_overrides[get_url_metric_store_service] = lambda: mock_service
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from detective.core.database import get_db
from detective.core.redis import RedisClient, get_redis
from detective.repositories.url_metrics_repository import UrlMetricsRepository
from detective.services.url_metric_store import UrlMetricStoreService


def get_client_ip(request: Request) -> str:
    """Extract client IP address from request.

    Handles X-Forwarded-For header for proxied requests.

    Returns:
        Client IP address as string
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain (original client)
        return str(forwarded_for.split(",")[0].strip())

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return str(real_ip.strip())

    if request.client:
        return str(request.client.host)

    return "unknown"


async def get_url_metric_store_service(
    db: AsyncSession = Depends(get_db),
    redis: RedisClient = Depends(get_redis),
) -> AsyncGenerator[UrlMetricStoreService]:
    """FastAPI dependency for UrlMetricStoreService.

    Yields:
        UrlMetricStoreService bound to the request's database session
    """
    yield UrlMetricStoreService(UrlMetricsRepository(db), redis)
