"""FastAPI application entry point for URL Metric collection."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware

from detective.api.exception_handlers import register_exception_handlers
from detective.api.middleware import RequestIDMiddleware
from detective.api.routes import metrics, url_metrics
from detective.core import close_db, get_settings, init_db
from detective.core.logging import get_logger, setup_logging
from detective.core.redis import close_redis, init_redis

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle: startup and shutdown events."""
    setup_logging()
    settings = get_settings()

    await init_db()
    logger.info("Database initialized")
    await init_redis()
    logger.info(f"Redis initialized, notifications on channel {settings.url_metrics_event_channel}")

    yield

    await close_db()
    logger.info("Database connections closed")
    await close_redis()
    logger.info("Redis connection closed")


app = FastAPI(
    title=get_settings().app_name,
    description="Collects and groups URL Metrics by viewport breakpoint",
    version=get_settings().app_version,
    lifespan=lifespan,
)

app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(url_metrics.router)
app.include_router(metrics.router)


@app.get("/health")
async def health() -> dict[str, str]:
    """Simple liveness health check endpoint."""
    return {"status": "alive"}


@app.get("/ready")
async def ready(response: Response) -> dict[str, str]:
    """Readiness probe: Redis must answer before submissions can be accepted."""
    redis = await init_redis()
    if not await redis.ping():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "redis": "unhealthy"}
    return {"status": "ready", "redis": "healthy"}


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
