"""URL Metric submission pipeline and the client eligibility feed.

Every decision is made against a Group Collection rebuilt from the persisted
metric history of the page identity, so completeness always reflects the
current configuration and wall-clock time. Concurrent submissions for the
same page identity may both observe an incomplete group and both store; the
resulting overshoot of the sample size is tolerated and trimmed by eviction
on the next write.

Usage:
    service = UrlMetricStoreService(repository, redis_client)
    config = await service.build_detection_config("https://example.com/")
    url_metric = await service.store_url_metric(payload, submission)
"""

from __future__ import annotations

import hmac
import re
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from urllib.parse import urlsplit

from detective.api.schemas.url_metrics import (
    DetectionConfig,
    UrlMetricGroupStatus,
    UrlMetricPayload,
)
from detective.core.config import Settings, get_settings
from detective.core.exceptions import (
    CrossOriginForbiddenError,
    DetectiveError,
    InvalidHmacError,
    InvalidSlugError,
    PrimingNotAllowedError,
    StorageLockedError,
    UrlMetricGroupCompleteError,
)
from detective.core.logging import get_logger, sanitize_error
from detective.core.metrics import (
    record_group_completed,
    record_notification_failure,
    record_submission_outcome,
)
from detective.core.redis import RedisClient
from detective.repositories.url_metrics_repository import UrlMetricsRepository
from detective.services.storage_lock import StorageLock
from detective.services.url_metric import UrlMetric
from detective.services.url_metric_group import UrlMetricGroup
from detective.services.url_metric_group_collection import UrlMetricGroupCollection
from detective.services.url_metric_signing import (
    compute_url_metrics_hmac,
    compute_url_metrics_slug,
    is_valid_slug,
    strip_priming_marker,
    verify_url_metrics_hmac,
)

logger = get_logger(__name__)

_PORT_SUFFIX = re.compile(r":\d+$")


@dataclass(slots=True)
class UrlMetricSubmission:
    """Request-level facts accompanying a submitted URL Metric.

    Attributes:
        slug: Page identity slug from the query string
        hmac: Auth tag issued with the detection config
        client_ip: Client identity for the storage lock
        origin: Value of the Origin request header, if any
        prime: Whether the privileged priming bypass was requested
        priming_key: Value of the X-Priming-Key header, if any
    """

    slug: str
    hmac: str
    client_ip: str
    origin: str | None = None
    prime: bool = False
    priming_key: str | None = None


def _strip_origin(origin: str) -> str:
    return _PORT_SUFFIX.sub("", origin.strip().rstrip("/").lower())


def is_allowed_origin(origin: str | None, allowed_origins: Iterable[str]) -> bool:
    """Check an Origin header against the allowed origins, ignoring ports.

    A missing Origin header is never allowed since URL Metrics can only be
    sourced from pages served by the site.
    """
    if not origin:
        return False
    stripped = _strip_origin(origin)
    return any(stripped == _strip_origin(allowed) for allowed in allowed_origins)


def is_valid_priming_key(priming_key: str | None, priming_api_keys: Iterable[str]) -> bool:
    if not priming_key:
        return False
    return any(hmac.compare_digest(priming_key, key) for key in priming_api_keys)


class UrlMetricStoreService:
    """Validates, groups and persists URL Metrics for page identities."""

    def __init__(
        self,
        repository: UrlMetricsRepository,
        redis_client: RedisClient,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the service.

        Args:
            repository: Repository for persisted URL Metrics
            redis_client: Redis client for the storage lock and notifications
            settings: Application settings (defaults to get_settings())
            clock: Source of the authoritative server time
        """
        self.repository = repository
        self.redis_client = redis_client
        self.settings = settings or get_settings()
        self.clock = clock
        self.storage_lock = StorageLock(redis_client, ttl=self.settings.url_metric_storage_lock_ttl)

    def build_collection(
        self,
        url_metrics: Iterable[UrlMetric],
        current_time: float | None = None,
    ) -> UrlMetricGroupCollection:
        return UrlMetricGroupCollection(
            url_metrics,
            breakpoints=self.settings.breakpoint_max_widths,
            sample_size=self.settings.url_metrics_breakpoint_sample_size,
            freshness_ttl=self.settings.url_metric_freshness_ttl,
            current_time=self.clock() if current_time is None else current_time,
        )

    async def get_collection(
        self, slug: str, current_time: float | None = None
    ) -> UrlMetricGroupCollection:
        """Rebuild the Group Collection from the persisted history of a page identity."""
        url_metrics = await self.repository.get_url_metrics(slug)
        return self.build_collection(url_metrics, current_time)

    async def build_detection_config(self, url: str) -> DetectionConfig:
        """Compute the eligibility feed injected into a rendered page.

        Args:
            url: Page URL being rendered

        Returns:
            DetectionConfig with group statuses, thresholds and the auth tag
        """
        settings = self.settings
        slug = compute_url_metrics_slug(url)
        collection = await self.get_collection(slug)

        return DetectionConfig(
            url=strip_priming_marker(url),
            slug=slug,
            hmac=compute_url_metrics_hmac(slug, url, settings.url_metrics_hmac_secret),
            rest_api_endpoint=settings.rest_api_endpoint,
            group_statuses=[
                UrlMetricGroupStatus(**status) for status in collection.get_group_statuses()
            ],
            needs_detection=not collection.is_every_group_complete(),
            freshness_ttl=settings.url_metric_freshness_ttl,
            sample_size=settings.url_metrics_breakpoint_sample_size,
            min_viewport_aspect_ratio=settings.min_viewport_aspect_ratio,
            max_viewport_aspect_ratio=settings.max_viewport_aspect_ratio,
            storage_lock_ttl=settings.url_metric_storage_lock_ttl,
            extension_modules=list(settings.extension_modules),
            is_debug=settings.debug,
            url_metric_group_collection=collection.to_debug_dict() if settings.debug else None,
        )

    async def store_url_metric(
        self,
        payload: UrlMetricPayload,
        submission: UrlMetricSubmission,
    ) -> UrlMetric:
        """Store a submitted URL Metric into its viewport group.

        Raises:
            InvalidSlugError: If the slug is malformed
            InvalidHmacError: If the auth tag does not match the slug and URL
            PrimingNotAllowedError: If priming was requested without a valid key
            StorageLockedError: If the client submitted within the lock TTL
            CrossOriginForbiddenError: If the Origin header is not allowed
            InvalidViewportWidthError: If the viewport width is not a positive integer
            UrlMetricGroupCompleteError: If the viewport's group is already complete
            UrlMetricValidationError: If the payload violates URL Metric invariants
        """
        try:
            url_metric, group = await self._store(payload, submission)
        except DetectiveError as e:
            record_submission_outcome(e.error_code)
            logger.info(
                f"Rejected URL Metric for {submission.slug}: {e.error_code}",
                extra={"slug": submission.slug, "error_code": e.error_code},
            )
            raise

        record_submission_outcome("stored")
        if group.complete:
            record_group_completed()
        await self._notify_stored(submission.slug, url_metric, group)
        return url_metric

    async def _store(
        self,
        payload: UrlMetricPayload,
        submission: UrlMetricSubmission,
    ) -> tuple[UrlMetric, UrlMetricGroup]:
        settings = self.settings

        if not is_valid_slug(submission.slug):
            raise InvalidSlugError(details={"param": "slug"})
        if not verify_url_metrics_hmac(
            submission.hmac, submission.slug, payload.url, settings.url_metrics_hmac_secret
        ):
            raise InvalidHmacError(details={"param": "hmac"})
        if submission.prime and not is_valid_priming_key(
            submission.priming_key, settings.priming_api_keys
        ):
            raise PrimingNotAllowedError()

        now = self.clock()
        bypass = submission.prime
        if await self.storage_lock.is_locked(submission.client_ip, now, bypass=bypass):
            raise StorageLockedError()

        if not is_allowed_origin(submission.origin, settings.allowed_origins):
            raise CrossOriginForbiddenError()

        collection = await self.get_collection(submission.slug, now)
        group = collection.get_group_for_viewport_width(payload.viewport.width)
        if collection.is_group_complete(group):
            raise UrlMetricGroupCompleteError(
                minimum_viewport_width=group.minimum_viewport_width,
                maximum_viewport_width=group.maximum_viewport_width,
            )

        # Locked even if storing fails below, to bound write volume per client.
        await self.storage_lock.set_lock(submission.client_ip, now, bypass=bypass)

        data = payload.to_wire_dict()
        data["url"] = strip_priming_marker(payload.url)
        data["timestamp"] = now
        data["uuid"] = str(uuid.uuid4())
        url_metric = UrlMetric.from_dict(data)

        group = collection.add_url_metric(url_metric)
        await self.repository.store_url_metrics(
            submission.slug, url_metric.url, collection.get_flattened_url_metrics()
        )
        logger.info(
            f"Stored URL Metric {url_metric.uuid} for {submission.slug} "
            f"(viewport width {url_metric.viewport_width})",
            extra={"slug": submission.slug, "uuid": url_metric.uuid},
        )
        return url_metric, group

    async def _notify_stored(self, slug: str, url_metric: UrlMetric, group: UrlMetricGroup) -> None:
        """Publish a stored notification for cache-invalidation subscribers."""
        message = {
            "slug": slug,
            "url": url_metric.url,
            "uuid": url_metric.uuid,
            "viewport_width": url_metric.viewport_width,
            "minimum_viewport_width": group.minimum_viewport_width,
            "maximum_viewport_width": group.maximum_viewport_width,
            "complete": group.complete,
        }
        try:
            await self.redis_client.publish(self.settings.url_metrics_event_channel, message)
        except Exception as e:
            record_notification_failure()
            logger.warning(f"Failed to publish URL Metric stored notification: {sanitize_error(e)}")
