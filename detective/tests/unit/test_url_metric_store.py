"""Unit tests for the URL Metric submission pipeline and detection config.

Tests cover:
- Happy path storage with server timestamp and UUID
- Rejections: slug, HMAC, priming key, storage lock, origin, complete group
- Storage lock timing across submissions
- Notification failures never failing the request
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from detective.api.schemas.url_metrics import UrlMetricPayload
from detective.core.config import Settings
from detective.core.exceptions import (
    CrossOriginForbiddenError,
    InvalidHmacError,
    InvalidSlugError,
    InvalidViewportWidthError,
    PrimingNotAllowedError,
    StorageLockedError,
    UrlMetricGroupCompleteError,
)
from detective.repositories.url_metrics_repository import UrlMetricsRepository
from detective.services.url_metric_signing import compute_url_metrics_hmac, compute_url_metrics_slug
from detective.services.url_metric_store import (
    UrlMetricStoreService,
    UrlMetricSubmission,
    is_allowed_origin,
)

SECRET = "unit-test-secret"
PAGE_URL = "http://localhost/page"
NOW = 2_000_000.0


class FakeClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _settings(**overrides) -> Settings:
    values = {
        "breakpoint_max_widths": [400, 600],
        "url_metrics_breakpoint_sample_size": 3,
        "url_metric_freshness_ttl": 86400,
        "url_metric_storage_lock_ttl": 60,
        "url_metrics_hmac_secret": SECRET,
        "allowed_origins": ["http://localhost"],
        "priming_api_keys": ["prime-key"],
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _submission(url: str = PAGE_URL, **overrides) -> UrlMetricSubmission:
    slug = compute_url_metrics_slug(url)
    values = {
        "slug": slug,
        "hmac": compute_url_metrics_hmac(slug, url, SECRET),
        "client_ip": "203.0.113.7",
        "origin": "http://localhost:8080",
    }
    values.update(overrides)
    return UrlMetricSubmission(**values)


@pytest.fixture
def repository() -> MagicMock:
    repo = MagicMock(spec=UrlMetricsRepository)
    repo.get_url_metrics = AsyncMock(return_value=[])
    repo.store_url_metrics = AsyncMock()
    return repo


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def service(repository, mock_redis, clock) -> UrlMetricStoreService:
    return UrlMetricStoreService(repository, mock_redis, settings=_settings(), clock=clock)


class TestIsAllowedOrigin:
    def test_port_ignored(self) -> None:
        assert is_allowed_origin("http://localhost:8888", ["http://localhost"])
        assert is_allowed_origin("http://localhost", ["http://localhost:3000"])

    def test_missing_origin_rejected(self) -> None:
        assert not is_allowed_origin(None, ["http://localhost"])

    def test_unknown_origin_rejected(self) -> None:
        assert not is_allowed_origin("https://evil.example", ["http://localhost"])


class TestStoreUrlMetric:
    @pytest.mark.asyncio
    async def test_stores_with_server_timestamp_and_uuid(
        self, service, repository, mock_redis, make_payload
    ) -> None:
        payload = UrlMetricPayload.model_validate(make_payload(width=500))

        url_metric = await service.store_url_metric(payload, _submission())

        assert url_metric.timestamp == NOW
        assert len(url_metric.uuid) == 36
        slug, url, stored = repository.store_url_metrics.await_args.args
        assert slug == compute_url_metrics_slug(PAGE_URL)
        assert url == PAGE_URL
        assert stored == [url_metric]
        mock_redis.set.assert_awaited_once()
        mock_redis.publish.assert_awaited_once()
        channel, message = mock_redis.publish.await_args.args
        assert channel == "url_metric_stored"
        assert message["minimum_viewport_width"] == 400
        assert message["maximum_viewport_width"] == 600

    @pytest.mark.asyncio
    async def test_priming_marker_stripped_from_stored_url(
        self, service, make_payload
    ) -> None:
        url = f"{PAGE_URL}?od_prime=1"
        payload = UrlMetricPayload.model_validate(make_payload(url=url))

        url_metric = await service.store_url_metric(
            payload, _submission(url, prime=True, priming_key="prime-key")
        )

        assert url_metric.url == PAGE_URL

    @pytest.mark.asyncio
    async def test_extension_properties_stored(self, service, make_payload, make_element) -> None:
        payload = UrlMetricPayload.model_validate(
            make_payload(
                elements=[make_element(is_lcp=True, is_lcp_candidate=True, lazyLoaded=False)],
                colorScheme="dark",
            )
        )

        url_metric = await service.store_url_metric(payload, _submission())

        assert url_metric.extra == {"colorScheme": "dark"}
        assert url_metric.elements[0].extra == {"lazyLoaded": False}

    @pytest.mark.asyncio
    async def test_invalid_slug(self, service, repository, make_payload) -> None:
        payload = UrlMetricPayload.model_validate(make_payload())

        with pytest.raises(InvalidSlugError):
            await service.store_url_metric(payload, _submission(slug="not-a-slug"))
        repository.store_url_metrics.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_hmac(self, service, repository, make_payload) -> None:
        payload = UrlMetricPayload.model_validate(make_payload(url="http://localhost/other"))

        with pytest.raises(InvalidHmacError):
            await service.store_url_metric(payload, _submission())
        repository.store_url_metrics.assert_not_called()

    @pytest.mark.asyncio
    async def test_priming_requires_key(self, service, mock_redis, make_payload) -> None:
        payload = UrlMetricPayload.model_validate(make_payload())

        with pytest.raises(PrimingNotAllowedError):
            await service.store_url_metric(
                payload, _submission(prime=True, priming_key="wrong-key")
            )
        mock_redis.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_cross_origin_rejected(self, service, repository, make_payload) -> None:
        payload = UrlMetricPayload.model_validate(make_payload())

        with pytest.raises(CrossOriginForbiddenError):
            await service.store_url_metric(
                payload, _submission(origin="https://attacker.example")
            )
        repository.store_url_metrics.assert_not_called()

    @pytest.mark.asyncio
    async def test_group_complete_rejected_without_write(
        self, service, repository, mock_redis, make_payload, make_url_metric
    ) -> None:
        repository.get_url_metrics = AsyncMock(
            return_value=[make_url_metric(width=500, timestamp=NOW - i) for i in range(3)]
        )
        payload = UrlMetricPayload.model_validate(make_payload(width=500))

        with pytest.raises(UrlMetricGroupCompleteError) as exc_info:
            await service.store_url_metric(payload, _submission())

        assert exc_info.value.details == {
            "minimum_viewport_width": 400,
            "maximum_viewport_width": 600,
        }
        repository.store_url_metrics.assert_not_called()
        mock_redis.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_metrics_do_not_complete_group(
        self, service, repository, make_payload, make_url_metric
    ) -> None:
        stale = make_url_metric(width=500, timestamp=NOW - 90000)
        repository.get_url_metrics = AsyncMock(
            return_value=[stale, make_url_metric(width=500, timestamp=NOW - 1)]
        )
        payload = UrlMetricPayload.model_validate(make_payload(width=500))

        url_metric = await service.store_url_metric(payload, _submission())

        stored = repository.store_url_metrics.await_args.args[2]
        assert stored[0] == url_metric
        assert stale in stored

    @pytest.mark.asyncio
    async def test_oldest_evicted_when_group_overfull(
        self, service, repository, make_payload, make_url_metric
    ) -> None:
        stale = [make_url_metric(width=500, timestamp=NOW - 90000 - i) for i in range(3)]
        repository.get_url_metrics = AsyncMock(return_value=stale)
        payload = UrlMetricPayload.model_validate(make_payload(width=500))

        url_metric = await service.store_url_metric(payload, _submission())

        stored = repository.store_url_metrics.await_args.args[2]
        assert stored == [url_metric, stale[0], stale[1]]

    @pytest.mark.asyncio
    async def test_zero_width_rejected(self, service) -> None:
        payload = UrlMetricPayload.model_construct(
            url=PAGE_URL, viewport=MagicMock(width=0, height=800), elements=[]
        )

        with pytest.raises(InvalidViewportWidthError):
            await service.store_url_metric(payload, _submission())

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_store(
        self, service, repository, mock_redis, make_payload
    ) -> None:
        mock_redis.publish = AsyncMock(side_effect=ConnectionError("redis down"))
        payload = UrlMetricPayload.model_validate(make_payload())

        await service.store_url_metric(payload, _submission())

        repository.store_url_metrics.assert_awaited_once()


class TestStorageLockAcrossSubmissions:
    @pytest.mark.asyncio
    async def test_locked_at_30s_and_accepted_at_61s(
        self, service, mock_redis, clock, make_payload
    ) -> None:
        lock_values: dict[str, float] = {}

        async def fake_get(key):
            return lock_values.get(key)

        async def fake_set(key, value, expire=None):
            lock_values[key] = value
            return True

        mock_redis.get = AsyncMock(side_effect=fake_get)
        mock_redis.set = AsyncMock(side_effect=fake_set)
        payload = UrlMetricPayload.model_validate(make_payload())

        await service.store_url_metric(payload, _submission())

        clock.now = NOW + 30
        with pytest.raises(StorageLockedError):
            await service.store_url_metric(payload, _submission())

        clock.now = NOW + 61
        await service.store_url_metric(payload, _submission())

    @pytest.mark.asyncio
    async def test_priming_bypasses_lock(self, service, mock_redis, make_payload) -> None:
        mock_redis.get = AsyncMock(return_value=NOW)
        url = f"{PAGE_URL}?od_prime=1"
        payload = UrlMetricPayload.model_validate(make_payload(url=url))

        await service.store_url_metric(
            payload, _submission(url, prime=True, priming_key="prime-key")
        )

        mock_redis.get.assert_not_called()
        mock_redis.set.assert_not_called()


class TestBuildDetectionConfig:
    @pytest.mark.asyncio
    async def test_reports_group_statuses(self, service, repository, make_url_metric) -> None:
        repository.get_url_metrics = AsyncMock(
            return_value=[make_url_metric(width=500, timestamp=NOW - i) for i in range(3)]
        )

        config = await service.build_detection_config(PAGE_URL)

        assert [status.complete for status in config.group_statuses] == [False, True, False]
        assert config.group_statuses[2].maximum_viewport_width is None
        assert config.needs_detection is True
        assert config.slug == compute_url_metrics_slug(PAGE_URL)
        assert config.hmac == compute_url_metrics_hmac(config.slug, PAGE_URL, SECRET)
        assert config.storage_lock_ttl == 60
        assert config.url_metric_group_collection is None
        repository.get_url_metrics.assert_awaited_once_with(config.slug)

    @pytest.mark.asyncio
    async def test_no_detection_needed_when_all_complete(
        self, repository, mock_redis, clock, make_url_metric
    ) -> None:
        service = UrlMetricStoreService(
            repository,
            mock_redis,
            settings=_settings(url_metrics_breakpoint_sample_size=1),
            clock=clock,
        )
        repository.get_url_metrics = AsyncMock(
            return_value=[make_url_metric(width=w, timestamp=NOW) for w in (300, 500, 700)]
        )

        config = await service.build_detection_config(PAGE_URL)

        assert config.needs_detection is False

    @pytest.mark.asyncio
    async def test_debug_includes_collection(self, repository, mock_redis, clock) -> None:
        service = UrlMetricStoreService(
            repository, mock_redis, settings=_settings(debug=True), clock=clock
        )

        config = await service.build_detection_config(PAGE_URL)

        assert config.is_debug is True
        assert config.url_metric_group_collection is not None
        assert len(config.url_metric_group_collection["groups"]) == 3
