"""Unit tests for the client detection controller.

Tests cover:
- Eligibility: viewport need and size, aspect ratio band, storage lock, scroll position
- Record assembly: isLCP and isLCPCandidate flags from LCP reports
- Resize before page hide invalidating the sample
- Priming delivery reporting to the parent frame
- Extension finalize hooks extending the record
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable
from types import ModuleType
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from detective.api.schemas.url_metrics import (
    DetectionConfig,
    UrlMetricGroupStatus,
    UrlMetricPayload,
)
from detective.client.controller import (
    PRIME_DONE_MESSAGE,
    PRIME_FAILED_MESSAGE,
    DetectionController,
    DetectionState,
    is_viewport_needed,
)
from detective.client.environment import (
    IntersectionEntry,
    LCPCandidate,
    PageEnvironment,
    WebVitalsHooks,
)
from detective.client.storage_lock import STORAGE_LOCK_TIME_KEY
from detective.client.transport import Transport
from detective.services.url_metric import DOMRect

PAGE_URL = "https://example.com/page"
IMG_XPATH = "/*[1][self::HTML]/*[2][self::BODY]/*[1][self::IMG]"
DIV_XPATH = "/*[1][self::HTML]/*[2][self::BODY]/*[2][self::DIV]"


class FakeElement:
    def __init__(self, name: str) -> None:
        self.name = name


class FakePage:
    """In-memory page implementing the PageEnvironment protocol."""

    def __init__(
        self,
        *,
        url: str = PAGE_URL,
        width: int = 500,
        height: int = 800,
        scroll_top: float = 0,
        resize_before_hide: bool = False,
        lcp_candidates: list[LCPCandidate] | None = None,
    ) -> None:
        self.current_url = url
        self.viewport_width = width
        self.viewport_height = height
        self.session_storage: dict[str, str] = {}
        self.scroll_top = scroll_top
        self.resize_before_hide = resize_before_hide
        self.img = FakeElement("img")
        self.div = FakeElement("div")
        self.lcp_candidates = (
            lcp_candidates
            if lcp_candidates is not None
            else [LCPCandidate(1200.0, self.div), LCPCandidate(1800.0, self.img)]
        )
        self.clock_ms = 1_000_000
        self.resize_listeners: list[Callable[[], None]] = []
        self.scroll_listeners: list[Callable[[], None]] = []
        self.messages: list[str] = []
        self.events: list[str] = []
        self.disconnected = False
        self.web_vitals = WebVitalsHooks(
            on_ttfb=MagicMock(),
            on_fcp=MagicMock(),
            on_lcp=self._on_lcp,
            on_inp=MagicMock(),
            on_cls=MagicMock(),
        )

    def now_ms(self) -> int:
        return self.clock_ms

    async def wait_for_dom_ready(self) -> None:
        self.events.append("dom_ready")

    async def wait_for_load(self) -> None:
        self.events.append("load")

    async def wait_for_idle(self) -> None:
        self.events.append("idle")

    async def wait_for_page_hide(self) -> None:
        self.events.append("page_hide")
        if self.resize_before_hide:
            for listener in self.resize_listeners:
                listener()

    def get_scroll_top(self) -> float:
        return self.scroll_top

    def add_resize_listener(self, callback: Callable[[], None]) -> None:
        self.resize_listeners.append(callback)

    def add_scroll_listener(self, callback: Callable[[], None]) -> None:
        self.scroll_listeners.append(callback)

    def get_breadcrumbed_elements(self) -> dict[Hashable, str]:
        return {self.img: IMG_XPATH, self.div: DIV_XPATH}

    def observe_intersections(
        self,
        elements: Iterable[Hashable],
        callback: Callable[[list[IntersectionEntry]], None],
    ) -> Callable[[], None]:
        rect = DOMRect(0.0, 0.0, 100.0, 50.0)
        callback([IntersectionEntry(element, 1.0, rect, rect) for element in elements])

        def disconnect() -> None:
            self.disconnected = True

        return disconnect

    def _on_lcp(self, callback: Callable[[LCPCandidate], None], **options: Any) -> None:
        assert options == {"report_all_changes": True}
        for candidate in self.lcp_candidates:
            callback(candidate)

    def post_message_to_parent(self, message: str) -> None:
        self.messages.append(message)


def _config(**overrides: Any) -> DetectionConfig:
    values: dict[str, Any] = {
        "url": PAGE_URL,
        "slug": "0" * 32,
        "hmac": "f" * 64,
        "rest_api_endpoint": "https://example.com/api/url-metrics:store",
        "group_statuses": [
            UrlMetricGroupStatus(minimum_viewport_width=0, maximum_viewport_width=480, complete=False),
            UrlMetricGroupStatus(minimum_viewport_width=480, maximum_viewport_width=None, complete=False),
        ],
        "needs_detection": True,
        "freshness_ttl": 86400,
        "sample_size": 3,
        "min_viewport_aspect_ratio": 0.4,
        "max_viewport_aspect_ratio": 2.5,
        "storage_lock_ttl": 60,
    }
    values.update(overrides)
    return DetectionConfig(**values)


@pytest.fixture
def transport() -> MagicMock:
    mock = MagicMock(spec=Transport)
    mock.send_beacon = MagicMock(return_value=True)
    mock.post = AsyncMock()
    return mock


def _controller(config, page, transport, extensions=None) -> DetectionController:
    return DetectionController(config, page, transport, extensions=extensions or {})


class TestIsViewportNeeded:
    def test_group_lacking(self) -> None:
        assert is_viewport_needed(500, _config().group_statuses)

    def test_group_complete(self) -> None:
        statuses = [
            UrlMetricGroupStatus(minimum_viewport_width=0, maximum_viewport_width=480, complete=False),
            UrlMetricGroupStatus(minimum_viewport_width=480, maximum_viewport_width=None, complete=True),
        ]

        assert not is_viewport_needed(500, statuses)
        assert is_viewport_needed(479, statuses)

    def test_no_statuses(self) -> None:
        assert not is_viewport_needed(500, [])


class TestDetectionController:
    def test_fake_page_satisfies_protocol(self) -> None:
        assert isinstance(FakePage(), PageEnvironment)

    @pytest.mark.asyncio
    async def test_happy_path_sends_beacon(self, transport) -> None:
        page = FakePage()
        controller = _controller(_config(), page, transport)

        state = await controller.run()

        assert state is DetectionState.DONE
        assert page.events == ["dom_ready", "load", "idle", "page_hide"]
        assert page.disconnected
        assert page.scroll_listeners
        assert len(page.resize_listeners) == 1
        transport.post.assert_not_called()
        url, payload = transport.send_beacon.call_args.args
        assert url == (
            "https://example.com/api/url-metrics:store?slug=" + "0" * 32 + "&hmac=" + "f" * 64
        )
        assert transport.send_beacon.call_args.kwargs == {
            "headers": {"Origin": "https://example.com"}
        }
        assert payload["url"] == PAGE_URL
        assert payload["viewport"] == {"width": 500, "height": 800}
        assert page.session_storage[STORAGE_LOCK_TIME_KEY] == "1000000"

    @pytest.mark.asyncio
    async def test_last_lcp_report_marks_lcp_element(self, transport) -> None:
        page = FakePage()

        await _controller(_config(), page, transport).run()

        elements = {
            element["xpath"]: element for element in transport.send_beacon.call_args.args[1]["elements"]
        }
        assert elements[IMG_XPATH]["isLCP"] is True
        assert elements[IMG_XPATH]["isLCPCandidate"] is True
        assert elements[DIV_XPATH]["isLCP"] is False
        assert elements[DIV_XPATH]["isLCPCandidate"] is True

    @pytest.mark.asyncio
    async def test_lcp_without_element_marks_nothing(self, transport) -> None:
        page = FakePage(lcp_candidates=[LCPCandidate(900.0)])

        await _controller(_config(), page, transport).run()

        elements = transport.send_beacon.call_args.args[1]["elements"]
        assert len(elements) == 2
        assert not any(element["isLCP"] or element["isLCPCandidate"] for element in elements)

    @pytest.mark.asyncio
    async def test_aborts_when_group_complete(self, transport) -> None:
        config = _config(
            group_statuses=[
                UrlMetricGroupStatus(minimum_viewport_width=0, maximum_viewport_width=None, complete=True)
            ]
        )
        page = FakePage()

        state = await _controller(config, page, transport).run()

        assert state is DetectionState.ABORTED
        assert page.events == []
        transport.send_beacon.assert_not_called()

    @pytest.mark.asyncio
    async def test_aborts_outside_aspect_ratio_band(self, transport) -> None:
        page = FakePage(width=500, height=100)

        state = await _controller(_config(), page, transport).run()

        assert state is DetectionState.ABORTED
        transport.send_beacon.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("width", "height"), [(500, 0), (0, 800)])
    async def test_aborts_when_viewport_has_no_size(self, transport, width, height) -> None:
        page = FakePage(width=width, height=height)

        state = await _controller(_config(), page, transport).run()

        assert state is DetectionState.ABORTED
        assert page.events == []
        transport.send_beacon.assert_not_called()

    @pytest.mark.asyncio
    async def test_aborts_when_storage_locked(self, transport) -> None:
        page = FakePage()
        page.session_storage[STORAGE_LOCK_TIME_KEY] = str(page.clock_ms - 30_000)

        state = await _controller(_config(), page, transport).run()

        assert state is DetectionState.ABORTED
        assert "page_hide" not in page.events
        transport.send_beacon.assert_not_called()

    @pytest.mark.asyncio
    async def test_aborts_when_scrolled(self, transport) -> None:
        page = FakePage(scroll_top=120)

        state = await _controller(_config(), page, transport).run()

        assert state is DetectionState.ABORTED
        assert page.resize_listeners == []
        transport.send_beacon.assert_not_called()

    @pytest.mark.asyncio
    async def test_resize_before_page_hide_discards_sample(self, transport) -> None:
        page = FakePage(resize_before_hide=True)

        state = await _controller(_config(), page, transport).run()

        assert state is DetectionState.ABORTED
        assert STORAGE_LOCK_TIME_KEY not in page.session_storage
        transport.send_beacon.assert_not_called()


class TestPrimingController:
    @pytest.mark.asyncio
    async def test_priming_posts_and_reports_done(self, transport) -> None:
        page = FakePage(url=f"{PAGE_URL}?od_prime=1")
        page.session_storage[STORAGE_LOCK_TIME_KEY] = str(page.clock_ms)
        config = _config(url=f"{PAGE_URL}?od_prime=1")

        state = await _controller(config, page, transport).run()

        assert state is DetectionState.DONE
        assert "page_hide" not in page.events
        assert page.messages == [PRIME_DONE_MESSAGE]
        url, payload = transport.post.await_args.args
        assert "od_prime=1" in url
        assert payload["url"] == PAGE_URL
        transport.send_beacon.assert_not_called()
        assert page.session_storage[STORAGE_LOCK_TIME_KEY] == str(page.clock_ms)

    @pytest.mark.asyncio
    async def test_priming_failure_reported(self, transport) -> None:
        transport.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        page = FakePage(url=f"{PAGE_URL}?od_prime=1")

        state = await _controller(_config(), page, transport).run()

        assert state is DetectionState.DONE
        assert page.messages == [PRIME_FAILED_MESSAGE]


class TestControllerExtensions:
    @pytest.mark.asyncio
    async def test_finalize_extends_record(self, transport) -> None:
        extension = ModuleType("lcp_hints")
        initialized: list[Any] = []

        def initialize(args) -> None:
            initialized.append(args)

        async def finalize(args) -> None:
            for element in args.get_root_data()["elements"]:
                if element["isLCP"]:
                    args.extend_element_data(element["xpath"], {"lcpHint": True})
            args.extend_root_data({"colorScheme": "dark"})

        extension.initialize = initialize
        extension.finalize = finalize
        page = FakePage()

        await _controller(_config(), page, transport, {"lcp_hints": extension}).run()

        assert initialized[0].on_lcp == page.web_vitals.on_lcp
        payload = transport.send_beacon.call_args.args[1]
        assert payload["colorScheme"] == "dark"
        lcp = next(element for element in payload["elements"] if element["isLCP"])
        assert lcp["lcpHint"] is True

    @pytest.mark.asyncio
    async def test_failing_extension_does_not_block_delivery(self, transport) -> None:
        broken = ModuleType("broken")

        async def finalize(args) -> None:
            args.extend_root_data({"url": "https://evil.example/"})

        broken.finalize = finalize

        state = await _controller(_config(), FakePage(), transport, {"broken": broken}).run()

        assert state is DetectionState.DONE
        assert transport.send_beacon.call_args.args[1]["url"] == PAGE_URL

    @pytest.mark.asyncio
    async def test_extension_cannot_set_server_keys(self, transport) -> None:
        stamping = ModuleType("stamping")

        def finalize(args) -> None:
            args.extend_root_data({"timestamp": 1.0})

        stamping.finalize = finalize

        state = await _controller(_config(), FakePage(), transport, {"stamping": stamping}).run()

        assert state is DetectionState.DONE
        payload = transport.send_beacon.call_args.args[1]
        assert "timestamp" not in payload
        UrlMetricPayload.model_validate(payload)
