"""Client detection controller.

One controller runs per page view. It decides whether the page view should be
sampled, measures the initial viewport, lets extensions annotate the record,
and hands the URL Metric to the transport. Every ineligibility is a silent
transition to ABORTED; nothing is raised to the caller.

State order:

    IDLE -> CHECKING_ELIGIBILITY -> WAITING_FOR_PAGE_READY -> WAITING_FOR_IDLE
         -> CHECKING_STORAGE_LOCK -> OBSERVING -> WAITING_FOR_PAGE_HIDE
         -> FINALIZING -> TRANSMITTING -> DONE

A viewport resize anywhere between the scroll position check and page hide
invalidates the sample, which is checked on entering FINALIZING.

Usage:
    controller = DetectionController(config, environment, transport)
    final_state = await controller.run()
"""

from __future__ import annotations

import asyncio
from collections.abc import Hashable, Iterable, Mapping, Sequence
from enum import Enum
from types import ModuleType
from typing import Any, Protocol
from urllib.parse import urlsplit

import httpx

from detective.api.schemas.url_metrics import DetectionConfig
from detective.client.environment import IntersectionEntry, LCPCandidate, PageEnvironment
from detective.client.extensions import (
    FinalizeArgs,
    InitializeArgs,
    UrlMetricRecord,
    finalize_extensions,
    initialize_extensions,
    load_extensions,
)
from detective.client.storage_lock import ClientStorageLock
from detective.client.transport import Transport, build_submission_url
from detective.core.logging import get_logger, sanitize_error
from detective.services.url_metric_signing import has_priming_marker, strip_priming_marker

logger = get_logger(__name__)

LOG_PREFIX = "[detective]"

PRIME_DONE_MESSAGE = "done_prime"
PRIME_FAILED_MESSAGE = "failed_prime"


class DetectionState(str, Enum):
    """Detection controller states."""

    IDLE = "idle"
    CHECKING_ELIGIBILITY = "checking_eligibility"
    WAITING_FOR_PAGE_READY = "waiting_for_page_ready"
    WAITING_FOR_IDLE = "waiting_for_idle"
    CHECKING_STORAGE_LOCK = "checking_storage_lock"
    OBSERVING = "observing"
    WAITING_FOR_PAGE_HIDE = "waiting_for_page_hide"
    FINALIZING = "finalizing"
    TRANSMITTING = "transmitting"
    DONE = "done"
    ABORTED = "aborted"


class _GroupStatus(Protocol):
    minimum_viewport_width: int
    complete: bool


def is_viewport_needed(viewport_width: int, group_statuses: Iterable[_GroupStatus]) -> bool:
    """Whether the group containing ``viewport_width`` still lacks URL Metrics.

    Statuses are ordered lowest range first; the last group whose minimum
    width does not exceed the viewport width decides.
    """
    last_was_lacking = False
    for status in group_statuses:
        if viewport_width >= status.minimum_viewport_width:
            last_was_lacking = not status.complete
        else:
            break
    return last_was_lacking


class DetectionController:
    """State machine collecting one URL Metric for one page view."""

    def __init__(
        self,
        config: DetectionConfig,
        environment: PageEnvironment,
        transport: Transport,
        *,
        extensions: Mapping[str, ModuleType] | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            config: Detection config computed by the server for this page
            environment: The page being measured
            transport: Delivery of the finished URL Metric
            extensions: Preloaded extension modules; defaults to importing
                ``config.extension_modules``
        """
        self.config = config
        self.environment = environment
        self.transport = transport
        self._extensions = extensions
        self.is_priming = has_priming_marker(environment.current_url)
        self.storage_lock = ClientStorageLock(
            environment.session_storage,
            config.storage_lock_ttl,
            is_priming=self.is_priming,
        )
        self.state = DetectionState.IDLE
        self.record: UrlMetricRecord | None = None
        self._did_window_resize = False

    def _log(self, message: str) -> None:
        if self.config.is_debug:
            logger.info(f"{LOG_PREFIX} {message}")

    def _warn(self, message: str) -> None:
        if self.config.is_debug:
            logger.warning(f"{LOG_PREFIX} {message}")

    def _abort(self, reason: str) -> DetectionState:
        self._warn(reason)
        self.state = DetectionState.ABORTED
        return self.state

    def _on_resize(self) -> None:
        self._did_window_resize = True

    async def run(self) -> DetectionState:
        """Run the detection pipeline to completion.

        Returns:
            DONE if a URL Metric was handed to the transport, otherwise ABORTED
        """
        env = self.environment
        config = self.config

        self.state = DetectionState.CHECKING_ELIGIBILITY
        if config.is_debug and config.url_metric_group_collection is not None:
            self._log_stored_collection(config.url_metric_group_collection)

        if not is_viewport_needed(env.viewport_width, config.group_statuses):
            return self._abort("No need for URL Metrics from the current viewport.")

        if env.viewport_width < 1 or env.viewport_height < 1:
            return self._abort(
                f"Viewport size {env.viewport_width}x{env.viewport_height} cannot be measured."
            )

        aspect_ratio = env.viewport_width / env.viewport_height
        if not (
            config.min_viewport_aspect_ratio <= aspect_ratio <= config.max_viewport_aspect_ratio
        ):
            return self._abort(
                f"Viewport aspect ratio ({aspect_ratio}) is not in the accepted range of "
                f"{config.min_viewport_aspect_ratio} to {config.max_viewport_aspect_ratio}."
            )

        self.state = DetectionState.WAITING_FOR_PAGE_READY
        await env.wait_for_dom_ready()

        self.state = DetectionState.WAITING_FOR_IDLE
        await env.wait_for_load()
        await env.wait_for_idle()

        self.state = DetectionState.CHECKING_STORAGE_LOCK
        if self.storage_lock.is_locked(env.now_ms()):
            return self._abort("Aborted detection due to storage being locked.")

        if env.get_scroll_top() > 0:
            return self._abort(
                "Aborted detection since initial scroll position of page is not at the top."
            )

        env.add_resize_listener(self._on_resize)

        self._log("Proceeding with detection")

        extensions = self._extensions
        if extensions is None:
            extensions = load_extensions(config.extension_modules)
        vitals = env.web_vitals
        await initialize_extensions(
            extensions,
            InitializeArgs(
                is_debug=config.is_debug,
                on_ttfb=vitals.on_ttfb,
                on_fcp=vitals.on_fcp,
                on_lcp=vitals.on_lcp,
                on_inp=vitals.on_inp,
                on_cls=vitals.on_cls,
            ),
        )

        self.state = DetectionState.OBSERVING
        breadcrumbed_elements = dict(env.get_breadcrumbed_elements())
        intersections, lcp_candidates = await self._observe_initial_viewport(breadcrumbed_elements)
        self._log("Detection is stopping.")

        self.record = self._build_record(breadcrumbed_elements, intersections, lcp_candidates)
        self._log(f"Current URL Metric: {self.record.to_payload()}")

        if not self.is_priming:
            self.state = DetectionState.WAITING_FOR_PAGE_HIDE
            await env.wait_for_page_hide()

        self.state = DetectionState.FINALIZING
        if self._did_window_resize:
            return self._abort("Aborting URL Metric collection due to viewport size change.")

        if extensions:
            await finalize_extensions(
                extensions, FinalizeArgs.for_record(self.record, is_debug=config.is_debug)
            )

        self.state = DetectionState.TRANSMITTING
        # Locked whatever the delivery outcome.
        self.storage_lock.set_lock(env.now_ms())
        await self._transmit(self.record.to_payload())

        self.state = DetectionState.DONE
        return self.state

    async def _observe_initial_viewport(
        self, breadcrumbed_elements: Mapping[Hashable, str]
    ) -> tuple[list[IntersectionEntry], list[LCPCandidate]]:
        env = self.environment
        loop = asyncio.get_running_loop()
        intersections: list[IntersectionEntry] = []
        disconnect = None

        if breadcrumbed_elements:
            # The first callback reports every observed element.
            first_batch: asyncio.Future[None] = loop.create_future()

            def on_intersections(entries: list[IntersectionEntry]) -> None:
                intersections.extend(entries)
                if not first_batch.done():
                    first_batch.set_result(None)

            disconnect = env.observe_intersections(breadcrumbed_elements.keys(), on_intersections)
            await first_batch
            env.add_scroll_listener(disconnect)

        lcp_candidates: list[LCPCandidate] = []
        first_lcp: asyncio.Future[None] = loop.create_future()

        def on_lcp(candidate: LCPCandidate) -> None:
            lcp_candidates.append(candidate)
            if not first_lcp.done():
                first_lcp.set_result(None)

        env.web_vitals.on_lcp(on_lcp, report_all_changes=True)
        await first_lcp

        if disconnect is not None:
            disconnect()

        # Later LCP reports do not alter the record.
        return list(intersections), list(lcp_candidates)

    def _build_record(
        self,
        breadcrumbed_elements: Mapping[Hashable, str],
        intersections: Sequence[IntersectionEntry],
        lcp_candidates: Sequence[LCPCandidate],
    ) -> UrlMetricRecord:
        env = self.environment
        record = UrlMetricRecord(
            url=strip_priming_marker(self.config.url),
            viewport_width=env.viewport_width,
            viewport_height=env.viewport_height,
        )
        lcp_element = lcp_candidates[-1].element if lcp_candidates else None
        candidate_elements = [
            candidate.element for candidate in lcp_candidates if candidate.element is not None
        ]

        for entry in intersections:
            xpath = breadcrumbed_elements.get(entry.target)
            if not xpath:
                if self.config.is_debug:
                    logger.error(f"{LOG_PREFIX} Unable to look up XPath for element")
                continue
            record.add_element(
                {
                    "isLCP": lcp_element is not None and entry.target is lcp_element,
                    "isLCPCandidate": any(
                        entry.target is element for element in candidate_elements
                    ),
                    "xpath": xpath,
                    "intersectionRatio": entry.intersection_ratio,
                    "intersectionRect": entry.intersection_rect.to_dict(),
                    "boundingClientRect": entry.bounding_client_rect.to_dict(),
                }
            )
        return record

    async def _transmit(self, payload: dict[str, Any]) -> None:
        config = self.config
        url = build_submission_url(
            config.rest_api_endpoint, config.slug, config.hmac, prime=self.is_priming
        )
        page = urlsplit(self.environment.current_url)
        headers = {"Origin": f"{page.scheme}://{page.netloc}"}
        self._log(f"Sending URL Metric: {payload}")

        if not self.is_priming:
            self.transport.send_beacon(url, payload, headers=headers)
            return

        try:
            await self.transport.post(url, payload, headers=headers)
        except httpx.HTTPError as e:
            self.environment.post_message_to_parent(PRIME_FAILED_MESSAGE)
            logger.error(f"{LOG_PREFIX} Failed to send URL Metric: {sanitize_error(e)}")
        else:
            self.environment.post_message_to_parent(PRIME_DONE_MESSAGE)

    def _log_stored_collection(self, collection: Mapping[str, Any]) -> None:
        self._log(f"Stored URL Metric Group Collection: {collection}")
        url_metrics = [
            url_metric
            for group in collection.get("groups", [])
            for url_metric in group.get("url_metrics", [])
        ]
        url_metrics.sort(key=lambda url_metric: url_metric["timestamp"], reverse=True)
        self._log(f"Stored URL Metrics in reverse chronological order: {url_metrics}")
