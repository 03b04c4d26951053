"""Page environment seam for the client detection controller.

The controller never touches a browser directly. Everything it needs from the
page (viewport size, readiness events, intersection and LCP observation,
session storage, the parent frame) goes through a ``PageEnvironment``. A real
deployment binds it to a browser automation driver; tests bind it to an
in-memory fake.

Protocol Definitions:
    - PageEnvironment: Page readiness, observation and storage
    - WebVitalsHooks: web-vitals style metric subscription functions
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Mapping, MutableMapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from detective.services.url_metric import DOMRect


@dataclass(frozen=True, slots=True)
class IntersectionEntry:
    """One intersection observer entry for a breadcrumbed element.

    Attributes:
        target: Opaque element handle, compared by identity
        intersection_ratio: Visible fraction of the element in [0, 1]
        intersection_rect: Visible portion of the element
        bounding_client_rect: Full bounds of the element
    """

    target: Hashable
    intersection_ratio: float
    intersection_rect: DOMRect
    bounding_client_rect: DOMRect


@dataclass(frozen=True, slots=True)
class LCPCandidate:
    """An LCP report; ``element`` is the candidate element handle if known."""

    value: float
    element: Hashable | None = None


IntersectionCallback = Callable[[list[IntersectionEntry]], None]


@dataclass(frozen=True, slots=True)
class WebVitalsHooks:
    """Subscription functions mirroring the web-vitals library.

    Each function takes a callback and keyword options, for example
    ``on_lcp(callback, report_all_changes=True)``.
    """

    on_ttfb: Callable[..., None]
    on_fcp: Callable[..., None]
    on_lcp: Callable[..., None]
    on_inp: Callable[..., None]
    on_cls: Callable[..., None]


@runtime_checkable
class PageEnvironment(Protocol):
    """Structural interface of the page a controller runs in."""

    @property
    def current_url(self) -> str: ...

    @property
    def viewport_width(self) -> int: ...

    @property
    def viewport_height(self) -> int: ...

    @property
    def session_storage(self) -> MutableMapping[str, str]: ...

    @property
    def web_vitals(self) -> WebVitalsHooks: ...

    def now_ms(self) -> int:
        """Current wall-clock time in milliseconds."""
        ...

    async def wait_for_dom_ready(self) -> None:
        """Resolve once the DOM is interactive."""
        ...

    async def wait_for_load(self) -> None:
        """Resolve once the load event has fired."""
        ...

    async def wait_for_idle(self) -> None:
        """Resolve once the page reports idle; immediately if idle callbacks are unsupported."""
        ...

    async def wait_for_page_hide(self) -> None:
        """Resolve on pagehide, pageswap or visibility changing to hidden."""
        ...

    def get_scroll_top(self) -> float: ...

    def add_resize_listener(self, callback: Callable[[], None]) -> None:
        """Register a one-shot viewport resize listener."""
        ...

    def add_scroll_listener(self, callback: Callable[[], None]) -> None:
        """Register a one-shot passive scroll listener."""
        ...

    def get_breadcrumbed_elements(self) -> Mapping[Hashable, str]:
        """Map each element annotated with an XPath breadcrumb to its XPath."""
        ...

    def observe_intersections(
        self,
        elements: Iterable[Hashable],
        callback: IntersectionCallback,
    ) -> Callable[[], None]:
        """Observe elements against the viewport with a zero threshold.

        Returns:
            Function that disconnects the observer
        """
        ...

    def post_message_to_parent(self, message: str) -> None: ...
