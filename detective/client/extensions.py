"""Client extension loading and the extension hook protocol.

An extension is an importable module exposing an optional
``initialize(args)`` and/or ``finalize(args)`` function. Either may be a
coroutine function or return an awaitable; either may return nothing.

All initialize calls start together and are joined with all-settled
semantics: a failing extension is logged and never blocks the others or the
controller. Finalize calls fan out the same way once the URL Metric record is
assembled, receiving read accessors that return frozen snapshots and extend
accessors guarded against overwriting reserved keys.

Example extension module:

    async def finalize(args: FinalizeArgs) -> None:
        root = args.get_root_data()
        for element in root["elements"]:
            if element["isLCP"]:
                args.extend_element_data(element["xpath"], {"lcpHint": True})
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType, ModuleType
from typing import Any

from detective.core.exceptions import ReservedKeyError, UnknownElementError
from detective.core.logging import get_logger
from detective.services.url_metric import (
    RESERVED_ELEMENT_KEYS,
    RESERVED_ROOT_KEYS,
    SERVER_ROOT_KEYS,
)

logger = get_logger(__name__)


def recursive_freeze(value: Any) -> Any:
    """Return a read-only deep copy: mappings become proxies, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: recursive_freeze(item) for key, item in value.items()})
    if isinstance(value, list | tuple):
        return tuple(recursive_freeze(item) for item in value)
    return value


class UrlMetricRecord:
    """The live URL Metric being assembled by one controller.

    Extensions only ever see frozen snapshots of the record; mutation goes
    through ``extend_root_data`` and ``extend_element_data``.
    """

    def __init__(self, url: str, viewport_width: int, viewport_height: int) -> None:
        self._root: dict[str, Any] = {
            "url": url,
            "viewport": {"width": viewport_width, "height": viewport_height},
            "elements": [],
        }
        self._elements_by_xpath: dict[str, dict[str, Any]] = {}

    def add_element(self, element_data: dict[str, Any]) -> None:
        self._root["elements"].append(element_data)
        self._elements_by_xpath[element_data["xpath"]] = element_data

    def get_root_data(self) -> Mapping[str, Any]:
        return recursive_freeze(self._root)

    def get_element_data(self, xpath: str) -> Mapping[str, Any] | None:
        element_data = self._elements_by_xpath.get(xpath)
        if element_data is None:
            return None
        return recursive_freeze(element_data)

    def extend_root_data(self, properties: Mapping[str, Any]) -> None:
        """Attach additional top-level properties.

        Raises:
            ReservedKeyError: If any key is url, viewport or elements, or one
                the server sets itself (timestamp, uuid)
        """
        for key in properties:
            if key in RESERVED_ROOT_KEYS or key in SERVER_ROOT_KEYS:
                raise ReservedKeyError(key, "root")
        self._root.update(properties)

    def extend_element_data(self, xpath: str, properties: Mapping[str, Any]) -> None:
        """Attach additional properties to the element with the given XPath.

        Raises:
            UnknownElementError: If no observed element has the XPath
            ReservedKeyError: If any key is one of the reserved element keys
        """
        if xpath not in self._elements_by_xpath:
            raise UnknownElementError(xpath)
        for key in properties:
            if key in RESERVED_ELEMENT_KEYS:
                raise ReservedKeyError(key, "element")
        self._elements_by_xpath[xpath].update(properties)

    def to_payload(self) -> dict[str, Any]:
        """Plain JSON-serializable copy of the record for transmission."""
        return {
            **self._root,
            "viewport": dict(self._root["viewport"]),
            "elements": [dict(element) for element in self._root["elements"]],
        }


@dataclass(frozen=True, slots=True)
class InitializeArgs:
    is_debug: bool
    on_ttfb: Callable[..., None]
    on_fcp: Callable[..., None]
    on_lcp: Callable[..., None]
    on_inp: Callable[..., None]
    on_cls: Callable[..., None]


@dataclass(frozen=True, slots=True)
class FinalizeArgs:
    is_debug: bool
    get_root_data: Callable[[], Mapping[str, Any]]
    get_element_data: Callable[[str], Mapping[str, Any] | None]
    extend_root_data: Callable[[Mapping[str, Any]], None]
    extend_element_data: Callable[[str, Mapping[str, Any]], None]

    @classmethod
    def for_record(cls, record: UrlMetricRecord, *, is_debug: bool) -> FinalizeArgs:
        return cls(
            is_debug=is_debug,
            get_root_data=record.get_root_data,
            get_element_data=record.get_element_data,
            extend_root_data=record.extend_root_data,
            extend_element_data=record.extend_element_data,
        )


def load_extensions(module_paths: Iterable[str]) -> dict[str, ModuleType]:
    """Import extension modules, skipping (and logging) any that fail to import."""
    extensions: dict[str, ModuleType] = {}
    for module_path in module_paths:
        try:
            extensions[module_path] = importlib.import_module(module_path)
        except Exception as e:
            logger.error(f"Failed to load extension '{module_path}': {e!r}")
    return extensions


async def _run_hook(
    extensions: Mapping[str, ModuleType],
    hook_name: str,
    args: InitializeArgs | FinalizeArgs,
) -> None:
    pending: list[Awaitable[Any]] = []
    pending_paths: list[str] = []

    for module_path, extension in extensions.items():
        hook = getattr(extension, hook_name, None)
        if not callable(hook):
            continue
        try:
            result = hook(args)
        except Exception as e:
            logger.error(f"Unable to start {hook_name} of extension '{module_path}': {e!r}")
            continue
        if inspect.isawaitable(result):
            pending.append(result)
            pending_paths.append(module_path)

    results = await asyncio.gather(*pending, return_exceptions=True)
    for module_path, result in zip(pending_paths, results, strict=True):
        if isinstance(result, BaseException):
            logger.error(f"Failed to {hook_name} extension '{module_path}': {result!r}")


async def initialize_extensions(
    extensions: Mapping[str, ModuleType], args: InitializeArgs
) -> None:
    await _run_hook(extensions, "initialize", args)


async def finalize_extensions(extensions: Mapping[str, ModuleType], args: FinalizeArgs) -> None:
    await _run_hook(extensions, "finalize", args)
