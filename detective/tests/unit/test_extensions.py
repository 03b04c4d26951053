"""Unit tests for client extension loading and the record accessors."""

from types import ModuleType
from unittest.mock import MagicMock

import pytest

from detective.client.extensions import (
    FinalizeArgs,
    UrlMetricRecord,
    finalize_extensions,
    load_extensions,
    recursive_freeze,
)
from detective.core.exceptions import ReservedKeyError, UnknownElementError

XPATH = "/*[1][self::HTML]/*[2][self::BODY]/*[1][self::IMG]"


@pytest.fixture
def record() -> UrlMetricRecord:
    record = UrlMetricRecord("https://example.com/", 500, 800)
    record.add_element(
        {
            "isLCP": True,
            "isLCPCandidate": True,
            "xpath": XPATH,
            "intersectionRatio": 1.0,
            "intersectionRect": {"x": 0, "y": 0, "width": 10, "height": 10},
            "boundingClientRect": {"x": 0, "y": 0, "width": 10, "height": 10},
        }
    )
    return record


class TestRecursiveFreeze:
    def test_nested_values_frozen(self) -> None:
        frozen = recursive_freeze({"a": [{"b": 1}]})

        with pytest.raises(TypeError):
            frozen["a"] = []  # type: ignore[index]
        assert frozen["a"][0]["b"] == 1
        assert isinstance(frozen["a"], tuple)


class TestUrlMetricRecord:
    def test_snapshots_do_not_alias_record(self, record) -> None:
        snapshot = record.get_root_data()

        record.extend_root_data({"colorScheme": "dark"})

        assert "colorScheme" not in snapshot
        assert record.get_root_data()["colorScheme"] == "dark"

    @pytest.mark.parametrize("key", ["url", "viewport", "elements", "timestamp", "uuid"])
    def test_reserved_root_keys(self, record, key: str) -> None:
        with pytest.raises(ReservedKeyError) as exc_info:
            record.extend_root_data({key: None})

        assert str(exc_info.value) == f"Disallowed setting of key '{key}' on root."

    @pytest.mark.parametrize("key", ["isLCP", "xpath", "intersectionRatio"])
    def test_reserved_element_keys(self, record, key: str) -> None:
        with pytest.raises(ReservedKeyError):
            record.extend_element_data(XPATH, {key: None})

    def test_unknown_xpath(self, record) -> None:
        with pytest.raises(UnknownElementError):
            record.extend_element_data("/*[1][self::HTML]", {"hint": 1})

    def test_element_data_lookup(self, record) -> None:
        record.extend_element_data(XPATH, {"hint": 1})

        assert record.get_element_data(XPATH)["hint"] == 1
        assert record.get_element_data("/*[9][self::P]") is None

    def test_payload_is_plain_copy(self, record) -> None:
        payload = record.to_payload()
        payload["elements"][0]["hint"] = 2

        assert "hint" not in record.get_element_data(XPATH)


class TestLoadExtensions:
    def test_import_failure_skipped(self) -> None:
        extensions = load_extensions(["json", "detective_missing_extension"])

        assert list(extensions) == ["json"]


class TestFinalizeExtensions:
    @pytest.mark.asyncio
    async def test_failures_isolated(self, record) -> None:
        raising_at_start = ModuleType("raising_at_start")
        raising_at_start.finalize = MagicMock(side_effect=RuntimeError("boom"))

        rejecting = ModuleType("rejecting")

        async def reject(args) -> None:
            raise RuntimeError("rejected")

        rejecting.finalize = reject

        working = ModuleType("working")

        async def finalize(args) -> None:
            args.extend_root_data({"ok": True})

        working.finalize = finalize
        without_hook = ModuleType("without_hook")

        await finalize_extensions(
            {
                "raising_at_start": raising_at_start,
                "rejecting": rejecting,
                "working": working,
                "without_hook": without_hook,
            },
            FinalizeArgs.for_record(record, is_debug=False),
        )

        assert record.get_root_data()["ok"] is True
        raising_at_start.finalize.assert_called_once()
