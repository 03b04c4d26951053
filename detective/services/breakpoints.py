"""Breakpoint partitioning of viewport widths into URL Metric groups.

Breakpoints are configured pixel widths marking the boundary between device
classes. A set of N breakpoints partitions viewport widths into N+1 contiguous
half-open ranges:

    [0, b0), [b0, b1), ..., [bn, inf)

A width exactly equal to a breakpoint belongs to the upper range.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ViewportWidthRange:
    """Half-open viewport width range ``[minimum, maximum)``.

    Attributes:
        minimum_viewport_width: Inclusive lower bound
        maximum_viewport_width: Exclusive upper bound, or None when unbounded
    """

    minimum_viewport_width: int
    maximum_viewport_width: int | None

    def contains(self, viewport_width: int) -> bool:
        if viewport_width < self.minimum_viewport_width:
            return False
        return self.maximum_viewport_width is None or viewport_width < self.maximum_viewport_width


def normalize_breakpoints(breakpoints: Iterable[int]) -> tuple[int, ...]:
    """Sort and deduplicate breakpoint widths.

    Args:
        breakpoints: Unordered, possibly duplicated positive integer widths

    Returns:
        Ascending tuple of unique widths

    Raises:
        ValueError: If a breakpoint is not a positive integer
    """
    normalized: set[int] = set()
    for breakpoint in breakpoints:
        if isinstance(breakpoint, bool) or not isinstance(breakpoint, int) or breakpoint < 1:
            raise ValueError(f"Breakpoint must be a positive integer, got: {breakpoint!r}")
        normalized.add(breakpoint)
    return tuple(sorted(normalized))


def partition_viewport_widths(breakpoints: Iterable[int]) -> list[ViewportWidthRange]:
    """Build the ordered list of viewport width ranges for a breakpoint set.

    An empty breakpoint set yields a single range spanning all widths.
    """
    boundaries = normalize_breakpoints(breakpoints)
    ranges: list[ViewportWidthRange] = []
    minimum = 0
    for boundary in boundaries:
        ranges.append(ViewportWidthRange(minimum, boundary))
        minimum = boundary
    ranges.append(ViewportWidthRange(minimum, None))
    return ranges


def get_group_index(breakpoints: tuple[int, ...], viewport_width: int) -> int:
    """Get the 0-based index of the range containing a viewport width.

    The first boundary greater than the width marks the range's upper edge, so
    the index equals the number of boundaries less than or equal to the width.

    Args:
        breakpoints: Normalized (ascending, unique) breakpoints
        viewport_width: Non-negative viewport width

    Returns:
        Index into the list returned by partition_viewport_widths()
    """
    if viewport_width < 0:
        raise ValueError(f"Viewport width must not be negative, got: {viewport_width}")
    return bisect_right(breakpoints, viewport_width)
