"""
Split a historical date range into bounded chart requests.

The broker returns at most `page_size` samples per chart call, so a range
[start, end) is tiled into consecutive windows of `page_size` units, the
last one holding only the remainder. Bars are produced lazily: the request
for a window is only issued once the previous window has been consumed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, Iterator

from ..errors import AuthError, BrokerProtocolError, DecodeError, TransportError
from ..providers.base import Bar, BarRequestWindow, BarSource
from ..utils.timeframes import TimeUnit, span_in_units, to_utc, unit_to_timedelta


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1200

# Failures that turn a single window into an empty one
WINDOW_ERRORS = (TransportError, AuthError, BrokerProtocolError, DecodeError)


@dataclass(frozen=True)
class WindowResult:
    """Outcome of one window request, reported to `on_window` callbacks."""
    window: BarRequestWindow
    bar_count: int
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def iter_windows(
    start: datetime,
    end: datetime,
    unit: TimeUnit,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Iterator[BarRequestWindow]:
    """
    Yield windows that exactly tile [start, end).

    Every window but the last spans `page_size` units. The last one requests
    only the remaining number of samples (rounded up when the range is not a
    whole number of units).
    """
    if page_size < 1:
        raise ValueError(f"page_size must be positive, got {page_size}")

    start = to_utc(start)
    end = to_utc(end)
    step = unit_to_timedelta(unit) * page_size

    cursor = start
    while cursor < end:
        window_end = min(cursor + step, end)
        if window_end - cursor == step:
            count = page_size
        else:
            count = math.ceil(span_in_units(window_end - cursor, unit))
        yield BarRequestWindow(start=cursor, end=window_end, unit=unit, count=count)
        cursor = window_end


class Paginator:
    """Drives a BarSource across all windows of a range."""

    def __init__(
        self,
        source: BarSource,
        page_size: int = DEFAULT_PAGE_SIZE,
        on_window: Callable[[WindowResult], None] | None = None,
    ):
        self.source = source
        self.page_size = page_size
        self.on_window = on_window

    async def iter_bars(self, start: datetime, end: datetime, unit: TimeUnit) -> AsyncIterator[Bar]:
        """
        Lazily yield bars for [start, end).

        A window whose request fails is logged and skipped; pagination goes
        on with the next window.
        """
        for window in iter_windows(start, end, unit, self.page_size):
            try:
                bars = await self.source.fetch_window(window)
            except WINDOW_ERRORS as e:
                logger.error(
                    f"Failed to retrieve bars for window {window.start} -> {window.end} "
                    f"({window.count} x {unit.value}): {e}"
                )
                self._report(WindowResult(window=window, bar_count=0, error=e))
                continue

            self._report(WindowResult(window=window, bar_count=len(bars)))
            for bar in bars:
                yield bar

    def _report(self, result: WindowResult) -> None:
        if self.on_window:
            self.on_window(result)
