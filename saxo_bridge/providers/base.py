"""Base types and protocols for broker market data."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from ..utils.timeframes import TimeUnit


@dataclass(frozen=True)
class Bar:
    """One chart sample. Bid/ask variants are only populated for spot FX."""
    ts: datetime  # UTC, start of the sample as reported by the broker
    open: float | None
    high: float | None
    low: float | None
    close: float | None
    volume: float = 0.0

    open_bid: float | None = None
    high_bid: float | None = None
    low_bid: float | None = None
    close_bid: float | None = None
    open_ask: float | None = None
    high_ask: float | None = None
    low_ask: float | None = None
    close_ask: float | None = None


@dataclass(frozen=True)
class QuoteEvent:
    """Level-one quote decoded from a single stream frame."""
    instrument_id: str
    bid: float | None = None
    bid_size: float | None = None
    ask: float | None = None
    ask_size: float | None = None
    last: float | None = None
    last_size: float | None = None
    trade_time: datetime | None = None
    open_interest: float | None = None
    is_delayed: bool = False


@dataclass(frozen=True)
class BarRequestWindow:
    """Closed-open interval [start, end) requested as one chart page."""
    start: datetime
    end: datetime
    unit: TimeUnit
    count: int


class BarSource(Protocol):
    """Anything able to fetch a single page of bars for a window."""

    async def fetch_window(self, window: BarRequestWindow) -> list[Bar]:
        ...
