"""Historical bars for an engine instrument."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import AsyncIterator, Callable

from ..errors import UnsupportedRequest
from ..providers.base import Bar, BarRequestWindow
from ..providers.models import ChartSample, SaxoAssetType
from ..providers.saxo_rest import SaxoApiClient
from ..symbols.identity import BrokerInstrumentId, InstrumentIdentity
from ..symbols.mapper import SymbolResolver
from ..utils.timeframes import TimeUnit, parse_unit, to_utc, unit_to_timedelta
from .paginator import DEFAULT_PAGE_SIZE, Paginator, WindowResult


logger = logging.getLogger(__name__)


class ChartBarSource:
    """Fetches one window of chart samples for a resolved instrument."""

    def __init__(self, api: SaxoApiClient, instrument: BrokerInstrumentId):
        self.api = api
        self.instrument = instrument

    async def fetch_window(self, window: BarRequestWindow) -> list[Bar]:
        # UpTo includes the anchor sample, so anchor on the last sample slot inside [start, end)
        response = await self.api.get_chart(
            asset_type=self.instrument.asset_type,
            uic=self.instrument.uic,
            unit=window.unit,
            time=window.start + unit_to_timedelta(window.unit) * (window.count - 1),
            count=window.count,
        )
        bars = []
        for sample in response.data:
            bar = self._convert_sample_to_bar(sample)
            # Keep windows disjoint even if the broker pads the page
            if window.start <= bar.ts < window.end:
                bars.append(bar)
        return bars

    def _convert_sample_to_bar(self, sample: ChartSample) -> Bar:
        """
        Convert a chart sample to a Bar.

        FX spot samples carry no trade OHLC; their primary OHLC comes from
        the bid series.
        """
        if self.instrument.asset_type == SaxoAssetType.FX_SPOT:
            o, h, l, c = sample.open_bid, sample.high_bid, sample.low_bid, sample.close_bid
        else:
            o, h, l, c = sample.open, sample.high, sample.low, sample.close

        return Bar(
            ts=to_utc(sample.time),
            open=o,
            high=h,
            low=l,
            close=c,
            volume=sample.volume or 0.0,
            open_bid=sample.open_bid,
            high_bid=sample.high_bid,
            low_bid=sample.low_bid,
            close_bid=sample.close_bid,
            open_ask=sample.open_ask,
            high_ask=sample.high_ask,
            low_ask=sample.low_ask,
            close_ask=sample.close_ask,
        )


class HistoryProvider:
    """Resolves an identity and pages through its chart history."""

    def __init__(
        self,
        api: SaxoApiClient,
        resolver: SymbolResolver,
        page_size: int = DEFAULT_PAGE_SIZE,
        on_window: Callable[[WindowResult], None] | None = None,
    ):
        self.api = api
        self.resolver = resolver
        self.page_size = page_size
        self.on_window = on_window

    async def get_history(
        self,
        identity: InstrumentIdentity,
        unit: TimeUnit | str,
        start: datetime,
        end: datetime,
    ) -> AsyncIterator[Bar]:
        """
        Yield bars for [start, end) at the given resolution.

        Raises:
            UnsupportedRequest: options (no chart history) or a resolution
                other than minute/hour/day
            ResolutionError: the identity could not be resolved
        """
        try:
            unit = parse_unit(unit)
        except ValueError as e:
            raise UnsupportedRequest(str(e)) from e

        if identity.is_option:
            raise UnsupportedRequest(f"No historical data for {identity.asset_class.value}: {identity}")

        if to_utc(end) <= to_utc(start):
            logger.warning(f"Empty history range for {identity}: {start} -> {end}")
            return

        instrument = await self.resolver.resolve(identity)
        logger.info(f"Fetching {unit.value} history for {identity} (Uic {instrument.uic}) {start} -> {end}")

        paginator = Paginator(
            ChartBarSource(self.api, instrument),
            page_size=self.page_size,
            on_window=self.on_window,
        )
        async for bar in paginator.iter_bars(start, end, unit):
            yield bar
