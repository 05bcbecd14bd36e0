"""Broker live quote stream implementation."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Iterable

import aiohttp
from pydantic import ValidationError

from ..errors import BrokerProtocolError, DecodeError, TransportError
from .base import QuoteEvent
from .models import ErrorEnvelope, QuoteFrame
from .saxo_rest import SaxoApiClient


logger = logging.getLogger(__name__)

HEARTBEAT_MARKER = "heartbeat"
GO_AWAY_MARKER = "goaway"


class SaxoQuoteStreamer:
    """
    Reads the newline-delimited quote stream for a fixed set of tickers.

    One stream per subscription set; once stopped it cannot be resumed.
    """

    def __init__(
        self,
        api: SaxoApiClient,
        tickers: Iterable[str],
        enable_delayed_data: bool = False,
    ):
        """
        Initialize quote streamer.

        Args:
            api: REST client used to open the streaming request
            tickers: Broker tickers to subscribe to
            enable_delayed_data: If False, log a warning the first time an
                instrument reports delayed quotes
        """
        self.api = api
        self.tickers = list(dict.fromkeys(tickers))
        self.enable_delayed_data = enable_delayed_data
        self._delay_reported: set[str] = set()

    async def stream_quotes(self, stop_event: asyncio.Event | None = None) -> AsyncIterator[QuoteEvent]:
        """
        Yield quote events until the server closes the stream, sends a
        go-away frame, or `stop_event` is set.

        Heartbeat frames are skipped. A frame that cannot be decoded raises
        DecodeError and ends the stream.
        """
        if not self.tickers:
            logger.warning("No tickers given. Quote stream not started.")
            return

        logger.info(f"Opening quote stream for {self.tickers}")
        response = await self.api.open_quote_stream(self.tickers)

        try:
            while True:
                try:
                    line = await self._read_line(response, stop_event)
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    logger.error(f"Quote stream read failed: {e}")
                    raise TransportError(f"Quote stream read failed: {e}") from e
                if line is None:
                    logger.info("Quote stream stopped by caller.")
                    return
                if not line:
                    logger.info("Quote stream closed by server.")
                    return

                try:
                    text = line.decode("utf-8").strip()
                except UnicodeDecodeError as e:
                    raise DecodeError(f"Quote stream frame is not UTF-8: {e}") from e
                if not text:
                    continue

                lowered = text.lower()
                if HEARTBEAT_MARKER in lowered:
                    logger.debug("Quote stream heartbeat received")
                    continue
                if GO_AWAY_MARKER in lowered:
                    logger.info(f"Quote stream go-away received: {text}")
                    return

                yield self._decode_frame(text)
        finally:
            response.close()

    async def _read_line(
        self,
        response: aiohttp.ClientResponse,
        stop_event: asyncio.Event | None,
    ) -> bytes | None:
        """Next raw line, b"" at end of stream, None once stop_event is set."""
        if stop_event is None:
            return await response.content.readline()
        if stop_event.is_set():
            return None

        read_task = asyncio.ensure_future(response.content.readline())
        stop_task = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({read_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (read_task, stop_task):
                if not task.done():
                    task.cancel()

        if stop_task.done() and not stop_task.cancelled():
            return None
        return read_task.result()

    def _decode_frame(self, text: str) -> QuoteEvent:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DecodeError(f"Invalid quote frame: {text[:200]}") from e
        if not isinstance(data, dict):
            raise DecodeError(f"Unexpected quote frame: {text[:200]}")

        if "Symbol" not in data and ("Error" in data or "ErrorCode" in data):
            envelope = ErrorEnvelope.model_validate(data)
            raise BrokerProtocolError(
                envelope.text or "Quote stream error",
                account_id=envelope.account_id,
                error_code=envelope.code,
            )

        try:
            frame = QuoteFrame.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Malformed quote frame: {e}") from e

        is_delayed = bool(frame.market_flags and frame.market_flags.is_delayed)
        if is_delayed and not self.enable_delayed_data and frame.symbol not in self._delay_reported:
            self._delay_reported.add(frame.symbol)
            logger.warning(
                f"Detected delayed streaming data for {frame.symbol} while delayed data is disabled."
            )

        return QuoteEvent(
            instrument_id=frame.symbol,
            bid=frame.bid,
            bid_size=frame.bid_size,
            ask=frame.ask,
            ask_size=frame.ask_size,
            last=frame.last,
            last_size=frame.last_size,
            trade_time=frame.trade_time,
            open_interest=frame.daily_open_interest,
            is_delayed=is_delayed,
        )
