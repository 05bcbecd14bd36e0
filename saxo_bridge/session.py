"""Wiring of token store, transport, REST client, resolver, history and stream."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import AsyncIterator, Callable, Iterable

import aiohttp

from .auth.token_store import Token, TokenStore, load_token_file
from .auth.transport import AuthenticatedTransport
from .config import Settings, get_settings
from .history.paginator import WindowResult
from .history.provider import HistoryProvider
from .providers.base import Bar, QuoteEvent
from .providers.models import ClientDetails
from .providers.saxo_rest import SaxoApiClient
from .providers.saxo_stream import SaxoQuoteStreamer
from .symbols.cache import SymbolCache
from .symbols.identity import BrokerInstrumentId, InstrumentIdentity
from .symbols.mapper import SymbolResolver
from .utils.timeframes import TimeUnit


logger = logging.getLogger(__name__)


class SaxoSession:
    """
    Owns one HTTP session and every component riding on it.

    Usage:
        async with SaxoSession(settings) as saxo:
            uic = await saxo.resolve(identity)
            async for bar in saxo.get_history(identity, "minute", start, end):
                ...
    """

    def __init__(self, settings: Settings | None = None, session: aiohttp.ClientSession | None = None):
        self.settings = settings or get_settings()
        self._session = session
        self._owns_session = session is None

        self.token_store: TokenStore | None = None
        self.transport: AuthenticatedTransport | None = None
        self.api: SaxoApiClient | None = None
        self.resolver: SymbolResolver | None = None
        self.history: HistoryProvider | None = None

    async def __aenter__(self) -> "SaxoSession":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self) -> None:
        s = self.settings
        initial_token = self._initial_token()
        if self._session is None:
            self._session = aiohttp.ClientSession()

        try:
            self._wire(initial_token)
        except BaseException:
            await self.close()
            raise
        logger.info(f"Saxo session ready ({s.api_base_url})")

    def _wire(self, initial_token: Token | None) -> None:
        s = self.settings
        self.token_store = TokenStore(
            self._session,
            auth_base_url=s.auth_base_url,
            app_key=s.app_key,
            app_secret=s.app_secret,
            redirect_uri=s.redirect_uri,
            token=initial_token,
            refresh_token=s.refresh_token,
            authorization_code=s.authorization_code,
            code_verifier=s.code_verifier,
            refresh_skew_seconds=s.token_refresh_skew_seconds,
            timeout_seconds=s.request_timeout_seconds,
        )
        self.transport = AuthenticatedTransport(
            self._session,
            self.token_store,
            max_attempts=s.max_attempts,
            retry_interval=s.retry_interval_seconds,
            timeout_seconds=s.request_timeout_seconds,
        )
        self.api = SaxoApiClient(
            self.transport,
            base_url=s.api_base_url,
            stream_base_url=s.get_stream_base_url(),
            quote_stream_path=s.quote_stream_path,
        )
        self.resolver = SymbolResolver(self.api, SymbolCache(s.symbol_cache_max_entries))
        self.history = HistoryProvider(self.api, self.resolver, page_size=s.get_chart_page_size())

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    def _initial_token(self) -> Token | None:
        s = self.settings
        if s.token_path:
            return load_token_file(s.token_path)
        if s.access_token:
            return Token(access_token=s.access_token, refresh_token=s.refresh_token)
        if not s.has_refresh_credentials():
            logger.warning("No access token, refresh token or authorization code configured.")
        return None

    async def resolve(self, identity: InstrumentIdentity) -> BrokerInstrumentId:
        return await self.resolver.resolve(identity)

    async def reverse_resolve(self, broker_id: BrokerInstrumentId) -> InstrumentIdentity:
        return await self.resolver.reverse_resolve(broker_id.uic, broker_id.asset_type)

    async def check_connection(self) -> ClientDetails:
        """Fetch the logged-in client; fails fast on bad credentials or endpoints."""
        details = await self.api.get_client_details()
        logger.info(f"Connected as client {details.client_key} (default account {details.default_account_id})")
        return details

    def get_history(
        self,
        identity: InstrumentIdentity,
        unit: TimeUnit | str,
        start: datetime,
        end: datetime,
        on_window: Callable[[WindowResult], None] | None = None,
    ) -> AsyncIterator[Bar]:
        provider = self.history
        if on_window is not None:
            provider = HistoryProvider(
                self.api, self.resolver, page_size=self.settings.get_chart_page_size(), on_window=on_window
            )
        return provider.get_history(identity, unit, start, end)

    def stream_quotes(
        self,
        tickers: Iterable[str],
        stop_event: asyncio.Event | None = None,
    ) -> AsyncIterator[QuoteEvent]:
        streamer = SaxoQuoteStreamer(
            self.api,
            tickers,
            enable_delayed_data=self.settings.enable_delayed_streaming_data,
        )
        return streamer.stream_quotes(stop_event)
