"""
Tests for SymbolResolver.

The broker API is mocked; assertions cover exact and degraded matches,
candidate ordering, option chain lookup (no nearest-strike fallback),
cache behaviour and reverse resolution.
"""

import logging
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from saxo_bridge.errors import BrokerProtocolError, ResolutionError, TransportError
from saxo_bridge.providers.models import (
    InstrumentDetails,
    InstrumentSearchResponse,
    OptionSpaceResponse,
    SaxoAssetType,
)
from saxo_bridge.symbols.cache import SymbolCache
from saxo_bridge.symbols.identity import AssetClass, BrokerInstrumentId, InstrumentIdentity, OptionRight
from saxo_bridge.symbols.mapper import SymbolResolver, exchange_to_market


AAPL = InstrumentIdentity("AAPL", AssetClass.EQUITY)


def search_response(*items) -> InstrumentSearchResponse:
    return InstrumentSearchResponse.model_validate({"Data": list(items)})


def searches_by_type(results: dict) -> AsyncMock:
    """search_instruments mock answering per asset type."""

    async def search(asset_type, keywords):
        return search_response(*results.get(asset_type, []))

    return AsyncMock(side_effect=search)


def make_resolver(**api_methods):
    api = MagicMock()
    api.search_instruments = AsyncMock(return_value=search_response())
    api.get_option_space = AsyncMock()
    api.get_instrument_details = AsyncMock()
    for name, mock in api_methods.items():
        setattr(api, name, mock)
    return SymbolResolver(api, SymbolCache()), api


OPTION_SPACE = OptionSpaceResponse.model_validate({
    "OptionRootId": 18,
    "AssetType": "StockOption",
    "OptionSpace": [
        {
            "Expiry": "2026-12-18T00:00:00Z",
            "SpecificOptions": [
                {"PutCall": "Call", "StrikePrice": 200.0, "Uic": 9001},
                {"PutCall": "Put", "StrikePrice": 200.0, "Uic": 9002},
                {"PutCall": "Call", "StrikePrice": 210.0, "Uic": 9003},
            ],
        },
        {
            "Expiry": "2027-01-15T00:00:00Z",
            "SpecificOptions": [{"PutCall": "Call", "StrikePrice": 200.0, "Uic": 9101}],
        },
    ],
})


def aapl_option(strike=200.0, right=OptionRight.CALL, expiry=date(2026, 12, 18)):
    return InstrumentIdentity(
        "AAPL 261218C00200000",
        AssetClass.OPTION,
        expiry=expiry,
        strike=strike,
        right=right,
        underlying=AAPL,
    )


class TestForwardResolution:
    """Identity -> broker id."""

    @pytest.mark.asyncio
    async def test_exact_match(self):
        resolver, api = make_resolver(search_instruments=searches_by_type({
            SaxoAssetType.STOCK: [
                {"Symbol": "AAPL.OLD", "AssetType": "Stock", "Identifier": 1},
                {"Symbol": "aapl", "AssetType": "Stock", "Identifier": 211},
            ],
        }))

        broker_id = await resolver.resolve(AAPL)

        assert broker_id == BrokerInstrumentId(211, SaxoAssetType.STOCK)
        api.search_instruments.assert_awaited_once_with(SaxoAssetType.STOCK, "AAPL")

    @pytest.mark.asyncio
    async def test_resolution_is_cached(self):
        resolver, api = make_resolver(search_instruments=searches_by_type({
            SaxoAssetType.STOCK: [{"Symbol": "AAPL", "AssetType": "Stock", "Identifier": 211}],
        }))

        first = await resolver.resolve(AAPL)
        second = await resolver.resolve(InstrumentIdentity("AAPL", AssetClass.EQUITY))

        assert first == second
        assert api.search_instruments.await_count == 1
        # Both directions are populated
        assert resolver.cache.get_identity(first) == AAPL

    @pytest.mark.asyncio
    async def test_etf_found_under_second_candidate(self):
        resolver, api = make_resolver(search_instruments=searches_by_type({
            SaxoAssetType.ETF: [{"Symbol": "SPY", "AssetType": "Etf", "Identifier": 36590}],
        }))

        broker_id = await resolver.resolve(InstrumentIdentity("SPY", AssetClass.EQUITY))

        assert broker_id == BrokerInstrumentId(36590, SaxoAssetType.ETF)
        assert [c.args[0] for c in api.search_instruments.await_args_list] == [
            SaxoAssetType.STOCK,
            SaxoAssetType.ETF,
        ]

    @pytest.mark.asyncio
    async def test_degraded_match_logs_warning(self, caplog):
        resolver, _ = make_resolver(search_instruments=searches_by_type({
            SaxoAssetType.STOCK: [
                {"Symbol": "BRK", "AssetType": "Stock", "Identifier": 0},
                {"Symbol": "BRK.B", "AssetType": "Stock", "Identifier": 77, "Description": "Berkshire B"},
            ],
        }))

        with caplog.at_level(logging.WARNING, logger="saxo_bridge.symbols.mapper"):
            broker_id = await resolver.resolve(InstrumentIdentity("BRK", AssetClass.EQUITY))

        assert broker_id.uic == 77
        assert any("Exact match not found" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_no_results(self):
        resolver, _ = make_resolver()

        with pytest.raises(ResolutionError):
            await resolver.resolve(InstrumentIdentity("NOPE", AssetClass.EQUITY))
        assert len(resolver.cache) == 0

    @pytest.mark.asyncio
    async def test_broker_failure_becomes_resolution_error(self):
        resolver, _ = make_resolver(search_instruments=AsyncMock(side_effect=TransportError("timeout")))

        with pytest.raises(ResolutionError):
            await resolver.resolve(AAPL)

    @pytest.mark.asyncio
    async def test_future_searches_root_symbol(self):
        resolver, api = make_resolver(search_instruments=searches_by_type({
            SaxoAssetType.CONTRACT_FUTURES: [{"Symbol": "ES", "AssetType": "ContractFutures", "Identifier": 4321}],
        }))
        future = InstrumentIdentity(
            "ESZ6",
            AssetClass.FUTURE,
            expiry=date(2026, 12, 18),
            root="ES",
        )

        broker_id = await resolver.resolve(future)

        assert broker_id == BrokerInstrumentId(4321, SaxoAssetType.CONTRACT_FUTURES)
        api.search_instruments.assert_awaited_once_with(SaxoAssetType.CONTRACT_FUTURES, "ES")

    @pytest.mark.asyncio
    async def test_dated_futures_of_one_root_stay_cached(self):
        """ESZ6 and ESH7 share a Uic; resolving them alternately hits the broker once each."""
        resolver, api = make_resolver(search_instruments=searches_by_type({
            SaxoAssetType.CONTRACT_FUTURES: [{"Symbol": "ES", "AssetType": "ContractFutures", "Identifier": 4321}],
        }))
        december = InstrumentIdentity("ESZ6", AssetClass.FUTURE, expiry=date(2026, 12, 18), root="ES")
        march = InstrumentIdentity("ESH7", AssetClass.FUTURE, expiry=date(2027, 3, 19), root="ES")

        for identity in (december, march, december, march):
            assert (await resolver.resolve(identity)).uic == 4321

        assert api.search_instruments.await_count == 2

    def test_future_requires_root(self):
        with pytest.raises(ValueError):
            InstrumentIdentity("ESZ6", AssetClass.FUTURE, expiry=date(2026, 12, 18))

    @pytest.mark.asyncio
    async def test_forex(self):
        resolver, api = make_resolver(search_instruments=searches_by_type({
            SaxoAssetType.FX_SPOT: [{"Symbol": "EURUSD", "AssetType": "FxSpot", "Identifier": 21}],
        }))

        broker_id = await resolver.resolve(InstrumentIdentity("EURUSD", AssetClass.FOREX))

        assert broker_id == BrokerInstrumentId(21, SaxoAssetType.FX_SPOT)


class TestOptionResolution:
    """Options go through the underlying's option space."""

    def make(self, underlying_item=None):
        item = underlying_item or {"Symbol": "AAPL", "AssetType": "Stock", "Identifier": 211, "GroupOptionRootId": 18}
        return make_resolver(
            search_instruments=searches_by_type({SaxoAssetType.STOCK: [item]}),
            get_option_space=AsyncMock(return_value=OPTION_SPACE),
        )

    @pytest.mark.asyncio
    async def test_resolves_contract(self):
        resolver, api = self.make()

        broker_id = await resolver.resolve(aapl_option())

        assert broker_id == BrokerInstrumentId(9001, SaxoAssetType.STOCK_OPTION)
        api.get_option_space.assert_awaited_once_with(18)
        # Underlying cached along the way
        assert resolver.cache.get_broker_id(AAPL) == BrokerInstrumentId(211, SaxoAssetType.STOCK)

    @pytest.mark.asyncio
    async def test_put_selected_by_right(self):
        resolver, _ = self.make()
        broker_id = await resolver.resolve(aapl_option(right=OptionRight.PUT))
        assert broker_id.uic == 9002

    @pytest.mark.asyncio
    async def test_missing_strike_has_no_fallback(self):
        resolver, _ = self.make()

        with pytest.raises(ResolutionError):
            await resolver.resolve(aapl_option(strike=205.0))
        assert resolver.cache.get_broker_id(aapl_option(strike=205.0)) is None

    @pytest.mark.asyncio
    async def test_missing_expiry(self):
        resolver, _ = self.make()

        with pytest.raises(ResolutionError):
            await resolver.resolve(aapl_option(expiry=date(2026, 11, 20)))

    @pytest.mark.asyncio
    async def test_underlying_without_option_root(self):
        resolver, api = self.make({"Symbol": "AAPL", "AssetType": "Stock", "Identifier": 211})

        with pytest.raises(ResolutionError):
            await resolver.resolve(aapl_option())
        api.get_option_space.assert_not_awaited()

    def test_option_identity_requires_contract_fields(self):
        with pytest.raises(ValueError):
            InstrumentIdentity("AAPL C", AssetClass.OPTION, underlying=AAPL)


class TestReverseResolution:
    """Broker id -> identity."""

    @pytest.mark.asyncio
    async def test_reverse_equity_then_forward_hits_cache(self):
        details = InstrumentDetails.model_validate({
            "Uic": 211,
            "AssetType": "Stock",
            "Symbol": "AAPL",
            "Exchange": {"ExchangeId": "NASDAQ"},
        })
        resolver, api = make_resolver(get_instrument_details=AsyncMock(return_value=details))

        identity = await resolver.reverse_resolve("211", SaxoAssetType.STOCK)

        assert identity == InstrumentIdentity("AAPL", AssetClass.EQUITY, market="usa")
        assert await resolver.resolve(identity) == BrokerInstrumentId(211, SaxoAssetType.STOCK)
        api.search_instruments.assert_not_awaited()

        again = await resolver.reverse_resolve(211, AssetClass.EQUITY)
        assert again == identity
        api.get_instrument_details.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_class_hint_finds_etf_cached_under_second_candidate(self):
        resolver, api = make_resolver(search_instruments=searches_by_type({
            SaxoAssetType.ETF: [{"Symbol": "SPY", "AssetType": "Etf", "Identifier": 36590}],
        }))
        spy = InstrumentIdentity("SPY", AssetClass.EQUITY)
        await resolver.resolve(spy)

        assert await resolver.reverse_resolve(36590, AssetClass.EQUITY) == spy
        api.get_instrument_details.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_class_hint_tries_next_asset_type_on_broker_error(self):
        etf_details = InstrumentDetails.model_validate({"Uic": 36590, "AssetType": "Etf", "Symbol": "SPY"})

        async def details(uic, asset_type):
            if asset_type == SaxoAssetType.STOCK:
                raise BrokerProtocolError("Instrument not found", status=404, error_code="IllegalInstrumentId")
            return etf_details

        resolver, api = make_resolver(get_instrument_details=AsyncMock(side_effect=details))

        identity = await resolver.reverse_resolve(36590, AssetClass.EQUITY)

        assert identity == InstrumentIdentity("SPY", AssetClass.EQUITY)
        assert [c.args[1] for c in api.get_instrument_details.await_args_list] == [
            SaxoAssetType.STOCK,
            SaxoAssetType.ETF,
        ]
        assert resolver.cache.get_broker_id(identity) == BrokerInstrumentId(36590, SaxoAssetType.ETF)

    @pytest.mark.asyncio
    async def test_reverse_future_keeps_root(self):
        details = InstrumentDetails.model_validate({
            "Uic": 4321,
            "AssetType": "ContractFutures",
            "Symbol": "ESZ6",
            "UnderlyingSymbol": "ES",
            "ExpiryDate": "2026-12-18T00:00:00Z",
        })
        resolver, _ = make_resolver(get_instrument_details=AsyncMock(return_value=details))

        identity = await resolver.reverse_resolve(4321, SaxoAssetType.CONTRACT_FUTURES)

        assert identity.root_symbol == "ES"
        assert identity.expiry == date(2026, 12, 18)

    @pytest.mark.asyncio
    async def test_invalid_uic(self):
        resolver, api = make_resolver()

        with pytest.raises(ResolutionError):
            await resolver.reverse_resolve("not-a-uic", SaxoAssetType.STOCK)
        api.get_instrument_details.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reverse_option_resolves_underlying(self):
        option_details = InstrumentDetails.model_validate({
            "Uic": 9001,
            "AssetType": "StockOption",
            "Symbol": "AAPL/18Z26C200",
            "ExpiryDate": "2026-12-18T00:00:00Z",
            "StrikePrice": 200.0,
            "PutCall": "Call",
            "UnderlyingUic": 211,
        })
        stock_details = InstrumentDetails.model_validate({"Uic": 211, "AssetType": "Stock", "Symbol": "AAPL"})

        async def details(uic, asset_type):
            return option_details if uic == 9001 else stock_details

        resolver, _ = make_resolver(get_instrument_details=AsyncMock(side_effect=details))

        identity = await resolver.reverse_resolve(9001, SaxoAssetType.STOCK_OPTION)

        assert identity.asset_class == AssetClass.OPTION
        assert identity.expiry == date(2026, 12, 18)
        assert identity.strike == 200.0
        assert identity.right == OptionRight.CALL
        assert identity.underlying == AAPL

    @pytest.mark.asyncio
    async def test_incomplete_option_details(self):
        details = InstrumentDetails.model_validate({"Uic": 9001, "AssetType": "StockOption", "Symbol": "AAPL/X"})
        resolver, _ = make_resolver(get_instrument_details=AsyncMock(return_value=details))

        with pytest.raises(ResolutionError):
            await resolver.reverse_resolve(9001, SaxoAssetType.STOCK_OPTION)

    @pytest.mark.asyncio
    async def test_lookup_failure(self):
        resolver, _ = make_resolver(get_instrument_details=AsyncMock(side_effect=TransportError("down")))

        with pytest.raises(ResolutionError):
            await resolver.reverse_resolve(211, SaxoAssetType.STOCK)


@pytest.mark.parametrize("exchange,market", [
    ("NASDAQ", "usa"),
    ("nyse", "usa"),
    ("EUREX", "eurex"),
    ("XETR", "xetr"),
    (None, "usa"),
])
def test_exchange_to_market(exchange, market):
    assert exchange_to_market(exchange) == market
