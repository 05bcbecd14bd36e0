"""Tests for the bidirectional symbol cache."""

import pytest

from saxo_bridge.providers.models import SaxoAssetType
from saxo_bridge.symbols.cache import SymbolCache
from saxo_bridge.symbols.identity import AssetClass, BrokerInstrumentId, InstrumentIdentity


AAPL = InstrumentIdentity("AAPL", AssetClass.EQUITY)
MSFT = InstrumentIdentity("MSFT", AssetClass.EQUITY)
SPY = InstrumentIdentity("SPY", AssetClass.EQUITY)
AAPL_ID = BrokerInstrumentId(211, SaxoAssetType.STOCK)
MSFT_ID = BrokerInstrumentId(261, SaxoAssetType.STOCK)
SPY_ID = BrokerInstrumentId(36590, SaxoAssetType.ETF)


def test_both_directions():
    cache = SymbolCache()
    cache.put(AAPL, AAPL_ID)

    assert cache.get_broker_id(AAPL) == AAPL_ID
    assert cache.get_identity(AAPL_ID) == AAPL
    assert AAPL in cache
    assert len(cache) == 1


def test_same_uic_different_asset_type_is_distinct():
    cache = SymbolCache()
    cache.put(AAPL, AAPL_ID)
    assert cache.get_identity(BrokerInstrumentId(211, SaxoAssetType.CFD_ON_STOCK)) is None


def test_overwrite_drops_stale_reverse_entry():
    cache = SymbolCache()
    cache.put(AAPL, AAPL_ID)
    cache.put(AAPL, MSFT_ID)

    assert cache.get_broker_id(AAPL) == MSFT_ID
    assert cache.get_identity(AAPL_ID) is None
    assert cache.get_identity(MSFT_ID) == AAPL


def test_lru_eviction_removes_both_directions():
    cache = SymbolCache(max_entries=2)
    cache.put(AAPL, AAPL_ID)
    cache.put(MSFT, MSFT_ID)
    cache.get_broker_id(AAPL)  # AAPL now most recent
    cache.put(SPY, SPY_ID)

    assert len(cache) == 2
    assert cache.get_broker_id(MSFT) is None
    assert cache.get_identity(MSFT_ID) is None
    assert cache.get_broker_id(AAPL) == AAPL_ID
    assert cache.get_identity(SPY_ID) == SPY


def test_clear():
    cache = SymbolCache()
    cache.put(AAPL, AAPL_ID)
    cache.clear()
    assert len(cache) == 0
    assert cache.get_identity(AAPL_ID) is None


def test_invalid_max_entries():
    with pytest.raises(ValueError):
        SymbolCache(max_entries=0)


def test_shared_broker_id_keeps_every_forward_entry():
    """Dated futures of one root share a Uic; the reverse entry follows the last writer."""
    december = InstrumentIdentity("ESZ6", AssetClass.FUTURE, root="ES")
    march = InstrumentIdentity("ESH7", AssetClass.FUTURE, root="ES")
    es_id = BrokerInstrumentId(4321, SaxoAssetType.CONTRACT_FUTURES)
    cache = SymbolCache()

    cache.put(december, es_id)
    cache.put(march, es_id)

    assert cache.get_broker_id(december) == es_id
    assert cache.get_broker_id(march) == es_id
    assert cache.get_identity(es_id) == march
    assert len(cache) == 2
