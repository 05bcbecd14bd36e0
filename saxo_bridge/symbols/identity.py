"""Engine-side instrument identity and its broker-side counterpart."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum

from ..providers.models import SaxoAssetType


class AssetClass(Enum):
    EQUITY = "equity"
    OPTION = "option"
    FUTURE = "future"
    FOREX = "forex"
    INDEX = "index"
    INDEX_OPTION = "index_option"
    CFD = "cfd"


class OptionRight(Enum):
    CALL = "call"
    PUT = "put"

    @classmethod
    def parse(cls, value: str) -> "OptionRight":
        key = value.strip().lower()
        if key in ("call", "c"):
            return cls.CALL
        if key in ("put", "p"):
            return cls.PUT
        raise ValueError(f"Unknown option right '{value}'")


# Broker asset types tried for each class, highest priority first
ASSET_TYPE_CANDIDATES: dict[AssetClass, tuple[SaxoAssetType, ...]] = {
    AssetClass.EQUITY: (SaxoAssetType.STOCK, SaxoAssetType.ETF),
    AssetClass.OPTION: (SaxoAssetType.STOCK_OPTION,),
    AssetClass.INDEX_OPTION: (SaxoAssetType.STOCK_INDEX_OPTION,),
    AssetClass.FUTURE: (SaxoAssetType.CONTRACT_FUTURES,),
    AssetClass.FOREX: (SaxoAssetType.FX_SPOT,),
    AssetClass.INDEX: (SaxoAssetType.STOCK_INDEX,),
    AssetClass.CFD: (SaxoAssetType.CFD_ON_STOCK,),
}

OPTION_CLASSES = frozenset({AssetClass.OPTION, AssetClass.INDEX_OPTION})


def asset_type_candidates(asset_class: AssetClass) -> tuple[SaxoAssetType, ...]:
    return ASSET_TYPE_CANDIDATES.get(asset_class, ())


def asset_class_for(asset_type: SaxoAssetType) -> AssetClass | None:
    """Inverse of ASSET_TYPE_CANDIDATES."""
    for asset_class, candidates in ASSET_TYPE_CANDIDATES.items():
        if asset_type in candidates:
            return asset_class
    return None


@dataclass(frozen=True)
class InstrumentIdentity:
    """
    Immutable engine-level description of a tradable instrument.

    Hashable so it can be used directly as a cache key.
    """
    ticker: str
    asset_class: AssetClass
    market: str = "usa"
    expiry: date | None = None
    strike: float | None = None
    right: OptionRight | None = None
    underlying: InstrumentIdentity | None = None
    root: str | None = None  # base contract symbol of a dated future, e.g. "ES" for "ESZ4"

    def __post_init__(self) -> None:
        if not self.ticker:
            raise ValueError("ticker is required")
        if self.asset_class == AssetClass.FUTURE and not (self.root or self.underlying):
            raise ValueError(f"future identity needs a root symbol or an underlying: {self.ticker}")
        if self.asset_class in OPTION_CLASSES:
            if self.expiry is None or self.strike is None or self.right is None:
                raise ValueError(
                    f"{self.asset_class.value} identity needs expiry, strike and right: {self.ticker}"
                )
            if self.underlying is None:
                raise ValueError(f"{self.asset_class.value} identity needs an underlying: {self.ticker}")

    @property
    def is_option(self) -> bool:
        return self.asset_class in OPTION_CLASSES

    @property
    def root_symbol(self) -> str:
        """Base contract symbol: the underlying root for futures, else the ticker."""
        if self.asset_class == AssetClass.FUTURE:
            return self.root or self.underlying.ticker
        return self.ticker

    def __str__(self) -> str:
        if self.is_option:
            return f"{self.ticker} {self.expiry:%Y-%m-%d} {self.strike:g} {self.right.value} ({self.asset_class.value})"
        return f"{self.ticker} ({self.asset_class.value})"


@dataclass(frozen=True)
class BrokerInstrumentId:
    """Broker Uic together with the asset type it was resolved under."""
    uic: int
    asset_type: SaxoAssetType

    def __str__(self) -> str:
        return str(self.uic)
