"""Wire payloads returned by the broker REST API.

Every model is lenient: the broker omits or nulls many fields depending on
asset type and entitlements, so all non-essential fields default to None.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SaxoAssetType(str, Enum):
    """Broker asset types this layer knows how to resolve."""
    STOCK = "Stock"
    ETF = "Etf"
    STOCK_OPTION = "StockOption"
    STOCK_INDEX = "StockIndex"
    STOCK_INDEX_OPTION = "StockIndexOption"
    CONTRACT_FUTURES = "ContractFutures"
    FX_SPOT = "FxSpot"
    CFD_ON_STOCK = "CfdOnStock"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "SaxoAssetType":
        for member in cls:
            if isinstance(value, str) and member.value.lower() == value.lower():
                return member
        return cls.UNKNOWN


class SaxoModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ErrorInfo(SaxoModel):
    error_code: str | None = Field(default=None, alias="ErrorCode")
    message: str | None = Field(default=None, alias="Message")


class ErrorEnvelope(SaxoModel):
    """Structured broker error, either top level or as an Errors list."""
    account_id: str | None = Field(default=None, alias="AccountID")
    error: str | None = Field(default=None, alias="Error")
    error_code: str | None = Field(default=None, alias="ErrorCode")
    message: str | None = Field(default=None, alias="Message")
    error_info: ErrorInfo | None = Field(default=None, alias="ErrorInfo")
    errors: list[ErrorInfo] | None = Field(default=None, alias="Errors")

    @property
    def code(self) -> str | None:
        if self.error_code or self.error:
            return self.error_code or self.error
        if self.error_info is not None:
            return self.error_info.error_code
        if self.errors:
            return self.errors[0].error_code
        return None

    @property
    def text(self) -> str | None:
        if self.message:
            return self.message
        if self.error_info is not None and self.error_info.message:
            return self.error_info.message
        if self.errors:
            return "; ".join(e.message or e.error_code or "" for e in self.errors)
        return None


class TokenResponse(SaxoModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    refresh_token_expires_in: int | None = None


class ClientDetails(SaxoModel):
    client_id: str | None = Field(default=None, alias="ClientId")
    client_key: str | None = Field(default=None, alias="ClientKey")
    default_account_id: str | None = Field(default=None, alias="DefaultAccountId")
    default_currency: str | None = Field(default=None, alias="DefaultCurrency")
    name: str | None = Field(default=None, alias="Name")


class InstrumentSummary(SaxoModel):
    asset_type: str | None = Field(default=None, alias="AssetType")
    currency_code: str | None = Field(default=None, alias="CurrencyCode")
    description: str | None = Field(default=None, alias="Description")
    exchange_id: str | None = Field(default=None, alias="ExchangeId")
    group_option_root_id: int | None = Field(default=None, alias="GroupOptionRootId")
    identifier: int = Field(default=0, alias="Identifier")
    primary_listing: int | None = Field(default=None, alias="PrimaryListing")
    summary_type: str | None = Field(default=None, alias="SummaryType")
    symbol: str | None = Field(default=None, alias="Symbol")
    tradable_as: list[str] | None = Field(default=None, alias="TradableAs")


class InstrumentSearchResponse(SaxoModel):
    count: int | None = Field(default=None, alias="__count")
    next: str | None = Field(default=None, alias="__next")
    data: list[InstrumentSummary] = Field(default_factory=list, alias="Data")


class ExchangeSummary(SaxoModel):
    exchange_id: str | None = Field(default=None, alias="ExchangeId")
    name: str | None = Field(default=None, alias="Name")
    country_code: str | None = Field(default=None, alias="CountryCode")


class InstrumentDetails(SaxoModel):
    uic: int | None = Field(default=None, alias="Uic")
    asset_type: str | None = Field(default=None, alias="AssetType")
    symbol: str | None = Field(default=None, alias="Symbol")
    description: str | None = Field(default=None, alias="Description")
    currency_code: str | None = Field(default=None, alias="CurrencyCode")
    exchange: ExchangeSummary | None = Field(default=None, alias="Exchange")
    # Derivative fields, absent for cash instruments
    expiry_date: datetime | None = Field(default=None, alias="ExpiryDate")
    strike_price: float | None = Field(default=None, alias="StrikePrice")
    put_call: str | None = Field(default=None, alias="PutCall")
    underlying_uic: int | None = Field(default=None, alias="UnderlyingUic")
    underlying_symbol: str | None = Field(default=None, alias="UnderlyingSymbol")


class SpecificOption(SaxoModel):
    put_call: str = Field(alias="PutCall")
    strike_price: float = Field(alias="StrikePrice")
    uic: int = Field(alias="Uic")
    trading_status: str | None = Field(default=None, alias="TradingStatus")
    underlying_uic: int | None = Field(default=None, alias="UnderlyingUic")


class ContractOptionEntry(SaxoModel):
    expiry: datetime = Field(alias="Expiry")
    display_expiry: datetime | None = Field(default=None, alias="DisplayExpiry")
    last_trade_date: datetime | None = Field(default=None, alias="LastTradeDate")
    specific_options: list[SpecificOption] = Field(default_factory=list, alias="SpecificOptions")


class OptionSpaceResponse(SaxoModel):
    option_root_id: int | None = Field(default=None, alias="OptionRootId")
    asset_type: str | None = Field(default=None, alias="AssetType")
    symbol: str | None = Field(default=None, alias="Symbol")
    option_space: list[ContractOptionEntry] = Field(default_factory=list, alias="OptionSpace")


class ChartSample(SaxoModel):
    time: datetime = Field(alias="Time")
    open: float | None = Field(default=None, alias="Open")
    high: float | None = Field(default=None, alias="High")
    low: float | None = Field(default=None, alias="Low")
    close: float | None = Field(default=None, alias="Close")
    volume: float | None = Field(default=None, alias="Volume")
    open_bid: float | None = Field(default=None, alias="OpenBid")
    high_bid: float | None = Field(default=None, alias="HighBid")
    low_bid: float | None = Field(default=None, alias="LowBid")
    close_bid: float | None = Field(default=None, alias="CloseBid")
    open_ask: float | None = Field(default=None, alias="OpenAsk")
    high_ask: float | None = Field(default=None, alias="HighAsk")
    low_ask: float | None = Field(default=None, alias="LowAsk")
    close_ask: float | None = Field(default=None, alias="CloseAsk")


class ChartResponse(SaxoModel):
    data: list[ChartSample] = Field(default_factory=list, alias="Data")
    data_version: int | None = Field(default=None, alias="DataVersion")


class MarketFlags(SaxoModel):
    is_delayed: bool | None = Field(default=None, alias="IsDelayed")


class QuoteFrame(SaxoModel):
    symbol: str = Field(alias="Symbol")
    bid: float | None = Field(default=None, alias="Bid")
    bid_size: float | None = Field(default=None, alias="BidSize")
    ask: float | None = Field(default=None, alias="Ask")
    ask_size: float | None = Field(default=None, alias="AskSize")
    last: float | None = Field(default=None, alias="Last")
    last_size: float | None = Field(default=None, alias="LastSize")
    trade_time: datetime | None = Field(default=None, alias="TradeTime")
    daily_open_interest: float | None = Field(default=None, alias="DailyOpenInterest")
    market_flags: MarketFlags | None = Field(default=None, alias="MarketFlags")
