"""
Mapping between engine instrument identities and broker Uics.

Resolution strategy by asset class:
- equity/ETF, index, CFD, spot FX: keyword search by ticker
- future: keyword search by the root contract symbol
- listed (index) option: resolve the underlying, load its option space and
  pick the contract by expiry date, strike and right
"""

from __future__ import annotations

import logging
import math

from ..errors import (
    AuthError,
    BrokerProtocolError,
    DecodeError,
    ResolutionError,
    TransportError,
    UnsupportedRequest,
)
from ..providers.models import InstrumentDetails, InstrumentSummary, SaxoAssetType
from ..providers.saxo_rest import SaxoApiClient
from .cache import SymbolCache
from .identity import (
    AssetClass,
    BrokerInstrumentId,
    InstrumentIdentity,
    OptionRight,
    asset_class_for,
    asset_type_candidates,
)


logger = logging.getLogger(__name__)

LOOKUP_ERRORS = (TransportError, AuthError, BrokerProtocolError, DecodeError)

_EXCHANGE_MARKETS = {
    "NASDAQ": "usa",
    "NYSE": "usa",
    "BATS": "usa",
    "ARCA": "usa",
    "EUREX": "eurex",
}


def exchange_to_market(exchange_id: str | None) -> str:
    """Map a broker exchange id to an engine market name."""
    if not exchange_id:
        return "usa"
    return _EXCHANGE_MARKETS.get(exchange_id.upper(), exchange_id.lower())


class SymbolResolver:
    """Cache-aside resolver between InstrumentIdentity and BrokerInstrumentId."""

    def __init__(self, api: SaxoApiClient, cache: SymbolCache | None = None):
        self.api = api
        self.cache = cache if cache is not None else SymbolCache()

    async def resolve(self, identity: InstrumentIdentity) -> BrokerInstrumentId:
        """
        Return the broker id for an identity.

        Raises:
            ResolutionError: nothing matched or the broker call failed
            UnsupportedRequest: no broker asset type exists for the class
        """
        cached = self.cache.get_broker_id(identity)
        if cached is not None:
            return cached

        candidates = asset_type_candidates(identity.asset_class)
        if not candidates:
            raise UnsupportedRequest(f"Unhandled asset class: {identity.asset_class.value}")

        logger.debug(f"Resolving {identity} as {[c.value for c in candidates]}")
        try:
            if identity.is_option:
                broker_id = await self._resolve_option(identity, candidates)
            else:
                summary, asset_type = await self._search_and_match(identity.root_symbol, candidates)
                broker_id = BrokerInstrumentId(uic=summary.identifier, asset_type=asset_type)
        except LOOKUP_ERRORS as e:
            logger.error(f"Failed to resolve {identity}: {e}")
            raise ResolutionError(f"Failed to resolve {identity}: {e}") from e

        self.cache.put(identity, broker_id)
        logger.info(f"Mapped {identity} to Uic {broker_id.uic} ({broker_id.asset_type.value})")
        return broker_id

    async def reverse_resolve(
        self,
        uic: int | str,
        asset_type_hint: SaxoAssetType | AssetClass,
    ) -> InstrumentIdentity:
        """
        Return the engine identity for a broker Uic.

        Raises:
            ResolutionError: invalid Uic, lookup failure, or details that
                cannot produce a complete identity
            UnsupportedRequest: the hint maps to no supported asset class
        """
        try:
            uic_value = int(uic)
        except (TypeError, ValueError) as e:
            raise ResolutionError(f"Invalid broker id, expected an integer Uic: {uic!r}") from e

        if isinstance(asset_type_hint, AssetClass):
            candidates = asset_type_candidates(asset_type_hint)
            if not candidates:
                raise UnsupportedRequest(f"Unhandled asset class: {asset_type_hint.value}")
        else:
            candidates = (asset_type_hint,)

        asset_class = asset_class_for(candidates[0])
        if asset_class is None:
            raise UnsupportedRequest(f"Unhandled asset type: {candidates[0].value}")

        for asset_type in candidates:
            cached = self.cache.get_identity(BrokerInstrumentId(uic=uic_value, asset_type=asset_type))
            if cached is not None:
                return cached

        # A Uic queried under the wrong asset type is a broker error; try the next candidate
        for asset_type in candidates:
            try:
                details = await self.api.get_instrument_details(uic_value, asset_type)
            except BrokerProtocolError as e:
                if asset_type is candidates[-1]:
                    logger.error(f"Failed to reverse map Uic {uic_value}: {e}")
                    raise ResolutionError(f"Failed to reverse map Uic {uic_value}: {e}") from e
                logger.debug(f"Uic {uic_value} not found as {asset_type.value}: {e}")
                continue
            except LOOKUP_ERRORS as e:
                logger.error(f"Failed to reverse map Uic {uic_value}: {e}")
                raise ResolutionError(f"Failed to reverse map Uic {uic_value}: {e}") from e
            break

        identity = await self._identity_from_details(details, asset_class, uic_value)
        self.cache.put(identity, BrokerInstrumentId(uic=uic_value, asset_type=asset_type))
        logger.info(f"Mapped Uic {uic_value} ({asset_type.value}) to {identity}")
        return identity

    async def _search_and_match(
        self,
        keywords: str,
        candidates: tuple[SaxoAssetType, ...],
    ) -> tuple[InstrumentSummary, SaxoAssetType]:
        """
        Search each candidate asset type in priority order.

        An exact (case-insensitive) symbol match of a candidate type wins.
        Failing that, the first result with a valid Uic from the earliest
        candidate that returned anything is used as a degraded match.
        """
        fallback: tuple[InstrumentSummary, SaxoAssetType] | None = None

        for asset_type in candidates:
            response = await self.api.search_instruments(asset_type, keywords)
            for summary in response.data:
                returned_type = SaxoAssetType.parse(summary.asset_type)
                if (
                    summary.identifier > 0
                    and summary.symbol is not None
                    and summary.symbol.lower() == keywords.lower()
                    and returned_type in candidates
                ):
                    return summary, returned_type

            if fallback is None:
                first_valid = next((s for s in response.data if s.identifier > 0), None)
                if first_valid is not None:
                    returned_type = SaxoAssetType.parse(first_valid.asset_type)
                    fallback = (first_valid, returned_type if returned_type in candidates else asset_type)

        if fallback is None:
            raise ResolutionError(
                f"No instrument found for keywords '{keywords}' and asset types "
                f"{[c.value for c in candidates]}"
            )

        summary, asset_type = fallback
        logger.warning(
            f"Exact match not found for {keywords}. Using first result: "
            f"{summary.description} (Uic: {summary.identifier}, symbol: {summary.symbol})"
        )
        return summary, asset_type

    async def _resolve_option(
        self,
        identity: InstrumentIdentity,
        candidates: tuple[SaxoAssetType, ...],
    ) -> BrokerInstrumentId:
        underlying = identity.underlying
        underlying_candidates = asset_type_candidates(underlying.asset_class)
        summary, underlying_type = await self._search_and_match(underlying.root_symbol, underlying_candidates)
        self.cache.put(underlying, BrokerInstrumentId(uic=summary.identifier, asset_type=underlying_type))

        root_id = summary.group_option_root_id
        if not root_id:
            raise ResolutionError(f"{underlying} has no option root")

        space = await self.api.get_option_space(root_id)

        entry = next(
            (e for e in space.option_space if e.expiry.date() == identity.expiry),
            None,
        )
        if entry is None:
            raise ResolutionError(f"No expiry {identity.expiry} in option root {root_id} for {identity}")

        for option in entry.specific_options:
            try:
                right = OptionRight.parse(option.put_call)
            except ValueError:
                continue
            if right == identity.right and math.isclose(option.strike_price, identity.strike, rel_tol=0.0, abs_tol=1e-9):
                asset_type = SaxoAssetType.parse(space.asset_type)
                if asset_type not in candidates:
                    asset_type = candidates[0]
                return BrokerInstrumentId(uic=option.uic, asset_type=asset_type)

        raise ResolutionError(
            f"No {identity.right.value} at strike {identity.strike:g} expiring {identity.expiry} "
            f"in option root {root_id}"
        )

    async def _identity_from_details(
        self,
        details: InstrumentDetails,
        asset_class: AssetClass,
        uic: int,
    ) -> InstrumentIdentity:
        if not details.symbol:
            raise ResolutionError(f"Could not retrieve details for Uic {uic}")

        market = exchange_to_market(details.exchange.exchange_id if details.exchange else None)

        if asset_class in (AssetClass.OPTION, AssetClass.INDEX_OPTION):
            if (
                details.expiry_date is None
                or details.strike_price is None
                or not details.put_call
                or not details.underlying_uic
            ):
                raise ResolutionError(f"Incomplete option details for Uic {uic}")
            underlying_type = SaxoAssetType.STOCK if asset_class == AssetClass.OPTION else SaxoAssetType.STOCK_INDEX
            underlying = await self.reverse_resolve(details.underlying_uic, underlying_type)
            try:
                right = OptionRight.parse(details.put_call)
            except ValueError as e:
                raise ResolutionError(f"Unknown option right for Uic {uic}: {details.put_call}") from e
            return InstrumentIdentity(
                ticker=details.symbol,
                asset_class=asset_class,
                market=market,
                expiry=details.expiry_date.date(),
                strike=details.strike_price,
                right=right,
                underlying=underlying,
            )

        if asset_class == AssetClass.FUTURE:
            return InstrumentIdentity(
                ticker=details.symbol,
                asset_class=asset_class,
                market=market,
                root=details.underlying_symbol or details.symbol,
                expiry=details.expiry_date.date() if details.expiry_date else None,
            )

        return InstrumentIdentity(ticker=details.symbol, asset_class=asset_class, market=market)
