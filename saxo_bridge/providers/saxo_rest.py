"""REST client for the broker's reference, chart and streaming endpoints."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Iterable, Type, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from ..auth.transport import AuthenticatedTransport
from ..errors import BrokerProtocolError, DecodeError
from ..utils.timeframes import TimeUnit, to_utc, unit_to_horizon
from .models import (
    ChartResponse,
    ClientDetails,
    ErrorEnvelope,
    InstrumentDetails,
    InstrumentSearchResponse,
    OptionSpaceResponse,
    SaxoAssetType,
)


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class SaxoApiClient:
    """Typed access to the broker REST API on top of AuthenticatedTransport."""

    def __init__(
        self,
        transport: AuthenticatedTransport,
        base_url: str,
        stream_base_url: str | None = None,
        quote_stream_path: str = "/marketdata/stream/quotes/{tickers}",
    ):
        self.transport = transport
        self.base_url = base_url.rstrip("/")
        self.stream_base_url = (stream_base_url or base_url).rstrip("/")
        self.quote_stream_path = quote_stream_path

    async def get_client_details(self) -> ClientDetails:
        data = await self.request_json("GET", "/port/v1/clients/me")
        return self._parse(ClientDetails, data, "/port/v1/clients/me")

    async def search_instruments(
        self,
        asset_types: SaxoAssetType | Iterable[SaxoAssetType],
        keywords: str,
    ) -> InstrumentSearchResponse:
        if isinstance(asset_types, SaxoAssetType):
            asset_types = [asset_types]
        resource = "/ref/v1/instruments"
        params = {
            "AssetTypes": ",".join(a.value for a in asset_types),
            "Keywords": keywords,
        }
        data = await self.request_json("GET", resource, params=params)
        return self._parse(InstrumentSearchResponse, data, resource)

    async def get_instrument_details(self, uic: int, asset_type: SaxoAssetType) -> InstrumentDetails:
        resource = f"/ref/v1/instruments/details/{uic}/{asset_type.value}"
        data = await self.request_json("GET", resource)
        return self._parse(InstrumentDetails, data, resource)

    async def get_option_space(self, option_root_id: int) -> OptionSpaceResponse:
        resource = f"/ref/v1/instruments/contractoptionspaces/{option_root_id}"
        data = await self.request_json("GET", resource)
        return self._parse(OptionSpaceResponse, data, resource)

    async def get_chart(
        self,
        asset_type: SaxoAssetType,
        uic: int,
        unit: TimeUnit,
        time: datetime,
        count: int,
        mode: str = "UpTo",
    ) -> ChartResponse:
        """
        Fetch one page of chart samples.

        Args:
            asset_type: Broker asset type the Uic was resolved under
            uic: Broker instrument id
            unit: Sample resolution
            time: Anchor time (UTC); with mode "UpTo" samples end here
            count: Number of samples requested (max 1200)
            mode: "UpTo" or "From"
        """
        resource = "/chart/v3/charts"
        params = {
            "AssetType": asset_type.value,
            "Uic": uic,
            "Horizon": unit_to_horizon(unit),
            "Count": count,
            "Mode": mode,
            "Time": to_utc(time).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        data = await self.request_json("GET", resource, params=params)
        return self._parse(ChartResponse, data, resource)

    async def open_quote_stream(self, tickers: Iterable[str]) -> aiohttp.ClientResponse:
        """
        Open the long-lived quote stream and return the unread response.

        The caller must close the response when done.
        """
        joined = ",".join(tickers)
        url = f"{self.stream_base_url}{self.quote_stream_path.format(tickers=joined)}"
        # No total timeout: the body never ends on its own
        timeout = aiohttp.ClientTimeout(total=None, sock_read=90)
        response = await self.transport.send("GET", url, timeout=timeout)
        if not 200 <= response.status < 300:
            async with response:
                body = await response.text()
            raise self._protocol_error(response.status, body, url)
        return response

    async def request_json(
        self,
        method: str,
        resource: str,
        *,
        params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        """Send a request and return decoded JSON, raising on error envelopes."""
        url = f"{self.base_url}{resource}"
        response = await self.transport.send(method, url, params=params, json=body)
        async with response:
            status = response.status
            text = await response.text()

        if not 200 <= status < 300:
            raise self._protocol_error(status, text, resource)

        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DecodeError(f"Invalid JSON from {resource}: {e}") from e

        # 2xx payloads may still carry an Errors list
        if isinstance(data, dict) and data.get("Errors"):
            envelope = ErrorEnvelope.model_validate(data)
            raise BrokerProtocolError(
                envelope.text or f"Broker reported errors for {resource}",
                status=status,
                account_id=envelope.account_id,
                error_code=envelope.code,
            )
        return data

    @staticmethod
    def _parse(model: Type[ModelT], data: Any, resource: str) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Unexpected payload from {resource}: {e}") from e

    @staticmethod
    def _protocol_error(status: int, text: str, resource: str) -> BrokerProtocolError:
        envelope = None
        try:
            envelope = ErrorEnvelope.model_validate_json(text) if text.strip() else None
        except ValidationError:
            envelope = None

        if envelope is not None and (envelope.text or envelope.code):
            message = envelope.text or envelope.code
            logger.error(f"Broker error {status} for {resource}: {envelope.code} {message}")
            return BrokerProtocolError(
                message,
                status=status,
                account_id=envelope.account_id,
                error_code=envelope.code,
            )

        logger.error(f"HTTP {status} for {resource}: {text[:200]}")
        return BrokerProtocolError(f"HTTP {status} for {resource}: {text[:200]}", status=status)
