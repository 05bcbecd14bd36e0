"""Authenticated request pipeline with refresh-on-401 and bounded retry."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from ..errors import AuthError, TransportError
from .token_store import TokenStore


logger = logging.getLogger(__name__)


class AuthenticatedTransport:
    """
    Wraps every outbound request to the broker.

    Per logical call at most `max_attempts` physical requests are sent:
    - 2xx is returned immediately
    - 401 triggers a token refresh and the next attempt carries the new token
    - any other status is returned untouched for the caller to interpret
    - network failures are logged and retried after `retry_interval` seconds
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token_store: TokenStore,
        max_attempts: int = 3,
        retry_interval: float = 2.0,
        timeout_seconds: float | None = 30.0,
    ):
        self.session = session
        self.token_store = token_store
        self.max_attempts = max(1, max_attempts)
        self.retry_interval = retry_interval
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
    ) -> aiohttp.ClientResponse:
        """
        Send a request and return the response unread.

        The caller owns the returned response and must release or close it.

        Raises:
            AuthError: still unauthorized after the last attempt, or the token
                store could not renew the token
            TransportError: every attempt failed at the network level
        """
        last_error: Exception | None = None
        last_status: int | None = None

        for attempt in range(1, self.max_attempts + 1):
            token = await self.token_store.get_token()
            request_headers = dict(headers or {})
            if token is not None:
                request_headers["Authorization"] = token.authorization_header()

            try:
                response = await self.session.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=request_headers,
                    timeout=timeout or self.timeout,
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                last_status = None
                logger.error(
                    f"{method} {url} failed on attempt {attempt}/{self.max_attempts}: "
                    f"{type(e).__name__}: {e}"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_interval)
                continue

            if 200 <= response.status < 300:
                return response

            if response.status == 401:
                response.release()
                last_error = None
                last_status = 401
                logger.warning(
                    f"{method} {url} unauthorized on attempt {attempt}/{self.max_attempts}"
                )
                if attempt < self.max_attempts:
                    await self.token_store.refresh(stale=token)
                continue

            return response

        if last_status == 401:
            raise AuthError(
                f"{method} {url} still unauthorized after {self.max_attempts} attempts"
            )
        raise TransportError(
            f"{method} {url} failed after {self.max_attempts} attempts: {last_error}"
        ) from last_error
