"""Bearer token ownership and the refresh policy.

The store is the only place that mutates the session's token. Refreshes are
funnelled through one asyncio.Lock so concurrent callers that hit a 401 at the
same time share a single exchange with the authorization server.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import aiohttp
from pydantic import ValidationError

from ..errors import AuthError, TransportError
from ..providers.models import TokenResponse


logger = logging.getLogger(__name__)


class TokenState(Enum):
    NO_TOKEN = "no_token"
    VALID = "valid"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class Token:
    """Access/refresh pair. Replaced as a whole, never mutated."""
    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expires_at: datetime | None = None  # None = expiry unknown

    @classmethod
    def from_response(cls, payload: TokenResponse, now: datetime | None = None) -> "Token":
        now = now or datetime.now(timezone.utc)
        expires_at = None
        if payload.expires_in:
            expires_at = now + timedelta(seconds=payload.expires_in)
        return cls(
            access_token=payload.access_token,
            token_type=payload.token_type or "Bearer",
            refresh_token=payload.refresh_token,
            expires_at=expires_at,
        )

    def is_expired(self, skew_seconds: int = 0, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now + timedelta(seconds=skew_seconds) >= self.expires_at

    def authorization_header(self) -> str:
        return f"{self.token_type or 'Bearer'} {self.access_token}"


def load_token_file(path: str | Path) -> Token:
    """
    Read a stored token.json.

    Expected keys: access_token, token_type, refresh_token and either
    expires_at (epoch seconds) or expires_in.
    """
    token_path = Path(path)
    try:
        raw: dict[str, Any] = json.loads(token_path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise AuthError(f"Token file not found: {token_path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise AuthError(f"Could not parse token file {token_path}: {e}") from e

    if not isinstance(raw, dict) or not raw.get("access_token"):
        raise AuthError(f"Token file {token_path} has no access_token")

    expires_at = None
    if raw.get("expires_at"):
        expires_at = datetime.fromtimestamp(float(raw["expires_at"]), tz=timezone.utc)
    elif raw.get("expires_in"):
        modified = datetime.fromtimestamp(token_path.stat().st_mtime, tz=timezone.utc)
        expires_at = modified + timedelta(seconds=int(raw["expires_in"]))

    return Token(
        access_token=raw["access_token"],
        token_type=raw.get("token_type") or "Bearer",
        refresh_token=raw.get("refresh_token") or None,
        expires_at=expires_at,
    )


class TokenStore:
    """
    Holds the current bearer token and knows how to renew it.

    States: NO_TOKEN -> REFRESHING -> VALID, VALID -> REFRESHING -> VALID,
    and REFRESHING -> NO_TOKEN when an exchange fails (the failure is
    re-raised to the caller that triggered it).
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        auth_base_url: str,
        app_key: str,
        app_secret: str | None = None,
        redirect_uri: str | None = None,
        token: Token | None = None,
        refresh_token: str | None = None,
        authorization_code: str | None = None,
        code_verifier: str | None = None,
        refresh_skew_seconds: int = 30,
        timeout_seconds: float = 30.0,
    ):
        self.session = session
        self.token_url = f"{auth_base_url.rstrip('/')}/token"
        self.app_key = app_key
        self.app_secret = app_secret
        self.redirect_uri = redirect_uri
        self.refresh_skew_seconds = refresh_skew_seconds
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

        self._token = token
        self._refresh_token = refresh_token or (token.refresh_token if token else None)
        self._authorization_code = authorization_code
        self._code_verifier = code_verifier
        self._state = TokenState.VALID if token else TokenState.NO_TOKEN
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def state(self) -> TokenState:
        return self._state

    @property
    def token(self) -> Token | None:
        return self._token

    def can_refresh(self) -> bool:
        if self._refresh_token:
            return True
        return self._token is None and bool(self._authorization_code and self._code_verifier)

    async def get_token(self) -> Token | None:
        """Current token, refreshed first if it is known to be expiring."""
        token = self._token
        if token is not None and token.is_expired(self.refresh_skew_seconds) and self.can_refresh():
            logger.info("Access token expiring, refreshing before use")
            return await self.refresh(stale=token)
        return token

    async def refresh(self, stale: Token | None = None) -> Token:
        """
        Obtain a new token.

        `stale` is the token the caller saw rejected. If another caller already
        replaced it while we waited for the lock, that newer token is returned
        without a second exchange.
        """
        async with self._lock:
            if self._token is not None and self._token is not stale:
                return self._token

            self._state = TokenState.REFRESHING
            try:
                if self._token is None and not self._refresh_token:
                    new_token = await self._exchange_authorization_code()
                else:
                    new_token = await self._exchange_refresh_token(self._refresh_token)
            except BaseException:
                self._token = None
                self._state = TokenState.NO_TOKEN
                raise

            self._token = new_token
            if new_token.refresh_token:
                self._refresh_token = new_token.refresh_token
            self._state = TokenState.VALID
            self.refresh_count += 1
            logger.info(f"Access token renewed (expires at {new_token.expires_at})")
            return new_token

    async def _exchange_authorization_code(self) -> Token:
        if not self._authorization_code or not self._code_verifier:
            raise AuthError(
                "No token, refresh token or authorization code available. "
                "Configure an access token, a refresh token or a PKCE code pair."
            )
        form = {
            "grant_type": "authorization_code",
            "client_id": self.app_key,
            "code": self._authorization_code,
            "code_verifier": self._code_verifier,
        }
        if self.redirect_uri:
            form["redirect_uri"] = self.redirect_uri
        token = await self._post_token_request(form)
        # Authorization codes are single use
        self._authorization_code = None
        return token

    async def _exchange_refresh_token(self, refresh_token: str | None) -> Token:
        if not refresh_token:
            raise AuthError("The refresh token is missing or empty; cannot renew the access token.")
        form = {
            "grant_type": "refresh_token",
            "client_id": self.app_key,
            "refresh_token": refresh_token,
        }
        if self.app_secret:
            form["client_secret"] = self.app_secret
        if self._code_verifier:
            form["code_verifier"] = self._code_verifier
        return await self._post_token_request(form)

    async def _post_token_request(self, form: dict[str, str]) -> Token:
        grant = form.get("grant_type")
        try:
            response = await self.session.request(
                "POST", self.token_url, data=form, timeout=self.timeout
            )
            async with response:
                body = await response.text()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Token request ({grant}) to {self.token_url} failed: {e}")
            raise TransportError(f"Token request failed: {e}") from e

        if not 200 <= status < 300:
            logger.error(f"Token request ({grant}) rejected with {status}: {body}")
            raise AuthError(f"Token request ({grant}) rejected with status {status}: {body}")

        try:
            payload = TokenResponse.model_validate_json(body)
        except ValidationError as e:
            raise AuthError(f"Malformed token response: {e}") from e
        return Token.from_response(payload)
