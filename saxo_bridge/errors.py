"""Error kinds surfaced by the broker transport and data-shaping layer."""

from __future__ import annotations


class SaxoError(Exception):
    """Base class for all errors raised by saxo_bridge."""
    pass


class TransportError(SaxoError):
    """Raised on connection, DNS or timeout failures."""
    pass


class AuthError(SaxoError):
    """Raised when authorization cannot be obtained for a request."""
    pass


class BrokerProtocolError(SaxoError):
    """Raised when the broker answers with a structured error payload."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        account_id: str | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.account_id = account_id
        self.error_code = error_code

    def __str__(self) -> str:
        parts = [self.message]
        if self.error_code:
            parts.append(f"code={self.error_code}")
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.account_id:
            parts.append(f"account={self.account_id}")
        return " ".join(parts)


class DecodeError(SaxoError):
    """Raised when a page or stream line is not valid JSON of the expected shape."""
    pass


class ResolutionError(SaxoError):
    """Raised when an instrument cannot be mapped to or from a broker id."""
    pass


class UnsupportedRequest(SaxoError):
    """Raised for asset types or resolutions this layer does not handle."""
    pass
