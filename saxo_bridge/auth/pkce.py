"""PKCE helpers for the first authorization-code exchange."""

from __future__ import annotations

import base64
import hashlib
import secrets
from urllib.parse import urlencode


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """Random 43-char verifier."""
    return _b64url(secrets.token_bytes(32))


def generate_code_challenge(code_verifier: str) -> str:
    """S256 challenge for a verifier."""
    return _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def generate_state() -> str:
    return secrets.token_hex(16)


def build_authorization_url(
    auth_base_url: str,
    app_key: str,
    redirect_uri: str,
    code_challenge: str,
    state: str,
) -> str:
    """
    URL the user opens to grant access.

    The redirect carries `code` and `state`; the code plus the verifier
    behind `code_challenge` are then handed to TokenStore.
    """
    query = urlencode({
        "response_type": "code",
        "client_id": app_key,
        "state": state,
        "redirect_uri": redirect_uri,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    })
    return f"{auth_base_url.rstrip('/')}/authorize?{query}"
