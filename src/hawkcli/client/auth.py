"""Access-token handling for the HTTP pipeline.

StackHawk exchanges an API key for a short-lived compact signed token
(``header.payload.signature``). The client only needs the token's expiry,
which it reads from the unverified ``exp`` claim; signature verification is
the server's job.

:class:`AuthState` holds the API key and the current token. Readers check
:meth:`AuthState.is_expired` without locking; refreshes are serialized by
:attr:`AuthState.refresh_lock` and re-check staleness once inside it, so a
burst of concurrent requests at expiry triggers a single login.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
from typing import Optional

from hawkcli.exceptions import InvalidResponseError
from hawkcli.models import JwtToken


def decode_token_expiry(token: str) -> int:
    """Return the ``exp`` claim (epoch seconds) of a compact signed token.

    Raises:
        InvalidResponseError: If the token does not have three segments, the
            payload is not URL-safe base64 JSON, or ``exp`` is missing.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise InvalidResponseError("Invalid access token format")

    payload = parts[1]
    payload += "=" * (-len(payload) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError) as exc:
        raise InvalidResponseError(f"Invalid access token payload: {exc}") from exc

    exp = claims.get("exp") if isinstance(claims, dict) else None
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        raise InvalidResponseError("Access token has no expiry claim")
    return int(exp)


class AuthState:
    """API key plus the currently installed access token.

    Args:
        api_key: Key used to (re-)authenticate; ``None`` means the token
            cannot be renewed.
        token: A previously issued token to start with.
    """

    def __init__(self, api_key: Optional[str] = None, token: Optional[JwtToken] = None) -> None:
        self.api_key = api_key
        self._token = token
        self.refresh_lock = asyncio.Lock()

    @property
    def token(self) -> Optional[JwtToken]:
        return self._token

    def install(self, token: JwtToken) -> None:
        """Replace the current token."""
        self._token = token

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Whether the token is absent or within the renewal buffer of its expiry."""
        return self._token is None or self._token.is_expired(now)
