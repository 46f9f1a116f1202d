"""Bearer token cache owned by a single API client instance."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


class TokenCache:
    """Hold one bearer token until shortly before it expires."""

    def __init__(
        self,
        *,
        expiry_margin_seconds: float = 60.0,
        time_fn: Callable[[], float] | None = None,
    ):
        if expiry_margin_seconds < 0:
            raise ValueError("expiry_margin_seconds must be >= 0")
        self.expiry_margin_seconds = expiry_margin_seconds
        self._time_fn = time_fn or time.monotonic
        self._token: str | None = None
        self._expires_at: float = 0.0
        # Serializes refreshes so concurrent callers share one token request.
        self.refresh_lock = asyncio.Lock()

    def get(self) -> str | None:
        """Return the cached token while it is still usable."""
        if self._token is None:
            return None
        if self._time_fn() >= self._expires_at:
            self._token = None
            return None
        return self._token

    def store(self, token: str, expires_in: float | None = None) -> None:
        lifetime = expires_in if expires_in and expires_in > 0 else DEFAULT_TOKEN_LIFETIME_SECONDS
        self._token = token
        self._expires_at = self._time_fn() + lifetime - self.expiry_margin_seconds

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    def seconds_until_expiry(self) -> float:
        if self._token is None:
            return 0.0
        remaining = self._expires_at - self._time_fn()
        return remaining if remaining > 0 else 0.0
