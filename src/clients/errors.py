"""Error taxonomy for upstream API access."""

from __future__ import annotations


class BlumiraError(Exception):
    """Base class for upstream access failures."""


class ConfigurationError(BlumiraError):
    """Client credentials are not configured."""


class AuthenticationError(BlumiraError):
    """Credentials were rejected by the token endpoint or the API."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UpstreamError(BlumiraError):
    """A REST call returned a non-success response or could not be completed."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
