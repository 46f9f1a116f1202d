"""Upstream API clients."""

from src.clients.blumira import BlumiraClient
from src.clients.errors import AuthenticationError, BlumiraError, ConfigurationError, UpstreamError
from src.clients.token_cache import TokenCache

__all__ = [
    "AuthenticationError",
    "BlumiraClient",
    "BlumiraError",
    "ConfigurationError",
    "TokenCache",
    "UpstreamError",
]
