"""
Nuvem Fiscal API Client.

Provides:
- Advance the NF-e distribution cursor (dist-nsu)
- List buffered documents / fetch one document by access key
- Post recipient manifestations
- Single-flight client-credentials token provider

Feed failures are surfaced as FeedError subclasses; the caller owns the
policy for tolerating them.
"""

from .auth import AccessToken, TokenProvider
from .client import FeedAdvanceResult, FeedClient
from .errors import (
    FeedAPIError,
    FeedAuthenticationError,
    FeedConfigurationError,
    FeedConnectionError,
    FeedError,
)


def create_feed_client(config) -> FeedClient:
    """Build a FeedClient (and its token provider) from application config."""
    nf = config.nuvem_fiscal
    provider = TokenProvider(
        client_id=nf.client_id,
        client_secret=nf.client_secret,
        auth_url=nf.auth_url,
        scopes=nf.scopes,
        timeout=nf.timeout_seconds,
    )
    return FeedClient(
        token_provider=provider,
        base_url=nf.api_url,
        timeout=nf.timeout_seconds,
        max_retries=nf.max_retries,
    )


__all__ = [
    "AccessToken",
    "TokenProvider",
    "FeedAdvanceResult",
    "FeedClient",
    "FeedError",
    "FeedAPIError",
    "FeedAuthenticationError",
    "FeedConfigurationError",
    "FeedConnectionError",
    "create_feed_client",
]
