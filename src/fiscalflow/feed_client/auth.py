"""
Client-credentials token provider for the Nuvem Fiscal API.

One provider is created per process and shared by every FeedClient. The
cached bearer token is refreshed when it is expired or within
REFRESH_MARGIN_SECONDS of expiry. Refresh is single-flight: the first caller
that finds the token stale takes the lock and exchanges credentials, every
other caller blocks on the same lock and then reuses the fresh token.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import requests

from ..config import NUVEM_FISCAL_AUTH_URL, NUVEM_FISCAL_SCOPES
from .errors import FeedAuthenticationError, FeedConfigurationError, FeedConnectionError

logger = logging.getLogger(__name__)


@dataclass
class AccessToken:
    """A bearer token and its absolute expiry (clock seconds)."""

    value: str
    expires_at: float


class TokenProvider:
    """Single-flight cache around the OAuth2 client-credentials exchange."""

    REFRESH_MARGIN_SECONDS = 60
    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        auth_url: str = NUVEM_FISCAL_AUTH_URL,
        scopes: str = NUVEM_FISCAL_SCOPES,
        timeout: int = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize token provider.

        Args:
            client_id: OAuth2 client id
            client_secret: OAuth2 client secret
            auth_url: Token endpoint URL
            scopes: Space-separated scopes requested with each exchange
            timeout: Request timeout in seconds
            clock: Time source in seconds (injectable for tests)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.auth_url = auth_url
        self.scopes = scopes
        self.timeout = timeout
        self._clock = clock
        self._token: AccessToken | None = None
        self._lock = threading.Lock()

    def _fresh_token(self) -> str | None:
        token = self._token
        if token and token.expires_at - self.REFRESH_MARGIN_SECONDS > self._clock():
            return token.value
        return None

    def get_token(self) -> str:
        """Return a valid bearer token, refreshing it if needed."""
        cached = self._fresh_token()
        if cached:
            return cached

        with self._lock:
            # Another thread may have refreshed while we waited
            cached = self._fresh_token()
            if cached:
                return cached
            self._token = self._exchange()
            return self._token.value

    def invalidate(self) -> None:
        """Drop the cached token so the next call exchanges credentials again."""
        with self._lock:
            self._token = None

    def _exchange(self) -> AccessToken:
        if not self.client_id or not self.client_secret:
            raise FeedConfigurationError("Nuvem Fiscal credentials are not configured")

        logger.debug("Requesting Nuvem Fiscal access token")
        try:
            response = requests.post(
                self.auth_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": self.scopes,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise FeedConnectionError(f"Failed to reach token endpoint {self.auth_url}: {e}")

        if not response.ok:
            raise FeedAuthenticationError(response.status_code, response.text)

        data = response.json()
        expires_in = int(data.get("expires_in", 0))
        logger.info(f"Obtained Nuvem Fiscal access token (expires in {expires_in}s)")
        return AccessToken(value=data["access_token"], expires_at=self._clock() + expires_in)
