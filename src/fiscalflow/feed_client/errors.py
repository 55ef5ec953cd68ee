"""
Feed client exception hierarchy.
"""


class FeedError(Exception):
    """Base exception for Nuvem Fiscal client errors."""

    pass


class FeedConfigurationError(FeedError):
    """Client credentials are missing. Never retried."""

    pass


class FeedAuthenticationError(FeedError):
    """Token endpoint rejected the client-credentials exchange."""

    def __init__(self, status_code: int, detail: str | None = None):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Nuvem Fiscal authentication failed ({status_code}): {detail or ''}")


class FeedAPIError(FeedError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: str | None = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Nuvem Fiscal API error {status_code}: {message}")


class FeedConnectionError(FeedError):
    """Failed to connect to Nuvem Fiscal."""

    pass
