# ABOUTME: Custom exception hierarchy for zapfeed
# ABOUTME: Provides structured error handling for LNbits reads and transfers


class ZapFeedError(Exception):
    """Base exception for all zapfeed errors."""


class AuthError(ZapFeedError):
    """Failed to obtain a bearer token from LNbits."""


class CredentialsNotFoundError(AuthError):
    """LNbits credentials not found in the environment."""


class ValidationError(ZapFeedError):
    """Invalid input provided to a tool."""


class FetchError(ZapFeedError):
    """A read against LNbits failed for one resource."""

    def __init__(
        self,
        message: str,
        resource_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.resource_id = resource_id
        self.status_code = status_code


class TransferError(ZapFeedError):
    """Invoice creation or payment failed while sending a zap.

    When the invoice was created but paying it failed, ``payment_request``
    holds the orphaned invoice. Nothing is rolled back.
    """

    def __init__(self, message: str, payment_request: str | None = None) -> None:
        super().__init__(message)
        self.payment_request = payment_request
