"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class EntitlementServiceError(Exception):
    """Base exception for all entitlement service errors."""

    pass


class WebhookVerificationError(EntitlementServiceError):
    """Raised when a webhook signature cannot be verified."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class WebhookPayloadError(EntitlementServiceError):
    """Raised when a verified webhook body is malformed or of an unknown type."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook payload error: {message}")


class MetadataOracleError(EntitlementServiceError):
    """Raised when the identity provider cannot be read or written."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"Metadata oracle error: {message}")


class SubscriptionStoreError(EntitlementServiceError):
    """Raised when the subscription record store fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Subscription store error: {message}")


class UsageStoreError(EntitlementServiceError):
    """Raised when the usage counter store fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Usage store error: {message}")


class PaymentProviderError(EntitlementServiceError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class AuthenticationError(EntitlementServiceError):
    """Raised when a session token cannot be authenticated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(EntitlementServiceError):
    """Raised when a caller acts on another user's data."""

    def __init__(self, user_id: str, target_user_id: str) -> None:
        self.user_id = user_id
        self.target_user_id = target_user_id
        super().__init__(f"Authorization failed: {user_id} cannot act for {target_user_id}")
