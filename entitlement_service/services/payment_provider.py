"""
Billing Provider Protocol - Provider-agnostic interface for web billing.

NO DICTIONARIES - All data uses strongly typed models.

Verified webhook events are a tagged union: each handled event kind is its
own frozen dataclass, and everything else is an IgnoredBillingEvent.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class SubscriptionChangedEvent:
    """A subscription was created or updated."""

    event_id: str
    event_type: str
    user_id: str | None  # From subscription metadata; may be missing
    customer_id: str | None
    subscription_id: str
    status: str  # Provider status, copied verbatim
    current_period_start: datetime | None
    current_period_end: datetime | None


@dataclass(frozen=True)
class SubscriptionDeletedEvent:
    """A subscription ended; identified by subscription id only."""

    event_id: str
    event_type: str
    subscription_id: str


@dataclass(frozen=True)
class IgnoredBillingEvent:
    """Any verified event type this service does not act on."""

    event_id: str
    event_type: str


BillingWebhookEvent = SubscriptionChangedEvent | SubscriptionDeletedEvent | IgnoredBillingEvent


@dataclass(frozen=True)
class CheckoutSession:
    """Hosted checkout session for a subscription purchase."""

    session_id: str
    url: str | None


class BillingProvider(Protocol):
    """
    Web billing provider protocol.

    Any card billing provider must implement this interface.
    """

    async def verify_webhook(self, payload: bytes, signature: str) -> BillingWebhookEvent:
        """
        Verify the signature over the raw body and parse the event.

        Raises:
            WebhookVerificationError: If signature verification fails
            WebhookPayloadError: If a handled event is malformed
        """
        ...

    async def create_customer(self, user_id: str, email: str | None, name: str | None) -> str:
        """
        Create a billing customer for a user.

        Raises:
            PaymentProviderError: If creation fails
        """
        ...

    async def create_checkout_session(
        self,
        customer_id: str,
        user_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """
        Create a subscription checkout session.

        Raises:
            PaymentProviderError: If creation fails
        """
        ...

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a self-service billing portal session and return its URL.

        Raises:
            PaymentProviderError: If creation fails
        """
        ...
