"""
Stripe Billing Provider Implementation.

NO DICTIONARIES - All data leaving this module uses strongly typed models.
"""

import json
from datetime import UTC, datetime
from typing import Any

import stripe
from structlog import get_logger

from entitlement_service.exceptions import (
    PaymentProviderError,
    WebhookPayloadError,
    WebhookVerificationError,
)
from entitlement_service.services.payment_provider import (
    BillingWebhookEvent,
    CheckoutSession,
    IgnoredBillingEvent,
    SubscriptionChangedEvent,
    SubscriptionDeletedEvent,
)

logger = get_logger(__name__)

SUBSCRIPTION_CHANGED_TYPES = frozenset(
    {"customer.subscription.created", "customer.subscription.updated"}
)
SUBSCRIPTION_DELETED_TYPE = "customer.subscription.deleted"

# Subscription metadata key carrying the identity provider user id
USER_ID_METADATA_KEY = "userId"


def _epoch_to_datetime(value: Any) -> datetime | None:
    """Convert Stripe epoch seconds to an aware UTC datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), UTC)


def _period_bound(subscription: dict[str, Any], field: str) -> datetime | None:
    """
    Read a period bound from the subscription.

    Newer API versions moved current_period_* onto subscription items, so
    fall back to the first item when the subscription itself lacks it.
    """
    if subscription.get(field) is not None:
        return _epoch_to_datetime(subscription[field])
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        return _epoch_to_datetime(items[0].get(field))
    return None


def parse_billing_event(event: dict[str, Any]) -> BillingWebhookEvent:
    """
    Convert a verified Stripe event body into a typed billing event.

    Raises:
        WebhookPayloadError: If a handled event type is missing required fields
    """
    try:
        event_id = str(event["id"])
        event_type = str(event["type"])
    except (KeyError, TypeError) as exc:
        raise WebhookPayloadError("Stripe event missing id or type") from exc

    if event_type not in SUBSCRIPTION_CHANGED_TYPES and event_type != SUBSCRIPTION_DELETED_TYPE:
        return IgnoredBillingEvent(event_id=event_id, event_type=event_type)

    subscription = (event.get("data") or {}).get("object") or {}
    subscription_id = subscription.get("id")
    if not subscription_id:
        raise WebhookPayloadError(f"{event_type} event {event_id} has no subscription id")

    if event_type == SUBSCRIPTION_DELETED_TYPE:
        return SubscriptionDeletedEvent(
            event_id=event_id, event_type=event_type, subscription_id=subscription_id
        )

    status = subscription.get("status")
    if not status:
        raise WebhookPayloadError(f"{event_type} event {event_id} has no status")

    customer = subscription.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")

    metadata = subscription.get("metadata") or {}
    return SubscriptionChangedEvent(
        event_id=event_id,
        event_type=event_type,
        user_id=metadata.get(USER_ID_METADATA_KEY) or None,
        customer_id=customer or None,
        subscription_id=subscription_id,
        status=status,
        current_period_start=_period_bound(subscription, "current_period_start"),
        current_period_end=_period_bound(subscription, "current_period_end"),
    )


class StripeProvider:
    """
    Stripe billing provider implementation.

    Implements the BillingProvider protocol for Stripe.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        if api_key:
            stripe.api_key = api_key

    async def verify_webhook(self, payload: bytes, signature: str) -> BillingWebhookEvent:
        """
        Verify and parse a Stripe webhook event.

        The signature covers the raw bytes, so verification runs on the
        unparsed body and the typed event is built from that same body.

        Raises:
            WebhookVerificationError: If signature verification fails
            WebhookPayloadError: If a handled event is malformed
        """
        try:
            logger.info("verifying_stripe_webhook", signature_present=bool(signature))
            stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            # construct_event raises ValueError for bodies that are not JSON
            logger.error("stripe_webhook_invalid_payload", error=str(exc))
            raise WebhookVerificationError(f"Invalid Stripe webhook payload: {exc}") from exc

        try:
            body = json.loads(payload)
        except ValueError as exc:
            raise WebhookPayloadError(f"Stripe webhook body is not JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise WebhookPayloadError("Stripe webhook body is not an object")

        webhook_event = parse_billing_event(body)
        logger.info(
            "stripe_webhook_verified",
            event_id=webhook_event.event_id,
            event_type=webhook_event.event_type,
        )
        return webhook_event

    async def create_customer(self, user_id: str, email: str | None, name: str | None) -> str:
        """Create a Stripe customer tagged with the user id."""
        try:
            customer = stripe.Customer.create(
                email=email,
                name=name,
                metadata={USER_ID_METADATA_KEY: user_id},
            )
        except stripe.StripeError as exc:
            logger.error("stripe_customer_create_failed", user_id=user_id, error=str(exc))
            raise PaymentProviderError(f"Stripe customer creation failed: {exc}") from exc

        logger.info("stripe_customer_created", user_id=user_id, customer_id=customer.id)
        customer_id: str = customer.id
        return customer_id

    async def create_checkout_session(
        self,
        customer_id: str,
        user_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        """
        Create a subscription Checkout Session.

        The user id is written into the subscription's metadata so later
        subscription webhooks can be attributed to the user.
        """
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                subscription_data={"metadata": {USER_ID_METADATA_KEY: user_id}},
                metadata={USER_ID_METADATA_KEY: user_id},
            )
        except stripe.StripeError as exc:
            logger.error("stripe_checkout_failed", user_id=user_id, error=str(exc))
            raise PaymentProviderError(f"Stripe checkout failed: {exc}") from exc

        logger.info("stripe_checkout_created", user_id=user_id, session_id=session.id)
        return CheckoutSession(session_id=session.id, url=session.url)

    async def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a Stripe billing portal session."""
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as exc:
            logger.error("stripe_portal_failed", customer_id=customer_id, error=str(exc))
            raise PaymentProviderError(f"Stripe portal session failed: {exc}") from exc

        url: str = session.url
        return url
