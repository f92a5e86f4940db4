"""
Web Billing Webhook Handler - Apply verified subscription events to the record store.

NO DICTIONARIES - Events arrive as BillingWebhookEvent union members.

The Subscription Record written here is audit/history only; entitlement
decisions come from the identity provider, not from this table.
"""

from enum import Enum

from structlog import get_logger

from entitlement_service.exceptions import WebhookPayloadError, WebhookVerificationError
from entitlement_service.models.domain import SubscriptionUpsert
from entitlement_service.observability.metrics import metrics
from entitlement_service.services.payment_provider import (
    BillingProvider,
    IgnoredBillingEvent,
    SubscriptionChangedEvent,
    SubscriptionDeletedEvent,
)
from entitlement_service.services.subscription_store import SubscriptionStore

logger = get_logger(__name__)


class WebhookOutcome(str, Enum):
    """What a billing webhook delivery did."""

    PROCESSED = "processed"
    IGNORED = "ignored"
    NOT_FOUND = "not_found"


class StripeWebhookHandler:
    """Processes card billing webhooks into Subscription Records."""

    def __init__(self, provider: BillingProvider, store: SubscriptionStore) -> None:
        self.provider = provider
        self.store = store

    async def handle(self, payload: bytes, signature: str) -> tuple[str, WebhookOutcome]:
        """
        Verify and apply one webhook delivery.

        Returns:
            (event_type, outcome)

        Raises:
            WebhookVerificationError: Bad signature (nothing written)
            WebhookPayloadError: Malformed handled event (nothing written)
            SubscriptionStoreError: Record write failed (provider should redeliver)
        """
        try:
            event = await self.provider.verify_webhook(payload, signature)
        except WebhookVerificationError:
            metrics.record_webhook("stripe", "unknown", "rejected_signature")
            raise
        except WebhookPayloadError:
            metrics.record_webhook("stripe", "unknown", "rejected_payload")
            raise

        if isinstance(event, IgnoredBillingEvent):
            logger.debug("stripe_webhook_ignored", event_id=event.event_id, event_type=event.event_type)
            metrics.record_webhook("stripe", event.event_type, WebhookOutcome.IGNORED.value)
            return event.event_type, WebhookOutcome.IGNORED

        if isinstance(event, SubscriptionChangedEvent):
            outcome = await self._apply_change(event)
        elif isinstance(event, SubscriptionDeletedEvent):
            outcome = await self._apply_delete(event)

        metrics.record_webhook("stripe", event.event_type, outcome.value)
        return event.event_type, outcome

    async def _apply_change(self, event: SubscriptionChangedEvent) -> WebhookOutcome:
        if not event.user_id:
            metrics.record_webhook("stripe", event.event_type, "rejected_payload")
            logger.warning(
                "stripe_subscription_missing_user",
                event_id=event.event_id,
                subscription_id=event.subscription_id,
            )
            raise WebhookPayloadError(
                f"Subscription {event.subscription_id} has no userId metadata"
            )

        try:
            intent = SubscriptionUpsert(
                user_id=event.user_id,
                stripe_customer_id=event.customer_id,
                stripe_subscription_id=event.subscription_id,
                status=event.status,
                current_period_start=event.current_period_start,
                current_period_end=event.current_period_end,
            )
        except ValueError as exc:
            raise WebhookPayloadError(str(exc)) from exc

        try:
            await self.store.upsert(intent)
        except Exception:
            metrics.record_webhook("stripe", event.event_type, "store_failed")
            raise

        logger.info(
            "stripe_subscription_applied",
            event_id=event.event_id,
            event_type=event.event_type,
            user_id=event.user_id,
            status=event.status,
        )
        return WebhookOutcome.PROCESSED

    async def _apply_delete(self, event: SubscriptionDeletedEvent) -> WebhookOutcome:
        try:
            found = await self.store.mark_canceled(event.subscription_id)
        except Exception:
            metrics.record_webhook("stripe", event.event_type, "store_failed")
            raise

        return WebhookOutcome.PROCESSED if found else WebhookOutcome.NOT_FOUND
