"""
RevenueCat webhook models - Pydantic models validated at the webhook boundary.

NO DICTIONARIES - Inbound JSON is parsed into typed models; events whose
type is not in RevenueCatEventType are rejected.

Payload reference: https://www.revenuecat.com/docs/integrations/webhooks
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RevenueCatEventType(str, Enum):
    """Webhook event types handled by the mobile subscription handler."""

    INITIAL_PURCHASE = "INITIAL_PURCHASE"
    RENEWAL = "RENEWAL"
    CANCELLATION = "CANCELLATION"
    UNCANCELLATION = "UNCANCELLATION"
    NON_RENEWING_PURCHASE = "NON_RENEWING_PURCHASE"
    EXPIRATION = "EXPIRATION"
    BILLING_ISSUE = "BILLING_ISSUE"
    PRODUCT_CHANGE = "PRODUCT_CHANGE"
    TRANSFER = "TRANSFER"
    SUBSCRIBER_ALIAS = "SUBSCRIBER_ALIAS"
    SUBSCRIPTION_PAUSED = "SUBSCRIPTION_PAUSED"
    SUBSCRIPTION_EXTENDED = "SUBSCRIPTION_EXTENDED"


class RevenueCatEvent(BaseModel):
    """The `event` object of a RevenueCat webhook."""

    model_config = ConfigDict(extra="ignore")

    type: RevenueCatEventType
    id: str | None = None
    app_user_id: str = Field(..., min_length=1)
    original_app_user_id: str | None = None
    product_id: str | None = None
    period_type: str | None = None  # NORMAL, TRIAL, INTRO, PREPAID
    event_timestamp_ms: int | None = None
    purchased_at_ms: int | None = None
    expiration_at_ms: int | None = None
    environment: str | None = None  # SANDBOX or PRODUCTION
    store: str | None = None  # APP_STORE, PLAY_STORE, STRIPE, PROMOTIONAL, ...
    entitlement_id: str | None = None
    entitlement_ids: list[str] | None = None

    def all_entitlement_ids(self) -> list[str]:
        """Entitlement ids from both the list and the legacy single field."""
        ids = list(self.entitlement_ids or [])
        if self.entitlement_id and self.entitlement_id not in ids:
            ids.append(self.entitlement_id)
        return ids


class RevenueCatWebhookPayload(BaseModel):
    """Top-level RevenueCat webhook body."""

    model_config = ConfigDict(extra="ignore")

    api_version: str | None = None
    event: RevenueCatEvent
