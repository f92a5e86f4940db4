"""
RevenueCat Webhook Handler - Verify, normalize and store mobile subscription events.

NO DICTIONARIES - Events are parsed into RevenueCatWebhookPayload and
normalized into a MobileSubscriptionSnapshot.

Every event overwrites the user's snapshot wholesale. Redelivery of the same
event therefore produces the same stored state, so no deduplication is kept.
"""

import hashlib
import hmac
from datetime import UTC, datetime

from pydantic import ValidationError
from structlog import get_logger

from entitlement_service.exceptions import WebhookPayloadError, WebhookVerificationError
from entitlement_service.models.api import Platform, SubscriptionStatus
from entitlement_service.models.domain import MobileSubscriptionSnapshot
from entitlement_service.models.revenuecat import (
    RevenueCatEvent,
    RevenueCatEventType,
    RevenueCatWebhookPayload,
)
from entitlement_service.observability.metrics import metrics
from entitlement_service.services.identity_oracle import IdentityOracle

logger = get_logger(__name__)

SIGNATURE_HEADER = "x-revenuecat-signature"

# Event types that grant access while unexpired
ACTIVE_PURCHASE_TYPES = frozenset(
    {
        RevenueCatEventType.INITIAL_PURCHASE,
        RevenueCatEventType.RENEWAL,
        RevenueCatEventType.UNCANCELLATION,
        RevenueCatEventType.SUBSCRIPTION_EXTENDED,
        RevenueCatEventType.NON_RENEWING_PURCHASE,
    }
)

NON_RENEWING_TYPES = frozenset(
    {
        RevenueCatEventType.NON_RENEWING_PURCHASE,
        RevenueCatEventType.CANCELLATION,
        RevenueCatEventType.EXPIRATION,
    }
)

STORE_PLATFORMS: dict[str, Platform] = {
    "APP_STORE": Platform.APP_STORE,
    "MAC_APP_STORE": Platform.APP_STORE,
    "PLAY_STORE": Platform.PLAY_STORE,
    "STRIPE": Platform.STRIPE,
    "PROMOTIONAL": Platform.PROMOTIONAL,
}


def verify_signature(payload: bytes, signature: str | None, secret: str) -> None:
    """
    Verify the hex HMAC-SHA256 signature of the raw request body.

    Raises:
        WebhookVerificationError: If the secret is unset, the signature is
            missing, or it does not match
    """
    if not secret:
        raise WebhookVerificationError("RevenueCat webhook secret not configured")
    if not signature:
        raise WebhookVerificationError("Missing RevenueCat signature")

    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(signature.strip().lower().encode(), expected.encode()):
        raise WebhookVerificationError("Invalid RevenueCat signature")


def parse_payload(payload: bytes) -> RevenueCatWebhookPayload:
    """
    Parse a verified webhook body.

    Raises:
        WebhookPayloadError: If the body is not JSON, lacks required fields,
            or carries an unknown event type
    """
    try:
        return RevenueCatWebhookPayload.model_validate_json(payload)
    except ValidationError as exc:
        raise WebhookPayloadError(
            f"Invalid RevenueCat event: {exc.error_count()} validation error(s)"
        ) from exc


def derive_status(
    event_type: RevenueCatEventType, expiration_at_ms: int | None, now: datetime
) -> SubscriptionStatus | None:
    """Map an event type (and expiry) to a normalized status."""
    now_ms = int(now.timestamp() * 1000)
    has_expired = expiration_at_ms is not None and expiration_at_ms < now_ms

    if event_type in ACTIVE_PURCHASE_TYPES:
        return SubscriptionStatus.EXPIRED if has_expired else SubscriptionStatus.ACTIVE
    if event_type == RevenueCatEventType.CANCELLATION:
        return SubscriptionStatus.EXPIRED if has_expired else SubscriptionStatus.CANCELLED
    if event_type == RevenueCatEventType.EXPIRATION:
        return SubscriptionStatus.EXPIRED
    if event_type == RevenueCatEventType.BILLING_ISSUE:
        return SubscriptionStatus.BILLING_ISSUE
    # PRODUCT_CHANGE, TRANSFER, SUBSCRIBER_ALIAS, SUBSCRIPTION_PAUSED
    return None


def derive_will_renew(event_type: RevenueCatEventType) -> bool:
    """Whether the subscription will auto-renew after this event."""
    return event_type not in NON_RENEWING_TYPES


def map_store_to_platform(store: str | None) -> Platform | None:
    """Map a RevenueCat store name to a snapshot platform."""
    if not store:
        return None
    return STORE_PLATFORMS.get(store.upper())


def has_pro_entitlement(entitlement_ids: list[str], pro_entitlement_id: str) -> bool:
    """Case-insensitive match of the recognized Pro entitlement tag."""
    wanted = pro_entitlement_id.casefold()
    return any(entitlement.casefold() == wanted for entitlement in entitlement_ids)


def build_snapshot(
    event: RevenueCatEvent, pro_entitlement_id: str, now: datetime | None = None
) -> MobileSubscriptionSnapshot:
    """Normalize one event into the snapshot that replaces the stored one."""
    current = now or datetime.now(UTC)
    status = derive_status(event.type, event.expiration_at_ms, current)

    is_pro = (
        has_pro_entitlement(event.all_entitlement_ids(), pro_entitlement_id)
        and event.type in ACTIVE_PURCHASE_TYPES
        and status == SubscriptionStatus.ACTIVE
    )

    expires_at = (
        datetime.fromtimestamp(event.expiration_at_ms / 1000, UTC)
        if event.expiration_at_ms is not None
        else None
    )
    # Replays of one event carry the same timestamp and so store the same snapshot
    last_updated = (
        datetime.fromtimestamp(event.event_timestamp_ms / 1000, UTC)
        if event.event_timestamp_ms is not None
        else current
    )

    return MobileSubscriptionSnapshot(
        is_pro=is_pro,
        platform=map_store_to_platform(event.store),
        expires_at=expires_at,
        product_id=event.product_id or None,
        status=status,
        will_renew=derive_will_renew(event.type),
        is_in_trial_period=(event.period_type or "").upper() == "TRIAL",
        last_updated=last_updated,
    )


class RevenueCatWebhookHandler:
    """Processes RevenueCat webhooks into identity metadata snapshots."""

    def __init__(
        self,
        oracle: IdentityOracle,
        webhook_secret: str,
        pro_entitlement_id: str,
    ) -> None:
        self.oracle = oracle
        self.webhook_secret = webhook_secret
        self.pro_entitlement_id = pro_entitlement_id

    async def handle(
        self, payload: bytes, signature: str | None
    ) -> tuple[RevenueCatEvent, MobileSubscriptionSnapshot]:
        """
        Verify, normalize and store one webhook delivery.

        Raises:
            WebhookVerificationError: Bad or missing signature (nothing written)
            WebhookPayloadError: Malformed event (nothing written)
            MetadataOracleError: Snapshot write failed (provider should redeliver)
        """
        try:
            verify_signature(payload, signature, self.webhook_secret)
        except WebhookVerificationError:
            metrics.record_webhook("revenuecat", "unknown", "rejected_signature")
            raise

        try:
            event = parse_payload(payload).event
        except WebhookPayloadError:
            metrics.record_webhook("revenuecat", "unknown", "rejected_payload")
            raise

        logger.info(
            "revenuecat_webhook_received",
            event_type=event.type.value,
            event_id=event.id,
            user_id=event.app_user_id,
        )

        snapshot = build_snapshot(event, self.pro_entitlement_id)

        try:
            await self.oracle.write_subscription_snapshot(event.app_user_id, snapshot)
        except Exception:
            metrics.record_webhook("revenuecat", event.type.value, "store_failed")
            raise

        metrics.record_webhook("revenuecat", event.type.value, "processed")
        logger.info(
            "revenuecat_snapshot_stored",
            user_id=event.app_user_id,
            event_type=event.type.value,
            is_pro=snapshot.is_pro,
            status=snapshot.status.value if snapshot.status else None,
            expires_at=snapshot.expires_at.isoformat() if snapshot.expires_at else None,
        )
        return event, snapshot
