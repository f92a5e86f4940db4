"""
Manual Mobile Sync - Client-reported subscription state, used when webhooks lag.

NO DICTIONARIES - Takes RevenueCatSyncRequest, writes MobileSubscriptionSnapshot.

The mobile app calls this after purchases, restores and on startup. The
snapshot it writes is overwritten by the next webhook, which carries the real
expiry and trial state.
"""

from collections.abc import Callable
from datetime import UTC, datetime

from structlog import get_logger

from entitlement_service.exceptions import AuthorizationError
from entitlement_service.models.api import Platform, RevenueCatSyncRequest, SubscriptionStatus
from entitlement_service.models.domain import MobileSubscriptionSnapshot
from entitlement_service.services.identity_oracle import IdentityOracle

logger = get_logger(__name__)

# Substring hints in store product ids, checked in order
PLATFORM_HINTS: tuple[tuple[tuple[str, ...], Platform], ...] = (
    (("ios", "apple"), Platform.APP_STORE),
    (("android", "google"), Platform.PLAY_STORE),
    (("stripe",), Platform.STRIPE),
)


def infer_platform(active_subscriptions: list[str]) -> Platform | None:
    """Best-guess platform from the first active product id."""
    if not active_subscriptions:
        return None

    product_id = active_subscriptions[0]
    for hints, platform in PLATFORM_HINTS:
        if any(hint in product_id for hint in hints):
            return platform
    return Platform.APP_STORE


def build_sync_snapshot(
    request: RevenueCatSyncRequest, now: datetime | None = None
) -> MobileSubscriptionSnapshot:
    """Snapshot from a client-reported sync."""
    active = request.customer_info.active_subscriptions if request.customer_info else []
    return MobileSubscriptionSnapshot(
        is_pro=request.is_pro,
        platform=infer_platform(active),
        expires_at=None,
        product_id=active[0] if active else None,
        status=SubscriptionStatus.ACTIVE if request.is_pro else None,
        will_renew=request.is_pro,
        is_in_trial_period=False,
        last_updated=now or datetime.now(UTC),
    )


class MobileSyncService:
    """Writes client-reported mobile subscription state for the caller."""

    def __init__(
        self,
        oracle: IdentityOracle,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.oracle = oracle
        self.clock = clock

    async def sync(
        self, caller_id: str, request: RevenueCatSyncRequest
    ) -> MobileSubscriptionSnapshot:
        """
        Overwrite the caller's snapshot with client-reported state.

        Raises:
            AuthorizationError: If customerInfo names a different user
            MetadataOracleError: If the snapshot write fails
        """
        if request.customer_info and request.customer_info.original_app_user_id != caller_id:
            logger.warning(
                "revenuecat_sync_user_mismatch",
                caller_id=caller_id,
                original_app_user_id=request.customer_info.original_app_user_id,
            )
            raise AuthorizationError(caller_id, request.customer_info.original_app_user_id)

        snapshot = build_sync_snapshot(request, self.clock())
        await self.oracle.write_subscription_snapshot(caller_id, snapshot)

        logger.info(
            "revenuecat_sync_stored",
            user_id=caller_id,
            is_pro=snapshot.is_pro,
            platform=snapshot.platform.value if snapshot.platform else None,
        )
        return snapshot
