"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
The only exception is the metadata boundary, where snapshots are converted to
and from the JSON object stored on the identity provider.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from entitlement_service.models.api import (
    EntitlementSource,
    PlanType,
    Platform,
    ResourceClass,
    SubscriptionStatus,
)

# Key under the identity provider's private metadata holding the mobile snapshot
SNAPSHOT_METADATA_KEY = "revenuecatSubscription"

SNAPSHOT_PLATFORMS = frozenset(
    {Platform.APP_STORE, Platform.PLAY_STORE, Platform.STRIPE, Platform.PROMOTIONAL}
)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string from metadata into an aware datetime."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValueError(f"Expected ISO-8601 string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class MobileSubscriptionSnapshot:
    """
    Latest-wins mobile subscription state attached to a user's metadata.

    Written wholesale on every mobile webhook event or manual sync.
    """

    is_pro: bool
    platform: Platform | None
    expires_at: datetime | None
    product_id: str | None
    status: SubscriptionStatus | None
    will_renew: bool
    is_in_trial_period: bool
    last_updated: datetime

    def __post_init__(self) -> None:
        """Validate snapshot fields."""
        if self.platform is not None and self.platform not in SNAPSHOT_PLATFORMS:
            raise ValueError(f"Invalid snapshot platform: {self.platform}")
        if self.expires_at is not None and self.expires_at.tzinfo is None:
            raise ValueError("expires_at must be timezone-aware")

    def is_entitling(self, now: datetime | None = None) -> bool:
        """True iff pro, active, and not past expiry (no expiry = non-expiring)."""
        current = now or _utc_now()
        return (
            self.is_pro
            and self.status == SubscriptionStatus.ACTIVE
            and (self.expires_at is None or self.expires_at > current)
        )

    def to_metadata(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON object stored in user metadata."""
        return {
            "isPro": self.is_pro,
            "platform": self.platform.value if self.platform else None,
            "expiresAt": _format_timestamp(self.expires_at),
            "productId": self.product_id,
            "status": self.status.value if self.status else None,
            "willRenew": self.will_renew,
            "isInTrialPeriod": self.is_in_trial_period,
            "lastUpdated": _format_timestamp(self.last_updated),
        }

    @classmethod
    def from_metadata(cls, data: Mapping[str, Any]) -> "MobileSubscriptionSnapshot":
        """
        Parse the stored metadata object.

        Raises:
            ValueError: If the stored object is malformed
        """
        platform = data.get("platform")
        status = data.get("status")
        last_updated = _parse_timestamp(data.get("lastUpdated"))
        return cls(
            is_pro=bool(data.get("isPro", False)),
            platform=Platform(platform) if platform else None,
            expires_at=_parse_timestamp(data.get("expiresAt")),
            product_id=data.get("productId") or None,
            status=SubscriptionStatus(status) if status else None,
            will_renew=bool(data.get("willRenew", False)),
            is_in_trial_period=bool(data.get("isInTrialPeriod", False)),
            last_updated=last_updated or datetime.fromtimestamp(0, UTC),
        )


@dataclass(frozen=True)
class EntitlementDecision:
    """Resolved Pro entitlement - computed per request, never persisted."""

    is_pro: bool
    source: EntitlementSource
    expires_at: datetime | None = None
    platform: Platform | None = None
    will_renew: bool | None = None
    is_in_trial_period: bool | None = None

    def __post_init__(self) -> None:
        """Validate that only a real source can grant Pro."""
        if self.is_pro and self.source == EntitlementSource.NONE:
            raise ValueError("A Pro decision must name its source")
        if not self.is_pro and self.source != EntitlementSource.NONE:
            raise ValueError("A non-Pro decision must have source 'none'")

    @classmethod
    def free(cls) -> "EntitlementDecision":
        """The default not-entitled decision."""
        return cls(is_pro=False, source=EntitlementSource.NONE)


@dataclass(frozen=True)
class SubscriptionUpsert:
    """Web billing subscription state to write, keyed by user id."""

    user_id: str
    stripe_customer_id: str | None
    stripe_subscription_id: str
    status: str
    current_period_start: datetime | None
    current_period_end: datetime | None

    def __post_init__(self) -> None:
        """Validate upsert fields."""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if not self.stripe_subscription_id:
            raise ValueError("stripe_subscription_id cannot be empty")


@dataclass(frozen=True)
class SubscriptionRecordData:
    """Immutable snapshot of a stored web billing subscription record."""

    user_id: str
    plan_type: PlanType
    status: str
    current_period_start: datetime | None
    current_period_end: datetime | None
    stripe_customer_id: str | None
    stripe_subscription_id: str | None
    updated_at: datetime

    @property
    def effective_plan(self) -> PlanType:
        """A record only counts as Pro while its status is active."""
        if self.plan_type == PlanType.PRO and self.status == "active":
            return PlanType.PRO
        return PlanType.FREE


@dataclass(frozen=True)
class UsageDecision:
    """Outcome of a usage gate check-and-consume."""

    allowed: bool
    resource: ResourceClass
    count: int | None = None  # Post-increment count; None when nothing was counted
    limit: int | None = None  # None when uncapped (Pro)
    is_pro: bool = False
    fail_open: bool = False  # True when the counter store was unavailable


@dataclass(frozen=True)
class IdentityUser:
    """Identity provider user fields needed for billing sessions."""

    user_id: str
    email: str | None
    name: str | None
