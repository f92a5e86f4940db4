"""
Usage Gate - Free-tier rate limits for messages, images and deep research.

NO DICTIONARIES - Returns UsageDecision / UsageItem values.

Pro users are never counted. Free users always increment, then are allowed
iff the post-increment count is within the limit. When the counter store is
unavailable the gate fails open.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from structlog import get_logger

from entitlement_service.config import Settings
from entitlement_service.models.api import ResourceClass, UsageItem
from entitlement_service.models.domain import UsageDecision
from entitlement_service.observability.metrics import metrics
from entitlement_service.services.entitlement import EntitlementResolver
from entitlement_service.services.usage_store import UsageCounterStore, bucket_start, local_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class FreeTierLimits:
    """Per-bucket free-tier limits."""

    messages_per_hour: int = 15
    images_per_day: int = 3
    deep_research_per_day: int = 2

    def __post_init__(self) -> None:
        """Validate limits."""
        for value in (self.messages_per_hour, self.images_per_day, self.deep_research_per_day):
            if value < 0:
                raise ValueError("Usage limits cannot be negative")

    def for_resource(self, resource: ResourceClass) -> int:
        """Limit applying to one resource class."""
        if resource == ResourceClass.MESSAGE:
            return self.messages_per_hour
        if resource == ResourceClass.IMAGE:
            return self.images_per_day
        return self.deep_research_per_day


def limits_from_settings(settings: Settings) -> FreeTierLimits:
    """Build limits from configuration."""
    return FreeTierLimits(
        messages_per_hour=settings.free_hourly_message_limit,
        images_per_day=settings.free_daily_image_limit,
        deep_research_per_day=settings.free_daily_deep_research_limit,
    )


class UsageGate:
    """Decides whether one more unit of a resource may be consumed."""

    def __init__(
        self,
        resolver: EntitlementResolver,
        store: UsageCounterStore,
        limits: FreeTierLimits,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.resolver = resolver
        self.store = store
        self.limits = limits
        self.clock = clock

    async def check_and_consume(self, user_id: str, resource: ResourceClass) -> UsageDecision:
        """
        Check the user's tier and consume one unit if they are on the free tier.

        Never raises for counter store failures.
        """
        entitlement = await self.resolver.resolve(user_id)
        if entitlement.is_pro:
            metrics.record_usage_decision(resource.value, is_pro=True, allowed=True)
            return UsageDecision(allowed=True, resource=resource, is_pro=True)

        limit = self.limits.for_resource(resource)
        bucket = bucket_start(resource, self.clock())

        try:
            count = await self.store.increment(user_id, resource, bucket)
        except Exception as exc:
            logger.warning(
                "usage_gate_fail_open",
                user_id=user_id,
                resource=resource.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            metrics.record_usage_fail_open(resource.value)
            metrics.record_usage_decision(resource.value, is_pro=False, allowed=True)
            return UsageDecision(allowed=True, resource=resource, limit=limit, fail_open=True)

        allowed = count <= limit
        metrics.record_usage_decision(resource.value, is_pro=False, allowed=allowed)
        if not allowed:
            logger.info(
                "usage_limit_reached",
                user_id=user_id,
                resource=resource.value,
                count=count,
                limit=limit,
            )
        return UsageDecision(allowed=allowed, resource=resource, count=count, limit=limit)

    async def is_allowed(self, user_id: str, resource: ResourceClass) -> bool:
        """Boolean convenience over check_and_consume()."""
        return (await self.check_and_consume(user_id, resource)).allowed

    async def current_usage(self, user_id: str) -> tuple[bool, list[UsageItem]]:
        """
        Current-bucket usage for every resource class, without consuming.

        Read failures report zero usage, matching the gate's fail-open stance.
        """
        entitlement = await self.resolver.resolve(user_id)
        now = self.clock()
        items: list[UsageItem] = []

        for resource in ResourceClass:
            bucket = bucket_start(resource, now)
            try:
                used = await self.store.get_count(user_id, resource, bucket)
            except Exception as exc:
                logger.warning(
                    "usage_read_failed",
                    user_id=user_id,
                    resource=resource.value,
                    error=str(exc),
                )
                used = 0
            items.append(
                UsageItem(
                    resource=resource,
                    used=used,
                    limit=None if entitlement.is_pro else self.limits.for_resource(resource),
                    bucket_start=bucket,
                )
            )

        return entitlement.is_pro, items
