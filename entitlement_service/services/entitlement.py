"""
Entitlement Resolver - Single answer to "is this user Pro right now?".

NO DICTIONARIES - Returns EntitlementDecision.

Sources are consulted in priority order:
1. Mobile subscription snapshot in identity metadata (must be entitling now)
2. Identity provider web billing plan check

A failing source is logged, counted and treated as "not entitled by this
source"; resolution continues with the next one. resolve() never raises.
Decisions are computed per call and never cached.
"""

import time
from collections.abc import Callable
from datetime import UTC, datetime

from structlog import get_logger

from entitlement_service.models.api import EntitlementSource, Platform
from entitlement_service.models.domain import EntitlementDecision
from entitlement_service.observability.metrics import metrics
from entitlement_service.observability.tracing import add_span_attributes, get_tracer
from entitlement_service.services.identity_oracle import IdentityOracle

logger = get_logger(__name__)
tracer = get_tracer(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class EntitlementResolver:
    """Merges the mobile snapshot and the web billing plan into one decision."""

    def __init__(
        self,
        oracle: IdentityOracle,
        pro_plan_slug: str,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.oracle = oracle
        self.pro_plan_slug = pro_plan_slug
        self.clock = clock

    async def resolve(self, user_id: str | None) -> EntitlementDecision:
        """Resolve the user's Pro entitlement. Anonymous callers are free."""
        if not user_id:
            return EntitlementDecision.free()

        start = time.perf_counter()
        with tracer.start_as_current_span("entitlement.resolve") as span:
            add_span_attributes(span, **{"entitlement.user_id": user_id})

            decision = await self._from_mobile_snapshot(user_id)
            if decision is None:
                decision = await self._from_web_plan(user_id)
            if decision is None:
                decision = EntitlementDecision.free()

            add_span_attributes(
                span,
                **{
                    "entitlement.is_pro": decision.is_pro,
                    "entitlement.source": decision.source.value,
                },
            )

        metrics.record_resolution(decision.source.value, time.perf_counter() - start)
        logger.debug(
            "entitlement_resolved",
            user_id=user_id,
            is_pro=decision.is_pro,
            source=decision.source.value,
        )
        return decision

    async def is_pro(self, user_id: str | None) -> bool:
        """Boolean convenience over resolve()."""
        return (await self.resolve(user_id)).is_pro

    async def _from_mobile_snapshot(self, user_id: str) -> EntitlementDecision | None:
        try:
            snapshot = await self.oracle.get_subscription_snapshot(user_id)
        except Exception as exc:
            self._source_failed(EntitlementSource.REVENUECAT, user_id, exc)
            return None

        if snapshot is None or not snapshot.is_entitling(self.clock()):
            return None

        return EntitlementDecision(
            is_pro=True,
            source=EntitlementSource.REVENUECAT,
            expires_at=snapshot.expires_at,
            platform=snapshot.platform,
            will_renew=snapshot.will_renew,
            is_in_trial_period=snapshot.is_in_trial_period,
        )

    async def _from_web_plan(self, user_id: str) -> EntitlementDecision | None:
        try:
            has_plan = await self.oracle.has_plan(user_id, self.pro_plan_slug)
        except Exception as exc:
            self._source_failed(EntitlementSource.CLERK, user_id, exc)
            return None

        if not has_plan:
            return None

        return EntitlementDecision(
            is_pro=True,
            source=EntitlementSource.CLERK,
            platform=Platform.WEB,
        )

    def _source_failed(self, source: EntitlementSource, user_id: str, exc: Exception) -> None:
        # Fail closed for this source only
        logger.warning(
            "entitlement_source_failed",
            source=source.value,
            user_id=user_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        metrics.record_source_failure(source.value, type(exc).__name__)
