"""
Tests for domain model validation.

Domain models enforce business rules in __post_init__.
"""

from datetime import UTC, datetime, timedelta

import pytest
from conftest import make_snapshot

from entitlement_service.models.api import (
    EntitlementSource,
    PlanType,
    Platform,
    SubscriptionStatus,
)
from entitlement_service.models.domain import (
    EntitlementDecision,
    MobileSubscriptionSnapshot,
    SubscriptionRecordData,
)


class TestMobileSubscriptionSnapshot:
    """Tests for MobileSubscriptionSnapshot validation and metadata mapping."""

    def test_web_platform_rejected(self):
        with pytest.raises(ValueError, match="platform"):
            make_snapshot(platform=Platform.WEB)

    def test_naive_expiry_rejected(self):
        with pytest.raises(ValueError, match="timezone-aware"):
            make_snapshot(expires_at=datetime(2026, 4, 1))

    def test_metadata_uses_camel_case(self):
        snapshot = make_snapshot(expires_at=datetime(2026, 4, 1, tzinfo=UTC))
        data = snapshot.to_metadata()

        assert set(data) == {
            "isPro",
            "platform",
            "expiresAt",
            "productId",
            "status",
            "willRenew",
            "isInTrialPeriod",
            "lastUpdated",
        }
        assert data["platform"] == "app_store"
        assert data["expiresAt"] == "2026-04-01T00:00:00Z"

    def test_metadata_round_trip(self):
        snapshot = make_snapshot(expires_at=datetime(2026, 4, 1, 8, 30, tzinfo=UTC))
        assert MobileSubscriptionSnapshot.from_metadata(snapshot.to_metadata()) == snapshot

    def test_nulls_round_trip(self):
        snapshot = make_snapshot(is_pro=False, status=None, platform=None)
        restored = MobileSubscriptionSnapshot.from_metadata(snapshot.to_metadata())
        assert restored.status is None
        assert restored.platform is None
        assert restored.expires_at is None

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            MobileSubscriptionSnapshot.from_metadata({"isPro": True, "status": "paused"})

    def test_missing_fields_default_to_not_pro(self):
        snapshot = MobileSubscriptionSnapshot.from_metadata({})
        assert snapshot.is_pro is False
        assert snapshot.last_updated == datetime.fromtimestamp(0, UTC)

    def test_entitling_requires_active_status(self, fixed_now):
        snapshot = make_snapshot(status=SubscriptionStatus.BILLING_ISSUE)
        assert snapshot.is_entitling(fixed_now) is False

    def test_entitling_requires_future_expiry(self, fixed_now):
        assert make_snapshot(expires_at=fixed_now + timedelta(seconds=1)).is_entitling(fixed_now)
        assert not make_snapshot(expires_at=fixed_now).is_entitling(fixed_now)


class TestEntitlementDecision:
    """Tests for EntitlementDecision invariants."""

    def test_free_default(self):
        decision = EntitlementDecision.free()
        assert decision.is_pro is False
        assert decision.source == EntitlementSource.NONE

    def test_pro_requires_source(self):
        with pytest.raises(ValueError, match="source"):
            EntitlementDecision(is_pro=True, source=EntitlementSource.NONE)

    def test_free_cannot_name_source(self):
        with pytest.raises(ValueError):
            EntitlementDecision(is_pro=False, source=EntitlementSource.CLERK)

    def test_immutable(self):
        decision = EntitlementDecision.free()
        with pytest.raises(AttributeError):
            decision.is_pro = True  # type: ignore[misc]


class TestSubscriptionRecordData:
    """Tests for the effective plan of a stored record."""

    @staticmethod
    def record(plan_type: PlanType, status: str) -> SubscriptionRecordData:
        return SubscriptionRecordData(
            user_id="user_1",
            plan_type=plan_type,
            status=status,
            current_period_start=None,
            current_period_end=None,
            stripe_customer_id=None,
            stripe_subscription_id="sub_1",
            updated_at=datetime(2026, 1, 1, tzinfo=UTC),
        )

    def test_active_pro(self):
        assert self.record(PlanType.PRO, "active").effective_plan == PlanType.PRO

    @pytest.mark.parametrize("status", ["past_due", "trialing", "canceled", "incomplete"])
    def test_non_active_pro_is_free(self, status):
        assert self.record(PlanType.PRO, status).effective_plan == PlanType.FREE

    def test_free_plan(self):
        assert self.record(PlanType.FREE, "active").effective_plan == PlanType.FREE
