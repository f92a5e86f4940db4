"""
Tests for the Entitlement Resolver.

Covers source priority, expiry handling, the free default and per-source
fail-closed degradation.
"""

from datetime import timedelta

import pytest
from conftest import TEST_USER_ID, FakeIdentityOracle, make_snapshot

from entitlement_service.models.api import EntitlementSource, Platform, SubscriptionStatus
from entitlement_service.services.entitlement import EntitlementResolver


@pytest.fixture
def resolver(oracle: FakeIdentityOracle, fixed_now) -> EntitlementResolver:
    return EntitlementResolver(oracle, "pro", clock=lambda: fixed_now)


class TestResolvePriority:
    """Tests for source ordering."""

    async def test_anonymous_is_free(self, resolver, oracle):
        decision = await resolver.resolve(None)

        assert decision.is_pro is False
        assert decision.source == EntitlementSource.NONE
        assert oracle.has_plan_calls == 0

    async def test_mobile_snapshot_wins(self, resolver, oracle, entitling_snapshot):
        oracle.snapshots[TEST_USER_ID] = entitling_snapshot
        oracle.plans[TEST_USER_ID] = {"pro"}

        decision = await resolver.resolve(TEST_USER_ID)

        assert decision.is_pro is True
        assert decision.source == EntitlementSource.REVENUECAT
        assert decision.platform == Platform.APP_STORE
        assert decision.expires_at == entitling_snapshot.expires_at
        assert oracle.has_plan_calls == 0

    async def test_web_plan_when_no_snapshot(self, resolver, oracle):
        oracle.plans[TEST_USER_ID] = {"pro"}

        decision = await resolver.resolve(TEST_USER_ID)

        assert decision.is_pro is True
        assert decision.source == EntitlementSource.CLERK
        assert decision.platform == Platform.WEB

    async def test_expired_snapshot_falls_through_to_web(self, resolver, oracle, fixed_now):
        oracle.snapshots[TEST_USER_ID] = make_snapshot(expires_at=fixed_now - timedelta(minutes=1))
        oracle.plans[TEST_USER_ID] = {"pro"}

        decision = await resolver.resolve(TEST_USER_ID)

        assert decision.source == EntitlementSource.CLERK

    async def test_expired_snapshot_without_web_plan_is_free(self, resolver, oracle, fixed_now):
        oracle.snapshots[TEST_USER_ID] = make_snapshot(expires_at=fixed_now - timedelta(days=1))

        decision = await resolver.resolve(TEST_USER_ID)

        assert decision.is_pro is False
        assert decision.source == EntitlementSource.NONE

    async def test_expiry_equal_to_now_is_not_entitling(self, resolver, oracle, fixed_now):
        oracle.snapshots[TEST_USER_ID] = make_snapshot(expires_at=fixed_now)
        assert (await resolver.resolve(TEST_USER_ID)).is_pro is False

    async def test_snapshot_without_expiry_is_entitling(self, resolver, oracle):
        oracle.snapshots[TEST_USER_ID] = make_snapshot(expires_at=None)
        decision = await resolver.resolve(TEST_USER_ID)
        assert decision.source == EntitlementSource.REVENUECAT

    @pytest.mark.parametrize(
        "status",
        [
            SubscriptionStatus.CANCELLED,
            SubscriptionStatus.EXPIRED,
            SubscriptionStatus.BILLING_ISSUE,
            None,
        ],
    )
    async def test_non_active_snapshot_is_not_entitling(self, resolver, oracle, fixed_now, status):
        oracle.snapshots[TEST_USER_ID] = make_snapshot(
            status=status, expires_at=fixed_now + timedelta(days=5)
        )
        assert (await resolver.resolve(TEST_USER_ID)).is_pro is False

    async def test_other_plan_slug_is_free(self, resolver, oracle):
        oracle.plans[TEST_USER_ID] = {"team"}
        assert (await resolver.resolve(TEST_USER_ID)).is_pro is False

    async def test_is_pro_convenience(self, resolver, oracle):
        oracle.plans[TEST_USER_ID] = {"pro"}
        assert await resolver.is_pro(TEST_USER_ID) is True


class TestSourceFailures:
    """Tests for per-source fail-closed behaviour."""

    async def test_snapshot_read_failure_falls_through_to_web(self, resolver, oracle):
        oracle.fail_snapshot_read = True
        oracle.plans[TEST_USER_ID] = {"pro"}

        decision = await resolver.resolve(TEST_USER_ID)

        assert decision.is_pro is True
        assert decision.source == EntitlementSource.CLERK

    async def test_web_check_failure_is_free(self, resolver, oracle):
        oracle.fail_has_plan = True

        decision = await resolver.resolve(TEST_USER_ID)

        assert decision.is_pro is False
        assert decision.source == EntitlementSource.NONE

    async def test_web_failure_does_not_mask_mobile_grant(
        self, resolver, oracle, entitling_snapshot
    ):
        oracle.snapshots[TEST_USER_ID] = entitling_snapshot
        oracle.fail_has_plan = True

        assert (await resolver.resolve(TEST_USER_ID)).source == EntitlementSource.REVENUECAT

    async def test_all_sources_failing_never_raises(self, resolver, oracle):
        oracle.fail_snapshot_read = True
        oracle.fail_has_plan = True

        decision = await resolver.resolve(TEST_USER_ID)

        assert decision.is_pro is False

    async def test_malformed_snapshot_is_treated_as_absent(self, oracle, fixed_now):
        class MalformedOracle(FakeIdentityOracle):
            async def get_subscription_snapshot(self, user_id):
                raise ValueError("Invalid snapshot platform: web")

        broken = MalformedOracle()
        broken.plans[TEST_USER_ID] = {"pro"}
        resolver = EntitlementResolver(broken, "pro", clock=lambda: fixed_now)

        assert (await resolver.resolve(TEST_USER_ID)).source == EntitlementSource.CLERK
