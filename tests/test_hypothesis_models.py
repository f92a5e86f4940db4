"""
Hypothesis Property-Based Tests for entitlement models and normalization.

Uses Hypothesis to generate random inputs and verify:
- Snapshot entitlement invariants
- RevenueCat status normalization totality
- Metadata serialization round-trips
- Free-tier limit boundaries
"""

from datetime import UTC, datetime, timedelta

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from entitlement_service.models.api import Platform, ResourceClass, SubscriptionStatus
from entitlement_service.models.domain import MobileSubscriptionSnapshot
from entitlement_service.models.revenuecat import RevenueCatEvent, RevenueCatEventType
from entitlement_service.services.revenuecat_webhook import (
    ACTIVE_PURCHASE_TYPES,
    build_snapshot,
    derive_status,
)
from entitlement_service.services.usage_gate import FreeTierLimits

# ============================================================================
# Hypothesis Strategies - Reusable data generators
# ============================================================================

aware_datetimes = st.datetimes(
    min_value=datetime(2000, 1, 1),
    max_value=datetime(2100, 1, 1),
    timezones=st.just(UTC),
)

snapshot_platforms = st.sampled_from(
    [None, Platform.APP_STORE, Platform.PLAY_STORE, Platform.STRIPE, Platform.PROMOTIONAL]
)

statuses = st.sampled_from([None, *SubscriptionStatus])

event_types = st.sampled_from(list(RevenueCatEventType))

# Millisecond expiry within a year of 2026-03-15
expirations = st.one_of(
    st.none(),
    st.integers(min_value=1_741_996_800_000, max_value=1_805_068_800_000),
)

entitlement_lists = st.lists(st.sampled_from(["pro", "PRO", "Pro", "team", "plus"]), max_size=4)


@st.composite
def snapshots(draw) -> MobileSubscriptionSnapshot:
    """Generate valid snapshots with second-precision timestamps."""
    expires_at = draw(st.one_of(st.none(), aware_datetimes))
    return MobileSubscriptionSnapshot(
        is_pro=draw(st.booleans()),
        platform=draw(snapshot_platforms),
        expires_at=expires_at.replace(microsecond=0) if expires_at else None,
        product_id=draw(st.one_of(st.none(), st.text(min_size=1, max_size=40))),
        status=draw(statuses),
        will_renew=draw(st.booleans()),
        is_in_trial_period=draw(st.booleans()),
        last_updated=draw(aware_datetimes).replace(microsecond=0),
    )


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


# ============================================================================
# Snapshot Properties
# ============================================================================


class TestSnapshotProperties:
    """Property tests for MobileSubscriptionSnapshot."""

    @given(snapshot=snapshots(), now=aware_datetimes)
    @settings(max_examples=200)
    def test_entitling_implies_pro_and_active(self, snapshot, now):
        if snapshot.is_entitling(now):
            assert snapshot.is_pro
            assert snapshot.status == SubscriptionStatus.ACTIVE
            assert snapshot.expires_at is None or snapshot.expires_at > now

    @given(snapshot=snapshots())
    @settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
    def test_metadata_round_trip(self, snapshot):
        restored = MobileSubscriptionSnapshot.from_metadata(snapshot.to_metadata())
        assert restored == snapshot

    @given(snapshot=snapshots())
    def test_expired_snapshot_never_entitles(self, snapshot):
        if snapshot.expires_at is not None:
            assert not snapshot.is_entitling(snapshot.expires_at)
            assert not snapshot.is_entitling(snapshot.expires_at + timedelta(days=1))


# ============================================================================
# Normalization Properties
# ============================================================================


class TestNormalizationProperties:
    """Property tests for RevenueCat event normalization."""

    @given(event_type=event_types, expiration=expirations)
    def test_status_table_is_total(self, event_type, expiration):
        status = derive_status(event_type, expiration, NOW)
        assert status is None or isinstance(status, SubscriptionStatus)

    @given(event_type=event_types, expiration=expirations)
    def test_past_expiry_never_active(self, event_type, expiration):
        now_ms = int(NOW.timestamp() * 1000)
        if expiration is not None and expiration < now_ms:
            assert derive_status(event_type, expiration, NOW) != SubscriptionStatus.ACTIVE

    @given(event_type=event_types, expiration=expirations, entitlements=entitlement_lists)
    @settings(max_examples=300)
    def test_pro_requires_tag_active_type_and_active_status(
        self, event_type, expiration, entitlements
    ):
        event = RevenueCatEvent(
            type=event_type,
            app_user_id="user_1",
            expiration_at_ms=expiration,
            entitlement_ids=entitlements,
            store="APP_STORE",
        )
        snapshot = build_snapshot(event, "pro", NOW)

        expected = (
            any(entitlement.lower() == "pro" for entitlement in entitlements)
            and event_type in ACTIVE_PURCHASE_TYPES
            and snapshot.status == SubscriptionStatus.ACTIVE
        )
        assert snapshot.is_pro == expected
        assert snapshot.last_updated == NOW


# ============================================================================
# Usage Limit Properties
# ============================================================================


class TestFreeTierLimitProperties:
    """Property tests for limit boundaries."""

    @given(
        limit=st.integers(min_value=0, max_value=1000),
        count=st.integers(min_value=1, max_value=2000),
    )
    def test_limits_are_per_resource(self, limit, count):
        limits = FreeTierLimits(messages_per_hour=limit, images_per_day=count)
        assert limits.for_resource(ResourceClass.MESSAGE) == limit
        assert limits.for_resource(ResourceClass.IMAGE) == count
        assert limits.for_resource(ResourceClass.DEEP_RESEARCH) == 2
