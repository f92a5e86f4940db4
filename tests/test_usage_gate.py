"""
Tests for the Usage Gate.

Uses an in-memory counter store whose increment is atomic under an asyncio
lock, mirroring the single-statement upsert of the real store.
"""

import asyncio
from datetime import datetime, timedelta

import pytest
from conftest import TEST_USER_ID, FakeIdentityOracle

from entitlement_service.config import Settings
from entitlement_service.exceptions import UsageStoreError
from entitlement_service.models.api import ResourceClass
from entitlement_service.services.entitlement import EntitlementResolver
from entitlement_service.services.usage_gate import (
    FreeTierLimits,
    UsageGate,
    limits_from_settings,
)


class InMemoryCounterStore:
    """Atomic in-memory counters keyed by (user, resource, bucket)."""

    def __init__(self) -> None:
        self.counts: dict[tuple[str, ResourceClass, datetime], int] = {}
        self.lock = asyncio.Lock()
        self.fail = False
        self.increments = 0

    async def increment(self, user_id: str, resource: ResourceClass, bucket: datetime) -> int:
        if self.fail:
            raise UsageStoreError("connection refused")
        async with self.lock:
            key = (user_id, resource, bucket)
            current = self.counts.get(key, 0)
            await asyncio.sleep(0)
            self.counts[key] = current + 1
            self.increments += 1
            return current + 1

    async def get_count(self, user_id: str, resource: ResourceClass, bucket: datetime) -> int:
        if self.fail:
            raise UsageStoreError("connection refused")
        return self.counts.get((user_id, resource, bucket), 0)


class Clock:
    """Mutable local-time clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2026, 3, 15, 10, 15, 0).astimezone())


@pytest.fixture
def gate(oracle: FakeIdentityOracle, store: InMemoryCounterStore, clock: Clock) -> UsageGate:
    resolver = EntitlementResolver(oracle, "pro")
    return UsageGate(resolver, store, FreeTierLimits(), clock=clock)


class TestFreeTier:
    """Tests for free-tier enforcement."""

    async def test_fifteenth_message_allowed_sixteenth_denied(self, gate):
        decisions = [
            await gate.check_and_consume(TEST_USER_ID, ResourceClass.MESSAGE) for _ in range(16)
        ]

        assert all(decision.allowed for decision in decisions[:15])
        assert decisions[14].count == 15
        assert decisions[15].allowed is False
        assert decisions[15].count == 16
        assert decisions[15].limit == 15

    async def test_denied_requests_still_increment(self, gate, store):
        for _ in range(18):
            await gate.check_and_consume(TEST_USER_ID, ResourceClass.MESSAGE)
        assert store.increments == 18

    async def test_image_daily_limit(self, gate):
        results = [
            await gate.is_allowed(TEST_USER_ID, ResourceClass.IMAGE) for _ in range(4)
        ]
        assert results == [True, True, True, False]

    async def test_deep_research_daily_limit(self, gate):
        results = [
            await gate.is_allowed(TEST_USER_ID, ResourceClass.DEEP_RESEARCH) for _ in range(3)
        ]
        assert results == [True, True, False]

    async def test_resources_counted_separately(self, gate):
        for _ in range(3):
            await gate.check_and_consume(TEST_USER_ID, ResourceClass.IMAGE)

        decision = await gate.check_and_consume(TEST_USER_ID, ResourceClass.DEEP_RESEARCH)
        assert decision.allowed is True
        assert decision.count == 1

    async def test_users_counted_separately(self, gate):
        for _ in range(3):
            await gate.check_and_consume(TEST_USER_ID, ResourceClass.IMAGE)
        assert await gate.is_allowed("user_other", ResourceClass.IMAGE) is True

    async def test_message_bucket_resets_next_hour(self, gate, clock):
        clock.now = datetime(2026, 3, 15, 10, 59, 59).astimezone()
        for _ in range(16):
            await gate.check_and_consume(TEST_USER_ID, ResourceClass.MESSAGE)
        assert await gate.is_allowed(TEST_USER_ID, ResourceClass.MESSAGE) is False

        clock.now = datetime(2026, 3, 15, 11, 0, 0).astimezone()
        decision = await gate.check_and_consume(TEST_USER_ID, ResourceClass.MESSAGE)
        assert decision.allowed is True
        assert decision.count == 1

    async def test_image_bucket_resets_next_day(self, gate, clock):
        clock.now = datetime(2026, 3, 15, 23, 59, 0).astimezone()
        for _ in range(3):
            await gate.check_and_consume(TEST_USER_ID, ResourceClass.IMAGE)
        assert await gate.is_allowed(TEST_USER_ID, ResourceClass.IMAGE) is False

        clock.now = clock.now + timedelta(minutes=2)
        assert await gate.is_allowed(TEST_USER_ID, ResourceClass.IMAGE) is True

    async def test_zero_limit_denies_first_use(self, oracle, store, clock):
        gate = UsageGate(
            EntitlementResolver(oracle, "pro"),
            store,
            FreeTierLimits(images_per_day=0),
            clock=clock,
        )
        assert await gate.is_allowed(TEST_USER_ID, ResourceClass.IMAGE) is False


class TestProTier:
    """Tests for Pro bypass."""

    async def test_pro_is_uncapped_and_not_counted(self, gate, oracle, store):
        oracle.plans[TEST_USER_ID] = {"pro"}

        for _ in range(50):
            decision = await gate.check_and_consume(TEST_USER_ID, ResourceClass.MESSAGE)
            assert decision.allowed is True
            assert decision.is_pro is True

        assert store.increments == 0

    async def test_resolver_outage_falls_back_to_free_limits(self, gate, oracle):
        oracle.plans[TEST_USER_ID] = {"pro"}
        oracle.fail_has_plan = True

        decision = await gate.check_and_consume(TEST_USER_ID, ResourceClass.MESSAGE)

        assert decision.is_pro is False
        assert decision.limit == 15


class TestFailOpen:
    """Tests for counter store outages."""

    async def test_store_failure_allows(self, gate, store):
        store.fail = True

        decision = await gate.check_and_consume(TEST_USER_ID, ResourceClass.MESSAGE)

        assert decision.allowed is True
        assert decision.fail_open is True
        assert decision.count is None

    async def test_store_failure_allows_after_limit(self, gate, store):
        for _ in range(16):
            await gate.check_and_consume(TEST_USER_ID, ResourceClass.MESSAGE)

        store.fail = True
        assert await gate.is_allowed(TEST_USER_ID, ResourceClass.MESSAGE) is True


class TestConcurrency:
    """Tests for concurrent check-and-consume."""

    async def test_concurrent_requests_get_distinct_counts(self, gate, store):
        """
        The gate decides on each caller's post-increment count.

        Atomicity of the SQL increment itself is not exercised here; the fake
        store serializes increments with a lock.
        """
        decisions = await asyncio.gather(
            *(gate.check_and_consume(TEST_USER_ID, ResourceClass.MESSAGE) for _ in range(40))
        )

        counts = sorted(decision.count for decision in decisions)
        assert counts == list(range(1, 41))
        assert sum(decision.allowed for decision in decisions) == 15


class TestCurrentUsage:
    """Tests for read-only usage reporting."""

    async def test_reports_all_resources_without_consuming(self, gate, store):
        for _ in range(2):
            await gate.check_and_consume(TEST_USER_ID, ResourceClass.IMAGE)
        before = store.increments

        is_pro, items = await gate.current_usage(TEST_USER_ID)

        assert is_pro is False
        assert store.increments == before
        by_resource = {item.resource: item for item in items}
        assert by_resource[ResourceClass.IMAGE].used == 2
        assert by_resource[ResourceClass.IMAGE].limit == 3
        assert by_resource[ResourceClass.MESSAGE].used == 0
        assert by_resource[ResourceClass.MESSAGE].limit == 15

    async def test_pro_has_no_limits(self, gate, oracle):
        oracle.plans[TEST_USER_ID] = {"pro"}
        is_pro, items = await gate.current_usage(TEST_USER_ID)
        assert is_pro is True
        assert all(item.limit is None for item in items)

    async def test_read_failure_reports_zero(self, gate, store):
        store.fail = True
        _, items = await gate.current_usage(TEST_USER_ID)
        assert all(item.used == 0 for item in items)


class TestLimits:
    """Tests for limit configuration."""

    def test_defaults(self):
        limits = FreeTierLimits()
        assert limits.for_resource(ResourceClass.MESSAGE) == 15
        assert limits.for_resource(ResourceClass.IMAGE) == 3
        assert limits.for_resource(ResourceClass.DEEP_RESEARCH) == 2

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            FreeTierLimits(messages_per_hour=-1)

    def test_from_settings(self):
        settings = Settings(
            database_url="postgresql+asyncpg://u:p@localhost/db",
            free_hourly_message_limit=30,
            free_daily_image_limit=5,
            free_daily_deep_research_limit=1,
        )
        limits = limits_from_settings(settings)
        assert limits == FreeTierLimits(30, 5, 1)
