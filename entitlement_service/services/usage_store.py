"""
Usage Counter Store - Atomic per-user, per-resource, per-bucket counters.

NO DICTIONARIES - Counters are addressed by (user_id, ResourceClass, bucket).

The increment is a single INSERT ... ON CONFLICT DO UPDATE ... RETURNING
statement. PostgreSQL serializes concurrent upserts on the unique
(user_id, resource, bucket_start) key, so every caller observes a distinct
post-increment value and no update is lost.
"""

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlement_service.db.models import UsageCounter
from entitlement_service.exceptions import UsageStoreError
from entitlement_service.models.api import ResourceClass

logger = get_logger(__name__)

HOURLY_RESOURCES = frozenset({ResourceClass.MESSAGE})


def local_now() -> datetime:
    """Current time in the process's local time zone (timezone-aware)."""
    return datetime.now().astimezone()


def bucket_start(resource: ResourceClass, now: datetime | None = None) -> datetime:
    """
    Start of the time bucket containing `now` for a resource.

    Messages are bucketed by calendar hour, images and deep research by
    calendar day, both in the local time zone of `now` (naive values are
    interpreted as process-local time).

    Day buckets take the UTC offset in force at local midnight, so a
    calendar day spanning a DST change maps to one bucket.
    """
    current = (now or local_now()).astimezone()
    if resource in HOURLY_RESOURCES:
        return current.replace(minute=0, second=0, microsecond=0)
    midnight = current.replace(tzinfo=None, hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone()


class UsageCounterStore:
    """PostgreSQL-backed usage counters."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize usage counter store with database session."""
        self.session = session

    async def increment(self, user_id: str, resource: ResourceClass, bucket: datetime) -> int:
        """
        Atomically increment (or create at 1) a bucket counter.

        Returns:
            The post-increment count

        Raises:
            UsageStoreError: If the database is unavailable or the write fails
        """
        stmt = (
            pg_insert(UsageCounter)
            .values(user_id=user_id, resource=resource.value, bucket_start=bucket, count=1)
            .on_conflict_do_update(
                constraint="uq_usage_counter_bucket",
                set_={"count": UsageCounter.count + 1},
            )
            .returning(UsageCounter.count)
        )

        try:
            result = await self.session.execute(stmt)
            count: int = result.scalar_one()
            await self.session.commit()
        except SQLAlchemyError as exc:
            logger.error(
                "usage_counter_increment_failed",
                user_id=user_id,
                resource=resource.value,
                error=str(exc),
            )
            await self.session.rollback()
            raise UsageStoreError(f"Failed to increment {resource.value} counter: {exc}") from exc

        return count

    async def get_count(self, user_id: str, resource: ResourceClass, bucket: datetime) -> int:
        """
        Read a bucket counter without incrementing it (0 when absent).

        Raises:
            UsageStoreError: If the database is unavailable
        """
        stmt = select(UsageCounter.count).where(
            UsageCounter.user_id == user_id,
            UsageCounter.resource == resource.value,
            UsageCounter.bucket_start == bucket,
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            raise UsageStoreError(f"Failed to read {resource.value} counter: {exc}") from exc

        count = result.scalar_one_or_none()
        return count or 0

    async def purge_before(self, cutoff: datetime) -> int:
        """
        Delete buckets that started before `cutoff`.

        Request paths never read old buckets again; this only reclaims space.

        Returns:
            Number of deleted rows
        """
        stmt = delete(UsageCounter).where(UsageCounter.bucket_start < cutoff)
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise UsageStoreError(f"Failed to purge usage counters: {exc}") from exc

        deleted: int = result.rowcount or 0
        logger.info("usage_counters_purged", cutoff=cutoff.isoformat(), deleted=deleted)
        return deleted
