"""
Subscription Record Store - Web billing subscription state per user.

NO DICTIONARIES - Reads return SubscriptionRecordData, writes take
SubscriptionUpsert.

Both write paths are naturally idempotent: upsert keyed by user id, and
cancel keyed by the provider subscription id. Provider redelivery of the same
event converges on the same row.
"""

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlement_service.db.models import Subscription, User, utc_now
from entitlement_service.exceptions import SubscriptionStoreError
from entitlement_service.models.api import PlanType
from entitlement_service.models.domain import (
    IdentityUser,
    SubscriptionRecordData,
    SubscriptionUpsert,
)

logger = get_logger(__name__)


def _to_record(row: Subscription) -> SubscriptionRecordData:
    return SubscriptionRecordData(
        user_id=row.user_id,
        plan_type=PlanType(row.plan_type),
        status=row.status,
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        stripe_customer_id=row.stripe_customer_id,
        stripe_subscription_id=row.stripe_subscription_id,
        updated_at=row.updated_at,
    )


class SubscriptionStore:
    """PostgreSQL-backed subscription records and billing customer linkage."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize subscription store with database session."""
        self.session = session

    async def upsert(self, intent: SubscriptionUpsert) -> bool:
        """
        Create or update the user's subscription record as the Pro plan.

        Also backfills the user's billing customer id when it is unset.

        Returns:
            True if the user's billing customer id was backfilled

        Raises:
            SubscriptionStoreError: If the write fails
        """
        now = utc_now()
        insert_stmt = pg_insert(Subscription).values(
            user_id=intent.user_id,
            plan_type=PlanType.PRO.value,
            status=intent.status,
            current_period_start=intent.current_period_start,
            current_period_end=intent.current_period_end,
            stripe_customer_id=intent.stripe_customer_id,
            stripe_subscription_id=intent.stripe_subscription_id,
            created_at=now,
            updated_at=now,
        )
        upsert_stmt = insert_stmt.on_conflict_do_update(
            index_elements=[Subscription.user_id],
            set_={
                "plan_type": PlanType.PRO.value,
                "status": insert_stmt.excluded.status,
                "current_period_start": insert_stmt.excluded.current_period_start,
                "current_period_end": insert_stmt.excluded.current_period_end,
                "stripe_subscription_id": insert_stmt.excluded.stripe_subscription_id,
                "stripe_customer_id": func.coalesce(
                    Subscription.stripe_customer_id, insert_stmt.excluded.stripe_customer_id
                ),
                "updated_at": now,
            },
        )

        try:
            await self.session.execute(upsert_stmt)

            backfilled = False
            if intent.stripe_customer_id:
                result = await self.session.execute(
                    self._backfill_customer_stmt(intent.user_id, intent.stripe_customer_id)
                )
                backfilled = bool(result.rowcount)

            await self.session.commit()
        except SQLAlchemyError as exc:
            logger.error(
                "subscription_upsert_failed",
                user_id=intent.user_id,
                stripe_subscription_id=intent.stripe_subscription_id,
                error=str(exc),
            )
            await self.session.rollback()
            raise SubscriptionStoreError(f"Failed to upsert subscription: {exc}") from exc

        logger.info(
            "subscription_upserted",
            user_id=intent.user_id,
            status=intent.status,
            stripe_subscription_id=intent.stripe_subscription_id,
            customer_id_backfilled=backfilled,
        )
        return backfilled

    @staticmethod
    def _backfill_customer_stmt(user_id: str, stripe_customer_id: str):
        """
        Link a billing customer id to a user unless one is already linked.

        Creates the local user row when a subscription event arrives before
        the user ever opened checkout. rowcount is 0 only when the user
        already had a customer id.
        """
        now = utc_now()
        insert_stmt = pg_insert(User).values(
            id=user_id,
            stripe_customer_id=stripe_customer_id,
            created_at=now,
            updated_at=now,
        )
        return insert_stmt.on_conflict_do_update(
            index_elements=[User.id],
            set_={"stripe_customer_id": insert_stmt.excluded.stripe_customer_id, "updated_at": now},
            where=User.stripe_customer_id.is_(None),
        )

    async def mark_canceled(self, stripe_subscription_id: str) -> bool:
        """
        Cancel the record holding a provider subscription id.

        Delete events may not carry user metadata, so the lookup is by
        subscription id. Unknown ids are a no-op.

        Returns:
            True if a record was found and canceled

        Raises:
            SubscriptionStoreError: If the read or write fails
        """
        try:
            result = await self.session.execute(
                select(Subscription)
                .where(Subscription.stripe_subscription_id == stripe_subscription_id)
                .limit(1)
            )
            row = result.scalar_one_or_none()

            if row is None:
                logger.info(
                    "subscription_cancel_no_record",
                    stripe_subscription_id=stripe_subscription_id,
                )
                return False

            row.status = "canceled"
            row.plan_type = PlanType.FREE.value
            await self.session.flush()
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise SubscriptionStoreError(f"Failed to cancel subscription: {exc}") from exc

        logger.info(
            "subscription_canceled",
            user_id=row.user_id,
            stripe_subscription_id=stripe_subscription_id,
        )
        return True

    async def get_by_user_id(self, user_id: str) -> SubscriptionRecordData | None:
        """Get the stored record for a user, if any."""
        try:
            result = await self.session.execute(
                select(Subscription).where(Subscription.user_id == user_id)
            )
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError(f"Failed to read subscription: {exc}") from exc

        row = result.scalar_one_or_none()
        return _to_record(row) if row is not None else None

    async def get_customer_id(self, user_id: str) -> str | None:
        """Get the billing customer id linked to a user, if any."""
        try:
            result = await self.session.execute(
                select(User.stripe_customer_id).where(User.id == user_id)
            )
        except SQLAlchemyError as exc:
            raise SubscriptionStoreError(f"Failed to read billing customer: {exc}") from exc

        customer_id: str | None = result.scalar_one_or_none()
        return customer_id

    async def save_customer_id(self, user: IdentityUser, stripe_customer_id: str) -> None:
        """Create the local user row if needed and link a billing customer id."""
        now = utc_now()
        insert_stmt = pg_insert(User).values(
            id=user.user_id,
            email=user.email,
            name=user.name,
            stripe_customer_id=stripe_customer_id,
            created_at=now,
            updated_at=now,
        )
        upsert_stmt = insert_stmt.on_conflict_do_update(
            index_elements=[User.id],
            set_={
                "email": insert_stmt.excluded.email,
                "name": insert_stmt.excluded.name,
                "stripe_customer_id": insert_stmt.excluded.stripe_customer_id,
                "updated_at": now,
            },
        )
        try:
            await self.session.execute(upsert_stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise SubscriptionStoreError(f"Failed to save billing customer: {exc}") from exc
