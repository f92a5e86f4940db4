"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    Thin local mirror of an identity provider user. The primary key is the
    identity provider's user id; rows exist only to hold billing linkage.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Billing linkage
    stripe_customer_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, stripe_customer_id={self.stripe_customer_id})>"


class Subscription(Base):
    """
    ORM model for subscriptions table.

    Web billing subscription state per user, written only by the Stripe
    webhook handler. Billing history and audit; not an entitlement source.
    """

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    plan_type: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    # Provider status copied verbatim (active, canceled, past_due, trialing, ...)
    status: Mapped[str] = mapped_column(String(50), nullable=False)

    current_period_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("plan_type IN ('free', 'pro')", name="ck_subscriptions_plan_type"),
        Index(
            "idx_subscriptions_stripe_subscription_id",
            "stripe_subscription_id",
            postgresql_where=(stripe_subscription_id.isnot(None)),
        ),
        Index("idx_subscriptions_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Subscription(user_id={self.user_id}, plan_type={self.plan_type}, "
            f"status={self.status})>"
        )


class UsageCounter(Base):
    """
    ORM model for usage_counters table.

    One row per (user, resource, time bucket). Rows are created by the first
    increment in a bucket and only ever incremented afterwards.
    """

    __tablename__ = "usage_counters"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource: Mapped[str] = mapped_column(String(32), nullable=False)
    bucket_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("count >= 0", name="ck_usage_counters_count_non_negative"),
        CheckConstraint(
            "resource IN ('message', 'image', 'deep_research')",
            name="ck_usage_counters_resource",
        ),
        UniqueConstraint("user_id", "resource", "bucket_start", name="uq_usage_counter_bucket"),
        Index("idx_usage_counters_bucket_start", "bucket_start"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<UsageCounter(user_id={self.user_id}, resource={self.resource}, "
            f"bucket_start={self.bucket_start}, count={self.count})>"
        )
