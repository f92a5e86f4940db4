"""
Identity Oracle Protocol - Provider-agnostic view of the identity provider.

NO DICTIONARIES - All data uses strongly typed models.

The identity provider is authoritative for two things this service needs:
per-user private metadata (where the mobile subscription snapshot lives) and
the live "does this user hold plan X" answer of its web billing integration.
It is eventually consistent and can be unavailable; callers decide whether a
failure fails open or closed.
"""

from typing import Protocol

from entitlement_service.models.domain import IdentityUser, MobileSubscriptionSnapshot


class IdentityOracle(Protocol):
    """Identity provider operations used by the entitlement subsystem."""

    async def get_subscription_snapshot(self, user_id: str) -> MobileSubscriptionSnapshot | None:
        """
        Read the user's stored mobile subscription snapshot.

        Returns:
            The snapshot, or None if the user has never had one

        Raises:
            MetadataOracleError: If the provider cannot be reached
            ValueError: If the stored snapshot is malformed
        """
        ...

    async def write_subscription_snapshot(
        self, user_id: str, snapshot: MobileSubscriptionSnapshot
    ) -> None:
        """
        Overwrite the user's mobile subscription snapshot.

        Raises:
            MetadataOracleError: If the write fails
        """
        ...

    async def has_plan(self, user_id: str, plan_slug: str) -> bool:
        """
        Check whether the user currently holds a web billing plan.

        Raises:
            MetadataOracleError: If the provider cannot be reached
        """
        ...

    async def get_identity_user(self, user_id: str) -> IdentityUser:
        """
        Get the user's contact fields.

        Raises:
            MetadataOracleError: If the user cannot be fetched
        """
        ...
