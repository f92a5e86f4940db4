"""
Clerk Backend API client - Identity oracle implementation.

Implements the IdentityOracle protocol over Clerk's REST API:
- private metadata holds the mobile subscription snapshot
- the billing subscription endpoint answers plan membership for web billing
"""

from typing import Any

import httpx
from structlog import get_logger

from entitlement_service.exceptions import MetadataOracleError
from entitlement_service.models.domain import (
    SNAPSHOT_METADATA_KEY,
    IdentityUser,
    MobileSubscriptionSnapshot,
)

logger = get_logger(__name__)

ACTIVE_PLAN_ITEM_STATUSES = frozenset({"active"})


class ClerkClient:
    """Clerk Backend API client."""

    DEFAULT_API_URL = "https://api.clerk.com/v1"

    def __init__(
        self,
        secret_key: str,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 5.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.secret_key = secret_key
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Send a request and return the decoded JSON body."""
        url = f"{self.api_url}{path}"
        try:
            response = await self.http_client.request(
                method, url, headers=self._headers(), json=json
            )
            response.raise_for_status()
            body: dict[str, Any] = response.json()
            return body

        except httpx.HTTPStatusError as e:
            logger.error(
                "clerk_request_failed",
                method=method,
                path=path,
                status=e.response.status_code,
            )
            raise MetadataOracleError(
                f"Clerk {method} {path} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            logger.error("clerk_request_error", method=method, path=path, error=str(e))
            raise MetadataOracleError(f"Clerk {method} {path} failed: {e}") from e

    async def get_user(self, user_id: str) -> dict[str, Any]:
        """Fetch the raw Clerk user object."""
        return await self._request("GET", f"/users/{user_id}")

    async def get_subscription_snapshot(self, user_id: str) -> MobileSubscriptionSnapshot | None:
        """Read the mobile subscription snapshot from private metadata."""
        user = await self.get_user(user_id)
        private_metadata = user.get("private_metadata") or {}
        stored = private_metadata.get(SNAPSHOT_METADATA_KEY)

        if not stored:
            return None
        if not isinstance(stored, dict):
            raise ValueError(f"Malformed {SNAPSHOT_METADATA_KEY} metadata for user {user_id}")

        return MobileSubscriptionSnapshot.from_metadata(stored)

    async def write_subscription_snapshot(
        self, user_id: str, snapshot: MobileSubscriptionSnapshot
    ) -> None:
        """
        Overwrite the mobile subscription snapshot in private metadata.

        Every snapshot field is sent on every write, so the stored object
        always reflects exactly one event. Clerk drops keys sent as null,
        which reads back as the same null value.
        """
        await self._request(
            "PATCH",
            f"/users/{user_id}/metadata",
            json={"private_metadata": {SNAPSHOT_METADATA_KEY: snapshot.to_metadata()}},
        )
        logger.info(
            "clerk_subscription_snapshot_written",
            user_id=user_id,
            is_pro=snapshot.is_pro,
            status=snapshot.status.value if snapshot.status else None,
        )

    async def has_plan(self, user_id: str, plan_slug: str) -> bool:
        """Check whether the user's Clerk Billing subscription has an active plan item."""
        try:
            subscription = await self._request("GET", f"/users/{user_id}/billing/subscription")
        except MetadataOracleError as e:
            # No billing subscription at all is a plain "no"
            if e.status_code == 404:
                return False
            raise

        for item in subscription.get("subscription_items") or []:
            plan = item.get("plan") or {}
            if (
                plan.get("slug") == plan_slug
                and item.get("status") in ACTIVE_PLAN_ITEM_STATUSES
            ):
                return True
        return False

    async def get_identity_user(self, user_id: str) -> IdentityUser:
        """Get the user's primary email and display name."""
        user = await self.get_user(user_id)

        email = None
        primary_id = user.get("primary_email_address_id")
        for address in user.get("email_addresses") or []:
            if address.get("id") == primary_id:
                email = address.get("email_address")
                break

        name_parts = [user.get("first_name"), user.get("last_name")]
        name = " ".join(part for part in name_parts if part) or None

        return IdentityUser(user_id=user_id, email=email, name=name)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
