"""
FastAPI Dependencies - Authentication and service wiring.

NO DICTIONARIES - All dependencies return typed objects.

Services receive their clients through these dependencies; tests replace
them with app.dependency_overrides.
"""

from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlement_service.config import settings
from entitlement_service.db.session import get_read_db, get_write_db
from entitlement_service.exceptions import AuthenticationError
from entitlement_service.services.clerk_client import ClerkClient
from entitlement_service.services.entitlement import EntitlementResolver
from entitlement_service.services.identity_oracle import IdentityOracle
from entitlement_service.services.mobile_sync import MobileSyncService
from entitlement_service.services.payment_provider import BillingProvider
from entitlement_service.services.revenuecat_webhook import RevenueCatWebhookHandler
from entitlement_service.services.stripe_provider import StripeProvider
from entitlement_service.services.stripe_webhook import StripeWebhookHandler
from entitlement_service.services.subscription_store import SubscriptionStore
from entitlement_service.services.usage_gate import UsageGate, limits_from_settings
from entitlement_service.services.usage_store import UsageCounterStore

logger = get_logger(__name__)

# ============================================================================
# User Session Authentication (Clerk session JWT)
# ============================================================================


@dataclass
class UserIdentity:
    """Authenticated user identity from a session token."""

    user_id: str  # Identity provider user id (sub claim)
    session_id: str | None = None


# Bearer token scheme for JWT auth
bearer_scheme = HTTPBearer(auto_error=False)

_jwks_client: jwt.PyJWKClient | None = None


def get_jwks_client() -> jwt.PyJWKClient:
    """Get or create the JWKS client (signing keys are cached by PyJWT)."""
    global _jwks_client
    if _jwks_client is None:
        if not settings.clerk_jwks_url:
            raise AuthenticationError("CLERK_JWKS_URL is not configured")
        _jwks_client = jwt.PyJWKClient(settings.clerk_jwks_url, cache_keys=True)
    return _jwks_client


def verify_session_token(
    token: str,
    jwks_client: jwt.PyJWKClient,
    authorized_parties: list[str],
) -> UserIdentity:
    """
    Verify a session JWT and extract the user identity.

    Checks the RS256 signature against the JWKS, expiry and not-before, and
    the azp claim when authorized parties are configured.

    Raises:
        AuthenticationError: If the token is invalid
    """
    try:
        signing_key = jwks_client.get_signing_key_from_jwt(token)
        claims: dict[str, Any] = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            options={"require": ["exp", "sub"], "verify_aud": False},
            leeway=5,
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Session token expired") from e
    except jwt.PyJWKClientError as e:
        raise AuthenticationError(f"Signing key lookup failed: {e}") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(f"Invalid session token: {e}") from e

    azp = claims.get("azp")
    if authorized_parties and azp and azp not in authorized_parties:
        raise AuthenticationError(f"Unauthorized party: {azp}")

    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationError("Session token missing subject")

    return UserIdentity(user_id=str(user_id), session_id=claims.get("sid"))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UserIdentity:
    """
    FastAPI dependency to validate the session token from the Authorization header.

    Accepts: Authorization: Bearer {session_jwt}

    Raises:
        HTTPException 401 if no token or invalid token
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        jwks_client = get_jwks_client()
        # PyJWKClient fetches keys with blocking I/O
        return await run_in_threadpool(
            verify_session_token,
            credentials.credentials,
            jwks_client,
            settings.authorized_parties,
        )
    except AuthenticationError as exc:
        logger.warning("session_token_rejected", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


# ============================================================================
# Identity Provider Client
# ============================================================================

_clerk_client: ClerkClient | None = None


def get_clerk_client() -> ClerkClient:
    """Get or create the shared Clerk client."""
    global _clerk_client
    if _clerk_client is None:
        _clerk_client = ClerkClient(
            secret_key=settings.clerk_secret_key,
            api_url=settings.clerk_api_url,
            timeout_seconds=settings.clerk_http_timeout_seconds,
        )
    return _clerk_client


async def close_clerk_client() -> None:
    """Close the shared Clerk client (for graceful shutdown)."""
    global _clerk_client
    if _clerk_client is not None:
        await _clerk_client.close()
        _clerk_client = None


def get_identity_oracle() -> IdentityOracle:
    """FastAPI dependency for the identity/metadata oracle."""
    return get_clerk_client()


# ============================================================================
# Service Factories
# ============================================================================


def get_entitlement_resolver(
    oracle: IdentityOracle = Depends(get_identity_oracle),
) -> EntitlementResolver:
    """FastAPI dependency for the entitlement resolver."""
    return EntitlementResolver(oracle, settings.clerk_pro_plan_slug)


def get_usage_gate(
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
    db: AsyncSession = Depends(get_write_db),
) -> UsageGate:
    """FastAPI dependency for the usage gate (counters on the primary)."""
    return UsageGate(resolver, UsageCounterStore(db), limits_from_settings(settings))


def get_usage_reader(
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
    db: AsyncSession = Depends(get_read_db),
) -> UsageGate:
    """FastAPI dependency for read-only usage reporting."""
    return UsageGate(resolver, UsageCounterStore(db), limits_from_settings(settings))


def get_subscription_store(db: AsyncSession = Depends(get_write_db)) -> SubscriptionStore:
    """FastAPI dependency for the subscription record store."""
    return SubscriptionStore(db)


def get_mobile_sync_service(
    oracle: IdentityOracle = Depends(get_identity_oracle),
) -> MobileSyncService:
    """FastAPI dependency for manual mobile sync."""
    return MobileSyncService(oracle)


def get_revenuecat_handler(
    oracle: IdentityOracle = Depends(get_identity_oracle),
) -> RevenueCatWebhookHandler:
    """FastAPI dependency for the RevenueCat webhook handler."""
    return RevenueCatWebhookHandler(
        oracle,
        webhook_secret=settings.revenuecat_webhook_secret,
        pro_entitlement_id=settings.revenuecat_pro_entitlement_id,
    )


def get_billing_provider() -> BillingProvider:
    """
    FastAPI dependency for the card billing provider.

    Raises:
        HTTPException 503 if Stripe is not configured
    """
    if not settings.stripe_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Card billing is not configured",
        )
    return StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
    )


def get_stripe_webhook_handler(
    store: SubscriptionStore = Depends(get_subscription_store),
) -> StripeWebhookHandler:
    """
    FastAPI dependency for the Stripe webhook handler.

    Raises:
        HTTPException 500 if the webhook secret is not configured
    """
    if not settings.stripe_webhook_secret:
        logger.error("stripe_webhook_secret_missing")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe webhook secret not configured",
        )
    provider = StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
    )
    return StripeWebhookHandler(provider, store)
