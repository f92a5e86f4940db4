"""
API Routes - FastAPI endpoints for entitlement, usage and billing sessions.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlement_service.api.dependencies import (
    UserIdentity,
    get_billing_provider,
    get_current_user,
    get_entitlement_resolver,
    get_identity_oracle,
    get_mobile_sync_service,
    get_subscription_store,
    get_usage_gate,
    get_usage_reader,
)
from entitlement_service.config import settings
from entitlement_service.db.session import get_read_db
from entitlement_service.exceptions import (
    AuthorizationError,
    MetadataOracleError,
    PaymentProviderError,
    SubscriptionStoreError,
)
from entitlement_service.models.api import (
    CheckoutResponse,
    ConsumeResponse,
    EntitlementResponse,
    HealthResponse,
    PlanType,
    PortalResponse,
    ResourceClass,
    RevenueCatSyncRequest,
    RevenueCatSyncResponse,
    SubscriptionRecordResponse,
    UsageResponse,
)
from entitlement_service.models.domain import IdentityUser
from entitlement_service.services.entitlement import EntitlementResolver
from entitlement_service.services.identity_oracle import IdentityOracle
from entitlement_service.services.mobile_sync import MobileSyncService
from entitlement_service.services.payment_provider import BillingProvider
from entitlement_service.services.subscription_store import SubscriptionStore
from entitlement_service.services.usage_gate import UsageGate

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Entitlement Endpoints
# =============================================================================


@router.get("/v1/subscription/status", response_model=EntitlementResponse)
async def get_subscription_status(
    user: UserIdentity = Depends(get_current_user),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
) -> EntitlementResponse:
    """
    Resolve the caller's Pro entitlement across mobile and web billing.

    Auth: Bearer {session_jwt}
    """
    decision = await resolver.resolve(user.user_id)
    return EntitlementResponse(
        is_pro=decision.is_pro,
        source=decision.source,
        expires_at=decision.expires_at,
        platform=decision.platform,
        will_renew=decision.will_renew,
        is_in_trial_period=decision.is_in_trial_period,
    )


@router.get("/v1/subscription", response_model=SubscriptionRecordResponse)
async def get_subscription_record(
    user: UserIdentity = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_subscription_store),
) -> SubscriptionRecordResponse:
    """
    Get the caller's stored web billing record, or a free placeholder.

    This is billing history; use /v1/subscription/status for entitlement.
    """
    try:
        record = await store.get_by_user_id(user.user_id)
    except SubscriptionStoreError as exc:
        logger.error("subscription_record_read_failed", user_id=user.user_id, error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read subscription",
        ) from exc

    if record is None:
        return SubscriptionRecordResponse(plan_type=PlanType.FREE, effective_plan=PlanType.FREE)

    return SubscriptionRecordResponse(
        plan_type=record.plan_type,
        effective_plan=record.effective_plan,
        status=record.status,
        current_period_start=record.current_period_start,
        current_period_end=record.current_period_end,
        stripe_subscription_id=record.stripe_subscription_id,
    )


@router.post("/v1/revenuecat/sync", response_model=RevenueCatSyncResponse)
async def sync_revenuecat_subscription(
    request: RevenueCatSyncRequest,
    user: UserIdentity = Depends(get_current_user),
    service: MobileSyncService = Depends(get_mobile_sync_service),
) -> RevenueCatSyncResponse:
    """
    Store client-reported mobile subscription state for the caller.

    Called by the mobile app after purchases, restores and on startup, as a
    fallback for delayed webhooks.
    """
    try:
        snapshot = await service.sync(user.user_id, request)
    except AuthorizationError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User ID mismatch",
        ) from exc
    except MetadataOracleError as exc:
        logger.error("revenuecat_sync_failed", user_id=user.user_id, error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to sync subscription",
        ) from exc

    return RevenueCatSyncResponse(is_pro=snapshot.is_pro)


# =============================================================================
# Usage Endpoints
# =============================================================================


@router.get("/v1/usage", response_model=UsageResponse)
async def get_usage(
    user: UserIdentity = Depends(get_current_user),
    gate: UsageGate = Depends(get_usage_reader),
) -> UsageResponse:
    """Current-bucket usage and limits for the caller (nothing is consumed)."""
    is_pro, items = await gate.current_usage(user.user_id)
    return UsageResponse(is_pro=is_pro, items=items)


@router.post("/v1/usage/{resource}/consume", response_model=ConsumeResponse)
async def consume_usage(
    resource: ResourceClass,
    response: Response,
    user: UserIdentity = Depends(get_current_user),
    gate: UsageGate = Depends(get_usage_gate),
) -> ConsumeResponse:
    """
    Check and consume one unit of a metered resource.

    Returns 200 when allowed and 429 (same body) when the free-tier limit
    for the current bucket is exhausted.
    """
    decision = await gate.check_and_consume(user.user_id, resource)
    if not decision.allowed:
        response.status_code = status.HTTP_429_TOO_MANY_REQUESTS

    return ConsumeResponse(
        allowed=decision.allowed,
        resource=decision.resource,
        count=decision.count,
        limit=decision.limit,
        is_pro=decision.is_pro,
        fail_open=decision.fail_open,
    )


# =============================================================================
# Billing Session Endpoints
# =============================================================================


async def _get_or_create_customer(
    user_id: str,
    store: SubscriptionStore,
    oracle: IdentityOracle,
    provider: BillingProvider,
) -> str:
    customer_id = await store.get_customer_id(user_id)
    if customer_id:
        return customer_id

    try:
        identity = await oracle.get_identity_user(user_id)
    except MetadataOracleError:
        identity = IdentityUser(user_id=user_id, email=None, name=None)

    customer_id = await provider.create_customer(user_id, identity.email, identity.name)
    await store.save_customer_id(identity, customer_id)
    logger.info("billing_customer_linked", user_id=user_id, customer_id=customer_id)
    return customer_id


@router.post("/v1/billing/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    user: UserIdentity = Depends(get_current_user),
    provider: BillingProvider = Depends(get_billing_provider),
    store: SubscriptionStore = Depends(get_subscription_store),
    oracle: IdentityOracle = Depends(get_identity_oracle),
) -> CheckoutResponse:
    """
    Create a hosted checkout session for the Pro plan.

    The billing customer is created and linked on first use.
    """
    if not settings.stripe_pro_price_id:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pro price not configured",
        )

    try:
        customer_id = await _get_or_create_customer(user.user_id, store, oracle, provider)
        session = await provider.create_checkout_session(
            customer_id=customer_id,
            user_id=user.user_id,
            price_id=settings.stripe_pro_price_id,
            success_url=settings.stripe_success_url,
            cancel_url=settings.stripe_cancel_url,
        )
    except PaymentProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=exc.message,
        ) from exc
    except SubscriptionStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to link billing customer",
        ) from exc

    return CheckoutResponse(session_id=session.session_id, url=session.url)


@router.post("/v1/billing/portal", response_model=PortalResponse)
async def create_portal_session(
    user: UserIdentity = Depends(get_current_user),
    provider: BillingProvider = Depends(get_billing_provider),
    store: SubscriptionStore = Depends(get_subscription_store),
) -> PortalResponse:
    """Create a self-service billing portal session for the caller."""
    try:
        customer_id = await store.get_customer_id(user.user_id)
    except SubscriptionStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to read billing customer",
        ) from exc

    if not customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No billing account found",
        )

    try:
        url = await provider.create_portal_session(customer_id, settings.stripe_portal_return_url)
    except PaymentProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=exc.message,
        ) from exc

    return PortalResponse(url=url)


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database unavailable: {exc}",
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC),
    )
