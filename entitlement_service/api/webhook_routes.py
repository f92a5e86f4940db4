"""
Webhook Routes - Inbound subscription events from RevenueCat and Stripe.

NO DICTIONARIES - Handlers return typed events; responses are Pydantic models.

Status codes drive provider redelivery: 4xx means "do not retry, the event is
bad", 5xx means "retry later". Signature failures never write anything.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from structlog import get_logger

from entitlement_service.api.dependencies import (
    get_revenuecat_handler,
    get_stripe_webhook_handler,
)
from entitlement_service.exceptions import (
    MetadataOracleError,
    SubscriptionStoreError,
    WebhookPayloadError,
    WebhookVerificationError,
)
from entitlement_service.models.api import WebhookAckResponse, WebhookInfoResponse
from entitlement_service.models.revenuecat import RevenueCatEventType
from entitlement_service.services.revenuecat_webhook import (
    SIGNATURE_HEADER,
    RevenueCatWebhookHandler,
)
from entitlement_service.services.stripe_webhook import StripeWebhookHandler

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/webhooks", tags=["webhooks"])

REVENUECAT_WEBHOOK_PATH = "/v1/webhooks/revenuecat"


@router.post("/revenuecat", response_model=WebhookAckResponse)
async def revenuecat_webhook(
    request: Request,
    handler: RevenueCatWebhookHandler = Depends(get_revenuecat_handler),
) -> WebhookAckResponse:
    """
    Handle RevenueCat subscription events.

    Verifies the HMAC signature over the raw body, normalizes the event and
    overwrites the user's mobile subscription snapshot.
    """
    if not handler.webhook_secret:
        logger.error("revenuecat_webhook_secret_missing")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        )

    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        event, _ = await handler.handle(payload, signature)
    except WebhookVerificationError as exc:
        logger.warning("revenuecat_webhook_unauthorized", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        ) from exc
    except WebhookPayloadError as exc:
        logger.warning("revenuecat_webhook_invalid_payload", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.message,
        ) from exc
    except MetadataOracleError as exc:
        logger.error("revenuecat_webhook_store_failed", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store subscription",
        ) from exc

    return WebhookAckResponse(event_type=event.type.value)


@router.get("/revenuecat", response_model=WebhookInfoResponse)
async def revenuecat_webhook_info() -> WebhookInfoResponse:
    """Describe the RevenueCat webhook endpoint."""
    return WebhookInfoResponse(
        endpoint=REVENUECAT_WEBHOOK_PATH,
        description="RevenueCat webhook handler for subscription events",
        supported_events=[event_type.value for event_type in RevenueCatEventType],
    )


@router.post("/stripe", response_model=WebhookAckResponse)
async def stripe_webhook(
    request: Request,
    handler: StripeWebhookHandler = Depends(get_stripe_webhook_handler),
) -> WebhookAckResponse:
    """
    Handle Stripe subscription events.

    created/updated upsert the Subscription Record, deleted cancels it, and
    any other event type is acknowledged and ignored.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event_type, outcome = await handler.handle(payload, signature)
    except WebhookVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        ) from exc
    except WebhookPayloadError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.message,
        ) from exc
    except SubscriptionStoreError as exc:
        logger.error("stripe_webhook_processing_failed", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    return WebhookAckResponse(status=outcome.value, event_type=event_type)
