"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ResourceClass(str, Enum):
    """Metered free-tier resource."""

    MESSAGE = "message"
    IMAGE = "image"
    DEEP_RESEARCH = "deep_research"


class PlanType(str, Enum):
    """Plan stored on a web billing subscription record."""

    FREE = "free"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    """Normalized mobile subscription status."""

    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    BILLING_ISSUE = "billing_issue"


class Platform(str, Enum):
    """Store a subscription was purchased through."""

    APP_STORE = "app_store"
    PLAY_STORE = "play_store"
    STRIPE = "stripe"
    PROMOTIONAL = "promotional"
    WEB = "web"


class EntitlementSource(str, Enum):
    """Which upstream system granted (or failed to grant) Pro."""

    REVENUECAT = "revenuecat"
    CLERK = "clerk"
    NONE = "none"


# ============================================================================
# Manual Mobile Sync Models
# ============================================================================


class CustomerInfo(BaseModel):
    """Subset of the mobile SDK's CustomerInfo sent on manual sync."""

    model_config = ConfigDict(populate_by_name=True)

    original_app_user_id: str = Field(..., alias="originalAppUserId", min_length=1)
    active_subscriptions: list[str] = Field(default_factory=list, alias="activeSubscriptions")
    entitlements: list[str] = Field(default_factory=list)


class RevenueCatSyncRequest(BaseModel):
    """POST /v1/revenuecat/sync request body."""

    model_config = ConfigDict(populate_by_name=True)

    is_pro: bool = Field(..., alias="isPro")
    customer_info: CustomerInfo | None = Field(None, alias="customerInfo")


class RevenueCatSyncResponse(BaseModel):
    """POST /v1/revenuecat/sync response."""

    success: bool = True
    message: str = "Subscription synced successfully"
    is_pro: bool


# ============================================================================
# Entitlement / Subscription Models
# ============================================================================


class EntitlementResponse(BaseModel):
    """GET /v1/subscription/status response."""

    is_pro: bool
    source: EntitlementSource
    expires_at: datetime | None = None
    platform: Platform | None = None
    will_renew: bool | None = None
    is_in_trial_period: bool | None = None


class SubscriptionRecordResponse(BaseModel):
    """GET /v1/subscription response - stored web billing record."""

    plan_type: PlanType
    effective_plan: PlanType
    status: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    stripe_subscription_id: str | None = None


# ============================================================================
# Usage Models
# ============================================================================


class UsageItem(BaseModel):
    """Current bucket usage for one resource."""

    resource: ResourceClass
    used: int = Field(..., ge=0)
    limit: int | None = Field(None, description="None when the caller is Pro (uncapped)")
    bucket_start: datetime


class UsageResponse(BaseModel):
    """GET /v1/usage response."""

    is_pro: bool
    items: list[UsageItem]


class ConsumeResponse(BaseModel):
    """POST /v1/usage/{resource}/consume response."""

    allowed: bool
    resource: ResourceClass
    count: int | None = None
    limit: int | None = None
    is_pro: bool = False
    fail_open: bool = False


# ============================================================================
# Billing Session Models
# ============================================================================


class CheckoutResponse(BaseModel):
    """POST /v1/billing/checkout response."""

    session_id: str
    url: str | None = None


class PortalResponse(BaseModel):
    """POST /v1/billing/portal response."""

    url: str


# ============================================================================
# Webhook / Health Models
# ============================================================================


class WebhookAckResponse(BaseModel):
    """Acknowledgement returned to webhook senders."""

    success: bool = True
    status: str = "processed"
    event_type: str | None = None


class WebhookInfoResponse(BaseModel):
    """GET description of a webhook endpoint."""

    endpoint: str
    description: str
    supported_events: list[str]


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: datetime
