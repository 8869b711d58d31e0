"""
Pydantic schemas for provisioning and workspace API endpoints.
"""

from datetime import datetime
from decimal import Decimal

from ninja import Schema
from pydantic import Field

from apps.billing.plans import DEFAULT_PLAN_ID, BillingInterval
from apps.workspaces.usage import ResetScope

# --- Provisioning ---


class CreateIntentRequest(Schema):
    """Stage a signup and start checkout."""

    name: str = Field(min_length=1, max_length=255, description="Workspace display name")
    slug: str = Field(
        min_length=2,
        max_length=128,
        pattern=r"^[a-z0-9][a-z0-9-]*$",
        description="Organization slug (lowercase letters, digits, hyphens)",
    )
    logo: str | None = Field(None, description="Base64-encoded logo image (PNG, JPEG, WebP, GIF)")
    plan_id: str = Field(DEFAULT_PLAN_ID, description="Plan from the catalogue, e.g. 'growth'")
    billing_interval: BillingInterval = BillingInterval.MONTH
    email: str | None = Field(None, description="Prefill the checkout email")
    success_url: str = Field(description="Where checkout redirects on success")
    cancel_url: str = Field(description="Where checkout redirects on cancel")


class CreateIntentResponse(Schema):
    signup_token: str = Field(description="Send back as X-Signup-Token when running provisioning")
    checkout_session_id: str
    checkout_url: str
    expires_at: datetime


class RunProvisioningRequest(Schema):
    checkout_session_id: str = Field(description="Checkout session id from the success redirect")


class ProvisioningRunResponse(Schema):
    """Step-level progress of a provisioning run."""

    checkout_session_id: str
    state: str
    history: list[str]
    failed_step: str
    error_message: str
    attempts: int
    workspace_id: int | None


# --- Workspaces ---


class SyncFacetsSchema(Schema):
    org_db_synced: bool
    db_customer_synced: bool
    customer_subscription_synced: bool
    canceling: bool


class WorkspaceResponse(Schema):
    id: int
    stytch_org_id: str
    name: str
    slug: str
    logo_url: str
    status: str = Field(description="Canonical status")
    subscription_status: str = Field(description="Mirrored Stripe subscription status")
    is_active: bool
    plan_id: str
    plan_name: str
    billing_interval: str
    price_amount: Decimal | None
    currency: str
    stripe_customer_id: str
    stripe_subscription_id: str | None
    trial_end: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    ended_at: datetime | None
    admin_suspended_at: datetime | None
    suspension_reason: str
    created_at: datetime


class StatusResponse(Schema):
    workspace_id: int
    status: str
    subscription_status: str
    is_active: bool
    facets: SyncFacetsSchema
    trial_end: datetime | None
    current_period_end: datetime | None


class UsageLineSchema(Schema):
    counter: str
    used: int
    lifetime: int
    limit: int | None = Field(description="Null means unlimited")
    remaining: int | None


class UsageResponse(Schema):
    workspace_id: int
    counters: list[UsageLineSchema]
    credits_balance: int
    last_activity_at: datetime | None
    usage_reset_at: datetime | None


class ExtendTrialRequest(Schema):
    days: int = Field(ge=1, le=365)


class SetTrialEndRequest(Schema):
    trial_end: datetime


class CancelRequest(Schema):
    immediate: bool = False


class SuspendRequest(Schema):
    reason: str = Field("", max_length=500)


class AddCreditsRequest(Schema):
    amount: int = Field(ge=1, le=1_000_000)


class ResetUsageRequest(Schema):
    scope: ResetScope


class RepairRequest(Schema):
    stytch_org_id: str = Field(min_length=1)


class RepairResponse(Schema):
    created: bool
    workspace: WorkspaceResponse


class PortalSessionRequest(Schema):
    return_url: str = Field(description="Where the portal sends the customer back to")


class PortalSessionResponse(Schema):
    url: str


class UpdatePlanLimitsRequest(Schema):
    """Only the limits sent are changed. Null means unlimited."""

    brands: int | None = Field(None, ge=0)
    members: int | None = Field(None, ge=0)
    storage_gb: int | None = Field(None, ge=0)
    api_calls_per_month: int | None = Field(None, ge=0)
    ai_credits_per_month: int | None = Field(None, ge=0)
