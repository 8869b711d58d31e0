"""
Provisioning and workspace API endpoints.

Provisioning endpoints are called during signup, before the caller has a
session; the signup token returned when staging the intent ties the
checkout redirect back to it.

Workspace endpoints accept a Stytch session (own workspace only) or the
staff token used by internal admin tooling.
"""

import secrets
from collections.abc import Callable
from datetime import timedelta
from typing import TypeVar

import stripe
from django.conf import settings
from django.http import HttpRequest
from ninja import Router
from ninja.errors import HttpError

from apps.billing.exceptions import UnknownPlanError
from apps.billing.plans import get_plan
from apps.billing.services import create_checkout_session
from apps.core.auth import AuthContext
from apps.core.logging import get_logger
from apps.core.schemas import ErrorResponse
from apps.core.security import BearerAuth, StaffTokenAuth
from apps.workspaces import remedial
from apps.workspaces.exceptions import (
    ExternalCallFailed,
    InvariantViolation,
    MissingSessionData,
    ProvisioningInProgress,
    WorkspaceError,
    WorkspaceNotFound,
)
from apps.workspaces.intents import CacheIntentStore, ProvisioningIntent
from apps.workspaces.models import ProvisioningRun, Workspace
from apps.workspaces.provisioning import ProvisioningSaga, get_run, run_claimed_by
from apps.workspaces.reconciliation import create_workspace_for_organization
from apps.workspaces.schemas import (
    AddCreditsRequest,
    CancelRequest,
    CreateIntentRequest,
    CreateIntentResponse,
    ExtendTrialRequest,
    PortalSessionRequest,
    PortalSessionResponse,
    ProvisioningRunResponse,
    RepairRequest,
    RepairResponse,
    ResetUsageRequest,
    RunProvisioningRequest,
    SetTrialEndRequest,
    StatusResponse,
    SuspendRequest,
    SyncFacetsSchema,
    UpdatePlanLimitsRequest,
    UsageLineSchema,
    UsageResponse,
    WorkspaceResponse,
)
from apps.workspaces.status import resolve_workspace_status
from apps.workspaces.usage import get_usage_summary

logger = get_logger(__name__)

provisioning_router = Router(tags=["provisioning"])
router = Router(tags=["workspaces"])

bearer_auth = BearerAuth()
staff_auth = StaffTokenAuth()

SIGNUP_TOKEN_HEADER = "X-Signup-Token"

T = TypeVar("T")


def _http_error(error: WorkspaceError) -> HttpError:
    match error:
        case WorkspaceNotFound():
            return HttpError(404, str(error))
        case ProvisioningInProgress():
            return HttpError(409, str(error))
        case ExternalCallFailed():
            return HttpError(502, f"{error.step} failed, please retry")
        case MissingSessionData() | InvariantViolation():
            return HttpError(400, str(error))
        case _:
            return HttpError(400, str(error))


def _translate(func: Callable[..., T], *args, **kwargs) -> T:
    try:
        return func(*args, **kwargs)
    except WorkspaceError as e:
        raise _http_error(e) from None


def _workspace_response(workspace: Workspace) -> WorkspaceResponse:
    resolution = resolve_workspace_status(workspace)
    return WorkspaceResponse(
        id=workspace.id,
        stytch_org_id=workspace.stytch_org_id,
        name=workspace.name,
        slug=workspace.slug,
        logo_url=workspace.logo_url,
        status=resolution.status.value,
        subscription_status=workspace.status,
        is_active=workspace.is_active,
        plan_id=workspace.plan_id,
        plan_name=workspace.plan_name,
        billing_interval=workspace.billing_interval,
        price_amount=workspace.price_amount,
        currency=workspace.currency,
        stripe_customer_id=workspace.stripe_customer_id,
        stripe_subscription_id=workspace.stripe_subscription_id,
        trial_end=workspace.trial_end,
        current_period_end=workspace.current_period_end,
        cancel_at_period_end=workspace.cancel_at_period_end,
        ended_at=workspace.ended_at,
        admin_suspended_at=workspace.admin_suspended_at,
        suspension_reason=workspace.suspension_reason,
        created_at=workspace.created_at,
    )


def _run_response(run: ProvisioningRun) -> ProvisioningRunResponse:
    return ProvisioningRunResponse(
        checkout_session_id=run.checkout_session_id,
        state=run.state,
        history=run.history,
        failed_step=run.failed_step,
        error_message=run.error_message,
        attempts=run.attempts,
        workspace_id=run.workspace_id,
    )


def _get_authorized_workspace(request: HttpRequest, workspace_id: int) -> Workspace:
    """Load a workspace the caller may act on."""
    workspace = _translate(remedial.get_workspace, workspace_id)
    auth: AuthContext = request.auth  # type: ignore[attr-defined]
    auth.require_organization(workspace.stytch_org_id)
    return workspace


def _require_org_admin(request: HttpRequest, workspace_id: int) -> None:
    _get_authorized_workspace(request, workspace_id)
    auth: AuthContext = request.auth  # type: ignore[attr-defined]
    if not auth.is_staff and not auth.is_admin:
        raise HttpError(403, "Admin role required")


# --- Provisioning ---


@provisioning_router.post(
    "/intents",
    response={200: CreateIntentResponse, 400: ErrorResponse, 502: ErrorResponse},
    operation_id="createProvisioningIntent",
    summary="Stage a signup and create a checkout session",
)
def create_intent(request: HttpRequest, payload: CreateIntentRequest) -> CreateIntentResponse:
    """
    Stage the signup server-side and start Stripe Checkout.

    Replaces any intent already staged for the same signup token.
    """
    try:
        plan = get_plan(payload.plan_id)
    except UnknownPlanError as e:
        raise HttpError(400, str(e)) from None

    signup_token = request.headers.get(SIGNUP_TOKEN_HEADER) or secrets.token_urlsafe(32)

    try:
        session = create_checkout_session(
            plan,
            payload.billing_interval,
            success_url=payload.success_url,
            cancel_url=payload.cancel_url,
            metadata={"signup_slug": payload.slug, "plan_id": plan.id},
            customer_email=payload.email,
        )
    except stripe.StripeError as e:
        logger.warning("checkout_session_create_failed", error=str(e))
        raise HttpError(502, "Failed to start checkout, please retry") from None

    intent = ProvisioningIntent(
        name=payload.name,
        slug=payload.slug,
        logo=payload.logo,
        plan_id=plan.id,
        billing_interval=payload.billing_interval,
        checkout_session_id=session.session_id,
    )
    CacheIntentStore(signup_token).save(intent)

    return CreateIntentResponse(
        signup_token=signup_token,
        checkout_session_id=session.session_id,
        checkout_url=session.url,
        expires_at=intent.created_at + timedelta(seconds=settings.PROVISIONING_INTENT_TTL_SECONDS),
    )


@provisioning_router.post(
    "/run",
    response={200: WorkspaceResponse, 400: ErrorResponse, 409: ErrorResponse, 502: ErrorResponse},
    operation_id="runProvisioning",
    summary="Provision the workspace after checkout",
)
def run_provisioning(request: HttpRequest, payload: RunProvisioningRequest) -> WorkspaceResponse:
    """
    Create the organization, workspace and billing link for a completed checkout.

    Safe to call again with the same checkout session: a finished run returns
    the same workspace. A 502 can be retried; a 400 means signup must restart.
    """
    signup_token = request.headers.get(SIGNUP_TOKEN_HEADER, "")
    if not signup_token:
        raise HttpError(400, f"Missing {SIGNUP_TOKEN_HEADER} header, please restart signup")

    saga = ProvisioningSaga(CacheIntentStore(signup_token))
    workspace = _translate(saga.run, payload.checkout_session_id)
    return _workspace_response(workspace)


@provisioning_router.get(
    "/runs/{checkout_session_id}",
    response={200: ProvisioningRunResponse, 404: ErrorResponse},
    operation_id="getProvisioningRun",
    summary="Get provisioning progress",
)
def get_provisioning_run(request: HttpRequest, checkout_session_id: str) -> ProvisioningRunResponse:
    """Visible only to the signup token that claimed the run."""
    run = get_run(checkout_session_id)
    if run is None or not run_claimed_by(run, request.headers.get(SIGNUP_TOKEN_HEADER, "")):
        raise HttpError(404, "No provisioning run for this checkout session")
    return _run_response(run)


# --- Workspaces ---


@router.get(
    "/{workspace_id}",
    response={200: WorkspaceResponse, 403: ErrorResponse, 404: ErrorResponse},
    auth=[staff_auth, bearer_auth],
    operation_id="getWorkspace",
    summary="Get workspace",
)
def get_workspace(request: HttpRequest, workspace_id: int) -> WorkspaceResponse:
    return _workspace_response(_get_authorized_workspace(request, workspace_id))


@router.get(
    "/{workspace_id}/status",
    response={200: StatusResponse, 403: ErrorResponse, 404: ErrorResponse},
    auth=[staff_auth, bearer_auth],
    operation_id="getWorkspaceStatus",
    summary="Get canonical workspace status",
)
def get_workspace_status(request: HttpRequest, workspace_id: int) -> StatusResponse:
    """Canonical status plus which links between Stytch, database and Stripe hold."""
    workspace = _get_authorized_workspace(request, workspace_id)
    resolution = resolve_workspace_status(workspace)
    facets = resolution.facets
    return StatusResponse(
        workspace_id=workspace.id,
        status=resolution.status.value,
        subscription_status=workspace.status,
        is_active=workspace.is_active,
        facets=SyncFacetsSchema(
            org_db_synced=facets.org_db_synced,
            db_customer_synced=facets.db_customer_synced,
            customer_subscription_synced=facets.customer_subscription_synced,
            canceling=facets.canceling,
        ),
        trial_end=workspace.trial_end,
        current_period_end=workspace.current_period_end,
    )


@router.get(
    "/{workspace_id}/usage",
    response={200: UsageResponse, 403: ErrorResponse, 404: ErrorResponse},
    auth=[staff_auth, bearer_auth],
    operation_id="getWorkspaceUsage",
    summary="Get usage counters and limits",
)
def get_workspace_usage(request: HttpRequest, workspace_id: int) -> UsageResponse:
    workspace = _get_authorized_workspace(request, workspace_id)
    return UsageResponse(
        workspace_id=workspace.id,
        counters=[
            UsageLineSchema(
                counter=line.counter.value,
                used=line.used,
                lifetime=line.lifetime,
                limit=line.limit,
                remaining=line.remaining,
            )
            for line in get_usage_summary(workspace)
        ],
        credits_balance=workspace.credits_balance,
        last_activity_at=workspace.last_activity_at,
        usage_reset_at=workspace.usage_reset_at,
    )


@router.post(
    "/{workspace_id}/cancel",
    response={200: WorkspaceResponse, 400: ErrorResponse, 403: ErrorResponse, 404: ErrorResponse, 502: ErrorResponse},
    auth=[staff_auth, bearer_auth],
    operation_id="cancelWorkspaceSubscription",
    summary="Cancel subscription",
)
def cancel_subscription(request: HttpRequest, workspace_id: int, payload: CancelRequest) -> WorkspaceResponse:
    """Cancel now, or at the end of the current period. Requires admin role."""
    _require_org_admin(request, workspace_id)
    workspace = _translate(remedial.cancel_subscription, workspace_id, payload.immediate)
    return _workspace_response(workspace)


@router.post(
    "/{workspace_id}/reactivate",
    response={200: WorkspaceResponse, 400: ErrorResponse, 403: ErrorResponse, 404: ErrorResponse, 502: ErrorResponse},
    auth=[staff_auth, bearer_auth],
    operation_id="reactivateWorkspaceSubscription",
    summary="Undo a pending cancellation",
)
def reactivate_subscription(request: HttpRequest, workspace_id: int) -> WorkspaceResponse:
    _require_org_admin(request, workspace_id)
    workspace = _translate(remedial.reactivate_subscription, workspace_id)
    return _workspace_response(workspace)


@router.post(
    "/{workspace_id}/portal",
    response={200: PortalSessionResponse, 400: ErrorResponse, 403: ErrorResponse, 404: ErrorResponse, 502: ErrorResponse},
    auth=[staff_auth, bearer_auth],
    operation_id="createWorkspacePortalSession",
    summary="Create Stripe Customer Portal session",
)
def create_portal_session(
    request: HttpRequest, workspace_id: int, payload: PortalSessionRequest
) -> PortalSessionResponse:
    """Link to manage payment methods and invoices. Requires admin role."""
    _require_org_admin(request, workspace_id)
    url = _translate(remedial.get_customer_portal_url, workspace_id, payload.return_url)
    return PortalSessionResponse(url=url)


@router.post(
    "/{workspace_id}/extend-trial",
    response={200: WorkspaceResponse, 400: ErrorResponse, 404: ErrorResponse, 502: ErrorResponse},
    auth=staff_auth,
    operation_id="extendWorkspaceTrial",
    summary="Extend trial by a number of days",
)
def extend_trial(request: HttpRequest, workspace_id: int, payload: ExtendTrialRequest) -> WorkspaceResponse:
    workspace = _translate(remedial.extend_trial, workspace_id, payload.days)
    return _workspace_response(workspace)


@router.post(
    "/{workspace_id}/set-trial-end",
    response={200: WorkspaceResponse, 400: ErrorResponse, 404: ErrorResponse, 502: ErrorResponse},
    auth=staff_auth,
    operation_id="setWorkspaceTrialEnd",
    summary="Set trial end date",
)
def set_trial_end(request: HttpRequest, workspace_id: int, payload: SetTrialEndRequest) -> WorkspaceResponse:
    workspace = _translate(remedial.set_trial_end, workspace_id, payload.trial_end)
    return _workspace_response(workspace)


@router.post(
    "/{workspace_id}/suspend",
    response={200: WorkspaceResponse, 404: ErrorResponse},
    auth=staff_auth,
    operation_id="suspendWorkspace",
    summary="Suspend workspace",
)
def suspend_workspace(request: HttpRequest, workspace_id: int, payload: SuspendRequest) -> WorkspaceResponse:
    workspace = _translate(remedial.suspend, workspace_id, payload.reason)
    return _workspace_response(workspace)


@router.post(
    "/{workspace_id}/unsuspend",
    response={200: WorkspaceResponse, 404: ErrorResponse},
    auth=staff_auth,
    operation_id="unsuspendWorkspace",
    summary="Lift suspension",
)
def unsuspend_workspace(request: HttpRequest, workspace_id: int) -> WorkspaceResponse:
    workspace = _translate(remedial.unsuspend, workspace_id)
    return _workspace_response(workspace)


@router.post(
    "/{workspace_id}/add-credits",
    response={200: UsageResponse, 400: ErrorResponse, 404: ErrorResponse},
    auth=staff_auth,
    operation_id="addWorkspaceCredits",
    summary="Grant bonus AI credits",
)
def add_credits(request: HttpRequest, workspace_id: int, payload: AddCreditsRequest) -> UsageResponse:
    _translate(remedial.add_bonus_credits, workspace_id, payload.amount)
    return get_workspace_usage(request, workspace_id)


@router.post(
    "/{workspace_id}/reset-usage",
    response={200: UsageResponse, 400: ErrorResponse, 404: ErrorResponse},
    auth=staff_auth,
    operation_id="resetWorkspaceUsage",
    summary="Reset current-period usage counters",
)
def reset_usage(request: HttpRequest, workspace_id: int, payload: ResetUsageRequest) -> UsageResponse:
    _translate(remedial.reset_usage, workspace_id, payload.scope)
    return get_workspace_usage(request, workspace_id)


@router.post(
    "/{workspace_id}/plan-limits",
    response={200: UsageResponse, 400: ErrorResponse, 404: ErrorResponse},
    auth=staff_auth,
    operation_id="updateWorkspacePlanLimits",
    summary="Override usage limits",
)
def update_plan_limits(request: HttpRequest, workspace_id: int, payload: UpdatePlanLimitsRequest) -> UsageResponse:
    _translate(remedial.update_plan_limits, workspace_id, **payload.model_dump(exclude_unset=True))
    return get_workspace_usage(request, workspace_id)


@router.post(
    "/repair",
    response={200: RepairResponse, 400: ErrorResponse, 502: ErrorResponse},
    auth=staff_auth,
    operation_id="repairWorkspace",
    summary="Create the workspace row for an organization",
)
def repair_workspace(request: HttpRequest, payload: RepairRequest) -> RepairResponse:
    """Manual drift repair for an organization with no workspace row."""
    workspace, created = _translate(create_workspace_for_organization, payload.stytch_org_id)
    return RepairResponse(created=created, workspace=_workspace_response(workspace))
