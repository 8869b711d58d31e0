"""
Remedial actions on a workspace.

Admin and owner operations that change trial or subscription state, plus
the administrative suspension override and ledger adjustments.

Stripe is the source of truth. Actions that touch a subscription call
Stripe first, then re-fetch the subscription and overwrite the mirrored
fields with what Stripe reports, so proration or other provider-side effects
are never guessed locally. A failed Stripe call commits nothing locally.
If the re-fetch itself fails, the change has happened in Stripe and the
subscription webhook brings the mirror up to date.

Concurrent actions on the same workspace are last-write-wins on the mirror.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TypeVar

import stripe
from django.db import transaction
from django.utils import timezone

from apps.billing import services as billing
from apps.billing.services import SubscriptionSnapshot
from apps.core.logging import get_logger
from apps.workspaces import usage
from apps.workspaces.exceptions import ExternalCallFailed, InvariantViolation, WorkspaceNotFound
from apps.workspaces.mirror import LIMIT_FIELDS, apply_subscription_snapshot
from apps.workspaces.models import Workspace
from apps.workspaces.status import resolve_workspace_status

logger = get_logger(__name__)

T = TypeVar("T")

# Network errors from the Stripe SDK surface as OSError subclasses.
PROVIDER_ERRORS = (stripe.StripeError, OSError)

MAX_TRIAL_EXTENSION_DAYS = 365


def get_workspace(workspace_id: int) -> Workspace:
    try:
        return Workspace.objects.get(pk=workspace_id)
    except Workspace.DoesNotExist as e:
        raise WorkspaceNotFound(workspace_id) from e


def _call_provider(operation: str, func: Callable[..., T], *args, **kwargs) -> T:
    try:
        return func(*args, **kwargs)
    except PROVIDER_ERRORS as e:
        logger.warning("remedial_provider_call_failed", operation=operation, error=str(e))
        raise ExternalCallFailed(operation, e) from e


def _require_subscription(workspace: Workspace, operation: str) -> str:
    if not workspace.stripe_subscription_id:
        raise InvariantViolation(f"Cannot {operation}: workspace has no subscription")
    return workspace.stripe_subscription_id


def _resync(
    workspace: Workspace,
    operation: str,
    adjust: Callable[[Workspace, SubscriptionSnapshot], list[str]] | None = None,
) -> Workspace:
    """Re-fetch the subscription from Stripe and overwrite the local mirror."""
    snapshot = _call_provider(operation, billing.retrieve_subscription, workspace.stripe_subscription_id)

    with transaction.atomic():
        workspace = Workspace.objects.select_for_update().get(pk=workspace.pk)
        fields = apply_subscription_snapshot(workspace, snapshot)
        if adjust is not None:
            fields += adjust(workspace, snapshot)
        workspace.save(update_fields=[*dict.fromkeys(fields), "updated_at"])

    logger.info(
        "workspace_remedial_action",
        operation=operation,
        workspace_id=workspace.id,
        status=workspace.status,
        cancel_at_period_end=workspace.cancel_at_period_end,
        trial_end=workspace.trial_end.isoformat() if workspace.trial_end else None,
    )
    return workspace


def _set_local(workspace: Workspace, operation: str, **values) -> Workspace:
    for field, value in values.items():
        setattr(workspace, field, value)
    workspace.save(update_fields=[*values, "updated_at"])
    logger.info(
        "workspace_remedial_action",
        operation=operation,
        workspace_id=workspace.id,
        local_only=True,
        fields=list(values),
    )
    return workspace


def extend_trial(workspace_id: int, days: int) -> Workspace:
    """
    Push the trial end out by `days`, counted from the current trial end.

    Two extensions of 14 days add 28 days in total.
    """
    operation = "extend_trial"
    if not 0 < days <= MAX_TRIAL_EXTENSION_DAYS:
        raise InvariantViolation(f"Trial extension must be between 1 and {MAX_TRIAL_EXTENSION_DAYS} days")

    workspace = get_workspace(workspace_id)
    if workspace.status != Workspace.Status.TRIALING:
        raise InvariantViolation("Trial can only be extended while the workspace is trialing")

    if not workspace.stripe_subscription_id:
        base = workspace.trial_end or timezone.now()
        return _set_local(workspace, operation, trial_end=base + timedelta(days=days))

    current = _call_provider(operation, billing.retrieve_subscription, workspace.stripe_subscription_id)
    if current.status != Workspace.Status.TRIALING:
        raise InvariantViolation(f"Subscription is {current.status}, not trialing")

    base = current.trial_end or workspace.trial_end or timezone.now()
    new_trial_end = base + timedelta(days=days)
    _call_provider(operation, billing.update_trial_end, workspace.stripe_subscription_id, new_trial_end)
    return _resync(workspace, operation)


def set_trial_end(workspace_id: int, trial_end: datetime) -> Workspace:
    """Administrative override of the trial end to any future date."""
    operation = "set_trial_end"
    if trial_end <= timezone.now():
        raise InvariantViolation("Trial end must be in the future")

    workspace = get_workspace(workspace_id)
    if not workspace.stripe_subscription_id:
        return _set_local(workspace, operation, trial_end=trial_end)

    _call_provider(operation, billing.update_trial_end, workspace.stripe_subscription_id, trial_end)
    return _resync(workspace, operation)


def cancel_subscription(workspace_id: int, immediate: bool = False) -> Workspace:
    """
    Cancel now, or at the end of the current period.

    A period-end cancellation only sets cancel_at_period_end; the status
    changes when Stripe ends the subscription and the webhook reports it.
    """
    operation = "cancel_subscription"
    workspace = get_workspace(workspace_id)
    subscription_id = _require_subscription(workspace, operation)
    if workspace.status == Workspace.Status.CANCELED:
        raise InvariantViolation("Subscription is already canceled")

    _call_provider(operation, billing.cancel_subscription, subscription_id, immediate)

    def mark_ended(ws: Workspace, snapshot: SubscriptionSnapshot) -> list[str]:
        if not immediate or snapshot.ended_at is not None:
            return []
        ws.ended_at = timezone.now()
        return ["ended_at"]

    return _resync(workspace, operation, adjust=mark_ended)


def reactivate_subscription(workspace_id: int) -> Workspace:
    """Undo a pending period-end cancellation."""
    operation = "reactivate_subscription"
    workspace = get_workspace(workspace_id)
    if not resolve_workspace_status(workspace).facets.canceling:
        raise InvariantViolation("Subscription is not scheduled to cancel")

    _call_provider(operation, billing.reactivate_subscription, workspace.stripe_subscription_id)
    return _resync(workspace, operation)


def suspend(workspace_id: int, reason: str = "") -> Workspace:
    """Administrative suspension; overrides every billing status. Idempotent."""
    workspace = get_workspace(workspace_id)
    if workspace.is_admin_suspended:
        return workspace
    return _set_local(
        workspace,
        "suspend",
        admin_suspended_at=timezone.now(),
        suspension_reason=reason[:500],
    )


def unsuspend(workspace_id: int) -> Workspace:
    """Lift an administrative suspension. Idempotent."""
    workspace = get_workspace(workspace_id)
    if not workspace.is_admin_suspended:
        return workspace
    return _set_local(workspace, "unsuspend", admin_suspended_at=None, suspension_reason="")


def add_bonus_credits(workspace_id: int, amount: int) -> Workspace:
    usage.add_bonus_credits(workspace_id, amount)
    return get_workspace(workspace_id)


def reset_usage(workspace_id: int, scope: str) -> Workspace:
    usage.reset_usage(workspace_id, scope)
    return get_workspace(workspace_id)


def update_plan_limits(workspace_id: int, **limits: int | None) -> Workspace:
    """
    Override individual usage limits, e.g. for a custom deal.

    Keys are limit names without the `limit_` prefix (`brands`,
    `ai_credits_per_month`, ...). None means unlimited. Limits not passed
    keep their value. The plan itself is unchanged.
    """
    values = {}
    for name, value in limits.items():
        field = f"limit_{name}"
        if field not in LIMIT_FIELDS:
            raise InvariantViolation(f"Unknown usage limit: {name}")
        if value is not None and value < 0:
            raise InvariantViolation(f"Limit {name} cannot be negative")
        values[field] = value
    if not values:
        raise InvariantViolation("No limits to update")

    workspace = get_workspace(workspace_id)
    return _set_local(workspace, "update_plan_limits", **values)


def get_customer_portal_url(workspace_id: int, return_url: str) -> str:
    """Stripe Customer Portal link for the workspace's billing customer."""
    operation = "customer_portal"
    workspace = get_workspace(workspace_id)
    if not workspace.stripe_customer_id:
        raise InvariantViolation("Workspace has no billing customer")

    url = _call_provider(
        operation,
        billing.create_customer_portal_session,
        workspace.stripe_customer_id,
        return_url,
    )
    logger.info("workspace_portal_session_created", workspace_id=workspace.id)
    return url
