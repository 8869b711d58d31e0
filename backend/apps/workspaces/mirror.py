"""
Mirror Stripe subscription state onto workspace rows.

Stripe owns the subscription; these helpers overwrite the local copy with
whatever Stripe last reported. Plan limits are re-seeded only when the plan
itself changes, so admin adjustments to limits survive routine updates.
"""

from django.db import transaction

from apps.billing.plans import Plan, PlanLimits, plan_for_price
from apps.billing.services import SubscriptionSnapshot
from apps.core.logging import get_logger
from apps.workspaces.models import Workspace

logger = get_logger(__name__)

SUBSCRIPTION_FIELDS = [
    "stripe_subscription_id",
    "stripe_price_id",
    "status",
    "current_period_start",
    "current_period_end",
    "trial_start",
    "trial_end",
    "cancel_at_period_end",
    "canceled_at",
    "ended_at",
]

PLAN_FIELDS = [
    "plan_id",
    "plan_name",
    "billing_interval",
    "price_amount",
    "currency",
]

LIMIT_FIELDS = [
    "limit_brands",
    "limit_members",
    "limit_storage_gb",
    "limit_api_calls_per_month",
    "limit_ai_credits_per_month",
]


def apply_plan_limits(workspace: Workspace, limits: PlanLimits) -> list[str]:
    """Seed a workspace's limits from a plan. Does not save."""
    workspace.limit_brands = limits.brands
    workspace.limit_members = limits.members
    workspace.limit_storage_gb = limits.storage_gb
    workspace.limit_api_calls_per_month = limits.api_calls_per_month
    workspace.limit_ai_credits_per_month = limits.ai_credits_per_month
    return list(LIMIT_FIELDS)


def apply_plan(workspace: Workspace, plan: Plan, billing_interval: str) -> list[str]:
    """Point a workspace at a plan and seed its limits. Does not save."""
    workspace.plan_id = plan.id
    workspace.plan_name = plan.name
    workspace.billing_interval = billing_interval
    return ["plan_id", "plan_name", "billing_interval", *apply_plan_limits(workspace, plan.limits)]


def apply_subscription_snapshot(workspace: Workspace, snapshot: SubscriptionSnapshot) -> list[str]:
    """
    Copy a subscription snapshot onto a workspace. Does not save.

    Returns the list of fields touched, for `save(update_fields=...)`.
    """
    workspace.stripe_subscription_id = snapshot.subscription_id
    if snapshot.customer_id:
        workspace.stripe_customer_id = snapshot.customer_id
    workspace.stripe_price_id = snapshot.price_id
    workspace.status = snapshot.status
    workspace.current_period_start = snapshot.current_period_start
    workspace.current_period_end = snapshot.current_period_end
    workspace.trial_start = snapshot.trial_start
    workspace.trial_end = snapshot.trial_end
    workspace.cancel_at_period_end = snapshot.cancel_at_period_end
    workspace.canceled_at = snapshot.canceled_at
    workspace.ended_at = snapshot.ended_at

    fields = ["stripe_customer_id", *SUBSCRIPTION_FIELDS]

    if snapshot.price_amount is not None:
        workspace.price_amount = snapshot.price_amount
    if snapshot.currency:
        workspace.currency = snapshot.currency
    if snapshot.billing_interval:
        workspace.billing_interval = snapshot.billing_interval
    fields += ["price_amount", "currency", "billing_interval"]

    match = plan_for_price(snapshot.price_id)
    if match is not None:
        plan, interval = match
        if plan.id != workspace.plan_id:
            logger.info(
                "workspace_plan_changed",
                workspace_id=workspace.id,
                old_plan_id=workspace.plan_id,
                new_plan_id=plan.id,
            )
            fields += apply_plan(workspace, plan, interval.value)

    return list(dict.fromkeys(fields))


def sync_subscription_to_workspace(snapshot: SubscriptionSnapshot) -> Workspace | None:
    """
    Mirror a subscription onto the workspace it is linked to.

    Matches on subscription id first, then on customer id for a workspace
    whose subscription was replaced. Returns None if no workspace is linked.
    """
    with transaction.atomic():
        workspace = (
            Workspace.objects.select_for_update()
            .filter(stripe_subscription_id=snapshot.subscription_id)
            .first()
        )
        if workspace is None and snapshot.customer_id:
            workspace = (
                Workspace.objects.select_for_update()
                .filter(stripe_customer_id=snapshot.customer_id)
                .first()
            )
        if workspace is None:
            return None

        fields = apply_subscription_snapshot(workspace, snapshot)
        workspace.save(update_fields=[*fields, "updated_at"])

    logger.info(
        "workspace_subscription_synced",
        workspace_id=workspace.id,
        stripe_subscription_id=snapshot.subscription_id,
        status=snapshot.status,
        cancel_at_period_end=snapshot.cancel_at_period_end,
    )
    return workspace
