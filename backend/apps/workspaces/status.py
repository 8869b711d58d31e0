"""
Canonical status resolver.

A workspace spans three systems of record: the Stytch organization, the
local Workspace row and the Stripe customer/subscription. Each can exist
without the others. The resolver folds their presence and the mirrored
subscription fields into one status with a fixed precedence:

    admin_suspended > no_db_record > no_billing > no_subscription > native status

Pure functions; nothing here calls a provider or writes to the database,
except `resolve_organization_status`, which reads the Workspace table and
backs the drift report.
"""

from dataclasses import dataclass
from enum import StrEnum

from apps.workspaces.models import Workspace


class CanonicalStatus(StrEnum):
    """Externally visible workspace status."""

    ADMIN_SUSPENDED = "admin_suspended"
    NO_DB_RECORD = "no_db_record"
    NO_BILLING = "no_billing"
    NO_SUBSCRIPTION = "no_subscription"
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    PAUSED = "paused"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"


@dataclass(frozen=True)
class SyncFacets:
    """Which links between the systems of record are in place."""

    org_db_synced: bool
    db_customer_synced: bool
    customer_subscription_synced: bool
    canceling: bool


@dataclass(frozen=True)
class StatusResolution:
    status: CanonicalStatus
    facets: SyncFacets


def resolve_status(
    *,
    has_org: bool,
    has_workspace_row: bool,
    has_billing_customer: bool,
    has_billing_subscription: bool,
    native_status: str | None = None,
    cancel_at_period_end: bool = False,
    admin_suspended: bool = False,
) -> StatusResolution:
    """
    Resolve the canonical status from the presence of each record.

    A pending period-end cancellation never changes the status; it is only
    reported through the `canceling` facet.
    """
    facets = SyncFacets(
        org_db_synced=has_org and has_workspace_row,
        db_customer_synced=has_workspace_row and has_billing_customer,
        customer_subscription_synced=has_billing_customer and has_billing_subscription,
        canceling=has_billing_subscription and cancel_at_period_end,
    )

    if admin_suspended:
        status = CanonicalStatus.ADMIN_SUSPENDED
    elif not has_workspace_row:
        status = CanonicalStatus.NO_DB_RECORD
    elif not has_billing_customer:
        status = CanonicalStatus.NO_BILLING
    elif not has_billing_subscription:
        status = CanonicalStatus.NO_SUBSCRIPTION
    elif native_status in Workspace.Status.values:
        status = CanonicalStatus(native_status)
    else:
        # Subscription not mirrored yet, or a status Stripe added later.
        status = CanonicalStatus.INCOMPLETE

    return StatusResolution(status=status, facets=facets)


def resolve_workspace_status(workspace: Workspace, has_org: bool = True) -> StatusResolution:
    """Resolve the status of an existing workspace row."""
    return resolve_status(
        has_org=has_org and bool(workspace.stytch_org_id),
        has_workspace_row=True,
        has_billing_customer=bool(workspace.stripe_customer_id),
        has_billing_subscription=bool(workspace.stripe_subscription_id),
        native_status=workspace.status or None,
        cancel_at_period_end=workspace.cancel_at_period_end,
        admin_suspended=workspace.is_admin_suspended,
    )


def resolve_organization_status(stytch_org_id: str) -> StatusResolution:
    """Resolve the status of a Stytch organization that may have no row."""
    workspace = Workspace.objects.filter(stytch_org_id=stytch_org_id).first()
    if workspace is None:
        return resolve_status(
            has_org=True,
            has_workspace_row=False,
            has_billing_customer=False,
            has_billing_subscription=False,
        )
    return resolve_workspace_status(workspace)
