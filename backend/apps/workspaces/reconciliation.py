"""
Drift reconciliation between Stytch organizations and workspace rows.

Repairs are manual: an operator reviews the report and creates missing
rows, either through the repair endpoint or `reconcile_workspaces --repair`.
"""

from collections.abc import Iterator
from dataclasses import dataclass

from django.db import IntegrityError, transaction
from stytch.core.response_base import StytchError

from apps.billing.plans import UNSUBSCRIBED_LIMITS
from apps.core.logging import get_logger
from apps.organizations.services import ExternalOrganization, get_organization, list_organizations
from apps.workspaces.exceptions import ExternalCallFailed, InvariantViolation
from apps.workspaces.mirror import apply_plan_limits
from apps.workspaces.models import Workspace
from apps.workspaces.status import StatusResolution, resolve_organization_status

logger = get_logger(__name__)


@dataclass(frozen=True)
class DriftEntry:
    organization: ExternalOrganization
    resolution: StatusResolution

    @property
    def has_drift(self) -> bool:
        facets = self.resolution.facets
        return not (facets.org_db_synced and facets.db_customer_synced and facets.customer_subscription_synced)


def _create_row(org: ExternalOrganization) -> tuple[Workspace, bool]:
    workspace = Workspace(
        stytch_org_id=org.organization_id,
        name=org.name,
        slug=org.slug,
        logo_url=org.logo_url,
        status=Workspace.Status.ACTIVE,
    )
    apply_plan_limits(workspace, UNSUBSCRIBED_LIMITS)
    try:
        with transaction.atomic():
            workspace.save()
    except IntegrityError:
        # Created concurrently
        return Workspace.objects.get(stytch_org_id=org.organization_id), False

    logger.info(
        "workspace_created_for_organization",
        workspace_id=workspace.id,
        stytch_org_id=org.organization_id,
    )
    return workspace, True


def create_workspace_for_organization(stytch_org_id: str) -> tuple[Workspace, bool]:
    """
    Create the missing workspace row for an existing organization.

    Idempotent: returns the existing row when there is one.

    Returns:
        (workspace, created)

    Raises:
        InvariantViolation: If the organization does not exist in Stytch
        ExternalCallFailed: If Stytch cannot be reached
    """
    existing = Workspace.objects.filter(stytch_org_id=stytch_org_id).first()
    if existing is not None:
        return existing, False

    try:
        org = get_organization(stytch_org_id)
    except StytchError as e:
        raise ExternalCallFailed("create_workspace_for_organization", e) from e
    if org is None:
        raise InvariantViolation(f"Organization {stytch_org_id} does not exist")

    return _create_row(org)


def drift_report() -> Iterator[DriftEntry]:
    """Resolve the status of every Stytch organization, row or not."""
    for org in list_organizations():
        yield DriftEntry(organization=org, resolution=resolve_organization_status(org.organization_id))


def repair_organization(org: ExternalOrganization) -> tuple[Workspace, bool]:
    """Create the row for an organization already fetched by `drift_report`."""
    existing = Workspace.objects.filter(stytch_org_id=org.organization_id).first()
    if existing is not None:
        return existing, False
    return _create_row(org)
