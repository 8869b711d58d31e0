"""
Tests for the canonical status resolver.
"""

import itertools

import pytest

from apps.workspaces.status import (
    CanonicalStatus,
    resolve_organization_status,
    resolve_status,
    resolve_workspace_status,
)
from tests.workspaces.factories import WorkspaceFactory

NATIVE_STATUSES = ["active", "trialing", "past_due", "canceled", "unpaid", "paused", "incomplete"]


def expected_status(has_row: bool, has_customer: bool, has_subscription: bool, native: str) -> str:
    if not has_row:
        return "no_db_record"
    if not has_customer:
        return "no_billing"
    if not has_subscription:
        return "no_subscription"
    return native


class TestResolveStatusPrecedence:
    """Precedence: suspended > no row > no customer > no subscription > native."""

    @pytest.mark.parametrize(
        ("has_org", "has_row", "has_customer", "has_subscription"),
        list(itertools.product([True, False], repeat=4)),
    )
    def test_presence_grid(
        self, has_org: bool, has_row: bool, has_customer: bool, has_subscription: bool
    ) -> None:
        """Every presence combination resolves by precedence."""
        result = resolve_status(
            has_org=has_org,
            has_workspace_row=has_row,
            has_billing_customer=has_customer,
            has_billing_subscription=has_subscription,
            native_status="active",
        )

        assert result.status == expected_status(has_row, has_customer, has_subscription, "active")

    def test_missing_row_wins_over_linked_billing(self) -> None:
        """Organization and billing without a row is drift, never active."""
        result = resolve_status(
            has_org=True,
            has_workspace_row=False,
            has_billing_customer=True,
            has_billing_subscription=True,
            native_status="active",
        )

        assert result.status == CanonicalStatus.NO_DB_RECORD

    @pytest.mark.parametrize("native", NATIVE_STATUSES)
    def test_native_status_passes_through(self, native: str) -> None:
        result = resolve_status(
            has_org=True,
            has_workspace_row=True,
            has_billing_customer=True,
            has_billing_subscription=True,
            native_status=native,
        )

        assert result.status == native

    def test_subscription_without_native_status_is_incomplete(self) -> None:
        result = resolve_status(
            has_org=True,
            has_workspace_row=True,
            has_billing_customer=True,
            has_billing_subscription=True,
            native_status=None,
        )

        assert result.status == CanonicalStatus.INCOMPLETE

    @pytest.mark.parametrize(
        ("has_org", "has_row", "has_customer", "has_subscription"),
        list(itertools.product([True, False], repeat=4)),
    )
    @pytest.mark.parametrize("native", [*NATIVE_STATUSES, None])
    def test_admin_suspended_overrides_everything(
        self,
        has_org: bool,
        has_row: bool,
        has_customer: bool,
        has_subscription: bool,
        native: str | None,
    ) -> None:
        result = resolve_status(
            has_org=has_org,
            has_workspace_row=has_row,
            has_billing_customer=has_customer,
            has_billing_subscription=has_subscription,
            native_status=native,
            cancel_at_period_end=True,
            admin_suspended=True,
        )

        assert result.status == CanonicalStatus.ADMIN_SUSPENDED


class TestSyncFacets:
    """Facets report which link between the systems is broken."""

    def test_all_links_present(self) -> None:
        facets = resolve_status(
            has_org=True,
            has_workspace_row=True,
            has_billing_customer=True,
            has_billing_subscription=True,
            native_status="active",
        ).facets

        assert facets.org_db_synced
        assert facets.db_customer_synced
        assert facets.customer_subscription_synced
        assert not facets.canceling

    def test_customer_without_subscription(self) -> None:
        facets = resolve_status(
            has_org=True,
            has_workspace_row=True,
            has_billing_customer=True,
            has_billing_subscription=False,
        ).facets

        assert facets.org_db_synced
        assert facets.db_customer_synced
        assert not facets.customer_subscription_synced

    def test_canceling_does_not_change_status(self) -> None:
        """A pending period-end cancel is a facet, not a status."""
        result = resolve_status(
            has_org=True,
            has_workspace_row=True,
            has_billing_customer=True,
            has_billing_subscription=True,
            native_status="trialing",
            cancel_at_period_end=True,
        )

        assert result.status == CanonicalStatus.TRIALING
        assert result.facets.canceling

    def test_canceling_requires_subscription(self) -> None:
        result = resolve_status(
            has_org=True,
            has_workspace_row=True,
            has_billing_customer=True,
            has_billing_subscription=False,
            cancel_at_period_end=True,
        )

        assert not result.facets.canceling


@pytest.mark.django_db
class TestResolveFromRows:
    """Tests for resolving from workspace rows."""

    def test_linked_workspace(self) -> None:
        workspace = WorkspaceFactory.create(trialing=True)

        result = resolve_workspace_status(workspace)

        assert result.status == CanonicalStatus.TRIALING

    def test_unbilled_workspace(self) -> None:
        workspace = WorkspaceFactory.create(unbilled=True)

        assert resolve_workspace_status(workspace).status == CanonicalStatus.NO_BILLING

    def test_suspended_workspace(self) -> None:
        from django.utils import timezone

        workspace = WorkspaceFactory.create(admin_suspended_at=timezone.now())

        assert resolve_workspace_status(workspace).status == CanonicalStatus.ADMIN_SUSPENDED

    def test_organization_without_row(self) -> None:
        result = resolve_organization_status("organization-without-row")

        assert result.status == CanonicalStatus.NO_DB_RECORD
        assert not result.facets.org_db_synced

    def test_organization_with_row(self) -> None:
        workspace = WorkspaceFactory.create()

        result = resolve_organization_status(workspace.stytch_org_id)

        assert result.status == CanonicalStatus.ACTIVE
