"""
Tests for remedial actions.

Each action that touches Stripe is checked for both halves of the contract:
the mirror is overwritten from a re-fetch on success, and nothing local
changes when Stripe fails.
"""

from datetime import UTC, datetime, timedelta

import pytest
from django.utils import timezone

from apps.workspaces import remedial
from apps.workspaces.exceptions import ExternalCallFailed, InvariantViolation, WorkspaceNotFound
from apps.workspaces.models import Workspace
from apps.workspaces.status import CanonicalStatus, resolve_workspace_status
from tests.billing.fakes import FakeStripe
from tests.workspaces.factories import WorkspaceFactory


def linked_workspace(fake_stripe: FakeStripe, **subscription_kwargs) -> Workspace:
    """Workspace linked to a fake subscription, mirrored from it."""
    subscription = fake_stripe.add_subscription(**subscription_kwargs)
    trial_end = subscription["trial_end"]
    return WorkspaceFactory.create(
        stripe_customer_id=subscription["customer"],
        stripe_subscription_id=subscription["id"],
        status=subscription["status"],
        cancel_at_period_end=subscription["cancel_at_period_end"],
        trial_end=datetime.fromtimestamp(trial_end, tz=UTC) if trial_end else None,
    )


@pytest.mark.django_db
class TestExtendTrial:
    """Tests for extend_trial."""

    def test_extends_from_current_trial_end(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="trialing", trial_days=7)
        original_end = workspace.trial_end

        updated = remedial.extend_trial(workspace.id, 14)

        assert updated.trial_end == original_end + timedelta(days=14)
        _, kwargs = fake_stripe.calls_to("Subscription.modify")[0]
        assert kwargs["proration_behavior"] == "none"

    def test_two_extensions_are_additive(self, fake_stripe: FakeStripe) -> None:
        """extend_trial(14) twice adds 28 days, not now + 14."""
        workspace = linked_workspace(fake_stripe, status="trialing", trial_days=7)
        original_end = workspace.trial_end

        remedial.extend_trial(workspace.id, 14)
        updated = remedial.extend_trial(workspace.id, 14)

        assert updated.trial_end == original_end + timedelta(days=28)

    def test_requires_trialing(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="active")

        with pytest.raises(InvariantViolation):
            remedial.extend_trial(workspace.id, 14)

        assert fake_stripe.calls_to("Subscription.modify") == []

    def test_rejects_non_positive_days(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="trialing")

        with pytest.raises(InvariantViolation):
            remedial.extend_trial(workspace.id, 0)

    def test_provider_failure_leaves_workspace_unchanged(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="trialing")
        original_end = workspace.trial_end
        fake_stripe.fail("Subscription.modify")

        with pytest.raises(ExternalCallFailed) as exc_info:
            remedial.extend_trial(workspace.id, 14)

        assert exc_info.value.step == "extend_trial"
        workspace.refresh_from_db()
        assert workspace.trial_end == original_end

    def test_without_subscription_extends_locally(self, fake_stripe: FakeStripe) -> None:
        workspace = WorkspaceFactory.create(unbilled=True, trialing=True)
        original_end = workspace.trial_end

        updated = remedial.extend_trial(workspace.id, 3)

        assert updated.trial_end == original_end + timedelta(days=3)
        assert fake_stripe.calls == []


@pytest.mark.django_db
class TestSetTrialEnd:
    """Tests for set_trial_end."""

    def test_pushes_to_stripe_and_mirrors(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="trialing")
        new_end = (timezone.now() + timedelta(days=60)).replace(microsecond=0)

        updated = remedial.set_trial_end(workspace.id, new_end)

        assert updated.trial_end == new_end

    def test_rejects_past_date(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="trialing")

        with pytest.raises(InvariantViolation):
            remedial.set_trial_end(workspace.id, timezone.now() - timedelta(days=1))

    def test_without_subscription_is_local(self, fake_stripe: FakeStripe) -> None:
        workspace = WorkspaceFactory.create(unbilled=True)
        new_end = timezone.now() + timedelta(days=30)

        updated = remedial.set_trial_end(workspace.id, new_end)

        assert updated.trial_end == new_end
        assert fake_stripe.calls == []


@pytest.mark.django_db
class TestCancelSubscription:
    """Tests for cancel_subscription."""

    def test_immediate_cancel(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="active")

        updated = remedial.cancel_subscription(workspace.id, immediate=True)

        assert updated.status == Workspace.Status.CANCELED
        assert updated.ended_at is not None
        assert len(fake_stripe.calls_to("Subscription.cancel")) == 1

    def test_period_end_cancel_keeps_status(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="active")

        updated = remedial.cancel_subscription(workspace.id, immediate=False)

        assert updated.status == Workspace.Status.ACTIVE
        assert updated.cancel_at_period_end is True
        assert resolve_workspace_status(updated).facets.canceling

    def test_provider_failure_commits_nothing(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="active")
        fake_stripe.fail("Subscription.cancel")

        with pytest.raises(ExternalCallFailed):
            remedial.cancel_subscription(workspace.id, immediate=True)

        workspace.refresh_from_db()
        assert workspace.status == Workspace.Status.ACTIVE
        assert workspace.ended_at is None

    def test_requires_subscription(self) -> None:
        workspace = WorkspaceFactory.create(unbilled=True)

        with pytest.raises(InvariantViolation):
            remedial.cancel_subscription(workspace.id)

    def test_already_canceled(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="canceled")

        with pytest.raises(InvariantViolation):
            remedial.cancel_subscription(workspace.id)


@pytest.mark.django_db
class TestReactivateSubscription:
    """Tests for reactivate_subscription."""

    def test_clears_pending_cancel(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="active", cancel_at_period_end=True)

        updated = remedial.reactivate_subscription(workspace.id)

        assert updated.cancel_at_period_end is False
        assert not resolve_workspace_status(updated).facets.canceling

    def test_not_canceling_is_invariant_violation(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="active")

        with pytest.raises(InvariantViolation):
            remedial.reactivate_subscription(workspace.id)

        assert fake_stripe.calls_to("Subscription.modify") == []

    def test_cancel_then_reactivate(self, fake_stripe: FakeStripe) -> None:
        workspace = linked_workspace(fake_stripe, status="trialing")

        remedial.cancel_subscription(workspace.id, immediate=False)
        updated = remedial.reactivate_subscription(workspace.id)

        assert updated.status == Workspace.Status.TRIALING
        assert updated.cancel_at_period_end is False


@pytest.mark.django_db
class TestSuspension:
    """Tests for suspend and unsuspend."""

    def test_suspend_overrides_status(self) -> None:
        workspace = WorkspaceFactory.create()

        updated = remedial.suspend(workspace.id, reason="Chargeback")

        assert updated.suspension_reason == "Chargeback"
        assert not updated.is_active
        assert resolve_workspace_status(updated).status == CanonicalStatus.ADMIN_SUSPENDED

    def test_suspend_is_idempotent(self) -> None:
        workspace = WorkspaceFactory.create()
        first = remedial.suspend(workspace.id, reason="Abuse")

        second = remedial.suspend(workspace.id, reason="Other")

        assert second.admin_suspended_at == first.admin_suspended_at
        assert second.suspension_reason == "Abuse"

    def test_unsuspend_restores_billing_status(self) -> None:
        workspace = WorkspaceFactory.create()
        remedial.suspend(workspace.id)

        updated = remedial.unsuspend(workspace.id)

        assert updated.admin_suspended_at is None
        assert updated.suspension_reason == ""
        assert resolve_workspace_status(updated).status == CanonicalStatus.ACTIVE

    def test_unknown_workspace(self) -> None:
        with pytest.raises(WorkspaceNotFound):
            remedial.suspend(999999)


@pytest.mark.django_db
class TestLedgerActions:
    """Tests for the ledger-backed remedial actions."""

    def test_add_bonus_credits(self) -> None:
        workspace = WorkspaceFactory.create(credits_balance=5)

        updated = remedial.add_bonus_credits(workspace.id, 20)

        assert updated.credits_balance == 25

    def test_reset_usage(self) -> None:
        workspace = WorkspaceFactory.create(usage_api_calls_count=900, total_api_calls_all_time=5000)

        updated = remedial.reset_usage(workspace.id, "api")

        assert updated.usage_api_calls_count == 0
        assert updated.total_api_calls_all_time == 5000


@pytest.mark.django_db
class TestUpdatePlanLimits:
    """Tests for update_plan_limits."""

    def test_overrides_only_given_limits(self) -> None:
        workspace = WorkspaceFactory.create()

        updated = remedial.update_plan_limits(workspace.id, brands=25, ai_credits_per_month=None)

        updated.refresh_from_db()
        assert updated.limit_brands == 25
        assert updated.limit_ai_credits_per_month is None
        assert updated.limit_members == 5
        assert updated.plan_id == "growth"

    def test_zero_is_a_limit(self) -> None:
        workspace = WorkspaceFactory.create()

        updated = remedial.update_plan_limits(workspace.id, members=0)

        assert updated.limit_members == 0

    def test_negative_limit_rejected(self) -> None:
        workspace = WorkspaceFactory.create()

        with pytest.raises(InvariantViolation, match="brands"):
            remedial.update_plan_limits(workspace.id, brands=-1)

        workspace.refresh_from_db()
        assert workspace.limit_brands == 5

    def test_unknown_limit_rejected(self) -> None:
        workspace = WorkspaceFactory.create()

        with pytest.raises(InvariantViolation, match="seats"):
            remedial.update_plan_limits(workspace.id, seats=3)

    def test_nothing_to_update(self) -> None:
        workspace = WorkspaceFactory.create()

        with pytest.raises(InvariantViolation):
            remedial.update_plan_limits(workspace.id)

    def test_unknown_workspace(self) -> None:
        with pytest.raises(WorkspaceNotFound):
            remedial.update_plan_limits(999999, brands=1)


@pytest.mark.django_db
class TestCustomerPortal:
    """Tests for get_customer_portal_url."""

    def test_portal_for_billing_customer(self, fake_stripe: FakeStripe) -> None:
        workspace = WorkspaceFactory.create(stripe_customer_id="cus_portal_1")

        url = remedial.get_customer_portal_url(workspace.id, "https://app.example.com/settings")

        assert url.startswith("https://billing.stripe.test/")
        _, kwargs = fake_stripe.calls_to("billing_portal.Session.create")[0]
        assert kwargs["customer"] == "cus_portal_1"
        assert kwargs["return_url"] == "https://app.example.com/settings"

    def test_requires_billing_customer(self, fake_stripe: FakeStripe) -> None:
        workspace = WorkspaceFactory.create(unbilled=True)

        with pytest.raises(InvariantViolation):
            remedial.get_customer_portal_url(workspace.id, "https://app.example.com/settings")

        assert fake_stripe.calls_to("billing_portal.Session.create") == []

    def test_provider_failure(self, fake_stripe: FakeStripe) -> None:
        workspace = WorkspaceFactory.create()
        fake_stripe.fail("billing_portal.Session.create")

        with pytest.raises(ExternalCallFailed) as exc_info:
            remedial.get_customer_portal_url(workspace.id, "https://app.example.com/settings")

        assert exc_info.value.step == "customer_portal"
