"""
Workspace models - the canonical tenant record and provisioning runs.
"""

from django.db import models
from django.utils import timezone

from apps.core.models import TimestampedModel


class Workspace(TimestampedModel):
    """
    Canonical tenant record.

    Links a Stytch organization to its Stripe customer/subscription and holds
    plan limits and usage counters. Stripe is the source of truth for the
    subscription fields; they are mirrored here by the provisioning saga,
    remedial actions and webhooks.

    A row always references an organization. It may have no Stripe customer
    (never checked out) or a customer without a subscription (checkout
    abandoned). Rows are never hard-deleted.
    """

    class Status(models.TextChoices):
        """Native Stripe subscription status, mirrored."""

        ACTIVE = "active", "Active"
        TRIALING = "trialing", "Trialing"
        PAST_DUE = "past_due", "Past Due"
        CANCELED = "canceled", "Canceled"
        UNPAID = "unpaid", "Unpaid"
        PAUSED = "paused", "Paused"
        INCOMPLETE = "incomplete", "Incomplete"
        INCOMPLETE_EXPIRED = "incomplete_expired", "Incomplete Expired"

    # Stytch organization (weak reference)
    stytch_org_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Stytch organization_id, e.g. 'organization-xxx'",
    )
    name = models.CharField(max_length=255)
    slug = models.CharField(max_length=128, blank=True)
    logo_url = models.URLField(max_length=1024, blank=True)

    # Stripe references
    stripe_customer_id = models.CharField(
        max_length=255,
        blank=True,
        db_index=True,
        help_text="Stripe customer ID, e.g. 'cus_xxx'",
    )
    stripe_subscription_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe subscription ID, e.g. 'sub_xxx'",
    )
    stripe_checkout_session_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Checkout session that linked billing; idempotency key for linking",
    )
    stripe_price_id = models.CharField(max_length=255, blank=True)

    # Subscription lifecycle (mirrored from Stripe)
    status = models.CharField(
        max_length=50,
        choices=Status.choices,
        default=Status.ACTIVE,
        db_index=True,
    )
    current_period_start = models.DateTimeField(null=True, blank=True)
    current_period_end = models.DateTimeField(null=True, blank=True)
    trial_start = models.DateTimeField(null=True, blank=True)
    trial_end = models.DateTimeField(null=True, blank=True)
    cancel_at_period_end = models.BooleanField(default=False)
    canceled_at = models.DateTimeField(null=True, blank=True)
    ended_at = models.DateTimeField(null=True, blank=True)

    # Administrative override, independent of billing
    admin_suspended_at = models.DateTimeField(null=True, blank=True)
    suspension_reason = models.CharField(max_length=500, blank=True)

    # Plan
    plan_id = models.CharField(max_length=50, blank=True)
    plan_name = models.CharField(max_length=100, blank=True)
    billing_interval = models.CharField(max_length=10, blank=True)
    price_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    currency = models.CharField(max_length=3, default="usd")

    # Limits (NULL = unlimited)
    limit_brands = models.PositiveIntegerField(null=True, blank=True)
    limit_members = models.PositiveIntegerField(null=True, blank=True)
    limit_storage_gb = models.PositiveIntegerField(null=True, blank=True)
    limit_api_calls_per_month = models.PositiveIntegerField(null=True, blank=True)
    limit_ai_credits_per_month = models.PositiveIntegerField(null=True, blank=True)

    # Current period usage
    usage_brands_count = models.IntegerField(default=0)
    usage_members_count = models.IntegerField(default=0)
    usage_storage_bytes = models.BigIntegerField(default=0)
    usage_api_calls_count = models.IntegerField(default=0)
    usage_ai_credits_used = models.IntegerField(default=0)

    # Lifetime usage
    total_brands_created = models.IntegerField(default=0)
    total_members_added = models.IntegerField(default=0)
    total_storage_bytes_all_time = models.BigIntegerField(default=0)
    total_api_calls_all_time = models.BigIntegerField(default=0)
    total_ai_credits_all_time = models.BigIntegerField(default=0)

    # Bonus AI credits granted by admins, on top of the plan limit
    credits_balance = models.IntegerField(default=0)

    last_activity_at = models.DateTimeField(null=True, blank=True)
    usage_reset_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.name} ({self.stytch_org_id})"

    @property
    def is_admin_suspended(self) -> bool:
        return self.admin_suspended_at is not None

    @property
    def is_active(self) -> bool:
        """Usable: subscription active or trialing, and not suspended."""
        return (
            self.status in (self.Status.ACTIVE, self.Status.TRIALING)
            and not self.is_admin_suspended
        )


class ProvisioningRun(TimestampedModel):
    """
    Server-side record of a provisioning saga keyed by checkout session.

    Serializes concurrent runs for the same checkout and lets a repeated
    request return the workspace a finished run already produced.
    """

    class State(models.TextChoices):
        IDLE = "idle", "Idle"
        CREATING_ORG = "creating_org", "Creating organization"
        CREATING_WORKSPACE = "creating_workspace", "Creating workspace"
        LINKING_BILLING = "linking_billing", "Linking billing"
        DONE = "done", "Done"
        FAILED = "failed", "Failed"

    IN_PROGRESS_STATES = (
        State.CREATING_ORG,
        State.CREATING_WORKSPACE,
        State.LINKING_BILLING,
    )

    checkout_session_id = models.CharField(max_length=255, unique=True)
    state = models.CharField(
        max_length=30,
        choices=State.choices,
        default=State.IDLE,
        db_index=True,
    )
    failed_step = models.CharField(max_length=30, blank=True)
    error_message = models.TextField(blank=True)
    attempts = models.PositiveIntegerField(default=0)
    stytch_org_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Organization created by the latest attempt",
    )
    orphaned_org_ids = models.JSONField(
        default=list,
        blank=True,
        help_text="Organizations left behind by failed attempts, for reconciliation",
    )
    history = models.JSONField(
        default=list,
        blank=True,
        help_text="States visited by the latest attempt, in order",
    )
    workspace = models.ForeignKey(
        Workspace,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="provisioning_runs",
    )
    signup_token_hash = models.CharField(
        max_length=64,
        blank=True,
        help_text="SHA-256 of the signup token that claimed this run",
    )
    heartbeat_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.checkout_session_id} ({self.state})"

    @property
    def is_in_progress(self) -> bool:
        return self.state in self.IN_PROGRESS_STATES
