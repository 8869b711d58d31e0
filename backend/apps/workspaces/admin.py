"""Admin configuration for workspaces app."""

from django.contrib import admin

from apps.workspaces.models import ProvisioningRun, Workspace
from apps.workspaces.status import resolve_workspace_status


@admin.register(Workspace)
class WorkspaceAdmin(admin.ModelAdmin):
    """Admin for Workspace model."""

    list_display = ["name", "stytch_org_id", "plan_id", "status", "canonical_status", "created_at"]
    list_filter = ["status", "plan_id", "cancel_at_period_end"]
    search_fields = ["name", "slug", "stytch_org_id", "stripe_customer_id", "stripe_subscription_id"]
    readonly_fields = [
        "stripe_customer_id",
        "stripe_subscription_id",
        "stripe_checkout_session_id",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    @admin.display(description="Canonical status")
    def canonical_status(self, obj: Workspace) -> str:
        return resolve_workspace_status(obj).status.value


@admin.register(ProvisioningRun)
class ProvisioningRunAdmin(admin.ModelAdmin):
    """Admin for ProvisioningRun model."""

    list_display = ["checkout_session_id", "state", "failed_step", "attempts", "workspace", "updated_at"]
    list_filter = ["state", "failed_step"]
    search_fields = ["checkout_session_id", "stytch_org_id"]
    readonly_fields = ["history", "orphaned_org_ids", "signup_token_hash", "created_at", "updated_at"]
    ordering = ["-created_at"]
