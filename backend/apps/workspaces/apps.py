"""Workspaces app configuration."""

from django.apps import AppConfig


class WorkspacesConfig(AppConfig):
    """Configuration for workspaces app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.workspaces"
