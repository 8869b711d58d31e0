"""Organizations app configuration."""

from django.apps import AppConfig


class OrganizationsConfig(AppConfig):
    """Configuration for the identity provider gateway app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.organizations"
