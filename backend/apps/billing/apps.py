"""Billing app configuration."""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    """Configuration for the Stripe billing gateway app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.billing"
