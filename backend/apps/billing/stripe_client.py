"""
Stripe client configuration.

Provides a configured Stripe client for billing operations.
"""

from types import ModuleType

import stripe

from config.settings.base import settings

# API version required for item-level billing periods
STRIPE_API_VERSION = "2025-06-30.basil"


def configure_stripe() -> None:
    """
    Configure Stripe API with settings.

    Calls are bounded by STRIPE_TIMEOUT_SECONDS and not retried by the SDK
    unless STRIPE_MAX_NETWORK_RETRIES says so; a timed-out call surfaces to the
    caller as a failure.
    """
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.api_version = STRIPE_API_VERSION
    stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES
    if not isinstance(stripe.default_http_client, stripe.RequestsClient):
        stripe.default_http_client = stripe.RequestsClient(
            timeout=settings.STRIPE_TIMEOUT_SECONDS
        )


def get_stripe() -> ModuleType:
    """
    Get configured Stripe module.

    Ensures Stripe is configured before use.
    """
    configure_stripe()
    return stripe
