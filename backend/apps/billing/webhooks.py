"""
Stripe webhook handler.

Handles incoming webhooks from Stripe for subscription events.
This is a separate view (not Django Ninja) for raw request handling
needed to verify Stripe signatures.

Subscription changes made outside this system (customer portal, dunning,
period-end cancellation) reach workspaces through here.
"""

import stripe
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from apps.billing.services import parse_subscription
from apps.billing.stripe_client import get_stripe
from apps.core.logging import get_logger
from apps.core.webhooks import is_webhook_processed, mark_webhook_processed
from apps.workspaces.mirror import sync_subscription_to_workspace
from config.settings.base import settings

logger = get_logger(__name__)

WEBHOOK_SOURCE = "stripe"


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Handle Stripe webhook events.

    Verifies signature, skips redeliveries, and dispatches to the mirror.
    """
    payload = request.body
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("stripe_webhook_missing_signature")
        return HttpResponse(status=400)

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("stripe_webhook_secret_not_configured")
        return HttpResponse(status=500)

    get_stripe()  # Ensure Stripe is configured
    try:
        event = stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.STRIPE_WEBHOOK_SECRET,
        )
    except ValueError as e:
        logger.warning("stripe_webhook_invalid_payload", error=str(e))
        return HttpResponse(status=400)
    except stripe.SignatureVerificationError as e:
        logger.warning("stripe_webhook_invalid_signature", error=str(e))
        return HttpResponse(status=400)

    event_id = event["id"]
    event_type = event["type"]

    if is_webhook_processed(WEBHOOK_SOURCE, event_id):
        logger.info("stripe_webhook_duplicate", event_id=event_id, event_type=event_type)
        return HttpResponse(status=200)

    logger.info("stripe_webhook_received", event_id=event_id, event_type=event_type)

    try:
        match event_type:
            case (
                "customer.subscription.created"
                | "customer.subscription.updated"
                | "customer.subscription.deleted"
                | "customer.subscription.paused"
                | "customer.subscription.resumed"
            ):
                snapshot = parse_subscription(event["data"]["object"])
                workspace = sync_subscription_to_workspace(snapshot)
                if workspace is None:
                    # Linking happens in the provisioning saga; a subscription
                    # created by checkout arrives here before it is linked.
                    logger.info(
                        "stripe_webhook_subscription_unlinked",
                        stripe_subscription_id=snapshot.subscription_id,
                    )

            case "invoice.payment_failed":
                invoice = event["data"]["object"]
                logger.warning(
                    "stripe_invoice_payment_failed",
                    invoice_id=invoice["id"],
                    stripe_customer_id=invoice["customer"],
                )

            case _:
                logger.debug("stripe_webhook_unhandled_event", event_type=event_type)

    except Exception:
        logger.exception("stripe_webhook_handler_error", event_id=event_id)
        # Return 500 so Stripe will retry with exponential backoff
        return HttpResponse(status=500)

    mark_webhook_processed(WEBHOOK_SOURCE, event_id)
    return HttpResponse(status=200)
