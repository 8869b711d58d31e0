"""
Billing services - Stripe integration logic.

All Stripe API calls are isolated here for testability.
External calls must NOT be inside database transactions.

Stripe is the source of truth for subscription state. Callers receive a
SubscriptionSnapshot and mirror it locally; nothing here writes to the
database.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from apps.billing.exceptions import CheckoutNotCompletedError
from apps.billing.plans import BillingInterval, Plan
from apps.billing.stripe_client import get_stripe
from apps.core.logging import get_logger

logger = get_logger(__name__)

CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Subscription fields this system mirrors from Stripe."""

    subscription_id: str
    customer_id: str
    status: str
    price_id: str = ""
    price_amount: Decimal | None = None
    currency: str = ""
    billing_interval: str = ""
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    ended_at: datetime | None = None


@dataclass(frozen=True)
class CheckoutSession:
    """A hosted checkout session the client is redirected to."""

    session_id: str
    url: str


@dataclass(frozen=True)
class CheckoutResult:
    """Outcome of a completed checkout session."""

    session_id: str
    customer_id: str
    subscription: SubscriptionSnapshot


def _timestamp(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=UTC)


def _object_id(value: Any) -> str:
    """Stripe fields are either an ID string or an expanded object."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return value["id"]


def parse_subscription(stripe_subscription: Any) -> SubscriptionSnapshot:
    """
    Build a snapshot from a Stripe subscription object or webhook payload.

    Billing periods moved from the subscription to its items in the 2025 API;
    the item-level values win, then the nested `current_period`, then the
    legacy top-level fields.
    """
    items = (stripe_subscription.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or {}

    current_period = stripe_subscription.get("current_period") or {}
    period_start = (
        first_item.get("current_period_start")
        or current_period.get("start")
        or stripe_subscription.get("current_period_start")
    )
    period_end = (
        first_item.get("current_period_end")
        or current_period.get("end")
        or stripe_subscription.get("current_period_end")
    )

    unit_amount = price.get("unit_amount")
    recurring = price.get("recurring") or {}

    return SubscriptionSnapshot(
        subscription_id=stripe_subscription["id"],
        customer_id=_object_id(stripe_subscription.get("customer")),
        status=stripe_subscription["status"],
        price_id=price.get("id", ""),
        price_amount=Decimal(unit_amount) / 100 if unit_amount is not None else None,
        currency=stripe_subscription.get("currency") or price.get("currency") or "",
        billing_interval=recurring.get("interval", ""),
        current_period_start=_timestamp(period_start),
        current_period_end=_timestamp(period_end),
        trial_start=_timestamp(stripe_subscription.get("trial_start")),
        trial_end=_timestamp(stripe_subscription.get("trial_end")),
        cancel_at_period_end=bool(stripe_subscription.get("cancel_at_period_end", False)),
        canceled_at=_timestamp(stripe_subscription.get("canceled_at")),
        ended_at=_timestamp(stripe_subscription.get("ended_at")),
    )


def create_checkout_session(
    plan: Plan,
    interval: BillingInterval | str,
    success_url: str,
    cancel_url: str,
    metadata: dict[str, str] | None = None,
    customer_email: str | None = None,
) -> CheckoutSession:
    """
    Create a Stripe Checkout Session for a new subscription.

    The session ID is appended to success_url so the client can hand it back
    when the redirect returns.
    """
    stripe = get_stripe()

    if CHECKOUT_SESSION_PLACEHOLDER not in success_url:
        separator = "&" if "?" in success_url else "?"
        success_url = f"{success_url}{separator}session_id={CHECKOUT_SESSION_PLACEHOLDER}"

    subscription_data: dict[str, Any] = {"metadata": metadata or {}}
    if plan.trial_days:
        subscription_data["trial_period_days"] = plan.trial_days

    params: dict[str, Any] = {
        "mode": "subscription",
        "line_items": [{"price": plan.price_id(interval), "quantity": 1}],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "subscription_data": subscription_data,
        "metadata": metadata or {},
        "allow_promotion_codes": True,
    }
    if customer_email:
        params["customer_email"] = customer_email

    session = stripe.checkout.Session.create(**params)

    logger.info("checkout_session_created", checkout_session_id=session.id, plan_id=plan.id)
    return CheckoutSession(session_id=session.id, url=session.url)


def resolve_checkout_session(session_id: str) -> CheckoutResult:
    """
    Exchange a completed checkout session for its customer and subscription.

    Raises:
        CheckoutNotCompletedError: If the session is not complete or has no subscription
        stripe.StripeError: On any Stripe API failure
    """
    stripe = get_stripe()

    session = stripe.checkout.Session.retrieve(session_id, expand=["subscription"])
    status = session.get("status")
    if status != "complete" or not session.get("subscription"):
        raise CheckoutNotCompletedError(session_id, status)

    subscription = session["subscription"]
    if isinstance(subscription, str):
        subscription = stripe.Subscription.retrieve(subscription)

    snapshot = parse_subscription(subscription)
    customer_id = _object_id(session.get("customer")) or snapshot.customer_id

    logger.info(
        "checkout_session_resolved",
        checkout_session_id=session_id,
        stripe_customer_id=customer_id,
        stripe_subscription_id=snapshot.subscription_id,
        status=snapshot.status,
    )
    return CheckoutResult(session_id=session_id, customer_id=customer_id, subscription=snapshot)


def retrieve_subscription(subscription_id: str) -> SubscriptionSnapshot:
    """Fetch the current state of a subscription from Stripe."""
    stripe = get_stripe()
    return parse_subscription(stripe.Subscription.retrieve(subscription_id))


def cancel_subscription(subscription_id: str, immediate: bool) -> None:
    """
    Cancel a subscription now, or flag it to cancel at period end.
    """
    stripe = get_stripe()

    if immediate:
        stripe.Subscription.cancel(subscription_id)
    else:
        stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)

    logger.info(
        "stripe_subscription_canceled",
        stripe_subscription_id=subscription_id,
        immediate=immediate,
    )


def reactivate_subscription(subscription_id: str) -> None:
    """Clear a pending cancel-at-period-end."""
    stripe = get_stripe()
    stripe.Subscription.modify(subscription_id, cancel_at_period_end=False)
    logger.info("stripe_subscription_reactivated", stripe_subscription_id=subscription_id)


def update_trial_end(subscription_id: str, trial_end: datetime) -> None:
    """Move the trial end of a subscription without prorating."""
    stripe = get_stripe()
    stripe.Subscription.modify(
        subscription_id,
        trial_end=int(trial_end.timestamp()),
        proration_behavior="none",
    )
    logger.info(
        "stripe_trial_end_updated",
        stripe_subscription_id=subscription_id,
        trial_end=trial_end.isoformat(),
    )


def create_customer_portal_session(customer_id: str, return_url: str) -> str:
    """
    Create a Stripe Customer Portal session.

    Returns the portal URL.
    """
    stripe = get_stripe()

    session = stripe.billing_portal.Session.create(
        customer=customer_id,
        return_url=return_url,
    )

    logger.info("stripe_portal_session_created", stripe_customer_id=customer_id)
    return session.url
