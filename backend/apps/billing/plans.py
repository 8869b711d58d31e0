"""
Plan catalogue.

Plans, their trial length and usage limits, and the Stripe price for each
billing interval. Limits of None mean unlimited.
"""

from dataclasses import dataclass, field
from enum import StrEnum

from apps.billing.exceptions import UnknownPlanError
from config.settings.base import settings


class BillingInterval(StrEnum):
    """Stripe recurring price interval."""

    MONTH = "month"
    YEAR = "year"


@dataclass(frozen=True)
class PlanLimits:
    """Usage limits seeded onto a workspace when it joins a plan."""

    brands: int | None
    members: int | None
    storage_gb: int | None
    api_calls_per_month: int | None
    ai_credits_per_month: int | None


@dataclass(frozen=True)
class Plan:
    """A subscription plan."""

    id: str
    name: str
    trial_days: int
    limits: PlanLimits
    # Amount in cents per interval
    amounts: dict[BillingInterval, int] = field(default_factory=dict)
    currency: str = "usd"

    def price_id(self, interval: BillingInterval | str) -> str:
        """Stripe price ID for this plan at the given interval."""
        try:
            interval = BillingInterval(interval)
        except ValueError as e:
            raise UnknownPlanError(f"Unknown billing interval: {interval}") from e
        return getattr(settings, f"STRIPE_PRICE_{self.id.upper()}_{interval.value.upper()}")


PLANS: dict[str, Plan] = {
    "growth": Plan(
        id="growth",
        name="Growth",
        trial_days=7,
        limits=PlanLimits(
            brands=5,
            members=5,
            storage_gb=10,
            api_calls_per_month=1000,
            ai_credits_per_month=30,
        ),
        amounts={BillingInterval.MONTH: 9900, BillingInterval.YEAR: 99000},
    ),
    "custom": Plan(
        id="custom",
        name="Custom",
        trial_days=0,
        limits=PlanLimits(
            brands=None,
            members=None,
            storage_gb=None,
            api_calls_per_month=None,
            ai_credits_per_month=None,
        ),
        amounts={BillingInterval.MONTH: 200000, BillingInterval.YEAR: 2000000},
    ),
}

DEFAULT_PLAN_ID = "growth"

# Limits for organizations that get a workspace row without going through
# checkout (manual drift repair).
UNSUBSCRIBED_LIMITS = PlanLimits(
    brands=1,
    members=2,
    storage_gb=1,
    api_calls_per_month=1000,
    ai_credits_per_month=100,
)


def get_plan(plan_id: str) -> Plan:
    """
    Look up a plan by id.

    Accepts suffixed ids such as "growth_monthly".

    Raises:
        UnknownPlanError: If no plan matches
    """
    base_id = plan_id.split("_")[0]
    try:
        return PLANS[base_id]
    except KeyError as e:
        raise UnknownPlanError(f"Unknown plan: {plan_id}") from e


def plan_for_price(price_id: str) -> tuple[Plan, BillingInterval] | None:
    """Map a Stripe price ID back to its plan and interval."""
    if not price_id:
        return None
    for plan in PLANS.values():
        for interval in BillingInterval:
            if plan.price_id(interval) == price_id:
                return plan, interval
    return None
