"""Billing-specific exceptions."""


class BillingError(Exception):
    """Base exception for billing errors not raised by the Stripe SDK itself."""

    pass


class CheckoutNotCompletedError(BillingError):
    """Checkout session exists but the customer has not finished paying."""

    def __init__(self, session_id: str, status: str | None):
        super().__init__(f"Checkout session {session_id} is not complete (status={status})")
        self.session_id = session_id
        self.status = status


class UnknownPlanError(BillingError):
    """Plan id or billing interval is not in the catalogue."""

    pass
