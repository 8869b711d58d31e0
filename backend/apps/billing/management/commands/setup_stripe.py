"""
Management command to set up Stripe products and prices for the plan catalogue.

Run once per environment, then copy the printed price IDs into .env.
Usage: python manage.py setup_stripe
"""

from django.core.management.base import BaseCommand, CommandError

from apps.billing.plans import PLANS, BillingInterval
from apps.billing.stripe_client import get_stripe
from config.settings.base import settings

PRODUCT_APP_TAG = "workspace-control-plane"


class Command(BaseCommand):
    help = "Create a Stripe product per plan and a recurring price per billing interval"

    def add_arguments(self, parser):
        parser.add_argument(
            "--plan",
            action="append",
            choices=sorted(PLANS),
            help="Only set up the given plan (repeatable, default: all)",
        )
        parser.add_argument(
            "--force",
            action="store_true",
            help="Create new products/prices even if matching ones exist",
        )

    def handle(self, *args, **options):
        if not settings.STRIPE_SECRET_KEY:
            raise CommandError("STRIPE_SECRET_KEY not set. Add it to your .env file first.")

        stripe = get_stripe()
        plan_ids = options["plan"] or sorted(PLANS)
        env_lines: list[str] = []

        for plan_id in plan_ids:
            plan = PLANS[plan_id]
            self.stdout.write(f"Setting up plan: {plan.name}")

            product = None
            if not options["force"]:
                products = stripe.Product.search(
                    query=(
                        f"metadata['app']:'{PRODUCT_APP_TAG}' "
                        f"AND metadata['plan']:'{plan.id}' AND active:'true'"
                    )
                )
                if products.data:
                    product = products.data[0]
                    self.stdout.write(self.style.WARNING(f"  Found existing product: {product.id}"))

            if product is None:
                product = stripe.Product.create(
                    name=plan.name,
                    metadata={"app": PRODUCT_APP_TAG, "plan": plan.id},
                )
                self.stdout.write(f"  Created product: {product.id}")

            existing_prices = {}
            if not options["force"]:
                prices = stripe.Price.list(product=product.id, active=True, type="recurring")
                existing_prices = {p.recurring.interval: p for p in prices.data}

            for interval in BillingInterval:
                price = existing_prices.get(interval.value)
                if price is None:
                    price = stripe.Price.create(
                        product=product.id,
                        unit_amount=plan.amounts[interval],
                        currency=plan.currency,
                        recurring={"interval": interval.value},
                        metadata={"app": PRODUCT_APP_TAG, "plan": plan.id},
                    )
                    self.stdout.write(f"  Created {interval.value} price: {price.id}")
                env_lines.append(f"STRIPE_PRICE_{plan.id.upper()}_{interval.value.upper()}={price.id}")

        self.stdout.write(
            self.style.SUCCESS("\nStripe setup complete. Add this to your .env:\n\n" + "\n".join(env_lines))
        )
        self.stdout.write(
            self.style.NOTICE(
                "\nWebhook endpoint: https://your-domain.com/webhooks/stripe/\n"
                "Events: customer.subscription.*, invoice.payment_failed\n"
            )
        )
