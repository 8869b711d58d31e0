"""
Tests for the Stripe webhook handler.

Tests signature verification, subscription mirroring and redelivery handling.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import stripe
from django.test import Client

from apps.core.models import ProcessedWebhook
from apps.workspaces.models import Workspace
from tests.billing.fakes import FakeStripe
from tests.workspaces.factories import WorkspaceFactory

WEBHOOK_URL = "/webhooks/stripe/"


def post_event(client: Client, event_type: str, data_object: dict, event_id: str = "evt_test_1"):
    """Post an event; construct_event is patched to return it unchanged."""
    event = {"id": event_id, "type": event_type, "data": {"object": data_object}}
    with (
        patch("apps.billing.webhooks.settings") as mock_settings,
        patch("apps.billing.webhooks.stripe.Webhook.construct_event", return_value=event),
    ):
        mock_settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
        return client.post(
            WEBHOOK_URL,
            data=json.dumps(event),
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=test",
        )


class TestStripeWebhookSignatureVerification:
    """Tests for webhook signature verification."""

    def test_missing_signature_header_returns_400(self, client: Client) -> None:
        response = client.post(WEBHOOK_URL, data="{}", content_type="application/json")

        assert response.status_code == 400

    @patch("apps.billing.webhooks.settings")
    def test_missing_webhook_secret_returns_500(self, mock_settings: MagicMock, client: Client) -> None:
        mock_settings.STRIPE_WEBHOOK_SECRET = ""

        response = client.post(
            WEBHOOK_URL,
            data="{}",
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=test",
        )

        assert response.status_code == 500

    @pytest.mark.parametrize(
        "error",
        [
            ValueError("Invalid payload"),
            stripe.SignatureVerificationError("Invalid signature", "sig_header"),
        ],
    )
    @patch("apps.billing.webhooks.stripe.Webhook.construct_event")
    @patch("apps.billing.webhooks.settings")
    def test_rejected_event_returns_400(
        self,
        mock_settings: MagicMock,
        mock_construct: MagicMock,
        error: Exception,
        client: Client,
    ) -> None:
        mock_settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
        mock_construct.side_effect = error

        response = client.post(
            WEBHOOK_URL,
            data="not json",
            content_type="application/json",
            HTTP_STRIPE_SIGNATURE="t=1,v1=bad",
        )

        assert response.status_code == 400


@pytest.mark.django_db
class TestSubscriptionEvents:
    """Subscription changes made in Stripe reach the workspace."""

    def test_updated_event_mirrors_status(self, client: Client) -> None:
        fake = FakeStripe()
        subscription = fake.add_subscription(customer_id="cus_1", status="past_due")
        workspace = WorkspaceFactory.create(
            stripe_customer_id="cus_1", stripe_subscription_id=subscription["id"]
        )

        response = post_event(client, "customer.subscription.updated", subscription)

        assert response.status_code == 200
        workspace.refresh_from_db()
        assert workspace.status == Workspace.Status.PAST_DUE

    def test_deleted_event_marks_canceled(self, client: Client) -> None:
        fake = FakeStripe()
        subscription = fake.add_subscription(customer_id="cus_2", status="active")
        workspace = WorkspaceFactory.create(
            stripe_customer_id="cus_2", stripe_subscription_id=subscription["id"]
        )
        fake.Subscription.cancel(subscription["id"])

        post_event(client, "customer.subscription.deleted", fake.subscriptions[subscription["id"]])

        workspace.refresh_from_db()
        assert workspace.status == Workspace.Status.CANCELED
        assert workspace.ended_at is not None

    def test_unlinked_subscription_is_acknowledged(self, client: Client) -> None:
        subscription = FakeStripe().add_subscription(customer_id="cus_nobody")

        response = post_event(client, "customer.subscription.created", subscription)

        assert response.status_code == 200
        assert Workspace.objects.count() == 0

    def test_payment_failed_is_logged(self, client: Client) -> None:
        response = post_event(
            client, "invoice.payment_failed", {"id": "in_1", "customer": "cus_1"}, event_id="evt_inv"
        )

        assert response.status_code == 200

    def test_unhandled_event_returns_200(self, client: Client) -> None:
        response = post_event(client, "customer.created", {"id": "cus_1"})

        assert response.status_code == 200


@pytest.mark.django_db
class TestStripeWebhookIdempotency:
    """Redelivered events are processed once."""

    def test_marks_event_processed(self, client: Client) -> None:
        post_event(client, "customer.created", {"id": "cus_1"}, event_id="evt_once")

        assert ProcessedWebhook.objects.filter(source="stripe", event_id="evt_once").exists()

    @patch("apps.billing.webhooks.sync_subscription_to_workspace")
    def test_duplicate_event_not_processed(self, mock_sync: MagicMock, client: Client) -> None:
        subscription = FakeStripe().add_subscription()
        mock_sync.return_value = None

        post_event(client, "customer.subscription.updated", subscription, event_id="evt_dup")
        post_event(client, "customer.subscription.updated", subscription, event_id="evt_dup")

        assert mock_sync.call_count == 1

    @patch("apps.billing.webhooks.sync_subscription_to_workspace")
    def test_handler_error_returns_500_and_allows_retry(self, mock_sync: MagicMock, client: Client) -> None:
        subscription = FakeStripe().add_subscription()
        mock_sync.side_effect = RuntimeError("database unavailable")

        response = post_event(client, "customer.subscription.updated", subscription, event_id="evt_retry")

        assert response.status_code == 500
        assert not ProcessedWebhook.objects.filter(event_id="evt_retry").exists()
