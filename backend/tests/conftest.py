"""
Shared pytest fixtures for all tests.

This module provides common fixtures used across multiple test modules.
Individual test modules can override these fixtures if needed.

Factories
---------
Import factories directly from their modules:

    from tests.workspaces.factories import WorkspaceFactory, ProvisioningRunFactory

Provider fakes
--------------
`fake_stripe` replaces the configured Stripe module with an in-memory fake
(see tests/billing/fakes.py). `stytch_client` replaces the Stytch client with
a MagicMock whose organizations.create echoes back a new organization.

Example usage:

    @pytest.mark.django_db
    def test_something(fake_stripe):
        subscription = fake_stripe.add_subscription("cus_1", status="trialing")
        workspace = WorkspaceFactory.create(stripe_subscription_id=subscription["id"])
"""

from collections.abc import Iterator
from itertools import count
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from django.core.cache import cache
from django.http import HttpRequest
from django.test import Client, RequestFactory

from apps.core.auth import STYTCH_ADMIN_ROLE, AuthContext
from tests.billing.fakes import FakeStripe


class MockRequest(HttpRequest):
    """
    HttpRequest subclass for tests that allows setting auth attribute.

    Example:
        request = MockRequest()
        request.auth = AuthContext(is_staff=True)
    """

    auth: AuthContext


def make_request_with_auth(request: HttpRequest, auth: AuthContext) -> HttpRequest:
    """
    Set auth on a request, as the ninja auth classes would.

    Example:
        request = request_factory.get("/api/v1/workspaces/1/status")
        request = make_request_with_auth(request, AuthContext(is_staff=True))
    """
    request.auth = auth  # type: ignore[attr-defined]
    return request


def staff_auth() -> AuthContext:
    return AuthContext(is_staff=True)


def tenant_auth(stytch_org_id: str, admin: bool = False) -> AuthContext:
    return AuthContext(
        stytch_member_id="member-test-1",
        stytch_org_id=stytch_org_id,
        email="owner@example.com",
        roles=(STYTCH_ADMIN_ROLE,) if admin else (),
    )


@pytest.fixture(autouse=True)
def clear_cache() -> Iterator[None]:
    """Provisioning intents live in the cache; isolate them per test."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def request_factory() -> RequestFactory:
    """
    Django request factory for unit testing views.

    Use this to call Django Ninja endpoint functions directly.

    Example:
        def test_endpoint(request_factory):
            request = request_factory.get("/api/v1/endpoint")
            request.auth = AuthContext(is_staff=True)
            result = my_endpoint(request)
    """
    return RequestFactory()


@pytest.fixture
def api_client() -> Client:
    """
    Django test client for full HTTP request/response cycle tests.

    Example:
        def test_api_returns_200(api_client):
            response = api_client.get("/api/v1/health")
            assert response.status_code == 200
    """
    return Client()


@pytest.fixture
def fake_stripe() -> Iterator[FakeStripe]:
    """In-memory Stripe, patched in wherever billing services get the client."""
    fake = FakeStripe()
    with patch("apps.billing.services.get_stripe", return_value=fake):
        yield fake


@pytest.fixture
def stytch_client() -> Iterator[MagicMock]:
    """
    Mock Stytch client.

    organizations.create returns a new organization id per call and echoes
    the requested name and slug.
    """
    ids = count(1)

    def create_org(organization_name: str, organization_slug: str | None = None, **_: Any):
        org = SimpleNamespace(
            organization_id=f"organization-test-{next(ids)}",
            organization_name=organization_name,
            organization_slug=organization_slug or "",
            organization_logo_url="",
        )
        return SimpleNamespace(organization=org)

    client = MagicMock()
    client.organizations.create.side_effect = create_org
    with patch("apps.organizations.services.get_stytch_client", return_value=client):
        yield client
