"""
Tests for the Stytch client wrapper.
"""

from collections.abc import Iterator
from unittest.mock import patch

import pytest
import requests
from django.test import override_settings
from requests.adapters import HTTPAdapter

from apps.organizations.stytch_client import build_session, get_stytch_client, reset_stytch_client


def ok_response() -> requests.Response:
    response = requests.Response()
    response.status_code = 200
    response._content = b"{}"
    return response


@pytest.fixture
def captured_sends() -> Iterator[list[dict]]:
    """Intercept the transport so no request leaves the process."""
    sends: list[dict] = []

    def send(adapter, request, **kwargs):
        sends.append(kwargs)
        return ok_response()

    with patch.object(HTTPAdapter, "send", autospec=True, side_effect=send):
        yield sends


@pytest.fixture
def fresh_client() -> Iterator[None]:
    reset_stytch_client()
    yield
    reset_stytch_client()


class TestBuildSession:
    """Tests for the timeout-bounded requests session."""

    def test_applies_default_timeout(self, captured_sends: list[dict]) -> None:
        session = build_session(timeout=7)

        session.post("https://test.stytch.com/v1/b2b/organizations", json={})

        assert captured_sends[0]["timeout"] == 7

    def test_explicit_timeout_wins(self, captured_sends: list[dict]) -> None:
        session = build_session(timeout=7)

        session.get("https://test.stytch.com/v1/b2b/organizations/x", timeout=2)

        assert captured_sends[0]["timeout"] == 2


class TestGetStytchClient:
    """Tests for the cached B2B client."""

    @pytest.fixture(autouse=True)
    def stytch_settings(self) -> Iterator[None]:
        with override_settings(
            STYTCH_PROJECT_ID="project-test-00000000-0000-0000-0000-000000000000",
            STYTCH_SECRET="secret-test-placeholder",
            STYTCH_TIMEOUT_SECONDS=4,
        ):
            yield

    def test_sdk_requests_carry_timeout(self, fresh_client: None, captured_sends: list[dict]) -> None:
        """Requests the SDK issues reach the transport with the configured timeout."""
        client = get_stytch_client()

        client.sync_client.post("https://test.stytch.com/v1/b2b/organizations", json={})
        client.sync_client.get("https://test.stytch.com/v1/b2b/organizations/x", params=None)

        assert [kwargs["timeout"] for kwargs in captured_sends] == [4, 4]

    def test_client_is_cached(self, fresh_client: None) -> None:
        assert get_stytch_client() is get_stytch_client()
