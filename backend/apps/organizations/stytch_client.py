"""
Stytch B2B client wrapper.

Stytch is the identity/organization provider: it owns organizations and
members. Workspaces reference Stytch organizations by id only.

The SDK sends requests without a timeout, so the client gets a session whose
adapter applies STYTCH_TIMEOUT_SECONDS to every request. A timed-out call
raises requests.Timeout (an OSError), which callers treat as a failed step.
"""

from functools import lru_cache

import requests
import stytch
from django.conf import settings
from requests.adapters import HTTPAdapter


class TimeoutHTTPAdapter(HTTPAdapter):
    """HTTPAdapter that fills in a default timeout when the caller sets none."""

    def __init__(self, *args, timeout: float, **kwargs):
        self.timeout = timeout
        super().__init__(*args, **kwargs)

    def send(self, request, **kwargs):
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self.timeout
        return super().send(request, **kwargs)


def build_session(timeout: float) -> requests.Session:
    session = requests.Session()
    adapter = TimeoutHTTPAdapter(timeout=timeout)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


@lru_cache(maxsize=1)
def get_stytch_client() -> stytch.B2BClient:
    """Get the configured Stytch B2B client (one per process)."""
    return stytch.B2BClient(
        project_id=settings.STYTCH_PROJECT_ID,
        secret=settings.STYTCH_SECRET,
        sync_session=build_session(settings.STYTCH_TIMEOUT_SECONDS),
    )


def reset_stytch_client() -> None:
    """Drop the cached client, e.g. after credentials change in tests."""
    get_stytch_client.cache_clear()
