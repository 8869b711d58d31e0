"""
Core security - authentication classes for API.
"""

import hmac

from django.conf import settings
from django.http import HttpRequest
from ninja.security import HttpBearer
from stytch.core.response_base import StytchError

from apps.core.auth import AuthContext
from apps.core.logging import get_logger
from apps.organizations.stytch_client import get_stytch_client

logger = get_logger(__name__)


class BearerAuth(HttpBearer):
    """
    Stytch session JWT authentication for tenant-facing endpoints.

    The JWT is validated by Stytch; the resulting member session becomes the
    request's AuthContext.
    """

    def authenticate(self, request: HttpRequest, token: str) -> AuthContext | None:
        if not token:
            return None

        client = get_stytch_client()
        try:
            response = client.sessions.authenticate(session_jwt=token)
        except StytchError as e:
            logger.info("session_authentication_failed", error=e.details.error_message)
            return None

        roles = getattr(response.member_session, "roles", None) or []
        return AuthContext(
            stytch_member_id=response.member.member_id,
            stytch_org_id=response.organization.organization_id,
            email=response.member.email_address,
            roles=tuple(roles),
        )


class StaffTokenAuth(HttpBearer):
    """
    Shared-secret authentication for internal admin tooling.

    Rejects every request when ADMIN_API_TOKEN is not configured.
    """

    def authenticate(self, request: HttpRequest, token: str) -> AuthContext | None:
        expected = settings.ADMIN_API_TOKEN
        if not expected or not token:
            return None
        if not hmac.compare_digest(token.encode(), expected.encode()):
            logger.warning("staff_token_rejected")
            return None
        return AuthContext(is_staff=True)
