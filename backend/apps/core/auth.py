"""
Authentication context for request lifecycle.

Provides a typed container for authentication state that the ninja auth
classes return and endpoints consume via `request.auth`.
"""

from dataclasses import dataclass

from ninja.errors import HttpError

STYTCH_ADMIN_ROLE = "stytch_admin"


@dataclass(frozen=True)
class AuthContext:
    """
    Authenticated caller.

    Tenant callers carry the Stytch member/organization from their session.
    Internal admin tooling authenticates with a staff token and may act on
    any workspace.

    Attributes:
        stytch_member_id: Stytch member_id, empty for staff callers
        stytch_org_id: Stytch organization_id the session belongs to
        email: Member email, if known
        roles: Stytch RBAC role ids
        is_staff: True for internal admin tooling
    """

    stytch_member_id: str = ""
    stytch_org_id: str = ""
    email: str = ""
    roles: tuple[str, ...] = ()
    is_staff: bool = False

    @property
    def is_admin(self) -> bool:
        """Check if the member is an organization admin."""
        return STYTCH_ADMIN_ROLE in self.roles

    def require_organization(self, stytch_org_id: str) -> None:
        """
        Ensure the caller may act on the given organization.

        Raises:
            HttpError 403: If a tenant caller targets another organization
        """
        if self.is_staff:
            return
        if not self.stytch_org_id or self.stytch_org_id != stytch_org_id:
            raise HttpError(403, "Access to this workspace is not allowed")
