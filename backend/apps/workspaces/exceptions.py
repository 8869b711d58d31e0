"""Workspace provisioning and remedial action exceptions."""


class WorkspaceError(Exception):
    """Base exception for workspace control plane errors."""

    pass


class ProvisioningError(WorkspaceError):
    """Base exception for provisioning saga failures."""

    pass


class RemedialActionError(WorkspaceError):
    """Base exception for admin remedial action failures."""

    pass


class MissingSessionData(ProvisioningError):
    """No usable intent or checkout reference; the signup must restart."""

    pass


class ProvisioningInProgress(ProvisioningError):
    """Another run for the same checkout reference has not finished."""

    def __init__(self, checkout_session_id: str, state: str):
        super().__init__(
            f"Provisioning for checkout {checkout_session_id} is already in progress ({state})"
        )
        self.checkout_session_id = checkout_session_id
        self.state = state


class WorkspaceNotFound(RemedialActionError):
    """No workspace row for the given id."""

    def __init__(self, workspace_id: int):
        super().__init__(f"Workspace {workspace_id} not found")
        self.workspace_id = workspace_id


class InvariantViolation(RemedialActionError):
    """Action is not allowed in the workspace's current state."""

    pass


class ExternalCallFailed(ProvisioningError, RemedialActionError):
    """
    A provider or datastore call failed.

    Raised by both the saga and the remedial actions; `step` names the saga
    state or remedial operation that failed.
    """

    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause
