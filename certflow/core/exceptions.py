"""
Workflow engine exception hierarchy.

Every service raises one of these types; blueprints register handlers
against them once and get consistent HTTP status codes everywhere. None of
them is retried silently: a business-rule failure is reported verbatim to
the caller. Only notification delivery errors are swallowed, and those
never reach this module.

Usage:
    from certflow.core.exceptions import NotFound, InvalidTransition

    raise NotFound(resource="Project", resource_id=42)
    raise InvalidTransition("Document", 7, "submitted", "slf_issued")
"""


class WorkflowError(Exception):
    """Base class for every recoverable engine error."""

    code = "ERR_WORKFLOW"


class NotFound(WorkflowError):
    """Raised when an entity does not resolve within the caller's tenancy.

    Security note: used for BOTH genuinely missing records AND projects the
    caller may not see, so the response never confirms that a project exists.

    Args:
        resource: Human-readable entity name (e.g. "Project", "Document").
        resource_id: The PK that was looked up. Appears in the message, which
            is identical for missing and invisible projects.
    """

    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class PermissionDenied(WorkflowError):
    """Raised when the acting user lacks the role an operation requires.

    Raised before any write; the store is left untouched.
    """

    code = "ERR_FORBIDDEN"

    def __init__(self, user_id: int | None, action: str, required_roles=None) -> None:
        self.user_id = user_id
        self.action = action
        self.required_roles = sorted(required_roles or [])
        msg = f"User {user_id} is not allowed to '{action}'"
        if self.required_roles:
            msg += f" (requires one of: {', '.join(self.required_roles)})"
        super().__init__(msg)


class InvalidTransition(WorkflowError):
    """Raised when the target state is not an out-edge of the current state.

    Also covers unmet preconditions of an otherwise valid edge.
    """

    code = "ERR_INVALID_TRANSITION"

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None,
        current: str | None,
        target: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current
        self.target_status = target
        self.reason = reason
        msg = f"Cannot move {resource} {resource_id} from '{current}'"
        if target is not None:
            msg += f" to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ValidationFailed(InvalidTransition):
    """Raised when a payload is missing data its template demands.

    Args:
        details: Field-level breakdown, e.g. {"photo_url": "required"}.
    """

    code = "ERR_VALIDATION_FAILED"

    def __init__(self, resource: str, resource_id, reason: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(resource, resource_id, None, None, reason)


class Conflict(WorkflowError):
    """Raised when a concurrent request won the race or a unique key repeats.

    Maps to HTTP 409.
    """

    code = "ERR_CONFLICT"

    def __init__(self, resource: str, resource_id: int | str | None = None, reason: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.reason = reason
        msg = f"Conflicting update on {resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class AlreadyFinalized(WorkflowError):
    """Raised when a terminal Payment / ChecklistResponse is mutated again."""

    code = "ERR_ALREADY_FINALIZED"

    def __init__(self, resource: str, resource_id: int | str | None, status: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.status = status
        super().__init__(f"{resource} id={resource_id} is already final (status={status})")
