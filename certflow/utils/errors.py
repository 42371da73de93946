"""JSON error bodies for the workflow API.

Every error response has the shape ``{"error": str, "code": "ERR_*",
"details"?: {...}}``. Views return ``api_error(...)`` for malformed input;
engine exceptions go through ``workflow_error_response``.

    from certflow.utils.errors import E, api_error

    return api_error(E.VALIDATION_REQUIRED, "target is required")
"""

from __future__ import annotations

from flask import jsonify

from certflow.core.exceptions import (
    AlreadyFinalized,
    InvalidTransition,
    PermissionDenied,
    ValidationFailed,
    WorkflowError,
)


class E:
    """Error codes. The HTTP status for each lives in ``HTTP_STATUS``."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    CONFLICT = "ERR_CONFLICT"
    ALREADY_FINALIZED = "ERR_ALREADY_FINALIZED"
    VALIDATION_FAILED = "ERR_VALIDATION_FAILED"
    INTERNAL = "ERR_INTERNAL"


HTTP_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    # every state-machine refusal is a 409
    E.INVALID_TRANSITION: 409,
    E.CONFLICT: 409,
    E.ALREADY_FINALIZED: 409,
    E.VALIDATION_FAILED: 422,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(jsonify(body), status)`` for ``code``; unknown codes fall back to 400."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or HTTP_STATUS.get(code, 400)


def _details_for(exc: WorkflowError) -> dict | None:
    if isinstance(exc, ValidationFailed):
        return exc.details
    if isinstance(exc, InvalidTransition):
        return {"current_status": exc.current_status, "target_status": exc.target_status}
    if isinstance(exc, AlreadyFinalized):
        return {"status": exc.status}
    if isinstance(exc, PermissionDenied):
        return {"action": exc.action}
    return None


def workflow_error_response(exc: WorkflowError):
    """Render any engine exception with the code it carries."""
    return api_error(exc.code, str(exc), details=_details_for(exc))
