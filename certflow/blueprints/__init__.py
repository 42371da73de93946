"""
SLF Certification Workflow Engine
Blueprint helpers shared by the API modules.
"""

import logging
from datetime import date

from flask import request
from werkzeug.exceptions import HTTPException

from certflow.core.exceptions import ValidationFailed, WorkflowError
from certflow.utils.errors import E, api_error, workflow_error_response

logger = logging.getLogger(__name__)


def register_error_handlers(bp):
    """Render engine exceptions raised inside ``bp`` as JSON error bodies."""

    @bp.errorhandler(WorkflowError)
    def _handle_workflow_error(error):
        return workflow_error_response(error)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")


def json_body() -> dict:
    return request.get_json(silent=True) or {}


def parse_date(value, field):
    """ISO date string → date; None passes through."""
    if value is None or value == "":
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationFailed("Request", None, f"{field} must be an ISO date",
                               {field: "invalid date"}) from None
