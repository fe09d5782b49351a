"""Mapping of domain errors to HTTP responses."""

import logging

from fastapi import HTTPException, status

from servicedesk.core.approval.errors import ApprovalError
from servicedesk.core.changes import ChangeValidationError
from servicedesk.core.lifecycle import (
    TransitionError,
    PermissionDeniedError,
    ManualApprovalForbidden,
    ImplementationTooEarly,
)

logger = logging.getLogger(__name__)

# Errors routers catch, roll back and report
DOMAIN_ERRORS = (ApprovalError, ChangeValidationError, TransitionError, PermissionDeniedError)

TRANSITION_ERROR_CODES = {
    ManualApprovalForbidden: "manual_approval_forbidden",
    ImplementationTooEarly: "implementation_too_early",
}


def to_http_exception(exc: Exception) -> HTTPException:
    """Build the HTTPException a domain error is reported with."""
    if isinstance(exc, (ApprovalError, ChangeValidationError)):
        status_code = exc.status_code
        code = exc.code
    elif isinstance(exc, PermissionDeniedError):
        status_code = status.HTTP_403_FORBIDDEN
        code = "permission_denied"
    else:
        status_code = status.HTTP_400_BAD_REQUEST
        code = TRANSITION_ERROR_CODES.get(type(exc), "invalid_transition")

    if status_code >= 500:
        logger.error("%s: %s", code, exc)
    else:
        logger.info("Request rejected (%s): %s", code, exc)

    return HTTPException(status_code=status_code, detail=str(exc), headers={"X-Error-Code": code})
