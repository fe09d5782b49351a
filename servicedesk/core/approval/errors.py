"""Errors raised by the approval workflow.

Each error carries a stable ``code`` and the HTTP status the API reports it
with. None of them are retried: a caller recovering from a failed request
re-reads the change's approvals before deciding again.
"""

from typing import Optional


class ApprovalError(Exception):
    """Base class for approval workflow errors."""

    code = "approval_error"
    status_code = 400

    def __init__(self, message: str, *, change_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.change_id = change_id


class ChangeNotFound(ApprovalError):
    code = "change_not_found"
    status_code = 404


class NotAuthorizedApprover(ApprovalError):
    """The user holds no pending approval for the change."""

    code = "not_authorized_approver"
    status_code = 403


class AlreadyDecided(ApprovalError):
    """The approver's instance, its level, or the whole workflow is already decided."""

    code = "already_decided"
    status_code = 409


class ApprovalOutOfOrder(ApprovalError):
    """The approver's level is not active yet."""

    code = "approval_out_of_order"
    status_code = 409

    def __init__(self, message: str, *, change_id: Optional[int] = None,
                 active_level: Optional[int] = None, requested_level: Optional[int] = None):
        super().__init__(message, change_id=change_id)
        self.active_level = active_level
        self.requested_level = requested_level


class NoMatchingRoute(ApprovalError):
    """No routing rule matches and policy blocks unrouted changes."""

    code = "no_matching_route"
    status_code = 422


class InvalidDecision(ApprovalError):
    code = "invalid_decision"
    status_code = 400


class InvalidRiskLevel(ApprovalError):
    code = "invalid_risk_level"
    status_code = 400


class ConcurrentUpdate(ApprovalError):
    """Another request changed the same change first."""

    code = "concurrent_update"
    status_code = 409


class ConcurrentDecision(ConcurrentUpdate):
    """Another request decided on the same change first."""

    code = "concurrent_decision"
