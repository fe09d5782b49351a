"""Change lifecycle: statuses, transition table and guard."""

from .states import ChangeStatus, TransitionSource, TRANSITION_RULES, TERMINAL_STATUSES
from .machine import (
    ChangeLifecycle,
    TransitionError,
    PermissionDeniedError,
    ManualApprovalForbidden,
    ImplementationTooEarly,
)

__all__ = [
    "ChangeStatus",
    "TransitionSource",
    "TRANSITION_RULES",
    "TERMINAL_STATUSES",
    "ChangeLifecycle",
    "TransitionError",
    "PermissionDeniedError",
    "ManualApprovalForbidden",
    "ImplementationTooEarly",
]
