"""Change lifecycle states and transitions.

State Machine Diagram:

    ┌───────────┐
    │ SUBMITTED │ ← Initial state
    └─────┬─────┘
          │ approval workflow started
    ┌─────▼─────┐  revision   ┌──────────┐
    │  PENDING  │◄────────────│ REJECTED │──► CLOSED
    └─────┬─────┘────────────►└──────────┘
          │ approval engine
    ┌─────▼─────┐
    │ APPROVED  │
    └─────┬─────┘
    ┌─────▼───────┐     ┌─────────┐
    │ IN_PROGRESS │◄───►│ TESTING │──► COMPLETED
    └─────┬───────┘     └────┬────┘
          └──────┬───────────┘
            ┌────▼───┐   ┌──────────┐
            │ FAILED │──►│ ROLLBACK │──► CLOSED
            └────────┘   └──────────┘

APPROVED is entered only by the approval engine. COMPLETED and CLOSED are
terminal.
"""

from enum import Enum
from typing import Set, Dict, Optional, NamedTuple, FrozenSet


class ChangeStatus(str, Enum):
    """Statuses of a change request."""

    SUBMITTED = "submitted"
    PENDING = "pending"          # Awaiting approval
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROGRESS = "in-progress"
    TESTING = "testing"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLBACK = "rollback"
    CLOSED = "closed"


class TransitionSource(str, Enum):
    """Who is driving a status change."""

    ENGINE = "engine"    # Approval engine outcome
    SYSTEM = "system"    # Workflow bookkeeping (e.g. approvals started)
    USER = "user"        # A person through the API


class TransitionRule(NamedTuple):
    """Defines a valid status transition."""
    from_status: ChangeStatus
    to_status: ChangeStatus
    sources: FrozenSet[TransitionSource]
    requires_permission: Optional[str] = None
    allow_requester: bool = False


_ENGINE = frozenset([TransitionSource.ENGINE])
_SYSTEM = frozenset([TransitionSource.SYSTEM])
_USER = frozenset([TransitionSource.USER])

IMPLEMENT = "changes:implement"

TRANSITION_RULES: list[TransitionRule] = [
    # Approval workflow
    TransitionRule(ChangeStatus.SUBMITTED, ChangeStatus.PENDING, _SYSTEM),
    TransitionRule(ChangeStatus.SUBMITTED, ChangeStatus.APPROVED, _ENGINE),
    TransitionRule(ChangeStatus.PENDING, ChangeStatus.APPROVED, _ENGINE),
    TransitionRule(ChangeStatus.PENDING, ChangeStatus.REJECTED,
                   frozenset([TransitionSource.ENGINE, TransitionSource.USER]), "changes:reject"),
    TransitionRule(ChangeStatus.SUBMITTED, ChangeStatus.REJECTED, _USER, "changes:reject"),

    # Revision of a rejected change (requester or override)
    TransitionRule(ChangeStatus.REJECTED, ChangeStatus.PENDING, _USER, "changes:override",
                   allow_requester=True),

    # Implementation
    TransitionRule(ChangeStatus.APPROVED, ChangeStatus.IN_PROGRESS, _USER, IMPLEMENT),
    TransitionRule(ChangeStatus.IN_PROGRESS, ChangeStatus.TESTING, _USER, IMPLEMENT),
    TransitionRule(ChangeStatus.IN_PROGRESS, ChangeStatus.FAILED, _USER, IMPLEMENT),
    TransitionRule(ChangeStatus.TESTING, ChangeStatus.IN_PROGRESS, _USER, IMPLEMENT),
    TransitionRule(ChangeStatus.TESTING, ChangeStatus.COMPLETED, _USER, IMPLEMENT),
    TransitionRule(ChangeStatus.TESTING, ChangeStatus.FAILED, _USER, IMPLEMENT),
    TransitionRule(ChangeStatus.FAILED, ChangeStatus.ROLLBACK, _USER, "changes:rollback"),

    # Closure
    TransitionRule(ChangeStatus.REJECTED, ChangeStatus.CLOSED, _USER, "changes:close"),
    TransitionRule(ChangeStatus.FAILED, ChangeStatus.CLOSED, _USER, "changes:close"),
    TransitionRule(ChangeStatus.ROLLBACK, ChangeStatus.CLOSED, _USER, "changes:close"),
]

TRANSITIONS: Dict[tuple[ChangeStatus, ChangeStatus], TransitionRule] = {
    (rule.from_status, rule.to_status): rule for rule in TRANSITION_RULES
}

# Permission that lets an admin move a change to any status but APPROVED
OVERRIDE_PERMISSION = "changes:override"

TERMINAL_STATUSES: Set[ChangeStatus] = {
    ChangeStatus.COMPLETED,
    ChangeStatus.CLOSED,
}

# Statuses only the approval engine may set
ENGINE_ONLY_STATUSES: Set[ChangeStatus] = {
    ChangeStatus.APPROVED,
}

# Statuses an override can never target
NON_OVERRIDABLE_TARGETS: Set[ChangeStatus] = {
    ChangeStatus.APPROVED,
    ChangeStatus.SUBMITTED,
}


def get_transition_rule(from_status: ChangeStatus, to_status: ChangeStatus) -> Optional[TransitionRule]:
    return TRANSITIONS.get((from_status, to_status))


def next_statuses(from_status: ChangeStatus) -> list[ChangeStatus]:
    """Statuses reachable from ``from_status`` through the rule table."""
    return [rule.to_status for rule in TRANSITION_RULES if rule.from_status == from_status]
