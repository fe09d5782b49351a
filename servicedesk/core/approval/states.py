"""Approval workflow states.

Workflow state per change (derived from its approval instances):

    ┌──────────────────────┐
    │ NO_APPROVAL_REQUIRED │  standard change, or no routing matched
    └──────────────────────┘

    ┌───────────────────┐  level gate met   ┌─────────────────────┐
    │ AWAITING_LEVEL(1) │──────────────────►│ AWAITING_LEVEL(n+1) │ ...
    └────────┬──────────┘                   └──────────┬──────────┘
             │ any rejection                           │ last level gate met
        ┌────▼─────┐                          ┌────────▼───────┐
        │ REJECTED │                          │ FULLY_APPROVED │
        └──────────┘                          └────────────────┘

Instance status: PENDING → APPROVED | REJECTED, exactly once.
"""

from enum import Enum
from typing import Optional, NamedTuple, Set


class ApprovalStatus(str, Enum):
    """Status of a single approval instance."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Decision(str, Enum):
    """Actions an approver can submit."""

    APPROVED = "approved"
    REJECTED = "rejected"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ChangeType(str, Enum):
    STANDARD = "standard"    # Pre-approved, bypasses the workflow
    NORMAL = "normal"        # Routed, needs lead time before start
    EMERGENCY = "emergency"  # Routed, no lead time


class WorkflowPhase(str, Enum):
    NO_APPROVAL_REQUIRED = "no_approval_required"
    AWAITING_LEVEL = "awaiting_level"
    FULLY_APPROVED = "fully_approved"
    REJECTED = "rejected"


class WorkflowState(NamedTuple):
    """Derived approval state of a change; ``level`` is set only while awaiting."""
    phase: WorkflowPhase
    level: Optional[int] = None

    @classmethod
    def awaiting(cls, level: int) -> "WorkflowState":
        return cls(WorkflowPhase.AWAITING_LEVEL, level)

    @property
    def is_final(self) -> bool:
        return self.phase in FINAL_PHASES

    @property
    def is_approved(self) -> bool:
        return self.phase in APPROVED_PHASES

    def __str__(self) -> str:
        if self.phase == WorkflowPhase.AWAITING_LEVEL:
            return f"{self.phase.value}({self.level})"
        return self.phase.value


NO_APPROVAL_REQUIRED = WorkflowState(WorkflowPhase.NO_APPROVAL_REQUIRED)
FULLY_APPROVED = WorkflowState(WorkflowPhase.FULLY_APPROVED)
REJECTED = WorkflowState(WorkflowPhase.REJECTED)


# Instance statuses that can no longer change
TERMINAL_STATUSES: Set[ApprovalStatus] = {
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
}

# Workflow phases with no further decisions
FINAL_PHASES: Set[WorkflowPhase] = {
    WorkflowPhase.NO_APPROVAL_REQUIRED,
    WorkflowPhase.FULLY_APPROVED,
    WorkflowPhase.REJECTED,
}

# Workflow phases that let the change proceed to implementation
APPROVED_PHASES: Set[WorkflowPhase] = {
    WorkflowPhase.NO_APPROVAL_REQUIRED,
    WorkflowPhase.FULLY_APPROVED,
}
