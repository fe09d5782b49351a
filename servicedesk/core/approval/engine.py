"""Approval engine.

Workflow state is never stored: it is derived from a change's approval
instances every time it is needed, so every request handler sees the same
answer for the same rows. The same predicates back both decision processing
and the "who still needs to act" views.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Protocol, Tuple

from .states import (
    ApprovalStatus,
    ChangeType,
    Decision,
    WorkflowPhase,
    WorkflowState,
    NO_APPROVAL_REQUIRED,
    FULLY_APPROVED,
    REJECTED,
)
from .routing import LeveledPlan
from .errors import (
    NotAuthorizedApprover,
    AlreadyDecided,
    ApprovalOutOfOrder,
    InvalidDecision,
    NoMatchingRoute,
)

logger = logging.getLogger(__name__)


class InstanceLike(Protocol):
    approver_id: Optional[int]
    approval_level: int
    status: str
    require_all_approvals: bool
    comments: Optional[str]
    approved_at: Optional[datetime]


class DecisionResult(NamedTuple):
    """Outcome of one decision, as reported back to the approver."""
    completed: bool
    approved: bool
    next_level: Optional[int]
    state: WorkflowState
    level_completed: bool = False


def group_by_level(instances: Iterable[InstanceLike]) -> Dict[int, List[InstanceLike]]:
    """Instances keyed by approval level, levels ascending."""
    levels: Dict[int, List[InstanceLike]] = {}
    for instance in sorted(instances, key=lambda i: i.approval_level):
        levels.setdefault(instance.approval_level, []).append(instance)
    return levels


def level_requires_all(level_instances: Iterable[InstanceLike]) -> bool:
    return any(i.require_all_approvals for i in level_instances)


def is_level_complete(level_instances: List[InstanceLike]) -> bool:
    """
    Gate predicate for one level.

    "all" gate: every instance approved. "any" gate: at least one approved.
    """
    if not level_instances:
        return True
    approved = sum(1 for i in level_instances if i.status == ApprovalStatus.APPROVED.value)
    if level_requires_all(level_instances):
        return approved == len(level_instances)
    return approved > 0


def derive_state(instances: Iterable[InstanceLike]) -> WorkflowState:
    """Project the workflow state from one cycle of approval instances."""
    instances = list(instances)
    if not instances:
        return NO_APPROVAL_REQUIRED

    # A single rejection halts the workflow whatever the gates say
    if any(i.status == ApprovalStatus.REJECTED.value for i in instances):
        return REJECTED

    for level, members in group_by_level(instances).items():
        if not is_level_complete(members):
            return WorkflowState.awaiting(level)

    return FULLY_APPROVED


def is_workflow_complete(instances: Iterable[InstanceLike]) -> bool:
    return derive_state(instances).is_final


def is_superseded(
    instance: InstanceLike,
    instances: Iterable[InstanceLike],
    state: Optional[WorkflowState] = None,
) -> bool:
    """
    True for a pending instance whose vote no longer matters: its level was
    already satisfied, or the workflow is finished.
    """
    if instance.status != ApprovalStatus.PENDING.value:
        return False
    if state is None:
        state = derive_state(instances)
    if state.is_final:
        return True
    return instance.approval_level < state.level


def actionable_instances(instances: Iterable[InstanceLike]) -> List[InstanceLike]:
    """Pending instances at the active level, i.e. the votes being waited on now."""
    instances = list(instances)
    state = derive_state(instances)
    if state.phase != WorkflowPhase.AWAITING_LEVEL:
        return []
    return [
        i for i in instances
        if i.status == ApprovalStatus.PENDING.value and i.approval_level == state.level
    ]


def parse_decision(action: Any) -> Decision:
    try:
        return Decision(action)
    except ValueError:
        raise InvalidDecision(f"Invalid action {action!r}; expected 'approved' or 'rejected'")


class ApprovalEngine:
    """
    Decision logic for the multilevel approval workflow.

    Works on plain instance objects (ORM rows in production) and holds no
    state between calls; persistence and locking belong to ApprovalService.
    """

    def __init__(self, *, no_route_policy: str = "auto_approve"):
        self.no_route_policy = no_route_policy

    def initial_state(self, change_type: str, plan: LeveledPlan, *, change_id: Optional[int] = None) -> WorkflowState:
        """
        State a change enters on submission.

        Raises:
            NoMatchingRoute: If the plan is empty and the policy blocks unrouted changes
        """
        if change_type == ChangeType.STANDARD.value:
            return NO_APPROVAL_REQUIRED

        if plan.is_empty:
            if self.no_route_policy == "block":
                raise NoMatchingRoute(
                    "No approval routing is configured for this change's product/group and risk level",
                    change_id=change_id,
                )
            logger.warning(
                "No approval routing matched change %s; treating it as not requiring approval",
                change_id,
            )
            return NO_APPROVAL_REQUIRED

        return WorkflowState.awaiting(plan.first_level)

    def select_instance(
        self,
        instances: List[InstanceLike],
        approver_id: int,
        *,
        change_id: Optional[int] = None,
    ) -> Tuple[InstanceLike, WorkflowState]:
        """
        Find the instance an approver's decision applies to.

        Raises:
            NotAuthorizedApprover: The approver has no instance for this change
            AlreadyDecided: The approver's instances, their level, or the workflow are decided
            ApprovalOutOfOrder: The approver's level is not active yet
        """
        mine = [i for i in instances if i.approver_id == approver_id]
        if not mine:
            raise NotAuthorizedApprover(
                f"User {approver_id} is not an approver for change {change_id}",
                change_id=change_id,
            )

        pending = sorted(
            (i for i in mine if i.status == ApprovalStatus.PENDING.value),
            key=lambda i: i.approval_level,
        )
        if not pending:
            raise AlreadyDecided(
                f"User {approver_id} has already recorded a decision on change {change_id}",
                change_id=change_id,
            )

        state = derive_state(instances)
        if state.is_final:
            raise AlreadyDecided(
                f"Approval workflow for change {change_id} is already {state}",
                change_id=change_id,
            )

        live = [i for i in pending if i.approval_level >= state.level]
        if not live:
            raise AlreadyDecided(
                f"Level {pending[0].approval_level} of change {change_id} is already satisfied",
                change_id=change_id,
            )

        instance = live[0]
        if instance.approval_level > state.level:
            raise ApprovalOutOfOrder(
                f"Level {instance.approval_level} cannot be decided before level {state.level} is complete",
                change_id=change_id,
                active_level=state.level,
                requested_level=instance.approval_level,
            )

        return instance, state

    def submit_decision(
        self,
        instances: List[InstanceLike],
        approver_id: int,
        action: Any,
        comments: Optional[str] = None,
        *,
        change_id: Optional[int] = None,
        decided_at: Optional[datetime] = None,
    ) -> Tuple[InstanceLike, DecisionResult]:
        """
        Record a decision on the approver's active instance and re-derive state.

        Mutates the selected instance in place and returns it with the result.
        """
        decision = parse_decision(action)
        instance, before = self.select_instance(instances, approver_id, change_id=change_id)

        instance.status = decision.value
        instance.comments = comments
        instance.approved_at = decided_at or datetime.utcnow()

        after = derive_state(instances)
        level_completed = (
            decision == Decision.APPROVED
            and (after.phase != WorkflowPhase.AWAITING_LEVEL or after.level != before.level)
        )

        logger.debug(
            "Change %s: user %s %s level %s (%s -> %s)",
            change_id, approver_id, decision.value, instance.approval_level, before, after,
        )

        return instance, DecisionResult(
            completed=after.is_final,
            approved=after.is_approved,
            next_level=after.level if after.phase == WorkflowPhase.AWAITING_LEVEL else None,
            state=after,
            level_completed=level_completed,
        )
