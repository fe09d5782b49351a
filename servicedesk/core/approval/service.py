"""Approval service for managing change approval workflows.

Provides the persistence side of the approval engine: creating approval
instances from routing, processing decisions under a per-change lock,
driving the change lifecycle, and recording history and audit entries.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Iterable

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy import and_

from servicedesk.core.config import Settings, get_settings
from servicedesk.core.lifecycle import ChangeLifecycle, ChangeStatus, TransitionSource

from .states import (
    ApprovalStatus,
    ChangeType,
    WorkflowPhase,
    WorkflowState,
    NO_APPROVAL_REQUIRED,
    FULLY_APPROVED,
    REJECTED,
)
from .routing import RoutingRuleSet, SqlAlchemyRoutingRuleRepository
from .engine import (
    ApprovalEngine,
    DecisionResult,
    derive_state,
    group_by_level,
    is_level_complete,
    level_requires_all,
    is_superseded,
    is_workflow_complete,
    actionable_instances,
    parse_decision,
)
from .errors import ChangeNotFound, AlreadyDecided, ConcurrentDecision

logger = logging.getLogger(__name__)

STANDARD_APPROVAL_NOTE = "Auto-approved (Standard Change)"
UNROUTED_APPROVAL_NOTE = "Auto-approved (No approval routing configured)"

# Outside pending, these statuses close the workflow as approved; any other as rejected
APPROVED_CHANGE_STATUSES = {
    ChangeStatus.APPROVED.value,
    ChangeStatus.IN_PROGRESS.value,
    ChangeStatus.TESTING.value,
    ChangeStatus.COMPLETED.value,
    ChangeStatus.FAILED.value,
    ChangeStatus.ROLLBACK.value,
}


class ApprovalService:
    """
    High-level service for change approvals.

    Handles:
    - Starting an approval cycle when a change is submitted or revised
    - Serialized decision processing per change
    - Lifecycle transitions with history and audit records
    - Read views over approval instances

    The service flushes but never commits; the caller owns the transaction.
    """

    def __init__(
        self,
        db: Session,
        *,
        settings: Optional[Settings] = None,
        routing: Optional[RoutingRuleSet] = None,
        engine: Optional[ApprovalEngine] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.routing = routing or RoutingRuleSet(SqlAlchemyRoutingRuleRepository(db))
        self.engine = engine or ApprovalEngine(no_route_policy=self.settings.no_route_policy)

    def get_change(self, change_id: int, *, for_update: bool = False):
        """
        Load a change.

        Raises:
            ChangeNotFound: If no change has this id
            StaleDataError: If ``for_update`` finds the change changed under
                a copy already loaded in this session
        """
        from servicedesk.db.models import Change

        if for_update:
            # A locked load also checks the version held in this session
            change = self.db.get(Change, change_id, with_for_update=True)
        else:
            change = self.db.query(Change).filter(Change.id == change_id).first()
        if not change:
            raise ChangeNotFound(f"Change {change_id} not found", change_id=change_id)
        return change

    def current_instances(self, change) -> List[Any]:
        """Approval instances of the change's current submission cycle."""
        from servicedesk.db.models import ApprovalInstance

        if not change.approval_cycle:
            return []
        return self.db.query(ApprovalInstance).filter(
            and_(
                ApprovalInstance.change_id == change.id,
                ApprovalInstance.cycle == change.approval_cycle,
            )
        ).order_by(ApprovalInstance.approval_level.asc(), ApprovalInstance.id.asc()).all()

    def apply_transition(
        self,
        change,
        target: ChangeStatus,
        *,
        source: TransitionSource,
        user_id: Optional[int] = None,
        user_permissions: Optional[Iterable[str]] = None,
        is_requester: bool = False,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ):
        """
        Move a change through the lifecycle guard and record the transition.

        Raises:
            TransitionError: If the transition is not allowed
            PermissionDeniedError: If the user lacks the required permission
        """
        from servicedesk.db.models import ChangeHistory, AuditLog, AuditSeverity

        lifecycle = ChangeLifecycle(
            change.id,
            ChangeStatus(change.status),
            user_permissions=user_permissions,
            is_requester=is_requester,
            start_date=change.start_date,
        )
        lifecycle.transition(target, source=source, user_id=user_id, comment=notes, now=now)
        record = lifecycle.get_history()[-1]

        change.status = lifecycle.status.value
        change.updated_at = datetime.utcnow()
        if lifecycle.status == ChangeStatus.COMPLETED:
            change.completed_date = record["timestamp"]

        history = ChangeHistory(
            change_id=change.id,
            action="status_override" if record["override"] else "status_changed",
            from_status=record["from_status"],
            to_status=record["to_status"],
            user_id=user_id,
            notes=notes,
        )
        self.db.add(history)

        if record["override"]:
            self.db.add(AuditLog.create_entry(
                "status_override",
                "change",
                user_id=user_id,
                resource_id=change.id,
                old_values={"status": record["from_status"]},
                new_values={"status": record["to_status"]},
                details={"notes": notes} if notes else None,
                severity=AuditSeverity.WARNING,
            ))

        return history

    def start_workflow(self, change, *, user_id: Optional[int] = None) -> WorkflowState:
        """
        Start an approval cycle for a submitted or revised change.

        Standard changes and, under the ``auto_approve`` policy, changes with
        no matching routing go straight to approved. Otherwise instances are
        created for every level of the resolved plan and the change waits in
        pending.

        Raises:
            InvalidRiskLevel: If the change's risk level is unknown
            NoMatchingRoute: If nothing routes the change and policy is ``block``
        """
        from servicedesk.db.models import ApprovalInstance, AuditLog, AuditSeverity

        if change.change_type == ChangeType.STANDARD.value:
            plan = None
            state = NO_APPROVAL_REQUIRED
        else:
            plan = self.routing.resolve(
                change.risk_level,
                product_id=change.product_id,
                group_id=change.group_id,
            )
            state = self.engine.initial_state(change.change_type, plan, change_id=change.id)

        if state.phase == WorkflowPhase.NO_APPROVAL_REQUIRED:
            if plan is None:
                note = STANDARD_APPROVAL_NOTE
            else:
                note = UNROUTED_APPROVAL_NOTE
                self.db.add(AuditLog.create_entry(
                    "auto_approve_unrouted",
                    "change",
                    user_id=user_id,
                    resource_id=change.id,
                    details={
                        "risk_level": change.risk_level,
                        "product_id": change.product_id,
                        "group_id": change.group_id,
                        "policy": self.settings.no_route_policy,
                    },
                    severity=AuditSeverity.WARNING,
                ))
            change.approved_by = note
            self.apply_transition(change, ChangeStatus.APPROVED, source=TransitionSource.ENGINE,
                                  user_id=user_id, notes=note)
            self.db.flush()
            logger.info("Change %s approved without a workflow: %s", change.id, note)
            return state

        change.approval_cycle = (change.approval_cycle or 0) + 1
        change.approved_by = None
        for plan_level in plan.levels:
            for entry in plan_level.entries:
                self.db.add(ApprovalInstance(
                    change_id=change.id,
                    approver_id=entry.approver_id,
                    approval_level=plan_level.level,
                    cycle=change.approval_cycle,
                    require_all_approvals=entry.require_all,
                    status=ApprovalStatus.PENDING.value,
                ))

        if change.status != ChangeStatus.PENDING.value:
            self.apply_transition(
                change,
                ChangeStatus.PENDING,
                source=TransitionSource.SYSTEM,
                user_id=user_id,
                notes=f"Approval cycle {change.approval_cycle} started",
            )

        self.db.flush()
        logger.info(
            "Change %s: approval cycle %s started with levels %s",
            change.id, change.approval_cycle, plan.level_numbers,
        )
        return state

    def submit_decision(
        self,
        change_id: int,
        approver_id: int,
        action: str,
        comments: Optional[str] = None,
    ) -> DecisionResult:
        """
        Record an approver's decision on a change.

        The change row is locked for the duration of the transaction and
        every decision bumps the change's version, so decisions on one change
        are processed one at a time. Where the database cannot lock rows
        (SQLite) the version check makes the later of two racing decisions
        fail instead.

        Raises:
            ChangeNotFound: If the change does not exist
            InvalidDecision: If action is not approved/rejected
            NotAuthorizedApprover: If the user holds no approval on the change
            AlreadyDecided: If the decision no longer applies
            ApprovalOutOfOrder: If the approver's level is not active yet
            ConcurrentDecision: If another request decided on the change first
        """
        decision = parse_decision(action)
        try:
            return self._decide(change_id, approver_id, decision, comments)
        except StaleDataError as exc:
            raise ConcurrentDecision(
                f"Change {change_id} was decided on by another request; re-read and retry",
                change_id=change_id,
            ) from exc

    def _decide(self, change_id: int, approver_id: int, decision, comments: Optional[str]) -> DecisionResult:
        from servicedesk.db.models import ChangeHistory, AuditLog, User

        change = self.get_change(change_id, for_update=True)
        instances = self.current_instances(change)

        if change.status != ChangeStatus.PENDING.value and any(i.approver_id == approver_id for i in instances):
            raise AlreadyDecided(
                f"Change {change_id} is {change.status}; approvals are closed",
                change_id=change_id,
            )

        instance, result = self.engine.submit_decision(
            instances,
            approver_id,
            decision,
            comments,
            change_id=change_id,
        )

        level_note = f"Level {instance.approval_level} {decision.value}"
        self.db.add(ChangeHistory(
            change_id=change.id,
            action="approval_decision",
            from_status=change.status,
            to_status=change.status,
            user_id=approver_id,
            notes=f"{level_note}: {comments}" if comments else level_note,
        ))
        self.db.add(AuditLog.create_entry(
            "approval_decision",
            "change",
            user_id=approver_id,
            resource_id=change.id,
            old_values={"status": ApprovalStatus.PENDING.value},
            new_values={"status": decision.value},
            details={
                "approval_id": instance.id,
                "approval_level": instance.approval_level,
                "cycle": instance.cycle,
                "workflow_state": str(result.state),
            },
        ))

        if result.state.phase == WorkflowPhase.REJECTED:
            self.apply_transition(change, ChangeStatus.REJECTED, source=TransitionSource.ENGINE,
                                  user_id=approver_id, notes=level_note)
        elif result.state.phase == WorkflowPhase.FULLY_APPROVED:
            approver = self.db.get(User, approver_id)
            change.approved_by = approver.name if approver else f"User {approver_id}"
            self.apply_transition(change, ChangeStatus.APPROVED, source=TransitionSource.ENGINE,
                                  user_id=approver_id, notes="All approval levels complete")

        change.updated_at = datetime.utcnow()
        self.db.flush()

        logger.info(
            "Change %s: user %s %s level %s, workflow now %s",
            change_id, approver_id, decision.value, instance.approval_level, result.state,
        )
        return result

    def list_approvals(self, change_id: int, *, current_only: bool = False) -> List[Dict[str, Any]]:
        """Approval instances of a change ordered by cycle, then level."""
        from servicedesk.db.models import ApprovalInstance

        change = self.get_change(change_id)
        current = self.current_instances(change)
        state = self._effective_state(change, current)

        query = self.db.query(ApprovalInstance).filter(ApprovalInstance.change_id == change.id)
        if current_only:
            query = query.filter(ApprovalInstance.cycle == change.approval_cycle)
        rows = query.order_by(
            ApprovalInstance.cycle.asc(),
            ApprovalInstance.approval_level.asc(),
            ApprovalInstance.id.asc(),
        ).all()

        return [
            self._instance_to_dict(
                row,
                superseded=self._is_superseded_row(row, change, current, state),
            )
            for row in rows
        ]

    def pending_for_approver(self, approver_id: int) -> List[Dict[str, Any]]:
        """Approvals waiting on this approver right now, oldest change first."""
        from servicedesk.db.models import ApprovalInstance, Change

        rows = self.db.query(ApprovalInstance).join(
            Change, Change.id == ApprovalInstance.change_id
        ).filter(
            and_(
                ApprovalInstance.approver_id == approver_id,
                ApprovalInstance.status == ApprovalStatus.PENDING.value,
                ApprovalInstance.cycle == Change.approval_cycle,
                Change.status == ChangeStatus.PENDING.value,
            )
        ).order_by(Change.created_at.asc(), ApprovalInstance.approval_level.asc()).all()

        results = []
        seen = set()
        for row in rows:
            if row.change_id in seen:
                continue
            seen.add(row.change_id)
            change = row.change
            actionable = [
                i for i in actionable_instances(self.current_instances(change))
                if i.approver_id == approver_id
            ]
            for instance in actionable:
                item = self._instance_to_dict(instance)
                item.update({
                    "change_title": change.title,
                    "change_status": change.status,
                    "risk_level": change.risk_level,
                    "change_type": change.change_type,
                    "requested_by": change.requested_by,
                })
                results.append(item)
        return results

    def workflow_view(self, change_id: int, viewer_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Derived approval workflow of a change as seen by ``viewer_id``.
        """
        change = self.get_change(change_id)
        instances = self.current_instances(change)
        state = self._effective_state(change, instances)
        closed = change.status != ChangeStatus.PENDING.value

        waiting = [] if closed else actionable_instances(instances)
        waiting_ids = [i.approver_id for i in waiting]
        workflow_complete = closed or (bool(instances) and is_workflow_complete(instances))
        your_action_required = viewer_id is not None and viewer_id in waiting_ids

        levels = []
        for level, members in group_by_level(instances).items():
            levels.append({
                "level": level,
                "require_all": level_requires_all(members),
                "complete": is_level_complete(members),
                "approvals": [
                    self._instance_to_dict(i, superseded=is_superseded(i, instances, state))
                    for i in members
                ],
            })

        return {
            "change_id": change.id,
            "change_status": change.status,
            "cycle": change.approval_cycle,
            "state": str(state),
            "current_level": state.level if not closed else None,
            "levels": levels,
            "pending_approvers": waiting_ids,
            "your_action_required": your_action_required,
            "waiting_on_others": not workflow_complete and not your_action_required,
            "workflow_complete": workflow_complete,
        }

    def _effective_state(self, change, instances) -> WorkflowState:
        """
        Workflow state of the current cycle, final once the change has left
        pending by any route (engine, direct rejection or override).
        """
        if not instances:
            return NO_APPROVAL_REQUIRED
        state = derive_state(instances)
        if state.is_final or change.status == ChangeStatus.PENDING.value:
            return state
        if change.status in APPROVED_CHANGE_STATUSES:
            return FULLY_APPROVED
        return REJECTED

    def _is_superseded_row(self, row, change, current, state: WorkflowState) -> bool:
        """Pending rows of earlier cycles never count again."""
        if row.status != ApprovalStatus.PENDING.value:
            return False
        if row.cycle != change.approval_cycle:
            return True
        return is_superseded(row, current, state)

    def _instance_to_dict(self, instance, *, superseded: bool = False) -> Dict[str, Any]:
        """Convert an approval instance to a dictionary."""
        return {
            "id": instance.id,
            "change_id": instance.change_id,
            "approver_id": instance.approver_id,
            "approver_name": instance.approver.name if instance.approver else None,
            "approval_level": instance.approval_level,
            "cycle": instance.cycle,
            "require_all_approvals": instance.require_all_approvals,
            "status": instance.status,
            "superseded": superseded,
            "comments": instance.comments,
            "approved_at": instance.approved_at,
            "created_at": instance.created_at,
        }
