"""Change request service.

Intake, edits, status changes, revision and comments for change requests.
Approval cycles are delegated to ApprovalService.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from servicedesk.core.config import Settings, get_settings
from servicedesk.core.approval.errors import ConcurrentUpdate
from servicedesk.core.approval.service import ApprovalService
from servicedesk.core.approval.routing import validate_risk_level
from servicedesk.core.approval.states import ChangeType
from servicedesk.core.lifecycle import ChangeLifecycle, ChangeStatus, TransitionSource
from servicedesk.core.rbac import user_permissions

logger = logging.getLogger(__name__)

CATEGORIES = {"system", "application", "infrastructure", "policy", "product"}
PRIORITIES = {"low", "medium", "high", "critical"}

# Fields anyone allowed to update a change may edit while it is open
EDITABLE_FIELDS = (
    "title",
    "description",
    "rollback_plan",
    "category",
    "priority",
    "planned_date",
    "start_date",
    "end_date",
    "implemented_by",
)

# Fields that decide routing; editable only when revising a rejected change
ROUTING_FIELDS = ("risk_level", "change_type", "product_id", "group_id")


class ChangeValidationError(Exception):
    """Raised when change data fails intake or edit validation."""

    code = "invalid_change"
    status_code = 400

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


def as_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Dates are stored as naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ChangeService:
    """
    Service for change requests.

    Like ApprovalService it flushes but leaves committing to the caller.
    """

    def __init__(
        self,
        db: Session,
        *,
        settings: Optional[Settings] = None,
        approvals: Optional[ApprovalService] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.approvals = approvals or ApprovalService(db, settings=self.settings)

    def get_change(self, change_id: int, *, for_update: bool = False):
        return self.approvals.get_change(change_id, for_update=for_update)

    def create_change(self, data: Dict[str, Any], *, user, now: Optional[datetime] = None):
        """
        Create a change request and start its approval workflow.

        Raises:
            ChangeValidationError: If the change data is invalid
            InvalidRiskLevel: If risk_level is unknown
            NoMatchingRoute: If nothing routes the change and policy is ``block``
        """
        from servicedesk.db.models import Change, ChangeHistory

        values = dict(data)
        for key in ("planned_date", "start_date", "end_date"):
            values[key] = as_utc_naive(values.get(key))
        values.setdefault("change_type", ChangeType.NORMAL.value)
        values.setdefault("category", "system")
        values.setdefault("priority", "medium")

        self._validate(values)
        self._check_lead_time(values, now or datetime.utcnow())
        self._check_references(values)

        change = Change(
            title=values["title"],
            description=values["description"],
            rollback_plan=values.get("rollback_plan"),
            category=values["category"],
            priority=values["priority"],
            risk_level=values["risk_level"],
            change_type=values["change_type"],
            product_id=values.get("product_id"),
            group_id=values.get("group_id"),
            planned_date=values.get("planned_date"),
            start_date=values.get("start_date"),
            end_date=values.get("end_date"),
            status=ChangeStatus.SUBMITTED.value,
            approval_cycle=0,
            requested_by=user.id,
        )
        self.db.add(change)
        self.db.flush()

        self.db.add(ChangeHistory(
            change_id=change.id,
            action="created",
            to_status=change.status,
            user_id=user.id,
            notes=f"{change.change_type.capitalize()} change created",
        ))

        self.approvals.start_workflow(change, user_id=user.id)
        logger.info("Change %s created by user %s (%s)", change.id, user.id, change.status)
        return change

    def search_changes(
        self,
        *,
        status: Optional[str] = None,
        risk_level: Optional[str] = None,
        change_type: Optional[str] = None,
        requested_by: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Any], int]:
        """Filtered page of changes, newest first, with the total match count."""
        from servicedesk.db.models import Change

        query = self.db.query(Change)
        if status:
            query = query.filter(Change.status == status)
        if risk_level:
            query = query.filter(Change.risk_level == risk_level)
        if change_type:
            query = query.filter(Change.change_type == change_type)
        if requested_by:
            query = query.filter(Change.requested_by == requested_by)

        total = query.count()
        items = query.order_by(Change.created_at.desc(), Change.id.desc()).offset(offset).limit(limit).all()
        return items, total

    def update_change(
        self,
        change_id: int,
        data: Dict[str, Any],
        *,
        user,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ):
        """
        Update a change's fields and, optionally, its status.

        A status of ``pending`` on a rejected change is a revision: the edits
        are applied and a new approval cycle starts at the first level.

        Raises:
            ChangeNotFound: If the change does not exist
            ChangeValidationError: If the edit is not allowed
            TransitionError: If the status change is not allowed
            PermissionDeniedError: If the user lacks the required permission
            ConcurrentUpdate: If another request changed the change first
        """
        try:
            return self._update(change_id, data, user=user, notes=notes, now=now)
        except StaleDataError as exc:
            raise ConcurrentUpdate(
                f"Change {change_id} was updated by another request; re-read and retry",
                change_id=change_id,
            ) from exc

    def _update(self, change_id: int, data: Dict[str, Any], *, user, notes: Optional[str], now: Optional[datetime]):
        from servicedesk.db.models import ChangeHistory, AuditLog

        change = self.get_change(change_id, for_update=True)
        values = {k: v for k, v in data.items() if v is not None}
        target = values.pop("status", None)
        target = ChangeStatus(target) if target is not None else None

        if change.status in (ChangeStatus.COMPLETED.value, ChangeStatus.CLOSED.value) and values:
            raise ChangeValidationError(f"Change {change_id} is {change.status} and can no longer be edited")

        is_revision = target == ChangeStatus.PENDING and change.status == ChangeStatus.REJECTED.value
        routing_edits = [f for f in ROUTING_FIELDS if f in values]
        if routing_edits and not is_revision:
            raise ChangeValidationError(
                f"{', '.join(routing_edits)} can only be changed when revising a rejected change",
                field=routing_edits[0],
            )

        for key in ("planned_date", "start_date", "end_date"):
            if key in values:
                values[key] = as_utc_naive(values[key])

        merged = {f: getattr(change, f) for f in EDITABLE_FIELDS + ROUTING_FIELDS}
        merged.update(values)
        self._validate(merged)
        self._check_references({f: values[f] for f in ("product_id", "group_id") if f in values})

        old_values = {}
        for field in EDITABLE_FIELDS + ROUTING_FIELDS:
            if field in values and getattr(change, field) != values[field]:
                old_values[field] = getattr(change, field)
                setattr(change, field, values[field])

        if old_values:
            change.updated_at = datetime.utcnow()

        if target is not None:
            permissions = user_permissions(user)
            is_requester = change.requested_by == user.id

            if is_revision:
                self.db.add(ChangeHistory(
                    change_id=change.id,
                    action="revised",
                    from_status=change.status,
                    to_status=ChangeStatus.PENDING.value,
                    user_id=user.id,
                    notes=notes or "Change revised and resubmitted for approval",
                ))
                self.db.add(AuditLog.create_entry(
                    "revise",
                    "change",
                    user_id=user.id,
                    resource_id=change.id,
                    old_values={k: _jsonable(v) for k, v in old_values.items()},
                    new_values={k: _jsonable(getattr(change, k)) for k in old_values},
                    details={"previous_cycle": change.approval_cycle},
                ))

            if target == ChangeStatus.IN_PROGRESS and change.implemented_by is None:
                change.implemented_by = user.id

            self.approvals.apply_transition(
                change,
                target,
                source=TransitionSource.USER,
                user_id=user.id,
                user_permissions=permissions,
                is_requester=is_requester,
                notes=notes,
                now=now,
            )

            if target == ChangeStatus.PENDING:
                self.approvals.start_workflow(change, user_id=user.id)
        elif old_values:
            self.db.add(ChangeHistory(
                change_id=change.id,
                action="updated",
                from_status=change.status,
                to_status=change.status,
                user_id=user.id,
                notes=notes or f"Updated {', '.join(sorted(old_values))}",
            ))

        self.db.flush()
        return change

    def available_statuses(self, change_id: int, *, user) -> List[str]:
        """Statuses the user may move the change to from its current status."""
        change = self.get_change(change_id)
        lifecycle = ChangeLifecycle(
            change.id,
            ChangeStatus(change.status),
            user_permissions=user_permissions(user),
            is_requester=change.requested_by == user.id,
            start_date=change.start_date,
        )
        return [s.value for s in lifecycle.get_available_statuses(TransitionSource.USER)]

    def add_comment(self, change_id: int, comment: str, *, user):
        """Append a comment to a change's history."""
        from servicedesk.db.models import ChangeHistory

        if not comment or not comment.strip():
            raise ChangeValidationError("Comment cannot be empty", field="comment")

        change = self.get_change(change_id)
        entry = ChangeHistory(
            change_id=change.id,
            action="comment_added",
            from_status=change.status,
            to_status=change.status,
            user_id=user.id,
            notes=comment.strip(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def get_history(self, change_id: int) -> List[Any]:
        from servicedesk.db.models import ChangeHistory

        change = self.get_change(change_id)
        return self.db.query(ChangeHistory).filter(
            ChangeHistory.change_id == change.id
        ).order_by(ChangeHistory.created_at.asc(), ChangeHistory.id.asc()).all()

    def _validate(self, values: Dict[str, Any]) -> None:
        validate_risk_level(values.get("risk_level"))

        try:
            ChangeType(values.get("change_type"))
        except ValueError:
            allowed = ", ".join(t.value for t in ChangeType)
            raise ChangeValidationError(
                f"Unknown change type {values.get('change_type')!r}; expected one of: {allowed}",
                field="change_type",
            )

        if values.get("category") not in CATEGORIES:
            raise ChangeValidationError(f"Unknown category {values.get('category')!r}", field="category")
        if values.get("priority") not in PRIORITIES:
            raise ChangeValidationError(f"Unknown priority {values.get('priority')!r}", field="priority")

        for field in ("title", "description"):
            if not (values.get(field) or "").strip():
                raise ChangeValidationError(f"{field} is required", field=field)

        start, end = values.get("start_date"), values.get("end_date")
        if start and end and end < start:
            raise ChangeValidationError("end_date must not be before start_date", field="end_date")

    def _check_references(self, values: Dict[str, Any]) -> None:
        """Products and groups a change routes on must exist and be active."""
        from servicedesk.db.models import Group, Product

        for field, model, label in (("product_id", Product, "Product"), ("group_id", Group, "Group")):
            ref_id = values.get(field)
            if ref_id is None:
                continue
            ref = self.db.get(model, ref_id)
            if ref is None:
                raise ChangeValidationError(f"{label} {ref_id} not found", field=field)
            if not ref.is_active:
                raise ChangeValidationError(f"{label} {ref_id} is inactive", field=field)

    def _check_lead_time(self, values: Dict[str, Any], now: datetime) -> None:
        """Normal changes must be scheduled at least the configured lead time ahead."""
        if values.get("change_type") != ChangeType.NORMAL.value:
            return
        start = values.get("start_date")
        if start is None:
            return
        lead = timedelta(hours=self.settings.normal_change_lead_hours)
        if start < now + lead:
            raise ChangeValidationError(
                f"Normal changes must be scheduled at least "
                f"{self.settings.normal_change_lead_hours} hours in advance",
                field="start_date",
            )


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value
