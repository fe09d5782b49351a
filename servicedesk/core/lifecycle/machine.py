"""Change lifecycle state machine.

Guards status transitions of a change: the transition table, who may drive
each transition, and the admin override. Records every transition.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, Iterable

from servicedesk.core.rbac import PermissionChecker

from .states import (
    ChangeStatus,
    TransitionSource,
    TransitionRule,
    get_transition_rule,
    OVERRIDE_PERMISSION,
    TERMINAL_STATUSES,
    ENGINE_ONLY_STATUSES,
    NON_OVERRIDABLE_TARGETS,
)

logger = logging.getLogger(__name__)


class TransitionError(Exception):
    """Raised when a status transition is invalid."""

    def __init__(self, message: str, from_status: ChangeStatus, to_status: ChangeStatus):
        super().__init__(message)
        self.from_status = from_status
        self.to_status = to_status


class PermissionDeniedError(Exception):
    """Raised when the actor lacks permission for a transition."""

    def __init__(self, required_permission: str):
        super().__init__(f"Permission denied: requires {required_permission}")
        self.required_permission = required_permission


class ManualApprovalForbidden(TransitionError):
    """Raised when anything but the approval engine tries to approve a change."""


class ImplementationTooEarly(TransitionError):
    """Raised when implementation starts before the scheduled start time."""


class ChangeLifecycle:
    """
    State machine for a change's status.

    Manages transitions with:
    - Validation against the transition table
    - Source checks (approval engine, system, user)
    - Permission checks for user-driven transitions
    - Admin override to any status except approved
    - History records
    """

    def __init__(
        self,
        change_id: Optional[int],
        current_status: ChangeStatus,
        *,
        user_permissions: Optional[Iterable[str]] = None,
        is_requester: bool = False,
        start_date: Optional[datetime] = None,
    ):
        """
        Args:
            change_id: ID of the change
            current_status: Current status of the change
            user_permissions: Permission strings of the acting user
            is_requester: Whether the acting user raised the change
            start_date: Scheduled implementation start, if any
        """
        self.change_id = change_id
        self._status = ChangeStatus(current_status)
        self.checker = PermissionChecker(user_permissions or [])
        self.is_requester = is_requester
        self.start_date = start_date
        self._transition_history: list[Dict[str, Any]] = []

    @property
    def status(self) -> ChangeStatus:
        return self._status

    @property
    def is_terminal(self) -> bool:
        return self._status in TERMINAL_STATUSES

    def can_transition(self, target: ChangeStatus, source: TransitionSource = TransitionSource.USER) -> bool:
        try:
            self._check(ChangeStatus(target), source)
        except (TransitionError, PermissionDeniedError):
            return False
        return True

    def get_available_statuses(self, source: TransitionSource = TransitionSource.USER) -> list[ChangeStatus]:
        """Statuses the actor could move the change to right now."""
        return [s for s in ChangeStatus if s != self._status and self.can_transition(s, source)]

    def transition(
        self,
        target: ChangeStatus,
        *,
        source: TransitionSource = TransitionSource.USER,
        user_id: Optional[int] = None,
        comment: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ChangeStatus:
        """
        Move the change to ``target``.

        Returns:
            The new status

        Raises:
            TransitionError: If the transition is invalid
            ManualApprovalForbidden: If a non-engine source targets approved
            ImplementationTooEarly: If in-progress is entered before start_date
            PermissionDeniedError: If the user lacks the required permission
        """
        target = ChangeStatus(target)
        rule, is_override = self._check(target, source)

        if target == ChangeStatus.IN_PROGRESS and self.start_date is not None:
            current_time = now or datetime.utcnow()
            if current_time < self.start_date:
                raise ImplementationTooEarly(
                    f"Implementation cannot begin before the scheduled start time: {self.start_date.isoformat()}",
                    self._status,
                    target,
                )

        from_status = self._status
        record = {
            "change_id": self.change_id,
            "from_status": from_status.value,
            "to_status": target.value,
            "source": source.value,
            "override": is_override,
            "user_id": user_id,
            "comment": comment,
            "timestamp": datetime.utcnow(),
        }
        self._transition_history.append(record)
        self._status = target

        if is_override:
            logger.warning(
                "Change %s moved %s -> %s by override (user %s)",
                self.change_id, from_status.value, target.value, user_id,
            )
        else:
            logger.info("Change %s moved %s -> %s (%s)", self.change_id, from_status.value, target.value, source.value)

        return self._status

    def get_history(self) -> list[Dict[str, Any]]:
        return self._transition_history.copy()

    def _check(self, target: ChangeStatus, source: TransitionSource) -> tuple[Optional[TransitionRule], bool]:
        """Validate a transition; returns the matched rule and whether it is an override."""
        if target == self._status:
            raise TransitionError(f"Change is already {target.value}", self._status, target)

        if self.is_terminal:
            raise TransitionError(
                f"Change is {self._status.value}; no further transitions are allowed",
                self._status,
                target,
            )

        if target in ENGINE_ONLY_STATUSES and source != TransitionSource.ENGINE:
            raise ManualApprovalForbidden(
                f"Changes can only be {target.value} through the approval workflow",
                self._status,
                target,
            )

        rule = get_transition_rule(self._status, target)

        if rule is not None and source in rule.sources:
            if source == TransitionSource.USER and rule.requires_permission:
                permitted = self.checker.has_permission(rule.requires_permission)
                if not permitted and not (rule.allow_requester and self.is_requester):
                    raise PermissionDeniedError(rule.requires_permission)
            return rule, False

        if (
            source == TransitionSource.USER
            and target not in NON_OVERRIDABLE_TARGETS
            and self.checker.has_permission(OVERRIDE_PERMISSION)
        ):
            return None, True

        raise TransitionError(
            f"Cannot move change from {self._status.value} to {target.value}",
            self._status,
            target,
        )
