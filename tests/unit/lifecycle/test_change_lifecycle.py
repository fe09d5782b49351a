"""Tests for the change lifecycle state machine."""

from datetime import datetime, timedelta

import pytest

from servicedesk.core.lifecycle.states import (
    ChangeStatus,
    TransitionSource,
    TERMINAL_STATUSES,
    get_transition_rule,
    next_statuses,
)
from servicedesk.core.lifecycle.machine import (
    ChangeLifecycle,
    TransitionError,
    PermissionDeniedError,
    ManualApprovalForbidden,
    ImplementationTooEarly,
)
from servicedesk.core.rbac.roles import (
    ADMIN_PERMISSIONS,
    MANAGER_PERMISSIONS,
    AGENT_PERMISSIONS,
    REQUESTER_PERMISSIONS,
)


class TestChangeStatuses:
    """Test status definitions."""

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {ChangeStatus.COMPLETED, ChangeStatus.CLOSED}

    def test_status_values(self):
        assert ChangeStatus.IN_PROGRESS.value == "in-progress"
        assert ChangeStatus("rollback") == ChangeStatus.ROLLBACK

    def test_engine_drives_approval(self):
        rule = get_transition_rule(ChangeStatus.PENDING, ChangeStatus.APPROVED)
        assert rule.sources == frozenset([TransitionSource.ENGINE])

    def test_next_statuses_from_testing(self):
        assert set(next_statuses(ChangeStatus.TESTING)) == {
            ChangeStatus.IN_PROGRESS, ChangeStatus.COMPLETED, ChangeStatus.FAILED,
        }


class TestEngineTransitions:
    """Test transitions driven by the approval workflow."""

    def test_system_starts_approval(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.SUBMITTED)
        assert lifecycle.transition(ChangeStatus.PENDING, source=TransitionSource.SYSTEM) == ChangeStatus.PENDING

    def test_engine_approves(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.PENDING)
        lifecycle.transition(ChangeStatus.APPROVED, source=TransitionSource.ENGINE)
        assert lifecycle.status == ChangeStatus.APPROVED

    def test_engine_approves_standard_change_on_submission(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.SUBMITTED)
        lifecycle.transition(ChangeStatus.APPROVED, source=TransitionSource.ENGINE)
        assert lifecycle.status == ChangeStatus.APPROVED

    def test_engine_rejects(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.PENDING)
        lifecycle.transition(ChangeStatus.REJECTED, source=TransitionSource.ENGINE)
        assert lifecycle.status == ChangeStatus.REJECTED


class TestManualApproval:
    """Nobody but the engine may approve a change."""

    @pytest.mark.parametrize("permissions", [ADMIN_PERMISSIONS, MANAGER_PERMISSIONS])
    def test_user_cannot_approve(self, permissions):
        lifecycle = ChangeLifecycle(1, ChangeStatus.PENDING, user_permissions=permissions)
        with pytest.raises(ManualApprovalForbidden):
            lifecycle.transition(ChangeStatus.APPROVED, source=TransitionSource.USER)
        assert lifecycle.status == ChangeStatus.PENDING

    def test_system_cannot_approve(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.SUBMITTED)
        with pytest.raises(ManualApprovalForbidden):
            lifecycle.transition(ChangeStatus.APPROVED, source=TransitionSource.SYSTEM)


class TestUserTransitions:
    """Test role-gated transitions."""

    def test_manager_rejects_pending_change(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.PENDING, user_permissions=MANAGER_PERMISSIONS)
        lifecycle.transition(ChangeStatus.REJECTED, user_id=3, comment="Freeze window")
        assert lifecycle.status == ChangeStatus.REJECTED
        assert lifecycle.get_history()[0]["comment"] == "Freeze window"

    def test_requester_cannot_reject(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.PENDING, user_permissions=REQUESTER_PERMISSIONS)
        with pytest.raises(PermissionDeniedError) as exc_info:
            lifecycle.transition(ChangeStatus.REJECTED)
        assert exc_info.value.required_permission == "changes:reject"

    def test_agent_implements(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.APPROVED, user_permissions=AGENT_PERMISSIONS)
        lifecycle.transition(ChangeStatus.IN_PROGRESS)
        lifecycle.transition(ChangeStatus.TESTING)
        lifecycle.transition(ChangeStatus.COMPLETED)
        assert lifecycle.is_terminal
        assert [h["to_status"] for h in lifecycle.get_history()] == ["in-progress", "testing", "completed"]

    def test_agent_rolls_back_failed_change(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.IN_PROGRESS, user_permissions=AGENT_PERMISSIONS)
        lifecycle.transition(ChangeStatus.FAILED)
        lifecycle.transition(ChangeStatus.ROLLBACK)
        with pytest.raises(PermissionDeniedError):
            lifecycle.transition(ChangeStatus.CLOSED)

    def test_manager_closes_rolled_back_change(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.ROLLBACK, user_permissions=MANAGER_PERMISSIONS)
        lifecycle.transition(ChangeStatus.CLOSED)
        assert lifecycle.is_terminal

    def test_requester_revises_own_rejected_change(self):
        lifecycle = ChangeLifecycle(
            1, ChangeStatus.REJECTED, user_permissions=REQUESTER_PERMISSIONS, is_requester=True,
        )
        lifecycle.transition(ChangeStatus.PENDING)
        assert lifecycle.status == ChangeStatus.PENDING

    def test_other_requester_cannot_revise(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.REJECTED, user_permissions=REQUESTER_PERMISSIONS)
        with pytest.raises(PermissionDeniedError):
            lifecycle.transition(ChangeStatus.PENDING)

    def test_invalid_transition(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.SUBMITTED, user_permissions=AGENT_PERMISSIONS)
        with pytest.raises(TransitionError):
            lifecycle.transition(ChangeStatus.TESTING)

    def test_same_status_is_invalid(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.TESTING, user_permissions=ADMIN_PERMISSIONS)
        with pytest.raises(TransitionError):
            lifecycle.transition(ChangeStatus.TESTING)

    def test_available_statuses(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.TESTING, user_permissions=AGENT_PERMISSIONS)
        assert set(lifecycle.get_available_statuses()) == {
            ChangeStatus.IN_PROGRESS, ChangeStatus.COMPLETED, ChangeStatus.FAILED,
        }


class TestOverride:
    """Test the admin override."""

    def test_admin_overrides_to_any_open_status(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.APPROVED, user_permissions=ADMIN_PERMISSIONS)
        lifecycle.transition(ChangeStatus.CLOSED, user_id=1)
        record = lifecycle.get_history()[0]
        assert record["override"] is True
        assert lifecycle.status == ChangeStatus.CLOSED

    def test_table_transition_is_not_an_override(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.PENDING, user_permissions=ADMIN_PERMISSIONS)
        lifecycle.transition(ChangeStatus.REJECTED)
        assert lifecycle.get_history()[0]["override"] is False

    def test_override_cannot_resubmit(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.TESTING, user_permissions=ADMIN_PERMISSIONS)
        with pytest.raises(TransitionError):
            lifecycle.transition(ChangeStatus.SUBMITTED)

    def test_terminal_status_is_final_even_for_admin(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.COMPLETED, user_permissions=ADMIN_PERMISSIONS)
        with pytest.raises(TransitionError):
            lifecycle.transition(ChangeStatus.ROLLBACK)

    def test_manager_has_no_override(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.APPROVED, user_permissions=MANAGER_PERMISSIONS)
        with pytest.raises(TransitionError):
            lifecycle.transition(ChangeStatus.CLOSED)


class TestImplementationWindow:
    """Test the scheduled start check."""

    def test_too_early(self):
        start = datetime(2026, 3, 10, 9, 0)
        lifecycle = ChangeLifecycle(
            1, ChangeStatus.APPROVED, user_permissions=AGENT_PERMISSIONS, start_date=start,
        )
        with pytest.raises(ImplementationTooEarly):
            lifecycle.transition(ChangeStatus.IN_PROGRESS, now=start - timedelta(minutes=5))
        assert lifecycle.status == ChangeStatus.APPROVED

    def test_at_start_time(self):
        start = datetime(2026, 3, 10, 9, 0)
        lifecycle = ChangeLifecycle(
            1, ChangeStatus.APPROVED, user_permissions=AGENT_PERMISSIONS, start_date=start,
        )
        lifecycle.transition(ChangeStatus.IN_PROGRESS, now=start)
        assert lifecycle.status == ChangeStatus.IN_PROGRESS


class TestHistory:

    def test_transition_is_recorded(self):
        lifecycle = ChangeLifecycle(1, ChangeStatus.PENDING)
        lifecycle.transition(ChangeStatus.REJECTED, source=TransitionSource.ENGINE, user_id=5)
        history = lifecycle.get_history()
        assert len(history) == 1
        assert history[0]["from_status"] == "pending"
        assert history[0]["user_id"] == 5
        assert history[0]["override"] is False
