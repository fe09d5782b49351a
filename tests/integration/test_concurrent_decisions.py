"""Racing requests on one change, each in its own session on a shared database file."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from servicedesk.core.config import Settings
from servicedesk.core.approval.errors import ConcurrentDecision, ConcurrentUpdate
from servicedesk.core.approval.service import ApprovalService
from servicedesk.core.changes import ChangeService
from servicedesk.db.base import Base
from servicedesk.db.models import ApprovalInstance, Change, User

from tests.factories import create_user, create_product, create_routing_rule

pytestmark = [pytest.mark.db, pytest.mark.integration]


def make_settings():
    return Settings(_env_file=None)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'servicedesk.db'}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    sessions = []

    def _open():
        session = factory()
        sessions.append(session)
        return session

    yield _open
    for session in sessions:
        session.close()
    engine.dispose()


@pytest.fixture
def change42(session_factory):
    """Committed change routed to level 1 any {first}, level 2 all {second, third}."""
    session = session_factory()
    product = create_product(session, name="CRM")
    first = create_user(session, role="manager", name="First")
    second = create_user(session, role="manager", name="Second")
    third = create_user(session, role="manager", name="Third")
    requester = create_user(session, role="requester")
    create_routing_rule(session, product=product, approver=first, require_all_approvals=False)
    create_routing_rule(session, product=product, approver=second, approval_level=2)
    create_routing_rule(session, product=product, approver=third, approval_level=2)

    change = ChangeService(session, settings=make_settings()).create_change({
        "title": "Upgrade CRM database",
        "description": "Move CRM to the new cluster",
        "risk_level": "high",
        "change_type": "emergency",
        "product_id": product.id,
    }, user=requester)
    session.commit()
    return {
        "change_id": change.id,
        "first": first.id,
        "second": second.id,
        "third": third.id,
    }


def instance_of(session, change_id, approver_id):
    return session.query(ApprovalInstance).filter_by(change_id=change_id, approver_id=approver_id).one()


class TestConcurrentDecisions:

    def test_same_approver_twice(self, session_factory, change42):
        change_id, approver = change42["change_id"], change42["first"]
        winner, loser = session_factory(), session_factory()

        late = ApprovalService(loser, settings=make_settings())
        assert late.workflow_view(change_id, approver)["your_action_required"] is True

        ApprovalService(winner, settings=make_settings()).submit_decision(change_id, approver, "approved", "first")
        winner.commit()

        with pytest.raises(ConcurrentDecision) as exc_info:
            late.submit_decision(change_id, approver, "rejected", "second")
        assert exc_info.value.status_code == 409
        assert exc_info.value.code == "concurrent_decision"
        loser.rollback()

        check = session_factory()
        instance = instance_of(check, change_id, approver)
        assert instance.status == "approved"
        assert instance.comments == "first"
        assert check.get(Change, change_id).status == "pending"

    def test_different_approvers_on_an_all_gate_level(self, session_factory, change42):
        change_id = change42["change_id"]
        setup = session_factory()
        ApprovalService(setup, settings=make_settings()).submit_decision(change_id, change42["first"], "approved")
        setup.commit()

        winner, loser = session_factory(), session_factory()
        late = ApprovalService(loser, settings=make_settings())
        late.workflow_view(change_id, change42["third"])

        ApprovalService(winner, settings=make_settings()).submit_decision(change_id, change42["second"], "approved")
        winner.commit()

        with pytest.raises(ConcurrentDecision):
            late.submit_decision(change_id, change42["third"], "approved")
        loser.rollback()

        check = session_factory()
        assert instance_of(check, change_id, change42["second"]).status == "approved"
        assert instance_of(check, change_id, change42["third"]).status == "pending"
        assert check.get(Change, change_id).status == "pending"

        # Re-read and retry
        retry = session_factory()
        result = ApprovalService(retry, settings=make_settings()).submit_decision(
            change_id, change42["third"], "approved",
        )
        retry.commit()
        assert result.approved is True

    def test_status_edit_racing_a_decision(self, session_factory, change42):
        change_id = change42["change_id"]
        winner, loser = session_factory(), session_factory()

        editor = ChangeService(loser, settings=make_settings())
        editor.get_change(change_id)
        manager = loser.get(User, change42["second"])

        ApprovalService(winner, settings=make_settings()).submit_decision(change_id, change42["first"], "approved")
        winner.commit()

        with pytest.raises(ConcurrentUpdate) as exc_info:
            editor.update_change(change_id, {"status": "rejected"}, user=manager, notes="Change freeze")
        assert exc_info.value.status_code == 409
        assert exc_info.value.code == "concurrent_update"
        loser.rollback()

        check = session_factory()
        assert check.get(Change, change_id).status == "pending"
