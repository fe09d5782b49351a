"""HTTP tests for approval routing administration and the health check."""

import pytest

from servicedesk.db.models import AuditLog
from tests.factories import create_user, create_product, create_group, create_routing_rule

pytestmark = [pytest.mark.db, pytest.mark.integration]


@pytest.fixture
def manager(db_session):
    user = create_user(db_session, role="manager")
    db_session.commit()
    return user


class TestRoutingRules:

    def test_create_and_read(self, client, db_session, manager, auth_headers):
        product = create_product(db_session)
        approver = create_user(db_session, role="agent")
        db_session.commit()
        headers = auth_headers(manager)

        response = client.post("/api/approval-routing", json={
            "product_id": product.id,
            "risk_level": "medium",
            "approval_level": 2,
            "approver_id": approver.id,
            "require_all_approvals": False,
        }, headers=headers)

        assert response.status_code == 201
        rule = response.json()
        assert rule["approval_level"] == 2
        assert rule["require_all_approvals"] is False

        assert client.get(f"/api/approval-routing/{rule['id']}", headers=headers).json() == rule
        audit = db_session.query(AuditLog).filter(AuditLog.resource_type == "approval_routing").one()
        assert audit.action == "create"

    def test_needs_exactly_one_key(self, client, db_session, manager, auth_headers):
        product = create_product(db_session)
        group = create_group(db_session)
        db_session.commit()

        response = client.post("/api/approval-routing", json={
            "product_id": product.id,
            "group_id": group.id,
            "risk_level": "low",
            "approver_id": manager.id,
        }, headers=auth_headers(manager))
        assert response.status_code == 422

    def test_duplicate_rejected(self, client, db_session, manager, auth_headers):
        product = create_product(db_session)
        create_routing_rule(db_session, product=product, approver=manager)
        db_session.commit()

        response = client.post("/api/approval-routing", json={
            "product_id": product.id,
            "risk_level": "high",
            "approver_id": manager.id,
        }, headers=auth_headers(manager))
        assert response.status_code == 409

    def test_inactive_approver_rejected(self, client, db_session, manager, auth_headers):
        product = create_product(db_session)
        inactive = create_user(db_session, role="manager", is_active=False)
        db_session.commit()

        response = client.post("/api/approval-routing", json={
            "product_id": product.id,
            "risk_level": "high",
            "approver_id": inactive.id,
        }, headers=auth_headers(manager))
        assert response.status_code == 400

    def test_approver_without_approve_permission_rejected(self, client, db_session, manager, auth_headers):
        product = create_product(db_session)
        requester = create_user(db_session, role="requester")
        db_session.commit()

        response = client.post("/api/approval-routing", json={
            "product_id": product.id,
            "risk_level": "high",
            "approver_id": requester.id,
        }, headers=auth_headers(manager))
        assert response.status_code == 400
        assert "approvals:approve" in response.json()["detail"]

    def test_update_to_approver_without_approve_permission_rejected(self, client, db_session, manager, auth_headers):
        product = create_product(db_session)
        rule = create_routing_rule(db_session, product=product, approver=manager)
        requester = create_user(db_session, role="requester")
        db_session.commit()

        response = client.patch(f"/api/approval-routing/{rule.id}", json={"approver_id": requester.id},
                                headers=auth_headers(manager))
        assert response.status_code == 400
        db_session.refresh(rule)
        assert rule.approver_id == manager.id

    def test_unknown_product(self, client, manager, auth_headers):
        response = client.post("/api/approval-routing", json={
            "product_id": 4242,
            "risk_level": "high",
            "approver_id": manager.id,
        }, headers=auth_headers(manager))
        assert response.status_code == 404

    def test_update_and_deactivate(self, client, db_session, manager, auth_headers):
        product = create_product(db_session)
        rule = create_routing_rule(db_session, product=product, approver=manager)
        db_session.commit()
        headers = auth_headers(manager)

        response = client.patch(f"/api/approval-routing/{rule.id}", json={"is_active": False}, headers=headers)
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        listed = client.get("/api/approval-routing", params={"product_id": product.id}, headers=headers).json()
        assert listed == []
        listed = client.get("/api/approval-routing", params={"product_id": product.id, "include_inactive": True},
                            headers=headers).json()
        assert [r["id"] for r in listed] == [rule.id]

    def test_delete(self, client, db_session, manager, auth_headers):
        product = create_product(db_session)
        rule = create_routing_rule(db_session, product=product, approver=manager)
        db_session.commit()
        rule_id = rule.id
        headers = auth_headers(manager)

        assert client.delete(f"/api/approval-routing/{rule_id}", headers=headers).status_code == 204
        assert client.get(f"/api/approval-routing/{rule_id}", headers=headers).status_code == 404

    def test_resolve_plan(self, client, db_session, manager, auth_headers):
        product = create_product(db_session)
        other = create_user(db_session, role="manager")
        create_routing_rule(db_session, product=product, approver=manager, approval_level=1,
                            require_all_approvals=False)
        create_routing_rule(db_session, product=product, approver=other, approval_level=3)
        db_session.commit()

        plan = client.get("/api/approval-routing/resolve",
                          params={"risk_level": "high", "product_id": product.id},
                          headers=auth_headers(manager)).json()

        assert plan["levels"] == [
            {"level": 1, "require_all": False, "approver_ids": [manager.id]},
            {"level": 3, "require_all": True, "approver_ids": [other.id]},
        ]

    def test_resolve_unknown_risk_level(self, client, manager, auth_headers):
        response = client.get("/api/approval-routing/resolve", params={"risk_level": "extreme"},
                              headers=auth_headers(manager))
        assert response.status_code == 400
        assert response.headers["X-Error-Code"] == "invalid_risk_level"


class TestHealth:

    def test_healthy(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
