"""HTTP tests for the change and approval endpoints."""

import pytest

from tests.factories import create_user, create_product, create_routing_rule

pytestmark = [pytest.mark.db, pytest.mark.integration]


@pytest.fixture
def setup(db_session):
    """CRM routing with one any-gate approver at level 1 and two all-gate approvers at level 2."""
    product = create_product(db_session, name="CRM")
    first = create_user(db_session, role="manager", name="First Approver")
    second = create_user(db_session, role="manager", name="Second Approver")
    third = create_user(db_session, role="agent", name="Third Approver")
    requester = create_user(db_session, role="requester", name="Requester")
    create_routing_rule(db_session, product=product, approver=first, require_all_approvals=False)
    create_routing_rule(db_session, product=product, approver=second, approval_level=2)
    create_routing_rule(db_session, product=product, approver=third, approval_level=2)
    db_session.commit()
    return {
        "product": product,
        "first": first,
        "second": second,
        "third": third,
        "requester": requester,
    }


def create(client, headers, product, **overrides):
    payload = {
        "title": "Rotate CRM certificates",
        "description": "Replace the expiring TLS certificates",
        "risk_level": "high",
        "change_type": "emergency",
        "product_id": product.id,
    }
    payload.update(overrides)
    return client.post("/api/changes", json=payload, headers=headers)


class TestAuthentication:

    def test_missing_token(self, client):
        response = client.get("/api/changes")
        assert response.status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/api/changes", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_missing_permission(self, client, setup, auth_headers):
        response = client.get("/api/approval-routing", headers=auth_headers(setup["requester"]))
        assert response.status_code == 403


class TestChanges:

    def test_create_starts_workflow(self, client, setup, auth_headers):
        response = create(client, auth_headers(setup["requester"]), setup["product"])

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["approval_cycle"] == 1
        assert body["requested_by"] == setup["requester"].id

    def test_create_standard_change(self, client, setup, auth_headers):
        response = create(client, auth_headers(setup["requester"]), setup["product"], change_type="standard")

        assert response.status_code == 201
        assert response.json()["status"] == "approved"
        assert response.json()["approved_by"] == "Auto-approved (Standard Change)"

    def test_create_rejects_unknown_risk_level(self, client, setup, auth_headers):
        response = create(client, auth_headers(setup["requester"]), setup["product"], risk_level="extreme")
        assert response.status_code == 422

    def test_create_rejects_unknown_product(self, client, setup, auth_headers):
        response = client.post("/api/changes", json={
            "title": "Rotate CRM certificates",
            "description": "Replace the expiring TLS certificates",
            "risk_level": "high",
            "change_type": "emergency",
            "product_id": 99999,
        }, headers=auth_headers(setup["requester"]))

        assert response.status_code == 400
        assert response.headers["X-Error-Code"] == "invalid_change"

        listing = client.get("/api/changes", headers=auth_headers(setup["requester"])).json()
        assert listing["total"] == 0

    def test_available_transitions(self, client, setup, auth_headers):
        change_id = create(client, auth_headers(setup["requester"]), setup["product"]).json()["id"]

        response = client.get(f"/api/changes/{change_id}/transitions", headers=auth_headers(setup["first"]))
        assert response.status_code == 200
        assert response.json() == ["rejected"]

        response = client.get(f"/api/changes/{change_id}/transitions", headers=auth_headers(setup["requester"]))
        assert response.json() == []

    def test_get_and_list(self, client, setup, auth_headers):
        headers = auth_headers(setup["requester"])
        change_id = create(client, headers, setup["product"]).json()["id"]

        assert client.get(f"/api/changes/{change_id}", headers=headers).json()["id"] == change_id

        listing = client.get("/api/changes", params={"status": "pending"}, headers=headers).json()
        assert listing["total"] == 1
        assert listing["pages"] == 1
        assert listing["items"][0]["id"] == change_id

    def test_get_missing_change(self, client, setup, auth_headers):
        response = client.get("/api/changes/9999", headers=auth_headers(setup["requester"]))
        assert response.status_code == 404
        assert response.headers["X-Error-Code"] == "change_not_found"

    def test_manual_approval_refused(self, client, db_session, setup, auth_headers):
        change_id = create(client, auth_headers(setup["requester"]), setup["product"]).json()["id"]
        admin = create_user(db_session, role="admin")
        db_session.commit()

        response = client.patch(
            f"/api/changes/{change_id}",
            json={"status": "approved"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 400
        assert response.headers["X-Error-Code"] == "manual_approval_forbidden"

    def test_history_and_comments(self, client, setup, auth_headers):
        headers = auth_headers(setup["requester"])
        change_id = create(client, headers, setup["product"]).json()["id"]

        response = client.post(f"/api/changes/{change_id}/comments", json={"comment": "Vendor confirmed"},
                               headers=headers)
        assert response.status_code == 201

        history = client.get(f"/api/changes/{change_id}/history", headers=headers).json()
        assert [h["action"] for h in history] == ["created", "status_changed", "comment_added"]


class TestApprovals:

    def test_full_approval(self, client, setup, auth_headers):
        change_id = create(client, auth_headers(setup["requester"]), setup["product"]).json()["id"]
        url = f"/api/changes/{change_id}/approve"

        body = client.post(url, json={"action": "approved"}, headers=auth_headers(setup["first"])).json()
        assert body == {"completed": False, "approved": False, "next_level": 2, "state": "awaiting_level(2)"}

        client.post(url, json={"action": "approved"}, headers=auth_headers(setup["second"]))
        body = client.post(url, json={"action": "approved", "comments": "Ship it"},
                           headers=auth_headers(setup["third"])).json()
        assert body["completed"] is True
        assert body["approved"] is True

        change = client.get(f"/api/changes/{change_id}", headers=auth_headers(setup["requester"])).json()
        assert change["status"] == "approved"
        assert change["approved_by"] == "Third Approver"

    def test_rejection_closes_workflow(self, client, setup, auth_headers):
        change_id = create(client, auth_headers(setup["requester"]), setup["product"]).json()["id"]
        url = f"/api/changes/{change_id}/approve"

        body = client.post(url, json={"action": "rejected", "comments": "Wrong window"},
                           headers=auth_headers(setup["first"])).json()
        assert body == {"completed": True, "approved": False, "next_level": None, "state": "rejected"}

        response = client.post(url, json={"action": "approved"}, headers=auth_headers(setup["second"]))
        assert response.status_code == 409
        assert response.headers["X-Error-Code"] == "already_decided"

    def test_out_of_order(self, client, setup, auth_headers):
        change_id = create(client, auth_headers(setup["requester"]), setup["product"]).json()["id"]

        response = client.post(f"/api/changes/{change_id}/approve", json={"action": "approved"},
                               headers=auth_headers(setup["second"]))
        assert response.status_code == 409
        assert response.headers["X-Error-Code"] == "approval_out_of_order"

    def test_not_an_approver(self, client, db_session, setup, auth_headers):
        change_id = create(client, auth_headers(setup["requester"]), setup["product"]).json()["id"]
        outsider = create_user(db_session, role="manager")
        db_session.commit()

        response = client.post(f"/api/changes/{change_id}/approve", json={"action": "approved"},
                               headers=auth_headers(outsider))
        assert response.status_code == 403
        assert response.headers["X-Error-Code"] == "not_authorized_approver"

    def test_approver_id_must_match_caller(self, client, setup, auth_headers):
        change_id = create(client, auth_headers(setup["requester"]), setup["product"]).json()["id"]

        response = client.post(
            f"/api/changes/{change_id}/approve",
            json={"approver_id": setup["second"].id, "action": "approved"},
            headers=auth_headers(setup["first"]),
        )
        assert response.status_code == 403

    def test_invalid_action(self, client, setup, auth_headers):
        change_id = create(client, auth_headers(setup["requester"]), setup["product"]).json()["id"]

        response = client.post(f"/api/changes/{change_id}/approve", json={"action": "maybe"},
                               headers=auth_headers(setup["first"]))
        assert response.status_code == 400
        assert response.headers["X-Error-Code"] == "invalid_decision"

    def test_requester_cannot_decide(self, client, setup, auth_headers):
        change_id = create(client, auth_headers(setup["requester"]), setup["product"]).json()["id"]

        response = client.post(f"/api/changes/{change_id}/approve", json={"action": "approved"},
                               headers=auth_headers(setup["requester"]))
        assert response.status_code == 403

    def test_pending_inbox_follows_active_level(self, client, setup, auth_headers):
        change_id = create(client, auth_headers(setup["requester"]), setup["product"]).json()["id"]

        first_inbox = client.get("/api/approvals/pending", headers=auth_headers(setup["first"])).json()
        assert [p["change_id"] for p in first_inbox] == [change_id]
        assert client.get("/api/approvals/pending", headers=auth_headers(setup["second"])).json() == []

        client.post(f"/api/changes/{change_id}/approve", json={"action": "approved"},
                    headers=auth_headers(setup["first"]))

        second_inbox = client.get("/api/approvals/pending", headers=auth_headers(setup["second"])).json()
        assert len(second_inbox) == 1
        assert second_inbox[0]["approval_level"] == 2
        assert second_inbox[0]["change_title"] == "Rotate CRM certificates"

    def test_workflow_view(self, client, setup, auth_headers):
        change_id = create(client, auth_headers(setup["requester"]), setup["product"]).json()["id"]

        view = client.get(f"/api/changes/{change_id}/workflow", headers=auth_headers(setup["first"])).json()
        assert view["state"] == "awaiting_level(1)"
        assert view["current_level"] == 1
        assert view["your_action_required"] is True
        assert [lvl["level"] for lvl in view["levels"]] == [1, 2]
        assert view["levels"][0]["require_all"] is False

    def test_revision_restarts_approvals(self, client, setup, auth_headers):
        requester_headers = auth_headers(setup["requester"])
        change_id = create(client, requester_headers, setup["product"]).json()["id"]
        client.post(f"/api/changes/{change_id}/approve", json={"action": "rejected"},
                    headers=auth_headers(setup["first"]))

        response = client.patch(
            f"/api/changes/{change_id}",
            json={"status": "pending", "risk_level": "high", "notes": "Moved to the weekend window"},
            headers=requester_headers,
        )
        assert response.status_code == 200
        assert response.json()["approval_cycle"] == 2

        approvals = client.get(f"/api/changes/{change_id}/approvals", headers=requester_headers).json()
        assert [(a["cycle"], a["status"]) for a in approvals] == [
            (1, "rejected"), (1, "pending"), (1, "pending"),
            (2, "pending"), (2, "pending"), (2, "pending"),
        ]

        current = client.get(f"/api/changes/{change_id}/approvals", params={"current_only": True},
                             headers=requester_headers).json()
        assert {a["cycle"] for a in current} == {2}
