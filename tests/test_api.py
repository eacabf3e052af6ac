import unittest

from fastapi.testclient import TestClient

from _test_support import reset_database
from ticketflow import api


class ApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.client = TestClient(api.app)

    def setUp(self):
        reset_database()

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["service"], "ticketflow")

    def test_ticket_lifecycle_runs_automation(self):
        self.assertEqual(self.client.post("/agents", json={"agent_id": "agent-7", "name": "Ada"}).status_code, 201)
        group_response = self.client.post(
            "/agent-groups",
            json={"group_id": "grp-senior", "name": "senior_agent_pool", "member_ids": ["agent-7"]},
        )
        self.assertEqual(group_response.status_code, 201)
        rule_response = self.client.post(
            "/automation-rules",
            json={
                "name": "Route urgent",
                "rule_type": "ticket_creation",
                "conditions": [{"field": "priority", "operator": "equals", "value": "urgent"}],
                "actions": [{"type": "assign", "target": "senior_agent_pool"}],
            },
        )
        self.assertEqual(rule_response.status_code, 201)
        rule_id = rule_response.json()["rule_id"]

        create_response = self.client.post("/tickets", json={"subject": "Site down", "priority": "urgent"})
        self.assertEqual(create_response.status_code, 201)
        body = create_response.json()
        ticket_id = body["ticket_id"]
        self.assertEqual(body["assignee_id"], "agent-7")
        self.assertEqual([item["action"] for item in body["activities"]], ["created", "assigned", "automation_executed"])

        update_response = self.client.patch(f"/tickets/{ticket_id}", json={"status": "pending"})
        self.assertEqual(update_response.status_code, 200)
        self.assertEqual(update_response.json()["status"], "pending")

        reply_response = self.client.post(
            f"/tickets/{ticket_id}/replies",
            json={"body": "Looking into it", "author_id": "agent-7"},
        )
        self.assertEqual(reply_response.status_code, 201)
        self.assertFalse(reply_response.json()["is_internal"])

        replies = self.client.get(f"/tickets/{ticket_id}/replies").json()
        self.assertEqual([item["body"] for item in replies], ["Looking into it"])

        activities = self.client.get(f"/tickets/{ticket_id}/activities").json()
        self.assertEqual(
            [item["action"] for item in activities],
            ["created", "assigned", "automation_executed", "status_changed", "replied"],
        )

        rule = self.client.get(f"/automation-rules/{rule_id}").json()
        self.assertEqual(rule["execution_count"], 1)

        listing = self.client.get("/tickets", params={"limit": 10}).json()
        self.assertEqual([item["ticket_id"] for item in listing], [ticket_id])

    def test_missing_ticket_returns_404(self):
        self.assertEqual(self.client.get("/tickets/tkt-missing").status_code, 404)
        self.assertEqual(self.client.patch("/tickets/tkt-missing", json={"status": "open"}).status_code, 404)
        self.assertEqual(self.client.post("/tickets/tkt-missing/replies", json={"body": "hi"}).status_code, 404)
        self.assertEqual(self.client.get("/tickets/tkt-missing/activities").status_code, 404)

    def test_rule_crud(self):
        created = self.client.post(
            "/automation-rules",
            json={"name": "Tag", "actions": [{"type": "add_tag", "value": "x"}]},
        ).json()
        rule_id = created["rule_id"]

        updated = self.client.patch(f"/automation-rules/{rule_id}", json={"order": 3, "is_active": False})
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()["order"], 3)
        self.assertFalse(updated.json()["is_active"])

        self.assertEqual(len(self.client.get("/automation-rules").json()), 1)
        self.assertEqual(self.client.delete(f"/automation-rules/{rule_id}").status_code, 204)
        self.assertEqual(self.client.get(f"/automation-rules/{rule_id}").status_code, 404)
        self.assertEqual(self.client.delete(f"/automation-rules/{rule_id}").status_code, 404)

    def test_invalid_rule_payload_is_rejected(self):
        response = self.client.post(
            "/automation-rules",
            json={"name": "Bad", "conditions": [{"field": "status", "operator": "frobnicate", "value": "x"}]},
        )
        self.assertEqual(response.status_code, 422)
        response = self.client.post(
            "/automation-rules",
            json={"name": "Bad", "actions": [{"type": "teleport"}]},
        )
        self.assertEqual(response.status_code, 422)

    def test_duplicate_agent_is_rejected(self):
        self.client.post("/agents", json={"agent_id": "agent-1", "name": "One"})
        response = self.client.post("/agents", json={"agent_id": "agent-1", "name": "Again"})
        self.assertEqual(response.status_code, 400)

    def test_sweep_endpoint(self):
        response = self.client.post("/automation/sweep")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["swept"])
        self.assertEqual(response.json()["rules_due"], 0)


if __name__ == "__main__":
    unittest.main()
