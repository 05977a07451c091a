"""
Unit tests for the activity log
"""
import json
import pytest
from fastapi import status
from app.models.models import ActivityLog


@pytest.mark.unit
class TestActivityLogs:

    def test_mutations_are_logged(self, client, db, auth_headers, test_customer):
        client.put(
            f"/api/v1/customers/{test_customer.id}",
            headers=auth_headers,
            json={"notes": "VIP"}
        )

        log = db.query(ActivityLog).filter(
            ActivityLog.entity_type == "customer",
            ActivityLog.action == "updated"
        ).one()
        assert log.entity_id == test_customer.id
        assert json.loads(log.extra_data) == {"fields": ["notes"]}
        assert log.user_agent == "testclient"

    def test_list_filters(self, client, auth_headers, test_customer):
        client.put(f"/api/v1/customers/{test_customer.id}", headers=auth_headers, json={"notes": "VIP"})

        response = client.get("/api/v1/activity-logs/?entity_type=customer", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["action"] == "updated"

        logins = client.get("/api/v1/activity-logs/?action=login", headers=auth_headers).json()
        assert logins["total"] == 1

    def test_logs_are_private(self, client, auth_headers, other_headers):
        response = client.get("/api/v1/activity-logs/", headers=other_headers)

        assert response.status_code == status.HTTP_200_OK
        assert all(item["action"] == "login" for item in response.json()["items"])
        assert response.json()["total"] == 1
