"""
Unit tests for customer feedback endpoints
"""
import pytest
from fastapi import status
from app.core.config import settings
from app.models.models import Appointment, Customer


@pytest.fixture
def feedback_url(test_customer):
    return f"/api/v1/customers/{test_customer.id}/feedback"


def _leave(client, headers, url, rating, **extra):
    payload = {"message": f"Nota {rating}", "rating": rating}
    payload.update(extra)
    return client.post(url, headers=headers, json=payload)


@pytest.mark.unit
class TestFeedback:

    def test_create_feedback(self, client, auth_headers, feedback_url):
        response = _leave(client, auth_headers, feedback_url, 5, source="whatsapp", tags=["corte", "pontual"])

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["rating"] == 5
        assert data["source"] == "whatsapp"
        assert data["tags"] == ["corte", "pontual"]

    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_out_of_range(self, client, auth_headers, feedback_url, rating):
        response = _leave(client, auth_headers, feedback_url, rating)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_linked_appointment_must_belong_to_customer(
        self, client, db, auth_headers, test_user, test_establishment, test_service, feedback_url, at
    ):
        someone_else = Customer(user_id=test_user.id, name="Outra Pessoa", status="active")
        db.add(someone_else)
        db.commit()
        appointment = Appointment(
            user_id=test_user.id,
            establishment_id=test_establishment.id,
            customer_id=someone_else.id,
            service_id=test_service.id,
            date=at(10, days=-1),
            slot_number=1,
            status="completed"
        )
        db.add(appointment)
        db.commit()

        response = _leave(client, auth_headers, feedback_url, 4, appointment_id=appointment.id)

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_list_summary_and_filters(self, client, auth_headers, feedback_url):
        _leave(client, auth_headers, feedback_url, 5, tags=["corte"])
        _leave(client, auth_headers, feedback_url, 4, source="email")
        _leave(client, auth_headers, feedback_url, 2, tags=["atraso"])

        response = client.get(feedback_url, headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 3
        assert data["average_rating"] == 3.67
        assert data["distribution"] == {"1": 0, "2": 1, "3": 0, "4": 1, "5": 1}

        assert client.get(f"{feedback_url}?min_rating=4", headers=auth_headers).json()["total"] == 2
        assert client.get(f"{feedback_url}?source=email", headers=auth_headers).json()["total"] == 1
        by_tag = client.get(f"{feedback_url}?tag=atraso", headers=auth_headers).json()
        assert by_tag["total"] == 1
        assert by_tag["items"][0]["rating"] == 2

    def test_filter_by_accented_tag(self, client, auth_headers, feedback_url):
        _leave(client, auth_headers, feedback_url, 3, tags=["atenção", "corte"])
        _leave(client, auth_headers, feedback_url, 5, tags=["corte"])

        response = client.get(feedback_url, headers=auth_headers, params={"tag": "atenção"})

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["tags"] == ["atenção", "corte"]
        assert data["average_rating"] == 3.0

    def test_create_is_rate_limited(self, client, auth_headers, feedback_url, monkeypatch):
        monkeypatch.setattr(settings, "API_RATE_LIMIT", 2)

        assert _leave(client, auth_headers, feedback_url, 5).status_code == status.HTTP_201_CREATED
        assert _leave(client, auth_headers, feedback_url, 4).status_code == status.HTTP_201_CREATED
        response = _leave(client, auth_headers, feedback_url, 3)

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert "Retry-After" in response.headers

    def test_update_and_delete(self, client, auth_headers, feedback_url):
        feedback = _leave(client, auth_headers, feedback_url, 3).json()

        updated = client.put(f"{feedback_url}/{feedback['id']}", headers=auth_headers, json={"rating": 4})
        assert updated.status_code == status.HTTP_200_OK
        assert updated.json()["rating"] == 4

        deleted = client.delete(f"{feedback_url}/{feedback['id']}", headers=auth_headers)
        assert deleted.status_code == status.HTTP_200_OK
        assert client.get(f"{feedback_url}/{feedback['id']}", headers=auth_headers).status_code == 404

    @pytest.mark.parametrize("field", ["message", "rating", "source"])
    def test_update_rejects_null(self, client, auth_headers, feedback_url, field):
        feedback = _leave(client, auth_headers, feedback_url, 3).json()

        response = client.put(f"{feedback_url}/{feedback['id']}", headers=auth_headers, json={field: None})

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_foreign_customer(self, client, other_headers, feedback_url):
        response = client.get(feedback_url, headers=other_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND
