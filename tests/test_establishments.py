"""
Unit tests for establishment endpoints
"""
import io
import pytest
from fastapi import status
from PIL import Image
from app.core.config import settings
from app.models.models import Appointment, Customer, Establishment


def _png_bytes(size=(800, 400), color=(200, 30, 30)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.mark.unit
class TestEstablishmentCRUD:

    def test_create_generates_slug(self, client, auth_headers):
        response = client.post(
            "/api/v1/establishments/",
            headers=auth_headers,
            json={
                "name": "Barbearia São João",
                "city": "Recife",
                "state": "PE",
                "phone": "(81) 3333-4444",
                "opening_hour": 8,
                "closing_hour": 20,
                "max_concurrent_slots": 3
            }
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["slug"] == "barbearia-sao-joao"
        assert data["max_concurrent_slots"] == 3

    def test_duplicate_name_gets_numbered_slug(self, client, auth_headers, test_establishment):
        response = client.post(
            "/api/v1/establishments/",
            headers=auth_headers,
            json={"name": "Test Barbershop"}
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["slug"] == "test-barbershop-1"

    def test_create_rejects_inverted_hours(self, client, auth_headers):
        response = client.post(
            "/api/v1/establishments/",
            headers=auth_headers,
            json={"name": "Night Owl", "opening_hour": 18, "closing_hour": 9}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_create_unauthorized(self, client):
        response = client.post("/api/v1/establishments/", json={"name": "Nope"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_list_with_search(self, client, auth_headers, test_establishment):
        client.post("/api/v1/establishments/", headers=auth_headers, json={"name": "Studio Beleza", "city": "Curitiba"})

        response = client.get("/api/v1/establishments/?search=studio", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["name"] == "Studio Beleza"

    def test_list_filter_by_city(self, client, auth_headers, test_establishment):
        response = client.get("/api/v1/establishments/?city=são paulo", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["total"] == 1

    def test_list_invalid_sort(self, client, auth_headers):
        response = client.get("/api/v1/establishments/?sort_by=password", headers=auth_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_get_with_counts(self, client, auth_headers, test_establishment, test_service, test_professional):
        response = client.get(f"/api/v1/establishments/{test_establishment.id}", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["services_count"] == 1
        assert data["professionals_count"] == 1
        assert data["appointments_count"] == 0

    def test_other_tenant_cannot_read(self, client, other_headers, test_establishment):
        response = client.get(f"/api/v1/establishments/{test_establishment.id}", headers=other_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_update_renames_slug(self, client, auth_headers, test_establishment):
        response = client.put(
            f"/api/v1/establishments/{test_establishment.id}",
            headers=auth_headers,
            json={"name": "Corte Fino"}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["slug"] == "corte-fino"

    def test_update_rejects_closing_before_opening(self, client, auth_headers, test_establishment):
        response = client.put(
            f"/api/v1/establishments/{test_establishment.id}",
            headers=auth_headers,
            json={"closing_hour": 8}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    @pytest.mark.parametrize("field", ["name", "opening_hour", "closing_hour", "max_concurrent_slots", "status"])
    def test_update_rejects_null_for_required_fields(self, client, auth_headers, test_establishment, field):
        response = client.put(
            f"/api/v1/establishments/{test_establishment.id}",
            headers=auth_headers,
            json={field: None}
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_update_clears_optional_field(self, client, auth_headers, test_establishment):
        response = client.put(
            f"/api/v1/establishments/{test_establishment.id}",
            headers=auth_headers,
            json={"address": None}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["address"] is None

    def test_create_is_rate_limited(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(settings, "API_RATE_LIMIT", 1)

        first = client.post("/api/v1/establishments/", headers=auth_headers, json={"name": "Primeira"})
        second = client.post("/api/v1/establishments/", headers=auth_headers, json={"name": "Segunda"})

        assert first.status_code == status.HTTP_201_CREATED
        assert second.status_code == status.HTTP_429_TOO_MANY_REQUESTS

    def test_delete_refused_with_active_appointments(
        self, client, db, auth_headers, test_user, test_establishment, test_customer, test_service, at
    ):
        db.add(Appointment(
            user_id=test_user.id,
            establishment_id=test_establishment.id,
            customer_id=test_customer.id,
            service_id=test_service.id,
            date=at(10),
            slot_number=1,
            status="scheduled"
        ))
        db.commit()

        response = client.delete(f"/api/v1/establishments/{test_establishment.id}", headers=auth_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "active appointment" in response.json()["detail"]

    def test_delete_keeps_customers(self, client, db, auth_headers, test_establishment, test_customer):
        response = client.delete(f"/api/v1/establishments/{test_establishment.id}", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        db.expire_all()
        assert db.query(Establishment).count() == 0
        customer = db.query(Customer).filter(Customer.id == test_customer.id).first()
        assert customer is not None
        assert customer.establishment_id is None


@pytest.mark.unit
class TestEstablishmentConfig:

    def test_defaults(self, client, auth_headers, test_establishment):
        response = client.get(f"/api/v1/establishments/{test_establishment.id}/config", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["theme"]["primaryColor"] == "#0f172a"
        assert data["labels"]["customer"] == "Cliente"

    def test_patch_is_shallow_merge(self, client, auth_headers, test_establishment):
        response = client.patch(
            f"/api/v1/establishments/{test_establishment.id}/config",
            headers=auth_headers,
            json={"theme": {"primaryColor": "#ff0000"}, "welcomeMessage": "Olá!"}
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["theme"] == {"primaryColor": "#ff0000"}
        assert data["welcomeMessage"] == "Olá!"
        assert data["labels"]["service"] == "Serviço"

        again = client.get(f"/api/v1/establishments/{test_establishment.id}/config", headers=auth_headers)
        assert again.json()["welcomeMessage"] == "Olá!"


@pytest.mark.unit
class TestEstablishmentMedia:

    def test_upload_logo(self, client, db, auth_headers, test_establishment):
        response = client.post(
            f"/api/v1/establishments/{test_establishment.id}/logo",
            headers=auth_headers,
            files={"file": ("logo.png", _png_bytes(), "image/png")}
        )

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["url"].startswith("/uploads/logo/")
        assert set(data["upload"]["extra"]["thumbnails"]) == {"small", "medium", "large"}

        db.refresh(test_establishment)
        assert test_establishment.logo_url == data["url"]

    def test_cover_rejects_documents(self, client, auth_headers, test_establishment):
        response = client.post(
            f"/api/v1/establishments/{test_establishment.id}/cover",
            headers=auth_headers,
            files={"file": ("cover.pdf", b"%PDF-1.4 test", "application/pdf")}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.unit
class TestEstablishmentStats:

    def test_stats(self, client, db, auth_headers, test_user, test_establishment, test_customer, test_service, at):
        for hour, state in ((10, "completed"), (11, "completed"), (12, "cancelled"), (13, "scheduled")):
            db.add(Appointment(
                user_id=test_user.id,
                establishment_id=test_establishment.id,
                customer_id=test_customer.id,
                service_id=test_service.id,
                date=at(hour, days=-1),
                slot_number=1,
                status=state
            ))
        db.commit()

        response = client.get(f"/api/v1/establishments/{test_establishment.id}/stats", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["customers"] == 1
        assert data["services"] == 1
        assert data["appointments"]["total"] == 4
        assert data["appointments"]["completed"] == 2
        assert data["appointments"]["cancelled"] == 1
        assert data["revenue"] == 2 * test_service.price
