"""
Unit tests for appointment endpoints
"""
import pytest
from datetime import datetime, timedelta
from fastapi import status
from app.models.models import ActivityLog, Appointment, CustomerLoyalty, LoyaltyTransaction


def _book(client, headers, customer, service, start, professional=None):
    payload = {
        "customer_id": customer.id,
        "service_id": service.id,
        "date": start.isoformat()
    }
    if professional is not None:
        payload["professional_id"] = professional.id
    return client.post("/api/v1/appointments/", headers=headers, json=payload)


@pytest.fixture
def loyalty_program(db, test_user, test_customer):
    now = datetime.utcnow()
    loyalty = CustomerLoyalty(
        user_id=test_user.id,
        customer_id=test_customer.id,
        points=0,
        level="BRONZE",
        current_value=0,
        target_value=100000,
        start_date=now - timedelta(days=1),
        end_date=now + timedelta(days=365),
        status="ACTIVE"
    )
    db.add(loyalty)
    db.commit()
    db.refresh(loyalty)
    return loyalty


@pytest.mark.unit
class TestAppointmentBooking:

    def test_create_appointment(self, client, db, auth_headers, test_customer, test_service, at):
        response = _book(client, auth_headers, test_customer, test_service, at(10))

        assert response.status_code == status.HTTP_201_CREATED
        data = response.json()
        assert data["status"] == "scheduled"
        assert data["slot_number"] == 1
        assert data["date"].startswith(at(10).isoformat()[:16])

        log = db.query(ActivityLog).filter(
            ActivityLog.entity_type == "appointment",
            ActivityLog.action == "created"
        ).first()
        assert log is not None

    def test_timezone_is_normalized_to_utc(self, client, auth_headers, test_customer, test_service, at):
        local = at(10).replace(tzinfo=None)
        response = client.post(
            "/api/v1/appointments/",
            headers=auth_headers,
            json={
                "customer_id": test_customer.id,
                "service_id": test_service.id,
                "date": f"{(local - timedelta(hours=3)).isoformat()}-03:00"
            }
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["date"].startswith(local.isoformat()[:16])

    def test_second_booking_takes_next_slot(self, client, auth_headers, test_customer, test_service, at):
        _book(client, auth_headers, test_customer, test_service, at(10))

        response = _book(client, auth_headers, test_customer, test_service, at(10, 15))

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["slot_number"] == 2

    def test_fully_booked(self, client, auth_headers, test_customer, test_service, at):
        _book(client, auth_headers, test_customer, test_service, at(10))
        _book(client, auth_headers, test_customer, test_service, at(10))

        response = _book(client, auth_headers, test_customer, test_service, at(10, 20))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "All slots are fully booked for this time"

    def test_touching_appointments_share_a_slot(self, client, auth_headers, test_customer, test_service, at):
        _book(client, auth_headers, test_customer, test_service, at(10))
        _book(client, auth_headers, test_customer, test_service, at(10))

        response = _book(client, auth_headers, test_customer, test_service, at(10, 30))

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["slot_number"] == 1

    def test_outside_hours(self, client, auth_headers, test_customer, test_service, at):
        response = _book(client, auth_headers, test_customer, test_service, at(7))

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_beyond_closing(self, client, auth_headers, test_customer, test_service, at):
        response = _book(client, auth_headers, test_customer, test_service, at(17, 45))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "closing time" in response.json()["detail"]

    def test_professional_double_booking(
        self, client, auth_headers, test_customer, test_service, test_professional, at
    ):
        _book(client, auth_headers, test_customer, test_service, at(10), test_professional)

        response = _book(client, auth_headers, test_customer, test_service, at(10, 15), test_professional)

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Professional already has an appointment at this time"

    def test_inactive_service(self, client, db, auth_headers, test_customer, test_service, at):
        test_service.status = "inactive"
        db.commit()

        response = _book(client, auth_headers, test_customer, test_service, at(10))

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_foreign_customer(self, client, other_headers, test_customer, test_service, at):
        response = _book(client, other_headers, test_customer, test_service, at(10))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_list_filters(self, client, auth_headers, test_customer, test_service, at):
        _book(client, auth_headers, test_customer, test_service, at(10))
        _book(client, auth_headers, test_customer, test_service, at(11, days=2))

        response = client.get(
            f"/api/v1/appointments/?start_date={at(0, days=2).isoformat()}",
            headers=auth_headers
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["total"] == 1


@pytest.mark.unit
class TestAppointmentLifecycle:

    def test_confirm_then_complete(self, client, auth_headers, test_customer, test_service, at):
        appointment_id = _book(client, auth_headers, test_customer, test_service, at(10)).json()["id"]

        confirmed = client.post(
            f"/api/v1/appointments/{appointment_id}/status",
            headers=auth_headers,
            json={"status": "confirmed"}
        )
        assert confirmed.status_code == status.HTTP_200_OK

        completed = client.post(
            f"/api/v1/appointments/{appointment_id}/status",
            headers=auth_headers,
            json={"status": "completed", "message": "Cliente satisfeito"}
        )
        assert completed.status_code == status.HTTP_200_OK
        assert completed.json()["status_message"] == "Cliente satisfeito"

    def test_terminal_status_cannot_change(self, client, auth_headers, test_customer, test_service, at):
        appointment_id = _book(client, auth_headers, test_customer, test_service, at(10)).json()["id"]
        client.post(f"/api/v1/appointments/{appointment_id}/status", headers=auth_headers, json={"status": "cancelled"})

        response = client.post(
            f"/api/v1/appointments/{appointment_id}/status",
            headers=auth_headers,
            json={"status": "confirmed"}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_cancelling_frees_the_slot(self, client, auth_headers, test_customer, test_service, at):
        first = _book(client, auth_headers, test_customer, test_service, at(10)).json()["id"]
        _book(client, auth_headers, test_customer, test_service, at(10))
        client.post(f"/api/v1/appointments/{first}/status", headers=auth_headers, json={"status": "cancelled"})

        response = _book(client, auth_headers, test_customer, test_service, at(10))

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["slot_number"] == 1

    def test_completion_credits_loyalty_once(
        self, client, db, auth_headers, test_customer, test_service, loyalty_program, at
    ):
        appointment_id = _book(client, auth_headers, test_customer, test_service, at(10)).json()["id"]

        response = client.post(
            f"/api/v1/appointments/{appointment_id}/status",
            headers=auth_headers,
            json={"status": "completed"}
        )

        assert response.status_code == status.HTTP_200_OK
        db.refresh(loyalty_program)
        assert loyalty_program.points == 50
        assert loyalty_program.current_value == 5000
        transaction = db.query(LoyaltyTransaction).filter(LoyaltyTransaction.loyalty_id == loyalty_program.id).one()
        assert transaction.source == "purchase"
        assert transaction.reference_id == f"appointment:{appointment_id}"

    def test_completion_without_program(self, client, db, auth_headers, test_customer, test_service, at):
        appointment_id = _book(client, auth_headers, test_customer, test_service, at(10)).json()["id"]

        response = client.post(
            f"/api/v1/appointments/{appointment_id}/status",
            headers=auth_headers,
            json={"status": "completed"}
        )

        assert response.status_code == status.HTTP_200_OK
        assert db.query(LoyaltyTransaction).count() == 0


@pytest.mark.unit
class TestAppointmentChanges:

    def test_reschedule(self, client, auth_headers, test_customer, test_service, at):
        appointment_id = _book(client, auth_headers, test_customer, test_service, at(10)).json()["id"]

        response = client.patch(
            f"/api/v1/appointments/{appointment_id}/reschedule",
            headers=auth_headers,
            json={"date": at(14).isoformat()}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["date"].startswith(at(14).isoformat()[:16])

    def test_reschedule_into_own_time_is_allowed(self, client, auth_headers, test_customer, test_service, at):
        appointment_id = _book(client, auth_headers, test_customer, test_service, at(10)).json()["id"]
        _book(client, auth_headers, test_customer, test_service, at(10))

        response = client.patch(
            f"/api/v1/appointments/{appointment_id}/reschedule",
            headers=auth_headers,
            json={"date": at(10, 15).isoformat()}
        )

        assert response.status_code == status.HTTP_200_OK

    def test_reschedule_completed(self, client, db, auth_headers, test_customer, test_service, at):
        appointment_id = _book(client, auth_headers, test_customer, test_service, at(10)).json()["id"]
        client.post(f"/api/v1/appointments/{appointment_id}/status", headers=auth_headers, json={"status": "completed"})

        response = client.patch(
            f"/api/v1/appointments/{appointment_id}/reschedule",
            headers=auth_headers,
            json={"date": at(14).isoformat()}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_assign_busy_professional(
        self, client, auth_headers, test_customer, test_service, test_professional, at
    ):
        _book(client, auth_headers, test_customer, test_service, at(10), test_professional)
        other = _book(client, auth_headers, test_customer, test_service, at(10)).json()["id"]

        response = client.put(
            f"/api/v1/appointments/{other}",
            headers=auth_headers,
            json={"professional_id": test_professional.id}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_update_notes(self, client, auth_headers, test_customer, test_service, at):
        appointment_id = _book(client, auth_headers, test_customer, test_service, at(10)).json()["id"]

        response = client.put(
            f"/api/v1/appointments/{appointment_id}",
            headers=auth_headers,
            json={"notes": "Trazer referência"}
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["notes"] == "Trazer referência"

    def test_delete(self, client, db, auth_headers, test_customer, test_service, at):
        appointment_id = _book(client, auth_headers, test_customer, test_service, at(10)).json()["id"]

        response = client.delete(f"/api/v1/appointments/{appointment_id}", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        assert db.query(Appointment).count() == 0
