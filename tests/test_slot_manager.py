"""
Unit tests for slot conflict detection and availability
"""
import pytest
from datetime import datetime, timedelta
from app.models.models import Appointment
from app.utils.slot_manager import (
    check_time_conflict,
    find_available_slot,
    generate_time_slots,
    get_availability,
    parse_time_to_minutes,
    validate_appointment_time,
)


def _book(db, user, establishment, customer, service, start, slot_number=1, status="scheduled", professional=None):
    appointment = Appointment(
        user_id=user.id,
        establishment_id=establishment.id,
        customer_id=customer.id,
        service_id=service.id,
        professional_id=professional.id if professional else None,
        date=start,
        slot_number=slot_number,
        status=status
    )
    db.add(appointment)
    db.commit()
    db.refresh(appointment)
    return appointment


@pytest.mark.unit
class TestTimeConflict:

    def test_overlap(self):
        base = datetime(2030, 1, 1, 10, 0)
        assert check_time_conflict(base, base + timedelta(minutes=30), base + timedelta(minutes=15), base + timedelta(minutes=45))

    def test_touching_intervals_do_not_conflict(self):
        base = datetime(2030, 1, 1, 10, 0)
        assert not check_time_conflict(base, base + timedelta(minutes=30), base + timedelta(minutes=30), base + timedelta(minutes=60))
        assert not check_time_conflict(base + timedelta(minutes=30), base + timedelta(minutes=60), base, base + timedelta(minutes=30))

    def test_containment(self):
        base = datetime(2030, 1, 1, 10, 0)
        assert check_time_conflict(base, base + timedelta(hours=2), base + timedelta(minutes=30), base + timedelta(minutes=45))


@pytest.mark.unit
class TestSlotAssignment:

    def test_first_free_slot(self, db, test_user, test_establishment, test_customer, test_service, at):
        start = at(10)
        assert find_available_slot(db, test_establishment, start, 30) == 1

        _book(db, test_user, test_establishment, test_customer, test_service, start, slot_number=1)
        assert find_available_slot(db, test_establishment, start, 30) == 2

        _book(db, test_user, test_establishment, test_customer, test_service, start, slot_number=2)
        assert find_available_slot(db, test_establishment, start, 30) is None

    def test_cancelled_appointments_free_the_slot(self, db, test_user, test_establishment, test_customer, test_service, at):
        start = at(10)
        _book(db, test_user, test_establishment, test_customer, test_service, start, slot_number=1, status="cancelled")
        _book(db, test_user, test_establishment, test_customer, test_service, start, slot_number=2, status="completed")

        assert find_available_slot(db, test_establishment, start, 30) == 1

    def test_excluded_appointment_is_ignored(self, db, test_user, test_establishment, test_customer, test_service, at):
        start = at(10)
        first = _book(db, test_user, test_establishment, test_customer, test_service, start, slot_number=1)
        _book(db, test_user, test_establishment, test_customer, test_service, start, slot_number=2)

        assert find_available_slot(db, test_establishment, start, 30, exclude_appointment_id=first.id) == 1


@pytest.mark.unit
class TestValidateAppointmentTime:

    def test_before_opening(self, db, test_establishment, at):
        ok, message, slot = validate_appointment_time(db, test_establishment, at(8, 30), 30)
        assert not ok
        assert "between 9:00 and 18:00" in message
        assert slot is None

    def test_past_closing(self, db, test_establishment, at):
        ok, message, _ = validate_appointment_time(db, test_establishment, at(17, 45), 30)
        assert not ok
        assert "closing time" in message

    def test_ends_exactly_at_closing(self, db, test_establishment, at):
        ok, message, slot = validate_appointment_time(db, test_establishment, at(17, 30), 30)
        assert ok
        assert message is None
        assert slot == 1

    def test_professional_conflict(self, db, test_user, test_establishment, test_customer, test_service, test_professional, at):
        _book(db, test_user, test_establishment, test_customer, test_service, at(10), professional=test_professional)

        ok, message, _ = validate_appointment_time(
            db, test_establishment, at(10, 15), 30, professional_id=test_professional.id
        )
        assert not ok
        assert message == "Professional already has an appointment at this time"

    def test_fully_booked(self, db, test_user, test_establishment, test_customer, test_service, at):
        _book(db, test_user, test_establishment, test_customer, test_service, at(10), slot_number=1)
        _book(db, test_user, test_establishment, test_customer, test_service, at(10), slot_number=2)

        ok, message, _ = validate_appointment_time(db, test_establishment, at(10, 15), 30)
        assert not ok
        assert message == "All slots are fully booked for this time"


@pytest.mark.unit
class TestAvailability:

    def test_generate_time_slots_fit_before_end(self):
        day = datetime(2030, 1, 1).date()
        slots = generate_time_slots(day, 9 * 60, 11 * 60, 30, 60)
        assert [s.strftime("%H:%M") for s in slots] == ["09:00", "09:30", "10:00"]

    def test_generate_time_slots_until_midnight(self):
        day = datetime(2030, 1, 1).date()
        slots = generate_time_slots(day, 23 * 60, 24 * 60, 30, 30)
        assert [s.strftime("%H:%M") for s in slots] == ["23:00", "23:30"]

    def test_unavailable_when_all_slots_taken(self, db, test_user, test_establishment, test_customer, test_service, at):
        first = _book(db, test_user, test_establishment, test_customer, test_service, at(10), slot_number=1)
        _book(db, test_user, test_establishment, test_customer, test_service, at(10), slot_number=2)
        day = at(10).date()

        availability = get_availability(db, test_establishment, 30, day, day, 9 * 60, 12 * 60, 30)
        slots = {s["start"].strftime("%H:%M"): s for s in availability[day.isoformat()]}

        assert slots["09:30"]["available"] is True
        assert slots["10:00"]["available"] is False
        assert slots["10:00"]["conflicting_appointment"]["id"] == first.id
        assert slots["10:00"]["conflicting_appointment"]["customer_name"] == test_customer.name
        assert slots["10:30"]["available"] is True
        assert "conflicting_appointment" not in slots["10:30"]

    def test_one_busy_slot_keeps_time_available(self, db, test_user, test_establishment, test_customer, test_service, at):
        _book(db, test_user, test_establishment, test_customer, test_service, at(10), slot_number=1)
        day = at(10).date()

        availability = get_availability(db, test_establishment, 30, day, day, 10 * 60, 11 * 60, 30)

        assert all(s["available"] for s in availability[day.isoformat()])

    def test_slots_above_capacity_are_ignored(self, db, test_user, test_establishment, test_customer, test_service, at):
        # Booked while the establishment still had three chairs
        _book(db, test_user, test_establishment, test_customer, test_service, at(10), slot_number=1)
        _book(db, test_user, test_establishment, test_customer, test_service, at(10), slot_number=3)
        day = at(10).date()

        availability = get_availability(db, test_establishment, 30, day, day, 10 * 60, 11 * 60, 30)
        slots = {s["start"].strftime("%H:%M"): s for s in availability[day.isoformat()]}

        assert slots["10:00"]["available"] is True
        assert find_available_slot(db, test_establishment, at(10), 30) == 2

    def test_covers_every_day_of_range(self, db, test_establishment, at):
        first_day = at(9).date()
        last_day = at(9, days=3).date()

        availability = get_availability(db, test_establishment, 30, first_day, last_day, 9 * 60, 10 * 60, 30)

        assert len(availability) == 3
        assert all(len(slots) == 2 for slots in availability.values())


@pytest.mark.unit
class TestParseTime:

    @pytest.mark.parametrize("value,expected", [("00:00", 0), ("09:30", 570), ("24:00", 1440)])
    def test_valid(self, value, expected):
        assert parse_time_to_minutes(value) == expected

    @pytest.mark.parametrize("value", ["24:30", "12:60", "25:00", "noon", "9"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_time_to_minutes(value)
