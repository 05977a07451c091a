"""
Slot management utilities for the multi-slot booking system.

Each establishment has `max_concurrent_slots` parallel calendars. An
appointment occupies one slot over the half-open interval
[date, date + service duration); two intervals that only touch do not
conflict. A professional can only attend one active appointment at a time.
"""
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from app.models.models import Appointment, Establishment

# Statuses that hold a slot when booking
ACTIVE_STATUSES = ["scheduled", "confirmed"]


def is_within_hours(establishment: Establishment, appointment_start: datetime) -> bool:
    """Check if the appointment starts within the establishment operating hours."""
    return establishment.opening_hour <= appointment_start.hour < establishment.closing_hour


def get_appointment_end_time(appointment_start: datetime, duration_minutes: int) -> datetime:
    """Calculate when an appointment ends."""
    return appointment_start + timedelta(minutes=duration_minutes)


def get_closing_time(establishment: Establishment, day: date) -> datetime:
    # closing_hour may be 24, meaning midnight of the next day
    return datetime.combine(day, time()) + timedelta(hours=establishment.closing_hour)


def check_time_conflict(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """
    Check if two half-open time ranges overlap.

    Returns:
        True if there's a conflict (overlap), False otherwise
    """
    if end1 <= start2 or end2 <= start1:
        return False
    return True


def appointment_interval(appointment: Appointment) -> Tuple[datetime, datetime]:
    return appointment.date, get_appointment_end_time(appointment.date, appointment.service.duration)


def get_day_appointments(
    db: Session,
    establishment_id: int,
    start: datetime,
    end: datetime,
    statuses: Optional[List[str]] = None,
    exclude_appointment_id: Optional[int] = None
) -> List[Appointment]:
    """
    Appointments of an establishment that may overlap [start, end).

    Appointments starting up to one day before `start` are loaded too, so
    long services that began earlier are taken into account.
    """
    query = db.query(Appointment).options(
        joinedload(Appointment.service),
        joinedload(Appointment.customer)
    ).filter(
        Appointment.establishment_id == establishment_id,
        Appointment.date >= start - timedelta(days=1),
        Appointment.date < end,
    )
    if statuses is not None:
        query = query.filter(Appointment.status.in_(statuses))
    else:
        query = query.filter(Appointment.status != "cancelled")
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)
    return query.order_by(Appointment.date.asc(), Appointment.id.asc()).all()


def overlapping(appointments: List[Appointment], start: datetime, end: datetime) -> List[Appointment]:
    result = []
    for existing in appointments:
        existing_start, existing_end = appointment_interval(existing)
        if check_time_conflict(start, end, existing_start, existing_end):
            result.append(existing)
    return result


def find_available_slot(
    db: Session,
    establishment: Establishment,
    appointment_start: datetime,
    duration_minutes: int,
    exclude_appointment_id: Optional[int] = None
) -> Optional[int]:
    """
    Find the first available slot for a given time range.

    Checks each slot (1 to max_concurrent_slots) and returns the first one
    without time conflicts. Returns None if all slots are booked.
    """
    appointment_end = get_appointment_end_time(appointment_start, duration_minutes)
    existing = get_day_appointments(
        db,
        establishment.id,
        appointment_start,
        appointment_end,
        statuses=ACTIVE_STATUSES,
        exclude_appointment_id=exclude_appointment_id
    )
    taken = {a.slot_number for a in overlapping(existing, appointment_start, appointment_end)}

    for slot_num in range(1, (establishment.max_concurrent_slots or 1) + 1):
        if slot_num not in taken:
            return slot_num
    return None


def find_professional_conflict(
    db: Session,
    professional_id: int,
    appointment_start: datetime,
    duration_minutes: int,
    exclude_appointment_id: Optional[int] = None
) -> Optional[Appointment]:
    """Return an active appointment of the professional that overlaps the requested range."""
    appointment_end = get_appointment_end_time(appointment_start, duration_minutes)
    query = db.query(Appointment).options(joinedload(Appointment.service)).filter(
        Appointment.professional_id == professional_id,
        Appointment.status.in_(ACTIVE_STATUSES),
        Appointment.date >= appointment_start - timedelta(days=1),
        Appointment.date < appointment_end,
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    conflicts = overlapping(query.order_by(Appointment.date.asc()).all(), appointment_start, appointment_end)
    return conflicts[0] if conflicts else None


def validate_appointment_time(
    db: Session,
    establishment: Establishment,
    appointment_start: datetime,
    duration_minutes: int,
    professional_id: Optional[int] = None,
    exclude_appointment_id: Optional[int] = None
) -> Tuple[bool, Optional[str], Optional[int]]:
    """
    Validate if an appointment can be booked at the requested time.

    Returns:
        Tuple of (is_valid, error_message, assigned_slot_number)
    """
    if not is_within_hours(establishment, appointment_start):
        return False, (
            f"Appointment time must be between {establishment.opening_hour}:00 "
            f"and {establishment.closing_hour}:00"
        ), None

    appointment_end = get_appointment_end_time(appointment_start, duration_minutes)
    if appointment_end > get_closing_time(establishment, appointment_start.date()):
        return False, f"Appointment would extend beyond closing time ({establishment.closing_hour}:00)", None

    if professional_id is not None:
        conflict = find_professional_conflict(
            db, professional_id, appointment_start, duration_minutes, exclude_appointment_id
        )
        if conflict is not None:
            return False, "Professional already has an appointment at this time", None

    slot_number = find_available_slot(
        db, establishment, appointment_start, duration_minutes, exclude_appointment_id
    )
    if slot_number is None:
        return False, "All slots are fully booked for this time", None

    return True, None, slot_number


def generate_time_slots(
    day: date,
    start_minute: int,
    end_minute: int,
    interval_minutes: int,
    duration_minutes: int
) -> List[datetime]:
    """
    Start times every `interval_minutes` between two offsets (minutes after
    midnight) where the service still ends by `end_minute`.
    """
    slots = []
    midnight = datetime.combine(day, time())
    current = midnight + timedelta(minutes=start_minute)
    end = midnight + timedelta(minutes=end_minute)
    while current + timedelta(minutes=duration_minutes) <= end:
        slots.append(current)
        current += timedelta(minutes=interval_minutes)
    return slots


def get_availability(
    db: Session,
    establishment: Establishment,
    duration_minutes: int,
    start_date: date,
    end_date: date,
    start_minute: int,
    end_minute: int,
    interval_minutes: int
) -> Dict[str, List[dict]]:
    """
    Availability grid per date (ISO string) for a service duration.

    A slot is unavailable when every concurrent slot of the establishment
    overlaps a non-cancelled appointment; the first overlapping appointment
    is then reported as the conflict.
    """
    max_slots = establishment.max_concurrent_slots or 1
    appointments = get_day_appointments(
        db,
        establishment.id,
        datetime.combine(start_date, time()),
        datetime.combine(end_date + timedelta(days=1), time()),
    )

    availability = {}
    day = start_date
    while day <= end_date:
        day_slots = []
        for slot_start in generate_time_slots(day, start_minute, end_minute, interval_minutes, duration_minutes):
            slot_end = get_appointment_end_time(slot_start, duration_minutes)
            # Slots above the current capacity are left over from a larger setting
            conflicts = [a for a in overlapping(appointments, slot_start, slot_end) if 1 <= a.slot_number <= max_slots]
            taken = {a.slot_number for a in conflicts}
            available = len(taken) < max_slots

            slot = {"start": slot_start, "end": slot_end, "available": available}
            if not available:
                first = conflicts[0]
                slot["conflicting_appointment"] = {
                    "id": first.id,
                    "date": first.date,
                    "end": appointment_interval(first)[1],
                    "status": first.status,
                    "slot_number": first.slot_number,
                    "customer_name": first.customer.name if first.customer else None,
                    "service_name": first.service.name if first.service else None,
                }
            day_slots.append(slot)
        availability[day.isoformat()] = day_slots
        day += timedelta(days=1)
    return availability


def parse_time_to_minutes(value: str) -> int:
    """Parse "HH:MM" into minutes after midnight. "24:00" is accepted as end of day."""
    try:
        hours, minutes = value.split(":")
        hours, minutes = int(hours), int(minutes)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")

    if not (0 <= minutes < 60) or not (0 <= hours < 24 or (hours == 24 and minutes == 0)):
        raise ValueError(f"Invalid time '{value}', expected HH:MM")
    return hours * 60 + minutes
