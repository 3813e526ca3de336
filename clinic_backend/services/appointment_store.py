"""Data access for appointments and their telemedicine sessions."""

from datetime import datetime

from sqlalchemy import false, func
from sqlalchemy.orm import Query, Session

from clinic_backend.errors import NotFoundError
from clinic_backend.models.appointment import Appointment
from clinic_backend.models.availability import AvailabilitySlot
from clinic_backend.models.telemedicine import SESSION_SCHEDULED, TelemedicineSession
from clinic_backend.models.user import is_patient, is_platform, is_provider


def load_with_slot(db: Session, appointment_id: int) -> tuple[Appointment, AvailabilitySlot | None]:
    row = db.query(Appointment, AvailabilitySlot).outerjoin(
        AvailabilitySlot,
        Appointment.slot_id == AvailabilitySlot.id,
    ).filter(Appointment.id == appointment_id).first()

    if row is None:
        raise NotFoundError('Appointment not found.', code='APPOINTMENT_NOT_FOUND')
    return row[0], row[1]


def visible_appointments(db: Session, caller_id: int, caller_role: str) -> Query:
    """Appointments joined with their slot, scoped to what the caller may see."""
    query = db.query(Appointment, AvailabilitySlot).outerjoin(
        AvailabilitySlot,
        Appointment.slot_id == AvailabilitySlot.id,
    )
    if is_platform(caller_role):
        return query
    if is_patient(caller_role):
        return query.filter(Appointment.patient_id == caller_id)
    if is_provider(caller_role):
        return query.filter(Appointment.provider_id == caller_id)
    return query.filter(false())


def get_visible(db: Session, appointment_id: int, caller_id: int, caller_role: str) -> tuple[Appointment, AvailabilitySlot | None]:
    row = visible_appointments(db, caller_id, caller_role).filter(Appointment.id == appointment_id).first()
    if row is None:
        raise NotFoundError('Appointment not found.', code='APPOINTMENT_NOT_FOUND')
    return row[0], row[1]


def list_visible(db: Session, caller_id: int, caller_role: str) -> list[tuple[Appointment, AvailabilitySlot | None]]:
    return visible_appointments(db, caller_id, caller_role).order_by(
        func.coalesce(AvailabilitySlot.start_time, Appointment.created_at).desc(),
    ).all()


def list_for_provider_between(
    db: Session,
    provider_id: int,
    range_start: datetime,
    range_end: datetime,
    statuses: tuple[str, ...],
) -> list[tuple[Appointment, AvailabilitySlot]]:
    return db.query(Appointment, AvailabilitySlot).join(
        AvailabilitySlot,
        Appointment.slot_id == AvailabilitySlot.id,
    ).filter(
        Appointment.provider_id == provider_id,
        Appointment.status.in_(statuses),
        AvailabilitySlot.start_time >= range_start,
        AvailabilitySlot.start_time < range_end,
    ).order_by(AvailabilitySlot.start_time.asc()).all()


def get_session(db: Session, appointment_id: int) -> TelemedicineSession | None:
    return db.get(TelemedicineSession, appointment_id)


def ensure_telemedicine_session(db: Session, appointment: Appointment, scheduled_time: datetime) -> TelemedicineSession:
    """Create the session companion of ``appointment`` unless it already exists."""
    existing = get_session(db, appointment.id)
    if existing is not None:
        return existing

    session = TelemedicineSession(
        id=appointment.id,
        appointment_id=appointment.id,
        patient_id=appointment.patient_id,
        doctor_id=appointment.provider_id,
        status=SESSION_SCHEDULED,
        scheduled_time=scheduled_time,
    )
    db.add(session)
    db.flush()
    return session
