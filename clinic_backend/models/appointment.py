"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from clinic_backend.database import Base


STATUS_BOOKED = 'booked'
STATUS_IN_PROGRESS = 'in-progress'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
STATUS_NO_SHOW = 'no-show'
STATUS_MISSED = 'missed'
STATUS_LATE = 'late'
STATUS_RESCHEDULED = 'rescheduled'
STATUS_ERROR = 'error'

APPOINTMENT_STATUSES = (
    STATUS_BOOKED,
    STATUS_IN_PROGRESS,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_NO_SHOW,
    STATUS_MISSED,
    STATUS_LATE,
    STATUS_RESCHEDULED,
    STATUS_ERROR,
)

# Statuses whose appointment owns its slot.
SLOT_HOLDING_STATUSES = frozenset({STATUS_BOOKED, STATUS_IN_PROGRESS, STATUS_LATE, STATUS_RESCHEDULED})
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED})

TYPE_IN_PERSON = 'in-person'
TYPE_TELEMEDICINE = 'telemedicine'
APPOINTMENT_TYPES = (TYPE_IN_PERSON, TYPE_TELEMEDICINE)


class Appointment(Base):
    """Represents a booked appointment between a patient and a provider."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=True)
    slot_id = Column(Integer, ForeignKey("availability_slots.id"), nullable=False)
    status = Column(String, nullable=False, default=STATUS_BOOKED)
    appointment_type = Column(String, nullable=False, default=TYPE_IN_PERSON)
    reason = Column(String, nullable=True)
    specialty = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    clinical_notes = Column(Text, nullable=True)
    check_in_time = Column(DateTime, nullable=True)
    check_out_time = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        Index('idx_appointments_patient', 'patient_id'),
        Index('idx_appointments_provider_status', 'provider_id', 'status'),
        Index('idx_appointments_slot', 'slot_id'),
    )
