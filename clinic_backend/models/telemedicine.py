"""Telemedicine session model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from clinic_backend.database import Base


SESSION_SCHEDULED = 'scheduled'
SESSION_IN_PROGRESS = 'in-progress'
SESSION_COMPLETED = 'completed'
SESSION_CANCELLED = 'cancelled'


class TelemedicineSession(Base):
    """Remote-visit companion of a telemedicine appointment.

    The primary key mirrors the appointment id, so there is never more than one
    session per appointment.
    """
    __tablename__ = "telemedicine_sessions"

    id = Column(Integer, primary_key=True, autoincrement=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True, nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    status = Column(String, nullable=False, default=SESSION_SCHEDULED)
    meeting_id = Column(String, nullable=True)
    session_url = Column(String, nullable=True)
    scheduled_time = Column(DateTime, nullable=True)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    session_summary = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
