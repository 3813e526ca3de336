"""Availability slot model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String
from clinic_backend.database import Base


PROVIDER_KINDS = ('doctor', 'nurse', 'lab')


class AvailabilitySlot(Base):
    """A provider's time interval that at most one active appointment may hold."""
    __tablename__ = "availability_slots"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    provider_kind = Column(String, nullable=False, default='doctor')
    clinic_id = Column(Integer, ForeignKey("clinics.id"), nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.now)

    __table_args__ = (
        Index('idx_slots_provider_range', 'provider_id', 'start_time', 'end_time'),
        Index('idx_slots_available_start', 'is_available', 'start_time'),
    )

    @property
    def duration_minutes(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() // 60)
