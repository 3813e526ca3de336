"""Clinic model definitions."""

from sqlalchemy import Column, Integer, String
from clinic_backend.database import Base


class Clinic(Base):
    """A physical clinic appointments can be held at."""
    __tablename__ = "clinics"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    status = Column(String, nullable=False, default='active')
