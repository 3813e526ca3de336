"""User model definitions."""

from sqlalchemy import Column, Integer, String
from clinic_backend.database import Base


PATIENT_ROLE = 'patient'
PROVIDER_ROLES = frozenset({'doctor', 'nurse', 'lab'})
PLATFORM_ROLES = frozenset({'clinic_admin', 'platform_admin'})


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    role = Column(String)  # patient/doctor/nurse/lab/clinic_admin/platform_admin
    specialty = Column(String, nullable=True)


def is_patient(role: str | None) -> bool:
    return role == PATIENT_ROLE


def is_provider(role: str | None) -> bool:
    return role in PROVIDER_ROLES


def is_platform(role: str | None) -> bool:
    return role in PLATFORM_ROLES
