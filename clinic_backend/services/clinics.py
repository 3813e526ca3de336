"""Clinic and provider lookups used while booking."""

import logging

from sqlalchemy.orm import Session

from clinic_backend.core import config
from clinic_backend.errors import ValidationError
from clinic_backend.models.clinic import Clinic
from clinic_backend.models.user import User
from clinic_backend.services import slot_store


logger = logging.getLogger(__name__)

CLINIC_ACTIVE = 'active'


def resolve_clinic_id(db: Session, provider_id: int, requested_clinic_id: int | None) -> int:
    """Pick the clinic for an in-person appointment.

    An explicit clinic wins. Otherwise the provider's own clinic (one they
    have published slots for) is used, then any active clinic, then any
    clinic; the last two only when ``ALLOW_ANY_CLINIC_FALLBACK`` is on.
    """
    if requested_clinic_id is not None:
        if db.get(Clinic, requested_clinic_id) is None:
            raise ValidationError('Clinic not found.', code='CLINIC_REQUIRED')
        return requested_clinic_id

    provider_clinics = slot_store.clinic_ids_for_provider(db, provider_id)
    if provider_clinics:
        return provider_clinics[0]

    if config.ALLOW_ANY_CLINIC_FALLBACK:
        active_clinic = db.query(Clinic.id).filter(Clinic.status == CLINIC_ACTIVE).order_by(Clinic.id.asc()).first()
        if active_clinic is not None:
            logger.warning('Provider %s has no clinic; falling back to active clinic %s', provider_id, active_clinic.id)
            return active_clinic.id

        any_clinic = db.query(Clinic.id).order_by(Clinic.id.asc()).first()
        if any_clinic is not None:
            logger.warning('Provider %s has no clinic; falling back to clinic %s', provider_id, any_clinic.id)
            return any_clinic.id

    raise ValidationError(
        'No clinic available for this provider. A clinic is required for in-person appointments.',
        code='NO_CLINIC_AVAILABLE',
    )


def resolve_specialty(db: Session, provider_id: int, requested_specialty: str | None) -> str:
    if requested_specialty and requested_specialty.strip():
        return requested_specialty.strip()

    specialty = db.query(User.specialty).filter(User.id == provider_id).scalar()
    return specialty or config.DEFAULT_SPECIALTY
