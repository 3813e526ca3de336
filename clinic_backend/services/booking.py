"""Booking engine: claims a slot and creates the appointment in one transaction.

A booking reuses an available provider slot covering the requested interval or
creates one, inserts the appointment and then flips the slot to unavailable
with a conditional update. When that update touches no row another transaction
claimed the slot first, and the whole booking is rolled back.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from clinic_backend.core import config
from clinic_backend.database import atomic
from clinic_backend.errors import AuthorizationError, ConflictError, ValidationError
from clinic_backend.models.appointment import (
    APPOINTMENT_TYPES,
    SLOT_HOLDING_STATUSES,
    STATUS_BOOKED,
    STATUS_IN_PROGRESS,
    STATUS_RESCHEDULED,
    TYPE_IN_PERSON,
    TYPE_TELEMEDICINE,
    Appointment,
)
from clinic_backend.models.telemedicine import SESSION_CANCELLED, SESSION_COMPLETED, SESSION_SCHEDULED
from clinic_backend.models.user import User, is_patient, is_platform, is_provider
from clinic_backend.services import appointment_store, clinics, collaborators, slot_store
from clinic_backend.services.collaborators import Notifier, Outcome, PaymentProcessor


logger = logging.getLogger(__name__)


def _slot_conflict() -> ConflictError:
    return ConflictError('This time slot is no longer available for the provider.', code='SLOT_CONFLICT')


def resolve_patient_id(caller_id: int, caller_role: str, patient_id: int | None) -> int:
    if is_patient(caller_role):
        return caller_id
    if patient_id is None:
        raise ValidationError('Patient ID is required for non-patient users.', code='PATIENT_REQUIRED')
    return patient_id


def create_appointment(
    db: Session,
    *,
    caller_id: int,
    caller_role: str,
    provider_id: int,
    start_time: datetime,
    appointment_type: str,
    patient_id: int | None = None,
    clinic_id: int | None = None,
    duration_minutes: int | None = None,
    reason: str | None = None,
    specialty: str | None = None,
    payment_method: str = 'cash',
    amount: float = 0.0,
    payments: PaymentProcessor | None = None,
    notifier: Notifier | None = None,
) -> Outcome:
    if appointment_type not in APPOINTMENT_TYPES:
        raise ValidationError('Invalid appointment type.', code='INVALID_APPOINTMENT_TYPE')

    duration = duration_minutes or config.DEFAULT_APPOINTMENT_DURATION_MINUTES
    if duration <= 0:
        raise ValidationError('Duration must be positive.', code='INVALID_DURATION')

    patient_id = resolve_patient_id(caller_id, caller_role, patient_id)
    if is_provider(caller_role) and provider_id != caller_id:
        raise AuthorizationError('Providers can only book their own appointments.')

    start = start_time.replace(microsecond=0)
    end = start + timedelta(minutes=duration)

    with atomic(db):
        provider = db.get(User, provider_id)
        if provider is None or not is_provider(provider.role):
            raise ValidationError('Provider not found.', code='INVALID_PROVIDER')

        if appointment_type == TYPE_IN_PERSON:
            final_clinic_id = clinics.resolve_clinic_id(db, provider_id, clinic_id)
        else:
            final_clinic_id = None
        final_specialty = clinics.resolve_specialty(db, provider_id, specialty)

        if slot_store.find_held_overlap(db, provider_id, start, end) is not None:
            raise _slot_conflict()

        slot = slot_store.find_covering_slot(db, provider_id, start, end)
        if slot is None:
            slot = slot_store.create_slot(
                db,
                provider_id=provider_id,
                provider_kind=provider.role,
                clinic_id=final_clinic_id,
                start_time=start,
                end_time=end,
                is_available=True,
            )

        appointment = Appointment(
            patient_id=patient_id,
            provider_id=provider_id,
            clinic_id=final_clinic_id,
            slot_id=slot.id,
            status=STATUS_BOOKED,
            appointment_type=appointment_type,
            reason=reason,
            specialty=final_specialty,
        )
        db.add(appointment)
        db.flush()

        if not slot_store.claim_slot(db, slot.id):
            logger.info('Slot %s was claimed concurrently; rolling back booking', slot.id)
            raise _slot_conflict()

        if appointment_type == TYPE_TELEMEDICINE:
            appointment_store.ensure_telemedicine_session(db, appointment, start)

        slot_id = slot.id

    logger.info('Appointment %s booked on slot %s for provider %s', appointment.id, slot_id, provider_id)

    warnings = []
    if amount and amount > 0:
        warning = collaborators.capture_payment(
            payments or collaborators.get_payment_processor(),
            appointment,
            payment_method,
            amount,
        )
        if warning:
            warnings.append(warning)

    notifier = notifier or collaborators.get_notifier()
    for user_id, message in (
        (provider_id, f'New {appointment_type} appointment #{appointment.id} booked for {start:%Y-%m-%d %H:%M}'),
        (patient_id, f'Your appointment #{appointment.id} is booked for {start:%Y-%m-%d %H:%M}'),
    ):
        warning = collaborators.send_notification(notifier, user_id, message, 'appointment_booked', ref_id=appointment.id)
        if warning:
            warnings.append(warning)

    return Outcome(appointment, warnings)


def reschedule_appointment(
    db: Session,
    *,
    appointment_id: int,
    caller_id: int,
    caller_role: str,
    new_start_time: datetime,
    reason: str | None = None,
    notifier: Notifier | None = None,
) -> Outcome:
    """Move an appointment onto a freshly created slot and free the old one."""
    new_start = new_start_time.replace(microsecond=0)

    with atomic(db):
        appointment, old_slot = appointment_store.load_with_slot(db, appointment_id)

        if not (
            is_platform(caller_role)
            or caller_id in (appointment.patient_id, appointment.provider_id)
        ):
            raise AuthorizationError('Access denied.')

        if appointment.status == STATUS_IN_PROGRESS:
            raise ConflictError('An appointment in progress cannot be rescheduled.', code='APPOINTMENT_IN_PROGRESS')

        if old_slot is not None:
            duration = old_slot.duration_minutes
            provider_kind = old_slot.provider_kind
        else:
            duration = config.DEFAULT_APPOINTMENT_DURATION_MINUTES
            provider_kind = 'doctor'
        new_end = new_start + timedelta(minutes=duration)

        holds_old_slot = old_slot is not None and appointment.status in SLOT_HOLDING_STATUSES
        conflicting = slot_store.find_held_overlap(
            db,
            appointment.provider_id,
            new_start,
            new_end,
            exclude_slot_id=old_slot.id if holds_old_slot else None,
        )
        if conflicting is not None:
            raise _slot_conflict()

        new_slot = slot_store.create_slot(
            db,
            provider_id=appointment.provider_id,
            provider_kind=provider_kind,
            clinic_id=appointment.clinic_id,
            start_time=new_start,
            end_time=new_end,
            is_available=False,
        )

        appointment.slot_id = new_slot.id
        appointment.status = STATUS_RESCHEDULED
        if reason:
            appointment.notes = reason

        if holds_old_slot:
            slot_store.release_slot(db, old_slot.id)

        session = appointment_store.get_session(db, appointment.id)
        if session is not None:
            session.scheduled_time = new_start
            if session.status in (SESSION_CANCELLED, SESSION_COMPLETED):
                session.status = SESSION_SCHEDULED
                session.meeting_id = None
                session.session_url = None

        new_slot_id = new_slot.id

    logger.info('Appointment %s rescheduled to slot %s', appointment_id, new_slot_id)

    warnings = []
    notifier = notifier or collaborators.get_notifier()
    message = f'Appointment #{appointment.id} has been rescheduled to {new_start:%Y-%m-%d %H:%M}'
    for user_id in {appointment.patient_id, appointment.provider_id} - {caller_id}:
        warning = collaborators.send_notification(notifier, user_id, message, 'appointment_rescheduled', ref_id=appointment.id)
        if warning:
            warnings.append(warning)

    return Outcome(appointment, warnings)
