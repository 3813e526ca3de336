"""Lifecycle engine: validated appointment status transitions.

Each transition is applied together with its slot side effect in one
transaction. Statuses that end the visit free the slot; ``in-progress`` and
``late`` keep it held.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from clinic_backend.core import config
from clinic_backend.database import atomic
from clinic_backend.errors import AuthorizationError, ConflictError, ValidationError
from clinic_backend.models.appointment import (
    SLOT_HOLDING_STATUSES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_IN_PROGRESS,
    STATUS_LATE,
    STATUS_MISSED,
    STATUS_NO_SHOW,
    TERMINAL_STATUSES,
    Appointment,
)
from clinic_backend.models.availability import AvailabilitySlot
from clinic_backend.models.telemedicine import SESSION_CANCELLED, SESSION_COMPLETED
from clinic_backend.models.user import is_patient, is_platform, is_provider
from clinic_backend.services import appointment_store, collaborators, slot_store
from clinic_backend.services.collaborators import Notifier, Outcome, PaymentProcessor


logger = logging.getLogger(__name__)

SLOT_RELEASING_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW, STATUS_MISSED, STATUS_ERROR})
SLOT_CLAIMING_STATUSES = frozenset({STATUS_IN_PROGRESS, STATUS_LATE})
UPDATABLE_STATUSES = SLOT_RELEASING_STATUSES | SLOT_CLAIMING_STATUSES
PATIENT_STATUSES = frozenset({STATUS_CANCELLED, STATUS_NO_SHOW})


def validate_status(status: str | None) -> None:
    if status is not None and status not in UPDATABLE_STATUSES:
        raise ValidationError(f"Invalid status '{status}'.", code='INVALID_STATUS')


def authorize(
    appointment: Appointment,
    caller_id: int,
    caller_role: str,
    status: str | None,
    provider_fields: bool = False,
) -> None:
    if is_platform(caller_role):
        return

    if is_patient(caller_role):
        if appointment.patient_id != caller_id:
            raise AuthorizationError('Access denied.')
        if status is not None and status not in PATIENT_STATUSES:
            raise AuthorizationError('Patients can only cancel or report a no-show.')
        if provider_fields:
            raise AuthorizationError('Patients cannot update clinical fields.')
        return

    if is_provider(caller_role) and appointment.provider_id == caller_id:
        return

    raise AuthorizationError('Access denied.')


def check_timing(status: str, slot: AvailabilitySlot | None, now: datetime) -> None:
    if status not in (STATUS_NO_SHOW, STATUS_LATE):
        return
    if slot is None:
        raise ValidationError('Appointment has no scheduled time.', code='NO_SCHEDULED_TIME')

    if status == STATUS_NO_SHOW and now <= slot.start_time:
        raise ValidationError(
            'An appointment can only be marked as no-show after its start time.',
            code='NO_SHOW_TOO_EARLY',
        )

    if status == STATUS_LATE:
        minutes_after_start = (now - slot.start_time).total_seconds() / 60
        if not config.LATE_WINDOW_START_MINUTES <= minutes_after_start <= config.LATE_WINDOW_END_MINUTES:
            raise ValidationError(
                f'An appointment can only be marked late between {config.LATE_WINDOW_START_MINUTES} '
                f'and {config.LATE_WINDOW_END_MINUTES} minutes after its start time.',
                code='LATE_OUTSIDE_WINDOW',
            )


def apply_transition(
    db: Session,
    appointment: Appointment,
    slot: AvailabilitySlot | None,
    status: str,
    now: datetime,
) -> None:
    """Set ``status`` on ``appointment`` and apply its slot side effect.

    Must run inside the caller's transaction.
    """
    previous = appointment.status
    if previous in TERMINAL_STATUSES:
        raise ConflictError(f'Appointment is already {previous}.', code='APPOINTMENT_CLOSED')

    check_timing(status, slot, now)

    held = previous in SLOT_HOLDING_STATUSES
    if slot is not None:
        if status in SLOT_CLAIMING_STATUSES:
            if held:
                if status == STATUS_IN_PROGRESS:
                    slot_store.hold_slot(db, slot.id)
            elif not slot_store.claim_slot(db, slot.id):
                raise ConflictError('The appointment slot has been taken by another booking.', code='SLOT_CONFLICT')
        elif status in SLOT_RELEASING_STATUSES and held:
            slot_store.release_slot(db, slot.id)

    appointment.status = status

    # A closed appointment closes its telemedicine session as well.
    if status in SLOT_RELEASING_STATUSES:
        session = appointment_store.get_session(db, appointment.id)
        if session is not None and session.status != SESSION_COMPLETED:
            if status == STATUS_COMPLETED:
                session.status = SESSION_COMPLETED
                if session.started_at is not None and session.ended_at is None:
                    session.ended_at = now
            else:
                session.status = SESSION_CANCELLED


def _append_note(notes: str | None, line: str) -> str:
    return f'{notes}\n{line}' if notes else line


def update_status(
    db: Session,
    *,
    appointment_id: int,
    caller_id: int,
    caller_role: str,
    status: str | None = None,
    notes: str | None = None,
    clinical_notes: str | None = None,
    check_in_time: datetime | None = None,
    check_out_time: datetime | None = None,
    error_reason: str | None = None,
    payments: PaymentProcessor | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Outcome:
    validate_status(status)
    if status is None and all(
        value is None for value in (notes, clinical_notes, check_in_time, check_out_time)
    ):
        raise ValidationError('No valid fields to update.', code='NO_FIELDS')

    now = now or datetime.now()
    provider_fields = any(value is not None for value in (clinical_notes, check_in_time, check_out_time))

    with atomic(db):
        appointment, slot = appointment_store.load_with_slot(db, appointment_id)
        authorize(appointment, caller_id, caller_role, status, provider_fields)
        previous = appointment.status

        if notes is not None:
            appointment.notes = notes
        if clinical_notes is not None:
            appointment.clinical_notes = clinical_notes
        if check_in_time is not None:
            appointment.check_in_time = check_in_time
        if check_out_time is not None:
            appointment.check_out_time = check_out_time

        if status is not None:
            apply_transition(db, appointment, slot, status, now)
            if status == STATUS_ERROR:
                appointment.notes = _append_note(appointment.notes, f'Error: {error_reason or "unspecified"}')

        appointment.updated_at = now

    if status is not None:
        logger.info('Appointment %s moved from %s to %s by user %s', appointment_id, previous, status, caller_id)
    else:
        logger.info('Appointment %s updated by user %s', appointment_id, caller_id)

    warnings = []
    if status is not None and status != previous:
        payments = payments or collaborators.get_payment_processor()
        if status == STATUS_CANCELLED:
            warning = collaborators.refund(payments, appointment, notes or error_reason or 'Appointment cancelled')
        elif status == STATUS_COMPLETED:
            warning = collaborators.settle_completion(payments, appointment)
        else:
            warning = None
        if warning:
            warnings.append(warning)

        notifier = notifier or collaborators.get_notifier()
        message = f'Appointment #{appointment_id} is now {status}'
        priority = 'high' if status in (STATUS_CANCELLED, STATUS_LATE) else 'normal'
        for user_id in sorted({appointment.patient_id, appointment.provider_id} - {caller_id}):
            warning = collaborators.send_notification(
                notifier, user_id, message, 'appointment_status', priority, appointment_id,
            )
            if warning:
                warnings.append(warning)

    return Outcome(appointment, warnings)


def check_in(db: Session, *, appointment_id: int, caller_id: int, caller_role: str, now: datetime | None = None, **collaborator_args) -> Outcome:
    now = now or datetime.now()
    return update_status(
        db,
        appointment_id=appointment_id,
        caller_id=caller_id,
        caller_role=caller_role,
        status=STATUS_IN_PROGRESS,
        check_in_time=now,
        now=now,
        **collaborator_args,
    )


def check_out(
    db: Session,
    *,
    appointment_id: int,
    caller_id: int,
    caller_role: str,
    notes: str | None = None,
    now: datetime | None = None,
    **collaborator_args,
) -> Outcome:
    now = now or datetime.now()
    return update_status(
        db,
        appointment_id=appointment_id,
        caller_id=caller_id,
        caller_role=caller_role,
        status=STATUS_COMPLETED,
        notes=notes,
        check_out_time=now,
        now=now,
        **collaborator_args,
    )
