"""Telemedicine start / join / end flow."""

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from clinic_backend.core import config
from clinic_backend.database import atomic
from clinic_backend.errors import AuthorizationError, NotFoundError, ValidationError
from clinic_backend.models.appointment import STATUS_COMPLETED, STATUS_IN_PROGRESS, TYPE_TELEMEDICINE, Appointment
from clinic_backend.models.availability import AvailabilitySlot
from clinic_backend.models.telemedicine import (
    SESSION_COMPLETED,
    SESSION_IN_PROGRESS,
    SESSION_SCHEDULED,
    TelemedicineSession,
)
from clinic_backend.models.user import is_platform
from clinic_backend.services import appointment_store, collaborators, lifecycle
from clinic_backend.services.collaborators import Notifier, Outcome, PaymentProcessor


logger = logging.getLogger(__name__)


def generate_meeting() -> tuple[str, str]:
    meeting_id = f'{config.TELEMEDICINE_ROOM_PREFIX}-{uuid.uuid4()}'
    return meeting_id, f'{config.TELEMEDICINE_MEETING_BASE_URL.rstrip("/")}/{meeting_id}'


def _load(db: Session, appointment_id: int) -> tuple[Appointment, AvailabilitySlot | None]:
    appointment, slot = appointment_store.load_with_slot(db, appointment_id)
    if appointment.appointment_type != TYPE_TELEMEDICINE:
        raise ValidationError('This is not a telemedicine appointment.', code='NOT_TELEMEDICINE')
    return appointment, slot


def _require_session(db: Session, appointment_id: int) -> TelemedicineSession:
    session = appointment_store.get_session(db, appointment_id)
    if session is None:
        raise NotFoundError('Telemedicine session not found.', code='SESSION_NOT_FOUND')
    return session


def start_session(
    db: Session,
    *,
    appointment_id: int,
    caller_id: int,
    caller_role: str | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Outcome:
    now = now or datetime.now()

    with atomic(db):
        appointment, slot = _load(db, appointment_id)
        if appointment.provider_id != caller_id and not is_platform(caller_role):
            raise AuthorizationError('Only the appointment provider can start this session.')

        session = appointment_store.ensure_telemedicine_session(
            db,
            appointment,
            slot.start_time if slot is not None else now,
        )
        if session.status != SESSION_SCHEDULED:
            raise ValidationError(
                f"Cannot start session in '{session.status}' status.",
                code='SESSION_NOT_SCHEDULED',
            )

        if slot is not None and slot.start_time - now > timedelta(minutes=config.TELEMEDICINE_EARLY_START_MINUTES):
            raise ValidationError(
                f'Session can only be started {config.TELEMEDICINE_EARLY_START_MINUTES} minutes '
                'before the scheduled time.',
                code='SESSION_TOO_EARLY',
            )

        session.meeting_id, session.session_url = generate_meeting()
        session.status = SESSION_IN_PROGRESS
        session.started_at = now
        lifecycle.apply_transition(db, appointment, slot, STATUS_IN_PROGRESS, now)
        appointment.updated_at = now

    logger.info('Telemedicine session %s started by provider %s', appointment_id, caller_id)

    warnings = []
    warning = collaborators.send_notification(
        notifier or collaborators.get_notifier(),
        appointment.patient_id,
        f'Telemedicine session #{appointment_id} has started',
        'session_started',
        'high',
        appointment_id,
    )
    if warning:
        warnings.append(warning)
    return Outcome(session, warnings)


def join_session(db: Session, *, appointment_id: int, caller_id: int) -> TelemedicineSession:
    appointment, _ = _load(db, appointment_id)
    if caller_id not in (appointment.patient_id, appointment.provider_id):
        raise AuthorizationError('Only the appointment participants can join this session.')

    session = _require_session(db, appointment_id)
    if session.status != SESSION_IN_PROGRESS:
        raise ValidationError('Session is not currently active.', code='SESSION_NOT_ACTIVE')
    return session


def end_session(
    db: Session,
    *,
    appointment_id: int,
    caller_id: int,
    notes: str | None = None,
    session_summary: str | None = None,
    payments: PaymentProcessor | None = None,
    notifier: Notifier | None = None,
    now: datetime | None = None,
) -> Outcome:
    now = now or datetime.now()

    with atomic(db):
        appointment, slot = _load(db, appointment_id)
        if appointment.provider_id != caller_id:
            raise AuthorizationError('Only the appointment provider can end this session.')

        session = _require_session(db, appointment_id)
        if session.status != SESSION_IN_PROGRESS:
            raise ValidationError('No active session to end.', code='SESSION_NOT_ACTIVE')

        session.status = SESSION_COMPLETED
        session.ended_at = now
        if notes is not None:
            session.notes = notes
            appointment.notes = notes
        if session_summary is not None:
            session.session_summary = session_summary
        lifecycle.apply_transition(db, appointment, slot, STATUS_COMPLETED, now)
        appointment.updated_at = now

    logger.info('Telemedicine session %s ended by provider %s', appointment_id, caller_id)

    warnings = []
    for warning in (
        collaborators.settle_completion(payments or collaborators.get_payment_processor(), appointment),
        collaborators.send_notification(
            notifier or collaborators.get_notifier(),
            appointment.patient_id,
            f'Telemedicine session #{appointment_id} has ended',
            'session_ended',
            'normal',
            appointment_id,
        ),
    ):
        if warning:
            warnings.append(warning)
    return Outcome(session, warnings)
