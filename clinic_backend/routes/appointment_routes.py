from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user
from clinic_backend.database import get_db
from clinic_backend.errors import AuthorizationError
from clinic_backend.models.appointment import (
    APPOINTMENT_TYPES,
    STATUS_BOOKED,
    STATUS_IN_PROGRESS,
    STATUS_LATE,
    STATUS_RESCHEDULED,
    Appointment,
)
from clinic_backend.models.availability import AvailabilitySlot
from clinic_backend.models.telemedicine import TelemedicineSession
from clinic_backend.models.user import User, is_provider
from clinic_backend.services import appointment_store, booking, lifecycle
from clinic_backend.services.collaborators import Notifier, PaymentProcessor, get_notifier, get_payment_processor

router = APIRouter(tags=['appointments'])

MAX_REASON_LENGTH = 600
MAX_NOTES_LENGTH = 4000
MAX_DURATION_MINUTES = 480
PAYMENT_METHODS = ('cash', 'balance')
TODAY_STATUSES = (STATUS_BOOKED, STATUS_IN_PROGRESS, STATUS_LATE, STATUS_RESCHEDULED)


def to_local_naive(value: datetime | None) -> datetime | None:
    """Store wall-clock times: aware values are converted to local time and stripped."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _normalize_optional_text(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'{label} must be {max_length} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    provider_id: int
    patient_id: int | None = None
    clinic_id: int | None = None
    start_time: datetime
    duration_minutes: int | None = Field(default=None, ge=1, le=MAX_DURATION_MINUTES)
    appointment_type: str
    reason: str | None = None
    specialty: str | None = None
    payment_method: str = 'cash'
    amount: float = Field(default=0.0, ge=0)

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: datetime) -> datetime:
        return to_local_naive(value)

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_TYPES:
            raise ValueError('Invalid appointment type.')
        return normalized

    @field_validator('payment_method')
    @classmethod
    def validate_payment_method(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in PAYMENT_METHODS:
            raise ValueError('Invalid payment method.')
        return normalized

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_REASON_LENGTH, 'Reason')


class UpdateAppointmentRequest(BaseModel):
    status: str | None = None
    notes: str | None = None
    clinical_notes: str | None = None
    check_in_time: datetime | None = None
    check_out_time: datetime | None = None
    error_reason: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower()

    @field_validator('notes', 'clinical_notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_NOTES_LENGTH, 'Notes')

    @field_validator('check_in_time', 'check_out_time')
    @classmethod
    def validate_timestamps(cls, value: datetime | None) -> datetime | None:
        return to_local_naive(value)


class RescheduleRequest(BaseModel):
    new_start_time: datetime
    reason: str | None = None

    @field_validator('new_start_time')
    @classmethod
    def validate_new_start_time(cls, value: datetime) -> datetime:
        return to_local_naive(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_REASON_LENGTH, 'Reason')


class CheckOutRequest(BaseModel):
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value, MAX_NOTES_LENGTH, 'Notes')


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    provider_id: int
    clinic_id: int | None = None
    slot_id: int
    status: str
    appointment_type: str
    reason: str | None = None
    specialty: str | None = None
    notes: str | None = None
    clinical_notes: str | None = None
    check_in_time: datetime | None = None
    check_out_time: datetime | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    slot_available: bool | None = None
    telemedicine_session_status: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    warnings: list[str] = []


def build_appointment_response(
    appointment: Appointment,
    slot: AvailabilitySlot | None,
    session: TelemedicineSession | None = None,
    warnings: list[str] | None = None,
) -> AppointmentResponse:
    return AppointmentResponse(
        id=appointment.id,
        patient_id=appointment.patient_id,
        provider_id=appointment.provider_id,
        clinic_id=appointment.clinic_id,
        slot_id=appointment.slot_id,
        status=appointment.status,
        appointment_type=appointment.appointment_type,
        reason=appointment.reason,
        specialty=appointment.specialty,
        notes=appointment.notes,
        clinical_notes=appointment.clinical_notes,
        check_in_time=appointment.check_in_time,
        check_out_time=appointment.check_out_time,
        start_time=slot.start_time if slot else None,
        end_time=slot.end_time if slot else None,
        slot_available=slot.is_available if slot else None,
        telemedicine_session_status=session.status if session else None,
        created_at=appointment.created_at,
        updated_at=appointment.updated_at,
        warnings=warnings or [],
    )


def _respond(db: Session, appointment_id: int, warnings: list[str]) -> AppointmentResponse:
    appointment, slot = appointment_store.load_with_slot(db, appointment_id)
    session = appointment_store.get_session(db, appointment_id)
    return build_appointment_response(appointment, slot, session, warnings)


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    payments: PaymentProcessor = Depends(get_payment_processor),
    notifier: Notifier = Depends(get_notifier),
):
    outcome = booking.create_appointment(
        db,
        caller_id=current_user.id,
        caller_role=current_user.role,
        provider_id=data.provider_id,
        patient_id=data.patient_id,
        clinic_id=data.clinic_id,
        start_time=data.start_time,
        duration_minutes=data.duration_minutes,
        appointment_type=data.appointment_type,
        reason=data.reason,
        specialty=data.specialty,
        payment_method=data.payment_method,
        amount=data.amount,
        payments=payments,
        notifier=notifier,
    )
    return _respond(db, outcome.value.id, outcome.warnings)


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [
        build_appointment_response(appointment, slot)
        for appointment, slot in appointment_store.list_visible(db, current_user.id, current_user.role)
    ]


@router.get('/today', response_model=list[AppointmentResponse])
def list_today_appointments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not is_provider(current_user.role):
        raise AuthorizationError("Only providers have a daily schedule.")

    day_start = datetime.combine(date.today(), time.min)
    return [
        build_appointment_response(appointment, slot)
        for appointment, slot in appointment_store.list_for_provider_between(
            db,
            current_user.id,
            day_start,
            day_start + timedelta(days=1),
            TODAY_STATUSES,
        )
    ]


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    appointment, slot = appointment_store.get_visible(db, appointment_id, current_user.id, current_user.role)
    return build_appointment_response(appointment, slot, appointment_store.get_session(db, appointment_id))


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    payments: PaymentProcessor = Depends(get_payment_processor),
    notifier: Notifier = Depends(get_notifier),
):
    outcome = lifecycle.update_status(
        db,
        appointment_id=appointment_id,
        caller_id=current_user.id,
        caller_role=current_user.role,
        status=data.status,
        notes=data.notes,
        clinical_notes=data.clinical_notes,
        check_in_time=data.check_in_time,
        check_out_time=data.check_out_time,
        error_reason=data.error_reason,
        payments=payments,
        notifier=notifier,
    )
    return _respond(db, appointment_id, outcome.warnings)


@router.post('/{appointment_id}/reschedule', response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    data: RescheduleRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    outcome = booking.reschedule_appointment(
        db,
        appointment_id=appointment_id,
        caller_id=current_user.id,
        caller_role=current_user.role,
        new_start_time=data.new_start_time,
        reason=data.reason,
        notifier=notifier,
    )
    return _respond(db, appointment_id, outcome.warnings)


@router.post('/{appointment_id}/check-in', response_model=AppointmentResponse)
def check_in_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    payments: PaymentProcessor = Depends(get_payment_processor),
    notifier: Notifier = Depends(get_notifier),
):
    outcome = lifecycle.check_in(
        db,
        appointment_id=appointment_id,
        caller_id=current_user.id,
        caller_role=current_user.role,
        payments=payments,
        notifier=notifier,
    )
    return _respond(db, appointment_id, outcome.warnings)


@router.post('/{appointment_id}/check-out', response_model=AppointmentResponse)
def check_out_appointment(
    appointment_id: int,
    data: CheckOutRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    payments: PaymentProcessor = Depends(get_payment_processor),
    notifier: Notifier = Depends(get_notifier),
):
    outcome = lifecycle.check_out(
        db,
        appointment_id=appointment_id,
        caller_id=current_user.id,
        caller_role=current_user.role,
        notes=data.notes if data else None,
        payments=payments,
        notifier=notifier,
    )
    return _respond(db, appointment_id, outcome.warnings)
