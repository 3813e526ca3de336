from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user
from clinic_backend.core import config
from clinic_backend.database import atomic, get_db
from clinic_backend.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from clinic_backend.models.appointment import APPOINTMENT_STATUSES, SLOT_HOLDING_STATUSES, STATUS_CANCELLED, Appointment
from clinic_backend.models.availability import PROVIDER_KINDS, AvailabilitySlot
from clinic_backend.models.clinic import Clinic
from clinic_backend.models.user import User, is_patient, is_platform, is_provider
from clinic_backend.routes.appointment_routes import to_local_naive
from clinic_backend.services import slot_store

router = APIRouter(tags=['availability'])

# A cancelled booking no longer pins the slot's times.
TIME_LOCKING_STATUSES = tuple(value for value in APPOINTMENT_STATUSES if value != STATUS_CANCELLED)


class CreateSlotRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    clinic_id: int | None = None
    is_telemedicine: bool = False

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: datetime) -> datetime:
        return to_local_naive(value).replace(microsecond=0)


class UpdateSlotRequest(BaseModel):
    start_time: datetime | None = None
    end_time: datetime | None = None
    is_available: bool | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_local_naive(value).replace(microsecond=0)


class SlotResponse(BaseModel):
    id: int
    provider_id: int
    provider_kind: str
    clinic_id: int | None = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    is_available: bool

    class Config:
        from_attributes = True


def validate_slot_window(start_time: datetime, end_time: datetime) -> None:
    if end_time <= start_time:
        raise ValidationError('End time must be after start time.', code='INVALID_SLOT_WINDOW')

    duration = end_time - start_time
    if duration < timedelta(minutes=config.MIN_SLOT_MINUTES):
        raise ValidationError(
            f'Slots must be at least {config.MIN_SLOT_MINUTES} minutes long.',
            code='INVALID_SLOT_WINDOW',
        )
    if duration > timedelta(minutes=config.MAX_SLOT_MINUTES):
        raise ValidationError(
            f'Slots must be at most {config.MAX_SLOT_MINUTES} minutes long.',
            code='INVALID_SLOT_WINDOW',
        )


@router.post('/slots', response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def create_slot(
    data: CreateSlotRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not is_provider(current_user.role):
        raise AuthorizationError('Only providers can publish availability.')

    validate_slot_window(data.start_time, data.end_time)

    clinic_id = None
    if not data.is_telemedicine:
        if data.clinic_id is None:
            raise ValidationError('In-person slots need a clinic.', code='CLINIC_REQUIRED')
        clinic_id = data.clinic_id

    with atomic(db):
        if clinic_id is not None and db.get(Clinic, clinic_id) is None:
            raise ValidationError('Clinic not found.', code='CLINIC_REQUIRED')

        if slot_store.find_any_overlap(db, current_user.id, data.start_time, data.end_time) is not None:
            raise ConflictError('This time overlaps one of your existing slots.', code='SLOT_OVERLAP')

        slot = slot_store.create_slot(
            db,
            provider_id=current_user.id,
            provider_kind=current_user.role,
            clinic_id=clinic_id,
            start_time=data.start_time,
            end_time=data.end_time,
            is_available=True,
        )

    return slot


@router.get('/slots', response_model=list[SlotResponse])
def list_slots(
    provider_id: int | None = Query(default=None),
    provider_kind: str | None = Query(default=None),
    clinic_id: int | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    available: bool | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(AvailabilitySlot)

    if is_platform(current_user.role):
        if provider_id is not None:
            query = query.filter(AvailabilitySlot.provider_id == provider_id)
    elif is_provider(current_user.role):
        query = query.filter(AvailabilitySlot.provider_id == current_user.id)
    elif is_patient(current_user.role):
        if provider_id is not None:
            query = query.filter(AvailabilitySlot.provider_id == provider_id)
        available = True
    else:
        raise AuthorizationError('Access denied.')

    if provider_kind is not None:
        if provider_kind not in PROVIDER_KINDS:
            raise ValidationError('Invalid provider type.', code='INVALID_PROVIDER_KIND')
        query = query.filter(AvailabilitySlot.provider_kind == provider_kind)
    if clinic_id is not None:
        query = query.filter(AvailabilitySlot.clinic_id == clinic_id)
    if start_date is not None:
        query = query.filter(AvailabilitySlot.start_time >= datetime.combine(start_date, time.min))
    if end_date is not None:
        query = query.filter(AvailabilitySlot.start_time < datetime.combine(end_date + timedelta(days=1), time.min))
    if available is not None:
        query = query.filter(AvailabilitySlot.is_available.is_(available))

    return query.order_by(AvailabilitySlot.start_time.asc(), AvailabilitySlot.id.asc()).all()


def _load_managed_slot(db: Session, slot_id: int, current_user: User) -> AvailabilitySlot:
    slot = db.get(AvailabilitySlot, slot_id)
    if slot is None:
        raise NotFoundError('Slot not found.', code='SLOT_NOT_FOUND')

    if not (is_platform(current_user.role) or slot.provider_id == current_user.id):
        raise AuthorizationError('Only the slot owner can change it.')
    return slot


def _slot_in_use(db: Session, slot_id: int, statuses=None) -> bool:
    query = db.query(Appointment.id).filter(Appointment.slot_id == slot_id)
    if statuses is not None:
        query = query.filter(Appointment.status.in_(statuses))
    return query.first() is not None


@router.patch('/slots/{slot_id}', response_model=SlotResponse)
def update_slot(
    slot_id: int,
    data: UpdateSlotRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if data.start_time is None and data.end_time is None and data.is_available is None:
        raise ValidationError('No valid fields to update.', code='NO_FIELDS')

    with atomic(db):
        slot = _load_managed_slot(db, slot_id, current_user)

        if data.start_time is not None or data.end_time is not None:
            start_time = data.start_time or slot.start_time
            end_time = data.end_time or slot.end_time
            validate_slot_window(start_time, end_time)

            if _slot_in_use(db, slot_id, TIME_LOCKING_STATUSES):
                raise ConflictError('Cannot move a slot that has appointments.', code='SLOT_IN_USE')

            if slot_store.find_any_overlap(db, slot.provider_id, start_time, end_time, exclude_slot_id=slot_id) is not None:
                raise ConflictError('This time overlaps one of your existing slots.', code='SLOT_OVERLAP')

            slot.start_time = start_time
            slot.end_time = end_time

        if data.is_available is not None:
            if data.is_available and _slot_in_use(db, slot_id, SLOT_HOLDING_STATUSES):
                raise ConflictError('This slot is held by an active appointment.', code='SLOT_IN_USE')
            slot.is_available = data.is_available

    return slot


@router.delete('/slots/{slot_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_slot(
    slot_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with atomic(db):
        slot = _load_managed_slot(db, slot_id, current_user)

        # Appointments keep their slot for history, so any reference pins it.
        if _slot_in_use(db, slot_id):
            raise ConflictError('This slot is referenced by an appointment.', code='SLOT_IN_USE')

        db.delete(slot)
