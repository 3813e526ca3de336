from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user
from clinic_backend.database import get_db
from clinic_backend.models.telemedicine import TelemedicineSession
from clinic_backend.models.user import User
from clinic_backend.services import telemedicine
from clinic_backend.services.collaborators import Notifier, PaymentProcessor, get_notifier, get_payment_processor

router = APIRouter(tags=['telemedicine'])

MAX_SUMMARY_LENGTH = 4000


class EndSessionRequest(BaseModel):
    notes: str | None = None
    session_summary: str | None = None

    @field_validator('notes', 'session_summary')
    @classmethod
    def validate_text(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_SUMMARY_LENGTH:
            raise ValueError(f'Must be {MAX_SUMMARY_LENGTH} characters or fewer.')

        return normalized


class SessionResponse(BaseModel):
    id: int
    appointment_id: int
    status: str
    meeting_id: str | None = None
    session_url: str | None = None
    scheduled_time: datetime | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    notes: str | None = None
    session_summary: str | None = None
    warnings: list[str] = []

    class Config:
        from_attributes = True


def build_session_response(session: TelemedicineSession, warnings: list[str] | None = None) -> SessionResponse:
    response = SessionResponse.model_validate(session)
    response.warnings = warnings or []
    return response


@router.post('/{appointment_id}/start', response_model=SessionResponse)
def start_session(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    outcome = telemedicine.start_session(
        db,
        appointment_id=appointment_id,
        caller_id=current_user.id,
        caller_role=current_user.role,
        notifier=notifier,
    )
    return build_session_response(outcome.value, outcome.warnings)


@router.post('/{appointment_id}/join', response_model=SessionResponse)
def join_session(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    session = telemedicine.join_session(db, appointment_id=appointment_id, caller_id=current_user.id)
    return build_session_response(session)


@router.post('/{appointment_id}/end', response_model=SessionResponse)
def end_session(
    appointment_id: int,
    data: EndSessionRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    payments: PaymentProcessor = Depends(get_payment_processor),
    notifier: Notifier = Depends(get_notifier),
):
    outcome = telemedicine.end_session(
        db,
        appointment_id=appointment_id,
        caller_id=current_user.id,
        notes=data.notes if data else None,
        session_summary=data.session_summary if data else None,
        payments=payments,
        notifier=notifier,
    )
    return build_session_response(outcome.value, outcome.warnings)
