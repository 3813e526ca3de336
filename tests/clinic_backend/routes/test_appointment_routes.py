from datetime import date, datetime, time, timedelta, timezone

import pytest
from pydantic import ValidationError

from clinic_backend.errors import AuthorizationError, NotFoundError
from clinic_backend.routes.appointment_routes import (
    CheckOutRequest,
    CreateAppointmentRequest,
    RescheduleRequest,
    UpdateAppointmentRequest,
    check_in_appointment,
    check_out_appointment,
    create_appointment,
    get_appointment,
    list_appointments,
    list_today_appointments,
    reschedule_appointment,
    to_local_naive,
    update_appointment,
)

START = datetime(2026, 3, 2, 9, 0)


def _create(db, user, payments, notifier, **fields):
    data = {
        'provider_id': fields.pop('provider_id'),
        'start_time': START,
        'appointment_type': 'in-person',
    }
    data.update(fields)
    return create_appointment(
        data=CreateAppointmentRequest(**data),
        current_user=user,
        db=db,
        payments=payments,
        notifier=notifier,
    )


def test_create_appointment_request_normalizes_fields() -> None:
    request = CreateAppointmentRequest(
        provider_id=3,
        start_time=datetime(2026, 3, 2, 9, 0),
        appointment_type=' Telemedicine ',
        reason='   ',
    )

    assert request.appointment_type == 'telemedicine'
    assert request.reason is None
    assert request.duration_minutes is None


@pytest.mark.parametrize(
    'overrides',
    [
        {'appointment_type': 'house-call'},
        {'payment_method': 'crypto'},
        {'amount': -5},
        {'duration_minutes': 0},
        {'reason': 'x' * 601},
    ],
)
def test_create_appointment_request_rejects_invalid_fields(overrides: dict) -> None:
    data = {'provider_id': 3, 'start_time': START, 'appointment_type': 'in-person'}
    data.update(overrides)

    with pytest.raises(ValidationError):
        CreateAppointmentRequest(**data)


def test_aware_times_are_stored_as_local_wall_clock() -> None:
    aware = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)

    naive = to_local_naive(aware)

    assert naive.tzinfo is None
    assert naive == aware.astimezone().replace(tzinfo=None)
    assert to_local_naive(START) == START


def test_update_request_lowercases_status() -> None:
    request = UpdateAppointmentRequest(status=' Cancelled ', notes='  ')

    assert request.status == 'cancelled'
    assert request.notes is None


def test_create_appointment_returns_booked_response(db, people, payments, notifier) -> None:
    response = _create(db, people.patient, payments, notifier, provider_id=people.doctor.id, clinic_id=people.clinic.id)

    assert response.status == 'booked'
    assert response.patient_id == people.patient.id
    assert response.start_time == START
    assert response.end_time == START + timedelta(minutes=30)
    assert response.slot_available is False
    assert response.specialty == 'Cardiology'
    assert response.warnings == []


def test_create_telemedicine_appointment_reports_session_status(db, people, payments, notifier) -> None:
    response = _create(db, people.patient, payments, notifier, provider_id=people.doctor.id, appointment_type='telemedicine')

    assert response.clinic_id is None
    assert response.telemedicine_session_status == 'scheduled'


def test_list_appointments_is_scoped_to_caller(db, people, payments, notifier) -> None:
    _create(db, people.patient, payments, notifier, provider_id=people.doctor.id, clinic_id=people.clinic.id)
    _create(
        db,
        people.other_patient,
        payments,
        notifier,
        provider_id=people.other_doctor.id,
        clinic_id=people.clinic.id,
        start_time=START + timedelta(days=1),
    )

    mine = list_appointments(current_user=people.patient, db=db)
    doctors = list_appointments(current_user=people.doctor, db=db)
    everything = list_appointments(current_user=people.admin, db=db)

    assert [item.patient_id for item in mine] == [people.patient.id]
    assert [item.provider_id for item in doctors] == [people.doctor.id]
    assert [item.start_time for item in everything] == [START + timedelta(days=1), START]


def test_get_appointment_hides_other_patients_appointments(db, people, payments, notifier) -> None:
    created = _create(db, people.patient, payments, notifier, provider_id=people.doctor.id, clinic_id=people.clinic.id)

    assert get_appointment(appointment_id=created.id, current_user=people.doctor, db=db).id == created.id
    with pytest.raises(NotFoundError):
        get_appointment(appointment_id=created.id, current_user=people.other_patient, db=db)


def test_today_schedule_is_for_providers_only(db, people) -> None:
    with pytest.raises(AuthorizationError):
        list_today_appointments(current_user=people.patient, db=db)


def test_today_schedule_lists_active_appointments(db, people, payments, notifier) -> None:
    today_noon = datetime.combine(date.today(), time(12, 0))
    _create(
        db,
        people.patient,
        payments,
        notifier,
        provider_id=people.doctor.id,
        clinic_id=people.clinic.id,
        start_time=today_noon,
    )
    _create(
        db,
        people.other_patient,
        payments,
        notifier,
        provider_id=people.doctor.id,
        clinic_id=people.clinic.id,
        start_time=today_noon + timedelta(days=2),
    )

    schedule = list_today_appointments(current_user=people.doctor, db=db)

    assert [item.start_time for item in schedule] == [today_noon]


def test_update_appointment_cancels_and_frees_slot(db, people, payments, notifier) -> None:
    created = _create(db, people.patient, payments, notifier, provider_id=people.doctor.id, clinic_id=people.clinic.id)

    response = update_appointment(
        appointment_id=created.id,
        data=UpdateAppointmentRequest(status='cancelled'),
        current_user=people.patient,
        db=db,
        payments=payments,
        notifier=notifier,
    )

    assert response.status == 'cancelled'
    assert response.slot_available is True
    assert payments.refunds == [(created.id, 'Appointment cancelled')]


def test_reschedule_route_returns_new_times(db, people, payments, notifier) -> None:
    created = _create(db, people.patient, payments, notifier, provider_id=people.doctor.id, clinic_id=people.clinic.id)

    response = reschedule_appointment(
        appointment_id=created.id,
        data=RescheduleRequest(new_start_time=datetime(2026, 3, 4, 10, 0), reason='Travel'),
        current_user=people.patient,
        db=db,
        notifier=notifier,
    )

    assert response.status == 'rescheduled'
    assert response.start_time == datetime(2026, 3, 4, 10, 0)
    assert response.notes == 'Travel'
    assert response.slot_id != created.slot_id


def test_check_in_and_check_out_routes(db, people, payments, notifier) -> None:
    created = _create(db, people.patient, payments, notifier, provider_id=people.doctor.id, clinic_id=people.clinic.id)

    checked_in = check_in_appointment(
        appointment_id=created.id,
        current_user=people.doctor,
        db=db,
        payments=payments,
        notifier=notifier,
    )
    assert checked_in.status == 'in-progress'
    assert checked_in.check_in_time is not None

    checked_out = check_out_appointment(
        appointment_id=created.id,
        data=CheckOutRequest(notes='All good.'),
        current_user=people.doctor,
        db=db,
        payments=payments,
        notifier=notifier,
    )
    assert checked_out.status == 'completed'
    assert checked_out.notes == 'All good.'
    assert checked_out.slot_available is True


def test_check_out_without_body(db, people, payments, notifier) -> None:
    created = _create(db, people.patient, payments, notifier, provider_id=people.doctor.id, clinic_id=people.clinic.id)

    response = check_out_appointment(
        appointment_id=created.id,
        data=None,
        current_user=people.doctor,
        db=db,
        payments=payments,
        notifier=notifier,
    )

    assert response.status == 'completed'
    assert response.check_out_time is not None
