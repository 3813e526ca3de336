from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from clinic_backend.core import config
from clinic_backend.database import create_schema
from clinic_backend.errors import AuthorizationError, ConflictError, PersistenceError, ValidationError
from clinic_backend.models.appointment import Appointment
from clinic_backend.models.availability import AvailabilitySlot
from clinic_backend.models.clinic import Clinic
from clinic_backend.models.telemedicine import TelemedicineSession
from clinic_backend.models.user import User
from clinic_backend.services import appointment_store, booking, lifecycle, slot_store

START = datetime(2026, 3, 2, 9, 0)


def _book(db, people, **overrides):
    args = {
        'caller_id': people.patient.id,
        'caller_role': 'patient',
        'provider_id': people.doctor.id,
        'start_time': START,
        'appointment_type': 'in-person',
        'clinic_id': people.clinic.id,
    }
    args.update(overrides)
    return booking.create_appointment(db, **args).value


def test_book_conflict_cancel_and_rebook_same_interval(db, people) -> None:
    first = _book(db, people)
    slot = db.get(AvailabilitySlot, first.slot_id)

    assert first.status == 'booked'
    assert slot.start_time == START
    assert slot.end_time == START + timedelta(minutes=30)
    assert slot.is_available is False

    with pytest.raises(ConflictError) as exception_info:
        _book(db, people, caller_id=people.other_patient.id)
    assert exception_info.value.code == 'SLOT_CONFLICT'

    lifecycle.update_status(
        db,
        appointment_id=first.id,
        caller_id=people.patient.id,
        caller_role='patient',
        status='cancelled',
    )
    assert db.get(AvailabilitySlot, first.slot_id).is_available is True

    second = _book(db, people, caller_id=people.other_patient.id)

    assert second.slot_id == first.slot_id
    assert db.get(AvailabilitySlot, second.slot_id).is_available is False
    assert db.query(Appointment).count() == 2


def test_booking_overlapping_a_held_slot_is_rejected(db, people) -> None:
    _book(db, people)

    with pytest.raises(ConflictError):
        _book(db, people, caller_id=people.other_patient.id, start_time=START + timedelta(minutes=15))

    assert db.query(Appointment).count() == 1


def test_booking_reuses_published_slot_that_covers_interval(db, people) -> None:
    published = slot_store.create_slot(
        db,
        provider_id=people.doctor.id,
        provider_kind='doctor',
        clinic_id=people.clinic.id,
        start_time=datetime(2026, 3, 2, 8, 0),
        end_time=datetime(2026, 3, 2, 12, 0),
        is_available=True,
    )
    db.commit()

    appointment = _book(db, people, clinic_id=None)

    assert appointment.slot_id == published.id
    assert appointment.clinic_id == people.clinic.id
    assert db.query(AvailabilitySlot).count() == 1


def test_booking_creates_slot_for_exact_interval_when_none_covers(db, people) -> None:
    appointment = _book(db, people, duration_minutes=45)
    slot = db.get(AvailabilitySlot, appointment.slot_id)

    assert slot.provider_id == people.doctor.id
    assert slot.clinic_id == people.clinic.id
    assert slot.duration_minutes == 45


def test_booking_by_staff_requires_patient_id(db, people) -> None:
    with pytest.raises(ValidationError) as exception_info:
        _book(db, people, caller_id=people.admin.id, caller_role='clinic_admin')

    assert exception_info.value.code == 'PATIENT_REQUIRED'


def test_booking_with_a_non_provider_is_rejected(db, people) -> None:
    with pytest.raises(ValidationError) as exception_info:
        _book(db, people, provider_id=people.other_patient.id)

    assert exception_info.value.code == 'INVALID_PROVIDER'
    assert db.query(AvailabilitySlot).count() == 0
    assert db.query(Appointment).count() == 0


def test_booking_with_unknown_provider_is_rejected(db, people) -> None:
    with pytest.raises(ValidationError) as exception_info:
        _book(db, people, provider_id=4242, appointment_type='telemedicine', clinic_id=None)

    assert exception_info.value.code == 'INVALID_PROVIDER'
    assert db.query(Appointment).count() == 0


def test_created_slot_takes_kind_from_provider_role(db, people) -> None:
    nurse = User(email='nina@example.com', full_name='Nina Nurse', role='nurse')
    db.add(nurse)
    db.commit()

    appointment = _book(db, people, provider_id=nurse.id)

    assert db.get(AvailabilitySlot, appointment.slot_id).provider_kind == 'nurse'


def test_patient_caller_always_books_for_themselves(db, people) -> None:
    appointment = _book(db, people, patient_id=people.other_patient.id)

    assert appointment.patient_id == people.patient.id


def test_provider_cannot_book_for_another_provider(db, people) -> None:
    with pytest.raises(AuthorizationError):
        _book(
            db,
            people,
            caller_id=people.doctor.id,
            caller_role='doctor',
            provider_id=people.other_doctor.id,
            patient_id=people.patient.id,
        )


def test_specialty_falls_back_to_provider_then_default(db, people) -> None:
    explicit = _book(db, people, specialty='Dermatology')
    from_provider = _book(db, people, start_time=START + timedelta(hours=1))
    default = _book(db, people, provider_id=people.other_doctor.id)

    assert explicit.specialty == 'Dermatology'
    assert from_provider.specialty == 'Cardiology'
    assert default.specialty == 'General Medicine'


def test_in_person_booking_falls_back_to_lowest_active_clinic(db, people) -> None:
    db.add_all([Clinic(name='Closed Clinic', status='closed'), Clinic(name='Second Clinic', status='active')])
    db.commit()

    appointment = _book(db, people, clinic_id=None)

    assert appointment.clinic_id == people.clinic.id


def test_in_person_booking_without_any_clinic_is_rejected(db, people, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'ALLOW_ANY_CLINIC_FALLBACK', False)

    with pytest.raises(ValidationError) as exception_info:
        _book(db, people, clinic_id=None)

    assert exception_info.value.code == 'NO_CLINIC_AVAILABLE'
    assert db.query(AvailabilitySlot).count() == 0


def test_unknown_clinic_is_rejected(db, people) -> None:
    with pytest.raises(ValidationError) as exception_info:
        _book(db, people, clinic_id=999)

    assert exception_info.value.code == 'CLINIC_REQUIRED'


def test_telemedicine_booking_creates_one_session_without_clinic(db, people) -> None:
    appointment = _book(db, people, appointment_type='telemedicine')
    session = db.get(TelemedicineSession, appointment.id)

    assert appointment.clinic_id is None
    assert session.status == 'scheduled'
    assert session.scheduled_time == START
    assert session.doctor_id == people.doctor.id

    again = appointment_store.ensure_telemedicine_session(db, appointment, START)
    db.commit()

    assert again.id == session.id
    assert db.query(TelemedicineSession).count() == 1


def test_failure_mid_booking_leaves_nothing_behind(db, people, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_session(*args, **kwargs):
        raise SQLAlchemyError('disk full')

    monkeypatch.setattr(appointment_store, 'ensure_telemedicine_session', broken_session)

    with pytest.raises(PersistenceError):
        _book(db, people, appointment_type='telemedicine')

    assert db.query(Appointment).count() == 0
    assert db.query(AvailabilitySlot).count() == 0


def test_concurrent_claim_rolls_back_the_losing_booking(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = create_engine(f'sqlite:///{tmp_path / "race.db"}')
    create_schema(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = session_factory()
    patient = User(email='pat@example.com', role='patient')
    doctor = User(email='doc@example.com', role='doctor')
    setup.add_all([patient, doctor])
    setup.flush()
    slot = slot_store.create_slot(
        setup,
        provider_id=doctor.id,
        provider_kind='doctor',
        clinic_id=None,
        start_time=START,
        end_time=START + timedelta(minutes=30),
        is_available=True,
    )
    patient_id, doctor_id, slot_id = patient.id, doctor.id, slot.id
    setup.commit()
    setup.close()

    original_find = slot_store.find_covering_slot
    rival = session_factory()

    def find_then_lose_race(*args, **kwargs):
        found = original_find(*args, **kwargs)
        assert slot_store.claim_slot(rival, slot_id)
        rival.commit()
        return found

    monkeypatch.setattr(slot_store, 'find_covering_slot', find_then_lose_race)

    loser = session_factory()
    try:
        with pytest.raises(ConflictError) as exception_info:
            booking.create_appointment(
                loser,
                caller_id=patient_id,
                caller_role='patient',
                provider_id=doctor_id,
                start_time=START,
                appointment_type='telemedicine',
            )

        assert exception_info.value.code == 'SLOT_CONFLICT'
        assert loser.query(Appointment).count() == 0
        assert loser.query(TelemedicineSession).count() == 0
        assert loser.get(AvailabilitySlot, slot_id).is_available is False
    finally:
        loser.close()
        rival.close()
        engine.dispose()


def test_payment_failure_is_a_warning_not_a_rollback(db, people, payments, notifier) -> None:
    payments.fail_with = RuntimeError('card declined')

    outcome = booking.create_appointment(
        db,
        caller_id=people.patient.id,
        caller_role='patient',
        provider_id=people.doctor.id,
        start_time=START,
        appointment_type='in-person',
        clinic_id=people.clinic.id,
        amount=40.0,
        payments=payments,
        notifier=notifier,
    )

    assert outcome.warnings == ['Payment processing failed: card declined']
    assert db.query(Appointment).count() == 1
    assert {message.user_id for message in notifier.sent} == {people.patient.id, people.doctor.id}


def test_successful_payment_is_captured_after_commit(db, people, payments) -> None:
    outcome = booking.create_appointment(
        db,
        caller_id=people.patient.id,
        caller_role='patient',
        provider_id=people.doctor.id,
        start_time=START,
        appointment_type='telemedicine',
        payment_method='balance',
        amount=25.0,
        payments=payments,
    )

    assert outcome.warnings == []
    assert payments.charges == [(outcome.value.id, 'balance', 25.0)]


def test_zero_fee_booking_skips_payment(db, people, payments) -> None:
    _book(db, people, payments=payments)

    assert payments.charges == []
