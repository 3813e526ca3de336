import os
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-that-is-long-enough-for-hs256')

from clinic_backend.database import create_schema  # noqa: E402
from clinic_backend.models.clinic import Clinic  # noqa: E402
from clinic_backend.models.user import User  # noqa: E402
from clinic_backend.services.collaborators import (  # noqa: E402
    Notifier,
    PaymentProcessor,
    PaymentResult,
    SettlementResult,
)


class RecordingPayments(PaymentProcessor):
    def __init__(self):
        self.charges = []
        self.completions = []
        self.refunds = []
        self.fail_with = None

    def process_appointment_payment(self, appointment_id, patient_id, provider_id, appointment_type, method, amount):
        if self.fail_with is not None:
            raise self.fail_with
        self.charges.append((appointment_id, method, amount))
        return PaymentResult(success=True)

    def process_completion_payment(self, appointment_id, patient_id, provider_id, appointment_type):
        self.completions.append(appointment_id)
        return SettlementResult(processed=True)

    def process_refund(self, appointment_id, patient_id, reason):
        self.refunds.append((appointment_id, reason))
        return SettlementResult(processed=True)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def notify(self, user_id, message, type, priority='normal', ref_id=None):
        self.sent.append(SimpleNamespace(user_id=user_id, message=message, type=type, priority=priority, ref_id=ref_id))


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    create_schema(bind=engine)
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def people(db):
    patient = User(email='pat@example.com', full_name='Pat Patient', role='patient')
    other_patient = User(email='sam@example.com', full_name='Sam Patient', role='patient')
    doctor = User(email='doc@example.com', full_name='Dana Doctor', role='doctor', specialty='Cardiology')
    other_doctor = User(email='lee@example.com', full_name='Lee Doctor', role='doctor')
    admin = User(email='admin@example.com', full_name='Ada Admin', role='clinic_admin')
    clinic = Clinic(name='Main Street Clinic', status='active')
    db.add_all([patient, other_patient, doctor, other_doctor, admin, clinic])
    db.commit()

    return SimpleNamespace(
        patient=patient,
        other_patient=other_patient,
        doctor=doctor,
        other_doctor=other_doctor,
        admin=admin,
        clinic=clinic,
    )


@pytest.fixture
def payments():
    return RecordingPayments()


@pytest.fixture
def notifier():
    return RecordingNotifier()
