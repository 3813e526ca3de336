"""Payment and notification collaborators.

Both are called strictly after the core transaction has committed. Their
failures are logged and surfaced as warnings; they never undo a booking or a
status transition.
"""

import logging
from dataclasses import dataclass, field


logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    success: bool
    error: str | None = None


@dataclass
class SettlementResult:
    processed: bool
    message: str | None = None


@dataclass
class Outcome:
    """Value returned by engine operations: the committed entity plus warnings."""
    value: object
    warnings: list[str] = field(default_factory=list)


class PaymentProcessor:
    """Default payment collaborator. Records requests in the log only."""

    def process_appointment_payment(
        self,
        appointment_id: int,
        patient_id: int,
        provider_id: int,
        appointment_type: str,
        method: str,
        amount: float,
    ) -> PaymentResult:
        logger.info(
            'Payment of %.2f (%s) requested for appointment %s by patient %s',
            amount, method, appointment_id, patient_id,
        )
        return PaymentResult(success=True)

    def process_completion_payment(
        self,
        appointment_id: int,
        patient_id: int,
        provider_id: int,
        appointment_type: str,
    ) -> SettlementResult:
        logger.info('Completion payment requested for appointment %s', appointment_id)
        return SettlementResult(processed=True)

    def process_refund(self, appointment_id: int, patient_id: int, reason: str) -> SettlementResult:
        logger.info('Refund requested for appointment %s: %s', appointment_id, reason)
        return SettlementResult(processed=True)


class Notifier:
    """Default notification collaborator. Records messages in the log only."""

    def notify(self, user_id: int, message: str, type: str, priority: str = 'normal', ref_id: int | None = None) -> None:
        logger.info('Notify user %s [%s/%s]: %s', user_id, type, priority, message)


_payment_processor = PaymentProcessor()
_notifier = Notifier()


def get_payment_processor() -> PaymentProcessor:
    return _payment_processor


def get_notifier() -> Notifier:
    return _notifier


def capture_payment(
    payments: PaymentProcessor,
    appointment,
    method: str,
    amount: float,
) -> str | None:
    """Charge for a booking; returns a warning message on failure."""
    try:
        result = payments.process_appointment_payment(
            appointment.id,
            appointment.patient_id,
            appointment.provider_id,
            appointment.appointment_type,
            method,
            amount,
        )
    except Exception as exc:
        logger.warning('Payment for appointment %s raised: %s', appointment.id, exc)
        return f'Payment processing failed: {exc}'

    if not result.success:
        logger.warning('Payment for appointment %s failed: %s', appointment.id, result.error)
        return f'Payment processing failed: {result.error or "unknown error"}'
    return None


def settle_completion(payments: PaymentProcessor, appointment) -> str | None:
    try:
        result = payments.process_completion_payment(
            appointment.id,
            appointment.patient_id,
            appointment.provider_id,
            appointment.appointment_type,
        )
    except Exception as exc:
        logger.warning('Completion payment for appointment %s raised: %s', appointment.id, exc)
        return f'Completion payment failed: {exc}'

    if not result.processed:
        logger.warning('Completion payment for appointment %s not processed: %s', appointment.id, result.message)
        return f'Completion payment not processed: {result.message or "unknown reason"}'
    return None


def refund(payments: PaymentProcessor, appointment, reason: str) -> str | None:
    try:
        result = payments.process_refund(appointment.id, appointment.patient_id, reason)
    except Exception as exc:
        logger.warning('Refund for appointment %s raised: %s', appointment.id, exc)
        return f'Refund failed: {exc}'

    if not result.processed:
        logger.warning('Refund for appointment %s not processed: %s', appointment.id, result.message)
        return f'Refund not processed: {result.message or "unknown reason"}'
    return None


def send_notification(
    notifier: Notifier,
    user_id: int,
    message: str,
    type: str,
    priority: str = 'normal',
    ref_id: int | None = None,
) -> str | None:
    try:
        notifier.notify(user_id, message, type, priority, ref_id)
    except Exception as exc:
        logger.warning('Notification to user %s failed: %s', user_id, exc)
        return f'Notification to user {user_id} failed.'
    return None
