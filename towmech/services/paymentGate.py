"""
Payment Gate
============

The dispatch engine does not collect money. It only asks whether the
booking fee for a job has been confirmed before offering the job to
providers. The payment collaborator records that fact on the job
(``booking_fee_status``) and calls the payment-confirmed endpoint.
"""

from __future__ import annotations

from typing import Protocol

from towmech.models.job import BookingFeeStatus, Job


class PaymentGate(Protocol):
    def is_payment_confirmed(self, job: Job) -> bool:
        ...


class BookingFeePaymentGate:
    """Treats a job as paid once its booking fee is marked PAID."""

    def is_payment_confirmed(self, job: Job) -> bool:
        return job.booking_fee_status == BookingFeeStatus.PAID


default_payment_gate = BookingFeePaymentGate()
