"""Server-side payment status reconciliation.

``smart_check`` never trusts a cached flag: each call re-reads the ledger and
converges the booking when a PAID transaction exists but the booking lags.
Status codes mirror the gateway's: 0 created, 1 processing, 2 paid.
"""
import logging
from datetime import datetime

from models.transaction import TX_PENDING, TX_CANCELED
from services.click_protocol import TRANSACTION_CANCELED

logger = logging.getLogger(__name__)

STATUS_CREATED = 0
STATUS_PROCESSING = 1
STATUS_PAID = 2


def _result(is_paid, payment_status, error_code=0, message=None, **extra):
    body = {
        "success": True,
        "isPaid": is_paid,
        "paymentStatus": payment_status,
        "errorCode": error_code,
        "message": message,
    }
    body.update(extra)
    return body


class PaymentReconciler:
    def __init__(self, bookings, ledger, lifecycle, clock=None):
        self.bookings = bookings
        self.ledger = ledger
        self.lifecycle = lifecycle
        self.clock = clock or datetime.utcnow

    def smart_check(self, booking):
        paid = self.ledger.find_paid(booking.id)

        if booking.status == "approved":
            if paid is None:
                return _result(True, STATUS_PAID, paymentId="manual-approval", manuallyApproved=True,
                               message="Booking approved by an agent")
            return _result(True, STATUS_PAID, paymentId=paid.click_trans_id,
                           message="Payment already confirmed")

        if booking.status == "rejected":
            return _result(False, None, TRANSACTION_CANCELED, "Booking was rejected",
                           errorNote="Booking was rejected")

        if paid is not None and booking.status == "selected":
            return self._converge(booking, paid)

        # an older attempt can still complete after a newer one was cancelled
        if any(t.state == TX_PENDING for t in self.ledger.history(booking.id)):
            return _result(False, STATUS_PROCESSING, message="Payment is processing")

        latest = self.ledger.latest_for_booking(booking.id)
        if latest is None:
            return _result(False, STATUS_CREATED, message="Waiting for payment")
        if latest.state == TX_CANCELED:
            return _result(False, None, TRANSACTION_CANCELED, "Payment was cancelled",
                           errorNote="Payment was cancelled")
        return _result(False, STATUS_CREATED, message="Payment not completed")

    def _converge(self, booking, paid):
        try:
            self.bookings.lock_place(booking.place_id)
            booking = self.bookings.lock_booking(booking.id)
            if booking.status == "selected":
                when = paid.perform_date or self.clock()
                self.lifecycle.approve_from_payment(booking, paid.amount, when)
                self.ledger.record_event(booking, "RECONCILE", {"transactionId": paid.id},
                                         click_trans_id=paid.click_trans_id, error_code=0, when=self.clock())
                logger.info("booking %s approved by reconciliation from transaction %s", booking.id, paid.id)
            self.bookings.commit()
        except Exception:
            self.bookings.rollback()
            raise
        return _result(True, STATUS_PAID, paymentId=paid.click_trans_id, message="Payment confirmed")
