"""Click SHOP-API prepare/complete handshake.

Every protocol outcome is a dict rendered with HTTP 200; only infrastructure
failures (missing secret, database errors) escape as exceptions.
"""
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from models.transaction import TX_PENDING, TX_PAID, TX_CANCELED
from services import click_signature
from services.errors import GatewayConfigError

logger = logging.getLogger(__name__)

SUCCESS = 0
SIGN_FAILED = -1
INVALID_AMOUNT = -2
ACTION_NOT_FOUND = -3
ALREADY_PAID = -4
USER_NOT_FOUND = -5
TRANSACTION_NOT_FOUND = -6
BAD_REQUEST = -8
TRANSACTION_CANCELED = -9

ERROR_NOTES = {
    SUCCESS: "Success",
    SIGN_FAILED: "SIGN CHECK FAILED!",
    INVALID_AMOUNT: "Incorrect parameter amount",
    ACTION_NOT_FOUND: "Action not found",
    ALREADY_PAID: "Already paid",
    USER_NOT_FOUND: "User does not exist",
    TRANSACTION_NOT_FOUND: "Transaction does not exist",
    BAD_REQUEST: "Error in request from click",
    TRANSACTION_CANCELED: "Transaction cancelled",
}

PREPARE_FIELDS = (
    "click_trans_id", "service_id", "merchant_trans_id",
    "amount", "action", "sign_time", "sign_string",
)
COMPLETE_FIELDS = (
    "click_trans_id", "service_id", "merchant_trans_id", "merchant_prepare_id",
    "amount", "action", "sign_time", "sign_string", "error",
)

_CENTS = Decimal("0.01")


def missing_fields(params, required):
    return [f for f in required if params.get(f) is None or str(params.get(f)).strip() == ""]


def normalize_amount(value):
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(_CENTS)


def _audit_payload(params):
    return {k: v for k, v in params.items() if k != "sign_string"}


class ClickProtocolHandler:
    def __init__(self, bookings, ledger, lifecycle, secret_key, service_id=None, clock=None):
        self.bookings = bookings
        self.ledger = ledger
        self.lifecycle = lifecycle
        self.secret_key = secret_key
        self.service_id = service_id
        self.clock = clock or datetime.utcnow

    def _reply(self, params, error, note=None, **ids):
        body = {
            "click_trans_id": params.get("click_trans_id"),
            "merchant_trans_id": params.get("merchant_trans_id"),
        }
        body.update(ids)
        body["error"] = error
        body["error_note"] = note or ERROR_NOTES[error]
        if error != SUCCESS:
            logger.warning(
                "click %s rejected: error=%s note=%s merchant_trans_id=%s",
                "complete" if str(params.get("action")) == "1" else "prepare",
                error, body["error_note"], params.get("merchant_trans_id"),
            )
        return body

    def _common_checks(self, params, expected_action, ids):
        """Shared validation. Returns ``(booking, amount, None)`` or ``(None, None, reply)``."""
        if not self.secret_key:
            raise GatewayConfigError("CLICK_SECRET_KEY is not configured")

        booking = self.bookings.get_by_request_id(str(params["merchant_trans_id"]).strip())
        if booking is None:
            return None, None, self._reply(params, TRANSACTION_NOT_FOUND, "Booking not found", **ids)
        if self.bookings.get_user(booking.user_id) is None:
            return None, None, self._reply(params, USER_NOT_FOUND, **ids)
        if self.bookings.get_place(booking.place_id) is None:
            return None, None, self._reply(params, BAD_REQUEST, "Place not found", **ids)

        if not click_signature.verify(params, self.secret_key):
            return None, None, self._reply(params, SIGN_FAILED, **ids)
        if self.service_id and str(params.get("service_id")) != str(self.service_id):
            return None, None, self._reply(params, BAD_REQUEST, "Unknown service_id", **ids)

        expected = normalize_amount(booking.final_total if booking.final_total is not None else booking.total_price)
        paid = normalize_amount(params.get("amount"))
        if paid is None or expected is None or paid != expected:
            note = "Incorrect parameter amount: expected %s, received %s" % (expected, params.get("amount"))
            return None, None, self._reply(params, INVALID_AMOUNT, note, **ids)

        if str(params.get("action")).strip() != str(expected_action):
            return None, None, self._reply(params, ACTION_NOT_FOUND, **ids)

        return booking, expected, None

    # ---------- prepare ----------
    def prepare(self, params):
        missing = missing_fields(params, PREPARE_FIELDS)
        if missing:
            return self._reply(params, BAD_REQUEST, "Missing required fields: %s" % ", ".join(missing),
                               merchant_prepare_id=None)

        ids = {"merchant_prepare_id": None}
        booking, amount, reply = self._common_checks(params, click_signature.ACTION_PREPARE, ids)
        if reply is not None:
            return reply

        click_trans_id = str(params["click_trans_id"]).strip()
        try:
            if booking.payment_status == "paid" or self.ledger.find_paid(booking.id) is not None:
                return self._reply(params, ALREADY_PAID, **ids)
            if booking.status == "rejected":
                return self._reply(params, TRANSACTION_CANCELED, **ids)

            existing = self.ledger.get_by_click_trans_id(click_trans_id)
            if existing is not None:
                return self._replay(params, booking, existing)

            if booking.status != "selected":
                return self._reply(params, BAD_REQUEST, "Booking is not awaiting payment", **ids)

            now = self.clock()
            tx, created = self.ledger.create_pending(booking, click_trans_id, amount, when=now)
            if not created:
                return self._replay(params, booking, tx)

            self.ledger.record_event(booking, "PREPARE", _audit_payload(params),
                                     click_trans_id=click_trans_id, error_code=SUCCESS, when=now)
            self.bookings.commit()
        except Exception:
            self.bookings.rollback()
            raise

        logger.info("click prepare ok booking=%s click_trans_id=%s prepare_id=%s",
                    booking.id, click_trans_id, tx.prepare_id)
        return self._reply(params, SUCCESS, merchant_prepare_id=tx.prepare_id)

    def _replay(self, params, booking, tx):
        ids = {"merchant_prepare_id": tx.prepare_id}
        if tx.booking_id != booking.id:
            return self._reply(params, BAD_REQUEST, "click_trans_id belongs to another booking",
                               merchant_prepare_id=None)
        if tx.state == TX_PAID:
            return self._reply(params, ALREADY_PAID, **ids)
        if tx.state == TX_CANCELED:
            return self._reply(params, TRANSACTION_CANCELED, **ids)
        return self._reply(params, SUCCESS, **ids)

    # ---------- complete ----------
    def complete(self, params):
        missing = missing_fields(params, COMPLETE_FIELDS)
        if missing:
            return self._reply(params, BAD_REQUEST, "Missing required fields: %s" % ", ".join(missing),
                               merchant_confirm_id=None)

        ids = {"merchant_confirm_id": None}
        booking, _, reply = self._common_checks(params, click_signature.ACTION_COMPLETE, ids)
        if reply is not None:
            return reply

        try:
            gateway_error = int(str(params["error"]).strip())
        except ValueError:
            return self._reply(params, BAD_REQUEST, "Invalid error field", **ids)

        click_trans_id = str(params["click_trans_id"]).strip()
        try:
            # lock order: place, then booking
            self.bookings.lock_place(booking.place_id)
            booking = self.bookings.lock_booking(booking.id)

            tx = self.ledger.get_by_prepare_id(str(params["merchant_prepare_id"]).strip())
            if tx is None or tx.booking_id != booking.id or tx.click_trans_id != click_trans_id:
                self.bookings.rollback()
                return self._reply(params, TRANSACTION_NOT_FOUND, **ids)

            ids = {"merchant_confirm_id": tx.id}
            if tx.state == TX_PAID or self.ledger.find_paid(booking.id) is not None:
                self.bookings.rollback()
                return self._reply(params, ALREADY_PAID, **ids)
            if tx.state == TX_CANCELED:
                self.bookings.rollback()
                return self._reply(params, TRANSACTION_CANCELED, **ids)

            now = self.clock()
            payload = _audit_payload(params)

            if gateway_error < 0:
                self.ledger.mark_canceled(tx, now)
                self.ledger.record_event(booking, "COMPLETE", payload, click_trans_id=click_trans_id,
                                         error_code=gateway_error, when=now)
                self.bookings.commit()
                return self._reply(params, TRANSACTION_NOT_FOUND,
                                   "Payment failed on the gateway side (error %s)" % gateway_error, **ids)

            if booking.status not in ("selected", "approved"):
                self.ledger.mark_canceled(tx, now)
                self.ledger.record_event(booking, "COMPLETE", payload, click_trans_id=click_trans_id,
                                         error_code=TRANSACTION_CANCELED, when=now)
                self.bookings.commit()
                return self._reply(params, TRANSACTION_CANCELED, **ids)

            if not self.ledger.mark_paid(tx, now):
                self.bookings.rollback()
                return self._reply(params, ALREADY_PAID, **ids)

            self.lifecycle.approve_from_payment(booking, tx.amount, now)
            self.ledger.record_event(booking, "COMPLETE", payload, click_trans_id=click_trans_id,
                                     error_code=SUCCESS, when=now)
            self.bookings.commit()
        except Exception:
            self.bookings.rollback()
            raise

        logger.info("click complete ok booking=%s click_trans_id=%s", booking.id, click_trans_id)
        return self._reply(params, SUCCESS, **ids)
