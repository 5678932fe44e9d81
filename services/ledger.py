"""Transaction ledger: the single source of truth for "is this booking paid"."""
import threading
import time
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from models import db
from models.payment_event import PaymentEvent
from models.transaction import Transaction, TX_PENDING, TX_PAID, TX_CANCELED

_prepare_lock = threading.Lock()
_last_prepare_ms = 0


def next_prepare_id():
    """Millisecond timestamp, strictly increasing within this process."""
    global _last_prepare_ms
    now_ms = int(time.time() * 1000)
    with _prepare_lock:
        if now_ms <= _last_prepare_ms:
            now_ms = _last_prepare_ms + 1
        _last_prepare_ms = now_ms
    return str(now_ms)


def snapshot(kind, payload, error_code=None, when=None):
    return {
        "kind": kind,
        "error": error_code,
        "payload": payload,
        "at": (when or datetime.utcnow()).isoformat(),
    }


class SqlTransactionLedger:
    def __init__(self, session=None):
        self.session = session or db.session

    def find_paid(self, booking_id, user_id=None):
        q = self.session.query(Transaction).filter_by(booking_id=booking_id, state=TX_PAID)
        if user_id is not None:
            q = q.filter_by(user_id=user_id)
        return q.first()

    def get_by_click_trans_id(self, click_trans_id):
        return (
            self.session.query(Transaction)
            .filter_by(click_trans_id=str(click_trans_id))
            .populate_existing()
            .first()
        )

    def get_by_prepare_id(self, prepare_id):
        return (
            self.session.query(Transaction)
            .filter_by(prepare_id=str(prepare_id))
            .populate_existing()
            .first()
        )

    def latest_for_booking(self, booking_id):
        return (
            self.session.query(Transaction)
            .filter_by(booking_id=booking_id)
            .order_by(Transaction.id.desc())
            .first()
        )

    def history(self, booking_id):
        return (
            self.session.query(Transaction)
            .filter_by(booking_id=booking_id)
            .order_by(Transaction.id.asc())
            .all()
        )

    def create_pending(self, booking, click_trans_id, amount, when=None):
        """Insert a PENDING row. Returns ``(tx, created)``.

        A concurrent insert with the same ``click_trans_id`` loses on the unique
        constraint; the session is rolled back and the existing row returned.
        """
        tx = Transaction(
            booking_id=booking.id,
            user_id=booking.user_id,
            click_trans_id=str(click_trans_id),
            prepare_id=next_prepare_id(),
            state=TX_PENDING,
            amount=amount,
            create_date=when or datetime.utcnow(),
        )
        self.session.add(tx)
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            existing = self.get_by_click_trans_id(click_trans_id)
            if existing is None:
                raise
            return existing, False
        return tx, True

    def mark_paid(self, tx, when=None):
        """Compare-and-swap PENDING -> PAID. Returns True only for the winning caller."""
        return self._swap(tx, TX_PAID, perform_date=when or datetime.utcnow())

    def mark_canceled(self, tx, when=None):
        return self._swap(tx, TX_CANCELED, cancel_date=when or datetime.utcnow())

    def cancel_pending_for_booking(self, booking_id, when=None):
        # callers hold the place lock, so no complete can race this
        pending = (
            self.session.query(Transaction)
            .filter_by(booking_id=booking_id, state=TX_PENDING)
            .populate_existing()
            .all()
        )
        for tx in pending:
            tx.state = TX_CANCELED
            tx.cancel_date = when or datetime.utcnow()
        return len(pending)

    def record_event(self, booking, kind, payload, click_trans_id=None, error_code=None, when=None):
        when = when or datetime.utcnow()
        event = PaymentEvent(
            booking_id=booking.id,
            kind=kind,
            click_trans_id=str(click_trans_id) if click_trans_id is not None else None,
            error_code=error_code,
            payload_json=payload,
            created_at=when,
        )
        self.session.add(event)
        booking.payment_response = snapshot(kind, payload, error_code, when)
        return event

    def events(self, booking_id):
        return (
            self.session.query(PaymentEvent)
            .filter_by(booking_id=booking_id)
            .order_by(PaymentEvent.id.asc())
            .all()
        )

    def _swap(self, tx, new_state, **values):
        result = self.session.execute(
            update(Transaction)
            .where(Transaction.id == tx.id, Transaction.state == TX_PENDING)
            .values(state=new_state, **values)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(tx)
        return result.rowcount == 1
