"""In-memory stand-ins for the SQL repositories, safe to share across threads."""
import itertools
import threading
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

from models.transaction import TX_PENDING, TX_PAID, TX_CANCELED
from services.ledger import next_prepare_id, snapshot


def actor(user_id, *roles, phone_number=None):
    return SimpleNamespace(id=user_id, role_names=set(roles), phone_number=phone_number)


def make_place(place_id=1, owner_user_id=10, **overrides):
    fields = dict(
        id=place_id,
        owner_user_id=owner_user_id,
        title="Place %s" % place_id,
        start_date=None,
        end_date=None,
        blocked_dates=[],
        blocked_weekdays=[],
        weekday_time_slots={},
        check_in=None,
        check_out=None,
        minimum_hours=1,
        lock_version=0,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


BOOKING_DEFAULTS = dict(
    time_slots=[],
    num_of_guests=1,
    guest_name=None,
    guest_phone=None,
    total_price=Decimal("100.00"),
    service_fee=Decimal("0.00"),
    final_total=Decimal("100.00"),
    status="pending",
    payment_status="unpaid",
    paid_at=None,
    click_invoice_id=None,
    click_invoice_created_at=None,
    payment_response=None,
    paid_to_host=False,
    paid_to_host_at=None,
    selected_at=None,
    approved_at=None,
    rejected_at=None,
    rejection_reason=None,
    lock_version=0,
)


class FakeBookingRepository:
    def __init__(self):
        self.places = {}
        self.bookings = {}
        self.users = {}
        self._ids = itertools.count(1)
        self._ids_lock = threading.Lock()
        self._row_locks = defaultdict(threading.RLock)
        self._held = threading.local()
        self.commits = 0
        self.rollbacks = 0

    # ---------- fixtures ----------
    def add_place(self, place):
        self.places[place.id] = place
        self.users.setdefault(place.owner_user_id, SimpleNamespace(id=place.owner_user_id))
        return place

    def add_user(self, user_id):
        self.users[user_id] = SimpleNamespace(id=user_id)

    def seed_booking(self, **fields):
        booking = self.new_booking(**fields)
        self.add(booking)
        self.users.setdefault(booking.user_id, SimpleNamespace(id=booking.user_id))
        return booking

    # ---------- repository interface ----------
    def new_booking(self, **fields):
        data = dict(BOOKING_DEFAULTS, id=None, created_at=datetime.utcnow())
        data.update(fields)
        if "unique_request_id" not in data:
            data["unique_request_id"] = "REQ-TEST-%s" % len(self.bookings)
        if data.get("check_out_date") is None:
            data["check_out_date"] = data.get("check_in_date")
        return SimpleNamespace(**data)

    def add(self, booking):
        if booking.id is None:
            with self._ids_lock:
                booking.id = next(self._ids)
        self.bookings[booking.id] = booking

    def get(self, booking_id):
        return self.bookings.get(booking_id)

    def get_by_request_id(self, unique_request_id):
        for b in self.bookings.values():
            if b.unique_request_id == unique_request_id:
                return b
        return None

    def get_place(self, place_id):
        return self.places.get(place_id)

    def get_user(self, user_id):
        return self.users.get(user_id)

    def list_for_place(self, place_id, statuses, exclude_id=None):
        return [
            b for b in list(self.bookings.values())
            if b.place_id == place_id and b.status in statuses and b.id != exclude_id
        ]

    def list_by_status(self, statuses):
        return [b for b in list(self.bookings.values()) if b.status in statuses]

    def list_bookings(self, user_id=None, owner_id=None, paid_to_host=None, limit=200):
        out = []
        for b in self.bookings.values():
            if user_id is not None and b.user_id != user_id:
                continue
            if owner_id is not None and self.places[b.place_id].owner_user_id != owner_id:
                continue
            if paid_to_host is not None and (b.status != "approved" or bool(b.paid_to_host) != paid_to_host):
                continue
            out.append(b)
        return out[:limit]

    def count_open(self, owner_id=None):
        return len([
            b for b in self.list_bookings(owner_id=owner_id) if b.status in ("pending", "selected")
        ])

    def _hold(self, key):
        lock = self._row_locks[key]
        lock.acquire()
        if not hasattr(self._held, "locks"):
            self._held.locks = []
        self._held.locks.append(lock)

    def _release_all(self):
        for lock in reversed(getattr(self._held, "locks", [])):
            lock.release()
        self._held.locks = []

    def lock_place(self, place_id):
        place = self.places.get(place_id)
        if place is None:
            return None
        self._hold(("place", place_id))
        place.lock_version += 1
        return place

    def lock_booking(self, booking_id):
        booking = self.bookings.get(booking_id)
        if booking is None:
            return None
        self._hold(("booking", booking_id))
        booking.lock_version += 1
        return booking

    def refresh(self, booking):
        return booking

    def commit(self):
        self.commits += 1
        self._release_all()

    def rollback(self):
        self.rollbacks += 1
        self._release_all()


class FakeLedger:
    def __init__(self):
        self.transactions = []
        self.events = []
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def find_paid(self, booking_id, user_id=None):
        for t in self.transactions:
            if t.booking_id == booking_id and t.state == TX_PAID and user_id in (None, t.user_id):
                return t
        return None

    def get_by_click_trans_id(self, click_trans_id):
        for t in self.transactions:
            if t.click_trans_id == str(click_trans_id):
                return t
        return None

    def get_by_prepare_id(self, prepare_id):
        for t in self.transactions:
            if t.prepare_id == str(prepare_id):
                return t
        return None

    def latest_for_booking(self, booking_id):
        history = self.history(booking_id)
        return history[-1] if history else None

    def history(self, booking_id):
        return [t for t in self.transactions if t.booking_id == booking_id]

    def create_pending(self, booking, click_trans_id, amount, when=None):
        with self._lock:
            existing = self.get_by_click_trans_id(click_trans_id)
            if existing is not None:
                return existing, False
            tx = SimpleNamespace(
                id=next(self._ids),
                booking_id=booking.id,
                user_id=booking.user_id,
                provider="CLICK",
                click_trans_id=str(click_trans_id),
                prepare_id=next_prepare_id(),
                state=TX_PENDING,
                amount=amount,
                create_date=when or datetime.utcnow(),
                perform_date=None,
                cancel_date=None,
            )
            self.transactions.append(tx)
            return tx, True

    def mark_paid(self, tx, when=None):
        with self._lock:
            if tx.state != TX_PENDING:
                return False
            tx.state = TX_PAID
            tx.perform_date = when or datetime.utcnow()
            return True

    def mark_canceled(self, tx, when=None):
        with self._lock:
            if tx.state != TX_PENDING:
                return False
            tx.state = TX_CANCELED
            tx.cancel_date = when or datetime.utcnow()
            return True

    def cancel_pending_for_booking(self, booking_id, when=None):
        count = 0
        for t in self.history(booking_id):
            if self.mark_canceled(t, when):
                count += 1
        return count

    def record_event(self, booking, kind, payload, click_trans_id=None, error_code=None, when=None):
        event = SimpleNamespace(booking_id=booking.id, kind=kind, payload_json=payload,
                                click_trans_id=click_trans_id, error_code=error_code)
        self.events.append(event)
        booking.payment_response = snapshot(kind, payload, error_code, when)
        return event

    def events_for(self, booking_id, kind=None):
        return [e for e in self.events if e.booking_id == booking_id and kind in (None, e.kind)]
