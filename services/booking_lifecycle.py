"""Booking state machine: pending -> selected -> approved, with rejection paths.

Transitions that change who holds a time slot (select, approve) are serialized
per place. At most one booking among a set of overlapping bookings of a place
may be ``selected`` at a time, and an approved booking blocks all overlaps.
"""
import logging
import secrets
import string
import time
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal, InvalidOperation
from zoneinfo import ZoneInfo

from services.availability import AvailabilityEngine, calendar_reason
from services.errors import (
    AccessDenied,
    BookingNotFound,
    InvalidTransition,
    PaymentConfirmationRequired,
    PlaceNotFound,
    SlotConflict,
    ValidationFailed,
)
from services.slots import (
    booking_slots,
    bookings_overlap,
    format_time,
    iter_dates,
    parse_date,
    parse_slot,
    slots_overlap,
)

logger = logging.getLogger(__name__)

PENDING = "pending"
SELECTED = "selected"
APPROVED = "approved"
REJECTED = "rejected"
STATUSES = (PENDING, SELECTED, APPROVED, REJECTED)
OPEN_STATUSES = (PENDING, SELECTED)

ROLE_CLIENT = "CLIENT"
ROLE_HOST = "HOST"
ROLE_AGENT = "AGENT"

TRANSITIONS = {
    (PENDING, SELECTED),
    (PENDING, APPROVED),
    (SELECTED, APPROVED),
    (PENDING, REJECTED),
    (SELECTED, REJECTED),
    (APPROVED, REJECTED),
}

SIBLING_REJECTION_REASON = "Time slots were approved for another booking"
EXPIRED_REASON = "Booking expired before it was approved"

_BASE36 = string.digits + string.ascii_uppercase


def _base36(n):
    out = ""
    while True:
        n, rem = divmod(n, 36)
        out = _BASE36[rem] + out
        if n == 0:
            return out


def generate_unique_request_id(now_ms=None):
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return "REQ-%s-%s" % (_base36(now_ms), suffix)


def parse_amount(value):
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount.quantize(Decimal("0.01"))


def _roles(actor):
    return set(getattr(actor, "role_names", ()) or ())


def is_agent(actor):
    return ROLE_AGENT in _roles(actor)


def owns_place(actor, place):
    return place is not None and ROLE_HOST in _roles(actor) and place.owner_user_id == actor.id


def is_requester(actor, booking):
    return booking.user_id == actor.id


class BookingLifecycle:
    def __init__(self, bookings, ledger, availability=None, timezone="Asia/Tashkent",
                 local_now=None, utcnow=None):
        self.bookings = bookings
        self.ledger = ledger
        self.availability = availability or AvailabilityEngine(bookings)
        self._tz = ZoneInfo(timezone)
        self._local_now = local_now or (lambda: datetime.now(self._tz).replace(tzinfo=None))
        self._utcnow = utcnow or datetime.utcnow

    # ---------- access ----------
    def can_access(self, actor, booking, place):
        return is_agent(actor) or is_requester(actor, booking) or owns_place(actor, place)

    def get_for_actor(self, booking_id, actor):
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound()
        place = self.bookings.get_place(booking.place_id)
        if not self.can_access(actor, booking, place):
            raise AccessDenied("Access denied")
        return booking

    def list_for_actor(self, actor, user_id=None, paid_to_host=None):
        if is_agent(actor):
            return self.bookings.list_bookings(user_id=user_id, paid_to_host=paid_to_host)
        if ROLE_HOST in _roles(actor):
            return self.bookings.list_bookings(owner_id=actor.id)
        return self.bookings.list_bookings(user_id=actor.id)

    def counts(self, actor):
        if is_agent(actor):
            return {"pending": self.bookings.count_open()}
        if ROLE_HOST in _roles(actor):
            return {"pending": self.bookings.count_open(owner_id=actor.id)}
        raise AccessDenied("Only hosts and agents can view booking counts")

    # ---------- create ----------
    def create(self, actor, data):
        if ROLE_CLIENT not in _roles(actor):
            raise AccessDenied("Only clients can create bookings")

        place_id = data.get("placeId") or data.get("place")
        place = self.bookings.get_place(place_id) if place_id else None
        if place is None:
            raise PlaceNotFound()

        try:
            raw_guests = data.get("numOfGuests")
            guests = 1 if raw_guests in (None, "") else int(raw_guests)
        except (TypeError, ValueError):
            raise ValidationFailed("numOfGuests must be a whole number")
        if guests < 1:
            raise ValidationFailed("numOfGuests must be at least 1")

        total_price = parse_amount(data.get("totalPrice"))
        if total_price is None or total_price <= 0:
            raise ValidationFailed("totalPrice must be a positive amount")
        service_fee = parse_amount(data.get("serviceFee")) or Decimal("0.00")
        if service_fee < 0:
            raise ValidationFailed("serviceFee cannot be negative")
        final_total = parse_amount(data.get("finalTotal")) or total_price
        if final_total <= 0:
            raise ValidationFailed("finalTotal must be a positive amount")

        raw_slots = data.get("selectedTimeSlots") or data.get("timeSlots") or []
        if not isinstance(raw_slots, list):
            raise ValidationFailed("selectedTimeSlots must be a list")

        slots = []
        for raw in raw_slots:
            slot = parse_slot(raw)
            if slot is None:
                raise ValidationFailed(
                    "Each time slot needs date, startTime and endTime (HH:MM) with startTime before endTime"
                )
            if slot.end - slot.start < (place.minimum_hours or 0) * 60:
                raise ValidationFailed("Minimum booking duration is %s hour(s)" % place.minimum_hours)
            slots.append(slot)
        slots.sort()

        if slots:
            check_in, check_out = slots[0].date, slots[-1].date
        else:
            check_in = parse_date(data.get("checkInDate"))
            check_out = parse_date(data.get("checkOutDate"))
            if check_in is None or check_out is None:
                raise ValidationFailed("checkInDate and checkOutDate are required for full-day bookings")
            if check_out < check_in:
                raise ValidationFailed("checkOutDate cannot be before checkInDate")

        self._reject_past(slots, check_in)

        if slots:
            for s in slots:
                reason = calendar_reason(place, s.date, s.start, s.end)
                if reason:
                    raise SlotConflict(reason, conflictingSlot=self._slot_dict(s))
        else:
            for d in iter_dates(check_in, check_out):
                reason = calendar_reason(place, d)
                if reason:
                    raise SlotConflict(reason, conflictingDate=d.isoformat())

        booking = self.bookings.new_booking(
            user_id=actor.id,
            place_id=place.id,
            time_slots=[self._slot_dict(s) for s in slots],
            check_in_date=check_in,
            check_out_date=check_out,
            num_of_guests=guests,
            guest_name=(data.get("guestName") or "").strip() or None,
            guest_phone=(data.get("guestPhone") or "").strip() or None,
            total_price=total_price,
            service_fee=service_fee,
            final_total=final_total,
            status=PENDING,
            unique_request_id=generate_unique_request_id(),
            payment_status="unpaid",
            paid_to_host=False,
            lock_version=0,
        )

        approved = self.availability.approved_bookings(place.id)
        taken = [b for b in approved if bookings_overlap(booking, b)]
        if taken:
            raise SlotConflict("Selected time slots are already booked",
                               conflictingBookingIds=[b.id for b in taken])

        self.bookings.add(booking)
        self.bookings.commit()
        logger.info("booking %s created for place %s", booking.id, place.id)
        return booking

    def _reject_past(self, slots, check_in):
        now = self._local_now()
        today = now.date()
        minutes = now.hour * 60 + now.minute
        if not slots:
            if check_in < today:
                raise ValidationFailed("Cannot book dates in the past")
            return
        for s in slots:
            if s.date < today or (s.date == today and s.start <= minutes):
                raise ValidationFailed("Cannot book a time slot in the past",
                                       conflictingSlot=self._slot_dict(s))

    @staticmethod
    def _slot_dict(slot):
        return {
            "date": slot.date.isoformat(),
            "startTime": format_time(slot.start),
            "endTime": format_time(slot.end),
        }

    # ---------- transitions ----------
    @contextmanager
    def _place_transaction(self, place_id):
        try:
            place = self.bookings.lock_place(place_id)
            if place is None:
                raise PlaceNotFound()
            yield place
            self.bookings.commit()
        except Exception:
            self.bookings.rollback()
            raise

    def _require_transition(self, booking, target):
        if (booking.status, target) not in TRANSITIONS:
            raise InvalidTransition(
                "Cannot change booking status from %s to %s" % (booking.status, target)
            )

    def _overlapping(self, booking, statuses):
        return [
            other
            for other in self.bookings.list_for_place(booking.place_id, statuses, exclude_id=booking.id)
            if bookings_overlap(booking, other)
        ]

    def update_status(self, booking_id, actor, status, payment_confirmed=False,
                      agent_approval=False, reason=None):
        if status not in STATUSES:
            raise ValidationFailed("Invalid status: %s" % status)
        booking = self.get_for_actor(booking_id, actor)

        if status == SELECTED:
            return self.select(booking, actor)
        if status == APPROVED:
            return self.approve(booking, actor, payment_confirmed, agent_approval)
        if status == REJECTED:
            return self.reject(booking, actor, reason)
        raise InvalidTransition("Cannot move a booking back to pending")

    def select(self, booking, actor):
        place = self.bookings.get_place(booking.place_id)
        if not (is_agent(actor) or owns_place(actor, place)):
            raise AccessDenied("Only the place owner or an agent can select a booking")

        with self._place_transaction(booking.place_id):
            booking = self.bookings.refresh(booking)
            self._require_transition(booking, SELECTED)

            siblings = self._overlapping(booking, (SELECTED, APPROVED))
            approved = [b.id for b in siblings if b.status == APPROVED]
            if approved:
                raise SlotConflict("Time slots are already approved for another booking",
                                   conflictingBookingIds=approved)
            held = [b.id for b in siblings if b.status == SELECTED]
            if held:
                raise SlotConflict("Another booking is already selected for these time slots",
                                   conflictingBookingIds=held)

            booking.status = SELECTED
            booking.selected_at = self._utcnow()
        return booking

    def approve(self, booking, actor, payment_confirmed=False, agent_approval=False):
        place = self.bookings.get_place(booking.place_id)
        agent = is_agent(actor)
        owner = owns_place(actor, place)
        if not (agent or owner):
            raise AccessDenied("Only the place owner or an agent can approve a booking")

        with self._place_transaction(booking.place_id):
            booking = self.bookings.refresh(booking)
            self._require_transition(booking, APPROVED)

            paid_tx = None
            if booking.status == PENDING:
                if not agent:
                    raise AccessDenied("Only agents can approve a pending booking directly")
            elif agent_approval:
                if not agent:
                    raise AccessDenied("Only agents can approve without payment")
            elif payment_confirmed:
                paid_tx = self.ledger.find_paid(booking.id)
                if paid_tx is None:
                    raise PaymentConfirmationRequired()
            else:
                raise PaymentConfirmationRequired()

            siblings = self._overlapping(booking, (PENDING, SELECTED, APPROVED))
            approved = [b.id for b in siblings if b.status == APPROVED]
            if approved:
                raise SlotConflict("Time slots are already approved for another booking",
                                   conflictingBookingIds=approved)
            held = [b.id for b in siblings if b.status == SELECTED]
            if held:
                raise SlotConflict("Another booking is selected for these time slots",
                                   conflictingBookingIds=held)

            now = self._utcnow()
            booking.status = APPROVED
            booking.approved_at = now
            if paid_tx is not None:
                self._stamp_payment(booking, paid_tx.amount, paid_tx.perform_date or now)
            self._reject_siblings(siblings, now)
        return booking

    def approve_from_payment(self, booking, amount, when):
        """System transition once the ledger holds a PAID transaction.

        The caller owns the database transaction and the locks; nothing is
        committed here.
        """
        if booking.status not in (SELECTED, APPROVED):
            raise InvalidTransition("Booking %s cannot be paid in status %s" % (booking.id, booking.status))

        siblings = self._overlapping(booking, OPEN_STATUSES)
        if booking.status == SELECTED:
            booking.status = APPROVED
            booking.approved_at = when
        self._stamp_payment(booking, amount, when)
        self._reject_siblings(siblings, when)
        return booking

    @staticmethod
    def _stamp_payment(booking, amount, when):
        booking.payment_status = "paid"
        booking.paid_at = when
        booking.final_total = amount

    def _reject_siblings(self, siblings, when):
        for other in siblings:
            if other.status not in OPEN_STATUSES:
                continue
            other.status = REJECTED
            other.rejected_at = when
            other.rejection_reason = SIBLING_REJECTION_REASON
            self.ledger.cancel_pending_for_booking(other.id, when)
            logger.info("booking %s rejected, slots went to another booking", other.id)

    def reject(self, booking, actor, reason=None):
        place = self.bookings.get_place(booking.place_id)
        agent = is_agent(actor)
        owner = owns_place(actor, place)
        requester = is_requester(actor, booking)

        with self._place_transaction(booking.place_id):
            booking = self.bookings.refresh(booking)
            self._require_transition(booking, REJECTED)
            if booking.status == APPROVED and not agent:
                raise AccessDenied("Only agents can reject an approved booking")
            if not (agent or owner or requester):
                raise AccessDenied("Access denied")

            now = self._utcnow()
            booking.status = REJECTED
            booking.rejected_at = now
            booking.rejection_reason = (reason or "").strip()[:255] or None
            self.ledger.cancel_pending_for_booking(booking.id, now)
        return booking

    # ---------- agent / host tools ----------
    def competing(self, actor, place_id, raw_slots, exclude_id=None):
        place = self.bookings.get_place(place_id)
        if place is None:
            raise PlaceNotFound()
        if not (is_agent(actor) or owns_place(actor, place)):
            raise AccessDenied("Only the place owner or an agent can view competing bookings")

        if not isinstance(raw_slots, list) or not raw_slots:
            raise ValidationFailed("timeSlots must be a non-empty list")
        slots = [parse_slot(raw) for raw in raw_slots]
        if any(s is None for s in slots):
            raise ValidationFailed("Invalid timeSlots format")
        span = (min(s.date for s in slots), max(s.date for s in slots))

        return [
            other
            for other in self.bookings.list_for_place(place.id, OPEN_STATUSES, exclude_id=exclude_id)
            if slots_overlap(slots, span, booking_slots(other), (other.check_in_date, other.check_out_date))
        ]

    def mark_paid_to_host(self, booking_id, actor):
        if not is_agent(actor):
            raise AccessDenied("Only agents can mark bookings as paid to host")
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise BookingNotFound()

        with self._place_transaction(booking.place_id):
            booking = self.bookings.refresh(booking)
            if booking.status != APPROVED:
                raise InvalidTransition("Only approved bookings can be marked as paid to host")
            if booking.paid_to_host:
                raise InvalidTransition("Booking is already marked as paid to host")
            booking.paid_to_host = True
            booking.paid_to_host_at = self._utcnow()
        return booking

    def expire_stale(self):
        """Reject open bookings whose every slot (or whole stay) is already over."""
        now = self._local_now()
        today = now.date()
        minutes = now.hour * 60 + now.minute

        expired = []
        for booking in self.bookings.list_by_status(OPEN_STATUSES):
            slots = booking_slots(booking)
            if slots:
                over = all(s.date < today or (s.date == today and s.end <= minutes) for s in slots)
            else:
                over = booking.check_out_date < today
            if not over:
                continue

            with self._place_transaction(booking.place_id):
                booking = self.bookings.refresh(booking)
                if booking.status not in OPEN_STATUSES:
                    continue
                when = self._utcnow()
                booking.status = REJECTED
                booking.rejected_at = when
                booking.rejection_reason = EXPIRED_REASON
                self.ledger.cancel_pending_for_booking(booking.id, when)
            expired.append(booking)
        return expired
