"""Availability rules for a place on requested dates and an optional time range."""
import logging
from collections import namedtuple
from datetime import date

from services.slots import (
    booking_slots,
    conflicts_with_request,
    format_time,
    parse_date,
    parse_time,
    weekday_index,
)

logger = logging.getLogger(__name__)

AvailabilityFilter = namedtuple("AvailabilityFilter", ["dates", "start_time", "end_time"])


def parse_filters(args, today=None):
    """Build an AvailabilityFilter from query args (``dates``, ``startTime``, ``endTime``).

    Invalid or past dates are dropped. A time range that is malformed or does
    not increase is cleared entirely.
    """
    today = today or date.today()
    dates = []
    for raw in (args.get("dates") or "").split(","):
        raw = raw.strip()
        if not raw:
            continue
        d = parse_date(raw)
        if d is None or d < today or d in dates:
            continue
        dates.append(d)

    start = parse_time(args.get("startTime"))
    end = parse_time(args.get("endTime"))
    if start is None or end is None or start >= end:
        start = end = None
    return AvailabilityFilter(dates, start, end)


def _to_minutes(value):
    if value is None or isinstance(value, int):
        return value
    return parse_time(value)


def operating_hours(place, d):
    """(start, end) minutes the place accepts bookings on ``d``, or None if unrestricted."""
    slots = place.weekday_time_slots or {}
    idx = weekday_index(d)
    hours = slots.get(str(idx)) or slots.get(idx)
    if hours:
        start, end = parse_time(hours.get("start")), parse_time(hours.get("end"))
        if start is not None and end is not None:
            return start, end
    start, end = parse_time(place.check_in), parse_time(place.check_out)
    if start is not None and end is not None and start < end:
        return start, end
    return None


def calendar_reason(place, d, start=None, end=None):
    """Why ``d`` (and the optional range) falls outside the place's calendar, or None."""
    if place.start_date and d < place.start_date:
        return "Place is not available before %s" % place.start_date.isoformat()
    if place.end_date and d > place.end_date:
        return "Place is not available after %s" % place.end_date.isoformat()
    if d.isoformat() in (place.blocked_dates or []):
        return "Date %s is blocked" % d.isoformat()
    if weekday_index(d) in [int(w) for w in (place.blocked_weekdays or [])]:
        return "Place is closed on this weekday"
    if start is not None and end is not None:
        hours = operating_hours(place, d)
        if hours and (start < hours[0] or end > hours[1]):
            return "Requested time is outside operating hours (%s-%s)" % (
                format_time(hours[0]), format_time(hours[1]))
    return None


class AvailabilityEngine:
    def __init__(self, bookings):
        self.bookings = bookings

    def approved_bookings(self, place_id, exclude_id=None):
        return self.bookings.list_for_place(place_id, ("approved",), exclude_id=exclude_id)

    def unavailable_reason(self, place, d, start=None, end=None, approved=None):
        reason = calendar_reason(place, d, start, end)
        if reason:
            return reason
        if approved is None:
            approved = self.approved_bookings(place.id)
        for booking in approved:
            if conflicts_with_request(booking, d, start, end):
                return "Time slot is already booked"
        return None

    def is_available(self, place, requested_dates, start_time=None, end_time=None):
        start, end = _to_minutes(start_time), _to_minutes(end_time)
        if start is None or end is None:
            start = end = None
        elif start >= end:
            return False

        approved = None
        for raw in requested_dates:
            d = parse_date(raw)
            if d is None:
                return False
            if calendar_reason(place, d, start, end):
                return False
            if approved is None:
                approved = self.approved_bookings(place.id)
            if any(conflicts_with_request(b, d, start, end) for b in approved):
                return False
        return True

    def filter_available(self, places, filters):
        if not filters.dates:
            return [p.id for p in places]

        available = []
        for place in places:
            try:
                if self.is_available(place, filters.dates, filters.start_time, filters.end_time):
                    available.append(place.id)
            except Exception:
                logger.exception("availability check failed for place %s", place.id)
        return available

    def day_view(self, place, d):
        """Booked ranges plus calendar constraints for one date."""
        booked = []
        for booking in self.approved_bookings(place.id):
            slots = booking_slots(booking)
            if not slots:
                if booking.check_in_date <= d <= booking.check_out_date:
                    booked.append({"bookingId": booking.id, "fullDay": True})
                continue
            for s in slots:
                if s.date == d:
                    booked.append({
                        "bookingId": booking.id,
                        "startTime": format_time(s.start),
                        "endTime": format_time(s.end),
                    })

        hours = operating_hours(place, d)
        return {
            "placeId": place.id,
            "date": d.isoformat(),
            "available": calendar_reason(place, d) is None,
            "operatingHours": (
                {"start": format_time(hours[0]), "end": format_time(hours[1])} if hours else None
            ),
            "minimumHours": place.minimum_hours,
            "bookedSlots": booked,
            "blockedDates": list(place.blocked_dates or []),
            "blockedWeekdays": list(place.blocked_weekdays or []),
        }
