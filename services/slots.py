"""Time-slot parsing and overlap rules shared by availability and lifecycle.

All ranges are half-open: ``[start, end)`` conflicts with ``[s, e)`` iff
``start < e and end > s``. A booking without slots is a full-day booking
covering every date in ``[check_in_date, check_out_date]`` (inclusive).
"""
import re
from collections import namedtuple
from datetime import date, timedelta

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

TimeSlot = namedtuple("TimeSlot", ["date", "start", "end"])  # date, minutes, minutes


def parse_time(value):
    """'HH:MM' -> minutes since midnight, or None when malformed."""
    if not isinstance(value, str):
        return None
    m = _TIME_RE.match(value.strip())
    if not m:
        return None
    return int(m.group(1)) * 60 + int(m.group(2))


def format_time(minutes):
    return "%02d:%02d" % divmod(minutes, 60)


def parse_date(value):
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        return None


def weekday_index(d):
    # 0 = Sunday .. 6 = Saturday
    return (d.weekday() + 1) % 7


def times_overlap(start1, end1, start2, end2):
    return start1 < end2 and end1 > start2


def parse_slot(raw):
    """Parse one ``{date, startTime, endTime}`` mapping, or return None."""
    if not isinstance(raw, dict):
        return None
    d = parse_date(raw.get("date"))
    start = parse_time(raw.get("startTime"))
    end = parse_time(raw.get("endTime"))
    if d is None or start is None or end is None or start >= end:
        return None
    return TimeSlot(d, start, end)


def booking_slots(booking):
    slots = []
    for raw in booking.time_slots or []:
        slot = parse_slot(raw)
        if slot is not None:
            slots.append(slot)
    return slots


def iter_dates(first, last):
    day = first
    while day <= last:
        yield day
        day += timedelta(days=1)


def covers_date(booking, d):
    """True when a full-day booking spans ``d``."""
    return booking.check_in_date <= d <= booking.check_out_date


def conflicts_with_request(booking, d, start=None, end=None):
    """Does an existing booking block a request for date ``d`` (optionally timed)?"""
    slots = booking_slots(booking)
    if not slots:
        return covers_date(booking, d)
    if start is None or end is None:
        # partial-day bookings only block date-level requests through their time
        return False
    return any(s.date == d and times_overlap(start, end, s.start, s.end) for s in slots)


def slots_overlap(slots_a, span_a, slots_b, span_b):
    """Overlap between two slot sets; an empty set means the full-day span."""
    if slots_a and slots_b:
        return any(
            a.date == b.date and times_overlap(a.start, a.end, b.start, b.end)
            for a in slots_a for b in slots_b
        )
    if slots_a:
        return any(span_b[0] <= a.date <= span_b[1] for a in slots_a)
    if slots_b:
        return any(span_a[0] <= b.date <= span_a[1] for b in slots_b)
    return span_a[0] <= span_b[1] and span_b[0] <= span_a[1]


def bookings_overlap(a, b):
    return slots_overlap(
        booking_slots(a), (a.check_in_date, a.check_out_date),
        booking_slots(b), (b.check_in_date, b.check_out_date),
    )
