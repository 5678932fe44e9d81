"""SQLAlchemy-backed booking repository.

Services receive a repository instance instead of reaching for ``Model.query``
so that tests can swap in the in-memory fakes.
"""
from sqlalchemy import func

from models import db
from models.booking import Booking
from models.place import Place
from models.user import User


class SqlBookingRepository:
    def __init__(self, session=None):
        self.session = session or db.session

    # ---------- reads ----------
    def get(self, booking_id):
        return self.session.get(Booking, booking_id)

    def get_by_request_id(self, unique_request_id):
        return (
            self.session.query(Booking)
            .filter_by(unique_request_id=unique_request_id)
            .first()
        )

    def get_place(self, place_id):
        return self.session.get(Place, place_id)

    def get_user(self, user_id):
        return self.session.get(User, user_id)

    def list_for_place(self, place_id, statuses, exclude_id=None):
        q = (
            self.session.query(Booking)
            .filter(Booking.place_id == place_id, Booking.status.in_(statuses))
            .populate_existing()
        )
        if exclude_id is not None:
            q = q.filter(Booking.id != exclude_id)
        return q.order_by(Booking.created_at.asc(), Booking.id.asc()).all()

    def list_by_status(self, statuses):
        return (
            self.session.query(Booking)
            .filter(Booking.status.in_(statuses))
            .order_by(Booking.id.asc())
            .all()
        )

    def list_bookings(self, user_id=None, owner_id=None, paid_to_host=None, limit=200):
        q = self.session.query(Booking)
        if user_id is not None:
            q = q.filter(Booking.user_id == user_id)
        if owner_id is not None:
            q = q.join(Place, Place.id == Booking.place_id).filter(Place.owner_user_id == owner_id)
        if paid_to_host is not None:
            q = q.filter(Booking.status == "approved", Booking.paid_to_host.is_(paid_to_host))
        return q.order_by(Booking.created_at.desc(), Booking.id.desc()).limit(limit).all()

    def count_open(self, owner_id=None):
        q = self.session.query(func.count(Booking.id)).filter(Booking.status.in_(("pending", "selected")))
        if owner_id is not None:
            q = q.join(Place, Place.id == Booking.place_id).filter(Place.owner_user_id == owner_id)
        return q.scalar() or 0

    # ---------- serialization ----------
    def lock_place(self, place_id):
        """Row-lock the place and bump its version so concurrent writers serialize."""
        place = (
            self.session.query(Place)
            .filter_by(id=place_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if place is None:
            return None
        place.lock_version = (place.lock_version or 0) + 1
        self.session.flush()
        return place

    def lock_booking(self, booking_id):
        booking = (
            self.session.query(Booking)
            .filter_by(id=booking_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if booking is None:
            return None
        booking.lock_version = (booking.lock_version or 0) + 1
        self.session.flush()
        return booking

    def refresh(self, booking):
        self.session.refresh(booking)
        return booking

    # ---------- writes ----------
    def new_booking(self, **fields):
        return Booking(**fields)

    def add(self, obj):
        self.session.add(obj)

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()
