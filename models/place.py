from datetime import datetime
from models.db import db

class Place(db.Model):
    __tablename__ = "places"

    id = db.Column(db.Integer, primary_key=True)
    owner_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    title = db.Column(db.String(160), nullable=False)

    # Calendar constraints (advisory; approved bookings are the real conflict source)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    blocked_dates = db.Column(db.JSON, nullable=False, default=list)        # ["2026-01-20", ...]
    blocked_weekdays = db.Column(db.JSON, nullable=False, default=list)     # 0 = Sunday .. 6 = Saturday
    weekday_time_slots = db.Column(db.JSON, nullable=False, default=dict)   # {"1": {"start": "09:00", "end": "18:00"}}
    check_in = db.Column(db.String(5), nullable=True)    # "HH:MM"
    check_out = db.Column(db.String(5), nullable=True)
    minimum_hours = db.Column(db.Integer, nullable=False, default=1)

    # bumped whenever a booking transition on this place is serialized
    lock_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
