from datetime import datetime
from models.db import db

class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    place_id = db.Column(db.Integer, db.ForeignKey("places.id"), nullable=False, index=True)

    # [{"date": "2026-01-20", "startTime": "09:00", "endTime": "11:00"}, ...]
    # empty list means a full-day booking over check_in_date..check_out_date
    time_slots = db.Column(db.JSON, nullable=False, default=list)
    check_in_date = db.Column(db.Date, nullable=False)
    check_out_date = db.Column(db.Date, nullable=False)

    num_of_guests = db.Column(db.Integer, nullable=False, default=1)
    guest_name = db.Column(db.String(120), nullable=True)
    guest_phone = db.Column(db.String(30), nullable=True)

    total_price = db.Column(db.Numeric(12, 2), nullable=False)
    service_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    final_total = db.Column(db.Numeric(12, 2), nullable=False)

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    # status values: pending, selected, approved, rejected

    # gateway correlation key; never expose the numeric id to the gateway
    unique_request_id = db.Column(db.String(40), nullable=False, unique=True, index=True)

    payment_status = db.Column(db.String(20), nullable=False, default="unpaid")  # unpaid, paid
    paid_at = db.Column(db.DateTime, nullable=True)
    click_invoice_id = db.Column(db.String(64), nullable=True)
    click_invoice_created_at = db.Column(db.DateTime, nullable=True)
    payment_response = db.Column(db.JSON, nullable=True)  # latest PaymentEvent snapshot

    paid_to_host = db.Column(db.Boolean, nullable=False, default=False)
    paid_to_host_at = db.Column(db.DateTime, nullable=True)

    selected_at = db.Column(db.DateTime, nullable=True)
    approved_at = db.Column(db.DateTime, nullable=True)
    rejected_at = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    lock_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
