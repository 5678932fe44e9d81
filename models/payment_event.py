from datetime import datetime
from models.db import db

class PaymentEvent(db.Model):
    """Append-only record of every gateway interaction for a booking."""
    __tablename__ = "payment_events"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)

    kind = db.Column(db.String(20), nullable=False)  # PREPARE, COMPLETE, INVOICE, RECONCILE
    click_trans_id = db.Column(db.String(64), nullable=True)
    error_code = db.Column(db.Integer, nullable=True)
    payload_json = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
