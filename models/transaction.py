from datetime import datetime
from models.db import db

TX_PENDING = "PENDING"
TX_PAID = "PAID"
TX_CANCELED = "CANCELED"

class Transaction(db.Model):
    __tablename__ = "transactions"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    provider = db.Column(db.String(20), nullable=False, default="CLICK")
    click_trans_id = db.Column(db.String(64), nullable=False, unique=True, index=True)
    prepare_id = db.Column(db.String(32), nullable=False, unique=True, index=True)

    state = db.Column(db.String(20), nullable=False, default=TX_PENDING)  # PENDING, PAID, CANCELED
    amount = db.Column(db.Numeric(12, 2), nullable=False)

    create_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    perform_date = db.Column(db.DateTime, nullable=True)
    cancel_date = db.Column(db.DateTime, nullable=True)
