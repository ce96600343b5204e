from datetime import datetime
from models.db import db


class PaymentRecordStatus:
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PaymentRecord(db.Model):
    __tablename__ = "payment_records"

    id = db.Column(db.Integer, primary_key=True)
    booking_request_id = db.Column(
        db.Integer, db.ForeignKey("booking_requests.id"), nullable=False, index=True
    )

    provider = db.Column(db.String(20), nullable=False, default="STRIPE")
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="INR")

    status = db.Column(db.String(20), nullable=False, default=PaymentRecordStatus.PENDING)
    # every inbound gateway event is matched on this
    gateway_order_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    session_token = db.Column(db.Text, nullable=True)  # checkout URL / payment session id
    last_gateway_status = db.Column(db.String(40), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)
