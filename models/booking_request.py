from datetime import datetime
from models.db import db


class RequestStatus:
    DRAFT = "draft"
    AWAITING_PAYMENT = "awaiting_payment"
    AWAITING_PROVIDER_DECISION = "awaiting_provider_decision"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    TERMINAL = (ACCEPTED, REJECTED)


class PaymentStatus:
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"


class BookingRequest(db.Model):
    __tablename__ = "booking_requests"

    id = db.Column(db.Integer, primary_key=True)

    requester_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # exactly one of slot_id / course_id is set
    slot_id = db.Column(db.Integer, db.ForeignKey("time_slots.id"), nullable=True, index=True)
    course_id = db.Column(db.Integer, db.ForeignKey("courses.id"), nullable=True, index=True)

    proposed_title = db.Column(db.String(160), nullable=False)
    request_message = db.Column(db.Text, nullable=True)
    proposed_start = db.Column(db.DateTime, nullable=True)
    proposed_duration = db.Column(db.Integer, nullable=False, default=60)  # minutes

    status = db.Column(db.String(32), nullable=False, default=RequestStatus.DRAFT, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PaymentStatus.UNPAID)

    # captured once at pricing time, see services.pricing
    base_rate = db.Column(db.Numeric(10, 2), nullable=False)
    amount_charged = db.Column(db.Numeric(10, 2), nullable=False)
    payee_amount = db.Column(db.Numeric(10, 2), nullable=False)

    slot_reserved = db.Column(db.Boolean, default=False, nullable=False)
    rejection_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    submitted_at = db.Column(db.DateTime, nullable=True)  # start of the payment hold
    decided_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "(slot_id IS NULL) != (course_id IS NULL)",
            name="ck_booking_request_target",
        ),
    )
