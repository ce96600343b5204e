from datetime import datetime
from models.db import db


class SessionStatus:
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    TERMINAL = (COMPLETED, CANCELLED)


class TutoringSession(db.Model):
    __tablename__ = "tutoring_sessions"

    id = db.Column(db.Integer, primary_key=True)
    booking_request_id = db.Column(
        db.Integer, db.ForeignKey("booking_requests.id"), nullable=False, unique=True
    )
    provider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(160), nullable=False)
    description = db.Column(db.Text, nullable=True)
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False)

    status = db.Column(db.String(20), nullable=False, default=SessionStatus.SCHEDULED, index=True)
    meeting_link = db.Column(db.String(255), nullable=True)

    # payment snapshot at acceptance
    base_rate = db.Column(db.Numeric(10, 2), nullable=False)
    amount_charged = db.Column(db.Numeric(10, 2), nullable=False)
    payee_amount = db.Column(db.Numeric(10, 2), nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    started_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, nullable=True)

    attendees = db.relationship("Attendance", back_populates="session", lazy="select")
