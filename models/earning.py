from datetime import datetime
from models.db import db


class EarningStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


class EarningRecord(db.Model):
    __tablename__ = "earning_records"

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    # one record per session
    session_id = db.Column(db.Integer, db.ForeignKey("tutoring_sessions.id"), nullable=False, unique=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=EarningStatus.PENDING)
    release_date = db.Column(db.Date, nullable=True)  # set by settlement

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
