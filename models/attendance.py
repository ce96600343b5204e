from models.db import db

class Attendance(db.Model):
    __tablename__ = "session_attendance"

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("tutoring_sessions.id"), nullable=False, index=True)
    requester_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    joined_at = db.Column(db.DateTime, nullable=True)

    session = db.relationship("TutoringSession", back_populates="attendees")

    __table_args__ = (
        db.UniqueConstraint("session_id", "requester_id", name="uq_attendance_once"),
    )
