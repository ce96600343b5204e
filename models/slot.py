from datetime import datetime
from models.db import db


class SlotStatus:
    AVAILABLE = "available"
    BOOKED = "booked"
    EXPIRED = "expired"


class TimeSlot(db.Model):
    __tablename__ = "time_slots"

    id = db.Column(db.Integer, primary_key=True)

    provider_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    capacity = db.Column(db.Integer, nullable=False, default=1)  # 1 = one-to-one
    booked_count = db.Column(db.Integer, nullable=False, default=0)
    base_rate = db.Column(db.Numeric(10, 2), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=SlotStatus.AVAILABLE, index=True)
    # bumped by every guarded write in services.slot_allocator
    version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("provider_id", "date", "start_time", "end_time", name="uq_provider_timeslot"),
        db.CheckConstraint("booked_count >= 0 AND booked_count <= capacity", name="ck_slot_booked_count"),
        db.CheckConstraint("capacity >= 1", name="ck_slot_capacity"),
    )

    @property
    def is_group(self) -> bool:
        return self.capacity > 1

    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start_time)

    def ends_at(self) -> datetime:
        return datetime.combine(self.date, self.end_time)
