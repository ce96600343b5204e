"""
Slot allocation.

Availability lives on the ``time_slots`` row itself. ``reserve`` and
``release`` are single conditional UPDATEs whose WHERE clause carries the
expected prior state; a zero affected-row count means another request got
there first. No in-process locks are used, so any number of app instances
can share the same database.

``reserve``/``release`` do not commit: they run inside the caller's
transaction (submit, accept, reject, payment failure).
"""
import logging
from datetime import datetime

from sqlalchemy import and_, case, or_, update
from sqlalchemy.exc import IntegrityError

from models import db, atomic
from models.slot import TimeSlot, SlotStatus
from services.errors import (
    AlreadyExists,
    InvalidTransition,
    NotFound,
    SlotUnavailable,
    ValidationFailed,
)
from services.pricing import to_rate
from utils.audit import log_event

logger = logging.getLogger(__name__)


def _reload(slot_id):
    # bulk UPDATEs bypass the identity map
    return db.session.get(TimeSlot, slot_id, populate_existing=True)


def get_slot(slot_id) -> TimeSlot:
    slot = db.session.get(TimeSlot, slot_id)
    if slot is None:
        raise NotFound("Slot not found")
    return slot


def publish_slot(provider_id, date, start_time, end_time, base_rate, capacity=1) -> TimeSlot:
    if end_time <= start_time:
        raise ValidationFailed("end_time must be after start_time")
    if capacity is None or int(capacity) < 1:
        raise ValidationFailed("capacity must be at least 1")

    slot = TimeSlot(
        provider_id=provider_id,
        date=date,
        start_time=start_time,
        end_time=end_time,
        base_rate=to_rate(base_rate),
        capacity=int(capacity),
        booked_count=0,
        status=SlotStatus.AVAILABLE,
    )
    try:
        with atomic():
            db.session.add(slot)
            db.session.flush()
            log_event("SLOT_PUBLISH", user_id=provider_id, entity="slot", entity_id=slot.id,
                      metadata={"capacity": slot.capacity})
    except IntegrityError:
        raise AlreadyExists("Slot already exists for that time")
    return slot


def list_available(provider_id, now: datetime):
    today = now.date()
    return (
        TimeSlot.query
        .filter(
            TimeSlot.provider_id == provider_id,
            TimeSlot.status == SlotStatus.AVAILABLE,
            TimeSlot.booked_count < TimeSlot.capacity,
            or_(
                TimeSlot.date > today,
                and_(TimeSlot.date == today, TimeSlot.start_time > now.time()),
            ),
        )
        .order_by(TimeSlot.date.asc(), TimeSlot.start_time.asc())
        .all()
    )


def reserve(slot_id) -> TimeSlot:
    """
    Take one seat on the slot. One-to-one slots flip to booked; group slots
    only count up. Raises SlotUnavailable when the guard does not match.
    """
    stmt = (
        update(TimeSlot)
        .where(
            TimeSlot.id == slot_id,
            TimeSlot.status == SlotStatus.AVAILABLE,
            TimeSlot.booked_count < TimeSlot.capacity,
        )
        .values(
            booked_count=TimeSlot.booked_count + 1,
            status=case((TimeSlot.capacity == 1, SlotStatus.BOOKED), else_=TimeSlot.status),
            version=TimeSlot.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        if _reload(slot_id) is None:
            raise NotFound("Slot not found")
        logger.info("reservation lost for slot %s", slot_id)
        raise SlotUnavailable(slot_id=slot_id)
    return _reload(slot_id)


def release(slot_id) -> bool:
    """
    Give back one seat. Releasing a slot with nothing booked is a no-op.
    An expired slot keeps its status.
    """
    stmt = (
        update(TimeSlot)
        .where(TimeSlot.id == slot_id, TimeSlot.booked_count > 0)
        .values(
            booked_count=TimeSlot.booked_count - 1,
            status=case(
                (and_(TimeSlot.capacity == 1, TimeSlot.status == SlotStatus.BOOKED), SlotStatus.AVAILABLE),
                else_=TimeSlot.status,
            ),
            version=TimeSlot.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    released = db.session.execute(stmt).rowcount == 1
    _reload(slot_id)
    return released


def expire_sweep(now: datetime) -> int:
    stmt = (
        update(TimeSlot)
        .where(TimeSlot.status == SlotStatus.AVAILABLE, TimeSlot.date < now.date())
        .values(status=SlotStatus.EXPIRED, version=TimeSlot.version + 1)
        .execution_options(synchronize_session=False)
    )
    with atomic():
        count = db.session.execute(stmt).rowcount
        if count:
            log_event("SLOT_EXPIRE_SWEEP", entity="slot", metadata={"expired": count})
    db.session.expire_all()
    logger.info("expired %d slots", count)
    return count


def set_group_slot_open(slot_id, provider_id, is_open: bool) -> TimeSlot:
    slot = get_slot(slot_id)
    if slot.provider_id != provider_id:
        raise NotFound("Slot not found")
    if not slot.is_group:
        raise InvalidTransition("Only group slots can be opened or closed manually")

    current = SlotStatus.BOOKED if is_open else SlotStatus.AVAILABLE
    target = SlotStatus.AVAILABLE if is_open else SlotStatus.BOOKED
    stmt = (
        update(TimeSlot)
        .where(TimeSlot.id == slot_id, TimeSlot.status.in_((current, target)))
        .values(status=target, version=TimeSlot.version + 1)
        .execution_options(synchronize_session=False)
    )
    with atomic():
        if db.session.execute(stmt).rowcount != 1:
            raise InvalidTransition("Slot is expired")
        log_event("SLOT_OPEN" if is_open else "SLOT_CLOSE", user_id=provider_id,
                  entity="slot", entity_id=slot_id)
    return _reload(slot_id)
