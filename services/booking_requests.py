"""
Booking request state machine.

    draft --submit--> awaiting_payment --paid--> awaiting_provider_decision
    awaiting_payment --failed / abandoned--> draft
    awaiting_provider_decision --accept--> accepted
    awaiting_provider_decision --reject--> rejected

The slot is reserved on submit, the first moment the payer commits, and is
released on every path that does not end in ``accepted``. Each status write
is a conditional UPDATE on the expected prior status, so a request that was
moved by a concurrent caller is never moved twice.

Payment status only changes through ``record_payment_paid`` and
``record_payment_failed``, which the reconciliation service calls after it
has confirmed the outcome with the gateway.
"""
import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update

from models import db, atomic
from models.booking_request import BookingRequest, RequestStatus, PaymentStatus
from models.course import Course
from models.slot import SlotStatus
from models.user import User
from services import earnings, session_lifecycle, slot_allocator
from services.errors import (
    InvalidTransition,
    NotFound,
    PaymentNotConfirmed,
    SlotUnavailable,
    ValidationFailed,
)
from services.notifications import notify
from services.pricing import calculate_pricing
from utils.audit import log_event

logger = logging.getLogger(__name__)

SETTLE_ATTEMPTS = 3


def _reload(request_id) -> BookingRequest:
    return db.session.get(BookingRequest, request_id, populate_existing=True)


def _transition(req: BookingRequest, expected_status, *conditions, **values) -> bool:
    """Guarded write: applies ``values`` only if the row is still in ``expected_status``."""
    stmt = (
        update(BookingRequest)
        .where(BookingRequest.id == req.id, BookingRequest.status == expected_status, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    moved = db.session.execute(stmt).rowcount == 1
    _reload(req.id)
    return moved


def get_request(request_id) -> BookingRequest:
    req = db.session.get(BookingRequest, request_id)
    if req is None:
        raise NotFound("Booking request not found")
    return req


def _for_requester(request_id, requester_id) -> BookingRequest:
    req = get_request(request_id)
    if req.requester_id != requester_id:
        raise NotFound("Booking request not found")
    return req


def _for_provider(request_id, provider_id) -> BookingRequest:
    req = get_request(request_id)
    if req.provider_id != provider_id:
        raise NotFound("Booking request not found")
    return req


def create_booking_request(requester_id, slot_id=None, course_id=None, title=None, message=None,
                           proposed_start=None, proposed_duration=None, now=None) -> BookingRequest:
    """Add a draft request to the open transaction. Amounts are priced here, once."""
    now = now or datetime.utcnow()
    if bool(slot_id) == bool(course_id):
        raise ValidationFailed("Exactly one of slot_id or course_id is required")

    if slot_id:
        slot = slot_allocator.get_slot(slot_id)
        if slot.status != SlotStatus.AVAILABLE or slot.booked_count >= slot.capacity:
            raise SlotUnavailable(slot_id=slot.id)
        if slot.starts_at() <= now:
            raise SlotUnavailable("Cannot book past or started slots", slot_id=slot.id)
        provider_id = slot.provider_id
        base_rate = slot.base_rate
        proposed_start = slot.starts_at()
        proposed_duration = int((slot.ends_at() - slot.starts_at()).total_seconds() // 60)
        title = title or ("Group Session" if slot.is_group else "Individual Session")
    else:
        course = db.session.get(Course, course_id)
        if course is None or not course.is_active:
            raise NotFound("Course not found")
        if proposed_start is None:
            raise ValidationFailed("proposed_start is required for course bookings")
        if proposed_start.tzinfo is not None:
            raise ValidationFailed("proposed_start must be naive UTC")
        if proposed_start <= now:
            raise ValidationFailed("proposed_start must be in the future")
        provider_id = course.provider_id
        base_rate = course.base_rate
        proposed_duration = proposed_duration or course.duration_minutes
        title = title or course.title

    if provider_id == requester_id:
        raise ValidationFailed("You cannot book your own session")
    if proposed_duration is None or int(proposed_duration) <= 0:
        raise ValidationFailed("proposed_duration must be positive")

    pricing = calculate_pricing(base_rate)
    req = BookingRequest(
        requester_id=requester_id,
        provider_id=provider_id,
        slot_id=slot_id or None,
        course_id=course_id or None,
        proposed_title=title[:160],
        request_message=message,
        proposed_start=proposed_start,
        proposed_duration=int(proposed_duration),
        status=RequestStatus.DRAFT,
        payment_status=PaymentStatus.UNPAID,
        base_rate=pricing.base_rate,
        amount_charged=pricing.payer_amount,
        payee_amount=pricing.payee_amount,
        slot_reserved=False,
    )
    db.session.add(req)
    db.session.flush()
    log_event("BOOKING_REQUEST_CREATE", user_id=requester_id, entity="booking_request", entity_id=req.id,
              metadata={"slot_id": slot_id, "course_id": course_id})
    return req


def _submit(req: BookingRequest, now: datetime) -> BookingRequest:
    if req.status != RequestStatus.DRAFT:
        raise InvalidTransition(f"Request is {req.status}")
    if req.payment_status == PaymentStatus.PAID:
        raise InvalidTransition("Request is already paid")

    values = dict(
        status=RequestStatus.AWAITING_PAYMENT,
        payment_status=PaymentStatus.UNPAID,
        submitted_at=now,
    )
    if req.slot_id and not req.slot_reserved:
        slot_allocator.reserve(req.slot_id)
        values["slot_reserved"] = True
        log_event("SLOT_RESERVE", user_id=req.requester_id, entity="slot", entity_id=req.slot_id,
                  metadata={"booking_request_id": req.id})

    if not _transition(req, RequestStatus.DRAFT, BookingRequest.payment_status != PaymentStatus.PAID, **values):
        raise InvalidTransition("Request was changed concurrently")
    log_event("BOOKING_REQUEST_SUBMIT", user_id=req.requester_id, entity="booking_request", entity_id=req.id)
    return req


def create_and_submit(requester_id, now=None, **fields) -> BookingRequest:
    """
    Selecting a slot creates the request and reserves the slot in one
    transaction; losing the race leaves no request behind.
    """
    now = now or datetime.utcnow()
    with atomic():
        req = create_booking_request(requester_id, now=now, **fields)
        _submit(req, now)
    notify(db.session.get(User, req.provider_id), {
        "template": "request_received",
        "title": req.proposed_title,
        "start_time": req.proposed_start.isoformat() if req.proposed_start else None,
    })
    return req


def submit(request_id, requester_id, now=None) -> BookingRequest:
    """Resubmit a draft, e.g. after a failed or abandoned payment."""
    now = now or datetime.utcnow()
    req = _for_requester(request_id, requester_id)
    if req.slot_id and not req.slot_reserved:
        slot = slot_allocator.get_slot(req.slot_id)
        if slot.starts_at() <= now:
            raise SlotUnavailable("Cannot book past or started slots", slot_id=slot.id)
    with atomic():
        _submit(req, now)
    return req


def _settle_paid(req: BookingRequest) -> bool:
    not_paid = BookingRequest.payment_status != PaymentStatus.PAID

    if req.status == RequestStatus.AWAITING_PAYMENT:
        return _transition(req, RequestStatus.AWAITING_PAYMENT, not_paid,
                           status=RequestStatus.AWAITING_PROVIDER_DECISION,
                           payment_status=PaymentStatus.PAID)
    if req.status == RequestStatus.DRAFT:
        # paid after the hold ran out; take the slot back if it is still free
        values = dict(payment_status=PaymentStatus.PAID)
        reserved = False
        try:
            if req.slot_id and not req.slot_reserved:
                slot_allocator.reserve(req.slot_id)
                values["slot_reserved"] = True
                reserved = True
            values["status"] = RequestStatus.AWAITING_PROVIDER_DECISION
        except SlotUnavailable:
            logger.error("late payment for booking request %s but slot %s is taken; needs manual refund",
                         req.id, req.slot_id)
        moved = _transition(req, RequestStatus.DRAFT, not_paid,
                            BookingRequest.slot_reserved.is_(req.slot_reserved), **values)
        if not moved and reserved:
            slot_allocator.release(req.slot_id)
        return moved
    return _transition(req, req.status, not_paid, payment_status=PaymentStatus.PAID)


def _settle_failed(req: BookingRequest) -> bool:
    if req.status != RequestStatus.AWAITING_PAYMENT:
        return _transition(req, req.status, BookingRequest.payment_status == PaymentStatus.UNPAID,
                           payment_status=PaymentStatus.FAILED)

    was_reserved = req.slot_reserved
    moved = _transition(req, RequestStatus.AWAITING_PAYMENT,
                        BookingRequest.payment_status != PaymentStatus.PAID,
                        BookingRequest.slot_reserved.is_(was_reserved),
                        status=RequestStatus.DRAFT, payment_status=PaymentStatus.FAILED, slot_reserved=False)
    if moved and was_reserved:
        slot_allocator.release(req.slot_id)
        log_event("SLOT_RELEASE", entity="slot", entity_id=req.slot_id,
                  metadata={"booking_request_id": req.id, "reason": "payment_failed"})
    return moved


def _settle(request_id, apply, skip_when) -> bool:
    """
    Run a guarded payment write against the freshest row. A guard miss means
    another writer moved the request in between, so the row is re-read and the
    write re-planned from its new state. Giving up raises, which rolls back the
    caller's PaymentRecord write so the outcome can be delivered again.
    """
    for _ in range(SETTLE_ATTEMPTS):
        req = _reload(request_id)
        if req is None:
            raise NotFound("Booking request not found")
        if skip_when(req):
            return False
        if apply(req):
            return True
        logger.info("booking request %s changed during payment settlement, retrying", request_id)
    raise InvalidTransition("Booking request kept changing; payment outcome not applied", request_id=request_id)


def record_payment_paid(req: BookingRequest) -> bool:
    """
    Mark the request paid inside the reconciliation transaction.
    Returns False when it was already paid.
    """
    moved = _settle(req.id, _settle_paid, lambda r: r.payment_status == PaymentStatus.PAID)
    if moved:
        log_event("BOOKING_REQUEST_PAID", user_id=req.requester_id, entity="booking_request", entity_id=req.id,
                  metadata={"status": req.status})
    return moved


def record_payment_failed(req: BookingRequest) -> bool:
    """Payment failed: back to draft and give the slot back."""
    return _settle(
        req.id,
        _settle_failed,
        lambda r: r.payment_status in (PaymentStatus.PAID, PaymentStatus.FAILED),
    )


def accept(request_id, provider_id, now=None):
    """
    Accept a paid request. Reserving the slot (when not already held),
    creating the session, its attendance row and the earning record happen
    in one transaction.
    """
    now = now or datetime.utcnow()
    req = _for_provider(request_id, provider_id)
    if req.payment_status != PaymentStatus.PAID:
        raise PaymentNotConfirmed()
    if req.status != RequestStatus.AWAITING_PROVIDER_DECISION:
        raise InvalidTransition(f"Request is {req.status}")

    pricing = calculate_pricing(req.base_rate)
    with atomic():
        slot = None
        values = dict(status=RequestStatus.ACCEPTED, decided_at=now)
        if req.slot_id:
            slot = slot_allocator.reserve(req.slot_id) if not req.slot_reserved else slot_allocator.get_slot(req.slot_id)
            values["slot_reserved"] = True
        if not _transition(req, RequestStatus.AWAITING_PROVIDER_DECISION,
                           BookingRequest.payment_status == PaymentStatus.PAID, **values):
            raise InvalidTransition("Request was already decided")

        session = session_lifecycle.create_session_for_request(req, pricing, slot)
        earning = earnings.record_earning(session, req)
        log_event("BOOKING_REQUEST_ACCEPT", user_id=provider_id, entity="booking_request", entity_id=req.id,
                  metadata={"session_id": session.id, "earning_id": earning.id})

    template = {
        "template": "session_scheduled",
        "title": session.title,
        "start_time": session.start_time.isoformat(),
        "end_time": session.end_time.isoformat(),
        "meeting_link": session.meeting_link,
    }
    notify(db.session.get(User, req.requester_id), template)
    notify(db.session.get(User, req.provider_id), template)
    return session


def reject(request_id, provider_id, reason=None, now=None) -> BookingRequest:
    now = now or datetime.utcnow()
    req = _for_provider(request_id, provider_id)
    if req.payment_status != PaymentStatus.PAID:
        raise PaymentNotConfirmed()
    if req.status != RequestStatus.AWAITING_PROVIDER_DECISION:
        raise InvalidTransition(f"Request is {req.status}")

    with atomic():
        was_reserved = req.slot_reserved
        if not _transition(req, RequestStatus.AWAITING_PROVIDER_DECISION,
                           BookingRequest.slot_reserved.is_(was_reserved),
                           status=RequestStatus.REJECTED, decided_at=now, slot_reserved=False,
                           rejection_reason=reason[:255] if reason else None):
            raise InvalidTransition("Request was already decided")
        if was_reserved:
            slot_allocator.release(req.slot_id)
            log_event("SLOT_RELEASE", user_id=provider_id, entity="slot", entity_id=req.slot_id,
                      metadata={"booking_request_id": req.id, "reason": "rejected"})
        log_event("BOOKING_REQUEST_REJECT", user_id=provider_id, entity="booking_request", entity_id=req.id,
                  metadata={"reason": reason})

    notify(db.session.get(User, req.requester_id), {
        "template": "request_rejected",
        "title": req.proposed_title,
        "reason": reason,
    })
    return req


def abandon_stale_requests(now=None) -> int:
    """Requests still unpaid after the payment hold go back to draft."""
    now = now or datetime.utcnow()
    hold = timedelta(minutes=current_app.config.get("PAYMENT_HOLD_MINUTES", 30))
    stale = (
        BookingRequest.query
        .filter(
            BookingRequest.status == RequestStatus.AWAITING_PAYMENT,
            BookingRequest.payment_status != PaymentStatus.PAID,
            BookingRequest.submitted_at <= now - hold,
        )
        .all()
    )
    count = 0
    for req in stale:
        with atomic():
            was_reserved = req.slot_reserved
            if not _transition(req, RequestStatus.AWAITING_PAYMENT,
                               BookingRequest.payment_status != PaymentStatus.PAID,
                               BookingRequest.slot_reserved.is_(was_reserved),
                               status=RequestStatus.DRAFT, slot_reserved=False):
                continue
            if was_reserved:
                slot_allocator.release(req.slot_id)
            log_event("BOOKING_REQUEST_ABANDONED", entity="booking_request", entity_id=req.id,
                      metadata={"slot_released": was_reserved})
            count += 1
    logger.info("released %d abandoned booking requests", count)
    return count


def list_pending_for_provider(provider_id):
    return (
        BookingRequest.query
        .filter_by(provider_id=provider_id, status=RequestStatus.AWAITING_PROVIDER_DECISION)
        .order_by(BookingRequest.created_at.asc(), BookingRequest.id.asc())
        .all()
    )


def list_for_requester(requester_id, status=None):
    q = BookingRequest.query.filter_by(requester_id=requester_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(BookingRequest.created_at.desc(), BookingRequest.id.desc()).all()
