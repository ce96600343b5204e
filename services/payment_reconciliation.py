"""
Payment reconciliation.

A payment outcome can arrive through three channels: the browser coming back
from the gateway (return URL), the gateway's webhook, and polling. All three
end in :func:`apply_outcome`, which is keyed on the gateway order id and
writes at most one transition per order no matter how often an outcome is
redelivered. The return channel never trusts what the client says; it asks
the gateway.
"""
import logging
import time
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update

from models import db, atomic
from models.booking_request import RequestStatus, PaymentStatus
from models.payment import PaymentRecord, PaymentRecordStatus
from models.user import User
from services import booking_requests
from services.errors import (
    GatewayUnavailable,
    InvalidTransition,
    NotFound,
    PaymentTimeout,
    UnknownOrder,
)
from services.notifications import notify
from services.payment_gateway import GatewayEvent, PaymentOutcome
from utils.audit import log_event

logger = logging.getLogger(__name__)

_RECORD_STATUS = {
    PaymentOutcome.PAID: PaymentRecordStatus.PAID,
    PaymentOutcome.FAILED: PaymentRecordStatus.FAILED,
}


def get_gateway():
    return current_app.extensions["payment_gateway"]


def find_order(order_id) -> PaymentRecord:
    record = None
    if order_id:
        record = PaymentRecord.query.filter_by(gateway_order_id=order_id).populate_existing().first()
    if record is None:
        logger.warning("payment event for unknown order %r dropped", order_id)
        raise UnknownOrder(order_id=order_id)
    return record


def _reload(record_id) -> PaymentRecord:
    return db.session.get(PaymentRecord, record_id, populate_existing=True)


def _reusable_order(req, now):
    """
    The pending order opened for the current submission, if it is still inside
    the poll window. Older pending orders stay on record so a late gateway
    confirmation can still be reconciled, but the payer gets a fresh checkout.
    """
    timeout = timedelta(seconds=current_app.config.get("PAYMENT_POLL_TIMEOUT_SECONDS", 600))
    q = PaymentRecord.query.filter_by(booking_request_id=req.id, status=PaymentRecordStatus.PENDING)
    if req.submitted_at is not None:
        q = q.filter(PaymentRecord.created_at >= req.submitted_at)
    record = q.order_by(PaymentRecord.id.desc()).first()
    if record is None or now - record.created_at >= timeout:
        return None
    return record


def create_order(request_id, payer: User, now=None) -> PaymentRecord:
    """
    Open (or reuse) a gateway order for a submitted request. A pending order
    from the current submission is handed back as-is so page reloads and
    polling never create a second one; after a timeout or a resubmit the
    payer gets a new order.
    """
    now = now or datetime.utcnow()
    req = booking_requests.get_request(request_id)
    if req.requester_id != payer.id:
        raise NotFound("Booking request not found")
    if req.payment_status == PaymentStatus.PAID:
        raise InvalidTransition("Payment already processed")
    if req.status != RequestStatus.AWAITING_PAYMENT:
        raise InvalidTransition(f"Request is {req.status}")

    existing = _reusable_order(req, now)
    if existing is not None:
        return existing

    base_url = current_app.config.get("PUBLIC_BASE_URL", "").rstrip("/")
    gateway = get_gateway()
    # GatewayUnavailable propagates before anything is written
    order = gateway.create_order(
        req.amount_charged,
        {
            "user_id": payer.id,
            "email": payer.email,
            "name": payer.full_name,
            "booking_request_id": req.id,
            "description": req.proposed_title,
        },
        return_url=f"{base_url}/payments/return",
        notify_url=f"{base_url}/webhooks/stripe",
    )

    record = PaymentRecord(
        booking_request_id=req.id,
        provider=getattr(gateway, "name", "GATEWAY"),
        amount=req.amount_charged,
        currency=current_app.config.get("PAYMENT_CURRENCY", "INR"),
        status=PaymentRecordStatus.PENDING,
        gateway_order_id=order.order_id,
        session_token=order.session_token,
        created_at=now,
    )
    with atomic():
        db.session.add(record)
        db.session.flush()
        log_event("PAYMENT_ORDER_CREATE", user_id=payer.id, entity="payment", entity_id=record.id,
                  metadata={"order_id": order.order_id, "booking_request_id": req.id})
    return record


def apply_outcome(order_id, outcome: PaymentOutcome, source: str, raw_status=None, now=None) -> bool:
    """
    Apply a gateway-confirmed outcome. Returns True only for the call that
    actually moved the payment out of pending; duplicates are no-ops.
    """
    now = now or datetime.utcnow()
    record = find_order(order_id)
    if not outcome.is_terminal:
        return False

    target = _RECORD_STATUS[outcome]
    if record.status == target:
        return False
    if record.status != PaymentRecordStatus.PENDING:
        logger.warning("order %s already %s, ignoring %s from %s", order_id, record.status, target, source)
        return False

    with atomic():
        stmt = (
            update(PaymentRecord)
            .where(PaymentRecord.id == record.id, PaymentRecord.status == PaymentRecordStatus.PENDING)
            .values(
                status=target,
                last_gateway_status=raw_status or outcome.value,
                paid_at=now if outcome is PaymentOutcome.PAID else None,
            )
            .execution_options(synchronize_session=False)
        )
        if db.session.execute(stmt).rowcount != 1:
            # another channel got here first
            return False

        req = booking_requests.get_request(record.booking_request_id)
        if outcome is PaymentOutcome.PAID:
            booking_requests.record_payment_paid(req)
        else:
            booking_requests.record_payment_failed(req)
        log_event("PAYMENT_PAID" if outcome is PaymentOutcome.PAID else "PAYMENT_FAILED",
                  entity="payment", entity_id=record.id,
                  metadata={"order_id": order_id, "source": source, "booking_request_id": req.id})

    _reload(record.id)
    logger.info("order %s -> %s via %s", order_id, target, source)
    if outcome is PaymentOutcome.PAID:
        notify(db.session.get(User, req.requester_id), {
            "template": "payment_confirmed",
            "title": req.proposed_title,
            "amount": str(record.amount),
        })
    return True


def handle_webhook_event(event: GatewayEvent) -> bool:
    return apply_outcome(event.order_id, event.outcome, source="webhook", raw_status=event.raw_status)


def check_order(order_id, now=None, enforce_timeout=True) -> PaymentRecord:
    """
    One reconciliation step against the gateway. Gateway errors leave state
    untouched; the caller simply checks again later. Past the poll timeout a
    still-pending order raises PaymentTimeout without changing anything.
    """
    now = now or datetime.utcnow()
    record = find_order(order_id)
    if record.status != PaymentRecordStatus.PENDING:
        return record

    try:
        event = get_gateway().get_order_status(order_id)
    except GatewayUnavailable:
        logger.warning("status check for order %s failed, will retry", order_id)
        event = None

    if event is not None and event.outcome.is_terminal:
        apply_outcome(order_id, event.outcome, source="poll", raw_status=event.raw_status, now=now)
        return _reload(record.id)

    timeout = current_app.config.get("PAYMENT_POLL_TIMEOUT_SECONDS", 600)
    if enforce_timeout and now - record.created_at >= timedelta(seconds=timeout):
        raise PaymentTimeout(order_id=order_id)
    return record


def verify_return(order_id, now=None) -> PaymentRecord:
    return check_order(order_id, now=now, enforce_timeout=False)


def poll_order(order_id, interval=None, timeout=None, sleep=time.sleep, clock=time.monotonic) -> PaymentRecord:
    """
    Poll until the order settles. Stops on a terminal outcome; after
    ``timeout`` seconds raises PaymentTimeout and leaves the request as it was.
    """
    interval = interval if interval is not None else current_app.config.get("PAYMENT_POLL_INTERVAL_SECONDS", 5)
    timeout = timeout if timeout is not None else current_app.config.get("PAYMENT_POLL_TIMEOUT_SECONDS", 600)
    gateway = get_gateway()
    deadline = clock() + timeout

    while True:
        record = find_order(order_id)
        if record.status != PaymentRecordStatus.PENDING:
            return record

        try:
            event = gateway.get_order_status(order_id)
        except GatewayUnavailable:
            logger.warning("poll for order %s failed, retrying in %ss", order_id, interval)
        else:
            if event.outcome.is_terminal:
                apply_outcome(order_id, event.outcome, source="poll", raw_status=event.raw_status)
                return _reload(record.id)

        if clock() >= deadline:
            logger.info("gave up polling order %s after %ss", order_id, timeout)
            raise PaymentTimeout(order_id=order_id)
        sleep(interval)
