from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from models import db
from models.booking_request import BookingRequest, RequestStatus, PaymentStatus
from models.earning import EarningRecord
from models.payment import PaymentRecord, PaymentRecordStatus
from models.slot import TimeSlot, SlotStatus
from models.tutoring_session import TutoringSession
from services import booking_requests, payment_reconciliation
from services.errors import (
    GatewayUnavailable,
    InvalidTransition,
    NotFound,
    PaymentTimeout,
    UnknownOrder,
)
from services.payment_gateway import GatewayEvent, PaymentOutcome

from conftest import NOW, FakeClock, paid_request


@pytest.fixture()
def submitted(student, slot):
    return booking_requests.create_and_submit(student.id, slot_id=slot.id, now=NOW)


@pytest.fixture()
def order(student, submitted):
    return payment_reconciliation.create_order(submitted.id, student, now=NOW)


def test_create_order_records_pending_payment(gateway, submitted, order):
    assert order.status == PaymentRecordStatus.PENDING
    assert order.amount == Decimal("110.00")
    assert order.gateway_order_id == "order_1"
    assert order.session_token == "https://pay.example/order_1"

    call = gateway.created[0]
    assert call["amount"] == Decimal("110.00")
    assert call["return_url"] == "http://testserver/payments/return"
    assert call["notify_url"] == "http://testserver/webhooks/stripe"
    assert call["payer_info"]["booking_request_id"] == submitted.id


def test_create_order_reuses_pending_order(gateway, student, submitted, order):
    again = payment_reconciliation.create_order(submitted.id, student, now=NOW)
    assert again.id == order.id
    assert len(gateway.created) == 1


def test_gateway_outage_on_create_writes_nothing(gateway, student, submitted):
    gateway.fail_create = True
    with pytest.raises(GatewayUnavailable):
        payment_reconciliation.create_order(submitted.id, student, now=NOW)

    assert PaymentRecord.query.count() == 0
    req = booking_requests.get_request(submitted.id)
    assert req.status == RequestStatus.AWAITING_PAYMENT
    assert req.payment_status == PaymentStatus.UNPAID


def test_only_the_requester_can_pay(other_student, submitted):
    with pytest.raises(NotFound):
        payment_reconciliation.create_order(submitted.id, other_student, now=NOW)


def test_cannot_open_order_for_paid_request(student, slot):
    req = paid_request(student, slot)
    with pytest.raises(InvalidTransition):
        payment_reconciliation.create_order(req.id, student, now=NOW)


def test_redelivered_outcome_applies_once(teacher, student, submitted, order, notifier):
    results = [
        payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.PAID, source="webhook")
        for _ in range(5)
    ]
    assert results == [True, False, False, False, False]

    req = booking_requests.get_request(submitted.id)
    assert req.status == RequestStatus.AWAITING_PROVIDER_DECISION
    assert req.payment_status == PaymentStatus.PAID
    assert notifier.templates_for(student.id).count("payment_confirmed") == 1

    booking_requests.accept(req.id, teacher.id, now=NOW)
    event = GatewayEvent(order_id=order.gateway_order_id, outcome=PaymentOutcome.PAID)
    for _ in range(3):
        assert payment_reconciliation.handle_webhook_event(event) is False

    assert TutoringSession.query.count() == 1
    assert EarningRecord.query.count() == 1
    assert booking_requests.get_request(req.id).status == RequestStatus.ACCEPTED


def test_unknown_order_changes_nothing(submitted, order):
    with pytest.raises(UnknownOrder):
        payment_reconciliation.apply_outcome("order_999", PaymentOutcome.PAID, source="webhook")
    with pytest.raises(UnknownOrder):
        payment_reconciliation.apply_outcome(None, PaymentOutcome.PAID, source="webhook")

    assert booking_requests.get_request(submitted.id).payment_status == PaymentStatus.UNPAID
    assert db.session.get(PaymentRecord, order.id).status == PaymentRecordStatus.PENDING


def test_pending_outcome_is_ignored(submitted, order):
    assert payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.PENDING,
                                                source="webhook") is False
    assert booking_requests.get_request(submitted.id).status == RequestStatus.AWAITING_PAYMENT


def test_failed_payment_returns_request_to_draft(slot, submitted, order):
    assert payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.FAILED, source="poll")

    req = booking_requests.get_request(submitted.id)
    assert req.status == RequestStatus.DRAFT
    assert req.payment_status == PaymentStatus.FAILED
    assert req.slot_reserved is False
    s = db.session.get(TimeSlot, slot.id)
    assert (s.status, s.booked_count) == (SlotStatus.AVAILABLE, 0)

    # a contradicting redelivery does not flip a settled order
    assert payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.PAID,
                                                source="webhook") is False
    assert booking_requests.get_request(submitted.id).payment_status == PaymentStatus.FAILED


def test_failed_draft_can_pay_with_a_new_order(gateway, student, submitted, order):
    payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.FAILED, source="poll")
    booking_requests.submit(submitted.id, student.id, now=NOW)

    retry = payment_reconciliation.create_order(submitted.id, student, now=NOW)
    assert retry.gateway_order_id != order.gateway_order_id
    assert len(gateway.created) == 2

    payment_reconciliation.apply_outcome(retry.gateway_order_id, PaymentOutcome.PAID, source="webhook")
    assert booking_requests.get_request(submitted.id).status == RequestStatus.AWAITING_PROVIDER_DECISION


def test_late_payment_retakes_free_slot(slot, submitted, order):
    booking_requests.abandon_stale_requests(NOW + timedelta(hours=1))
    assert booking_requests.get_request(submitted.id).status == RequestStatus.DRAFT

    payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.PAID, source="webhook")

    req = booking_requests.get_request(submitted.id)
    assert req.status == RequestStatus.AWAITING_PROVIDER_DECISION
    assert req.payment_status == PaymentStatus.PAID
    assert req.slot_reserved is True
    assert db.session.get(TimeSlot, slot.id).status == SlotStatus.BOOKED


def test_late_payment_for_taken_slot_stays_in_draft(other_student, slot, submitted, order):
    booking_requests.abandon_stale_requests(NOW + timedelta(hours=1))
    booking_requests.create_and_submit(other_student.id, slot_id=slot.id, now=NOW + timedelta(hours=1))

    payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.PAID, source="webhook")

    req = booking_requests.get_request(submitted.id)
    assert req.status == RequestStatus.DRAFT
    assert req.payment_status == PaymentStatus.PAID
    assert req.slot_reserved is False


def test_check_order_applies_settled_outcome(gateway, submitted, order):
    gateway.settle(order.gateway_order_id, PaymentOutcome.PAID)
    record = payment_reconciliation.check_order(order.gateway_order_id, now=NOW)

    assert record.status == PaymentRecordStatus.PAID
    assert booking_requests.get_request(submitted.id).payment_status == PaymentStatus.PAID


def test_check_order_survives_gateway_outage(gateway, submitted, order):
    gateway.status_script = [GatewayUnavailable]
    record = payment_reconciliation.check_order(order.gateway_order_id, now=NOW + timedelta(seconds=30))

    assert record.status == PaymentRecordStatus.PENDING
    assert booking_requests.get_request(submitted.id).status == RequestStatus.AWAITING_PAYMENT


def test_check_order_times_out_without_touching_state(app, submitted, order):
    limit = app.config["PAYMENT_POLL_TIMEOUT_SECONDS"]
    payment_reconciliation.check_order(order.gateway_order_id, now=NOW + timedelta(seconds=limit - 1))

    with pytest.raises(PaymentTimeout):
        payment_reconciliation.check_order(order.gateway_order_id, now=NOW + timedelta(seconds=limit))

    req = booking_requests.get_request(submitted.id)
    assert req.status == RequestStatus.AWAITING_PAYMENT
    assert req.payment_status == PaymentStatus.UNPAID

    # the browser return path keeps answering after the poll window
    late = payment_reconciliation.verify_return(order.gateway_order_id, now=NOW + timedelta(hours=2))
    assert late.status == PaymentRecordStatus.PENDING


def test_poll_retries_through_errors_until_paid(gateway, submitted, order):
    gateway.status_script = [PaymentOutcome.PENDING, GatewayUnavailable, PaymentOutcome.PAID]
    clock = FakeClock()

    record = payment_reconciliation.poll_order(order.gateway_order_id, interval=5, timeout=600,
                                               sleep=clock.sleep, clock=clock)

    assert record.status == PaymentRecordStatus.PAID
    assert gateway.status_calls == 3
    assert clock.now == 10
    assert booking_requests.get_request(submitted.id).status == RequestStatus.AWAITING_PROVIDER_DECISION


def test_poll_gives_up_after_timeout(gateway, submitted, order):
    clock = FakeClock()

    with pytest.raises(PaymentTimeout):
        payment_reconciliation.poll_order(order.gateway_order_id, interval=5, timeout=600,
                                          sleep=clock.sleep, clock=clock)

    # one check at t=0 and one every 5s up to t=600
    assert gateway.status_calls == 121
    assert len(gateway.created) == 1
    req = booking_requests.get_request(submitted.id)
    assert req.status == RequestStatus.AWAITING_PAYMENT
    assert req.payment_status == PaymentStatus.UNPAID


def test_poll_returns_immediately_for_settled_order(gateway, student, slot):
    req = paid_request(student, slot)
    record = PaymentRecord.query.filter_by(booking_request_id=req.id).one()
    clock = FakeClock()

    assert payment_reconciliation.poll_order(record.gateway_order_id, sleep=clock.sleep,
                                             clock=clock).status == PaymentRecordStatus.PAID
    assert gateway.status_calls == 0


def _abandon_behind(req):
    """
    Return the request to draft and free its slot the way the abandon sweep
    does, without touching the already-loaded ``req`` object.
    """
    assert req.status == RequestStatus.AWAITING_PAYMENT
    db.session.execute(
        update(BookingRequest)
        .where(BookingRequest.id == req.id)
        .values(status=RequestStatus.DRAFT, slot_reserved=False)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(
        update(TimeSlot)
        .where(TimeSlot.id == req.slot_id)
        .values(status=SlotStatus.AVAILABLE, booked_count=0)
        .execution_options(synchronize_session=False)
    )


def test_paid_outcome_survives_concurrent_abandon(slot, submitted, order):
    _abandon_behind(booking_requests.get_request(submitted.id))

    assert payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.PAID, source="webhook")

    db.session.expire_all()
    req = booking_requests.get_request(submitted.id)
    assert req.status == RequestStatus.AWAITING_PROVIDER_DECISION
    assert req.payment_status == PaymentStatus.PAID
    assert req.slot_reserved is True
    s = db.session.get(TimeSlot, slot.id)
    assert (s.status, s.booked_count) == (SlotStatus.BOOKED, 1)
    assert db.session.get(PaymentRecord, order.id).status == PaymentRecordStatus.PAID


def test_failed_outcome_after_concurrent_abandon_keeps_slot_free(slot, submitted, order):
    _abandon_behind(booking_requests.get_request(submitted.id))

    assert payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.FAILED, source="poll")

    db.session.expire_all()
    req = booking_requests.get_request(submitted.id)
    assert req.status == RequestStatus.DRAFT
    assert req.payment_status == PaymentStatus.FAILED
    s = db.session.get(TimeSlot, slot.id)
    assert (s.status, s.booked_count) == (SlotStatus.AVAILABLE, 0)


def test_unsettled_request_rolls_back_the_order(submitted, order, monkeypatch):
    monkeypatch.setattr(booking_requests, "_transition", lambda *args, **kwargs: False)

    with pytest.raises(InvalidTransition):
        payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.PAID, source="webhook")

    assert db.session.get(PaymentRecord, order.id).status == PaymentRecordStatus.PENDING
    monkeypatch.undo()

    # the redelivery lands
    assert payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.PAID, source="webhook")
    assert booking_requests.get_request(submitted.id).payment_status == PaymentStatus.PAID


def test_resubmitted_request_gets_a_fresh_order(app, gateway, student, submitted, order):
    hold = app.config["PAYMENT_HOLD_MINUTES"]
    later = NOW + timedelta(minutes=hold + 1)
    booking_requests.abandon_stale_requests(later)
    booking_requests.submit(submitted.id, student.id, now=later)

    fresh = payment_reconciliation.create_order(submitted.id, student, now=later)
    assert fresh.gateway_order_id != order.gateway_order_id
    assert len(gateway.created) == 2

    record = payment_reconciliation.check_order(fresh.gateway_order_id, now=later + timedelta(seconds=5))
    assert record.status == PaymentRecordStatus.PENDING

    # the superseded checkout stays reconcilable
    assert db.session.get(PaymentRecord, order.id).status == PaymentRecordStatus.PENDING
    payment_reconciliation.apply_outcome(order.gateway_order_id, PaymentOutcome.PAID, source="webhook")
    assert booking_requests.get_request(submitted.id).status == RequestStatus.AWAITING_PROVIDER_DECISION


def test_order_past_poll_window_is_not_reused(app, gateway, student, submitted, order):
    limit = app.config["PAYMENT_POLL_TIMEOUT_SECONDS"]

    same = payment_reconciliation.create_order(submitted.id, student, now=NOW + timedelta(seconds=limit - 1))
    assert same.id == order.id

    retry_at = NOW + timedelta(seconds=limit)
    retry = payment_reconciliation.create_order(submitted.id, student, now=retry_at)
    assert retry.id != order.id
    assert len(gateway.created) == 2
    assert payment_reconciliation.check_order(retry.gateway_order_id, now=retry_at).status == \
        PaymentRecordStatus.PENDING
