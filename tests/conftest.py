import json
import secrets
from datetime import datetime, time, timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.user import User, Role
from models.auth_session import AuthSession
from security.session import hash_token
from services import booking_requests, payment_reconciliation, slot_allocator
from services.errors import GatewayUnavailable, ValidationFailed
from services.payment_gateway import GatewayEvent, GatewayOrder, PaymentOutcome
from utils.seed import seed_roles

NOW = datetime(2026, 3, 2, 9, 0, 0)


class FakeGateway:
    """In-memory stand-in for the payment gateway."""

    name = "FAKE"

    def __init__(self):
        self.outcomes = {}
        self.created = []
        self.status_calls = 0
        self.status_script = []
        self.fail_create = False

    def create_order(self, amount, payer_info, return_url, notify_url):
        if self.fail_create:
            raise GatewayUnavailable()
        order_id = f"order_{len(self.created) + 1}"
        self.created.append({
            "order_id": order_id,
            "amount": amount,
            "payer_info": payer_info,
            "return_url": return_url,
            "notify_url": notify_url,
        })
        self.outcomes[order_id] = PaymentOutcome.PENDING
        return GatewayOrder(order_id=order_id, session_token=f"https://pay.example/{order_id}")

    def settle(self, order_id, outcome):
        self.outcomes[order_id] = outcome

    def get_order_status(self, order_id):
        self.status_calls += 1
        if self.status_script:
            step = self.status_script.pop(0)
            if isinstance(step, type) and issubclass(step, Exception):
                raise step()
            return GatewayEvent(order_id=order_id, outcome=step, raw_status=step.value)
        outcome = self.outcomes.get(order_id, PaymentOutcome.PENDING)
        return GatewayEvent(order_id=order_id, outcome=outcome, raw_status=outcome.value)

    def parse_webhook(self, payload, signature):
        if signature != "valid":
            raise ValidationFailed("Invalid webhook signature")
        data = json.loads(payload)
        if data.get("status") not in ("paid", "failed", "pending"):
            return None
        return GatewayEvent(order_id=data.get("orderId"), outcome=PaymentOutcome(data["status"]))


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def __call__(self, recipient, template_data):
        if self.fail:
            raise RuntimeError("smtp down")
        self.sent.append((recipient.id, template_data))

    def templates_for(self, user_id):
        return [t["template"] for uid, t in self.sent if uid == user_id]


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    app.extensions["payment_gateway"] = FakeGateway()
    app.extensions["notifier"] = RecordingNotifier()
    with app.app_context():
        db.create_all()
        seed_roles()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def gateway(app):
    return app.extensions["payment_gateway"]


@pytest.fixture()
def notifier(app):
    return app.extensions["notifier"]


def make_user(email, *roles):
    user = User(email=email, full_name=email.split("@")[0].title())
    for name in roles:
        user.roles.append(Role.query.filter_by(name=name).one())
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def teacher(app):
    return make_user("teacher@example.com", "TEACHER")


@pytest.fixture()
def student(app):
    return make_user("student@example.com", "STUDENT")


@pytest.fixture()
def other_student(app):
    return make_user("other@example.com", "STUDENT")


def issue_token(user, lifetime=timedelta(hours=8)):
    """Stands in for the account service that owns login."""
    raw = secrets.token_urlsafe(32)
    db.session.add(AuthSession(
        user_id=user.id,
        token_hash=hash_token(raw),
        expires_at=datetime.utcnow() + lifetime,
    ))
    db.session.commit()
    return raw


def auth_headers(user):
    return {"Authorization": f"Bearer {issue_token(user)}"}


def make_slot(provider, day=None, start=time(10, 0), end=time(11, 0), rate="100", capacity=1):
    day = day or (NOW + timedelta(days=1)).date()
    return slot_allocator.publish_slot(provider.id, day, start, end, rate, capacity=capacity)


@pytest.fixture()
def slot(teacher):
    return make_slot(teacher)


def paid_request(student, slot, now=NOW):
    """Request submitted and confirmed paid through the reconciliation path."""
    req = booking_requests.create_and_submit(student.id, slot_id=slot.id, now=now)
    record = payment_reconciliation.create_order(req.id, student, now=now)
    payment_reconciliation.apply_outcome(record.gateway_order_id, PaymentOutcome.PAID, source="webhook", now=now)
    return booking_requests.get_request(req.id)
