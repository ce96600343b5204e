"""
Payment gateway adapter.

Everything the rest of the engine sees from the gateway is one of two
shapes: ``GatewayOrder`` after creating an order, and ``GatewayEvent``
(order id plus a ``PaymentOutcome``) from a status lookup or a webhook.
Gateway-specific payloads never leave this module.
"""
import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from urllib.parse import urlencode, urlparse, parse_qsl, urlunparse

import stripe

from services.errors import GatewayUnavailable, ValidationFailed

logger = logging.getLogger(__name__)


class PaymentOutcome(enum.Enum):
    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentOutcome.PENDING


@dataclass(frozen=True)
class GatewayOrder:
    order_id: str
    session_token: str


@dataclass(frozen=True)
class GatewayEvent:
    order_id: str
    outcome: PaymentOutcome
    raw_status: Optional[str] = None


def _append_query(url: str, params: dict) -> str:
    if not url:
        return url
    parts = urlparse(url)
    query = dict(parse_qsl(parts.query))
    query.update({k: v for k, v in params.items() if v is not None})
    # Stripe substitutes {CHECKOUT_SESSION_ID} itself, so braces must survive
    new_query = urlencode(query, safe="{}")
    return urlunparse(parts._replace(query=new_query))


def _field(obj, key):
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


def outcome_from_checkout_session(session) -> PaymentOutcome:
    payment_status = _field(session, "payment_status")
    if payment_status in ("paid", "no_payment_required"):
        return PaymentOutcome.PAID
    if _field(session, "status") == "expired":
        return PaymentOutcome.FAILED
    return PaymentOutcome.PENDING


# checkout.session.completed may still be unpaid for delayed methods (UPI collect),
# so its outcome is read off the session rather than the event type
WEBHOOK_EVENTS = {
    "checkout.session.completed": None,
    "checkout.session.async_payment_succeeded": PaymentOutcome.PAID,
    "checkout.session.async_payment_failed": PaymentOutcome.FAILED,
    "checkout.session.expired": PaymentOutcome.FAILED,
}


class StripeGateway:
    """Stripe Checkout: order id is the checkout session id, token is its hosted URL."""

    name = "STRIPE"

    def __init__(self, api_key, webhook_secret=None, currency="INR"):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def _configure(self):
        if not self.api_key:
            raise GatewayUnavailable("Stripe secret key missing (STRIPE_SECRET_KEY)")
        stripe.api_key = self.api_key

    def create_order(self, amount, payer_info: dict, return_url: str, notify_url: str) -> GatewayOrder:
        self._configure()
        success_url = _append_query(return_url, {"order_id": "{CHECKOUT_SESSION_ID}"})
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                line_items=[{
                    "price_data": {
                        "currency": self.currency.lower(),
                        "product_data": {"name": payer_info.get("description") or "Tutoring session"},
                        "unit_amount": to_minor_units(amount),
                    },
                    "quantity": 1,
                }],
                customer_email=payer_info.get("email"),
                success_url=success_url,
                cancel_url=success_url,
                metadata={
                    "booking_request_id": str(payer_info.get("booking_request_id", "")),
                    "user_id": str(payer_info.get("user_id", "")),
                    "notify_url": notify_url,
                },
            )
        except stripe.StripeError as exc:
            logger.warning("stripe order creation failed: %s", exc)
            raise GatewayUnavailable()
        return GatewayOrder(order_id=session["id"], session_token=session["url"])

    def get_order_status(self, order_id: str) -> GatewayEvent:
        self._configure()
        try:
            session = stripe.checkout.Session.retrieve(order_id)
        except stripe.StripeError as exc:
            logger.warning("stripe status lookup for %s failed: %s", order_id, exc)
            raise GatewayUnavailable()
        return GatewayEvent(
            order_id=order_id,
            outcome=outcome_from_checkout_session(session),
            raw_status=_field(session, "payment_status"),
        )

    def parse_webhook(self, payload: bytes, signature: str) -> Optional[GatewayEvent]:
        """Verify and translate a webhook; None for event types we do not track."""
        if not self.webhook_secret:
            raise GatewayUnavailable("Webhook secret not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError):
            raise ValidationFailed("Invalid webhook signature")

        event_type = _field(event, "type")
        if event_type not in WEBHOOK_EVENTS:
            return None
        session = event["data"]["object"]
        outcome = WEBHOOK_EVENTS[event_type] or outcome_from_checkout_session(session)
        return GatewayEvent(
            order_id=session["id"],
            outcome=outcome,
            raw_status=event_type,
        )
