"""
Error kinds raised by the booking engine.

Every error carries the HTTP status and a stable machine code so the
app-level handler in ``app.py`` can render it without each blueprint
catching it.
"""


class BookingError(Exception):
    status_code = 400
    code = "booking_error"
    message = "Booking operation failed"

    def __init__(self, message=None, **details):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = details

    def to_dict(self):
        out = {"error": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class InvalidRate(BookingError):
    code = "invalid_rate"
    message = "Base rate must be a positive amount"


class ValidationFailed(BookingError):
    code = "validation_failed"
    message = "Invalid request"


class NotFound(BookingError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class AuthenticationRequired(BookingError):
    status_code = 401
    code = "authentication_required"
    message = "Authentication required"


class Forbidden(BookingError):
    status_code = 403
    code = "forbidden"
    message = "Forbidden"


class SlotUnavailable(BookingError):
    # lost a reservation race; callers re-list slots and retry
    status_code = 409
    code = "slot_unavailable"
    message = "Slot no longer available"


class InvalidTransition(BookingError):
    status_code = 409
    code = "invalid_transition"
    message = "Operation not allowed in the current state"


class PaymentNotConfirmed(BookingError):
    status_code = 409
    code = "payment_not_confirmed"
    message = "Payment has not been confirmed for this request"


class UnknownOrder(BookingError):
    status_code = 404
    code = "unknown_order"
    message = "Unknown payment order"


class GatewayUnavailable(BookingError):
    status_code = 503
    code = "gateway_unavailable"
    message = "Payment gateway unavailable, try again"


class PaymentTimeout(BookingError):
    status_code = 408
    code = "payment_timeout"
    message = "Payment not completed in time; you may retry the payment"


class OutsideStartWindow(BookingError):
    status_code = 409
    code = "outside_start_window"
    message = "Session cannot be started at this time"


class AlreadyExists(BookingError):
    status_code = 409
    code = "already_exists"
    message = "Already exists"
