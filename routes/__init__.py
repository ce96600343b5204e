from .health import health_bp
from .slots import slots_bp
from .booking_requests import booking_requests_bp
from .payments import payments_bp
from .payment_webhook import webhook_bp
from .sessions import sessions_bp
from .earnings import earnings_bp
