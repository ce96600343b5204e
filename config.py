import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as tutorslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "tutorslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie name for our auth token (Authorization: Bearer also accepted)
    AUTH_COOKIE_NAME = "tutorslot_session"

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False  # set True when using HTTPS

    # Payment gateway (Stripe Checkout)
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")

    # Used to build gateway return/notify URLs
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:5002")
    FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:5173")

    # Payment polling: check every 5s, give up after 10 minutes
    PAYMENT_POLL_INTERVAL_SECONDS = int(os.getenv("PAYMENT_POLL_INTERVAL_SECONDS", "5"))
    PAYMENT_POLL_TIMEOUT_SECONDS = int(os.getenv("PAYMENT_POLL_TIMEOUT_SECONDS", "600"))

    # Unpaid submitted requests release their slot after this long
    PAYMENT_HOLD_MINUTES = int(os.getenv("PAYMENT_HOLD_MINUTES", "30"))

    # Sessions
    SESSION_START_EARLY_MINUTES = 15
    STALE_SESSION_DAYS = 5
    MEETING_BASE_URL = os.getenv("MEETING_BASE_URL", "https://meet.jit.si")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_test_dummy"
    PUBLIC_BASE_URL = "http://testserver"
    SMTP_HOST = None
