import logging
from datetime import datetime

from flask import Flask, request, g, jsonify
from config import Config
from routes import (
    health_bp,
    slots_bp,
    booking_requests_bp,
    payments_bp,
    webhook_bp,
    sessions_bp,
    earnings_bp,
)

from models import db
from flask_migrate import Migrate
from services.errors import BookingError
from services.payment_gateway import StripeGateway
from utils.seed import seed_roles
from utils.auth_context import load_current_user
from security.csrf import require_csrf, uses_cookie_auth


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    if not app.debug and not app.testing:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(slots_bp)
    app.register_blueprint(booking_requests_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(sessions_bp)
    app.register_blueprint(earnings_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Payment gateway; tests swap in a fake
    app.extensions["payment_gateway"] = StripeGateway(
        api_key=app.config.get("STRIPE_SECRET_KEY"),
        webhook_secret=app.config.get("STRIPE_WEBHOOK_SECRET"),
        currency=app.config.get("PAYMENT_CURRENCY", "INR"),
    )

    # Seed default roles at startup (safe & idempotent)
    if not app.testing:
        with app.app_context():
            seed_roles()

    @app.before_request
    def _load_user():
        load_current_user()

    CSRF_EXEMPT_PATHS = {
    "/webhooks/stripe",
    "/health",
    }

    @app.before_request
    def _csrf_protect():
        # Only protect state-changing requests
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if request.path in CSRF_EXEMPT_PATHS:
                return None

            # Only enforce CSRF for cookie-authenticated users
            if getattr(g, "user", None) is not None and uses_cookie_auth():
                failure = require_csrf()
                if failure:
                    return failure

    @app.errorhandler(BookingError)
    def _booking_error(err):
        if err.status_code >= 500:
            app.logger.warning("%s: %s", err.code, err.message)
        return jsonify(err.to_dict()), err.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp


    register_cli(app)


    return app

#-------------------------
import click
from models.user import User, Role
from services import booking_requests, payment_reconciliation, session_lifecycle, slot_allocator

def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        admin_role = Role.query.filter_by(name="ADMIN").first()
        if not admin_role:
            admin_role = Role(name="ADMIN")
            db.session.add(admin_role)
            db.session.commit()

        if admin_role not in user.roles:
            user.roles.append(admin_role)
            db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("expire-slots")
    def expire_slots():
        """Mark available slots dated in the past as expired."""
        count = slot_allocator.expire_sweep(datetime.utcnow())
        click.echo(f"{count} slots expired")

    @app.cli.command("abandon-stale-requests")
    def abandon_stale_requests():
        """Return unpaid requests past the payment hold to draft and free their slots."""
        count = booking_requests.abandon_stale_requests(datetime.utcnow())
        click.echo(f"{count} requests released")

    @app.cli.command("sweep-sessions")
    def sweep_sessions():
        """Close overdue in-progress sessions and cancel stale scheduled ones."""
        result = session_lifecycle.sweep_sessions(datetime.utcnow())
        click.echo(f"{result['completed']} completed, {result['cancelled']} cancelled")

    @app.cli.command("poll-payment")
    @click.argument("order_id")
    def poll_payment(order_id):
        """Poll the gateway for ORDER_ID until it settles or times out."""
        try:
            record = payment_reconciliation.poll_order(order_id)
        except BookingError as exc:
            raise click.ClickException(exc.message)
        click.echo(f"order {order_id}: {record.status}")

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
