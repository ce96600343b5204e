from models import db
from models.user import User


def test_make_admin(app, student):
    result = app.test_cli_runner().invoke(args=["make-admin", "student@example.com"])
    assert "promoted to ADMIN" in result.output

    db.session.expire_all()
    assert "ADMIN" in db.session.get(User, student.id).role_names


def test_make_admin_unknown_user(app):
    result = app.test_cli_runner().invoke(args=["make-admin", "nobody@example.com"])
    assert "User not found" in result.output


def test_sweeps_report_counts(app):
    runner = app.test_cli_runner()
    assert "0 slots expired" in runner.invoke(args=["expire-slots"]).output
    assert "0 requests released" in runner.invoke(args=["abandon-stale-requests"]).output
    assert "0 completed, 0 cancelled" in runner.invoke(args=["sweep-sessions"]).output


def test_poll_unknown_order_fails(app):
    result = app.test_cli_runner().invoke(args=["poll-payment", "order_404"])
    assert result.exit_code == 1
    assert "Unknown payment order" in result.output
