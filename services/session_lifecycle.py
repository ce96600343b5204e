"""
Scheduled tutoring sessions: creation from an accepted booking request,
start/join gating, meeting links and terminal transitions.
"""
import logging
import secrets
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update

from models import db, atomic
from models.attendance import Attendance
from models.booking_request import BookingRequest
from models.tutoring_session import TutoringSession, SessionStatus
from models.user import User
from services.errors import InvalidTransition, NotFound, OutsideStartWindow
from services.notifications import notify
from utils.audit import log_event

logger = logging.getLogger(__name__)


def _reload(session_id):
    return db.session.get(TutoringSession, session_id, populate_existing=True)


def _set_status(session_id, expected, **values) -> bool:
    if isinstance(expected, str):
        expected = (expected,)
    stmt = (
        update(TutoringSession)
        .where(TutoringSession.id == session_id, TutoringSession.status.in_(expected))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount == 1


def get_session(session_id) -> TutoringSession:
    session = db.session.get(TutoringSession, session_id)
    if session is None:
        raise NotFound("Session not found")
    return session


def session_times(req: BookingRequest, slot=None):
    """Slot date and times win; otherwise proposed start plus duration."""
    if slot is not None:
        return slot.starts_at(), slot.ends_at()
    start = req.proposed_start
    return start, start + timedelta(minutes=req.proposed_duration or 60)


def create_session_for_request(req: BookingRequest, pricing, slot=None) -> TutoringSession:
    """Adds the session and its attendance row to the open transaction."""
    start, end = session_times(req, slot)
    session = TutoringSession(
        booking_request_id=req.id,
        provider_id=req.provider_id,
        title=req.proposed_title,
        description=req.request_message,
        start_time=start,
        end_time=end,
        status=SessionStatus.SCHEDULED,
        base_rate=pricing.base_rate,
        amount_charged=pricing.payer_amount,
        payee_amount=req.payee_amount,
    )
    db.session.add(session)
    db.session.flush()
    db.session.add(Attendance(session_id=session.id, requester_id=req.requester_id))
    issue_meeting_link(session)
    return session


def issue_meeting_link(session: TutoringSession) -> str:
    if session.meeting_link:
        return session.meeting_link

    base = current_app.config.get("MEETING_BASE_URL", "https://meet.jit.si").rstrip("/")
    link = f"{base}/{session.booking_request_id}-{secrets.token_urlsafe(8)}"
    stmt = (
        update(TutoringSession)
        .where(TutoringSession.id == session.id, TutoringSession.meeting_link.is_(None))
        .values(meeting_link=link)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)
    # a concurrent writer may have won; whatever is stored now is the link
    return _reload(session.id).meeting_link


def _owned(session_id, provider_id, is_operator=False) -> TutoringSession:
    session = get_session(session_id)
    if not is_operator and session.provider_id != provider_id:
        raise NotFound("Session not found")
    return session


def start_session(session_id, provider_id, now: datetime) -> TutoringSession:
    session = _owned(session_id, provider_id)
    if session.status == SessionStatus.IN_PROGRESS:
        return session
    if session.status != SessionStatus.SCHEDULED:
        raise InvalidTransition(f"Session is {session.status}")

    early = timedelta(minutes=current_app.config.get("SESSION_START_EARLY_MINUTES", 15))
    if not (session.start_time - early <= now < session.end_time):
        raise OutsideStartWindow(
            opens_at=(session.start_time - early).isoformat(),
            closes_at=session.end_time.isoformat(),
        )

    with atomic():
        if not _set_status(session.id, SessionStatus.SCHEDULED,
                           status=SessionStatus.IN_PROGRESS, started_at=now):
            raise InvalidTransition("Session already started or closed")
        issue_meeting_link(_reload(session.id))
        log_event("SESSION_START", user_id=provider_id, entity="session", entity_id=session.id)
    return _reload(session.id)


def join_session(session_id, requester_id, now: datetime) -> TutoringSession:
    session = get_session(session_id)
    attendance = Attendance.query.filter_by(session_id=session.id, requester_id=requester_id).first()
    if attendance is None:
        raise NotFound("Session not found")
    if session.status != SessionStatus.IN_PROGRESS or now >= session.end_time:
        raise InvalidTransition("Session is not live")

    with atomic():
        if attendance.joined_at is None:
            attendance.joined_at = now
            log_event("SESSION_JOIN", user_id=requester_id, entity="session", entity_id=session.id)
    return session


def complete_session(session_id, actor_id, now: datetime, is_operator=False) -> TutoringSession:
    session = _owned(session_id, actor_id, is_operator)
    with atomic():
        if not _set_status(session.id, SessionStatus.IN_PROGRESS,
                           status=SessionStatus.COMPLETED, ended_at=now):
            raise InvalidTransition("Only a session in progress can be completed")
        log_event("SESSION_COMPLETE", user_id=actor_id, entity="session", entity_id=session.id)
    return _reload(session.id)


def cancel_session(session_id, actor_id, now: datetime, is_operator=False, reason=None) -> TutoringSession:
    session = _owned(session_id, actor_id, is_operator)
    with atomic():
        if not _set_status(session.id, (SessionStatus.SCHEDULED, SessionStatus.IN_PROGRESS),
                           status=SessionStatus.CANCELLED, ended_at=now):
            raise InvalidTransition("Session is already closed")
        log_event("SESSION_CANCEL", user_id=actor_id, entity="session", entity_id=session.id,
                  metadata={"reason": reason})
    session = _reload(session.id)

    for attendance in session.attendees:
        notify(db.session.get(User, attendance.requester_id), {
            "template": "session_cancelled",
            "title": session.title,
            "start_time": session.start_time.isoformat(),
            "reason": reason,
        })
    return session


def sweep_sessions(now: datetime) -> dict:
    """
    Close sessions nobody closed: live sessions past their end become
    completed if anyone joined and cancelled otherwise; scheduled sessions
    whose start is older than STALE_SESSION_DAYS are cancelled.
    """
    completed = cancelled = 0

    overdue = (
        TutoringSession.query
        .filter(TutoringSession.status == SessionStatus.IN_PROGRESS, TutoringSession.end_time <= now)
        .all()
    )
    for session in overdue:
        attended = any(a.joined_at is not None for a in session.attendees)
        target = SessionStatus.COMPLETED if attended else SessionStatus.CANCELLED
        with atomic():
            if _set_status(session.id, SessionStatus.IN_PROGRESS, status=target, ended_at=session.end_time):
                log_event("SESSION_SWEEP", entity="session", entity_id=session.id, metadata={"status": target})
                if attended:
                    completed += 1
                else:
                    cancelled += 1

    stale_days = current_app.config.get("STALE_SESSION_DAYS", 5)
    stale_before = now - timedelta(days=stale_days)
    stale = (
        TutoringSession.query
        .filter(TutoringSession.status == SessionStatus.SCHEDULED, TutoringSession.start_time <= stale_before)
        .all()
    )
    for session in stale:
        with atomic():
            if _set_status(session.id, SessionStatus.SCHEDULED, status=SessionStatus.CANCELLED, ended_at=now):
                log_event("SESSION_SWEEP", entity="session", entity_id=session.id,
                          metadata={"status": SessionStatus.CANCELLED})
                cancelled += 1

    db.session.expire_all()
    logger.info("session sweep: %d completed, %d cancelled", completed, cancelled)
    return {"completed": completed, "cancelled": cancelled}
