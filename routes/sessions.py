from datetime import datetime

from flask import Blueprint, request, jsonify, g

from models.attendance import Attendance
from services import session_lifecycle
from services.errors import NotFound
from security.rbac import is_operator, login_required, require_roles
from routes.serializers import session_to_dict

sessions_bp = Blueprint("sessions", __name__, url_prefix="/sessions")


def _is_attendee(session_id, user_id) -> bool:
    return Attendance.query.filter_by(session_id=session_id, requester_id=user_id).first() is not None


@sessions_bp.get("/<int:session_id>")
@login_required
def get_session(session_id: int):
    session = session_lifecycle.get_session(session_id)
    is_provider = session.provider_id == g.user.id
    if not (is_provider or is_operator() or _is_attendee(session.id, g.user.id)):
        raise NotFound("Session not found")
    return jsonify(session_to_dict(session, include_link=True)), 200


@sessions_bp.post("/<int:session_id>/start")
@require_roles("TEACHER")
def start_session(session_id: int):
    session = session_lifecycle.start_session(session_id, g.user.id, datetime.utcnow())
    return jsonify(session_to_dict(session, include_link=True)), 200


@sessions_bp.post("/<int:session_id>/join")
@login_required
def join_session(session_id: int):
    session = session_lifecycle.join_session(session_id, g.user.id, datetime.utcnow())
    return jsonify(meeting_link=session.meeting_link, session=session_to_dict(session)), 200


@sessions_bp.post("/<int:session_id>/complete")
@require_roles("TEACHER")
def complete_session(session_id: int):
    session = session_lifecycle.complete_session(
        session_id, g.user.id, datetime.utcnow(), is_operator=is_operator()
    )
    return jsonify(session_to_dict(session)), 200


@sessions_bp.post("/<int:session_id>/cancel")
@require_roles("TEACHER")
def cancel_session(session_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or None
    session = session_lifecycle.cancel_session(
        session_id, g.user.id, datetime.utcnow(), is_operator=is_operator(), reason=reason
    )
    return jsonify(session_to_dict(session)), 200
