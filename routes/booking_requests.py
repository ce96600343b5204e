from datetime import datetime, timezone

from flask import Blueprint, request, jsonify, g

from services import booking_requests
from security.rbac import login_required, require_roles
from routes.serializers import booking_request_to_dict, session_to_dict

booking_requests_bp = Blueprint("booking_requests", __name__, url_prefix="/booking-requests")


def _parse_iso(dt_str: str):
    # Expect ISO format like "2026-01-20T18:00:00"; offsets are folded into naive UTC
    value = datetime.fromisoformat(dt_str)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ---------- STUDENTS: select a slot (creates the request and holds the slot) ----------
@booking_requests_bp.post("")
@login_required
def create_booking_request():
    data = request.get_json(silent=True) or {}
    try:
        slot_id = int(data["slot_id"]) if data.get("slot_id") else None
        course_id = int(data["course_id"]) if data.get("course_id") else None
    except (TypeError, ValueError):
        return jsonify(error="slot_id and course_id must be integers"), 400
    if not slot_id and not course_id:
        return jsonify(error="slot_id or course_id required"), 400

    proposed_start = None
    if data.get("proposed_start"):
        try:
            proposed_start = _parse_iso(data["proposed_start"])
        except (TypeError, ValueError):
            return jsonify(error="Invalid datetime format. Use ISO e.g. 2026-01-20T18:00:00"), 400

    try:
        duration = int(data["proposed_duration"]) if data.get("proposed_duration") else None
    except (TypeError, ValueError):
        return jsonify(error="proposed_duration must be minutes"), 400

    req = booking_requests.create_and_submit(
        g.user.id,
        slot_id=slot_id,
        course_id=course_id,
        title=(data.get("title") or "").strip() or None,
        message=(data.get("message") or "").strip() or None,
        proposed_start=proposed_start,
        proposed_duration=duration,
    )
    return jsonify(booking_request_to_dict(req)), 201


# ---------- STUDENTS: resubmit a draft after a failed/abandoned payment ----------
@booking_requests_bp.post("/<int:request_id>/submit")
@login_required
def submit_booking_request(request_id: int):
    req = booking_requests.submit(request_id, g.user.id)
    return jsonify(booking_request_to_dict(req)), 200


@booking_requests_bp.get("/me")
@login_required
def my_booking_requests():
    status = request.args.get("status")
    rows = booking_requests.list_for_requester(g.user.id, status=status)
    return jsonify([booking_request_to_dict(r) for r in rows]), 200


# ---------- TEACHER: decide on paid requests ----------
@booking_requests_bp.get("/pending")
@require_roles("TEACHER")
def pending_booking_requests():
    rows = booking_requests.list_pending_for_provider(g.user.id)
    return jsonify([booking_request_to_dict(r) for r in rows]), 200


@booking_requests_bp.post("/<int:request_id>/accept")
@require_roles("TEACHER")
def accept_booking_request(request_id: int):
    session = booking_requests.accept(request_id, g.user.id)
    return jsonify(session=session_to_dict(session, include_link=True)), 200


@booking_requests_bp.post("/<int:request_id>/reject")
@require_roles("TEACHER")
def reject_booking_request(request_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or None
    req = booking_requests.reject(request_id, g.user.id, reason=reason)
    return jsonify(booking_request_to_dict(req)), 200
