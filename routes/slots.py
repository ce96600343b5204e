from datetime import datetime

from flask import Blueprint, request, jsonify, g

from services import slot_allocator
from security.rbac import login_required, require_roles
from routes.serializers import slot_to_dict

slots_bp = Blueprint("slots", __name__)


# ---------- TEACHER: publish slots ----------
@slots_bp.post("/slots")
@require_roles("TEACHER")
def publish_slot():
    data = request.get_json(silent=True) or {}
    date_str = data.get("date")
    start_str = data.get("start_time")
    end_str = data.get("end_time")
    base_rate = data.get("base_rate")

    if not date_str or not start_str or not end_str or base_rate is None:
        return jsonify(error="date, start_time, end_time, base_rate are required"), 400

    try:
        day = datetime.strptime(date_str, "%Y-%m-%d").date()
        st = datetime.strptime(start_str, "%H:%M").time()
        et = datetime.strptime(end_str, "%H:%M").time()
    except (TypeError, ValueError):
        return jsonify(error="Invalid format. Use date YYYY-MM-DD and times HH:MM"), 400

    try:
        capacity = int(data.get("capacity") or 1)
    except (TypeError, ValueError):
        return jsonify(error="capacity must be an integer"), 400

    slot = slot_allocator.publish_slot(g.user.id, day, st, et, base_rate, capacity=capacity)
    return jsonify(slot_to_dict(slot)), 201


# ---------- STUDENTS: view a provider's open slots ----------
@slots_bp.get("/providers/<int:provider_id>/slots")
@login_required
def list_available_slots(provider_id: int):
    slots = slot_allocator.list_available(provider_id, datetime.utcnow())
    return jsonify([slot_to_dict(s) for s in slots]), 200


# ---------- TEACHER: open / close group slots ----------
@slots_bp.post("/slots/<int:slot_id>/open")
@require_roles("TEACHER")
def open_slot(slot_id: int):
    slot = slot_allocator.set_group_slot_open(slot_id, g.user.id, True)
    return jsonify(slot_to_dict(slot)), 200


@slots_bp.post("/slots/<int:slot_id>/close")
@require_roles("TEACHER")
def close_slot(slot_id: int):
    slot = slot_allocator.set_group_slot_open(slot_id, g.user.id, False)
    return jsonify(slot_to_dict(slot)), 200
