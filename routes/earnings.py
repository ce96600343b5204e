from flask import Blueprint, request, jsonify, g

from services import earnings
from security.rbac import require_roles
from routes.serializers import earning_to_dict

earnings_bp = Blueprint("earnings", __name__, url_prefix="/earnings")


@earnings_bp.get("/me")
@require_roles("TEACHER")
def my_earnings():
    status = request.args.get("status")  # pending/confirmed/reverted
    rows = earnings.list_for_provider(g.user.id, status=status)
    totals = earnings.summarize(g.user.id)
    return jsonify(
        earnings=[earning_to_dict(e) for e in rows],
        totals={k: str(v) for k, v in totals.items()},
    ), 200
