from services.pricing import calculate_pricing


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return str(value) if value is not None else None


def slot_to_dict(s):
    return {
        "id": s.id,
        "provider_id": s.provider_id,
        "date": s.date.isoformat(),
        "start_time": s.start_time.strftime("%H:%M"),
        "end_time": s.end_time.strftime("%H:%M"),
        "capacity": s.capacity,
        "booked_count": s.booked_count,
        "status": s.status,
        "pricing": calculate_pricing(s.base_rate).to_dict(),
    }


def booking_request_to_dict(r):
    return {
        "id": r.id,
        "requester_id": r.requester_id,
        "provider_id": r.provider_id,
        "slot_id": r.slot_id,
        "course_id": r.course_id,
        "title": r.proposed_title,
        "message": r.request_message,
        "proposed_start": _iso(r.proposed_start),
        "proposed_duration": r.proposed_duration,
        "status": r.status,
        "payment_status": r.payment_status,
        "amount_charged": _money(r.amount_charged),
        "payee_amount": _money(r.payee_amount),
        "rejection_reason": r.rejection_reason,
        "created_at": _iso(r.created_at),
        "decided_at": _iso(r.decided_at),
    }


def payment_to_dict(p):
    return {
        "id": p.id,
        "booking_request_id": p.booking_request_id,
        "order_id": p.gateway_order_id,
        "checkout_url": p.session_token,
        "amount": _money(p.amount),
        "currency": p.currency,
        "status": p.status,
        "paid_at": _iso(p.paid_at),
    }


def session_to_dict(s, include_link=False):
    out = {
        "id": s.id,
        "booking_request_id": s.booking_request_id,
        "provider_id": s.provider_id,
        "title": s.title,
        "description": s.description,
        "start_time": _iso(s.start_time),
        "end_time": _iso(s.end_time),
        "status": s.status,
        "amount_charged": _money(s.amount_charged),
        "payee_amount": _money(s.payee_amount),
        "started_at": _iso(s.started_at),
        "ended_at": _iso(s.ended_at),
    }
    if include_link:
        out["meeting_link"] = s.meeting_link
    return out


def earning_to_dict(e):
    return {
        "id": e.id,
        "session_id": e.session_id,
        "amount": _money(e.amount),
        "status": e.status,
        "release_date": _iso(e.release_date),
        "created_at": _iso(e.created_at),
    }
