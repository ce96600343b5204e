"""Provider payout obligations. Settlement happens outside this service."""
from decimal import Decimal

from models import db
from models.earning import EarningRecord, EarningStatus


def record_earning(session, booking_request) -> EarningRecord:
    # amount is the payee share priced when the request was created, not the
    # slot's current rate
    earning = EarningRecord(
        provider_id=session.provider_id,
        session_id=session.id,
        amount=booking_request.payee_amount,
        status=EarningStatus.PENDING,
    )
    db.session.add(earning)
    db.session.flush()
    return earning


def list_for_provider(provider_id, status=None):
    q = EarningRecord.query.filter_by(provider_id=provider_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(EarningRecord.created_at.desc(), EarningRecord.id.desc()).all()


def summarize(provider_id) -> dict:
    totals = {
        EarningStatus.PENDING: Decimal("0.00"),
        EarningStatus.CONFIRMED: Decimal("0.00"),
        EarningStatus.REVERTED: Decimal("0.00"),
    }
    for row in EarningRecord.query.filter_by(provider_id=provider_id).all():
        totals[row.status] = totals.get(row.status, Decimal("0.00")) + Decimal(row.amount)
    # reverted obligations never count toward what is owed
    totals["total"] = totals[EarningStatus.PENDING] + totals[EarningStatus.CONFIRMED]
    return totals
