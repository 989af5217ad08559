"""Payment history and housekeeping."""
from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import datetime, timedelta
from typing import Optional
import logging
import math
import uuid

from app.models.payment import Payment, PaymentStatus
from app.models.payment_event import PaymentEventType
from app.services.billing.events import record_payment_event

logger = logging.getLogger(__name__)

EXPIRED_CHECKOUT_MESSAGE = "Checkout session expired"


def get_payment_history(
    db: Session,
    org_id: uuid.UUID,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> dict:
    """Newest-first page of an organization's payments plus pagination info."""
    query = db.query(Payment).filter(Payment.org_id == org_id)
    if status:
        query = query.filter(Payment.status == status)
    if start_date:
        query = query.filter(Payment.created_at >= start_date)
    if end_date:
        query = query.filter(Payment.created_at <= end_date)

    total = query.with_entities(func.count(Payment.id)).scalar() or 0
    payments = (
        query.order_by(Payment.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "payments": payments,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if limit else 0,
        },
    }


def expire_stale_pending_payments(db: Session, older_than: timedelta = timedelta(minutes=30)) -> int:
    """
    Fail hosted checkouts the user never came back from.

    The hosted session's expiry is only advisory, so nothing else closes these
    rows. Run periodically (scripts/expire_stale_payments.py). Returns the
    number of payments expired.
    """
    cutoff = datetime.utcnow() - older_than
    stale = (
        db.query(Payment)
        .filter(
            Payment.status == PaymentStatus.PENDING.value,
            Payment.created_at < cutoff,
        )
        .with_for_update(skip_locked=True)
        .all()
    )
    for payment in stale:
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = EXPIRED_CHECKOUT_MESSAGE
        record_payment_event(
            db,
            payment.org_id,
            PaymentEventType.CHECKOUT_EXPIRED,
            {"created_at": payment.created_at.isoformat(), "cutoff": cutoff.isoformat()},
            payment_id=payment.id,
        )
    db.commit()
    if stale:
        logger.info("[BILLING] Expired %d stale pending payments", len(stale))
    return len(stale)
