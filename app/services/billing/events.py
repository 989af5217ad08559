"""Append-only payment event trail."""
from sqlalchemy.orm import Session
from typing import Any, Optional
import uuid

from app.models.payment_event import PaymentEvent, PaymentEventType


def record_payment_event(
    db: Session,
    org_id: uuid.UUID,
    event_type: PaymentEventType,
    payload: Optional[Any] = None,
    payment_id: Optional[uuid.UUID] = None,
) -> PaymentEvent:
    """Add an event to the session. The caller's commit persists it together with the state change it describes."""
    event = PaymentEvent(
        org_id=org_id,
        payment_id=payment_id,
        event_type=event_type.value,
        raw_payload=payload,
    )
    db.add(event)
    return event
