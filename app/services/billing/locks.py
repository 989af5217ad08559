"""
Row locks for multi-step billing mutations.

Read-then-write sequences (refund math, token upsert, subscription changes)
take a ``SELECT ... FOR UPDATE`` on the owning row first so concurrent requests
for the same organization or payment serialize on PostgreSQL. The lock lives
until the caller commits or rolls back. SQLite ignores FOR UPDATE.
"""
from sqlalchemy.orm import Session
import uuid

from app.core.errors import NotFoundError
from app.models.organization import Organization
from app.models.payment import Payment


def lock_organization(db: Session, org_id: uuid.UUID) -> Organization:
    org = (
        db.query(Organization)
        .filter(Organization.id == org_id)
        .with_for_update()
        .first()
    )
    if not org:
        raise NotFoundError("Organization")
    return org


def lock_payment(db: Session, payment_id: uuid.UUID, org_id: uuid.UUID) -> Payment:
    """Lock a payment, scoped to its organization. Foreign payments look absent."""
    payment = (
        db.query(Payment)
        .filter(Payment.id == payment_id, Payment.org_id == org_id)
        .with_for_update()
        .first()
    )
    if not payment:
        raise NotFoundError("Payment")
    return payment
