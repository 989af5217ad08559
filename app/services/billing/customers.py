"""Billing customers: one per organization, created on first checkout."""
from sqlalchemy.orm import Session
from typing import Optional
import uuid

from app.core.errors import NotFoundError
from app.models.billing_customer import BillingCustomer

ADDRESS_FIELDS = ("address_line1", "address_line2", "city", "state", "postal_code", "country")


def get_billing_customer(db: Session, org_id: uuid.UUID) -> Optional[BillingCustomer]:
    return db.query(BillingCustomer).filter(BillingCustomer.org_id == org_id).first()


def get_or_create_billing_customer(
    db: Session,
    org_id: uuid.UUID,
    email: str,
    name: Optional[str] = None,
    **address
) -> BillingCustomer:
    """Existing customer is returned untouched; contact details only seed new rows."""
    customer = get_billing_customer(db, org_id)
    if customer:
        return customer

    customer = BillingCustomer(
        org_id=org_id,
        email=email,
        name=name,
        **{k: v for k, v in address.items() if k in ADDRESS_FIELDS and v is not None},
    )
    db.add(customer)
    db.flush()
    return customer


def update_billing_customer(db: Session, org_id: uuid.UUID, **fields) -> BillingCustomer:
    customer = get_billing_customer(db, org_id)
    if not customer:
        raise NotFoundError("Billing customer")

    for field, value in fields.items():
        if field in ("email", "name") + ADDRESS_FIELDS and value is not None:
            setattr(customer, field, value)
    db.commit()
    db.refresh(customer)
    return customer
