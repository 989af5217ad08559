"""
Saved payment methods (gateway tokens) for organizations.

At most one method per organization is the default; the first one saved
becomes default automatically and deleting the default promotes the oldest
remaining method.
"""
from sqlalchemy.orm import Session
from typing import List, Optional, Tuple
import logging
import uuid

from app.core.errors import NotFoundError
from app.models.payment_method import PaymentMethod, PaymentMethodType
from app.services.billing.card_brand import detect_card_brand
from app.services.billing.customers import get_billing_customer
from app.services.billing.locks import lock_organization

logger = logging.getLogger(__name__)


def parse_expiry(exp_date: str) -> Tuple[Optional[int], Optional[int]]:
    """Parse Converge ``MM/YY`` (or ``MMYY``) into (month, four-digit year)."""
    raw = (exp_date or "").strip()
    if "/" in raw:
        month_part, _, year_part = raw.partition("/")
    elif len(raw) == 4 and raw.isdigit():
        month_part, year_part = raw[:2], raw[2:]
    else:
        return None, None
    try:
        month, year = int(month_part), int(year_part)
    except ValueError:
        return None, None
    if year < 100:
        year += 2000
    return month, year


def list_payment_methods(db: Session, org_id: uuid.UUID) -> List[PaymentMethod]:
    return (
        db.query(PaymentMethod)
        .filter(PaymentMethod.org_id == org_id)
        .order_by(PaymentMethod.created_at.asc())
        .all()
    )


def get_payment_method(db: Session, org_id: uuid.UUID, method_id: uuid.UUID) -> PaymentMethod:
    """Tenant-scoped lookup: another organization's method is reported as missing."""
    method = (
        db.query(PaymentMethod)
        .filter(PaymentMethod.id == method_id, PaymentMethod.org_id == org_id)
        .first()
    )
    if not method:
        raise NotFoundError("Payment method")
    return method


def get_default_payment_method(db: Session, org_id: uuid.UUID) -> Optional[PaymentMethod]:
    return (
        db.query(PaymentMethod)
        .filter(PaymentMethod.org_id == org_id, PaymentMethod.is_default.is_(True))
        .first()
    )


def set_default_payment_method(db: Session, org_id: uuid.UUID, method_id: uuid.UUID) -> PaymentMethod:
    lock_organization(db, org_id)
    method = get_payment_method(db, org_id, method_id)

    db.query(PaymentMethod).filter(
        PaymentMethod.org_id == org_id,
        PaymentMethod.id != method.id,
    ).update({PaymentMethod.is_default: False}, synchronize_session="fetch")
    method.is_default = True

    db.commit()
    db.refresh(method)
    return method


def delete_payment_method(db: Session, org_id: uuid.UUID, method_id: uuid.UUID) -> dict:
    """Remove a method. Returns its display details for the audit trail."""
    lock_organization(db, org_id)
    method = get_payment_method(db, org_id, method_id)
    was_default = method.is_default
    details = {"card_last4": method.card_last4, "card_brand": method.card_brand, "was_default": was_default}

    db.delete(method)
    db.flush()

    if was_default:
        next_method = (
            db.query(PaymentMethod)
            .filter(PaymentMethod.org_id == org_id)
            .order_by(PaymentMethod.created_at.asc())
            .first()
        )
        if next_method:
            next_method.is_default = True

    db.commit()
    logger.info("[BILLING] Removed payment method %s for org %s", method_id, org_id)
    return details


def save_payment_token(
    db: Session,
    org_id: uuid.UUID,
    token: str,
    card_number: str,
    exp_date: str,
    card_type: str = "",
    strict_card_match: bool = False,
) -> Optional[PaymentMethod]:
    """
    Store or refresh a gateway token for the organization.

    ``card_number`` is the masked number Converge echoes back (e.g.
    ``41**********1111``); only its last four digits are kept. An existing
    method with the same last4 gets the new token and expiry in place. With
    ``strict_card_match`` brand and expiry must match too, so two different
    cards sharing last4 are kept apart.

    Does not commit; the caller owns the transaction. Returns None when the
    organization has no billing customer to attach the card to.
    """
    customer = get_billing_customer(db, org_id)
    if not customer:
        logger.warning("[BILLING] No billing customer for org %s; not saving payment token", org_id)
        return None

    lock_organization(db, org_id)

    last4 = (card_number or "")[-4:]
    brand = detect_card_brand(card_number)
    if brand == "unknown" and card_type:
        brand = card_type.lower()
    exp_month, exp_year = parse_expiry(exp_date)

    query = db.query(PaymentMethod).filter(
        PaymentMethod.org_id == org_id,
        PaymentMethod.card_last4 == last4,
    )
    if strict_card_match:
        query = query.filter(
            PaymentMethod.card_brand == brand,
            PaymentMethod.exp_month == exp_month,
            PaymentMethod.exp_year == exp_year,
        )
    existing = query.first()

    if existing:
        existing.gateway_token = token
        existing.exp_month = exp_month
        existing.exp_year = exp_year
        db.flush()
        return existing

    has_methods = db.query(PaymentMethod.id).filter(PaymentMethod.org_id == org_id).first() is not None
    method = PaymentMethod(
        org_id=org_id,
        billing_customer_id=customer.id,
        type=PaymentMethodType.CREDIT_CARD.value,
        gateway_token=token,
        card_last4=last4,
        card_brand=brand,
        exp_month=exp_month,
        exp_year=exp_year,
        is_default=not has_methods,
    )
    db.add(method)
    db.flush()
    logger.info("[BILLING] Saved %s card ending %s for org %s", brand, last4, org_id)
    return method
