"""
Subscription lifecycle for organizations.

Each organization has exactly one subscription row. It starts on the free plan,
moves to a paid plan through activate_subscription (called after a successful
payment), and is cancelled either immediately (downgrade to free) or at the end
of the current period.
"""
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
import calendar
import logging
import uuid

from app.core.errors import ConflictError, InternalError, NotFoundError
from app.models.organization import Organization
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.subscription_plan import BillingInterval
from app.services.billing.locks import lock_organization
from app.services.billing.plans import get_free_plan, get_plan

logger = logging.getLogger(__name__)

# The free tier never renews; its period end is pushed far out instead of being NULL.
FREE_PLAN_PERIOD_YEARS = 100


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping to the last day of the target month (Jan 31 + 1 -> Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def period_end_for(start: datetime, interval: str) -> datetime:
    if BillingInterval(interval) == BillingInterval.MONTHLY:
        return add_months(start, 1)
    return add_months(start, 12)


def get_organization_subscription(db: Session, org_id: uuid.UUID) -> Optional[Subscription]:
    """Current subscription with its plan loaded, or None for organizations that have none yet."""
    return db.query(Subscription).filter(Subscription.org_id == org_id).first()


def _require_free_plan(db: Session):
    free_plan = get_free_plan(db)
    if not free_plan:
        raise InternalError("Free plan not found. Please run the seed script.")
    return free_plan


def create_free_subscription(db: Session, org_id: uuid.UUID) -> Subscription:
    free_plan = _require_free_plan(db)
    lock_organization(db, org_id)

    if get_organization_subscription(db, org_id):
        raise ConflictError("Organization already has a subscription")

    now = datetime.utcnow()
    subscription = Subscription(
        org_id=org_id,
        plan_id=free_plan.id,
        status=SubscriptionStatus.ACTIVE.value,
        billing_interval=BillingInterval.MONTHLY.value,
        current_period_start=now,
        current_period_end=add_months(now, 12 * FREE_PLAN_PERIOD_YEARS),
    )
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    logger.info("[BILLING] Created free subscription for org %s", org_id)
    return subscription


def activate_subscription(db: Session, org_id: uuid.UUID, plan_id: uuid.UUID, interval: str) -> Subscription:
    """
    Put the organization on ``plan_id`` for a fresh billing period.

    Creates the row if missing, otherwise overwrites plan, interval, status and
    period and clears any pending cancellation. Calling it twice restarts the
    period from now; periods do not stack.
    """
    plan = get_plan(db, plan_id)
    interval = BillingInterval(interval).value
    lock_organization(db, org_id)

    now = datetime.utcnow()
    period_end = period_end_for(now, interval)

    subscription = get_organization_subscription(db, org_id)
    if subscription is None:
        subscription = Subscription(org_id=org_id)
        db.add(subscription)

    subscription.plan_id = plan.id
    subscription.status = SubscriptionStatus.ACTIVE.value
    subscription.billing_interval = interval
    subscription.current_period_start = now
    subscription.current_period_end = period_end
    subscription.canceled_at = None
    subscription.cancel_at_period_end = False

    db.commit()
    db.refresh(subscription)
    logger.info("[BILLING] Activated plan %s (%s) for org %s until %s", plan.name, interval, org_id, period_end)
    return subscription


def cancel_subscription(db: Session, org_id: uuid.UUID, immediate: bool = False) -> Subscription:
    """
    Cancel the organization's subscription.

    immediate=True downgrades to the free plan now and marks the row canceled.
    immediate=False only flags cancel_at_period_end; plan and status stay as
    they are and canceled_at records when the request was made. The plan
    really ends at current_period_end (see Subscription.effective_cancellation_at).
    """
    lock_organization(db, org_id)
    subscription = get_organization_subscription(db, org_id)
    if not subscription:
        raise NotFoundError("Subscription")

    now = datetime.utcnow()
    if immediate:
        free_plan = _require_free_plan(db)
        subscription.plan_id = free_plan.id
        subscription.status = SubscriptionStatus.CANCELED.value
        subscription.canceled_at = now
        subscription.cancel_at_period_end = False
    else:
        subscription.cancel_at_period_end = True
        subscription.canceled_at = now

    db.commit()
    db.refresh(subscription)
    logger.info("[BILLING] Canceled subscription for org %s (immediate=%s)", org_id, immediate)
    return subscription


def provision_organization(db: Session, name: str) -> Organization:
    """Create an organization and put it on the free plan."""
    org = Organization(name=name)
    db.add(org)
    db.commit()
    db.refresh(org)
    create_free_subscription(db, org.id)
    return org
