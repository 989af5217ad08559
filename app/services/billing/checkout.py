"""
Checkout flow glue: plan pricing on the way out to the hosted page, and
subscription activation when the user comes back.
"""
from sqlalchemy.orm import Session
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
import logging
import uuid

from app.core.errors import PaymentError
from app.models.payment import Payment
from app.models.subscription import Subscription
from app.models.subscription_plan import PlanType, SubscriptionPlan
from app.services.billing.gateway import GatewayResult, HostedSession, HostedSessionInput, PaymentGateway
from app.services.billing.plans import get_plan, price_for
from app.services.billing.subscriptions import activate_subscription

logger = logging.getLogger(__name__)


@dataclass
class CheckoutOutcome:
    result: GatewayResult
    subscription: Optional[Subscription] = None


def start_checkout(
    db: Session,
    gateway: PaymentGateway,
    org_id: uuid.UUID,
    plan_id: uuid.UUID,
    billing_interval: str,
    customer_email: str,
    return_url: str,
    cancel_url: str,
    customer_name: Optional[str] = None,
) -> Tuple[SubscriptionPlan, HostedSession]:
    plan = get_plan(db, plan_id)
    if plan.type == PlanType.FREE.value:
        raise PaymentError("Free plan does not require payment")

    session = gateway.create_hosted_session(db, HostedSessionInput(
        org_id=org_id,
        amount=price_for(plan, billing_interval),
        plan_id=plan.id,
        billing_interval=billing_interval,
        customer_email=customer_email,
        customer_name=customer_name,
        return_url=return_url,
        cancel_url=cancel_url,
    ))
    return plan, session


def complete_checkout(
    db: Session,
    gateway: PaymentGateway,
    payload: Dict[str, str],
    org_id: uuid.UUID,
) -> CheckoutOutcome:
    """
    Reconcile the hosted-page redirect and, on success, put the org on the purchased plan.

    The completed payment and the subscription change commit together. If
    activation fails the caller rolls back and the payment is still pending,
    so the same callback can be replayed.
    """
    result = gateway.process_callback(db, payload, org_id, commit=False)
    if not (result.success and result.payment_id):
        return CheckoutOutcome(result=result)

    payment = db.query(Payment).filter(Payment.id == result.payment_id).first()
    metadata = (payment.metadata_ if payment else None) or {}
    plan_id = metadata.get("plan_id")
    interval = metadata.get("billing_interval")
    if not (plan_id and interval):
        logger.warning("[BILLING] Payment %s has no plan metadata; subscription unchanged", result.payment_id)
        db.commit()
        return CheckoutOutcome(result=result)

    # activate_subscription commits the payment along with the plan change
    subscription = activate_subscription(db, org_id, uuid.UUID(plan_id), interval)
    payment.subscription_id = subscription.id
    db.commit()
    return CheckoutOutcome(result=result, subscription=subscription)
