"""
Subscription plan catalog. Plans are seeded once and read-only afterwards.
"""
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
import uuid

from app.core.errors import NotFoundError
from app.models.subscription_plan import SubscriptionPlan, PlanType, BillingInterval, UNLIMITED

logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    {
        "name": "Free",
        "type": PlanType.FREE.value,
        "description": "Get started with basic features",
        "price_monthly": 0,
        "price_yearly": 0,
        "max_seats": 1,
        "max_workspaces": 2,
        "max_documents": 10,
        "features": [
            "Basic AI assistance",
            "Document upload (10 max)",
            "Email support",
        ],
    },
    {
        "name": "Starter",
        "type": PlanType.STARTER.value,
        "description": "For small teams getting started",
        "price_monthly": 2900,
        "price_yearly": 27900,  # 20% off
        "max_seats": 5,
        "max_workspaces": 10,
        "max_documents": 100,
        "features": [
            "Everything in Free",
            "Up to 5 team members",
            "Advanced AI models",
            "Priority email support",
            "QuickBooks integration",
        ],
    },
    {
        "name": "Professional",
        "type": PlanType.PROFESSIONAL.value,
        "description": "For growing organizations",
        "price_monthly": 7900,
        "price_yearly": 75900,
        "max_seats": 20,
        "max_workspaces": 50,
        "max_documents": 500,
        "features": [
            "Everything in Starter",
            "Up to 20 team members",
            "Unlimited workspaces",
            "Advanced analytics",
            "API access",
            "Priority support",
            "Custom integrations",
        ],
    },
    {
        "name": "Enterprise",
        "type": PlanType.ENTERPRISE.value,
        "description": "For large organizations with custom needs",
        "price_monthly": 19900,
        "price_yearly": 190900,
        "max_seats": UNLIMITED,
        "max_workspaces": UNLIMITED,
        "max_documents": UNLIMITED,
        "features": [
            "Everything in Professional",
            "Unlimited team members",
            "Unlimited documents",
            "Dedicated support",
            "SLA guarantee",
            "On-premise deployment",
            "Custom AI training",
            "HIPAA BAA",
        ],
    },
]


def list_active_plans(db: Session) -> List[SubscriptionPlan]:
    """Active plans, cheapest first."""
    return (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.is_active.is_(True))
        .order_by(SubscriptionPlan.price_monthly.asc())
        .all()
    )


def get_plan(db: Session, plan_id: uuid.UUID) -> SubscriptionPlan:
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
    if not plan:
        raise NotFoundError("Subscription plan")
    return plan


def get_free_plan(db: Session) -> Optional[SubscriptionPlan]:
    return (
        db.query(SubscriptionPlan)
        .filter(
            SubscriptionPlan.type == PlanType.FREE.value,
            SubscriptionPlan.is_active.is_(True),
        )
        .first()
    )


def price_for(plan: SubscriptionPlan, interval: str) -> int:
    """Price in cents for the given billing interval."""
    if BillingInterval(interval) == BillingInterval.MONTHLY:
        return plan.price_monthly
    return plan.price_yearly


def seed_plans(db: Session) -> List[SubscriptionPlan]:
    """Insert or update the default tiers, matched by plan type."""
    seeded = []
    for defaults in DEFAULT_PLANS:
        plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.type == defaults["type"]).first()
        if plan:
            for field, value in defaults.items():
                setattr(plan, field, value)
            logger.info("[BILLING] Updated plan: %s", defaults["name"])
        else:
            plan = SubscriptionPlan(**defaults, is_active=True)
            db.add(plan)
            logger.info("[BILLING] Created plan: %s", defaults["name"])
        seeded.append(plan)
    db.commit()
    return seeded
