from app.models.organization import Organization
from app.models.subscription_plan import SubscriptionPlan, PlanType, BillingInterval, UNLIMITED
from app.models.billing_customer import BillingCustomer
from app.models.payment_method import PaymentMethod, PaymentMethodType
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.payment import Payment, PaymentStatus, REFUNDABLE_STATUSES
from app.models.payment_event import PaymentEvent, PaymentEventType
from app.models.audit_log import AuditLog, AuditAction

__all__ = [
    "Organization", "SubscriptionPlan", "PlanType", "BillingInterval", "UNLIMITED",
    "BillingCustomer", "PaymentMethod", "PaymentMethodType",
    "Subscription", "SubscriptionStatus",
    "Payment", "PaymentStatus", "REFUNDABLE_STATUSES",
    "PaymentEvent", "PaymentEventType",
    "AuditLog", "AuditAction",
]
