from app.schemas.billing import (
    PlanResponse, PlanListResponse,
    SubscriptionResponse, SubscriptionEnvelope,
    CheckoutSessionRequest, CheckoutSessionResponse,
    ElavonCallbackParams, ElavonWebhookPayload,
    SelectFreePlanRequest, UpdateSubscriptionRequest,
    RefundRequest, RefundResponse,
    PaymentResponse, Pagination, PaymentHistoryResponse,
    PaymentMethodResponse, PaymentMethodListResponse, PaymentMethodEnvelope, UpdatePaymentMethodRequest,
)

__all__ = [
    "PlanResponse", "PlanListResponse",
    "SubscriptionResponse", "SubscriptionEnvelope",
    "CheckoutSessionRequest", "CheckoutSessionResponse",
    "ElavonCallbackParams", "ElavonWebhookPayload",
    "SelectFreePlanRequest", "UpdateSubscriptionRequest",
    "RefundRequest", "RefundResponse",
    "PaymentResponse", "Pagination", "PaymentHistoryResponse",
    "PaymentMethodResponse", "PaymentMethodListResponse", "PaymentMethodEnvelope", "UpdatePaymentMethodRequest",
]
