from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from uuid import UUID

from app.models.subscription_plan import BillingInterval


class PlanResponse(BaseModel):
    id: UUID
    name: str
    type: str
    description: Optional[str] = None
    price_monthly: int  # cents
    price_yearly: int  # cents
    max_seats: int  # -1 = unlimited
    max_workspaces: int
    max_documents: int
    features: List[str] = []
    is_active: bool

    class Config:
        from_attributes = True


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]


class SubscriptionResponse(BaseModel):
    id: UUID
    org_id: UUID
    plan_id: UUID
    status: str
    billing_interval: str
    current_period_start: datetime
    current_period_end: datetime
    canceled_at: Optional[datetime] = None  # when cancellation was requested
    cancel_at_period_end: bool
    effective_cancellation_at: Optional[datetime] = None  # when the plan actually stops
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    plan: Optional[PlanResponse] = None

    class Config:
        from_attributes = True


class SubscriptionEnvelope(BaseModel):
    subscription: Optional[SubscriptionResponse] = None


class CheckoutSessionRequest(BaseModel):
    plan_id: UUID
    billing_interval: BillingInterval
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutSessionResponse(BaseModel):
    session_token: str
    hosted_page_url: str
    expires_at: datetime


class ElavonCallbackParams(BaseModel):
    """Fields Converge appends to the receipt redirect. Everything is optional text."""
    ssl_txn_id: Optional[str] = None
    ssl_result: Optional[str] = None
    ssl_result_message: Optional[str] = None
    ssl_approval_code: Optional[str] = None
    ssl_token: Optional[str] = None
    ssl_card_number: Optional[str] = None
    ssl_exp_date: Optional[str] = None
    ssl_card_type: Optional[str] = None
    ssl_amount: Optional[str] = None
    ssl_invoice_number: Optional[str] = None
    ssl_token_response: Optional[str] = None
    errorCode: Optional[str] = None
    errorMessage: Optional[str] = None


class ElavonWebhookPayload(BaseModel):
    ssl_txn_id: str
    ssl_result: str
    ssl_result_message: Optional[str] = None
    ssl_approval_code: Optional[str] = None
    ssl_amount: Optional[str] = None
    ssl_invoice_number: Optional[str] = None


class SelectFreePlanRequest(BaseModel):
    plan_id: UUID


class UpdateSubscriptionRequest(BaseModel):
    cancel: bool = False
    cancel_immediately: bool = False
    plan_id: Optional[UUID] = None
    billing_interval: Optional[BillingInterval] = None
    cancel_at_period_end: Optional[bool] = None


class RefundRequest(BaseModel):
    payment_id: UUID
    amount: Optional[int] = Field(None, gt=0)  # cents; omit for a full refund
    reason: Optional[str] = Field(None, max_length=500)


class RefundResponse(BaseModel):
    success: bool
    refund_amount: int


class PaymentResponse(BaseModel):
    id: UUID
    amount: int  # cents
    currency: str
    status: str
    description: Optional[str] = None
    failure_reason: Optional[str] = None
    refunded_amount: int
    gateway_transaction_id: Optional[str] = None
    payment_method_id: Optional[UUID] = None
    subscription_id: Optional[UUID] = None
    created_at: datetime

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class PaymentHistoryResponse(BaseModel):
    payments: List[PaymentResponse]
    pagination: Pagination


class PaymentMethodResponse(BaseModel):
    """Display details only; the gateway token never leaves the server."""
    id: UUID
    type: str
    card_last4: Optional[str] = None
    card_brand: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    is_default: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentMethodListResponse(BaseModel):
    methods: List[PaymentMethodResponse]


class PaymentMethodEnvelope(BaseModel):
    method: PaymentMethodResponse


class UpdatePaymentMethodRequest(BaseModel):
    is_default: Optional[bool] = None
