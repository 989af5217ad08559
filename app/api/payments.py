"""
Billing routes: plan catalog, hosted checkout, subscription management,
payment history, saved cards, refunds and the Converge notification webhook.
"""
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit
import logging
import uuid

from app.api.deps import (
    CurrentMember,
    get_callback_member,
    get_current_member,
    get_gateway,
    require_billing_enabled,
    require_role,
)
from app.core.audit import get_client_ip, log_audit_event
from app.core.config import settings
from app.core.errors import AppError, ServiceUnavailableError, AuthorizationError, ValidationError
from app.core.security import CHECKOUT_TOKEN_PARAM, create_checkout_token
from app.db.session import get_db
from app.models.audit_log import AuditAction
from app.models.payment import PaymentStatus
from app.models.subscription_plan import PlanType
from app.schemas.billing import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    ElavonCallbackParams,
    ElavonWebhookPayload,
    PaymentHistoryResponse,
    PaymentMethodEnvelope,
    PaymentMethodListResponse,
    PaymentMethodResponse,
    PaymentResponse,
    PlanListResponse,
    PlanResponse,
    RefundRequest,
    RefundResponse,
    SelectFreePlanRequest,
    SubscriptionEnvelope,
    SubscriptionResponse,
    UpdatePaymentMethodRequest,
    UpdateSubscriptionRequest,
)
from app.services.billing.checkout import complete_checkout, start_checkout
from app.services.billing.converge import is_converge_ip
from app.services.billing.gateway import PaymentGateway, RefundInput
from app.services.billing.payment_methods import (
    delete_payment_method,
    get_payment_method,
    list_payment_methods,
    set_default_payment_method,
)
from app.services.billing.payments import get_payment_history
from app.services.billing.plans import get_plan, list_active_plans
from app.services.billing.subscriptions import (
    cancel_subscription,
    create_free_subscription,
    get_organization_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter()

CALLBACK_ERROR_MESSAGE = "An error occurred processing your payment"


def _billing_redirect(query: str) -> RedirectResponse:
    return RedirectResponse(f"{settings.FRONTEND_URL}/app/billing?{query}", status_code=status.HTTP_302_FOUND)


def _with_query(url: str, **params: str) -> str:
    parts = urlsplit(url)
    query = urlencode(parse_qsl(parts.query) + list(params.items()))
    return urlunsplit(parts._replace(query=query))


def _subscription_envelope(subscription) -> SubscriptionEnvelope:
    if subscription is None:
        return SubscriptionEnvelope(subscription=None)
    return SubscriptionEnvelope(subscription=SubscriptionResponse.model_validate(subscription))


@router.get("/plans", response_model=PlanListResponse, dependencies=[Depends(require_billing_enabled)])
def list_plans(
    db: Session = Depends(get_db),
    member: CurrentMember = Depends(get_current_member),
):
    plans = list_active_plans(db)
    return PlanListResponse(plans=[PlanResponse.model_validate(p) for p in plans])


@router.post("/session", response_model=CheckoutSessionResponse, dependencies=[Depends(require_billing_enabled)])
def create_checkout_session(
    body: CheckoutSessionRequest,
    request: Request,
    db: Session = Depends(get_db),
    member: CurrentMember = Depends(require_role("admin")),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Start a hosted checkout for a paid plan. The client redirects the browser to ``hosted_page_url``."""
    checkout_token = create_checkout_token(
        user_id=member.user_id,
        org_id=str(member.org_id),
        email=member.email,
        role=member.role,
        name=member.name,
    )
    return_url = _with_query(
        body.return_url or str(request.url_for("payment_callback")),
        **{CHECKOUT_TOKEN_PARAM: checkout_token},
    )
    cancel_url = body.cancel_url or f"{settings.FRONTEND_URL}/app/billing?canceled=true"

    plan, session = start_checkout(
        db,
        gateway,
        org_id=member.org_id,
        plan_id=body.plan_id,
        billing_interval=body.billing_interval.value,
        customer_email=member.email,
        customer_name=member.name,
        return_url=return_url,
        cancel_url=cancel_url,
    )

    log_audit_event(
        db,
        AuditAction.CHECKOUT_SESSION_CREATED,
        org_id=member.org_id,
        user_id=member.user_id,
        resource_type="payment",
        request=request,
        details={
            "plan_id": str(plan.id),
            "plan_name": plan.name,
            "billing_interval": body.billing_interval.value,
            "invoice_number": session.session_token,
        },
    )

    return CheckoutSessionResponse(
        session_token=session.session_token,
        hosted_page_url=session.hosted_page_url,
        expires_at=session.expires_at,
    )


@router.get("/callback", name="payment_callback")
def payment_callback(
    request: Request,
    db: Session = Depends(get_db),
    member: Optional[CurrentMember] = Depends(get_callback_member),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """
    Converge redirects the browser here after the hosted page. The organization
    comes from the checkout token signed into the return URL (or a bearer token).

    Always answers with a redirect into the billing UI; failures travel in the
    ``error`` query parameter as user-safe text.
    """
    if not settings.FEATURE_BILLING_ENABLED:
        return _billing_redirect("error=billing_disabled")

    if member is None:
        return RedirectResponse(
            f"{settings.FRONTEND_URL}/auth/signin?callbackUrl=/app/billing",
            status_code=status.HTTP_302_FOUND,
        )

    try:
        params = {k: v for k, v in request.query_params.items() if k != CHECKOUT_TOKEN_PARAM}
        ElavonCallbackParams.model_validate(params)
        outcome = complete_checkout(db, gateway, params, member.org_id)
    except Exception:
        logger.exception("[BILLING] Callback processing failed for org %s", member.org_id)
        db.rollback()
        return _billing_redirect(f"error={quote(CALLBACK_ERROR_MESSAGE)}")

    result = outcome.result
    if not result.success:
        return _billing_redirect(f"error={quote(result.error or 'Payment failed')}")

    if outcome.subscription is not None:
        log_audit_event(
            db,
            AuditAction.SUBSCRIPTION_CREATED,
            org_id=member.org_id,
            user_id=member.user_id,
            resource_type="subscription",
            resource_id=outcome.subscription.id,
            request=request,
            details={
                "plan_id": str(outcome.subscription.plan_id),
                "billing_interval": outcome.subscription.billing_interval,
                "payment_id": str(result.payment_id),
            },
        )
    return _billing_redirect("success=true")


@router.post("/webhook")
async def elavon_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """
    Asynchronous Converge transaction notifications.

    Not authenticated; the sender must come from a Converge address range.
    Once the payload validates, the answer is always ``{"received": true}`` so
    Converge does not keep retrying.
    """
    if not settings.FEATURE_BILLING_ENABLED:
        raise ServiceUnavailableError("Billing is not enabled")

    client_ip = get_client_ip(request)
    if not is_converge_ip(client_ip, settings.get_webhook_ip_prefixes()):
        logger.warning("[WEBHOOK] Rejected notification from unauthorized IP %s", client_ip)
        raise AuthorizationError("Unauthorized")

    form = await request.form()
    payload = {key: str(value) for key, value in form.items()}
    try:
        ElavonWebhookPayload.model_validate(payload)
    except PydanticValidationError:
        logger.warning("[WEBHOOK] Invalid payload from %s: keys=%s", client_ip, sorted(payload.keys()))
        raise ValidationError("Invalid payload")

    try:
        result = gateway.process_webhook(db, payload)
    except Exception:
        logger.exception("[WEBHOOK] Failed to process notification for transaction %r", payload.get("ssl_txn_id"))
        db.rollback()
        return {"received": True, "error": "Processing error"}

    if result.new_status in (PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value):
        action = (
            AuditAction.PAYMENT_COMPLETED
            if result.new_status == PaymentStatus.COMPLETED.value
            else AuditAction.PAYMENT_FAILED
        )
        log_audit_event(
            db,
            action,
            org_id=result.org_id,
            resource_type="payment",
            resource_id=result.payment_id,
            request=request,
            details={
                "transaction_id": payload.get("ssl_txn_id"),
                "result": payload.get("ssl_result"),
                "amount": payload.get("ssl_amount"),
                "source": "webhook",
            },
        )
    return {"received": True}


@router.get("/subscription", response_model=SubscriptionEnvelope, dependencies=[Depends(require_billing_enabled)])
def get_subscription(
    db: Session = Depends(get_db),
    member: CurrentMember = Depends(get_current_member),
):
    return _subscription_envelope(get_organization_subscription(db, member.org_id))


@router.post(
    "/subscription",
    response_model=SubscriptionEnvelope,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_billing_enabled)],
)
def select_free_plan(
    body: SelectFreePlanRequest,
    request: Request,
    db: Session = Depends(get_db),
    member: CurrentMember = Depends(require_role("admin")),
):
    plan = get_plan(db, body.plan_id)
    if plan.type != PlanType.FREE.value:
        raise ValidationError("This endpoint is only for selecting the free plan")

    subscription = create_free_subscription(db, member.org_id)

    log_audit_event(
        db,
        AuditAction.SUBSCRIPTION_CREATED,
        org_id=member.org_id,
        user_id=member.user_id,
        resource_type="subscription",
        resource_id=subscription.id,
        request=request,
        details={"plan_id": str(plan.id), "plan_name": plan.name, "plan_type": plan.type},
    )
    return _subscription_envelope(subscription)


@router.patch("/subscription", response_model=SubscriptionEnvelope, dependencies=[Depends(require_billing_enabled)])
def update_subscription(
    body: UpdateSubscriptionRequest,
    request: Request,
    db: Session = Depends(get_db),
    member: CurrentMember = Depends(require_role("admin")),
):
    """
    Cancel (``cancel: true``, optionally ``cancel_immediately``) or flag
    cancel-at-period-end. Paid plan changes go through POST /payments/session.
    """
    if body.cancel:
        subscription = cancel_subscription(db, member.org_id, immediate=body.cancel_immediately)
        log_audit_event(
            db,
            AuditAction.SUBSCRIPTION_CANCELED,
            org_id=member.org_id,
            user_id=member.user_id,
            resource_type="subscription",
            resource_id=subscription.id,
            request=request,
            details={
                "cancel_immediately": body.cancel_immediately,
                "cancel_at_period_end": subscription.cancel_at_period_end,
            },
        )
        return _subscription_envelope(subscription)

    if body.plan_id:
        plan = get_plan(db, body.plan_id)
        if plan.type != PlanType.FREE.value:
            raise ValidationError("Plan upgrades require payment. Use POST /payments/session")

    if body.cancel_at_period_end:
        subscription = cancel_subscription(db, member.org_id, immediate=False)
        log_audit_event(
            db,
            AuditAction.SUBSCRIPTION_UPDATED,
            org_id=member.org_id,
            user_id=member.user_id,
            resource_type="subscription",
            resource_id=subscription.id,
            request=request,
            details={"cancel_at_period_end": True},
        )
        return _subscription_envelope(subscription)

    return _subscription_envelope(get_organization_subscription(db, member.org_id))


@router.get("/history", response_model=PaymentHistoryResponse, dependencies=[Depends(require_billing_enabled)])
def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    member: CurrentMember = Depends(get_current_member),
):
    history = get_payment_history(
        db,
        member.org_id,
        page=page,
        limit=limit,
        status=status_filter.value if status_filter else None,
        start_date=start_date,
        end_date=end_date,
    )
    return PaymentHistoryResponse(
        payments=[PaymentResponse.model_validate(p) for p in history["payments"]],
        pagination=history["pagination"],
    )


@router.get("/methods", response_model=PaymentMethodListResponse, dependencies=[Depends(require_billing_enabled)])
def list_methods(
    db: Session = Depends(get_db),
    member: CurrentMember = Depends(get_current_member),
):
    methods = list_payment_methods(db, member.org_id)
    return PaymentMethodListResponse(methods=[PaymentMethodResponse.model_validate(m) for m in methods])


@router.patch(
    "/methods/{method_id}",
    response_model=PaymentMethodEnvelope,
    dependencies=[Depends(require_billing_enabled)],
)
def update_method(
    method_id: uuid.UUID,
    body: UpdatePaymentMethodRequest,
    request: Request,
    db: Session = Depends(get_db),
    member: CurrentMember = Depends(require_role("admin")),
):
    # Only promoting is supported: an organization with cards always keeps a default.
    if body.is_default:
        method = set_default_payment_method(db, member.org_id, method_id)
    else:
        method = get_payment_method(db, member.org_id, method_id)

    log_audit_event(
        db,
        AuditAction.PAYMENT_METHOD_UPDATED,
        org_id=member.org_id,
        user_id=member.user_id,
        resource_type="payment_method",
        resource_id=method_id,
        request=request,
        details=body.model_dump(exclude_none=True),
    )
    return PaymentMethodEnvelope(method=PaymentMethodResponse.model_validate(method))


@router.delete("/methods/{method_id}", dependencies=[Depends(require_billing_enabled)])
def delete_method(
    method_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    member: CurrentMember = Depends(require_role("admin")),
):
    details = delete_payment_method(db, member.org_id, method_id)

    log_audit_event(
        db,
        AuditAction.PAYMENT_METHOD_REMOVED,
        org_id=member.org_id,
        user_id=member.user_id,
        resource_type="payment_method",
        resource_id=method_id,
        request=request,
        details=details,
    )
    return {"success": True}


@router.post("/refund", response_model=RefundResponse, dependencies=[Depends(require_billing_enabled)])
def refund_payment(
    body: RefundRequest,
    request: Request,
    db: Session = Depends(get_db),
    member: CurrentMember = Depends(require_role("owner")),
    gateway: PaymentGateway = Depends(get_gateway),
):
    result = gateway.process_refund(db, RefundInput(
        payment_id=body.payment_id,
        org_id=member.org_id,
        amount=body.amount,
    ))
    if not result.success:
        raise AppError(result.error or "Refund failed", status_code=400, code="REFUND_FAILED")

    log_audit_event(
        db,
        AuditAction.PAYMENT_REFUNDED,
        org_id=member.org_id,
        user_id=member.user_id,
        resource_type="payment",
        resource_id=body.payment_id,
        request=request,
        details={"refund_amount": result.refund_amount, "reason": body.reason},
    )
    return RefundResponse(success=True, refund_amount=result.refund_amount)
