"""
Elavon Converge gateway client.

Two integration styles share the same flat ``ssl_*`` form protocol:

- Hosted checkout: we record a pending payment, send the user to Converge's
  hosted page with the parameters in the query string, and reconcile the
  redirect back (``process_callback``) by invoice number.
- Server-to-server: token charges and refunds are form POSTs to
  ``{api_url}/processxml.do`` answered in Converge's ASCII ``key=value`` format.

Every attempt leaves a Payment row and PaymentEvent rows behind, including
abandoned checkouts and transport failures.
"""
from sqlalchemy.orm import Session
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional
from urllib.parse import urlencode
import logging
import uuid

import httpx

from app.core.errors import PaymentError, ValidationError
from app.models.payment import Payment, PaymentStatus, REFUNDABLE_STATUSES
from app.models.payment_event import PaymentEventType
from app.services.billing.converge import (
    error_code_of,
    is_success,
    map_converge_error,
    parse_converge_response,
)
from app.services.billing.customers import get_or_create_billing_customer
from app.services.billing.events import record_payment_event
from app.services.billing.gateway import (
    GatewayCredentials,
    GatewayResult,
    HostedSession,
    HostedSessionInput,
    PaymentGateway,
    RefundInput,
    RefundResult,
    TokenPaymentInput,
    WebhookResult,
)
from app.services.billing.locks import lock_organization, lock_payment
from app.services.billing.payment_methods import get_payment_method, save_payment_token
from app.services.billing.payments import EXPIRED_CHECKOUT_MESSAGE

logger = logging.getLogger(__name__)

CURRENCY = "USD"
PAYMENT_FAILED_MESSAGE = "Payment processing failed. Please try again."
REFUND_FAILED_MESSAGE = "Refund processing failed. Please try again."


def generate_invoice_number() -> str:
    return f"INV-{uuid.uuid4().hex[:8].upper()}"


def format_amount(amount_cents: int) -> str:
    """Cents -> Converge dollar string, e.g. 2900 -> '29.00'."""
    return str((Decimal(amount_cents) / 100).quantize(Decimal("0.01")))


def split_name(full_name: Optional[str]):
    first, _, last = (full_name or "").strip().partition(" ")
    return first, last.strip()


class ElavonGateway(PaymentGateway):
    def __init__(
        self,
        credentials: GatewayCredentials,
        http_client: Optional[httpx.Client] = None,
        strict_invoice_match: bool = False,
        strict_card_match: bool = False,
        session_ttl_minutes: int = 30,
        timeout: float = 30.0,
    ):
        self.credentials = credentials
        self.http_client = http_client
        self.strict_invoice_match = strict_invoice_match
        self.strict_card_match = strict_card_match
        self.session_ttl = timedelta(minutes=session_ttl_minutes)
        self.timeout = timeout

    # -- wire helpers -------------------------------------------------------

    def _auth_params(self, transaction_type: str) -> Dict[str, str]:
        return {
            "ssl_merchant_id": self.credentials.merchant_id,
            "ssl_user_id": self.credentials.user_id,
            "ssl_pin": self.credentials.pin,
            "ssl_transaction_type": transaction_type,
        }

    def _post(self, params: Dict[str, str]) -> Dict[str, str]:
        """
        POST a transaction and parse the ASCII reply.

        Raises httpx.HTTPError on transport or HTTP status failures and
        ValueError when the body does not look like a Converge response.
        """
        url = f"{self.credentials.api_url}/processxml.do"
        body = {**params, "ssl_result_format": "ASCII"}
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if self.http_client is not None:
            response = self.http_client.post(url, data=body, headers=headers, timeout=self.timeout)
        else:
            response = httpx.post(url, data=body, headers=headers, timeout=self.timeout)
        response.raise_for_status()

        result = parse_converge_response(response.text)
        if "ssl_result" not in result and "errorCode" not in result:
            raise ValueError("Malformed gateway response")
        return result

    # -- hosted checkout ----------------------------------------------------

    def create_hosted_session(self, db: Session, data: HostedSessionInput) -> HostedSession:
        invoice_number = generate_invoice_number()
        # Serializes first checkouts so only one billing customer row is created
        lock_organization(db, data.org_id)
        customer = get_or_create_billing_customer(db, data.org_id, data.customer_email, data.customer_name)

        # Recorded before the redirect so abandoned checkouts are visible too.
        payment = Payment(
            org_id=data.org_id,
            amount=data.amount,
            currency=CURRENCY,
            status=PaymentStatus.PENDING.value,
            description="Subscription payment for plan",
            metadata_={
                "invoice_number": invoice_number,
                "plan_id": str(data.plan_id),
                "billing_interval": data.billing_interval,
            },
        )
        db.add(payment)
        db.flush()

        record_payment_event(
            db,
            data.org_id,
            PaymentEventType.CHECKOUT_INITIATED,
            {
                "amount": data.amount,
                "plan_id": str(data.plan_id),
                "billing_interval": data.billing_interval,
                "invoice_number": invoice_number,
            },
            payment_id=payment.id,
        )
        db.commit()

        first_name, last_name = split_name(data.customer_name or customer.name)
        params = {
            **self._auth_params("ccsale"),
            "ssl_amount": format_amount(data.amount),
            "ssl_invoice_number": invoice_number,
            "ssl_show_form": "true",
            "ssl_result_format": "ASCII",
            "ssl_get_token": "Y",
            "ssl_add_token": "Y",
            "ssl_receipt_link_method": "REDG",
            "ssl_receipt_link_url": data.return_url,
            "ssl_error_url": data.cancel_url,
            "ssl_email": data.customer_email,
            "ssl_first_name": first_name,
            "ssl_last_name": last_name,
        }
        hosted_page_url = f"{self.credentials.hosted_url}?{urlencode(params)}"

        logger.info("[ELAVON] Hosted session %s created for org %s (%s cents)", invoice_number, data.org_id, data.amount)
        return HostedSession(
            session_token=invoice_number,
            hosted_page_url=hosted_page_url,
            expires_at=datetime.utcnow() + self.session_ttl,
        )

    def _find_pending_payment(self, db: Session, payload: Dict[str, str], org_id: uuid.UUID) -> Optional[Payment]:
        pending = db.query(Payment).filter(
            Payment.org_id == org_id,
            Payment.status == PaymentStatus.PENDING.value,
        )

        invoice_number = payload.get("ssl_invoice_number")
        if invoice_number:
            payment = (
                pending.filter(Payment.metadata_["invoice_number"].as_string() == invoice_number)
                .with_for_update()
                .first()
            )
            if payment:
                return payment
            payment = self._reopen_expired_checkout(db, invoice_number, org_id)
            if payment:
                return payment

        if self.strict_invoice_match:
            return None

        # No usable invoice number: assume the oldest open checkout is the one
        # coming back. Wrong if the org has several checkouts in flight.
        payment = pending.order_by(Payment.created_at.asc()).with_for_update().first()
        if payment:
            logger.warning(
                "[ELAVON] Callback for org %s matched oldest pending payment %s (invoice %r not matched)",
                org_id, payment.id, invoice_number,
            )
        return payment

    def _reopen_expired_checkout(self, db: Session, invoice_number: str, org_id: uuid.UUID) -> Optional[Payment]:
        """
        Put a checkout expired by housekeeping back to pending.

        Converge's hosted page can outlive our session window, so the user may
        have paid after expire_stale_pending_payments gave up on the row. Only
        an exact invoice match reopens it.
        """
        payment = (
            db.query(Payment)
            .filter(
                Payment.org_id == org_id,
                Payment.status == PaymentStatus.FAILED.value,
                Payment.failure_reason == EXPIRED_CHECKOUT_MESSAGE,
                Payment.metadata_["invoice_number"].as_string() == invoice_number,
            )
            .with_for_update()
            .first()
        )
        if payment:
            payment.status = PaymentStatus.PENDING.value
            payment.failure_reason = None
            logger.warning("[ELAVON] Late callback for expired checkout %s (invoice %s); reopening", payment.id, invoice_number)
        return payment

    def process_callback(
        self,
        db: Session,
        payload: Dict[str, str],
        org_id: uuid.UUID,
        commit: bool = True,
    ) -> GatewayResult:
        payment = self._find_pending_payment(db, payload, org_id)

        # The raw callback is always kept, matched or not.
        record_payment_event(
            db,
            org_id,
            PaymentEventType.CALLBACK_RECEIVED,
            dict(payload),
            payment_id=payment.id if payment else None,
        )

        if not payment:
            db.commit()
            logger.warning("[ELAVON] Callback for org %s matched no pending payment", org_id)
            return GatewayResult(success=False, error="Payment not found")

        if is_success(payload):
            payment.status = PaymentStatus.COMPLETED.value
            payment.gateway_transaction_id = payload.get("ssl_txn_id")
            payment.gateway_approval_code = payload.get("ssl_approval_code")

            token = payload.get("ssl_token")
            if token:
                method = save_payment_token(
                    db,
                    org_id,
                    token,
                    payload.get("ssl_card_number") or "",
                    payload.get("ssl_exp_date") or "",
                    payload.get("ssl_card_type") or "",
                    strict_card_match=self.strict_card_match,
                )
                if method:
                    payment.payment_method_id = method.id

            record_payment_event(
                db,
                org_id,
                PaymentEventType.PAYMENT_COMPLETED,
                {
                    "transaction_id": payload.get("ssl_txn_id"),
                    "approval_code": payload.get("ssl_approval_code"),
                    "amount": payload.get("ssl_amount"),
                },
                payment_id=payment.id,
            )
            if commit:
                db.commit()
            else:
                db.flush()
            logger.info("[ELAVON] Payment %s completed (txn %s)", payment.id, payment.gateway_transaction_id)
            return GatewayResult(success=True, payment_id=payment.id)

        error_message = map_converge_error(error_code_of(payload) or "unknown")
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = error_message

        record_payment_event(
            db,
            org_id,
            PaymentEventType.PAYMENT_FAILED,
            {
                "result": payload.get("ssl_result"),
                "result_message": payload.get("ssl_result_message"),
                "error_code": payload.get("errorCode"),
                "error_message": payload.get("errorMessage"),
                "mapped_message": error_message,
            },
            payment_id=payment.id,
        )
        db.commit()
        logger.info("[ELAVON] Payment %s failed (result %r)", payment.id, payload.get("ssl_result"))
        return GatewayResult(success=False, payment_id=payment.id, error=error_message)

    # -- server-to-server ---------------------------------------------------

    def process_token_payment(self, db: Session, data: TokenPaymentInput) -> GatewayResult:
        if data.amount <= 0:
            raise ValidationError("Payment amount must be positive")
        method = get_payment_method(db, data.org_id, data.payment_method_id)

        invoice_number = generate_invoice_number()
        payment = Payment(
            org_id=data.org_id,
            payment_method_id=method.id,
            amount=data.amount,
            currency=CURRENCY,
            status=PaymentStatus.PROCESSING.value,
            description=data.description,
            metadata_={"invoice_number": invoice_number},
        )
        db.add(payment)
        db.flush()
        record_payment_event(
            db,
            data.org_id,
            PaymentEventType.TOKEN_PAYMENT_INITIATED,
            {"amount": data.amount, "payment_method_id": str(method.id), "invoice_number": invoice_number},
            payment_id=payment.id,
        )
        # Persist the attempt before talking to the gateway
        db.commit()

        try:
            result = self._post({
                **self._auth_params("ccsale"),
                "ssl_token": method.gateway_token,
                "ssl_amount": format_amount(data.amount),
                "ssl_invoice_number": invoice_number,
            })
        except (httpx.HTTPError, ValueError) as e:
            payment.status = PaymentStatus.FAILED.value
            payment.failure_reason = str(e) or e.__class__.__name__
            record_payment_event(
                db,
                data.org_id,
                PaymentEventType.API_ERROR,
                {"error": str(e), "error_type": e.__class__.__name__},
                payment_id=payment.id,
            )
            db.commit()
            logger.error("[ELAVON] Token payment %s failed to reach gateway: %s", payment.id, e)
            raise PaymentError(PAYMENT_FAILED_MESSAGE) from e

        record_payment_event(db, data.org_id, PaymentEventType.API_RESPONSE, result, payment_id=payment.id)

        if is_success(result):
            payment.status = PaymentStatus.COMPLETED.value
            payment.gateway_transaction_id = result.get("ssl_txn_id")
            payment.gateway_approval_code = result.get("ssl_approval_code")
            db.commit()
            logger.info("[ELAVON] Token payment %s completed (txn %s)", payment.id, payment.gateway_transaction_id)
            return GatewayResult(success=True, payment_id=payment.id)

        error_message = map_converge_error(error_code_of(result))
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = error_message
        db.commit()
        logger.info("[ELAVON] Token payment %s declined (result %r)", payment.id, result.get("ssl_result"))
        return GatewayResult(success=False, payment_id=payment.id, error=error_message)

    def process_refund(self, db: Session, data: RefundInput) -> RefundResult:
        # Held until commit so concurrent refunds of one payment serialize.
        payment = lock_payment(db, data.payment_id, data.org_id)

        if payment.status not in REFUNDABLE_STATUSES:
            raise PaymentError("Only completed payments can be refunded")
        if not payment.gateway_transaction_id:
            raise PaymentError("Payment has no transaction ID")
        if data.amount is not None and data.amount <= 0:
            raise ValidationError("Refund amount must be positive")

        max_refundable = payment.refundable_amount
        refund_amount = max_refundable if data.amount is None else min(data.amount, max_refundable)
        if refund_amount <= 0:
            raise PaymentError("Payment has already been fully refunded")

        record_payment_event(
            db, data.org_id, PaymentEventType.REFUND_INITIATED,
            {"refund_amount": refund_amount, "requested_amount": data.amount},
            payment_id=payment.id,
        )

        try:
            result = self._post({
                **self._auth_params("ccreturn"),
                "ssl_txn_id": payment.gateway_transaction_id,
                "ssl_amount": format_amount(refund_amount),
            })
        except (httpx.HTTPError, ValueError) as e:
            record_payment_event(
                db, data.org_id, PaymentEventType.REFUND_ERROR,
                {"error": str(e), "error_type": e.__class__.__name__},
                payment_id=payment.id,
            )
            db.commit()
            logger.error("[ELAVON] Refund for payment %s failed to reach gateway: %s", payment.id, e)
            raise PaymentError(REFUND_FAILED_MESSAGE) from e

        record_payment_event(db, data.org_id, PaymentEventType.REFUND_API_RESPONSE, result, payment_id=payment.id)

        if is_success(result):
            new_refunded = (payment.refunded_amount or 0) + refund_amount
            payment.refunded_amount = new_refunded
            if new_refunded >= payment.amount:
                payment.status = PaymentStatus.REFUNDED.value
            else:
                payment.status = PaymentStatus.PARTIALLY_REFUNDED.value
            record_payment_event(
                db, data.org_id, PaymentEventType.REFUND_COMPLETED,
                {
                    "refund_amount": refund_amount,
                    "total_refunded": new_refunded,
                    "transaction_id": result.get("ssl_txn_id"),
                },
                payment_id=payment.id,
            )
            db.commit()
            logger.info("[ELAVON] Refunded %s cents of payment %s (total %s)", refund_amount, payment.id, new_refunded)
            return RefundResult(success=True, refund_amount=refund_amount)

        error_message = map_converge_error(error_code_of(result))
        record_payment_event(db, data.org_id, PaymentEventType.REFUND_FAILED, result, payment_id=payment.id)
        db.commit()
        logger.info("[ELAVON] Refund for payment %s declined (result %r)", payment.id, result.get("ssl_result"))
        return RefundResult(success=False, refund_amount=0, error=error_message)

    # -- notifications ------------------------------------------------------

    def process_webhook(self, db: Session, payload: Dict[str, str]) -> WebhookResult:
        txn_id = payload.get("ssl_txn_id")
        payment = None
        if txn_id:
            payment = (
                db.query(Payment)
                .filter(Payment.gateway_transaction_id == txn_id)
                .with_for_update()
                .first()
            )
        if not payment:
            # payment_events needs an organization, so unmatched notifications only go to the log.
            logger.warning("[WEBHOOK] Notification for unknown transaction %r", txn_id)
            return WebhookResult(matched=False)

        record_payment_event(db, payment.org_id, PaymentEventType.WEBHOOK_RECEIVED, dict(payload), payment_id=payment.id)

        # Only unsettled payments move; a settled charge is never reversed here.
        new_status = None
        if is_success(payload):
            if payment.status == PaymentStatus.PROCESSING.value:
                new_status = PaymentStatus.COMPLETED.value
        elif payment.status in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value):
            new_status = PaymentStatus.FAILED.value
            payment.failure_reason = map_converge_error(error_code_of(payload) or "unknown")
        if new_status:
            payment.status = new_status

        db.commit()
        logger.info("[WEBHOOK] Transaction %s for payment %s (status change: %s)", txn_id, payment.id, new_status)
        return WebhookResult(matched=True, payment_id=payment.id, org_id=payment.org_id, new_status=new_status)
