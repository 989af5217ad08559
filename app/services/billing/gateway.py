"""
Payment gateway capability interface and the value objects that cross it.

The checkout/charge/refund flows only talk to ``PaymentGateway``; the concrete
processor (currently Elavon Converge) is picked by ``get_payment_gateway``
from configuration.
"""
import abc
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional
import uuid

from sqlalchemy.orm import Session

from app.core.errors import PaymentError

CONFIGURATION_ERROR_MESSAGE = "Payment system configuration error. Please contact support."


@dataclass(frozen=True)
class GatewayCredentials:
    merchant_id: str
    user_id: str
    pin: str
    api_url: str
    hosted_url: str

    @classmethod
    def from_settings(cls, config) -> "GatewayCredentials":
        if not (config.ELAVON_MERCHANT_ID and config.ELAVON_USER_ID and config.ELAVON_PIN):
            raise PaymentError(CONFIGURATION_ERROR_MESSAGE)
        return cls(
            merchant_id=config.ELAVON_MERCHANT_ID,
            user_id=config.ELAVON_USER_ID,
            pin=config.ELAVON_PIN,
            api_url=config.ELAVON_API_URL.rstrip("/"),
            hosted_url=config.ELAVON_HOSTED_URL,
        )

    def __repr__(self) -> str:
        # Keep the PIN out of logs and tracebacks
        return f"GatewayCredentials(merchant_id={self.merchant_id!r}, user_id={self.user_id!r}, pin='***')"


@dataclass
class HostedSessionInput:
    org_id: uuid.UUID
    amount: int  # cents
    plan_id: uuid.UUID
    billing_interval: str
    customer_email: str
    return_url: str
    cancel_url: str
    customer_name: Optional[str] = None


@dataclass
class HostedSession:
    session_token: str  # the invoice number
    hosted_page_url: str
    expires_at: datetime  # advisory; the gateway enforces its own timeout


@dataclass
class TokenPaymentInput:
    org_id: uuid.UUID
    payment_method_id: uuid.UUID
    amount: int  # cents
    description: Optional[str] = None


@dataclass
class RefundInput:
    payment_id: uuid.UUID
    org_id: uuid.UUID
    amount: Optional[int] = None  # cents; None refunds everything still refundable


@dataclass
class GatewayResult:
    """Outcome of a charge. Declines are results, not exceptions."""
    success: bool
    payment_id: Optional[uuid.UUID] = None
    error: Optional[str] = None


@dataclass
class RefundResult:
    success: bool
    refund_amount: int = 0
    error: Optional[str] = None


@dataclass
class WebhookResult:
    """What an asynchronous notification did. ``new_status`` is set only when the payment moved."""
    matched: bool
    payment_id: Optional[uuid.UUID] = None
    org_id: Optional[uuid.UUID] = None
    new_status: Optional[str] = None


class PaymentGateway(abc.ABC):
    """Everything the billing flows need from a card processor."""

    @abc.abstractmethod
    def create_hosted_session(self, db: Session, data: HostedSessionInput) -> HostedSession:
        """Record a pending payment and return the processor's hosted payment page URL."""

    @abc.abstractmethod
    def process_callback(
        self,
        db: Session,
        payload: Dict[str, str],
        org_id: uuid.UUID,
        commit: bool = True,
    ) -> GatewayResult:
        """
        Reconcile the redirect back from the hosted page with its pending payment.

        With ``commit=False`` a successful payment is only flushed, so the
        caller can settle it together with whatever it grants. Declines and
        unmatched callbacks are always committed.
        """

    @abc.abstractmethod
    def process_token_payment(self, db: Session, data: TokenPaymentInput) -> GatewayResult:
        """Charge a stored token server-to-server."""

    @abc.abstractmethod
    def process_refund(self, db: Session, data: RefundInput) -> RefundResult:
        """Refund all or part of a settled payment."""

    @abc.abstractmethod
    def process_webhook(self, db: Session, payload: Dict[str, str]) -> WebhookResult:
        """Apply an asynchronous processor notification."""
