from sqlalchemy import Column, String, DateTime, ForeignKey, JSON
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum
from datetime import datetime
from app.db.session import Base


class PaymentEventType(str, enum.Enum):
    CHECKOUT_INITIATED = "checkout_initiated"
    CHECKOUT_EXPIRED = "checkout_expired"
    CALLBACK_RECEIVED = "callback_received"
    WEBHOOK_RECEIVED = "webhook_received"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    TOKEN_PAYMENT_INITIATED = "token_payment_initiated"
    API_RESPONSE = "api_response"
    API_ERROR = "api_error"
    REFUND_INITIATED = "refund_initiated"
    REFUND_API_RESPONSE = "refund_api_response"
    REFUND_COMPLETED = "refund_completed"
    REFUND_FAILED = "refund_failed"
    REFUND_ERROR = "refund_error"


class PaymentEvent(Base):
    """Append-only record of every gateway interaction. Never updated or deleted."""
    __tablename__ = "payment_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id", ondelete="SET NULL"), nullable=True, index=True)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)
    raw_payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
