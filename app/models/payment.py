from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, JSON, Text
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum
from datetime import datetime
from app.db.session import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"  # hosted checkout started, user not back yet
    PROCESSING = "processing"  # server-to-server token charge in flight
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


REFUNDABLE_STATUSES = (PaymentStatus.COMPLETED.value, PaymentStatus.PARTIALLY_REFUNDED.value)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(UUID(as_uuid=True), ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True, index=True)
    payment_method_id = Column(UUID(as_uuid=True), ForeignKey("payment_methods.id", ondelete="SET NULL"), nullable=True, index=True)
    amount = Column(Integer, nullable=False)  # cents
    currency = Column(String(3), default="USD", nullable=False)
    status = Column(String, nullable=False, index=True)
    gateway_transaction_id = Column(String, nullable=True, index=True)
    gateway_approval_code = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)  # Always a user-safe message
    refunded_amount = Column(Integer, nullable=False, default=0)  # cents
    metadata_ = Column("metadata", JSON, nullable=True)  # invoice_number, plan_id, billing_interval
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def invoice_number(self):
        return (self.metadata_ or {}).get("invoice_number")

    @property
    def refundable_amount(self) -> int:
        return self.amount - (self.refunded_amount or 0)
