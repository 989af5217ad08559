from sqlalchemy import Column, String, DateTime, Integer, Boolean, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
import enum
from datetime import datetime
from app.db.session import Base


class PaymentMethodType(str, enum.Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    ACH = "ach"


class PaymentMethod(Base):
    """
    A card stored at the gateway. We only keep the gateway's opaque token and
    display details (last4, brand, expiry), never the card number.
    """
    __tablename__ = "payment_methods"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    billing_customer_id = Column(UUID(as_uuid=True), ForeignKey("billing_customers.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False, default=PaymentMethodType.CREDIT_CARD.value)
    gateway_token = Column(String, nullable=False)
    card_last4 = Column(String(4), nullable=True)
    card_brand = Column(String, nullable=True)  # visa, mastercard, amex, discover, unknown
    exp_month = Column(Integer, nullable=True)
    exp_year = Column(Integer, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    billing_customer = relationship("BillingCustomer", back_populates="payment_methods")
