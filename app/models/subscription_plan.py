from sqlalchemy import Column, String, DateTime, Integer, Boolean, Text, JSON
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum
from datetime import datetime
from app.db.session import Base


class PlanType(str, enum.Enum):
    FREE = "free"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class BillingInterval(str, enum.Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


UNLIMITED = -1


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, index=True)  # free, starter, professional, enterprise
    description = Column(Text, nullable=True)
    price_monthly = Column(Integer, nullable=False, default=0)  # cents
    price_yearly = Column(Integer, nullable=False, default=0)  # cents
    max_seats = Column(Integer, nullable=False, default=1)  # -1 = unlimited
    max_workspaces = Column(Integer, nullable=False, default=1)  # -1 = unlimited
    max_documents = Column(Integer, nullable=False, default=10)  # -1 = unlimited
    features = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
