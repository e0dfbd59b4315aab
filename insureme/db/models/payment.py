"""
Payment Model - A single premium payment attempt

status moves pending -> completed | failed exactly once, driven by the
provider callback.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Date, Numeric, ForeignKey, Text, Enum as SQLEnum

from insureme.db.database import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, enum.Enum):
    MPESA = "mpesa"
    BANK_TRANSFER = "bank_transfer"


class BillingPeriod(str, enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class Payment(Base):
    """Premium payment"""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    policy_id = Column(Integer, ForeignKey("policies.id"), nullable=True, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), default="KES", nullable=False)
    payment_method = Column(
        SQLEnum(
            PaymentMethod,
            name="payment_method",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=PaymentMethod.MPESA,
        nullable=False
    )
    status = Column(
        SQLEnum(
            PaymentStatus,
            name="payment_status",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True
    )

    # Correlation identifiers
    transaction_id = Column(String(64), unique=True, index=True, nullable=False)
    checkout_request_id = Column(String(100), unique=True, index=True, nullable=True)
    merchant_request_id = Column(String(100), nullable=True)
    mpesa_receipt = Column(String(50), nullable=True)
    mpesa_phone = Column(String(20), nullable=True)

    failure_code = Column(String(20), nullable=True)
    failure_description = Column(Text, nullable=True)
    description = Column(String(255), nullable=True)

    billing_period = Column(
        SQLEnum(
            BillingPeriod,
            name="billing_period",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=BillingPeriod.MONTHLY,
        nullable=False
    )
    due_date = Column(Date, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
