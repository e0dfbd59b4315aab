"""
Policy Model - One user's purchase of one plan
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Date, Numeric, Boolean, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship

from insureme.db.database import Base


class PolicyStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    CLAIMED = "claimed"


class Policy(Base):
    """Created atomically when a purchase completes"""

    __tablename__ = "policies"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)

    premium = Column(Numeric(12, 2), nullable=False)
    coverage_amount = Column(Numeric(12, 2), nullable=False)
    policy_number = Column(String(50), unique=True, index=True, nullable=False)
    status = Column(
        SQLEnum(
            PolicyStatus,
            name="policy_status",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=PolicyStatus.ACTIVE,
        nullable=False,
        index=True
    )
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    auto_renew = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")
    plan = relationship("Plan", lazy="joined")
