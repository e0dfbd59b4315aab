"""
User Model - Policyholders identified by phone number
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, and_
from sqlalchemy.orm import relationship

from insureme.db.database import Base
from insureme.db.models.policy import Policy, PolicyStatus
from insureme.state_machine.states import Language


class IncomeRange(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class User(Base):
    """Registered user. Rows are never hard-deleted."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # Always the normalized +254XXXXXXXXX form
    phone_number = Column(String(20), unique=True, index=True, nullable=False)
    # Empty until the user completes USSD registration
    name = Column(String(100), nullable=True)
    email = Column(String(150), nullable=True)
    occupation = Column(String(100), nullable=True)
    income_range = Column(
        SQLEnum(
            IncomeRange,
            name="income_range",
            values_callable=lambda x: [e.value for e in x]
        ),
        nullable=True
    )
    preferred_language = Column(
        SQLEnum(
            Language,
            name="preferred_language",
            values_callable=lambda x: [e.value for e in x]
        ),
        default=Language.EN,
        nullable=False
    )

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Newest first; the menu only ever shows the first one
    active_policies = relationship(
        Policy,
        primaryjoin=lambda: and_(
            User.id == Policy.user_id,
            Policy.status == PolicyStatus.ACTIVE,
        ),
        order_by=lambda: [Policy.created_at.desc(), Policy.id.desc()],
        viewonly=True,
    )

    @property
    def active_policy(self) -> Policy | None:
        return self.active_policies[0] if self.active_policies else None
