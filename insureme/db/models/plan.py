"""
Plan Model - Insurance product catalog
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Numeric, Boolean, Text, JSON, Enum as SQLEnum

from insureme.db.database import Base


class CoverageTier(str, enum.Enum):
    BASIC = "basic"
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"


class Plan(Base):
    """Read-only from the USSD flow; seeded on startup"""

    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    coverage_tier = Column(
        SQLEnum(
            CoverageTier,
            name="coverage_tier",
            values_callable=lambda x: [e.value for e in x]
        ),
        nullable=False,
        index=True
    )
    description = Column(Text, nullable=True)
    min_premium = Column(Numeric(12, 2), nullable=False)
    max_premium = Column(Numeric(12, 2), nullable=False)
    max_coverage = Column(Numeric(12, 2), nullable=False)
    coverage_multiplier = Column(Numeric(8, 2), nullable=False)
    # {"outpatient": true, "inpatient": false, ...}
    benefits = Column(JSON, default=dict)
    active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
