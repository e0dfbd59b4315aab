"""
Database Models
"""
from insureme.db.models.user import User, IncomeRange
from insureme.db.models.plan import Plan, CoverageTier
from insureme.db.models.policy import Policy, PolicyStatus
from insureme.db.models.payment import Payment, PaymentStatus, PaymentMethod, BillingPeriod
from insureme.db.models.ussd_session import UssdSession, SessionStatus

__all__ = [
    "User",
    "IncomeRange",
    "Plan",
    "CoverageTier",
    "Policy",
    "PolicyStatus",
    "Payment",
    "PaymentStatus",
    "PaymentMethod",
    "BillingPeriod",
    "UssdSession",
    "SessionStatus",
]
