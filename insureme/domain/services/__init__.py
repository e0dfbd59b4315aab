"""
Domain Services
"""
from insureme.domain.services.user_service import UserService
from insureme.domain.services.policy_service import PolicyService
from insureme.domain.services.payment_service import PaymentService, ReconcileResult
from insureme.domain.services.ussd_service import UssdFlowService

__all__ = [
    "UserService",
    "PolicyService",
    "PaymentService",
    "ReconcileResult",
    "UssdFlowService",
]
