"""
API Routes
"""
from fastapi import APIRouter

from insureme.api.routes.admin_debug import router as admin_debug_router
from insureme.api.routes.payments import router as payments_router
from insureme.api.routes.plans import router as plans_router
from insureme.api.routes.policies import router as policies_router
from insureme.api.routes.ussd import router as ussd_router
from insureme.api.webhooks.mpesa import router as mpesa_webhook_router
from insureme.api.webhooks.ussd import router as ussd_webhook_router

router = APIRouter()

# Gateway-facing callbacks
router.include_router(ussd_webhook_router, prefix="/ussd", tags=["webhooks"])
router.include_router(mpesa_webhook_router, prefix="/payments/mpesa", tags=["webhooks"])

router.include_router(ussd_router, prefix="/ussd", tags=["ussd"])
router.include_router(payments_router, prefix="/payments", tags=["payments"])
router.include_router(plans_router, prefix="/plans", tags=["plans"])
router.include_router(policies_router, prefix="/policies", tags=["policies"])
router.include_router(admin_debug_router, prefix="/admin/debug", tags=["admin"])
