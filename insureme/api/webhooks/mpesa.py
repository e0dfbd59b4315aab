"""
M-Pesa STK push result callback

Safaricom expects a fast acknowledgement, so the body is acknowledged with an
empty JSON object and reconciled after the response is sent. The request's
database session is closed by then; reconciliation opens its own.
"""
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from insureme.core.logging import get_logger
from insureme.db.database import get_sessionmaker
from insureme.domain.services.mpesa import PaymentProvider, get_payment_provider
from insureme.domain.services.payment_service import PaymentService

logger = get_logger(__name__)

router = APIRouter()


async def reconcile_payment_callback(
    payload: Any,
    session_factory: async_sessionmaker[AsyncSession],
    provider: PaymentProvider,
) -> None:
    """Background unit of work for one callback delivery"""
    async with session_factory() as db:
        try:
            await PaymentService(db, provider).process_callback(payload)
        except Exception:
            await db.rollback()
            logger.error("Payment callback reconciliation failed", exc_info=True)


@router.post(
    "/callback",
    summary="M-Pesa STK push callback",
    description="Acknowledges with {} immediately; reconciliation runs in the background.",
)
async def mpesa_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> dict:
    """M-Pesa result callback"""
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    background_tasks.add_task(reconcile_payment_callback, payload, session_factory, provider)
    return {}
