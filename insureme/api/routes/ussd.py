"""
USSD API Routes - JSON test endpoint and session inspection
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from insureme.api.dependencies.admin_auth import require_admin_api_key
from insureme.core.config import settings
from insureme.core.exceptions import SessionNotFound
from insureme.db.database import get_db
from insureme.domain.services.mpesa import PaymentProvider, get_payment_provider
from insureme.domain.services.ussd_gateway import UssdRequest
from insureme.domain.services.ussd_service import UssdFlowService
from insureme.state_machine.manager import SessionStore

router = APIRouter()


class UssdTestRequest(BaseModel):
    session_id: str = Field(alias="sessionId", min_length=1)
    phone_number: str = Field(alias="phoneNumber", min_length=1)
    text: str = ""
    network_operator: str | None = Field(default=None, alias="networkOperator")

    class Config:
        populate_by_name = True


class UssdTestResponse(BaseModel):
    response: str
    continue_session: bool = Field(alias="continueSession")
    trigger_mpesa: bool = Field(alias="triggerMpesa")

    class Config:
        populate_by_name = True


class UssdSessionResponse(BaseModel):
    session_id: str
    phone_number: str
    user_id: int | None
    current_menu: str
    user_input: str | None
    session_data: dict
    language: str
    status: str
    network_operator: str | None
    created_at: datetime | None
    updated_at: datetime | None
    expires_at: datetime
    expired: bool


@router.post(
    "/test",
    response_model=UssdTestResponse,
    summary="Run the USSD menu with a JSON body",
    description=(
        "Same logic as the gateway callback. The response carries the CON/END "
        "text plus continueSession and triggerMpesa flags."
    ),
)
async def ussd_test(
    body: UssdTestRequest,
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> UssdTestResponse:
    """JSON variant of the USSD callback"""
    result = await UssdFlowService(db, provider).handle(UssdRequest(
        session_id=body.session_id,
        phone_number=body.phone_number,
        text=body.text.strip(),
        network_operator=body.network_operator,
    ))
    return UssdTestResponse(
        response=result.render(settings.USSD_MAX_LINE_LENGTH),
        continue_session=result.continue_session,
        trigger_mpesa=result.trigger_payment,
    )


@router.get(
    "/sessions/{session_id}",
    response_model=UssdSessionResponse,
    summary="Inspect a USSD session",
    description="Full session record, expired or not. Requires X-Admin-API-Key.",
    responses={
        401: {"description": "Missing API key"},
        403: {"description": "Invalid API key"},
        404: {"description": "Unknown session id"},
    },
)
async def get_session(
    session_id: str,
    _: None = Depends(require_admin_api_key),
    db: AsyncSession = Depends(get_db),
) -> UssdSessionResponse:
    """Debug view of one session"""
    session = await SessionStore(db).find(session_id)
    if session is None:
        raise SessionNotFound(session_id)

    return UssdSessionResponse(
        session_id=session.session_id,
        phone_number=session.phone_number,
        user_id=session.user_id,
        current_menu=session.current_menu,
        user_input=session.user_input,
        session_data=session.session_data or {},
        language=session.language.value,
        status=session.status.value,
        network_operator=session.network_operator,
        created_at=session.created_at,
        updated_at=session.updated_at,
        expires_at=session.expires_at,
        expired=session.is_expired(),
    )
