"""
USSD gateway callback

The gateway posts sessionId, phoneNumber, text and networkOperator on every
round-trip and expects a plain-text "CON ..." or "END ..." body back.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from insureme.core.config import settings
from insureme.core.exceptions import ValidationException
from insureme.core.logging import get_logger
from insureme.db.database import get_db
from insureme.domain.services.mpesa import PaymentProvider, get_payment_provider
from insureme.domain.services.ussd_gateway import (
    format_response,
    parse_request,
    read_request_body,
)
from insureme.domain.services.ussd_service import UssdFlowService
from insureme.state_machine import templates

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/callback",
    response_class=PlainTextResponse,
    summary="USSD gateway callback",
    description=(
        "Form or JSON body with sessionId, phoneNumber, text and networkOperator. "
        "Responds with text/plain 'CON <menu>' or 'END <message>'."
    ),
)
async def ussd_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PlainTextResponse:
    """USSD round-trip"""
    try:
        ussd_request = parse_request(await read_request_body(request))
    except ValidationException as exc:
        logger.warning(
            "USSD request rejected: missing fields",
            extra_data={"missing": exc.details.get("missing")}
        )
        return PlainTextResponse(
            format_response(templates.render("session_rejected"), continue_session=False)
        )

    try:
        response = await UssdFlowService(db, provider).handle(ussd_request)
    except Exception:
        # The handset must always get a readable END screen
        logger.error(
            "USSD request failed",
            extra_data={"session_id": ussd_request.session_id},
            exc_info=True
        )
        return PlainTextResponse(
            format_response(templates.render("error"), continue_session=False)
        )

    return PlainTextResponse(response.render(settings.USSD_MAX_LINE_LENGTH))
