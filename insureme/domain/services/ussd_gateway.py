"""
USSD Gateway Adapter

Translates the telecom gateway envelope (Africa's Talking style) to and from
the internal menu contract. Outbound text is "CON <text>" while the session
continues and "END <text>" when it is over.
"""
from dataclasses import dataclass
from typing import Any, Mapping

from fastapi import Request

from insureme.core.exceptions import ValidationException
from insureme.state_machine.templates import MAX_LINE_LENGTH, truncate_lines

CONTINUE_PREFIX = "CON "
END_PREFIX = "END "

# Gateways disagree on casing; first match wins
_FIELD_ALIASES = {
    "session_id": ("sessionId", "session_id"),
    "phone_number": ("phoneNumber", "phone_number", "msisdn"),
    "text": ("text", "ussdString"),
    "network_operator": ("networkOperator", "networkCode", "network_operator"),
    "service_code": ("serviceCode", "service_code"),
}


@dataclass(frozen=True)
class UssdRequest:
    session_id: str
    phone_number: str
    text: str = ""
    network_operator: str | None = None
    service_code: str | None = None


@dataclass(frozen=True)
class UssdResponse:
    text: str
    continue_session: bool
    trigger_payment: bool = False

    def render(self, max_line_length: int = MAX_LINE_LENGTH) -> str:
        return format_response(self.text, self.continue_session, max_line_length)


def _pick(data: Mapping[str, Any], field: str) -> str | None:
    for key in _FIELD_ALIASES[field]:
        value = data.get(key)
        if value is not None:
            return str(value)
    return None


def parse_request(data: Mapping[str, Any]) -> UssdRequest:
    """
    Build a UssdRequest from a form or JSON body.

    Raises:
        ValidationException: sessionId or phoneNumber missing
    """
    session_id = (_pick(data, "session_id") or "").strip()
    phone_number = (_pick(data, "phone_number") or "").strip()

    if not session_id or not phone_number:
        missing = [
            name for name, value in (("sessionId", session_id), ("phoneNumber", phone_number))
            if not value
        ]
        raise ValidationException(
            f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing},
        )

    return UssdRequest(
        session_id=session_id,
        phone_number=phone_number,
        text=(_pick(data, "text") or "").strip(),
        network_operator=_pick(data, "network_operator"),
        service_code=_pick(data, "service_code"),
    )


async def read_request_body(request: Request) -> dict[str, Any]:
    """JSON or form-encoded body as a plain dict"""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def format_response(
    text: str,
    continue_session: bool,
    max_line_length: int = MAX_LINE_LENGTH
) -> str:
    """Prefix with CON/END and cut lines to the gateway limit"""
    prefix = CONTINUE_PREFIX if continue_session else END_PREFIX
    return prefix + truncate_lines(text, max_line_length)
