"""
M-Pesa Daraja provider - Lipa na M-Pesa Online (STK push).

- OAuth client-credentials token, cached until shortly before expiry
- STK password: base64(shortcode + passkey + timestamp)
- Amount rounded up to whole shillings
- No retry on push: a failed push leaves the payment pending
- Status query reports pending/completed/failed for a CheckoutRequestID
"""
from __future__ import annotations

import asyncio
import base64
import math
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from insureme.core.circuit_breaker import CircuitBreaker
from insureme.core.config import settings
from insureme.core.exceptions import MpesaError, PaymentCallbackMalformed, ServiceTimeoutError
from insureme.core.logging import get_logger
from insureme.core.validation import PhoneNumberValidator
from insureme.domain.services.mpesa.base_provider import (
    PaymentFailed,
    PaymentOutcome,
    PaymentProvider,
    PaymentSucceeded,
    PushResult,
    QueryStatus,
    StatusQueryResult,
)

logger = get_logger(__name__)

OAUTH_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

# Query answered before the customer has acted on the prompt
STILL_PROCESSING_ERROR_CODE = "500.001.1001"

# Daraja caps these fields
MAX_REFERENCE_LENGTH = 12
MAX_DESCRIPTION_LENGTH = 13

# Refresh the token a minute before Daraja says it expires
TOKEN_EXPIRY_MARGIN_SECONDS = 60


def stk_timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d%H%M%S")


def stk_password(shortcode: str, passkey: str, timestamp: str) -> str:
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


def whole_shillings(amount: Decimal | float | int) -> int:
    """Daraja only accepts integers; round up so the premium is never underpaid"""
    return int(math.ceil(Decimal(str(amount))))


class DarajaProvider(PaymentProvider):
    """STK push over the Safaricom Daraja API"""

    def __init__(
        self,
        circuit_breaker: CircuitBreaker,
        *,
        base_url: str | None = None,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        shortcode: str | None = None,
        passkey: str | None = None,
        callback_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._circuit_breaker = circuit_breaker
        self._base_url = (base_url or settings.mpesa_base_url).rstrip("/")
        self._consumer_key = consumer_key if consumer_key is not None else settings.MPESA_CONSUMER_KEY
        self._consumer_secret = (
            consumer_secret if consumer_secret is not None else settings.MPESA_CONSUMER_SECRET
        )
        self._shortcode = shortcode or settings.MPESA_SHORTCODE
        self._passkey = passkey if passkey is not None else settings.MPESA_PASSKEY
        self._callback_url = callback_url or settings.MPESA_CALLBACK_URL
        self._timeout = timeout or settings.MPESA_TIMEOUT_SECONDS

        self._token: str | None = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def provider_name(self) -> str:
        return "mpesa-daraja"

    # ── OAuth ──

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        async with self._token_lock:
            if self._token and time.time() < self._token_expires_at:
                return self._token

            response = await client.get(
                f"{self._base_url}{OAUTH_PATH}",
                params={"grant_type": "client_credentials"},
                auth=(self._consumer_key, self._consumer_secret),
            )
            if response.status_code != 200:
                raise MpesaError.from_response("oauth", response)

            data = response.json()
            token = data.get("access_token")
            if not token:
                raise MpesaError.from_response(
                    "oauth", response, message="oauth response has no access_token"
                )

            expires_in = int(data.get("expires_in", 3599))
            self._token = token
            self._token_expires_at = time.time() + max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
            return token

    # ── STK push ──

    def build_push_payload(
        self,
        phone: str,
        amount: Decimal,
        reference: str,
        description: str,
        timestamp: str | None = None,
    ) -> dict[str, Any]:
        timestamp = timestamp or stk_timestamp()
        msisdn = PhoneNumberValidator.to_msisdn(phone)
        return {
            "BusinessShortCode": self._shortcode,
            "Password": stk_password(self._shortcode, self._passkey, timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": whole_shillings(amount),
            "PartyA": msisdn,
            "PartyB": self._shortcode,
            "PhoneNumber": msisdn,
            "CallBackURL": self._callback_url,
            "AccountReference": reference[:MAX_REFERENCE_LENGTH],
            "TransactionDesc": (description or "Premium")[:MAX_DESCRIPTION_LENGTH],
        }

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        operation: str,
    ) -> tuple[httpx.Response, dict[str, Any]]:
        """Authenticated POST. Transport failures and non-JSON replies raise."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                token = await self._get_access_token(client)
                response = await client.post(
                    f"{self._base_url}{path}",
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.TimeoutException:
            raise ServiceTimeoutError("mpesa", self._timeout)
        except httpx.RequestError as exc:
            raise MpesaError(
                message=f"{operation} network error: {exc}",
                details={"operation": operation, "network_error": True},
            )

        try:
            data = response.json()
        except ValueError:
            raise MpesaError.from_response(
                operation, response, message=f"{operation} returned non-JSON body"
            )
        if not isinstance(data, dict):
            raise MpesaError.from_response(
                operation, response, message=f"{operation} returned non-object body"
            )
        return response, data

    async def _push(self, payload: dict[str, Any]) -> PushResult:
        response, data = await self._post(STK_PUSH_PATH, payload, "stkpush")

        if response.status_code >= 500:
            raise MpesaError.from_response("stkpush", response)

        if response.status_code == 200 and str(data.get("ResponseCode")) == "0":
            return PushResult(
                success=True,
                checkout_request_id=data.get("CheckoutRequestID"),
                merchant_request_id=data.get("MerchantRequestID"),
                response_description=data.get("ResponseDescription") or data.get("CustomerMessage"),
            )

        # Request rejected by Daraja (bad number, wrong credentials...)
        return PushResult(
            success=False,
            merchant_request_id=data.get("MerchantRequestID"),
            response_description=(
                data.get("errorMessage")
                or data.get("ResponseDescription")
                or f"status {response.status_code}"
            ),
        )

    async def push(
        self,
        phone: str,
        amount: Decimal,
        reference: str,
        description: str,
    ) -> PushResult:
        payload = self.build_push_payload(phone, amount, reference, description)

        result = await self._circuit_breaker.execute(self._push, payload)

        logger.info(
            "M-Pesa STK push sent",
            extra_data={
                "phone": PhoneNumberValidator.mask(phone),
                "amount": payload["Amount"],
                "reference": payload["AccountReference"],
                "success": result.success,
                "checkout_request_id": result.checkout_request_id,
                "response_description": result.response_description,
            },
        )
        return result

    # ── Status query ──

    def build_query_payload(
        self,
        checkout_request_id: str,
        timestamp: str | None = None,
    ) -> dict[str, Any]:
        timestamp = timestamp or stk_timestamp()
        return {
            "BusinessShortCode": self._shortcode,
            "Password": stk_password(self._shortcode, self._passkey, timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }

    async def _query(self, payload: dict[str, Any]) -> StatusQueryResult:
        response, data = await self._post(STK_QUERY_PATH, payload, "stkpushquery")
        checkout_request_id = payload["CheckoutRequestID"]

        if str(data.get("errorCode")) == STILL_PROCESSING_ERROR_CODE:
            return StatusQueryResult(
                checkout_request_id=checkout_request_id,
                status=QueryStatus.PENDING,
                result_description=data.get("errorMessage"),
            )

        if response.status_code != 200 or "ResultCode" not in data:
            raise MpesaError.from_response("stkpushquery", response)

        result_code = str(data["ResultCode"]).strip()
        return StatusQueryResult(
            checkout_request_id=checkout_request_id,
            status=QueryStatus.COMPLETED if result_code == "0" else QueryStatus.FAILED,
            result_code=result_code,
            result_description=data.get("ResultDesc"),
        )

    async def query_status(self, checkout_request_id: str) -> StatusQueryResult:
        payload = self.build_query_payload(checkout_request_id)

        result = await self._circuit_breaker.execute(self._query, payload)

        logger.info(
            "M-Pesa STK status queried",
            extra_data={
                "checkout_request_id": checkout_request_id,
                "status": result.status.value,
                "result_code": result.result_code,
            },
        )
        return result

    # ── Callback ──

    def validate_callback(self, payload: Any) -> None:
        if not isinstance(payload, dict):
            raise PaymentCallbackMalformed("payload is not a JSON object")

        body = payload.get("Body")
        if not isinstance(body, dict):
            raise PaymentCallbackMalformed("missing Body")

        callback = body.get("stkCallback")
        if not isinstance(callback, dict):
            raise PaymentCallbackMalformed("missing Body.stkCallback")

        if not callback.get("CheckoutRequestID"):
            raise PaymentCallbackMalformed("missing CheckoutRequestID")

        if "ResultCode" not in callback:
            raise PaymentCallbackMalformed("missing ResultCode")

        metadata = callback.get("CallbackMetadata")
        if metadata is not None:
            if not isinstance(metadata, dict):
                raise PaymentCallbackMalformed("CallbackMetadata is not an object")
            if not isinstance(metadata.get("Item") or [], list):
                raise PaymentCallbackMalformed("CallbackMetadata.Item is not a list")

    @staticmethod
    def _metadata(callback: dict) -> dict[str, Any]:
        items = (callback.get("CallbackMetadata") or {}).get("Item") or []
        return {
            item.get("Name"): item.get("Value")
            for item in items
            if isinstance(item, dict) and item.get("Name")
        }

    @staticmethod
    def _parse_amount(value: Any) -> Decimal | None:
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None

    @staticmethod
    def _parse_phone(value: Any) -> str | None:
        if value is None:
            return None
        raw = str(value)
        if PhoneNumberValidator.validate(raw):
            return PhoneNumberValidator.normalize(raw)
        return raw

    @staticmethod
    def _parse_transaction_date(value: Any) -> datetime | None:
        # 20191219102115
        if value is None:
            return None
        try:
            return datetime.strptime(str(value), "%Y%m%d%H%M%S")
        except ValueError:
            return None

    def interpret(self, payload: dict) -> PaymentOutcome:
        self.validate_callback(payload)
        callback = payload["Body"]["stkCallback"]
        checkout_request_id = str(callback["CheckoutRequestID"])
        result_code = str(callback["ResultCode"]).strip()

        if result_code != "0":
            return PaymentFailed(
                checkout_request_id=checkout_request_id,
                code=result_code,
                description=callback.get("ResultDesc"),
            )

        metadata = self._metadata(callback)
        return PaymentSucceeded(
            checkout_request_id=checkout_request_id,
            receipt=metadata.get("MpesaReceiptNumber"),
            amount=self._parse_amount(metadata.get("Amount")),
            phone=self._parse_phone(metadata.get("PhoneNumber")),
            transaction_date=self._parse_transaction_date(metadata.get("TransactionDate")),
        )
