"""
Payment API Routes - M-Pesa initiation and payment lookups
"""
from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from insureme.core.exceptions import PolicyNotFoundError, ValidationException
from insureme.core.validation import normalize_phone
from insureme.db.database import get_db
from insureme.domain.services.mpesa import PaymentProvider, get_payment_provider
from insureme.domain.services.payment_service import PaymentService
from insureme.domain.services.policy_service import PolicyService
from insureme.domain.services.user_service import UserService

router = APIRouter()


class InitiatePaymentRequest(BaseModel):
    user_id: int = Field(alias="userId")
    policy_id: int | None = Field(default=None, alias="policyId")
    amount: Decimal = Field(gt=0)
    phone_number: str = Field(alias="phoneNumber")
    description: str | None = Field(default=None, max_length=255)

    class Config:
        populate_by_name = True


class InitiatePaymentResponse(BaseModel):
    success: bool
    checkout_request_id: str | None = Field(alias="checkoutRequestId")
    transaction_id: str = Field(alias="transactionId")
    amount: float
    phone_number: str = Field(alias="phoneNumber")

    class Config:
        populate_by_name = True


class PaymentStatusQueryResponse(BaseModel):
    success: bool
    checkout_request_id: str = Field(alias="checkoutRequestId")
    status: str
    result_code: str | None = Field(alias="resultCode")
    result_description: str | None = Field(alias="resultDescription")

    class Config:
        populate_by_name = True


class PaymentResponse(BaseModel):
    id: int
    user_id: int
    policy_id: int | None
    amount: float
    currency: str
    payment_method: str
    status: str
    transaction_id: str
    checkout_request_id: str | None
    mpesa_receipt: str | None
    failure_code: str | None
    failure_description: str | None
    billing_period: str
    due_date: date | None
    paid_at: datetime | None
    created_at: datetime | None


def _payment_response(payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        user_id=payment.user_id,
        policy_id=payment.policy_id,
        amount=float(payment.amount),
        currency=payment.currency,
        payment_method=payment.payment_method.value,
        status=payment.status.value,
        transaction_id=payment.transaction_id,
        checkout_request_id=payment.checkout_request_id,
        mpesa_receipt=payment.mpesa_receipt,
        failure_code=payment.failure_code,
        failure_description=payment.failure_description,
        billing_period=payment.billing_period.value,
        due_date=payment.due_date,
        paid_at=payment.paid_at,
        created_at=payment.created_at,
    )


@router.post(
    "/mpesa/initiate",
    response_model=InitiatePaymentResponse,
    summary="Start an M-Pesa STK push",
    description=(
        "Creates a pending payment and prompts the payer's handset. "
        "If the push itself fails the payment stays pending and 502 is returned."
    ),
    responses={
        400: {"description": "Invalid phone number or amount"},
        404: {"description": "User or policy not found"},
        502: {"description": "M-Pesa push failed"},
    },
)
async def initiate_mpesa_payment(
    body: InitiatePaymentRequest,
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> InitiatePaymentResponse:
    """Initiate premium payment"""
    phone = normalize_phone(body.phone_number)
    user = await UserService(db).get_user(body.user_id)

    policy = None
    if body.policy_id is not None:
        policy = await PolicyService(db).get_policy(body.policy_id)
        if policy is None:
            raise PolicyNotFoundError(body.policy_id)
        if policy.user_id != user.id:
            raise ValidationException("Policy does not belong to this user", field="policyId")

    payment = await PaymentService(db, provider).initiate_payment(
        user,
        policy,
        body.amount,
        phone=phone,
        description=body.description,
    )
    return InitiatePaymentResponse(
        success=True,
        checkout_request_id=payment.checkout_request_id,
        transaction_id=payment.transaction_id,
        amount=float(payment.amount),
        phone_number=phone,
    )


@router.get(
    "/mpesa/status/{checkout_request_id}",
    response_model=PaymentStatusQueryResponse,
    summary="Ask M-Pesa where an STK push stands",
    description=(
        "Live query against Daraja, for when the callback is late or lost. "
        "Stored payments are not updated."
    ),
    responses={
        503: {"description": "M-Pesa refused or failed the query, or is marked unavailable"},
    },
)
async def query_mpesa_status(
    checkout_request_id: str,
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PaymentStatusQueryResponse:
    result = await provider.query_status(checkout_request_id)
    return PaymentStatusQueryResponse(
        success=True,
        checkout_request_id=result.checkout_request_id,
        status=result.status.value,
        result_code=result.result_code,
        result_description=result.result_description,
    )


@router.get(
    "/history/{user_id}",
    response_model=list[PaymentResponse],
    summary="Payment history of a user",
)
async def get_payment_history(
    user_id: int,
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> list[PaymentResponse]:
    """Newest first"""
    await UserService(db).get_user(user_id)
    payments = await PaymentService(db, provider).get_payment_history(user_id, limit)
    return [_payment_response(payment) for payment in payments]


@router.get(
    "/{transaction_id}",
    response_model=PaymentResponse,
    summary="Payment by transaction id",
    responses={404: {"description": "Unknown transaction id"}},
)
async def get_payment(
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PaymentResponse:
    """Payment status lookup"""
    payment = await PaymentService(db, provider).get_payment_by_transaction(transaction_id)
    return _payment_response(payment)
