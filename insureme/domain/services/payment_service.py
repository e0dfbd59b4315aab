"""
Payment Service - Premium payment initiation and callback reconciliation

A payment row is written (and committed) as pending before the STK push goes
out, so a callback can never arrive for a row that does not exist yet. The
callback path is safe under at-least-once delivery: the terminal transition is
a single conditional UPDATE on status='pending'.
"""
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from insureme.core.config import settings
from insureme.core.exceptions import (
    ExternalServiceException,
    PaymentCallbackMalformed,
    PaymentNotFoundError,
    PaymentPushFailed,
    ValidationException,
)
from insureme.core.logging import get_logger, log_async_operation
from insureme.core.validation import PhoneNumberValidator
from insureme.db.models.payment import Payment, PaymentStatus, PaymentMethod, BillingPeriod
from insureme.db.models.policy import Policy
from insureme.db.models.user import User
from insureme.domain.services.mpesa.base_provider import (
    PaymentOutcome,
    PaymentProvider,
    PaymentSucceeded,
)

logger = get_logger(__name__)


class ReconcileResult(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    UNKNOWN = "unknown"


def account_reference(transaction_id: str) -> str:
    """Short reference shown on the payer's handset"""
    return f"INS-{transaction_id[:8].upper()}"


class PaymentService:
    """Service for premium payments"""

    def __init__(self, db: AsyncSession, provider: PaymentProvider):
        self.db = db
        self.provider = provider

    @log_async_operation("initiate_payment")
    async def initiate_payment(
        self,
        user: User,
        policy: Policy | None,
        amount: Decimal,
        method: PaymentMethod = PaymentMethod.MPESA,
        phone: str | None = None,
        description: str | None = None,
        billing_period: BillingPeriod = BillingPeriod.MONTHLY,
    ) -> Payment:
        """
        Create a pending payment and push the STK prompt.

        Raises:
            ValidationException: non-positive amount or unsupported method
            InvalidPhoneFormat: payer phone is not a Kenyan mobile number
            PaymentPushFailed: provider refused or could not be reached;
                the payment row stays pending
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationException("Amount must be greater than zero", field="amount")
        if method != PaymentMethod.MPESA:
            raise ValidationException(
                f"Payment method '{method.value}' cannot be initiated online",
                field="method",
            )

        payer_phone = PhoneNumberValidator.normalize(phone or user.phone_number)
        description = description or (
            f"Premium {policy.policy_number}" if policy is not None else "Premium payment"
        )

        payment = Payment(
            user_id=user.id,
            policy_id=policy.id if policy is not None else None,
            amount=amount,
            currency=settings.DEFAULT_CURRENCY,
            payment_method=method,
            status=PaymentStatus.PENDING,
            transaction_id=str(uuid.uuid4()),
            mpesa_phone=payer_phone,
            description=description[:255],
            billing_period=billing_period,
            due_date=date.today(),
        )
        self.db.add(payment)
        await self.db.commit()

        try:
            result = await self.provider.push(
                payer_phone,
                amount,
                account_reference(payment.transaction_id),
                description,
            )
        except ExternalServiceException as exc:
            raise PaymentPushFailed(
                payment.transaction_id,
                exc.message,
                details={"provider_error": exc.error_code.value},
            ) from exc

        if not result.success:
            raise PaymentPushFailed(
                payment.transaction_id,
                result.response_description or "push rejected by provider",
            )

        payment.checkout_request_id = result.checkout_request_id
        payment.merchant_request_id = result.merchant_request_id
        await self.db.commit()

        logger.info(
            "Payment initiated",
            extra_data={
                "transaction_id": payment.transaction_id,
                "checkout_request_id": payment.checkout_request_id,
                "user_id": user.id,
                "policy_id": payment.policy_id,
                "amount": str(amount),
                "phone": PhoneNumberValidator.mask(payer_phone),
            }
        )
        return payment

    @log_async_operation("reconcile_callback")
    async def reconcile_callback(
        self,
        correlation_id: str,
        outcome: PaymentOutcome
    ) -> ReconcileResult:
        """
        Apply a provider outcome to the pending payment with this checkout id.

        Unknown ids and already-terminal payments are logged no-ops.
        """
        now = datetime.utcnow()
        if isinstance(outcome, PaymentSucceeded):
            values = {
                "status": PaymentStatus.COMPLETED,
                "mpesa_receipt": outcome.receipt,
                "paid_at": outcome.transaction_date or now,
                "updated_at": now,
            }
            if outcome.phone:
                values["mpesa_phone"] = outcome.phone
        else:
            values = {
                "status": PaymentStatus.FAILED,
                "failure_code": outcome.code,
                "failure_description": outcome.description,
                "updated_at": now,
            }

        result = await self.db.execute(
            update(Payment)
            .where(
                Payment.checkout_request_id == correlation_id,
                Payment.status == PaymentStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        if result.rowcount == 1:
            logger.info(
                "Payment reconciled",
                extra_data={
                    "checkout_request_id": correlation_id,
                    "status": values["status"].value,
                    "receipt": values.get("mpesa_receipt"),
                    "failure_code": values.get("failure_code"),
                }
            )
            return ReconcileResult.APPLIED

        current_status = await self.db.scalar(
            select(Payment.status).where(Payment.checkout_request_id == correlation_id)
        )
        if current_status is None:
            logger.warning(
                "Callback for unknown payment ignored",
                extra_data={"checkout_request_id": correlation_id}
            )
            return ReconcileResult.UNKNOWN

        logger.info(
            "Duplicate callback ignored",
            extra_data={
                "checkout_request_id": correlation_id,
                "current_status": current_status.value,
            }
        )
        return ReconcileResult.DUPLICATE

    async def process_callback(self, payload: dict) -> ReconcileResult | None:
        """Validate, interpret and reconcile a raw callback body. Malformed bodies are logged and dropped."""
        try:
            self.provider.validate_callback(payload)
        except PaymentCallbackMalformed as exc:
            logger.warning(
                "Malformed payment callback ignored",
                extra_data={"reason": exc.details.get("reason")}
            )
            return None

        outcome = self.provider.interpret(payload)
        return await self.reconcile_callback(outcome.checkout_request_id, outcome)

    async def get_payment_history(self, user_id: int, limit: int = 50) -> list[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_payment_by_transaction(self, transaction_id: str) -> Payment:
        result = await self.db.execute(
            select(Payment).where(Payment.transaction_id == transaction_id)
        )
        payment = result.scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(transaction_id)
        return payment
