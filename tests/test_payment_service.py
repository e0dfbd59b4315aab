"""
Tests for premium payments: initiation and callback reconciliation
"""
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from insureme.core.exceptions import (
    ErrorCode,
    MpesaError,
    PaymentNotFoundError,
    PaymentPushFailed,
    ValidationException,
)
from insureme.db.models.payment import Payment, PaymentMethod, PaymentStatus
from insureme.domain.services.mpesa import PaymentFailed, PaymentSucceeded, PushResult
from insureme.domain.services.payment_service import (
    PaymentService,
    ReconcileResult,
    account_reference,
)


@pytest.fixture
async def user(user_factory):
    return await user_factory()


@pytest.fixture
async def policy(plans, user, policy_factory):
    return await policy_factory(user, plans[1], "150")


async def _reload(db: AsyncSession, transaction_id: str) -> Payment:
    result = await db.execute(
        select(Payment)
        .where(Payment.transaction_id == transaction_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


class TestInitiatePayment:

    @pytest.mark.unit
    def test_account_reference(self):
        assert account_reference("3f2a9c1e-aaaa-bbbb") == "INS-3F2A9C1E"

    @pytest.mark.integration
    async def test_pending_row_with_checkout_id(self, db_session: AsyncSession, user, policy, fake_provider):
        payment = await PaymentService(db_session, fake_provider).initiate_payment(
            user, policy, Decimal("150")
        )

        assert payment.status == PaymentStatus.PENDING
        assert payment.checkout_request_id == "ws_CO_TEST_1"
        assert payment.merchant_request_id == "29115-34620561-1"
        assert payment.policy_id == policy.id
        assert payment.currency == "KES"
        assert payment.payment_method == PaymentMethod.MPESA
        assert payment.mpesa_phone == "+254712345678"

        push = fake_provider.pushes[0]
        assert push["phone"] == "+254712345678"
        assert push["amount"] == Decimal("150")
        assert push["reference"] == account_reference(payment.transaction_id)
        assert push["description"] == f"Premium {policy.policy_number}"

    @pytest.mark.integration
    async def test_payer_phone_override(self, db_session: AsyncSession, user, policy, fake_provider):
        payment = await PaymentService(db_session, fake_provider).initiate_payment(
            user, policy, Decimal("150"), phone="0722000111"
        )
        assert payment.mpesa_phone == "+254722000111"
        assert fake_provider.pushes[0]["phone"] == "+254722000111"

    @pytest.mark.integration
    @pytest.mark.parametrize("amount", ["0", "-10"])
    async def test_non_positive_amount(self, db_session: AsyncSession, user, policy, fake_provider, amount):
        with pytest.raises(ValidationException):
            await PaymentService(db_session, fake_provider).initiate_payment(
                user, policy, Decimal(amount)
            )
        assert fake_provider.pushes == []

    @pytest.mark.integration
    async def test_bank_transfer_not_initiated_online(self, db_session: AsyncSession, user, policy, fake_provider):
        with pytest.raises(ValidationException):
            await PaymentService(db_session, fake_provider).initiate_payment(
                user, policy, Decimal("150"), method=PaymentMethod.BANK_TRANSFER
            )

    @pytest.mark.integration
    async def test_rejected_push_leaves_payment_pending(self, db_session: AsyncSession, user, policy, fake_provider):
        fake_provider.next_result = PushResult(
            success=False, response_description="Invalid PhoneNumber"
        )

        with pytest.raises(PaymentPushFailed) as exc_info:
            await PaymentService(db_session, fake_provider).initiate_payment(
                user, policy, Decimal("150")
            )

        assert exc_info.value.status_code == 502
        assert "Invalid PhoneNumber" in exc_info.value.message
        payment = await _reload(db_session, exc_info.value.transaction_id)
        assert payment.status == PaymentStatus.PENDING
        assert payment.checkout_request_id is None

    @pytest.mark.integration
    async def test_transport_error_becomes_push_failed(self, db_session: AsyncSession, user, policy, fake_provider):
        fake_provider.next_error = MpesaError("stkpush timed out after 30s")

        with pytest.raises(PaymentPushFailed) as exc_info:
            await PaymentService(db_session, fake_provider).initiate_payment(
                user, policy, Decimal("150")
            )

        assert exc_info.value.details["provider_error"] == ErrorCode.MPESA_ERROR.value
        payment = await _reload(db_session, exc_info.value.transaction_id)
        assert payment.status == PaymentStatus.PENDING


class TestReconcileCallback:

    @pytest.fixture
    async def pending(self, db_session: AsyncSession, user, policy, fake_provider) -> Payment:
        return await PaymentService(db_session, fake_provider).initiate_payment(
            user, policy, Decimal("150")
        )

    @pytest.mark.integration
    async def test_success(self, db_session: AsyncSession, pending, fake_provider):
        outcome = PaymentSucceeded(
            checkout_request_id=pending.checkout_request_id,
            receipt="NLJ7RT61SV",
            amount=Decimal("150"),
            phone="+254712345678",
            transaction_date=datetime(2019, 12, 19, 10, 21, 15),
        )

        result = await PaymentService(db_session, fake_provider).reconcile_callback(
            pending.checkout_request_id, outcome
        )

        assert result == ReconcileResult.APPLIED
        payment = await _reload(db_session, pending.transaction_id)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.mpesa_receipt == "NLJ7RT61SV"
        assert payment.paid_at == datetime(2019, 12, 19, 10, 21, 15)

    @pytest.mark.integration
    async def test_failure(self, db_session: AsyncSession, pending, fake_provider):
        outcome = PaymentFailed(
            checkout_request_id=pending.checkout_request_id,
            code="1032",
            description="Request cancelled by user",
        )

        result = await PaymentService(db_session, fake_provider).reconcile_callback(
            pending.checkout_request_id, outcome
        )

        assert result == ReconcileResult.APPLIED
        payment = await _reload(db_session, pending.transaction_id)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_code == "1032"
        assert payment.failure_description == "Request cancelled by user"

    @pytest.mark.integration
    async def test_duplicate_delivery_applies_once(
        self, db_session: AsyncSession, pending, fake_provider, stk_callback
    ):
        service = PaymentService(db_session, fake_provider)
        payload = stk_callback(pending.checkout_request_id, receipt="FIRST00001")

        assert await service.process_callback(payload) == ReconcileResult.APPLIED

        # A late failure for the same id must not flip the completed payment
        late_failure = stk_callback(pending.checkout_request_id, result_code=1032)
        assert await service.process_callback(payload) == ReconcileResult.DUPLICATE
        assert await service.process_callback(late_failure) == ReconcileResult.DUPLICATE

        payment = await _reload(db_session, pending.transaction_id)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.mpesa_receipt == "FIRST00001"
        assert payment.failure_code is None

    @pytest.mark.integration
    async def test_unknown_checkout_id_is_noop(self, db_session: AsyncSession, fake_provider, stk_callback):
        result = await PaymentService(db_session, fake_provider).process_callback(
            stk_callback("ws_CO_UNKNOWN")
        )
        assert result == ReconcileResult.UNKNOWN

    @pytest.mark.integration
    @pytest.mark.parametrize("payload", [
        None,
        [],
        {},
        {"Body": {}},
        {"Body": {"stkCallback": {"ResultCode": 0}}},
        {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1"}}},
        {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1", "ResultCode": 0, "CallbackMetadata": []}}},
    ])
    async def test_malformed_payload_dropped(self, db_session: AsyncSession, fake_provider, payload):
        assert await PaymentService(db_session, fake_provider).process_callback(payload) is None


class TestPaymentLookups:

    @pytest.mark.integration
    async def test_history_newest_first(self, db_session: AsyncSession, user, policy, fake_provider):
        service = PaymentService(db_session, fake_provider)
        first = await service.initiate_payment(user, policy, Decimal("150"))
        second = await service.initiate_payment(user, policy, Decimal("150"))

        history = await service.get_payment_history(user.id)

        assert [p.transaction_id for p in history] == [second.transaction_id, first.transaction_id]
        assert len(await service.get_payment_history(user.id, limit=1)) == 1

    @pytest.mark.integration
    async def test_by_transaction(self, db_session: AsyncSession, user, policy, fake_provider):
        service = PaymentService(db_session, fake_provider)
        payment = await service.initiate_payment(user, policy, Decimal("150"))

        found = await service.get_payment_by_transaction(payment.transaction_id)
        assert found.id == payment.id

        with pytest.raises(PaymentNotFoundError):
            await service.get_payment_by_transaction("missing")
