"""
USSD Flow Service

One gateway round-trip: normalize phone, load or (re)start the session, load
the user, run the menu state machine, execute its side effect, persist the
new cursor and hand the text back to the gateway adapter.
"""
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from insureme.core.config import settings
from insureme.core.exceptions import AppException, InvalidPhoneFormat, SessionPhoneMismatch
from insureme.core.logging import get_logger
from insureme.core.validation import PhoneNumberValidator
from insureme.db.models.plan import Plan
from insureme.db.models.user import User
from insureme.db.models.ussd_session import SessionStatus, UssdSession
from insureme.domain.services.mpesa.base_provider import PaymentProvider
from insureme.domain.services.payment_service import PaymentService
from insureme.domain.services.policy_service import PolicyService
from insureme.domain.services.user_service import UserService
from insureme.domain.services.ussd_gateway import UssdRequest, UssdResponse
from insureme.state_machine import templates
from insureme.state_machine.manager import SessionStore
from insureme.state_machine.menu import (
    MenuContext,
    MenuResult,
    MenuStateMachine,
    PlanOption,
    PolicySummary,
    UserProfile,
)
from insureme.state_machine.states import Language, MenuEffect, MenuState

logger = get_logger(__name__)


def plan_option(plan: Plan) -> PlanOption:
    return PlanOption(
        id=plan.id,
        name=plan.name,
        min_premium=Decimal(plan.min_premium),
        max_premium=Decimal(plan.max_premium),
        max_coverage=Decimal(plan.max_coverage),
        coverage_multiplier=Decimal(plan.coverage_multiplier),
    )


def user_profile(user: User | None) -> UserProfile | None:
    if user is None:
        return None

    summary = None
    policy = user.active_policy
    if policy is not None:
        summary = PolicySummary(
            policy_id=policy.id,
            policy_number=policy.policy_number,
            plan_name=policy.plan.name,
            premium=Decimal(policy.premium),
            coverage_amount=Decimal(policy.coverage_amount),
            status=policy.status.value,
            end_date=policy.end_date,
        )
    return UserProfile(
        user_id=user.id,
        name=user.name,
        language=Language.from_value(user.preferred_language),
        active_policy=summary,
    )


class UssdFlowService:
    """Handles one USSD request end to end"""

    def __init__(self, db: AsyncSession, provider: PaymentProvider):
        self.db = db
        self.sessions = SessionStore(db)
        self.users = UserService(db)
        self.policies = PolicyService(db)
        self.payments = PaymentService(db, provider)
        self.machine = MenuStateMachine(max_line_length=settings.USSD_MAX_LINE_LENGTH)

    async def handle(self, request: UssdRequest) -> UssdResponse:
        try:
            phone = PhoneNumberValidator.normalize(request.phone_number)
        except InvalidPhoneFormat:
            logger.warning(
                "USSD request rejected: invalid phone",
                extra_data={"session_id": request.session_id}
            )
            return UssdResponse(templates.render("invalid_phone"), continue_session=False)

        try:
            session = await self._load_session(request, phone)
        except SessionPhoneMismatch as exc:
            logger.warning(
                "USSD request rejected: session bound to another phone",
                extra_data={**exc.details, "phone": PhoneNumberValidator.mask(phone)}
            )
            return UssdResponse(templates.render("session_rejected"), continue_session=False)

        from_state = session.current_menu
        user = session.user or await self.users.get_by_phone(phone)
        language = Language.from_value(
            user.preferred_language if user is not None else session.language
        )
        plans = await self.policies.list_plans()

        result = self.machine.process(MenuContext(
            current_state=MenuState.from_value(session.current_menu),
            text=request.text,
            language=language,
            user=user_profile(user),
            plans=[plan_option(plan) for plan in plans],
            session_data=dict(session.session_data or {}),
            service_code=request.service_code or settings.USSD_SERVICE_CODE,
        ))

        text = result.text
        trigger_payment = False
        if result.effect is not None:
            text, user, trigger_payment = await self._apply_effect(
                result, phone, user, language
            )

        partial = {
            "current_menu": result.next_state,
            "user_input": request.text,
            "session_data": result.session_data,
            "language": language,
            "status": SessionStatus.ACTIVE if result.continue_session else SessionStatus.ENDED,
        }
        if user is not None:
            partial["user_id"] = user.id
        await self.sessions.upsert(request.session_id, phone, partial)

        logger.info(
            "USSD request handled",
            extra_data={
                "session_id": request.session_id,
                "from_state": from_state,
                "to_state": result.next_state.value,
                "continue": result.continue_session,
                "effect": result.effect.value if result.effect else None,
            }
        )
        return UssdResponse(
            text=templates.truncate_lines(text, settings.USSD_MAX_LINE_LENGTH),
            continue_session=result.continue_session,
            trigger_payment=trigger_payment,
        )

    async def _load_session(self, request: UssdRequest, phone: str) -> UssdSession:
        """The bound phone of a live session never changes"""
        session = await self.sessions.get_or_start(
            request.session_id, phone, request.network_operator
        )
        if session.phone_number != phone:
            raise SessionPhoneMismatch(request.session_id)
        return session

    async def _apply_effect(
        self,
        result: MenuResult,
        phone: str,
        user: User | None,
        language: Language,
    ) -> tuple[str, User | None, bool]:
        """Run the side effect. Failures replace the text, never the transition."""
        data = result.session_data
        try:
            if result.effect == MenuEffect.REGISTER_USER:
                registration = data["registration"]
                user = await self.users.register(
                    phone,
                    name=registration["name"],
                    occupation=registration.get("occupation"),
                    income_range=registration.get("income_range"),
                    language=language,
                )
                return result.text, user, False

            if result.effect == MenuEffect.PURCHASE_POLICY:
                if user is None:
                    user = await self.users.get_or_create(phone)
                plan = await self.policies.get_plan(data["plan_id"])
                await self.policies.create_policy(user, plan, Decimal(data["premium"]))
                return result.text, user, False

            if result.effect == MenuEffect.TRIGGER_PAYMENT:
                policy = await self.policies.get_policy(data["policy_id"])
                if user is None or policy is None:
                    return templates.render("no_policy_to_pay", language), user, False
                await self.payments.initiate_payment(user, policy, Decimal(policy.premium))
                return result.text, user, True

        except AppException as exc:
            logger.warning(
                "USSD side effect failed",
                extra_data={
                    "effect": result.effect.value,
                    "error_code": exc.error_code.value,
                    "message": exc.message,
                }
            )
            failure_template = (
                "payment_failed" if result.effect == MenuEffect.TRIGGER_PAYMENT else "error"
            )
            return templates.render(failure_template, language), user, False

        return result.text, user, False
