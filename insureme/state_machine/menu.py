"""
USSD Menu State Machine

A pure function of (stored cursor, latest answer, user snapshot, plan catalog).
It never touches the database; side effects are returned as a MenuEffect flag
and executed by the flow service.

The gateway sends the whole dial string of the session joined by '*'
("3*2*150"). Only the last token is read, as the answer to the prompt named by
the stored cursor. History is never replayed.
"""
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from insureme.core.exceptions import UnknownMenuChoice
from insureme.core.logging import get_logger
from insureme.core.validation import NameValidator, TextSanitizer
from insureme.domain.coverage import calculate_coverage, premium_in_range
from insureme.state_machine import templates
from insureme.state_machine.states import (
    Language,
    MenuEffect,
    MenuState,
    TERMINAL_STATES,
    is_valid_transition,
)

logger = get_logger(__name__)

_PREMIUM_RE = re.compile(r"^[0-9]+(\.[0-9]{1,2})?$")
_CHOICE_RE = re.compile(r"^[0-9]{1,2}$")

OCCUPATIONS = {
    "1": "Student",
    "2": "Employed",
    "3": "Self-employed",
    "4": "Unemployed",
    "5": "Other",
}

INCOME_RANGES = {
    "1": "low",
    "2": "medium",
    "3": "high",
}


@dataclass(frozen=True)
class PlanOption:
    """Catalog entry as the menu sees it"""
    id: int
    name: str
    min_premium: Decimal
    max_premium: Decimal
    max_coverage: Decimal
    coverage_multiplier: Decimal


@dataclass(frozen=True)
class PolicySummary:
    policy_id: int
    policy_number: str
    plan_name: str
    premium: Decimal
    coverage_amount: Decimal
    status: str
    end_date: date | None = None


@dataclass(frozen=True)
class UserProfile:
    user_id: int
    name: str | None
    language: Language = Language.EN
    active_policy: PolicySummary | None = None


@dataclass
class MenuContext:
    current_state: MenuState
    text: str
    language: Language = Language.EN
    user: UserProfile | None = None
    plans: list[PlanOption] = field(default_factory=list)
    session_data: dict[str, Any] = field(default_factory=dict)
    service_code: str = "*123#"


@dataclass
class MenuResult:
    text: str
    next_state: MenuState
    continue_session: bool
    effect: MenuEffect | None = None
    session_data: dict[str, Any] = field(default_factory=dict)


def last_token(text: str | None) -> str:
    """'3*2*150' -> '150'"""
    if not text:
        return ""
    return text.split("*")[-1].strip()


class MenuStateMachine:
    """Maps the stored cursor and the latest answer to the next screen"""

    def __init__(self, max_line_length: int = templates.MAX_LINE_LENGTH):
        self.max_line_length = max_line_length

    def process(self, ctx: MenuContext) -> MenuResult:
        text = (ctx.text or "").strip()

        # Fresh dial, or the gateway echoing the service code
        if not text or text == ctx.service_code:
            result = self._main_menu(ctx)
        else:
            handler = self._get_handler(ctx.current_state)
            try:
                result = handler(ctx, last_token(text))
            except UnknownMenuChoice as exc:
                result = self._error(ctx, exc)

        if not is_valid_transition(ctx.current_state, result.next_state):
            logger.warning(
                "Unexpected menu transition",
                extra_data={
                    "from_state": ctx.current_state.value,
                    "to_state": result.next_state.value,
                }
            )

        result.text = templates.truncate_lines(result.text, self.max_line_length)
        return result

    def _get_handler(self, state: MenuState):
        if state in TERMINAL_STATES:
            return self._handle_main
        handlers = {
            MenuState.MAIN: self._handle_main,
            MenuState.REGISTER_NAME: self._handle_register_name,
            MenuState.REGISTER_OCCUPATION: self._handle_register_occupation,
            MenuState.REGISTER_INCOME: self._handle_register_income,
            MenuState.SELECT_PLAN: self._handle_select_plan,
            MenuState.ENTER_PREMIUM: self._handle_enter_premium,
            MenuState.CONFIRM_PURCHASE: self._handle_confirm_purchase,
        }
        return handlers[state]

    # ==================== Helpers ====================

    @staticmethod
    def _render(ctx: MenuContext, name: str, /, **params) -> str:
        return templates.render(name, ctx.language, **params)

    def _main_menu(self, ctx: MenuContext) -> MenuResult:
        return MenuResult(
            text=self._render(ctx, "welcome"),
            next_state=MenuState.MAIN,
            continue_session=True,
        )

    def _error(self, ctx: MenuContext, exc: UnknownMenuChoice) -> MenuResult:
        logger.info(
            "Unrecognized menu input",
            extra_data={
                "state": exc.details["state"],
                "answer": exc.details["choice"][:20],
            }
        )
        return MenuResult(
            text=self._render(ctx, "error"),
            next_state=MenuState.ERROR,
            continue_session=False,
        )

    @staticmethod
    def _active_policy(ctx: MenuContext) -> PolicySummary | None:
        return ctx.user.active_policy if ctx.user else None

    def _selected_plan(self, ctx: MenuContext) -> PlanOption | None:
        plan_id = ctx.session_data.get("plan_id")
        for plan in ctx.plans:
            if plan.id == plan_id:
                return plan
        return None

    # ==================== Main menu ====================

    def _handle_main(self, ctx: MenuContext, answer: str) -> MenuResult:
        if answer == "1":
            return MenuResult(
                text=self._render(ctx, "register_name"),
                next_state=MenuState.REGISTER_NAME,
                continue_session=True,
            )

        if answer == "2":
            policy = self._active_policy(ctx)
            if policy is None:
                text = self._render(ctx, "no_active_policy")
            else:
                text = self._render(
                    ctx, "my_plans",
                    plan_name=policy.plan_name,
                    premium=policy.premium,
                    coverage=policy.coverage_amount,
                    status=policy.status,
                )
            return MenuResult(text=text, next_state=MenuState.MY_PLANS, continue_session=False)

        if answer == "3":
            if not ctx.plans:
                return MenuResult(
                    text=self._render(ctx, "no_plans_available"),
                    next_state=MenuState.END,
                    continue_session=False,
                )
            return MenuResult(
                text=self._render(ctx, "select_plan", plans=ctx.plans),
                next_state=MenuState.SELECT_PLAN,
                continue_session=True,
            )

        if answer == "4":
            policy = self._active_policy(ctx)
            if policy is None:
                return MenuResult(
                    text=self._render(ctx, "no_policy_to_pay"),
                    next_state=MenuState.END,
                    continue_session=False,
                )
            return MenuResult(
                text=self._render(ctx, "payment_prompt", amount=policy.premium),
                next_state=MenuState.PROCESS_PAYMENT,
                continue_session=False,
                effect=MenuEffect.TRIGGER_PAYMENT,
                session_data={"policy_id": policy.policy_id, "amount": str(policy.premium)},
            )

        if answer == "5":
            policy = self._active_policy(ctx)
            if policy is None:
                return MenuResult(
                    text=self._render(ctx, "no_active_policy"),
                    next_state=MenuState.END,
                    continue_session=False,
                )
            return MenuResult(
                text=self._render(
                    ctx, "check_balance",
                    plan_name=policy.plan_name,
                    coverage=policy.coverage_amount,
                    status=policy.status,
                    end_date=policy.end_date.isoformat() if policy.end_date else "-",
                ),
                next_state=MenuState.CHECK_BALANCE,
                continue_session=False,
            )

        if answer == "0":
            return MenuResult(
                text=self._render(ctx, "goodbye"),
                next_state=MenuState.END,
                continue_session=False,
            )

        raise UnknownMenuChoice(ctx.current_state.value, answer)

    # ==================== Registration ====================

    def _handle_register_name(self, ctx: MenuContext, answer: str) -> MenuResult:
        name = TextSanitizer.sanitize(answer, max_length=NameValidator.MAX_LENGTH)
        is_valid, _ = NameValidator.validate(name)
        if not is_valid:
            raise UnknownMenuChoice(ctx.current_state.value, answer)

        return MenuResult(
            text=self._render(ctx, "register_occupation"),
            next_state=MenuState.REGISTER_OCCUPATION,
            continue_session=True,
            session_data={"registration": {"name": name}},
        )

    def _handle_register_occupation(self, ctx: MenuContext, answer: str) -> MenuResult:
        occupation = OCCUPATIONS.get(answer)
        registration = ctx.session_data.get("registration")
        if occupation is None or not registration:
            raise UnknownMenuChoice(ctx.current_state.value, answer)

        return MenuResult(
            text=self._render(ctx, "register_income"),
            next_state=MenuState.REGISTER_INCOME,
            continue_session=True,
            session_data={"registration": {**registration, "occupation": occupation}},
        )

    def _handle_register_income(self, ctx: MenuContext, answer: str) -> MenuResult:
        income_range = INCOME_RANGES.get(answer)
        registration = ctx.session_data.get("registration")
        if income_range is None or not registration:
            raise UnknownMenuChoice(ctx.current_state.value, answer)

        registration = {**registration, "income_range": income_range}
        return MenuResult(
            text=self._render(ctx, "registration_complete", name=registration["name"]),
            next_state=MenuState.END,
            continue_session=False,
            effect=MenuEffect.REGISTER_USER,
            session_data={"registration": registration},
        )

    # ==================== Purchase ====================

    def _handle_select_plan(self, ctx: MenuContext, answer: str) -> MenuResult:
        if answer == "0":
            return self._main_menu(ctx)

        if not _CHOICE_RE.match(answer) or not 1 <= int(answer) <= len(ctx.plans):
            raise UnknownMenuChoice(ctx.current_state.value, answer)

        plan = ctx.plans[int(answer) - 1]
        return MenuResult(
            text=self._render(
                ctx, "enter_premium",
                plan_name=plan.name,
                min_premium=plan.min_premium,
                max_premium=plan.max_premium,
            ),
            next_state=MenuState.ENTER_PREMIUM,
            continue_session=True,
            session_data={"plan_id": plan.id, "plan_name": plan.name},
        )

    def _handle_enter_premium(self, ctx: MenuContext, answer: str) -> MenuResult:
        plan = self._selected_plan(ctx)
        if plan is None or not _PREMIUM_RE.match(answer):
            raise UnknownMenuChoice(ctx.current_state.value, answer)

        try:
            premium = Decimal(answer)
        except InvalidOperation:
            raise UnknownMenuChoice(ctx.current_state.value, answer)

        if not premium_in_range(premium, plan.min_premium, plan.max_premium):
            # Recoverable: ask again on the same screen
            return MenuResult(
                text=self._render(
                    ctx, "premium_out_of_range",
                    min_premium=plan.min_premium,
                    max_premium=plan.max_premium,
                ),
                next_state=MenuState.ENTER_PREMIUM,
                continue_session=True,
                session_data=dict(ctx.session_data),
            )

        coverage = calculate_coverage(premium, plan.coverage_multiplier, plan.max_coverage)
        return MenuResult(
            text=self._render(
                ctx, "confirm_purchase",
                plan_name=plan.name,
                premium=premium,
                coverage=coverage,
            ),
            next_state=MenuState.CONFIRM_PURCHASE,
            continue_session=True,
            session_data={
                **ctx.session_data,
                "premium": str(premium),
                "coverage": str(coverage),
            },
        )

    def _handle_confirm_purchase(self, ctx: MenuContext, answer: str) -> MenuResult:
        plan = self._selected_plan(ctx)
        if plan is None or "premium" not in ctx.session_data:
            raise UnknownMenuChoice(ctx.current_state.value, answer)

        if answer == "1":
            return MenuResult(
                text=self._render(
                    ctx, "purchase_complete",
                    plan_name=plan.name,
                    coverage=Decimal(ctx.session_data["coverage"]),
                ),
                next_state=MenuState.END,
                continue_session=False,
                effect=MenuEffect.PURCHASE_POLICY,
                session_data=dict(ctx.session_data),
            )

        if answer == "2":
            return MenuResult(
                text=self._render(ctx, "purchase_cancelled"),
                next_state=MenuState.END,
                continue_session=False,
            )

        raise UnknownMenuChoice(ctx.current_state.value, answer)
