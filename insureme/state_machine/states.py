"""
State Definitions for the USSD Menu Flow
"""
from enum import Enum


class MenuState(str, Enum):
    """Menu cursor stored in ussd_sessions.current_menu"""

    MAIN = "main"

    # Registration flow
    REGISTER_NAME = "register_name"
    REGISTER_OCCUPATION = "register_occupation"
    REGISTER_INCOME = "register_income"

    # Purchase flow
    SELECT_PLAN = "select_plan"
    ENTER_PREMIUM = "enter_premium"
    CONFIRM_PURCHASE = "confirm_purchase"

    # Single-screen answers (terminal)
    PROCESS_PAYMENT = "process_payment"
    MY_PLANS = "my_plans"
    CHECK_BALANCE = "check_balance"

    END = "end"
    ERROR = "error"

    @classmethod
    def from_value(cls, value: str | None) -> "MenuState":
        """Unknown or missing cursor is treated as the main menu"""
        try:
            return cls(value)
        except ValueError:
            return cls.MAIN


class Language(str, Enum):
    EN = "en"
    SW = "sw"

    @classmethod
    def from_value(cls, value: "str | Language | None") -> "Language":
        """English when the language is absent or unrecognized"""
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.EN


class MenuEffect(str, Enum):
    """Side effects the flow service executes after a transition"""

    REGISTER_USER = "register_user"
    PURCHASE_POLICY = "purchase_policy"
    TRIGGER_PAYMENT = "trigger_payment"


# The session is over once one of these has been rendered. A further answer
# arriving on the same session id is read as a main-menu choice.
TERMINAL_STATES = frozenset({
    MenuState.END,
    MenuState.ERROR,
    MenuState.MY_PLANS,
    MenuState.CHECK_BALANCE,
    MenuState.PROCESS_PAYMENT,
})

_MAIN_CHOICES = [
    MenuState.MAIN,
    MenuState.REGISTER_NAME,
    MenuState.MY_PLANS,
    MenuState.SELECT_PLAN,
    MenuState.PROCESS_PAYMENT,
    MenuState.CHECK_BALANCE,
    MenuState.END,
    MenuState.ERROR,
]

MENU_TRANSITIONS = {
    MenuState.MAIN: _MAIN_CHOICES,

    # Registration
    MenuState.REGISTER_NAME: [MenuState.REGISTER_OCCUPATION, MenuState.MAIN, MenuState.ERROR],
    MenuState.REGISTER_OCCUPATION: [MenuState.REGISTER_INCOME, MenuState.MAIN, MenuState.ERROR],
    MenuState.REGISTER_INCOME: [MenuState.END, MenuState.MAIN, MenuState.ERROR],

    # Purchase
    MenuState.SELECT_PLAN: [MenuState.ENTER_PREMIUM, MenuState.MAIN, MenuState.ERROR],
    MenuState.ENTER_PREMIUM: [
        MenuState.ENTER_PREMIUM,
        MenuState.CONFIRM_PURCHASE,
        MenuState.MAIN,
        MenuState.ERROR,
    ],
    MenuState.CONFIRM_PURCHASE: [MenuState.END, MenuState.MAIN, MenuState.ERROR],

    # Terminal states behave like main
    **{state: _MAIN_CHOICES for state in TERMINAL_STATES},
}


def is_valid_transition(from_state: MenuState, to_state: MenuState) -> bool:
    """Check if transition is valid"""
    return to_state in MENU_TRANSITIONS.get(from_state, [])
