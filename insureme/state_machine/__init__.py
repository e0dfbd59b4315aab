"""
State Machine Module for the USSD Menu Flow
"""
from insureme.state_machine.states import MenuState, MenuEffect, Language
from insureme.state_machine.menu import MenuStateMachine, MenuContext, MenuResult

__all__ = [
    "MenuState",
    "MenuEffect",
    "Language",
    "MenuStateMachine",
    "MenuContext",
    "MenuResult",
]
