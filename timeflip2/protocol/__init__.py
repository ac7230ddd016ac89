"""Protocol layer for TimeFlip2 communication."""

from .commands import Command, ModeFlag
from .state_machine import SessionStateMachine

__all__ = [
    "Command",
    "ModeFlag",
    "SessionStateMachine",
]
