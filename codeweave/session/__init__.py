"""Session Layer - conversation state machine and its phases."""

from .session import CLEAR_ACKNOWLEDGEMENT, CLEAR_COMMAND, Session
from .session_config import SessionConfig
from .session_state import CodeGenState, RefinementState

__all__ = [
    "CLEAR_ACKNOWLEDGEMENT",
    "CLEAR_COMMAND",
    "CodeGenState",
    "RefinementState",
    "Session",
    "SessionConfig",
]
