"""Shared types for the conversation state machine."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Literal, Protocol

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from .backend import GenerationBackend
    from .cancellation import CancellationTokenSource
    from .config import CodeGenConfig
    from .files import WorkspaceFile, WorkspaceFS
    from .telemetry import MetricsSink


class Interaction(BaseModel):
    """One unit of output returned to the chat layer after a turn."""

    model_config = ConfigDict(frozen=True)

    origin: Literal["ai", "user"]
    type: Literal["message", "summary", "code-changes"] = "message"
    content: str


# Chat-output sink: (content, type) -> None
AddToChat = Callable[[str, str], None]


@dataclass
class SessionStateConfig:
    """Everything a session state needs to talk to the outside world."""

    backend: "GenerationBackend"
    workspace_root: Path
    session_id: str
    codegen: "CodeGenConfig"
    metrics: "MetricsSink | None" = None
    conversation_id: str = ""


@dataclass
class SessionStateAction:
    """Input to one interaction step."""

    task: str
    files: list["WorkspaceFile"]
    fs: "WorkspaceFS"
    add_to_chat: AddToChat
    msg: str | None = None


@dataclass
class SessionStateInteraction:
    """Result of one interaction step; ``next_state`` signals a transition."""

    interactions: list[Interaction] = field(default_factory=list)
    next_state: "SessionState | None" = None


class SessionState(Protocol):
    """Capabilities every conversation phase provides."""

    approach: str
    token_source: "CancellationTokenSource"

    @property
    def conversation_id(self) -> str:
        ...

    async def interact(self, action: SessionStateAction) -> SessionStateInteraction:
        ...
