"""
Session - the conversation state machine.

A session owns exactly one live state. User messages and the explicit
"start code generation" trigger are dispatched to it; when a state hands
back a successor, the outgoing state's work is cancelled and the approach
is carried forward.
"""

from __future__ import annotations

import asyncio
import logging
import uuid

from ..errors import ConversationIdNotFoundError
from ..files import collect_files
from ..types import (
    AddToChat,
    Interaction,
    SessionState,
    SessionStateAction,
    SessionStateConfig,
)
from .session_config import SessionConfig
from .session_state import CodeGenState, RefinementState, with_conversation_id

logger = logging.getLogger(__name__)

CLEAR_COMMAND = "CLEAR"
CLEAR_ACKNOWLEDGEMENT = (
    "Finished the session for you. Feel free to restart the session by typing the task you want to achieve."
)


def _describe_error(e: Exception) -> str:
    code = getattr(e, "code", None)
    status_code = getattr(e, "status_code", None)
    message = getattr(e, "message", None) or str(e)
    return (
        f"Received error: {code} and status code: {status_code} [{message}] "
        "when trying to send the request to the generation backend"
    )


class Session:
    """
    Conversation state machine.

    ``task`` is set by the first message and kept until "CLEAR";
    ``approach`` follows the active state across transitions.
    """

    def __init__(self, config: SessionConfig, add_to_chat: AddToChat, session_id: str | None = None):
        self.config = config
        self.session_id = session_id or uuid.uuid4().hex
        self.add_to_chat = add_to_chat
        self._task = ""
        self._approach = ""
        self._state: SessionState = RefinementState(self._state_config(), self._approach)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def task(self) -> str:
        return self._task

    @property
    def approach(self) -> str:
        return self._approach

    def _state_config(self, conversation_id: str = "") -> SessionStateConfig:
        return SessionStateConfig(
            backend=self.config.backend,
            workspace_root=self.config.workspace_root,
            session_id=self.session_id,
            codegen=self.config.codegen,
            metrics=self.config.metrics,
            conversation_id=conversation_id,
        )

    def _replace_state(self, new_state: SessionState) -> None:
        """Cancel the outgoing state's work, then install ``new_state``."""
        self._state.token_source.cancel()
        self._state = new_state

    async def send(self, msg: str) -> list[Interaction]:
        """
        Process one user message.

        Never raises: any failure becomes a single ai message describing it,
        and the session keeps its current state.
        """
        try:
            logger.info(f"Received message from chat: {msg}")
            return await self.send_unsafe(msg)
        except Exception as e:
            logger.exception(f"Failed to process message: {e}")
            return [Interaction(origin="ai", type="message", content=_describe_error(e))]

    async def send_unsafe(self, msg: str) -> list[Interaction]:
        if msg == CLEAR_COMMAND:
            self._task = ""
            self._approach = ""
            self._replace_state(RefinementState(self._state_config(), self._approach))
            return [Interaction(origin="ai", type="message", content=CLEAR_ACKNOWLEDGEMENT)]

        # The first message of a session is the task
        if self._task == "":
            self._task = msg

        return await self._next_interaction(msg)

    async def start_codegen(self) -> list[Interaction]:
        """
        Move from refinement to code generation and run the first turn.

        Raises:
            ConversationIdNotFoundError: If no conversation exists yet; the
                current state is left in place
        """
        conversation_id = self._state.conversation_id
        if not conversation_id:
            raise ConversationIdNotFoundError()

        approach = self._state.approach
        self._replace_state(
            CodeGenState(with_conversation_id(self._state_config(), conversation_id), approach)
        )
        self._approach = approach
        logger.info(f"Started code generation for conversation {conversation_id}")
        return await self._next_interaction(None)

    async def _next_interaction(self, msg: str | None) -> list[Interaction]:
        workspace = self.config.workspace
        files = await asyncio.to_thread(
            collect_files,
            self.config.workspace_root / workspace.source_dir,
            max_file_bytes=workspace.max_file_bytes,
            ignored_dirs=workspace.ignored_dirs,
            relative_to=self.config.workspace_root,
        )

        state = self._state
        resp = await state.interact(
            SessionStateAction(
                task=self._task,
                files=files,
                fs=self.config.fs,
                add_to_chat=self.add_to_chat,
                msg=msg,
            )
        )

        if resp.next_state is not None:
            if self._state is not state:
                logger.info("Dropping transition from a state that was replaced mid-turn")
                resp.next_state.token_source.cancel()
                return resp.interactions
            # The handler may have updated the approach before handing over
            new_approach = state.approach
            self._replace_state(resp.next_state)
            self._state.approach = new_approach
            self._approach = new_approach

        return resp.interactions
