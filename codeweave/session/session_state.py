"""
Conversation phases.

RefinementState establishes a conversation and iterates on an approach.
CodeGenState turns the approach into code: it starts a generation job,
polls it, retrieves the result archive and structures the patch into a
DiffModel.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from dataclasses import replace
from pathlib import Path

from ..archive import download_export_result_archive, extract_result_archive
from ..backend import ExportResultArchiveRequest
from ..cancellation import CancellationTokenSource
from ..diff import DiffModel
from ..errors import (
    CodeGenerationFailedError,
    CodeGenerationTimeoutError,
    OperationCancelledError,
)
from ..telemetry import ArchiveRequestContext
from ..types import Interaction, SessionStateAction, SessionStateConfig, SessionStateInteraction

logger = logging.getLogger(__name__)


class RefinementState:
    """Initial phase: agree on an approach for the task."""

    def __init__(self, config: SessionStateConfig, approach: str):
        self.config = config
        self.approach = approach
        self.token_source = CancellationTokenSource()
        self._conversation_id = config.conversation_id

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    async def interact(self, action: SessionStateAction) -> SessionStateInteraction:
        token = self.token_source.token
        backend = self.config.backend
        try:
            if not self._conversation_id:
                self._conversation_id = await token.guard(backend.create_conversation())
                logger.info(f"Started conversation {self._conversation_id}")

            approach = await token.guard(
                backend.generate_approach(
                    self._conversation_id,
                    action.task,
                    action.msg,
                    action.files,
                )
            )
        except OperationCancelledError:
            logger.info("Approach generation cancelled")
            return SessionStateInteraction()

        self.approach = approach
        return SessionStateInteraction(
            interactions=[Interaction(origin="ai", type="message", content=approach)],
        )


class CodeGenState:
    """
    Code generation phase.

    Each interaction is one generation turn; a message sent during this
    phase is passed to the backend as feedback on the previous attempt.
    The DiffModel of the latest turn is kept on ``diff_model``.
    """

    def __init__(self, config: SessionStateConfig, approach: str):
        if not config.conversation_id:
            raise ValueError("CodeGenState requires a conversation id")
        self.config = config
        self.approach = approach
        self.token_source = CancellationTokenSource()
        self.diff_model = DiffModel()
        self.job_id: str | None = None
        self.summary: str = ""

    @property
    def conversation_id(self) -> str:
        return self.config.conversation_id

    async def interact(self, action: SessionStateAction) -> SessionStateInteraction:
        token = self.token_source.token
        backend = self.config.backend
        try:
            job_id = await token.guard(
                backend.start_code_generation(
                    self.conversation_id,
                    self.approach,
                    action.task,
                    action.msg,
                    action.files,
                )
            )
            self.job_id = job_id
            logger.info(f"Started code generation job {job_id}")

            await self._wait_for_completion(job_id)
            patch_path, summary = await self._retrieve_result(job_id)
            token.raise_if_cancelled()
        except OperationCancelledError:
            logger.info("Code generation cancelled")
            return SessionStateInteraction()

        self.summary = summary
        if summary:
            action.add_to_chat(summary, "summary")

        await asyncio.to_thread(self.diff_model.parse_diff, patch_path, self.config.workspace_root)
        change_lines = self.diff_model.summary_lines()

        interactions = []
        if summary:
            interactions.append(Interaction(origin="ai", type="summary", content=summary))
        interactions.append(
            Interaction(
                origin="ai",
                type="code-changes",
                content="\n".join(change_lines) if change_lines else "No changes were proposed.",
            )
        )
        return SessionStateInteraction(interactions=interactions)

    async def _wait_for_completion(self, job_id: str) -> None:
        token = self.token_source.token
        codegen = self.config.codegen

        for attempt in range(codegen.max_poll_attempts):
            status = await token.guard(
                self.config.backend.get_code_generation_status(self.conversation_id, job_id)
            )
            if status.status == "Complete":
                return
            if status.status == "Failed":
                raise CodeGenerationFailedError(
                    status.reason or f"Code generation job {job_id} failed"
                )
            logger.debug(f"Job {job_id} still in progress (poll {attempt + 1})")
            await token.sleep(codegen.poll_interval)

        raise CodeGenerationTimeoutError(
            f"Code generation job {job_id} did not finish after {codegen.max_poll_attempts} polls"
        )

    def _job_dir(self, job_id: str) -> Path:
        base = Path(self.config.codegen.archive_dir or tempfile.gettempdir())
        return base / "codeweave" / self.conversation_id / job_id

    async def _retrieve_result(self, job_id: str) -> tuple[Path, str]:
        """Download and unpack the job's archive; returns (patch path, summary)."""
        job_dir = self._job_dir(job_id)
        archive_path = job_dir / "ExportResultArchive.zip"

        await download_export_result_archive(
            self.config.backend,
            ExportResultArchiveRequest(
                export_id=job_id,
                export_intent="CODE_GENERATION",
                conversation_id=self.conversation_id,
            ),
            archive_path,
            context=ArchiveRequestContext(session_id=self.config.session_id, job_id=job_id),
            metrics=self.config.metrics,
        )

        archive = await asyncio.to_thread(extract_result_archive, archive_path, job_dir / "archive")
        summary = await asyncio.to_thread(archive.read_summary)
        return archive.patch_path, summary


def with_conversation_id(config: SessionStateConfig, conversation_id: str) -> SessionStateConfig:
    """Copy of ``config`` bound to ``conversation_id``."""
    return replace(config, conversation_id=conversation_id)
