"""
Generation backend backed directly by Claude through the Anthropic SDK.

Approach and code generation are single model calls. The generated patch
and summary are packed into a zip laid out like the remote service's result
archive and served back as a chunked event stream, so the session states
run the same retrieval path for both backends.
"""

from __future__ import annotations

import io
import json
import logging
import os
import re
import uuid
import zipfile
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import anthropic

from ..archive import ExportResultArchiveStructure
from ..errors import BackendError
from ..files import WorkspaceFile
from .base import (
    BinaryPayloadEvent,
    CodeGenerationStatus,
    ExportResultArchiveRequest,
    ExportResultArchiveResponse,
    GenerationBackend,
    ResultArchiveEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"
ARCHIVE_CHUNK_SIZE = 64 * 1024

APPROACH_SYSTEM_PROMPT = (
    "You plan code changes. Given a task and the project's files, describe the "
    "approach you would take in a short markdown list. Do not write code."
)

CODEGEN_SYSTEM_PROMPT = (
    "You implement code changes. Reply with a <summary> element describing the "
    "change, followed by one ```diff fenced block holding a unified diff with "
    "paths relative to the project root, using a/ and b/ prefixes and "
    "/dev/null for added or deleted files."
)

_SUMMARY_RE = re.compile(r"<summary>(.*?)</summary>", re.DOTALL)
_DIFF_BLOCK_RE = re.compile(r"```(?:diff|patch)?\n(.*?)```", re.DOTALL)


def _format_files(files: list[WorkspaceFile]) -> str:
    return "\n".join(
        f"--- START OF FILE: {f.relative_path} ---\n{f.content}\n--- END OF FILE: {f.relative_path} ---"
        for f in files
    )


def build_result_archive(summary: str, patch: str, manifest: dict) -> bytes:
    """Pack summary, patch and manifest into a zip with the fixed layout."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(ExportResultArchiveStructure.PATH_TO_SUMMARY, summary)
        zf.writestr(ExportResultArchiveStructure.PATH_TO_DIFF_PATCH, patch)
        zf.writestr(ExportResultArchiveStructure.PATH_TO_MANIFEST, json.dumps(manifest, indent=2))
    return buffer.getvalue()


def split_generation_output(text: str) -> tuple[str, str]:
    """
    Split a code generation reply into (summary, patch).

    Without a fenced block the whole reply is treated as the patch.
    """
    summary_match = _SUMMARY_RE.search(text)
    summary = summary_match.group(1).strip() if summary_match else ""
    diff_match = _DIFF_BLOCK_RE.search(text)
    patch = diff_match.group(1) if diff_match else text
    if patch and not patch.endswith("\n"):
        patch += "\n"
    return summary, patch


@dataclass
class _Conversation:
    messages: list[dict[str, str]] = field(default_factory=list)
    archives: dict[str, bytes] = field(default_factory=dict)


class AnthropicGenerationBackend(GenerationBackend):
    """Claude-backed generation with in-process result archives."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int = 8192,
        base_url: str | None = None,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        if client is None:
            api_key = api_key or os.environ.get("ANTHROPIC_API_KEY") or os.environ.get("ANTHROPIC_AUTH_TOKEN")
            if not api_key:
                raise ValueError(
                    "Anthropic API key required. Set ANTHROPIC_API_KEY or ANTHROPIC_AUTH_TOKEN environment variable."
                )
            client_kwargs = {"api_key": api_key}
            base_url = base_url or os.environ.get("ANTHROPIC_BASE_URL")
            if base_url:
                client_kwargs["base_url"] = base_url
            client = anthropic.AsyncAnthropic(**client_kwargs)
        self.client = client
        self.model = model or os.environ.get("ANTHROPIC_DEFAULT_SONNET_MODEL", DEFAULT_MODEL)
        self.max_tokens = max_tokens
        self._conversations: dict[str, _Conversation] = {}

    def _conversation(self, conversation_id: str) -> _Conversation:
        try:
            return self._conversations[conversation_id]
        except KeyError:
            raise BackendError(
                f"Unknown conversation {conversation_id}",
                code="ResourceNotFound",
                status_code=404,
            ) from None

    async def _complete(self, system: str, messages: list[dict[str, str]]) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system,
                messages=messages,
            )
        except anthropic.APIStatusError as e:
            raise BackendError(str(e), code=type(e).__name__, status_code=e.status_code) from e
        except anthropic.APIError as e:
            raise BackendError(str(e), code=type(e).__name__) from e

        content = ""
        for block in response.content:
            if block.type == "text":
                content += block.text
        return content

    async def create_conversation(self) -> str:
        conversation_id = uuid.uuid4().hex
        self._conversations[conversation_id] = _Conversation()
        return conversation_id

    async def generate_approach(
        self,
        conversation_id: str,
        task: str,
        message: str | None,
        files: list[WorkspaceFile],
    ) -> str:
        conversation = self._conversation(conversation_id)
        if not conversation.messages:
            prompt = f"Task: {task}\n\nProject files:\n{_format_files(files)}"
            if message and message != task:
                prompt += f"\n\n{message}"
        else:
            prompt = message or "Refine the approach."
        conversation.messages.append({"role": "user", "content": prompt})

        approach = await self._complete(APPROACH_SYSTEM_PROMPT, conversation.messages)
        conversation.messages.append({"role": "assistant", "content": approach})
        return approach

    async def start_code_generation(
        self,
        conversation_id: str,
        approach: str,
        task: str,
        message: str | None,
        files: list[WorkspaceFile],
    ) -> str:
        conversation = self._conversation(conversation_id)
        prompt = (
            f"Task: {task}\n\nApproach:\n{approach}\n\n"
            f"Project files:\n{_format_files(files)}"
        )
        if message:
            prompt += f"\n\nFeedback on the previous attempt:\n{message}"

        output = await self._complete(CODEGEN_SYSTEM_PROMPT, [{"role": "user", "content": prompt}])
        summary, patch = split_generation_output(output)

        job_id = uuid.uuid4().hex
        conversation.archives[job_id] = build_result_archive(
            summary=summary,
            patch=patch,
            manifest={"conversationId": conversation_id, "jobId": job_id, "model": self.model},
        )
        logger.info(f"Code generation job {job_id} produced {len(patch)} characters of patch")
        return job_id

    async def get_code_generation_status(
        self, conversation_id: str, job_id: str
    ) -> CodeGenerationStatus:
        conversation = self._conversation(conversation_id)
        if job_id not in conversation.archives:
            return CodeGenerationStatus(status="Failed", reason=f"Unknown job {job_id}")
        return CodeGenerationStatus(status="Complete")

    async def export_result_archive(
        self, request: ExportResultArchiveRequest
    ) -> ExportResultArchiveResponse:
        for conversation in self._conversations.values():
            if request.export_id in conversation.archives:
                archive = conversation.archives[request.export_id]
                return ExportResultArchiveResponse(
                    body=self._iter_chunks(archive),
                    request_id=uuid.uuid4().hex,
                )
        raise BackendError(
            f"No archive for export {request.export_id}",
            code="ResourceNotFound",
            status_code=404,
        )

    async def _iter_chunks(self, archive: bytes) -> AsyncIterator[ResultArchiveEvent]:
        for offset in range(0, len(archive), ARCHIVE_CHUNK_SIZE):
            yield ResultArchiveEvent(
                binary_payload_event=BinaryPayloadEvent(bytes=archive[offset : offset + ARCHIVE_CHUNK_SIZE])
            )

    async def aclose(self) -> None:
        await self.client.close()
