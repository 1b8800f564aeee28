"""
Generation backend boundary.

The session states only see this interface; transport and authentication
live in the concrete backends.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel

from ..files import WorkspaceFile


@dataclass
class BinaryPayloadEvent:
    """Stream event carrying one fragment of archive bytes."""

    bytes: bytes | None = None


@dataclass
class ResultArchiveEvent:
    """
    One event of the export stream.

    Only events with a ``binary_payload_event`` carry archive data; any
    other kind (keep-alives, progress notes) leaves it ``None``.
    """

    binary_payload_event: BinaryPayloadEvent | None = None
    kind: str = "binaryPayloadEvent"
    data: dict[str, Any] = field(default_factory=dict)


class ExportResultArchiveRequest(BaseModel):
    """Descriptor for one archive export."""

    export_id: str
    export_intent: Literal["CODE_GENERATION", "TRANSFORMATION"] = "CODE_GENERATION"
    conversation_id: str | None = None


@dataclass
class ExportResultArchiveResponse:
    """
    Response of an archive export.

    ``body`` is None when the service returned no stream at all, which is
    different from a stream that yields no events.
    """

    body: AsyncIterator[ResultArchiveEvent] | None
    request_id: str | None = None


class CodeGenerationStatus(BaseModel):
    """Status of a code generation job."""

    status: Literal["InProgress", "Complete", "Failed"]
    reason: str | None = None


class GenerationBackend(ABC):
    """Abstract base class for generation backends."""

    @abstractmethod
    async def create_conversation(self) -> str:
        """Open a conversation and return its id."""

    @abstractmethod
    async def generate_approach(
        self,
        conversation_id: str,
        task: str,
        message: str | None,
        files: list[WorkspaceFile],
    ) -> str:
        """Propose an approach for ``task`` given the latest user message."""

    @abstractmethod
    async def start_code_generation(
        self,
        conversation_id: str,
        approach: str,
        task: str,
        message: str | None,
        files: list[WorkspaceFile],
    ) -> str:
        """Start generating code for ``approach``; returns the job id."""

    @abstractmethod
    async def get_code_generation_status(
        self, conversation_id: str, job_id: str
    ) -> CodeGenerationStatus:
        """Current status of a code generation job."""

    @abstractmethod
    async def export_result_archive(
        self, request: ExportResultArchiveRequest
    ) -> ExportResultArchiveResponse:
        """Request the result archive of a finished job as an event stream."""

    async def aclose(self) -> None:
        """Release transport resources."""
