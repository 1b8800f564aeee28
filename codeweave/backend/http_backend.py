"""
httpx implementation of the generation backend.

Endpoints (JSON unless noted):
- POST /conversations                                -> {"conversationId"}
- POST /conversations/{id}/approach                  -> {"approach"}
- POST /conversations/{id}/code-generations          -> {"jobId"}
- GET  /conversations/{id}/code-generations/{job}    -> {"status", "reason"}
- POST /export-result-archive                        -> streamed body

The export body is either newline-delimited JSON events
(``application/x-ndjson``) or raw archive bytes. A 204 response has no
body stream at all.
"""

from __future__ import annotations

import base64
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

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

NDJSON_CONTENT_TYPE = "application/x-ndjson"
REQUEST_ID_HEADER = "x-request-id"


def _error_from_response(response: httpx.Response) -> BackendError:
    """Build a BackendError from a failed response, using its JSON body if any."""
    code = None
    message = f"Backend returned HTTP {response.status_code}"
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None
    if isinstance(payload, dict):
        code = payload.get("code") or payload.get("__type")
        message = payload.get("message") or message
    return BackendError(message, code=code, status_code=response.status_code)


def _files_payload(files: list[WorkspaceFile]) -> list[dict[str, str]]:
    return [{"path": f.relative_path, "content": f.content} for f in files]


def _parse_event(line: str) -> ResultArchiveEvent:
    """Decode one ndjson line into a ResultArchiveEvent."""
    data = json.loads(line)
    payload = data.get("binaryPayloadEvent")
    if payload is not None:
        raw = payload.get("bytes")
        return ResultArchiveEvent(
            binary_payload_event=BinaryPayloadEvent(
                bytes=base64.b64decode(raw) if raw else None
            ),
        )
    kind = next(iter(data), "unknown")
    return ResultArchiveEvent(kind=kind, data=data)


class HttpGenerationBackend(GenerationBackend):
    """Generation backend reached over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )

    async def _post_json(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(url, json=body)
        except httpx.HTTPError as e:
            raise BackendError(f"Request to {url} failed: {e}", code=type(e).__name__) from e
        if response.is_error:
            raise _error_from_response(response)
        return response.json()

    async def create_conversation(self) -> str:
        data = await self._post_json("/conversations", {})
        return data["conversationId"]

    async def generate_approach(
        self,
        conversation_id: str,
        task: str,
        message: str | None,
        files: list[WorkspaceFile],
    ) -> str:
        data = await self._post_json(
            f"/conversations/{conversation_id}/approach",
            {"task": task, "message": message, "files": _files_payload(files)},
        )
        return data["approach"]

    async def start_code_generation(
        self,
        conversation_id: str,
        approach: str,
        task: str,
        message: str | None,
        files: list[WorkspaceFile],
    ) -> str:
        data = await self._post_json(
            f"/conversations/{conversation_id}/code-generations",
            {
                "approach": approach,
                "task": task,
                "message": message,
                "files": _files_payload(files),
            },
        )
        return data["jobId"]

    async def get_code_generation_status(
        self, conversation_id: str, job_id: str
    ) -> CodeGenerationStatus:
        url = f"/conversations/{conversation_id}/code-generations/{job_id}"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise BackendError(f"Request to {url} failed: {e}", code=type(e).__name__) from e
        if response.is_error:
            raise _error_from_response(response)
        return CodeGenerationStatus.model_validate(response.json())

    async def export_result_archive(
        self, request: ExportResultArchiveRequest
    ) -> ExportResultArchiveResponse:
        http_request = self._client.build_request(
            "POST",
            "/export-result-archive",
            json={
                "exportId": request.export_id,
                "exportIntent": request.export_intent,
                "conversationId": request.conversation_id,
            },
        )
        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            raise BackendError(f"Archive export request failed: {e}", code=type(e).__name__) from e

        request_id = response.headers.get(REQUEST_ID_HEADER)

        if response.is_error:
            await response.aread()
            await response.aclose()
            raise _error_from_response(response)

        if response.status_code == httpx.codes.NO_CONTENT:
            await response.aclose()
            return ExportResultArchiveResponse(body=None, request_id=request_id)

        content_type = response.headers.get("content-type", "")
        if content_type.startswith(NDJSON_CONTENT_TYPE):
            body = self._iter_ndjson_events(response)
        else:
            body = self._iter_raw_events(response)
        return ExportResultArchiveResponse(body=body, request_id=request_id)

    async def _iter_ndjson_events(self, response: httpx.Response) -> AsyncIterator[ResultArchiveEvent]:
        try:
            async for line in response.aiter_lines():
                if line.strip():
                    yield _parse_event(line)
        finally:
            await response.aclose()

    async def _iter_raw_events(self, response: httpx.Response) -> AsyncIterator[ResultArchiveEvent]:
        try:
            async for chunk in response.aiter_bytes():
                yield ResultArchiveEvent(binary_payload_event=BinaryPayloadEvent(bytes=chunk))
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()
