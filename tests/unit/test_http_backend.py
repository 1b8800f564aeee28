"""Tests for the httpx generation backend."""

import base64
import json

import httpx
import pytest

from codeweave.backend import ExportResultArchiveRequest, HttpGenerationBackend
from codeweave.errors import BackendError
from codeweave.files import WorkspaceFile


def _backend(handler) -> HttpGenerationBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    return HttpGenerationBackend(base_url="http://test", client=client)


async def _collect(body) -> list:
    return [event async for event in body]


class TestJsonEndpoints:
    """Tests for the conversation and job endpoints."""

    @pytest.mark.asyncio
    async def test_create_conversation(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/conversations"
            return httpx.Response(200, json={"conversationId": "conv-42"})

        backend = _backend(handler)
        assert await backend.create_conversation() == "conv-42"
        await backend.aclose()

    @pytest.mark.asyncio
    async def test_generate_approach_sends_files(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"approach": "1. Do it"})

        backend = _backend(handler)
        approach = await backend.generate_approach(
            "conv-1", "Port to Maven", "use Maven 3", [WorkspaceFile("src/app.py", "print(1)\n")]
        )

        assert approach == "1. Do it"
        assert seen["path"] == "/conversations/conv-1/approach"
        assert seen["body"] == {
            "task": "Port to Maven",
            "message": "use Maven 3",
            "files": [{"path": "src/app.py", "content": "print(1)\n"}],
        }

    @pytest.mark.asyncio
    async def test_start_code_generation_returns_job_id(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/conversations/conv-1/code-generations"
            assert json.loads(request.content)["approach"] == "1. Do it"
            return httpx.Response(200, json={"jobId": "job-7"})

        backend = _backend(handler)
        job_id = await backend.start_code_generation("conv-1", "1. Do it", "task", None, [])

        assert job_id == "job-7"

    @pytest.mark.asyncio
    async def test_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/conversations/conv-1/code-generations/job-7"
            return httpx.Response(200, json={"status": "Failed", "reason": "bad input"})

        status = await _backend(handler).get_code_generation_status("conv-1", "job-7")

        assert status.status == "Failed"
        assert status.reason == "bad input"

    @pytest.mark.asyncio
    async def test_error_body_becomes_backend_error(self):
        """code and message from the JSON error body are carried over."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"code": "ThrottlingException", "message": "slow down"})

        with pytest.raises(BackendError) as exc_info:
            await _backend(handler).create_conversation()

        assert exc_info.value.code == "ThrottlingException"
        assert exc_info.value.status_code == 429
        assert exc_info.value.message == "slow down"

    @pytest.mark.asyncio
    async def test_error_without_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>bad gateway</html>")

        with pytest.raises(BackendError) as exc_info:
            await _backend(handler).create_conversation()

        assert exc_info.value.status_code == 502
        assert "502" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BackendError) as exc_info:
            await _backend(handler).create_conversation()

        assert exc_info.value.code == "ConnectError"


class TestExportResultArchive:
    """Tests for the streamed archive export."""

    @pytest.mark.asyncio
    async def test_request_body_and_request_id(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"zipbytes", headers={"x-request-id": "req-123"})

        response = await _backend(handler).export_result_archive(
            ExportResultArchiveRequest(export_id="job-1", conversation_id="conv-1")
        )
        await _collect(response.body)

        assert seen["body"] == {
            "exportId": "job-1",
            "exportIntent": "CODE_GENERATION",
            "conversationId": "conv-1",
        }
        assert response.request_id == "req-123"

    @pytest.mark.asyncio
    async def test_raw_body_yields_payload_events(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"PK\x03\x04rest-of-archive")

        response = await _backend(handler).export_result_archive(ExportResultArchiveRequest(export_id="job-1"))
        events = await _collect(response.body)

        assert b"".join(e.binary_payload_event.bytes for e in events) == b"PK\x03\x04rest-of-archive"

    @pytest.mark.asyncio
    async def test_ndjson_body_decodes_events(self):
        """Payload events are base64-decoded; other events keep their kind."""
        lines = [
            {"binaryPayloadEvent": {"bytes": base64.b64encode(b"hello ").decode()}},
            {"progressEvent": {"percent": 50}},
            {"binaryPayloadEvent": {"bytes": base64.b64encode(b"world").decode()}},
        ]
        content = "\n".join(json.dumps(line) for line in lines).encode() + b"\n"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=content, headers={"content-type": "application/x-ndjson"})

        response = await _backend(handler).export_result_archive(ExportResultArchiveRequest(export_id="job-1"))
        events = await _collect(response.body)

        assert len(events) == 3
        assert events[0].binary_payload_event.bytes == b"hello "
        assert events[1].binary_payload_event is None
        assert events[1].kind == "progressEvent"
        assert events[1].data == {"progressEvent": {"percent": 50}}
        assert events[2].binary_payload_event.bytes == b"world"

    @pytest.mark.asyncio
    async def test_no_content_has_no_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(204, headers={"x-request-id": "req-empty"})

        response = await _backend(handler).export_result_archive(ExportResultArchiveRequest(export_id="job-1"))

        assert response.body is None
        assert response.request_id == "req-empty"

    @pytest.mark.asyncio
    async def test_error_response_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"__type": "ResourceNotFoundException", "message": "no such export"})

        with pytest.raises(BackendError) as exc_info:
            await _backend(handler).export_result_archive(ExportResultArchiveRequest(export_id="job-1"))

        assert exc_info.value.code == "ResourceNotFoundException"
        assert exc_info.value.status_code == 404
