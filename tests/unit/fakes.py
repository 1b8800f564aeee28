"""Fakes and sample patches shared by codeweave unit tests."""

import io
import json
import zipfile

from codeweave.backend import (
    BinaryPayloadEvent,
    CodeGenerationStatus,
    ExportResultArchiveResponse,
    GenerationBackend,
    ResultArchiveEvent,
)

ADDED_FILE_PATCH = """\
diff --git a/src/new.txt b/src/new.txt
new file mode 100644
index 0000000..3b18e51
--- /dev/null
+++ b/src/new.txt
@@ -0,0 +1,2 @@
+hello
+world
"""

MODIFIED_FILE_PATCH = """\
diff --git a/README.md b/README.md
index 1111111..2222222 100644
--- a/README.md
+++ b/README.md
@@ -1 +1 @@
-This guide walks you through using Gradle to build a simple Java project.
+This guide walks you through using Maven to build a simple Java project.
"""

README_CONTENT = "This guide walks you through using Gradle to build a simple Java project.\n"


def build_archive(patch: str, summary: str = "", manifest: dict | None = None) -> bytes:
    """Zip with the fixed result archive layout."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("summary/summary.md", summary)
        zf.writestr("patch/diff.patch", patch)
        zf.writestr("manifest.json", json.dumps(manifest or {"version": "1.0"}))
    return buffer.getvalue()


class FakeBackend(GenerationBackend):
    """In-memory backend recording every call."""

    def __init__(
        self,
        archive: bytes | None = None,
        statuses: list[str] | None = None,
        approach: str = "1. Add a new module",
        chunk_size: int = 7,
    ):
        self.archive = archive
        self.statuses = list(statuses or ["Complete"])
        self.approach = approach
        self.chunk_size = chunk_size
        self.conversations_created = 0
        self.approach_calls: list[tuple] = []
        self.codegen_calls: list[tuple] = []
        self.status_calls = 0
        self.export_requests: list = []
        self.on_approach = None
        self.on_status = None
        self.closed = False

    async def create_conversation(self) -> str:
        self.conversations_created += 1
        return f"conv-{self.conversations_created}"

    async def generate_approach(self, conversation_id, task, message, files):
        self.approach_calls.append((conversation_id, task, message, files))
        if self.on_approach:
            self.on_approach()
        return self.approach

    async def start_code_generation(self, conversation_id, approach, task, message, files):
        self.codegen_calls.append((conversation_id, approach, task, message, files))
        return f"job-{len(self.codegen_calls)}"

    async def get_code_generation_status(self, conversation_id, job_id):
        self.status_calls += 1
        if self.on_status:
            self.on_status()
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return CodeGenerationStatus(
            status=status,
            reason="model error" if status == "Failed" else None,
        )

    async def export_result_archive(self, request):
        self.export_requests.append(request)
        if self.archive is None:
            return ExportResultArchiveResponse(body=None, request_id="req-1")
        return ExportResultArchiveResponse(body=self._chunks(self.archive), request_id="req-1")

    async def _chunks(self, data: bytes):
        for offset in range(0, len(data), self.chunk_size):
            yield ResultArchiveEvent(
                binary_payload_event=BinaryPayloadEvent(bytes=data[offset : offset + self.chunk_size])
            )
            yield ResultArchiveEvent(kind="progressEvent", data={"progressEvent": {}})

    async def aclose(self) -> None:
        self.closed = True


