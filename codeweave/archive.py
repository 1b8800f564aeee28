"""
Result archive retrieval.

A finished code generation job is exported as a zip archive streamed in
binary chunks. This module reassembles the stream into a file and unpacks
the well-known entries.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

from .errors import ArchiveLayoutError, EmptyResponseError
from .telemetry import (
    ApiLatencyEvent,
    ArchiveRequestContext,
    MetricsSink,
    calculate_total_latency,
    emit_safely,
)

if TYPE_CHECKING:
    from .backend.base import ExportResultArchiveRequest, GenerationBackend

logger = logging.getLogger(__name__)


class ExportResultArchiveStructure:
    """Relative paths of the entries inside an exported result archive."""

    PATH_TO_SUMMARY = str(PurePosixPath("summary", "summary.md"))
    PATH_TO_DIFF_PATCH = str(PurePosixPath("patch", "diff.patch"))
    PATH_TO_MANIFEST = "manifest.json"


def _write_atomically(to_path: Path, data: bytes) -> None:
    """
    Write ``data`` to ``to_path`` in one step.

    Uses write-to-temp-then-rename so readers never see a partial archive.
    """
    to_path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(
        suffix=".tmp",
        prefix="archive_",
        dir=to_path.parent,
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(temp_path, to_path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


async def download_export_result_archive(
    backend: "GenerationBackend",
    request: "ExportResultArchiveRequest",
    to_path: Path | str,
    context: ArchiveRequestContext | None = None,
    metrics: MetricsSink | None = None,
) -> int:
    """
    Download an exported result archive to ``to_path``.

    Only binary payload events contribute bytes, in arrival order. A body
    that yields no payload produces an empty file.

    Args:
        backend: Backend that serves the export stream
        request: Export descriptor
        to_path: Destination file, replaced as a whole
        context: Session and job identifiers for telemetry
        metrics: Sink for the latency event (optional)

    Returns:
        Total number of bytes written

    Raises:
        EmptyResponseError: If the response has no body stream
    """
    to_path = Path(to_path)
    context = context or ArchiveRequestContext()

    api_start_time = time.monotonic()
    total_download_bytes = 0
    result = await backend.export_result_archive(request)

    if result.body is None:
        raise EmptyResponseError()

    buffer: list[bytes] = []
    async for chunk in result.body:
        payload = chunk.binary_payload_event
        if payload is not None and payload.bytes:
            buffer.append(payload.bytes)
            total_download_bytes += len(payload.bytes)

    await asyncio.to_thread(_write_atomically, to_path, b"".join(buffer))
    logger.debug(f"Wrote {total_download_bytes} archive bytes to {to_path}")

    emit_safely(
        metrics,
        ApiLatencyEvent(
            api_name="ExportResultArchive",
            session_id=context.session_id,
            job_id=context.job_id,
            latency_ms=calculate_total_latency(api_start_time),
            total_byte_size=total_download_bytes,
            request_id=result.request_id,
        ),
    )
    return total_download_bytes


@dataclass
class ResultArchive:
    """Locations of the extracted archive entries."""

    root: Path
    summary_path: Path | None
    patch_path: Path
    manifest_path: Path | None
    manifest: dict[str, Any] | None = None

    def read_summary(self) -> str:
        if self.summary_path is None:
            return ""
        return self.summary_path.read_text(encoding="utf-8")


def extract_result_archive(archive_path: Path | str, destination: Path | str) -> ResultArchive:
    """
    Unzip a result archive and locate its entries by fixed path.

    Raises:
        ArchiveLayoutError: If the archive is not a zip, holds an entry that
            would escape ``destination``, or has no patch
    """
    destination = Path(destination)
    destination.mkdir(parents=True, exist_ok=True)
    root = destination.resolve()

    try:
        with zipfile.ZipFile(archive_path) as zf:
            for name in zf.namelist():
                target = (root / name).resolve()
                if target != root and root not in target.parents:
                    raise ArchiveLayoutError(f"Archive entry escapes destination: {name}")
            zf.extractall(root)
    except zipfile.BadZipFile as e:
        raise ArchiveLayoutError(f"Result archive is not a valid zip file: {e}") from e

    patch_path = root / ExportResultArchiveStructure.PATH_TO_DIFF_PATCH
    if not patch_path.is_file():
        raise ArchiveLayoutError(
            f"Result archive has no {ExportResultArchiveStructure.PATH_TO_DIFF_PATCH}"
        )

    summary_path = root / ExportResultArchiveStructure.PATH_TO_SUMMARY
    manifest_path = root / ExportResultArchiveStructure.PATH_TO_MANIFEST

    manifest = None
    if manifest_path.is_file():
        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring unreadable manifest {manifest_path}: {e}")

    return ResultArchive(
        root=root,
        summary_path=summary_path if summary_path.is_file() else None,
        patch_path=patch_path,
        manifest_path=manifest_path if manifest_path.is_file() else None,
        manifest=manifest,
    )
