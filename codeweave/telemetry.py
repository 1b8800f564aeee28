"""API latency events and the sinks that receive them."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ApiLatencyEvent(BaseModel):
    """One backend API call's latency and payload size."""

    api_name: str
    session_id: str | None = None
    job_id: str | None = None
    latency_ms: int
    total_byte_size: int = 0
    request_id: str | None = None


@dataclass(frozen=True)
class ArchiveRequestContext:
    """Workflow identifiers attached to retrieval telemetry."""

    session_id: str | None = None
    job_id: str | None = None


class MetricsSink(Protocol):
    """Anything that can receive latency events."""

    def emit(self, event: ApiLatencyEvent) -> None:
        ...


class LoggingMetricsSink:
    """Default sink: writes events to the ``codeweave.telemetry`` logger."""

    def emit(self, event: ApiLatencyEvent) -> None:
        logger.info(
            f"{event.api_name} took {event.latency_ms}ms for {event.total_byte_size} bytes "
            f"(session={event.session_id}, job={event.job_id}, request={event.request_id})"
        )


@dataclass
class RecordingMetricsSink:
    """Sink that keeps every event in memory."""

    events: list[ApiLatencyEvent] = field(default_factory=list)

    def emit(self, event: ApiLatencyEvent) -> None:
        self.events.append(event)


def calculate_total_latency(start_time: float) -> int:
    """Milliseconds elapsed since ``start_time`` (a ``time.monotonic()`` value)."""
    return int((time.monotonic() - start_time) * 1000)


def emit_safely(sink: MetricsSink | None, event: ApiLatencyEvent) -> None:
    """Emit ``event``; sink failures are logged, never raised."""
    if sink is None:
        return
    try:
        sink.emit(event)
    except Exception as e:
        logger.warning(f"Failed to emit {event.api_name} telemetry: {e}")
