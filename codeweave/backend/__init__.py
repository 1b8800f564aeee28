"""Generation backend boundary and its implementations."""

from .base import (
    BinaryPayloadEvent,
    CodeGenerationStatus,
    ExportResultArchiveRequest,
    ExportResultArchiveResponse,
    GenerationBackend,
    ResultArchiveEvent,
)
from .http_backend import HttpGenerationBackend

__all__ = [
    "BinaryPayloadEvent",
    "CodeGenerationStatus",
    "ExportResultArchiveRequest",
    "ExportResultArchiveResponse",
    "GenerationBackend",
    "ResultArchiveEvent",
    "HttpGenerationBackend",
    "create_backend",
]


def create_backend(config) -> GenerationBackend:
    """Build the backend selected by a BackendConfig."""
    if config.kind == "anthropic":
        from .anthropic_backend import AnthropicGenerationBackend

        return AnthropicGenerationBackend(
            api_key=config.api_key,
            model=config.model,
            max_tokens=config.max_tokens,
        )
    return HttpGenerationBackend(
        base_url=config.base_url,
        api_key=config.api_key,
        timeout=config.timeout,
    )
