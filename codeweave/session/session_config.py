"""Wiring for one conversation session."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ..backend import GenerationBackend, create_backend
from ..config import CodeGenConfig, CodeWeaveConfig, WorkspaceConfig
from ..files import WorkspaceFS
from ..telemetry import LoggingMetricsSink, MetricsSink


@dataclass
class SessionConfig:
    """Collaborators shared by every state of a session."""

    backend: GenerationBackend
    workspace_root: Path
    fs: WorkspaceFS
    codegen: CodeGenConfig = field(default_factory=CodeGenConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    metrics: MetricsSink | None = field(default_factory=LoggingMetricsSink)

    @classmethod
    def create(
        cls,
        workspace_root: Path | str,
        config: CodeWeaveConfig | None = None,
        backend: GenerationBackend | None = None,
    ) -> "SessionConfig":
        """Build a SessionConfig from a CodeWeaveConfig and a workspace path."""
        config = config or CodeWeaveConfig.load()
        root = Path(workspace_root).resolve()
        return cls(
            backend=backend or create_backend(config.backend),
            workspace_root=root,
            fs=WorkspaceFS(root),
            codegen=config.codegen,
            workspace=config.workspace,
        )
