"""Shared fixtures for codeweave unit tests."""

from pathlib import Path

import pytest

from codeweave.backend import GenerationBackend
from codeweave.config import CodeGenConfig
from codeweave.files import WorkspaceFS
from codeweave.session import SessionConfig
from codeweave.telemetry import RecordingMetricsSink


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Empty workspace root."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def metrics() -> RecordingMetricsSink:
    return RecordingMetricsSink()


@pytest.fixture
def session_config_factory(workspace: Path, tmp_path: Path, metrics: RecordingMetricsSink):
    """Build a SessionConfig around a given backend."""

    def factory(backend: GenerationBackend) -> SessionConfig:
        return SessionConfig(
            backend=backend,
            workspace_root=workspace,
            fs=WorkspaceFS(workspace),
            codegen=CodeGenConfig(
                poll_interval=0,
                max_poll_attempts=5,
                archive_dir=str(tmp_path / "archives"),
            ),
            metrics=metrics,
        )

    return factory
