"""
Configuration management for codeweave.

Settings are read from ``~/.codeweave/config.json`` and may be overridden
by environment variables. A ``.env`` file in the working directory is
loaded first so local credentials never need to live in the JSON file.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv

# Auto-load .env from the current working directory
_env_file = Path.cwd() / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

CONFIG_PATH = Path.home() / ".codeweave" / "config.json"


def _filter_dataclass_fields(data: dict[str, Any], cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


@dataclass
class BackendConfig:
    """
    Generation backend connection settings.

    kind:
    - "http": remote generation service reached with httpx
    - "anthropic": Claude models called directly through the Anthropic SDK
    """

    kind: Literal["http", "anthropic"] = "http"
    base_url: str = "http://localhost:8080"
    api_key: str | None = None
    timeout: float = 60.0
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 8192


@dataclass
class CodeGenConfig:
    """Polling and download settings for the code generation phase."""

    poll_interval: float = 2.0
    max_poll_attempts: int = 180
    archive_dir: str | None = None  # None = system temp dir


@dataclass
class WorkspaceConfig:
    """Which part of the workspace is sent with each turn."""

    source_dir: str = "src"
    max_file_bytes: int = 200_000
    ignored_dirs: list[str] = field(
        default_factory=lambda: ["node_modules", "__pycache__", "build", "dist"]
    )


@dataclass
class CodeWeaveConfig:
    """Complete codeweave configuration."""

    backend: BackendConfig = field(default_factory=BackendConfig)
    codegen: CodeGenConfig = field(default_factory=CodeGenConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "CodeWeaveConfig":
        """
        Load configuration from file, then apply environment overrides.

        Unknown keys are ignored so older config files keep working.
        """
        if path is None:
            path = CONFIG_PATH

        data: dict[str, Any] = {}
        if path.exists():
            with open(path) as f:
                data = json.load(f)

        config = cls(
            backend=BackendConfig(**_filter_dataclass_fields(data.get("backend", {}), BackendConfig)),
            codegen=CodeGenConfig(**_filter_dataclass_fields(data.get("codegen", {}), CodeGenConfig)),
            workspace=WorkspaceConfig(**_filter_dataclass_fields(data.get("workspace", {}), WorkspaceConfig)),
        )
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Apply CODEWEAVE_* / ANTHROPIC_* environment overrides."""
        if url := os.environ.get("CODEWEAVE_BACKEND_URL"):
            self.backend.base_url = url
        if kind := os.environ.get("CODEWEAVE_BACKEND"):
            self.backend.kind = kind  # type: ignore[assignment]
        if model := os.environ.get("CODEWEAVE_MODEL"):
            self.backend.model = model

        if self.backend.api_key is None:
            if self.backend.kind == "anthropic":
                self.backend.api_key = os.environ.get("ANTHROPIC_API_KEY") or os.environ.get(
                    "ANTHROPIC_AUTH_TOKEN"
                )
            else:
                self.backend.api_key = os.environ.get("CODEWEAVE_API_KEY")

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file. API keys are never written."""
        if path is None:
            path = CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        backend = asdict(self.backend)
        backend.pop("api_key", None)

        with open(path, "w") as f:
            json.dump(
                {
                    "backend": backend,
                    "codegen": asdict(self.codegen),
                    "workspace": asdict(self.workspace),
                },
                f,
                indent=2,
            )
