"""Workspace access: file collection and a rooted file-system capability."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_DIRS = ("node_modules", "__pycache__", "build", "dist")


@dataclass(frozen=True)
class WorkspaceFile:
    """A workspace file sent to the backend with a turn."""

    relative_path: str
    content: str


def _is_binary(data: bytes) -> bool:
    return b"\x00" in data[:8192]


def collect_files(
    root: Path | str,
    max_file_bytes: int = 200_000,
    ignored_dirs: tuple[str, ...] | list[str] = DEFAULT_IGNORED_DIRS,
    relative_to: Path | str | None = None,
) -> list[WorkspaceFile]:
    """
    Collect text files under ``root``, sorted by relative path.

    Paths are relative to ``relative_to`` (default: ``root``) so callers can
    collect a sub-directory while addressing files from the workspace root.

    Hidden directories and files, binary files and files larger than
    ``max_file_bytes`` are skipped. A missing root yields an empty list.
    """
    root = Path(root)
    base = Path(relative_to) if relative_to is not None else root
    if not root.is_dir():
        logger.debug(f"Workspace source directory does not exist: {root}")
        return []

    collected: list[WorkspaceFile] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if not d.startswith(".") and d not in ignored_dirs]
        for name in filenames:
            if name.startswith("."):
                continue
            path = Path(dirpath) / name
            try:
                if path.stat().st_size > max_file_bytes:
                    continue
                data = path.read_bytes()
            except OSError as e:
                logger.warning(f"Failed to read {path}: {e}")
                continue
            if _is_binary(data):
                continue
            collected.append(
                WorkspaceFile(
                    relative_path=path.relative_to(base).as_posix(),
                    content=data.decode("utf-8", errors="replace"),
                )
            )

    collected.sort(key=lambda f: f.relative_path)
    return collected


class WorkspaceFS:
    """
    File-system capability handed to session states and change nodes.

    Paths may be absolute or relative to ``root``. Text is read and written
    with ``newline=""`` so line endings survive a round trip.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def resolve(self, path: Path | str) -> Path:
        path = Path(path)
        if not path.is_absolute():
            path = self.root / path
        return path

    def exists(self, path: Path | str) -> bool:
        return self.resolve(path).exists()

    def read_text(self, path: Path | str) -> str:
        with open(self.resolve(path), encoding="utf-8", newline="") as f:
            return f.read()

    def write_text(self, path: Path | str, content: str) -> None:
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8", newline="") as f:
            f.write(content)

    def delete(self, path: Path | str) -> None:
        self.resolve(path).unlink()
