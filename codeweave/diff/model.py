"""
DiffModel - a patch resolved against a workspace.

A parsed patch becomes a flat, ordered list of change nodes, one per file
section. Nodes know how to compute what to write for their file and how
to undo it; the actual reads and writes go through a ``WorkspaceFS``.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar

from ..errors import DiffParseError, PatchApplyError
from .hunks import Hunk, apply_hunks, new_side_text
from .parser import DEV_NULL, FilePatch, parse_unified_diff

if TYPE_CHECKING:
    from ..files import WorkspaceFS

logger = logging.getLogger(__name__)


@dataclass
class ChangeNode(ABC):
    """
    One file's worth of change.

    ``old_relative_path`` is the path on the patch's "before" side (None
    when the patch used /dev/null); ``relative_path`` is the file the
    change is about.
    """

    change_type: ClassVar[str]

    relative_path: str
    absolute_path: Path
    hunks: list[Hunk] = field(default_factory=list)
    old_relative_path: str | None = None
    is_binary: bool = False

    applied: bool = field(default=False, init=False)
    _backup: dict[Path, str | None] = field(default_factory=dict, init=False, repr=False)

    @property
    def added_line_count(self) -> int:
        return sum(len(h.added_lines) for h in self.hunks)

    @property
    def removed_line_count(self) -> int:
        return sum(len(h.removed_lines) for h in self.hunks)

    @abstractmethod
    def _writes(self, fs: "WorkspaceFS") -> dict[Path, str | None]:
        """Map of absolute path -> new content (None removes the file)."""

    @abstractmethod
    def _labels(self) -> tuple[str, str]:
        """(old, new) labels for the ---/+++ lines."""

    def apply(self, fs: "WorkspaceFS") -> None:
        """
        Write this change into the workspace.

        The previous content of every touched path is remembered so
        ``revert`` can restore it.

        Raises:
            PatchApplyError: If already applied, binary, or hunks do not match
        """
        if self.applied:
            raise PatchApplyError(f"Change to {self.relative_path} is already applied")
        if self.is_binary:
            raise PatchApplyError(f"Binary change to {self.relative_path} cannot be applied from a text patch")

        writes = self._writes(fs)
        backup = {path: (fs.read_text(path) if fs.exists(path) else None) for path in writes}

        # Deletions run after every write has landed
        ordered = sorted(writes.items(), key=lambda item: item[1] is None)
        touched: dict[Path, str | None] = {}
        try:
            for path, content in ordered:
                touched[path] = backup[path]
                if content is None:
                    if fs.exists(path):
                        fs.delete(path)
                else:
                    fs.write_text(path, content)
        except Exception:
            try:
                _restore(fs, touched)
            except OSError as exc:
                logger.error(f"Failed to undo partial change to {self.relative_path}: {exc}")
            raise

        self._backup = backup
        self.applied = True
        logger.debug(f"Applied {self.change_type} change to {self.relative_path}")

    def revert(self, fs: "WorkspaceFS") -> None:
        """Restore every path this change touched to its pre-apply content."""
        if not self.applied:
            raise PatchApplyError(f"Change to {self.relative_path} has not been applied")

        _restore(fs, self._backup)

        self._backup = {}
        self.applied = False
        logger.debug(f"Reverted {self.change_type} change to {self.relative_path}")

    def _render(self, old_label: str, new_label: str, hunks: list[Hunk]) -> str:
        old_name = old_label[2:] if old_label != DEV_NULL else new_label[2:]
        new_name = new_label[2:] if new_label != DEV_NULL else old_label[2:]
        rendered = [f"diff --git a/{old_name} b/{new_name}", f"--- {old_label}", f"+++ {new_label}"]
        for hunk in hunks:
            rendered.extend(hunk.render())
        return "\n".join(rendered) + "\n"

    def render_patch(self) -> str:
        """Unified diff text for this change."""
        old_label, new_label = self._labels()
        return self._render(old_label, new_label, self.hunks)

    def render_inverse_patch(self) -> str:
        """Unified diff text that undoes this change."""
        old_label, new_label = self._labels()
        return self._render(new_label, old_label, [h.inverted() for h in self.hunks])


@dataclass
class AddedChangeNode(ChangeNode):
    """A file that does not exist in the workspace yet."""

    change_type: ClassVar[str] = "added"

    @property
    def new_content(self) -> str:
        return new_side_text(self.hunks)

    def _writes(self, fs: "WorkspaceFS") -> dict[Path, str | None]:
        return {self.absolute_path: self.new_content}

    def _labels(self) -> tuple[str, str]:
        old = f"a/{self.old_relative_path}" if self.old_relative_path else DEV_NULL
        return old, f"b/{self.relative_path}"


@dataclass
class ModifiedChangeNode(ChangeNode):
    """An existing file with line-level differences, possibly renamed."""

    change_type: ClassVar[str] = "modified"

    old_absolute_path: Path | None = None

    @property
    def source_path(self) -> Path:
        return self.old_absolute_path or self.absolute_path

    def compute_new_content(self, old_text: str) -> str:
        return apply_hunks(old_text, self.hunks, self.relative_path)

    def _writes(self, fs: "WorkspaceFS") -> dict[Path, str | None]:
        try:
            old_text = fs.read_text(self.source_path)
        except FileNotFoundError as e:
            raise PatchApplyError(f"Cannot modify missing file {self.source_path}") from e
        writes: dict[Path, str | None] = {}
        if self.source_path != self.absolute_path:
            writes[self.source_path] = None
        writes[self.absolute_path] = self.compute_new_content(old_text)
        return writes

    def _labels(self) -> tuple[str, str]:
        return f"a/{self.old_relative_path or self.relative_path}", f"b/{self.relative_path}"


@dataclass
class DeletedChangeNode(ChangeNode):
    """A file the patch removes entirely."""

    change_type: ClassVar[str] = "deleted"

    def _writes(self, fs: "WorkspaceFS") -> dict[Path, str | None]:
        if not fs.exists(self.absolute_path):
            raise PatchApplyError(f"Cannot delete missing file {self.absolute_path}")
        return {self.absolute_path: None}

    def _labels(self) -> tuple[str, str]:
        return f"a/{self.relative_path}", DEV_NULL


def _restore(fs: "WorkspaceFS", contents: dict[Path, str | None]) -> None:
    """Put each path back to ``contents`` (None means the file did not exist)."""
    for path, content in contents.items():
        if content is None:
            if fs.exists(path):
                fs.delete(path)
        else:
            fs.write_text(path, content)


def resolve_path(workspace_root: Path | str, relative_path: str) -> Path:
    """
    Join a patch path onto the workspace root.

    Raises:
        DiffParseError: If the path is absolute or climbs out of the root
    """
    root = os.path.normpath(os.path.abspath(workspace_root))
    target = os.path.normpath(os.path.join(root, relative_path))
    if os.path.isabs(relative_path) or target == root or os.path.commonpath([root, target]) != root:
        raise DiffParseError(f"Patch path escapes the workspace: {relative_path}")
    return Path(target)


def classify(file_patch: FilePatch, workspace_root: Path | str) -> ChangeNode:
    """
    Turn a parsed file section into a change node.

    /dev/null on the before side is always honored as an addition and on
    the after side as a deletion. Anything else is a modification only if
    the file actually exists under ``workspace_root``; otherwise the file
    is treated as added, whatever the headers suggest.

    Raises:
        DiffParseError: If a path points outside ``workspace_root``
    """
    common = dict(hunks=file_patch.hunks, is_binary=file_patch.is_binary)

    if file_patch.old_path is None:
        path = file_patch.new_path or ""
        return AddedChangeNode(relative_path=path, absolute_path=resolve_path(workspace_root, path), **common)

    if file_patch.new_path is None:
        path = file_patch.old_path
        return DeletedChangeNode(
            relative_path=path,
            absolute_path=resolve_path(workspace_root, path),
            old_relative_path=path,
            **common,
        )

    path = file_patch.new_path
    absolute_path = resolve_path(workspace_root, path)
    source_path = resolve_path(workspace_root, file_patch.old_path)

    if not os.path.exists(source_path):
        logger.debug(f"{file_patch.old_path} is not in the workspace; treating it as added")
        return AddedChangeNode(
            relative_path=path,
            absolute_path=absolute_path,
            old_relative_path=file_patch.old_path,
            **common,
        )

    return ModifiedChangeNode(
        relative_path=path,
        absolute_path=absolute_path,
        old_relative_path=file_patch.old_path,
        old_absolute_path=source_path if source_path != absolute_path else None,
        **common,
    )


class DiffModel:
    """
    Ordered change nodes parsed from one patch.

    Every parse replaces the previous contents entirely.
    """

    def __init__(self):
        self._changes: list[ChangeNode] = []

    @property
    def changes(self) -> tuple[ChangeNode, ...]:
        """Read-only, patch-ordered view of the change nodes."""
        return tuple(self._changes)

    def parse_diff(self, patch_path: Path | str, workspace_root: Path | str) -> tuple[ChangeNode, ...]:
        """Parse the patch file at ``patch_path`` against ``workspace_root``."""
        with open(patch_path, encoding="utf-8", newline="") as f:
            raw_diff = f.read()
        return self.parse_diff_text(raw_diff, workspace_root)

    def parse_diff_text(self, raw_diff: str, workspace_root: Path | str) -> tuple[ChangeNode, ...]:
        """Parse an in-memory patch against ``workspace_root``."""
        nodes = [classify(file_patch, workspace_root) for file_patch in parse_unified_diff(raw_diff)]
        self._changes = nodes
        logger.info(f"Parsed {len(nodes)} file changes")
        return self.changes

    def clear(self) -> None:
        self._changes = []

    def get(self, relative_path: str) -> ChangeNode | None:
        for node in self._changes:
            if node.relative_path == relative_path:
                return node
        return None

    def apply_all(self, fs: "WorkspaceFS", paths: Iterable[str] | None = None) -> list[ChangeNode]:
        """
        Apply the selected changes (all unapplied ones by default) in order.

        If one change fails, the changes applied by this call are reverted
        before the error is re-raised.
        """
        selected = set(paths) if paths is not None else None
        applied: list[ChangeNode] = []
        try:
            for node in self._changes:
                if node.applied:
                    continue
                if selected is not None and node.relative_path not in selected:
                    continue
                node.apply(fs)
                applied.append(node)
        except Exception:
            self._rollback(fs, applied)
            raise
        return applied

    def revert_all(self, fs: "WorkspaceFS", paths: Iterable[str] | None = None) -> list[ChangeNode]:
        """Revert applied changes in reverse order."""
        selected = set(paths) if paths is not None else None
        reverted: list[ChangeNode] = []
        for node in reversed(self._changes):
            if not node.applied:
                continue
            if selected is not None and node.relative_path not in selected:
                continue
            node.revert(fs)
            reverted.append(node)
        return reverted

    def _rollback(self, fs: "WorkspaceFS", applied: list[ChangeNode]) -> None:
        for node in reversed(applied):
            try:
                node.revert(fs)
            except (PatchApplyError, OSError) as exc:
                logger.error(f"Failed to roll back change to {node.relative_path}: {exc}")

    def render_patch(self) -> str:
        return "".join(node.render_patch() for node in self._changes)

    def summary_lines(self) -> list[str]:
        """One "<type>: <path> (+a -r)" line per change."""
        return [
            f"{node.change_type}: {node.relative_path} (+{node.added_line_count} -{node.removed_line_count})"
            for node in self._changes
        ]
