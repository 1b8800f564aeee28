"""
Unified diff parsing.

The parser turns a unified diff string into one ``FilePatch`` per file
section, in patch order. It understands both git-style patches
(``diff --git`` headers with mode, rename and binary metadata) and plain
``---``/``+++`` patches. Hunk bodies are consumed by their declared line
counts, so removed lines that happen to start with ``--`` are never
mistaken for file headers.

Parsing is pure: it never looks at the file system. Classifying sections
against a workspace is the job of ``DiffModel``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal, Sequence

from ..errors import DiffParseError
from .hunks import Hunk, HunkLine

DEV_NULL = "/dev/null"

_HUNK_HEADER_RE = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))?"
    r" \+(?P<new_start>\d+)(?:,(?P<new_count>\d+))?"
    r" @@ ?(?P<section>.*)$"
)
_BINARY_RE = re.compile(r"^Binary files (?P<old>.+) and (?P<new>.+) differ$")

ChangeHint = Literal["add", "delete", "modify", "rename"]


@dataclass
class FilePatch:
    """
    One file section of a unified diff.

    ``old_path`` / ``new_path`` are None when the patch uses /dev/null.
    ``change_hint`` is what the headers suggest; it is advisory only.
    """

    old_path: str | None
    new_path: str | None
    change_hint: ChangeHint = "modify"
    hunks: list[Hunk] = field(default_factory=list)
    is_binary: bool = False

    @property
    def path(self) -> str:
        """The path this section is about: the new path unless deleted."""
        return self.new_path or self.old_path or ""


def _strip_prefix(path: str, prefix: str) -> str:
    return path[len(prefix):] if path.startswith(prefix) else path


def _parse_header_path(value: str, prefix: str) -> str | None:
    """Parse the path of a ``---``/``+++`` line, dropping any timestamp."""
    value = value.rstrip("\r").split("\t", 1)[0].strip()
    if value.startswith('"') and value.endswith('"') and len(value) > 1:
        value = value[1:-1]
    if value == DEV_NULL:
        return None
    return _strip_prefix(value, prefix)


def _is_section_start(lines: Sequence[str], i: int) -> bool:
    line = lines[i]
    if line.startswith("diff --git "):
        return True
    return line.startswith("--- ") and i + 1 < len(lines) and lines[i + 1].startswith("+++ ")


def parse_unified_diff(raw_diff: str) -> list[FilePatch]:
    """
    Parse a unified diff into file sections.

    Raises:
        DiffParseError: On malformed hunk headers or truncated hunks
    """
    lines = raw_diff.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    patches: list[FilePatch] = []
    i = 0
    # Skip any preamble (e.g. commit headers) until the first file section.
    while i < len(lines) and not _is_section_start(lines, i):
        i += 1

    while i < len(lines):
        if not _is_section_start(lines, i):
            i += 1
            continue
        file_patch, i = _parse_file_section(lines, i)
        patches.append(file_patch)

    return patches


def _parse_file_section(lines: Sequence[str], start_index: int) -> tuple[FilePatch, int]:
    """
    Parse one file section starting at ``start_index``.

    Returns a tuple of (FilePatch, next_index).
    """
    i = start_index
    patch = FilePatch(old_path=None, new_path=None)

    if lines[i].startswith("diff --git "):
        # Example: "diff --git a/path b/path"
        parts = lines[i].rstrip("\r").split()
        if len(parts) >= 4:
            patch.old_path = _strip_prefix(parts[-2], "a/")
            patch.new_path = _strip_prefix(parts[-1], "b/")
        i += 1

        while i < len(lines):
            line = lines[i].rstrip("\r")
            if line.startswith("diff --git ") or line.startswith("--- ") or line.startswith("@@"):
                break
            if line.startswith("new file mode "):
                patch.change_hint = "add"
            elif line.startswith("deleted file mode "):
                patch.change_hint = "delete"
            elif line.startswith("rename from "):
                patch.old_path = line[len("rename from "):].strip()
                patch.change_hint = "rename"
            elif line.startswith("rename to "):
                patch.new_path = line[len("rename to "):].strip()
                patch.change_hint = "rename"
            elif line.startswith("GIT binary patch"):
                patch.is_binary = True
            else:
                binary = _BINARY_RE.match(line)
                if binary:
                    patch.is_binary = True
                    if binary.group("old") == DEV_NULL:
                        patch.change_hint = "add"
                    if binary.group("new") == DEV_NULL:
                        patch.change_hint = "delete"
            i += 1

        if patch.change_hint == "add":
            patch.old_path = None
        elif patch.change_hint == "delete":
            patch.new_path = None

    if i + 1 < len(lines) and lines[i].startswith("--- ") and lines[i + 1].startswith("+++ "):
        patch.old_path = _parse_header_path(lines[i][4:], "a/")
        patch.new_path = _parse_header_path(lines[i + 1][4:], "b/")
        i += 2
        if patch.old_path is None:
            patch.change_hint = "add"
        elif patch.new_path is None:
            patch.change_hint = "delete"

    # Hunks until the next file section or EOF.
    while i < len(lines) and not _is_section_start(lines, i):
        if lines[i].startswith("@@"):
            hunk, i = _parse_hunk(lines, i, patch.path)
            patch.hunks.append(hunk)
        elif lines[i].startswith("GIT binary patch"):
            patch.is_binary = True
            i += 1
        else:
            i += 1

    return patch, i


def _parse_hunk(lines: Sequence[str], start_index: int, file_path: str) -> tuple[Hunk, int]:
    """Parse a single hunk whose header is at ``start_index``."""
    header = lines[start_index].rstrip("\r")
    match = _HUNK_HEADER_RE.match(header)
    if not match:
        raise DiffParseError(f"Malformed hunk header in {file_path}: {header!r}")

    hunk = Hunk(
        old_start=int(match.group("old_start")),
        old_count=int(match.group("old_count") or 1),
        new_start=int(match.group("new_start")),
        new_count=int(match.group("new_count") or 1),
        section=match.group("section").strip(),
    )

    remaining_old = hunk.old_count
    remaining_new = hunk.new_count
    i = start_index + 1

    while remaining_old > 0 or remaining_new > 0:
        if i >= len(lines):
            raise DiffParseError(f"Truncated hunk in {file_path}: {header!r}")
        line = lines[i]
        i += 1

        if line.startswith("\\"):
            if hunk.lines:
                hunk.lines[-1].no_newline = True
            continue

        if not line:
            # Some tools strip the single space of empty context lines.
            kind, content = " ", ""
        else:
            kind, content = line[0], line[1:]
        if kind not in (" ", "+", "-"):
            raise DiffParseError(f"Unexpected line in hunk of {file_path}: {line!r}")

        hunk.lines.append(HunkLine(kind=kind, content=content))  # type: ignore[arg-type]
        if kind != "+":
            remaining_old -= 1
        if kind != "-":
            remaining_new -= 1

    if remaining_old < 0 or remaining_new < 0:
        raise DiffParseError(f"Hunk line counts do not match header in {file_path}: {header!r}")

    # A trailing marker applies to the hunk's last line.
    if i < len(lines) and lines[i].startswith("\\"):
        if hunk.lines:
            hunk.lines[-1].no_newline = True
        i += 1

    return hunk, i
