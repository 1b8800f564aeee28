"""
Hunks and line-level patch application.

File text is split on ``\\n`` only, so a ``\\r`` from CRLF files stays part
of each line's content and line endings survive apply and revert.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from ..errors import PatchApplyError

NO_NEWLINE_MARKER = "\\ No newline at end of file"

LineKind = Literal[" ", "+", "-"]


@dataclass
class HunkLine:
    """One context, added or removed line of a hunk."""

    kind: LineKind
    content: str
    # Set when the line is followed by "\ No newline at end of file"
    no_newline: bool = False

    def render(self) -> list[str]:
        rendered = [f"{self.kind}{self.content}"]
        if self.no_newline:
            rendered.append(NO_NEWLINE_MARKER)
        return rendered


@dataclass
class Hunk:
    """A contiguous block of changes anchored to old and new line ranges."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[HunkLine] = field(default_factory=list)
    section: str = ""

    @property
    def header(self) -> str:
        header = f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"
        if self.section:
            header += f" {self.section}"
        return header

    @property
    def added_lines(self) -> list[str]:
        return [line.content for line in self.lines if line.kind == "+"]

    @property
    def removed_lines(self) -> list[str]:
        return [line.content for line in self.lines if line.kind == "-"]

    @property
    def old_lines(self) -> list[HunkLine]:
        return [line for line in self.lines if line.kind != "+"]

    @property
    def new_lines(self) -> list[HunkLine]:
        return [line for line in self.lines if line.kind != "-"]

    def inverted(self) -> "Hunk":
        """The hunk that undoes this one."""
        swap = {"+": "-", "-": "+", " ": " "}
        return Hunk(
            old_start=self.new_start,
            old_count=self.new_count,
            new_start=self.old_start,
            new_count=self.old_count,
            lines=[HunkLine(swap[line.kind], line.content, line.no_newline) for line in self.lines],
            section=self.section,
        )

    def render(self) -> list[str]:
        rendered = [self.header]
        for line in self.lines:
            rendered.extend(line.render())
        return rendered


def split_text(text: str) -> tuple[list[str], bool]:
    """Split file text into lines plus whether it ends with a newline."""
    if not text:
        return [], False
    if text.endswith("\n"):
        return text[:-1].split("\n"), True
    return text.split("\n"), False


def join_text(lines: list[str], trailing_newline: bool) -> str:
    if not lines:
        return ""
    return "\n".join(lines) + ("\n" if trailing_newline else "")


def _find_position(old: list[str], expected: list[str], preferred: int, lower_bound: int) -> int | None:
    """
    Locate ``expected`` in ``old`` at or after ``lower_bound``.

    The preferred position is tried first, then positions at growing
    distance from it, alternating after and before.
    """
    preferred = max(preferred, lower_bound)
    last_start = len(old) - len(expected)
    if last_start < lower_bound:
        return None

    def matches(pos: int) -> bool:
        return old[pos : pos + len(expected)] == expected

    max_distance = max(preferred - lower_bound, last_start - preferred)
    for distance in range(max_distance + 1):
        after = preferred + distance
        if after <= last_start and matches(after):
            return after
        before = preferred - distance
        if distance and lower_bound <= before <= last_start and matches(before):
            return before
    return None


def apply_hunks(old_text: str, hunks: list[Hunk], path: str = "") -> str:
    """
    Apply ``hunks`` in order to ``old_text`` and return the new text.

    Context and removed lines must match exactly; a hunk may land at an
    offset from its recorded position if the file has shifted.

    Raises:
        PatchApplyError: If a hunk's old side cannot be found
    """
    old, trailing_newline = split_text(old_text)
    result: list[str] = []
    cursor = 0

    for index, hunk in enumerate(hunks):
        expected = [line.content for line in hunk.old_lines]
        replacement = [line.content for line in hunk.new_lines]
        preferred = hunk.old_start if hunk.old_count == 0 else hunk.old_start - 1

        position = _find_position(old, expected, preferred, cursor)
        if position is None:
            raise PatchApplyError(
                f"Hunk {index + 1} ({hunk.header}) does not apply to {path or 'file'}"
            )

        result.extend(old[cursor:position])
        result.extend(replacement)
        cursor = position + len(expected)

        if cursor == len(old):
            new_side = hunk.new_lines
            old_side = hunk.old_lines
            if new_side:
                trailing_newline = not new_side[-1].no_newline
            elif old_side and old_side[-1].no_newline:
                trailing_newline = True

    result.extend(old[cursor:])
    return join_text(result, trailing_newline)


def new_side_text(hunks: list[Hunk]) -> str:
    """Concatenate the new side of every hunk, as for a created file."""
    lines: list[str] = []
    trailing_newline = True
    for hunk in hunks:
        new_side = hunk.new_lines
        lines.extend(line.content for line in new_side)
        if new_side:
            trailing_newline = not new_side[-1].no_newline
    return join_text(lines, trailing_newline)
