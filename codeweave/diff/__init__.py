"""Diff Layer - unified diff parsing and workspace change nodes."""

from .hunks import Hunk, HunkLine, apply_hunks
from .model import (
    AddedChangeNode,
    ChangeNode,
    DeletedChangeNode,
    DiffModel,
    ModifiedChangeNode,
    classify,
)
from .parser import FilePatch, parse_unified_diff

__all__ = [
    "AddedChangeNode",
    "ChangeNode",
    "DeletedChangeNode",
    "DiffModel",
    "FilePatch",
    "Hunk",
    "HunkLine",
    "ModifiedChangeNode",
    "apply_hunks",
    "classify",
    "parse_unified_diff",
]
