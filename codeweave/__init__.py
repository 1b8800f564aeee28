"""codeweave: iterative AI-assisted code transformation sessions.

A user describes a task, a generation backend proposes an approach and
then code, and every code generation turn's result archive is retrieved,
unpacked and structured into reviewable, selectively applicable changes.

Layers:
- Session: conversation state machine (refinement -> code generation)
- Archive: chunked result archive retrieval
- Diff: unified diff parsing into workspace change nodes
"""

__version__ = "0.1.0"

# Session Layer
from .session import CodeGenState, RefinementState, Session, SessionConfig

# Archive Layer
from .archive import ExportResultArchiveStructure, download_export_result_archive, extract_result_archive

# Diff Layer
from .diff import AddedChangeNode, ChangeNode, DeletedChangeNode, DiffModel, ModifiedChangeNode

# Types & Config
from .config import CodeWeaveConfig
from .errors import CodeWeaveError, ConversationIdNotFoundError, EmptyResponseError
from .types import Interaction

__all__ = [
    # Session
    "CodeGenState",
    "RefinementState",
    "Session",
    "SessionConfig",
    # Archive
    "ExportResultArchiveStructure",
    "download_export_result_archive",
    "extract_result_archive",
    # Diff
    "AddedChangeNode",
    "ChangeNode",
    "DeletedChangeNode",
    "DiffModel",
    "ModifiedChangeNode",
    # Types & Config
    "CodeWeaveConfig",
    "CodeWeaveError",
    "ConversationIdNotFoundError",
    "EmptyResponseError",
    "Interaction",
]
