"""Exception types raised by codeweave.

Every error carries optional ``code`` and ``status_code`` attributes so the
session boundary can render a uniform diagnostic without knowing which layer
failed.
"""

from __future__ import annotations


class CodeWeaveError(Exception):
    """Base class for all codeweave errors."""

    code: str | None = None
    status_code: int | None = None

    def __init__(
        self,
        message: str = "",
        code: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class BackendError(CodeWeaveError):
    """Generation backend call failed."""

    code = "BackendError"


class EmptyResponseError(CodeWeaveError):
    """Archive export response carried no body stream."""

    code = "EmptyResponseError"

    def __init__(self, message: str = "Empty response from the generation backend streaming service"):
        super().__init__(message)


class ConversationIdNotFoundError(CodeWeaveError):
    """Code generation requested before a conversation was established."""

    code = "ConversationIdNotFound"

    def __init__(self, message: str = "Conversation id must exist before starting code generation"):
        super().__init__(message)


class CodeGenerationFailedError(CodeWeaveError):
    """Backend reported the code generation job as failed."""

    code = "CodeGenerationFailed"


class CodeGenerationTimeoutError(CodeWeaveError):
    """Code generation job did not finish within the polling budget."""

    code = "CodeGenerationTimeout"


class ArchiveLayoutError(CodeWeaveError):
    """Result archive is missing a required entry or holds an unsafe path."""

    code = "ArchiveLayoutError"


class DiffParseError(CodeWeaveError):
    """Unified diff could not be parsed."""

    code = "DiffParseError"


class PatchApplyError(CodeWeaveError):
    """A change could not be applied to or reverted from the workspace."""

    code = "PatchApplyError"


class OperationCancelledError(CodeWeaveError):
    """In-flight work was cancelled by its owning session state."""

    code = "OperationCancelled"
