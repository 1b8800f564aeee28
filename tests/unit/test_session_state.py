"""Tests for RefinementState and CodeGenState."""

import asyncio
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from codeweave.archive import extract_result_archive
from codeweave.config import CodeGenConfig
from codeweave.errors import (
    CodeGenerationFailedError,
    CodeGenerationTimeoutError,
    EmptyResponseError,
)
from codeweave.files import WorkspaceFS
from codeweave.session import CodeGenState, RefinementState
from codeweave.session.session_state import with_conversation_id
from codeweave.telemetry import RecordingMetricsSink
from codeweave.types import SessionStateAction, SessionStateConfig

from fakes import ADDED_FILE_PATCH, MODIFIED_FILE_PATCH, README_CONTENT, FakeBackend, build_archive


@pytest.fixture
def state_config_factory(workspace: Path, tmp_path: Path, metrics: RecordingMetricsSink):
    def factory(backend, conversation_id: str = "", max_poll_attempts: int = 5) -> SessionStateConfig:
        return SessionStateConfig(
            backend=backend,
            workspace_root=workspace,
            session_id="session-1",
            codegen=CodeGenConfig(
                poll_interval=0,
                max_poll_attempts=max_poll_attempts,
                archive_dir=str(tmp_path / "archives"),
            ),
            metrics=metrics,
            conversation_id=conversation_id,
        )

    return factory


def _action(workspace: Path, msg=None, add_to_chat=None) -> SessionStateAction:
    return SessionStateAction(
        task="Migrate to Maven",
        files=[],
        fs=WorkspaceFS(workspace),
        add_to_chat=add_to_chat or MagicMock(),
        msg=msg,
    )


class TestRefinementState:
    """Tests for RefinementState.interact."""

    @pytest.mark.asyncio
    async def test_creates_conversation_and_returns_approach(self, state_config_factory, workspace):
        backend = FakeBackend(approach="1. Swap build files")
        state = RefinementState(state_config_factory(backend), approach="")

        result = await state.interact(_action(workspace, msg="Migrate to Maven"))

        assert state.conversation_id == "conv-1"
        assert state.approach == "1. Swap build files"
        assert [i.content for i in result.interactions] == ["1. Swap build files"]
        assert result.next_state is None

    @pytest.mark.asyncio
    async def test_reuses_existing_conversation(self, state_config_factory, workspace):
        backend = FakeBackend()
        state = RefinementState(state_config_factory(backend, conversation_id="conv-9"), approach="")

        await state.interact(_action(workspace))

        assert backend.conversations_created == 0
        assert backend.approach_calls[0][0] == "conv-9"

    @pytest.mark.asyncio
    async def test_cancelled_mid_call_returns_nothing(self, state_config_factory, workspace):
        """A result arriving after cancellation is dropped."""
        backend = FakeBackend(approach="late approach")
        state = RefinementState(state_config_factory(backend), approach="kept")
        backend.on_approach = state.token_source.cancel

        result = await state.interact(_action(workspace))

        assert result.interactions == []
        assert state.approach == "kept"


class TestCodeGenState:
    """Tests for CodeGenState.interact."""

    def test_requires_conversation_id(self, state_config_factory):
        with pytest.raises(ValueError):
            CodeGenState(state_config_factory(FakeBackend()), approach="")

    @pytest.mark.asyncio
    async def test_generation_turn_builds_diff_model(self, state_config_factory, workspace, metrics):
        backend = FakeBackend(archive=build_archive(ADDED_FILE_PATCH, summary="Adds new.txt"))
        state = CodeGenState(state_config_factory(backend, conversation_id="conv-1"), approach="1. Add")
        add_to_chat = MagicMock()

        result = await state.interact(_action(workspace, add_to_chat=add_to_chat))

        assert state.job_id == "job-1"
        assert state.summary == "Adds new.txt"
        assert [n.relative_path for n in state.diff_model.changes] == ["src/new.txt"]
        assert [(i.type, i.content) for i in result.interactions] == [
            ("summary", "Adds new.txt"),
            ("code-changes", "added: src/new.txt (+2 -0)"),
        ]
        add_to_chat.assert_called_once_with("Adds new.txt", "summary")
        assert backend.codegen_calls[0][:3] == ("conv-1", "1. Add", "Migrate to Maven")

    @pytest.mark.asyncio
    async def test_export_request_and_telemetry(self, state_config_factory, workspace, metrics):
        """The archive is requested for the job and reported with session and job ids."""
        archive = build_archive(ADDED_FILE_PATCH)
        backend = FakeBackend(archive=archive)
        state = CodeGenState(state_config_factory(backend, conversation_id="conv-1"), approach="")

        await state.interact(_action(workspace))

        [request] = backend.export_requests
        assert request.export_id == "job-1"
        assert request.export_intent == "CODE_GENERATION"
        assert request.conversation_id == "conv-1"
        [event] = metrics.events
        assert event.api_name == "ExportResultArchive"
        assert event.session_id == "session-1"
        assert event.job_id == "job-1"
        assert event.total_byte_size == len(archive)

    @pytest.mark.asyncio
    async def test_archive_work_runs_off_event_loop(self, state_config_factory, workspace):
        """Extraction and diff parsing run in worker threads."""
        backend = FakeBackend(archive=build_archive(ADDED_FILE_PATCH))
        state = CodeGenState(state_config_factory(backend, conversation_id="conv-1"), approach="")
        loop_thread = threading.get_ident()
        seen = {}

        def record(name, func):
            def wrapper(*args, **kwargs):
                seen[name] = threading.get_ident()
                return func(*args, **kwargs)

            return wrapper

        with patch(
            "codeweave.session.session_state.extract_result_archive",
            record("extract", extract_result_archive),
        ), patch.object(state.diff_model, "parse_diff", record("parse", state.diff_model.parse_diff)):
            await state.interact(_action(workspace))

        assert set(seen) == {"extract", "parse"}
        assert loop_thread not in seen.values()
        assert [n.relative_path for n in state.diff_model.changes] == ["src/new.txt"]

    @pytest.mark.asyncio
    async def test_classifies_against_workspace(self, state_config_factory, workspace):
        (workspace / "README.md").write_text(README_CONTENT)
        backend = FakeBackend(archive=build_archive(MODIFIED_FILE_PATCH))
        state = CodeGenState(state_config_factory(backend, conversation_id="conv-1"), approach="")

        result = await state.interact(_action(workspace))

        assert [i.type for i in result.interactions] == ["code-changes"]
        assert result.interactions[0].content == "modified: README.md (+1 -1)"

    @pytest.mark.asyncio
    async def test_polls_until_complete(self, state_config_factory, workspace):
        backend = FakeBackend(
            archive=build_archive(ADDED_FILE_PATCH),
            statuses=["InProgress", "InProgress", "Complete"],
        )
        state = CodeGenState(state_config_factory(backend, conversation_id="conv-1"), approach="")

        await state.interact(_action(workspace))

        assert backend.status_calls == 3

    @pytest.mark.asyncio
    async def test_failed_job_raises(self, state_config_factory, workspace):
        backend = FakeBackend(archive=build_archive(ADDED_FILE_PATCH), statuses=["Failed"])
        state = CodeGenState(state_config_factory(backend, conversation_id="conv-1"), approach="")

        with pytest.raises(CodeGenerationFailedError, match="model error"):
            await state.interact(_action(workspace))

        assert backend.export_requests == []

    @pytest.mark.asyncio
    async def test_poll_budget_exhausted_raises(self, state_config_factory, workspace):
        backend = FakeBackend(archive=build_archive(ADDED_FILE_PATCH), statuses=["InProgress"])
        state = CodeGenState(
            state_config_factory(backend, conversation_id="conv-1", max_poll_attempts=3),
            approach="",
        )

        with pytest.raises(CodeGenerationTimeoutError):
            await state.interact(_action(workspace))

        assert backend.status_calls == 3

    @pytest.mark.asyncio
    async def test_missing_archive_body_raises(self, state_config_factory, workspace):
        backend = FakeBackend(archive=None)
        state = CodeGenState(state_config_factory(backend, conversation_id="conv-1"), approach="")

        with pytest.raises(EmptyResponseError):
            await state.interact(_action(workspace))

    @pytest.mark.asyncio
    async def test_cancelled_while_polling_returns_nothing(self, state_config_factory, workspace):
        backend = FakeBackend(archive=build_archive(ADDED_FILE_PATCH), statuses=["InProgress"])
        state = CodeGenState(state_config_factory(backend, conversation_id="conv-1"), approach="")
        backend.on_status = state.token_source.cancel

        result = await state.interact(_action(workspace))

        assert result.interactions == []
        assert backend.status_calls == 1
        assert backend.export_requests == []
        assert state.diff_model.changes == ()

    @pytest.mark.asyncio
    async def test_cancel_interrupts_poll_sleep(self, state_config_factory, workspace, tmp_path):
        """Cancelling during the wait between polls ends the turn promptly."""
        backend = FakeBackend(archive=build_archive(ADDED_FILE_PATCH), statuses=["InProgress"])
        config = state_config_factory(backend, conversation_id="conv-1")
        config.codegen = CodeGenConfig(poll_interval=30, max_poll_attempts=5, archive_dir=str(tmp_path))
        state = CodeGenState(config, approach="")

        task = asyncio.create_task(state.interact(_action(workspace)))
        while backend.status_calls == 0:
            await asyncio.sleep(0)
        state.token_source.cancel()
        result = await asyncio.wait_for(task, timeout=5)

        assert result.interactions == []

    @pytest.mark.asyncio
    async def test_end_to_end_apply(self, state_config_factory, workspace):
        """Proposed changes can be applied to the workspace and reverted."""
        (workspace / "README.md").write_text(README_CONTENT)
        backend = FakeBackend(archive=build_archive(MODIFIED_FILE_PATCH + ADDED_FILE_PATCH))
        state = CodeGenState(state_config_factory(backend, conversation_id="conv-1"), approach="")
        fs = WorkspaceFS(workspace)

        await state.interact(_action(workspace))
        state.diff_model.apply_all(fs)

        assert "Maven" in (workspace / "README.md").read_text()
        assert (workspace / "src" / "new.txt").read_text() == "hello\nworld\n"

        state.diff_model.revert_all(fs)
        assert (workspace / "README.md").read_text() == README_CONTENT
        assert not (workspace / "src" / "new.txt").exists()


def test_with_conversation_id_copies_config(state_config_factory):
    config = state_config_factory(FakeBackend())

    bound = with_conversation_id(config, "conv-5")

    assert bound.conversation_id == "conv-5"
    assert config.conversation_id == ""
    assert bound.backend is config.backend
