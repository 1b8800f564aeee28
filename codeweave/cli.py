#!/usr/bin/env python3
"""Command line interface for codeweave.

Commands:
- chat: interactive session (refine an approach, then generate code)
- show-diff: list the changes a patch would make to a workspace
- apply-diff: apply some or all changes of a patch
- fetch-archive: download one result archive from the HTTP backend
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .archive import download_export_result_archive
from .backend import ExportResultArchiveRequest, HttpGenerationBackend
from .config import CodeWeaveConfig
from .diff import DiffModel
from .errors import CodeWeaveError
from .files import WorkspaceFS
from .session import CodeGenState, Session, SessionConfig
from .telemetry import ArchiveRequestContext, LoggingMetricsSink

logger = logging.getLogger(__name__)

CHAT_HELP = """Commands:
  /codegen          start generating code for the current approach
  /apply [PATH...]  apply proposed changes (all by default)
  /revert           revert applied changes
  /diff             print the proposed patch
  /quit             leave the session
Anything else is sent to the backend. Send CLEAR to start over."""


def configure_logging(verbosity: int) -> None:
    """
    Configure the root logger based on a verbosity count.

    verbosity == 0 -> WARNING
    verbosity == 1 -> INFO
    verbosity >= 2 -> DEBUG
    """
    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _print_to_chat(content: str, kind: str) -> None:
    if kind != "summary":
        print(content)


def _diff_model_of(session: Session) -> DiffModel | None:
    state = session.state
    if isinstance(state, CodeGenState):
        return state.diff_model
    return None


async def _chat_command(session: Session, line: str) -> bool:
    """Handle one "/" command. Returns False when the user quits."""
    command, *args = line.split()
    fs = session.config.fs

    if command == "/quit":
        return False
    if command == "/codegen":
        for interaction in await session.start_codegen():
            print(interaction.content)
        return True

    model = _diff_model_of(session)
    if model is None:
        print("No code has been generated yet. Use /codegen first.")
        return True

    if command == "/apply":
        applied = model.apply_all(fs, paths=args or None)
        for node in applied:
            print(f"applied {node.change_type}: {node.relative_path}")
    elif command == "/revert":
        for node in model.revert_all(fs):
            print(f"reverted {node.change_type}: {node.relative_path}")
    elif command == "/diff":
        print(model.render_patch(), end="")
    else:
        print(CHAT_HELP)
    return True


async def run_chat(workspace: Path, config: CodeWeaveConfig) -> int:
    session = Session(SessionConfig.create(workspace, config), _print_to_chat)
    print(CHAT_HELP)
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue
            if line.startswith("/"):
                try:
                    if not await _chat_command(session, line):
                        break
                except Exception as e:
                    logger.debug("Chat command failed", exc_info=True)
                    print(f"codeweave: error: {e}", file=sys.stderr)
                continue
            for interaction in await session.send(line):
                print(interaction.content)
    finally:
        await session.config.backend.aclose()
    return 0


def run_show_diff(patch: Path, workspace: Path) -> int:
    model = DiffModel()
    model.parse_diff(patch, workspace)
    for line in model.summary_lines():
        print(line)
    return 0


def run_apply_diff(patch: Path, workspace: Path, only: list[str] | None, dry_run: bool) -> int:
    model = DiffModel()
    model.parse_diff(patch, workspace)
    if dry_run:
        for node in model.changes:
            if only is None or node.relative_path in only:
                print(f"would apply {node.change_type}: {node.relative_path}")
        return 0
    for node in model.apply_all(WorkspaceFS(workspace), paths=only):
        print(f"applied {node.change_type}: {node.relative_path}")
    return 0


async def run_fetch_archive(export_id: str, out: Path, config: CodeWeaveConfig) -> int:
    backend = HttpGenerationBackend(
        base_url=config.backend.base_url,
        api_key=config.backend.api_key,
        timeout=config.backend.timeout,
    )
    try:
        total = await download_export_result_archive(
            backend,
            ExportResultArchiveRequest(export_id=export_id),
            out,
            context=ArchiveRequestContext(job_id=export_id),
            metrics=LoggingMetricsSink(),
        )
    finally:
        await backend.aclose()
    print(f"Wrote {total} bytes to {out}")
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="codeweave",
        description="Iterative AI-assisted code transformation sessions.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity")
    parser.add_argument("--config", type=Path, default=None, help="Config file (default: ~/.codeweave/config.json)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    chat = subparsers.add_parser("chat", help="Start an interactive session")
    chat.add_argument("--workspace", type=Path, default=Path.cwd(), help="Workspace root")

    show = subparsers.add_parser("show-diff", help="List the changes a patch makes")
    show.add_argument("patch", type=Path)
    show.add_argument("--workspace", type=Path, default=Path.cwd(), help="Workspace root")

    apply = subparsers.add_parser("apply-diff", help="Apply changes from a patch")
    apply.add_argument("patch", type=Path)
    apply.add_argument("--workspace", type=Path, default=Path.cwd(), help="Workspace root")
    apply.add_argument("--only", action="append", default=None, metavar="PATH", help="Apply only this path (repeatable)")
    apply.add_argument("--dry-run", action="store_true", help="Show what would be applied")

    fetch = subparsers.add_parser("fetch-archive", help="Download a result archive")
    fetch.add_argument("export_id")
    fetch.add_argument("--out", type=Path, required=True, help="Destination file")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        if args.command == "show-diff":
            return run_show_diff(args.patch, args.workspace)
        if args.command == "apply-diff":
            return run_apply_diff(args.patch, args.workspace, args.only, args.dry_run)

        config = CodeWeaveConfig.load(args.config)
        if args.command == "chat":
            return asyncio.run(run_chat(args.workspace, config))
        if args.command == "fetch-archive":
            return asyncio.run(run_fetch_archive(args.export_id, args.out, config))
    except KeyboardInterrupt:
        return 130
    except (CodeWeaveError, OSError) as e:
        print(f"codeweave: error: {e}", file=sys.stderr)
        return 1
    return 2


if __name__ == "__main__":
    sys.exit(main())
