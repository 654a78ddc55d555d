"""CLI entry point: ``codeloom index``, ``watch``, ``search`` and ``ask``."""

from __future__ import annotations

# Phase 1: Singleton logging, before any transitive litellm imports
from codeloom.logging_config import setup_logging

setup_logging()

import argparse  # noqa: E402
import asyncio  # noqa: E402
import sys  # noqa: E402
import uuid  # noqa: E402
from collections.abc import Callable  # noqa: E402
from pathlib import Path  # noqa: E402

from codeloom import __version__  # noqa: E402
from codeloom.agent.progress import ProgressEvent  # noqa: E402
from codeloom.agent.schemas import TaskInput  # noqa: E402
from codeloom.config import Settings, load_settings  # noqa: E402
from codeloom.constants import ProgressType, SyncEventKind  # noqa: E402
from codeloom.factory import Runtime, build_runtime  # noqa: E402
from codeloom.logging_config import (  # noqa: E402
    apply_settings_levels,
    cleanup_third_party_handlers,
)
from codeloom.relevancy.schemas import EditorState  # noqa: E402
from codeloom.resilience.errors import ConfigurationError  # noqa: E402
from codeloom.sync.service import SyncEvent  # noqa: E402
from codeloom.sync.watcher import WorkspaceWatcher  # noqa: E402

# Phase 2: Clear litellm's duplicate handlers after all imports
cleanup_third_party_handlers()


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"codeloom {__version__}")
        return
    if args.command is None:
        parser.print_help()
        return

    root = Path(args.path).resolve()
    if not root.is_dir():
        print(f"Error: {root} is not a directory", file=sys.stderr)
        sys.exit(1)

    try:
        settings = load_settings()
    except ConfigurationError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        sys.exit(2)
    apply_settings_levels(settings.log_level, settings.background_log_level)

    commands = {
        "index": _run_index,
        "watch": _run_watch,
        "search": _run_search,
        "ask": _run_ask,
    }
    try:
        code = asyncio.run(commands[args.command](args, settings, root))
    except KeyboardInterrupt:
        code = 130
    if code:
        sys.exit(code)


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="codeloom",
        description=(
            "Local code intelligence: index a workspace, retrieve "
            "relevant context and run plan/execute tasks over it."
        ),
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )

    sub = parser.add_subparsers(dest="command")

    index = sub.add_parser("index", help="Index a workspace once")
    index.add_argument("path", help="Workspace root")
    index.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Print one line per processed file",
    )

    watch = sub.add_parser(
        "watch",
        help="Index a workspace, then keep it in sync with edits",
    )
    watch.add_argument("path", help="Workspace root")
    watch.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Print one line per processed file",
    )

    search = sub.add_parser(
        "search",
        help="Print the ranked context for a query",
    )
    search.add_argument("path", help="Workspace root")
    search.add_argument("query", help="Natural-language query")
    _add_cursor_args(search)

    ask = sub.add_parser("ask", help="Plan and execute a task")
    ask.add_argument("path", help="Workspace root")
    ask.add_argument("query", help="Task description")
    _add_cursor_args(ask)

    return parser


def _add_cursor_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--file",
        "-f",
        default=None,
        help="Workspace-relative path of the file under the cursor",
    )
    parser.add_argument(
        "--line",
        "-l",
        type=int,
        default=None,
        help="1-based cursor line in --file",
    )


def _sync_printer(verbose: bool) -> Callable[[SyncEvent], None]:
    def on_event(event: SyncEvent) -> None:
        if verbose or event.kind == SyncEventKind.STORAGE_FAILED:
            detail = f" ({event.message})" if event.message else ""
            print(f"  [{event.kind}] {event.path}{detail}")

    return on_event


async def _index_workspace(runtime: Runtime) -> int:
    await runtime.sync.start()
    queued = await runtime.sync.scan_workspace()
    await runtime.sync.drain()
    return queued


async def _run_index(
    args: argparse.Namespace, settings: Settings, root: Path
) -> int:
    runtime = build_runtime(
        settings, root, on_sync_event=_sync_printer(args.verbose)
    )
    print(f"Indexing: {root}")
    try:
        queued = await _index_workspace(runtime)
    finally:
        await runtime.close()
    stats = runtime.sync.stats
    print(
        f"\nDone! {queued} files scanned "
        f"({stats.indexed} indexed, {stats.deleted} deleted, "
        f"{stats.skipped} skipped, {stats.storage_failed} failed)"
    )
    return 1 if stats.storage_failed else 0


async def _run_watch(
    args: argparse.Namespace, settings: Settings, root: Path
) -> int:
    runtime = build_runtime(
        settings, root, on_sync_event=_sync_printer(args.verbose)
    )
    watcher = WorkspaceWatcher(
        runtime.sync,
        asyncio.get_running_loop(),
        debounce_seconds=settings.sync_debounce_seconds,
    )
    try:
        await _index_workspace(runtime)
        watcher.start()
        print(f"Watching: {root} (Ctrl+C to stop)")
        await asyncio.Event().wait()
    except asyncio.CancelledError:
        pass
    finally:
        watcher.stop()
        await runtime.close()
    return 0


async def _run_search(
    args: argparse.Namespace, settings: Settings, root: Path
) -> int:
    runtime = build_runtime(settings, root, autostart_governor=False)
    try:
        await runtime.engine.initialize()
        context = await runtime.relevancy.get_context(
            args.query,
            EditorState(current_file=args.file, cursor_line=args.line),
        )
    finally:
        await runtime.close()

    if context.partial:
        print(
            "Warning: partial results, failed sources: "
            + ", ".join(context.failed_sources),
            file=sys.stderr,
        )
    if not context.items:
        print("No relevant context found.")
        return 0
    for rank, item in enumerate(context.items, 1):
        print(
            f"{rank:2d}. {item.current_score:.3f} [{item.source}] "
            f"{item.file_path}:{item.start_line}-{item.end_line} {item.id}"
        )
    return 0


def _print_progress(event: ProgressEvent) -> None:
    if event.type == ProgressType.PLAN and event.plan is not None:
        print(event.message)
        for i, step in enumerate(event.plan.steps, 1):
            print(f"  {i}. {step.description}")
    elif event.type == ProgressType.STEP:
        print(
            f"Step {event.step_number}/{event.total_steps}: "
            f"{event.description}"
        )
    elif event.message:
        print(event.message)


async def _run_ask(
    args: argparse.Namespace, settings: Settings, root: Path
) -> int:
    runtime = build_runtime(settings, root, progress=_print_progress)
    try:
        await runtime.engine.initialize()
        result = await runtime.agent.run_task(
            TaskInput(
                id=uuid.uuid4().hex,
                query=args.query,
                cursor_file=args.file,
                cursor_line=args.line,
            )
        )
    finally:
        await runtime.close()

    print()
    print(result.result)
    return 0 if result.error is None else 1
