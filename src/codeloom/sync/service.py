"""Incremental sync: file changes → parse → embed → store → index.

Changes are coalesced per path, queued, and processed by a pool of
asyncio workers sized by the resource governor. All work for one path
runs under that path's lock, so parse/embed/store for a file never
interleaves with another unit for the same file.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from codeloom.constants import (
    GOVERNOR_POLL_SECONDS,
    STORAGE_RETRY_WAIT,
    STORAGE_WRITE_ATTEMPTS,
    ChangeKind,
    SyncEventKind,
)
from codeloom.governor import ResourceGovernor
from codeloom.intelligence.engine import LocalCodeIntelligenceEngine
from codeloom.intelligence.parser import CodeParser
from codeloom.intelligence.schemas import (
    CodeElement,
    ElementRelation,
    ParsedFile,
)
from codeloom.intelligence.vector_index import VectorEntry
from codeloom.resilience.errors import (
    DatabaseError,
    EmbeddingError,
    ParsingError,
    VectorIndexError,
)
from codeloom.sync.scanner import load_ignore_spec, walk_source_files

logger = logging.getLogger(__name__)

# Calls to names defined in more places than this are too ambiguous to link.
MAX_CALL_TARGETS = 5


@dataclass(frozen=True)
class FileChange:
    path: str  # workspace-relative, POSIX separators
    kind: ChangeKind


@dataclass(frozen=True)
class SyncEvent:
    path: str
    kind: SyncEventKind
    message: str = ""


@dataclass
class SyncStats:
    indexed: int = 0
    deleted: int = 0
    skipped: int = 0
    storage_failed: int = 0
    deferred: int = 0


def coalesce(existing: ChangeKind | None, incoming: ChangeKind) -> ChangeKind:
    """Merge a new change into the pending change for the same path.

    A delete supersedes anything pending; a create or modify after a
    pending delete re-indexes the file; a create stays a create.
    """
    if incoming == ChangeKind.DELETED:
        return ChangeKind.DELETED
    if existing == ChangeKind.DELETED:
        return ChangeKind.MODIFIED
    if existing == ChangeKind.CREATED:
        return ChangeKind.CREATED
    return incoming


def _embedding_text(element: CodeElement) -> str:
    return f"{element.type} {element.name}\n{element.content}"


class SyncService:
    """Single writer for the code store and the vector index."""

    def __init__(
        self,
        root: Path,
        engine: LocalCodeIntelligenceEngine,
        governor: ResourceGovernor,
        *,
        parser: CodeParser | None = None,
        concurrency: int = 0,
        skip_dirs: set[str] | None = None,
        poll_interval: float = GOVERNOR_POLL_SECONDS,
        on_event: Callable[[SyncEvent], None] | None = None,
    ) -> None:
        self.root = root
        self._engine = engine
        self._governor = governor
        self._parser = parser or CodeParser()
        self._concurrency = concurrency
        self.skip_dirs = skip_dirs or set()
        self._poll_interval = poll_interval
        self._on_event = on_event
        self._pending: dict[str, ChangeKind] = {}
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        # Never dropped: a waiter on a removed lock would race a new one.
        self._path_locks: dict[str, asyncio.Lock] = {}
        self._workers: list[asyncio.Task[None]] = []
        self._listeners: list[Callable[[str], object]] = []
        self.stats = SyncStats()

    # ── Lifecycle ──────────────────────────────────────────

    def worker_count(self) -> int:
        baseline = self._governor.get_baseline_concurrency()
        if self._concurrency > 0:
            baseline = min(baseline, self._concurrency)
        return max(self._governor.get_min_concurrency(), baseline)

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers:
            return
        await self._engine.initialize()
        count = self.worker_count()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"sync-worker-{i}")
            for i in range(count)
        ]
        logger.info("event=sync_started workers=%d root=%s", count, self.root)

    async def drain(self) -> None:
        """Wait until every queued change has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers and persist the vector index."""
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        try:
            await self._engine.index.save()
        except VectorIndexError:
            logger.warning("event=vector_index_save_failed", exc_info=True)
        logger.info("event=sync_stopped stats=%s", self.stats)

    def add_change_listener(self, listener: Callable[[str], object]) -> None:
        """Run ``listener(path)`` after a file is indexed or deleted."""
        self._listeners.append(listener)

    # ── Intake ─────────────────────────────────────────────

    def enqueue(self, change: FileChange) -> None:
        existing = self._pending.get(change.path)
        self._pending[change.path] = coalesce(existing, change.kind)
        if existing is None:
            self._queue.put_nowait(change.path)

    def pending(self) -> dict[str, ChangeKind]:
        return dict(self._pending)

    async def scan_workspace(self) -> int:
        """Queue every indexable file, plus deletes for vanished ones.

        Returns the number of files queued for indexing.
        """
        spec = await asyncio.to_thread(load_ignore_spec, self.root)
        files = await asyncio.to_thread(
            walk_source_files, self.root, self.skip_dirs, spec
        )
        seen: set[str] = set()
        for path in files:
            rel = path.relative_to(self.root).as_posix()
            seen.add(rel)
            self.enqueue(FileChange(rel, ChangeKind.CREATED))
        for stale in sorted(self._engine.index.file_paths() - seen):
            self.enqueue(FileChange(stale, ChangeKind.DELETED))
        logger.info(
            "event=workspace_scanned root=%s files=%d", self.root, len(seen)
        )
        return len(seen)

    # ── Workers ────────────────────────────────────────────

    async def _worker(self, worker_id: int) -> None:
        while True:
            path = await self._queue.get()
            try:
                await self._wait_for_admission()
                kind = self._pending.pop(path, None)
                if kind is None:
                    continue
                lock = self._path_locks.setdefault(path, asyncio.Lock())
                async with lock:
                    await self.process(path, kind)
            except Exception:
                logger.exception(
                    "event=sync_unit_failed worker=%d path=%s",
                    worker_id,
                    path,
                )
            finally:
                self._queue.task_done()

    async def _wait_for_admission(self) -> None:
        """Defer (never drop) work while the governor reports load."""
        deferred = False
        while not self._governor.can_dispatch_task():
            if not deferred:
                deferred = True
                self.stats.deferred += 1
                logger.info("event=sync_deferred reason=under_load")
            await asyncio.sleep(self._poll_interval)

    async def process(self, path: str, kind: ChangeKind) -> None:
        """Apply one change; per-file failures are reported, not raised."""
        if kind == ChangeKind.DELETED:
            await self._delete(path)
        else:
            await self._index(path)

    async def _index(self, path: str) -> None:
        abs_path = self.root / path
        try:
            source = await asyncio.to_thread(
                abs_path.read_text, encoding="utf-8", errors="replace"
            )
        except FileNotFoundError:
            await self._delete(path)
            return
        except OSError as exc:
            self._skip(path, f"unreadable: {exc}")
            return

        try:
            parsed = await asyncio.to_thread(self._parser.parse, path, source)
        except ParsingError as exc:
            self._skip(path, f"parse failed: {exc}")
            return

        try:
            vectors = await self._engine.embedder.embed(
                [_embedding_text(e) for e in parsed.elements]
            )
        except EmbeddingError as exc:
            self._skip(path, f"embedding failed: {exc}")
            return

        relations = list(parsed.relations)
        relations.extend(await self._resolve_refs(parsed))
        entries = [
            VectorEntry(e.id, path, v)
            for e, v in zip(parsed.elements, vectors, strict=True)
        ]
        try:
            self._engine.index.check_entries(entries)
        except VectorIndexError as exc:
            self._skip(path, f"vector index rejected file: {exc}")
            return

        try:
            await self._store_with_retry(path, parsed.elements, relations)
        except DatabaseError as exc:
            self._storage_failed(path, exc)
            return

        try:
            self._engine.index.upsert_file(path, entries)
        except VectorIndexError as exc:
            # Rows are already committed; the index is now behind storage.
            self._storage_failed(path, exc)
            return

        self.stats.indexed += 1
        logger.debug(
            "event=file_indexed path=%s elements=%d relations=%d",
            path,
            len(parsed.elements),
            len(relations),
        )
        self._emit(
            SyncEvent(
                path,
                SyncEventKind.INDEXED,
                f"{len(parsed.elements)} elements",
            )
        )
        self._notify(path)

    async def _delete(self, path: str) -> None:
        try:
            async for attempt in self._storage_retrying():
                with attempt:
                    removed = await self._engine.store.delete_file(path)
        except DatabaseError as exc:
            self._storage_failed(path, exc)
            return
        self._engine.index.remove_file(path)
        self.stats.deleted += 1
        logger.debug("event=file_removed path=%s elements=%d", path, len(removed))
        self._emit(SyncEvent(path, SyncEventKind.DELETED))
        self._notify(path)

    async def _resolve_refs(self, parsed: ParsedFile) -> list[ElementRelation]:
        """Link call/import/use names to element ids by name."""
        if not parsed.unresolved_refs:
            return []
        local: dict[str, list[str]] = {}
        for element in parsed.elements:
            local.setdefault(element.name, []).append(element.id)
        names = {name for _, name, _ in parsed.unresolved_refs}
        found = await self._engine.store.find_ids_by_name(
            names - local.keys()
        )
        own_prefix = f"{parsed.file_path}#"
        relations: list[ElementRelation] = []
        for owner_id, name, relation_type in parsed.unresolved_refs:
            targets = local.get(name) or [
                t for t in found.get(name, []) if not t.startswith(own_prefix)
            ]
            if not targets or len(targets) > MAX_CALL_TARGETS:
                continue
            relations.extend(
                ElementRelation(
                    from_id=owner_id, to_id=target, relation_type=relation_type
                )
                for target in targets
                if target != owner_id
            )
        return relations

    def _storage_retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(STORAGE_WRITE_ATTEMPTS),
            wait=wait_fixed(STORAGE_RETRY_WAIT),
            retry=retry_if_exception_type(DatabaseError),
            reraise=True,
        )

    async def _store_with_retry(
        self,
        path: str,
        elements: list[CodeElement],
        relations: list[ElementRelation],
    ) -> None:
        async for attempt in self._storage_retrying():
            with attempt:
                await self._engine.store.replace_file(path, elements, relations)

    # ── Events ─────────────────────────────────────────────

    def _skip(self, path: str, reason: str) -> None:
        self.stats.skipped += 1
        logger.warning("event=sync_file_skipped path=%s reason=%s", path, reason)
        self._emit(SyncEvent(path, SyncEventKind.SKIPPED, reason))

    def _storage_failed(self, path: str, exc: Exception) -> None:
        self.stats.storage_failed += 1
        logger.error("event=sync_storage_failed path=%s error=%s", path, exc)
        self._emit(SyncEvent(path, SyncEventKind.STORAGE_FAILED, str(exc)))

    def _emit(self, event: SyncEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception:
            logger.warning("event=sync_event_callback_failed", exc_info=True)

    def _notify(self, path: str) -> None:
        for listener in self._listeners:
            try:
                listener(path)
            except Exception:
                logger.warning(
                    "event=change_listener_failed path=%s", path, exc_info=True
                )
