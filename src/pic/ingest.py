"""Turn user-selected paths into pending entries."""
from __future__ import annotations

import asyncio
import inspect
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional, Union

from loguru import logger

from .engine import ImageEngine
from .logging import log_event
from .models import Candidate, ImageEntry, IngestFlags, Status, entry_id_for
from .paths import DEFAULT_MAX_DEPTH, display_name, resolve_paths
from .store import StateStore
from .utils import error_message
from .validator import Verdict, classify, is_duplicate, record


ConfirmCallback = Callable[[int], Union[bool, Awaitable[bool]]]


class IngestionPipeline:
    def __init__(
        self,
        store: StateStore,
        engine: ImageEngine,
        *,
        confirm: Optional[ConfirmCallback] = None,
        confirm_threshold: int = 0,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.store = store
        self.engine = engine
        self.confirm = confirm
        self.confirm_threshold = confirm_threshold
        self.max_depth = max_depth

    async def ingest(self, paths: Iterable[Union[str, Path]]) -> IngestFlags:
        """Resolve, classify and add `paths` to standby.

        Raises BusyError when another operation holds the store. Per-item
        problems never abort the run; they only show up in the returned flags.
        """
        paths = [Path(p).absolute() for p in paths]
        flags = IngestFlags()
        self.store.begin(Status.LOADING)
        try:
            resolved = await asyncio.to_thread(
                resolve_paths,
                paths,
                is_dir=self.engine.is_dir,
                list_dir=self.engine.list_images_one_level,
                max_depth=self.max_depth,
            )
            flags.saw_nested_directory = resolved.saw_nested_directory
            if resolved.unlisted:
                flags.unsupported_found = True
                flags.skipped += len(resolved.unlisted)
            candidates = resolved.candidates
            flags.result_was_empty = not candidates
            self.store.progress.total = len(candidates)

            if candidates and not await self._confirmed(len(candidates)):
                flags.declined = True
                log_event("ingest_declined", total=len(candidates), level="INFO")
                return flags

            # Paths accepted earlier in this run count as duplicates too
            standby_paths = self.store.standby_paths()
            for candidate in candidates:
                verdict = await self._ingest_one(candidate, standby_paths)
                record(flags, verdict)
                self.store.advance()
        finally:
            self.store.finish()

        log_event(
            "ingest_done",
            msg=f"added {flags.added}, skipped {flags.skipped}",
            added=flags.added,
            skipped=flags.skipped,
            duplicate=flags.duplicate_found or None,
            unsupported=flags.unsupported_found or None,
            nested=flags.saw_nested_directory or None,
        )
        return flags

    async def _confirmed(self, total: int) -> bool:
        if self.confirm is None or not self.confirm_threshold or total <= self.confirm_threshold:
            return True
        answer = self.confirm(total)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    async def _ingest_one(self, candidate: Candidate, standby_paths: set) -> Verdict:
        if is_duplicate(candidate, standby_paths):
            logger.debug("duplicate: {}", candidate.path)
            return Verdict.DUPLICATE
        try:
            meta = await self.engine.metadata(candidate.path)
        except Exception as e:
            logger.debug("unreadable {}: {}", candidate.path, error_message(e))
            return Verdict.UNSUPPORTED

        verdict = classify(candidate, standby_paths, meta.mime_type)
        if verdict is not Verdict.ACCEPTED:
            logger.debug("unsupported {} ({})", candidate.path, meta.mime_type)
            return verdict

        file_name = self.engine.base_name(candidate.path)
        entry = ImageEntry(
            id=entry_id_for(candidate.path),
            path=candidate.path,
            base_name=Path(file_name).stem,
            mime_type=meta.mime_type,
            size_before=meta.size,
            directory=candidate.directory,
            file_name=display_name(file_name, candidate.directory),
        )
        self.store.add_pending(entry)
        standby_paths.add(entry.path)
        return verdict
