"""Batch conversion: dispatch, progress, reconciliation and commit."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from loguru import logger

from .engine import ImageEngine
from .events import ITEM_DONE, TOTAL_KNOWN, ProgressChannel
from .logging import log_event, truncate
from .models import (
    BatchItem,
    ConversionOutcome,
    ConvertedItem,
    ImageEntry,
    OutcomeKind,
    Status,
)
from .options import OptionsState
from .paths import display_name, target_name
from .store import StateStore
from .utils import error_message


DEFAULT_SETTLE_DELAY = 0.4


def build_batch(snapshot: Mapping[str, ImageEntry], fmt: str) -> List[BatchItem]:
    return [
        BatchItem(
            id=entry_id,
            source=entry.path,
            target_name=target_name(entry.base_name, fmt),
            directory=entry.directory,
        )
        for entry_id, entry in snapshot.items()
    ]


def completed_entry(orig: ImageEntry, item: ConvertedItem, fmt: str) -> ImageEntry:
    name = target_name(orig.base_name, fmt)
    return replace(
        orig,
        path=Path(item.output_path),
        file_name=display_name(name, orig.directory),
        mime_type=f"image/{fmt}",
        size_after=item.output_size,
    )


def classify_outcome(converted: int, requested: int) -> OutcomeKind:
    if converted == 0:
        return OutcomeKind.FAILED
    if converted < requested:
        return OutcomeKind.PARTIAL
    return OutcomeKind.SUCCESS


class ConversionDispatcher:
    def __init__(
        self,
        store: StateStore,
        engine: ImageEngine,
        channel: ProgressChannel,
        *,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ) -> None:
        self.store = store
        self.engine = engine
        self.channel = channel
        self.settle_delay = settle_delay

    async def convert(
        self, snapshot: Mapping[str, ImageEntry], options: OptionsState
    ) -> ConversionOutcome:
        """Convert every entry in `snapshot` and move the successes to complete.

        Engine errors never escape: they are folded into the outcome. Entries
        that did not convert stay in standby for an explicit retry.
        """
        snapshot = dict(snapshot)
        if not snapshot:
            return ConversionOutcome(kind=OutcomeKind.SUCCESS)

        items = build_batch(snapshot, options.format)
        output_dir = Path(options.output_dir)
        self.store.begin(Status.CONVERTING, total=len(items))
        log_event(
            "convert_start",
            msg=f"converting {len(items)} image(s) to {options.format}",
            total=len(items),
            format=options.format,
            quality=options.quality,
            output=str(output_dir),
        )
        try:
            succeeded, message = await self._dispatch(items, options, output_dir)
            converted, committed = self._apply(snapshot, succeeded, options.format)
            if self.settle_delay:
                await asyncio.sleep(self.settle_delay)
        finally:
            self.store.finish()

        outcome = ConversionOutcome(
            kind=classify_outcome(converted, len(snapshot)),
            message=message,
            converted=converted,
            requested=len(snapshot),
            converted_ids=tuple(committed),
        )
        if outcome.kind is OutcomeKind.FAILED and outcome.message is None:
            outcome = replace(outcome, message="no images were converted")
        log_event(
            "convert_done",
            msg=f"{outcome.kind.value}: {outcome.converted}/{outcome.requested}",
            level="INFO" if outcome.ok else "WARNING",
            outcome=outcome.kind.value,
            converted=outcome.converted,
            requested=outcome.requested,
            error=outcome.message,
        )
        return outcome

    async def _dispatch(
        self, items: List[BatchItem], options: OptionsState, output_dir: Path
    ) -> tuple[List[ConvertedItem], Optional[str]]:
        handlers = {
            ITEM_DONE: lambda *_: self.store.advance(),
            TOTAL_KNOWN: self._on_total,
        }
        try:
            with self.channel.listening(handlers):
                succeeded = await self.engine.batch_convert(
                    items, options.format, options.quality, output_dir
                )
            if len(succeeded) < len(items):
                logger.warning(
                    "engine returned {} of {} results without an error", len(succeeded), len(items)
                )
            return list(succeeded), None
        except Exception as e:
            message = truncate(error_message(e))
            logger.warning("batch conversion failed: {}", message)

        return await self._reconcile(items, output_dir), message

    async def _reconcile(self, items: List[BatchItem], output_dir: Path) -> List[ConvertedItem]:
        try:
            found = await self.engine.reconcile_existing(items, output_dir)
        except Exception as e:
            logger.error("reconciliation against {} failed: {}", output_dir, e)
            return []
        log_event(
            "reconciled",
            msg=f"recovered {len(found)} of {len(items)} output(s)",
            recovered=len(found),
            requested=len(items),
        )
        return list(found)

    def _on_total(self, total: int) -> None:
        self.store.progress.total = total

    def _apply(
        self, snapshot: Dict[str, ImageEntry], succeeded: List[ConvertedItem], fmt: str
    ) -> tuple[int, List[str]]:
        """Commit results that match the snapshot; returns (matched, committed ids)."""
        done: List[ImageEntry] = []
        seen = set()
        for item in succeeded:
            orig = snapshot.get(item.id)
            if orig is None or item.id in seen:
                continue
            seen.add(item.id)
            done.append(completed_entry(orig, item, fmt))
        change = self.store.commit_batch(done)
        return len(done), list(change.ids)
