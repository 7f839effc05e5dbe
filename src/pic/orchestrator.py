"""Single entry point wiring store, options, ingestion and conversion together.

Example:
    >>> orch = Orchestrator.from_settings(PicSettings.load())
    >>> flags = await orch.ingest(["~/Pictures/trip"])
    >>> outcome = await orch.convert()
    >>> orch.restore()  # undo the batch
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Optional, Union

from loguru import logger

from .config import PicSettings, SettingsStore
from .dispatcher import DEFAULT_SETTLE_DELAY, ConversionDispatcher
from .engine import ImageEngine, PillowEngine
from .events import ProgressChannel
from .ingest import ConfirmCallback, IngestionPipeline
from .models import ConversionOutcome, ImageEntry, IngestFlags, OutcomeKind, ProgressState
from .options import KeyValueStore, OptionsController, OptionsState
from .store import BusyError, StateStore, StoreChange


class Orchestrator:
    def __init__(
        self,
        engine: ImageEngine,
        channel: ProgressChannel,
        *,
        settings: Optional[KeyValueStore] = None,
        options: Optional[OptionsState] = None,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        confirm: Optional[ConfirmCallback] = None,
        confirm_threshold: int = 0,
    ) -> None:
        self.store = StateStore()
        self.channel = channel
        self.engine = engine
        self.options = OptionsController(self.store, settings, options)
        if options is None:
            self.options.load()
        self._ingestion = IngestionPipeline(
            self.store, engine, confirm=confirm, confirm_threshold=confirm_threshold
        )
        self._dispatcher = ConversionDispatcher(
            self.store, engine, channel, settle_delay=settle_delay
        )

    @classmethod
    def from_settings(
        cls,
        cfg: PicSettings,
        *,
        persist: bool = True,
        confirm: Optional[ConfirmCallback] = None,
    ) -> "Orchestrator":
        """Build an orchestrator around the default Pillow engine."""
        channel = ProgressChannel()
        return cls(
            PillowEngine(channel, workers=cfg.workers),
            channel,
            settings=SettingsStore(cfg.config_path) if persist else None,
            options=OptionsState(format=cfg.format, quality=cfg.quality, output_dir=cfg.output_dir),
            settle_delay=cfg.settle_delay,
            confirm=confirm,
            confirm_threshold=cfg.confirm_threshold,
        )

    # -- read side -----------------------------------------------------

    @property
    def is_locked(self) -> bool:
        return self.store.is_locked

    @property
    def progress(self) -> ProgressState:
        return self.store.progress

    @property
    def standby(self) -> Dict[str, ImageEntry]:
        return self.store.standby

    @property
    def complete(self) -> Dict[str, ImageEntry]:
        return self.store.complete

    @property
    def backup(self) -> Dict[str, ImageEntry]:
        return self.store.backup

    # -- operations ----------------------------------------------------

    async def ingest(self, paths: Iterable[Union[str, Path]]) -> IngestFlags:
        return await self._ingestion.ingest([Path(p).expanduser() for p in paths])

    async def convert(self) -> ConversionOutcome:
        if self.is_locked:
            raise BusyError(f"cannot convert while {self.progress.status.value}")
        if self.store.standby and not self.options.state.output_dir:
            logger.error("no output directory selected")
            return ConversionOutcome(
                kind=OutcomeKind.FAILED,
                message="no output directory selected",
                requested=len(self.store.standby),
            )
        return await self._dispatcher.convert(self.store.standby, self.options.state)

    def restore(self) -> StoreChange:
        change = self.store.restore()
        if change:
            logger.info("restored {} image(s) to standby", len(change.ids))
        return change

    def remove_item(self, entry_id: str) -> StoreChange:
        return self.store.remove_item(entry_id)

    def remove_all(self) -> StoreChange:
        return self.store.remove_all()

    def set_format(self, fmt: str) -> None:
        self.options.set_format(fmt)

    def set_quality(self, quality: int) -> None:
        self.options.set_quality(quality)

    def set_output(self, path: Union[str, Path]) -> bool:
        return self.options.set_output(path)

    def close(self) -> None:
        close = getattr(self.engine, "close", None)
        if close is not None:
            close()
