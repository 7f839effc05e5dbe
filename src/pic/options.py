"""Target format, quality and output directory, persisted on every change."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from loguru import logger

from .engine import SUPPORTED_FORMATS
from .store import StateStore


MIN_QUALITY = 1
MAX_QUALITY = 100


class KeyValueStore(Protocol):
    def get(self, key: str, default=None): ...

    def set(self, key: str, value) -> None: ...


@dataclass
class OptionsState:
    format: str = "webp"
    quality: int = 80
    output_dir: str = ""


def _validate_format(fmt: str) -> str:
    if fmt not in SUPPORTED_FORMATS:
        raise ValueError(f"Unknown format: {fmt}")
    return fmt


def _validate_quality(quality: int) -> int:
    quality = int(quality)
    if not MIN_QUALITY <= quality <= MAX_QUALITY:
        raise ValueError(f"quality must be between {MIN_QUALITY} and {MAX_QUALITY}, got {quality}")
    return quality


def _same_dir(a: str, b: str) -> bool:
    if not a or not b:
        return a == b
    return Path(a).expanduser().absolute() == Path(b).expanduser().absolute()


class OptionsController:
    def __init__(
        self,
        store: StateStore,
        settings: Optional[KeyValueStore] = None,
        state: Optional[OptionsState] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.state = state or OptionsState()

    def load(self) -> OptionsState:
        """Read persisted values once; missing or invalid ones keep their defaults."""
        if self.settings is None:
            return self.state
        fmt = self.settings.get("format")
        quality = self.settings.get("quality")
        output = self.settings.get("output_dir")
        try:
            if fmt:
                self.state.format = _validate_format(fmt)
            if quality:
                self.state.quality = _validate_quality(quality)
        except (TypeError, ValueError) as e:
            logger.warning("ignoring persisted option: {}", e)
        if output:
            self.state.output_dir = str(output)
        return self.state

    def _persist(self, key: str, value) -> None:
        if self.settings is not None:
            self.settings.set(key, value)

    def set_format(self, fmt: str) -> None:
        self.state.format = _validate_format(fmt)
        self._persist("format", fmt)

    def set_quality(self, quality: int) -> None:
        self.state.quality = _validate_quality(quality)
        self._persist("quality", self.state.quality)

    def set_output(self, path: str | Path) -> bool:
        """Change the output directory. Returns True if completed entries were invalidated.

        Completed paths point into the old directory, so a real change drops
        them; undo snapshots are kept.
        """
        path = str(path)
        if _same_dir(path, self.state.output_dir):
            return False
        change = self.store.clear_complete()
        if change:
            logger.info("output changed to {}; dropped {} completed entr(ies)", path, len(change.ids))
        self.state.output_dir = path
        self._persist("output_dir", path)
        return bool(change)
