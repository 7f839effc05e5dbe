import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest
from loguru import logger

from pic.events import ITEM_DONE, TOTAL_KNOWN, ProgressChannel
from pic.models import ConvertedItem, FileMeta
from pic.options import OptionsState
from pic.orchestrator import Orchestrator


class FakeEngine:
    """Scripted engine: files and folders live in dicts, results are configurable."""

    def __init__(self, channel: ProgressChannel) -> None:
        self.channel = channel
        self.files: Dict[Path, FileMeta] = {}
        self.dirs: Dict[Path, List[Path]] = {}
        self.unreadable: Set[Path] = set()
        self.unlistable: Set[Path] = set()
        self.metadata_errors: Dict[Path, Exception] = {}
        self.output_sizes: Dict[Path, int] = {}
        self.skip_sources: Set[Path] = set()  # silently missing from the result
        self.error: Optional[Exception] = None  # raised after processing
        self.existing: Set[Path] = set()  # sources whose outputs reconciliation finds
        self.reconcile_error: Optional[Exception] = None
        self.batches: List[list] = []
        self.reconciled: List[list] = []
        self.listeners_during_call: Optional[int] = None
        self.on_batch = None

    def add_file(self, path, mime="image/png", size=1000):
        self.files[Path(path)] = FileMeta(mime_type=mime, size=size)
        return Path(path)

    def add_dir(self, path, children):
        self.dirs[Path(path)] = [Path(c) for c in children]
        return Path(path)

    def is_dir(self, path):
        return Path(path) in self.dirs

    def list_images_one_level(self, dir_path):
        if Path(dir_path) in self.unlistable:
            raise PermissionError(f"Permission denied: {dir_path}")
        return list(self.dirs[Path(dir_path)])

    def base_name(self, path):
        return Path(path).name

    async def metadata(self, path):
        await asyncio.sleep(0)
        path = Path(path)
        if path in self.unreadable:
            raise PermissionError(f"Permission denied: {path}")
        if path in self.metadata_errors:
            raise self.metadata_errors[path]
        if path not in self.files:
            raise FileNotFoundError(str(path))
        return self.files[path]

    async def batch_convert(self, items, fmt, quality, output_dir):
        self.batches.append(list(items))
        self.listeners_during_call = self.channel.listener_count(ITEM_DONE)
        self.channel.emit(TOTAL_KNOWN, len(items))
        if self.on_batch is not None:
            self.on_batch(items)
        done = []
        for item in items:
            await asyncio.sleep(0)
            if item.source in self.skip_sources:
                continue
            self.channel.emit(ITEM_DONE)
            done.append(
                ConvertedItem(
                    id=item.id,
                    output_path=Path(output_dir, *item.directory, item.target_name),
                    output_size=self.output_sizes.get(item.source, 100),
                )
            )
        if self.error is not None:
            raise self.error
        return done

    async def reconcile_existing(self, items, output_dir):
        self.reconciled.append(list(items))
        if self.reconcile_error is not None:
            raise self.reconcile_error
        return [
            ConvertedItem(
                id=item.id,
                output_path=Path(output_dir, *item.directory, item.target_name),
                output_size=self.output_sizes.get(item.source, 100),
            )
            for item in items
            if item.source in self.existing
        ]


@pytest.fixture(autouse=True)
def quiet_logger():
    logger.remove()
    yield
    logger.remove()


@pytest.fixture
def channel():
    return ProgressChannel()


@pytest.fixture
def engine(channel):
    return FakeEngine(channel)


@pytest.fixture
def orch(engine, channel):
    return Orchestrator(
        engine,
        channel,
        options=OptionsState(format="webp", quality=80, output_dir="/out"),
        settle_delay=0,
    )
