"""Encoding engine: per-file introspection, batch encode and reconciliation.

`ImageEngine` is the interface the orchestrator consumes. `PillowEngine` is
the default implementation: Pillow does the decoding/encoding, a thread pool
bounds parallelism, and progress is emitted on the event loop thread after
each item finishes.

Outputs are written atomically: the encoder writes to a temporary file in the
destination directory and renames it on success, so a failed item never leaves
a truncated file that reconciliation would mistake for a finished one.
"""
from __future__ import annotations

import asyncio
import os
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from loguru import logger
from PIL import Image, ImageOps, UnidentifiedImageError, features

from .events import ITEM_DONE, TOTAL_KNOWN, ProgressChannel
from .models import BatchItem, ConvertedItem, FileMeta
from .paths import is_active_dir, list_images_one_level, output_path_for
from .utils import error_message


SUPPORTED_FORMATS = ("webp", "avif")
UNKNOWN_MIME = "application/octet-stream"

# Pillow plugin names per target format
_PIL_FORMATS = {"webp": "WEBP", "avif": "AVIF"}


class EngineError(Exception):
    """The batch as a whole could not run."""


class ImageEngine(Protocol):
    def is_dir(self, path: Path) -> bool: ...

    def list_images_one_level(self, dir_path: Path) -> List[Path]: ...

    def base_name(self, path: Path) -> str: ...

    async def metadata(self, path: Path) -> FileMeta: ...

    async def batch_convert(
        self,
        items: Sequence[BatchItem],
        fmt: str,
        quality: int,
        output_dir: Path,
    ) -> List[ConvertedItem]: ...

    async def reconcile_existing(
        self, items: Sequence[BatchItem], output_dir: Path
    ) -> List[ConvertedItem]: ...


def encoder_available(fmt: str) -> bool:
    return bool(features.check(fmt))


def _temp_out_path(final_path: Path) -> Path:
    """Return a unique temp file path in the same directory as final_path."""
    suffix = f".part-{os.getpid()}-{uuid.uuid4().hex[:8]}"
    return final_path.with_name(final_path.name + suffix)


def _prepare(img: Image.Image) -> Image.Image:
    img = ImageOps.exif_transpose(img)
    if img.mode in ("RGB", "RGBA"):
        return img
    if img.mode in ("LA", "PA") or "transparency" in img.info:
        return img.convert("RGBA")
    return img.convert("RGB")


def encode_image(src: Path, dest: Path, fmt: str, quality: int) -> int:
    """Encode `src` into `dest` and return the written size in bytes."""
    tmp = _temp_out_path(dest)
    try:
        with Image.open(src) as img:
            _prepare(img).save(tmp, format=_PIL_FORMATS[fmt], quality=quality)
        os.replace(tmp, dest)
    finally:
        if tmp.exists():
            tmp.unlink()
    return dest.stat().st_size


def probe_file(path: Path) -> FileMeta:
    """Size plus content-sniffed MIME type. OSError propagates for unreadable paths.

    Files Pillow refuses to open, decompression bombs included, report an
    unknown type.
    """
    size = path.stat().st_size
    try:
        with Image.open(path) as img:
            mime = img.get_format_mimetype() or UNKNOWN_MIME
    except (UnidentifiedImageError, Image.DecompressionBombError):
        mime = UNKNOWN_MIME
    return FileMeta(mime_type=mime, size=size)


class PillowEngine:
    def __init__(self, channel: ProgressChannel, workers: Optional[int] = None) -> None:
        self.channel = channel
        self._exe = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pic-worker")

    def is_dir(self, path: Path) -> bool:
        return is_active_dir(Path(path))

    def list_images_one_level(self, dir_path: Path) -> List[Path]:
        return list_images_one_level(Path(dir_path))

    def base_name(self, path: Path) -> str:
        return Path(path).name

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._exe, fn, *args)

    async def metadata(self, path: Path) -> FileMeta:
        return await self._run(probe_file, Path(path))

    async def batch_convert(
        self,
        items: Sequence[BatchItem],
        fmt: str,
        quality: int,
        output_dir: Path,
    ) -> List[ConvertedItem]:
        """Encode every item; items that fail are logged and left out of the result.

        Returns only once every item has finished, failed ones included.
        """
        if fmt not in SUPPORTED_FORMATS:
            raise EngineError(f"Unknown format: {fmt}")
        output_dir = Path(output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise EngineError(f"Failed to create directory {output_dir}: {e}") from e

        self.channel.emit(TOTAL_KNOWN, len(items))

        async def one(item: BatchItem) -> Optional[ConvertedItem]:
            dest = output_path_for(output_dir, item.directory, item.target_name)
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                size = await self._run(encode_image, item.source, dest, fmt, quality)
            except Exception as e:
                logger.warning("encode failed for {}: {}", item.source, error_message(e))
                return None
            self.channel.emit(ITEM_DONE)
            return ConvertedItem(id=item.id, output_path=dest, output_size=size)

        results = await asyncio.gather(*(one(item) for item in items))
        return [r for r in results if r is not None]

    async def reconcile_existing(
        self, items: Sequence[BatchItem], output_dir: Path
    ) -> List[ConvertedItem]:
        def scan() -> List[ConvertedItem]:
            found: List[ConvertedItem] = []
            for item in items:
                dest = output_path_for(Path(output_dir), item.directory, item.target_name)
                if dest.is_file():
                    found.append(ConvertedItem(id=item.id, output_path=dest, output_size=dest.stat().st_size))
            return found

        return await self._run(scan)

    def close(self) -> None:
        self._exe.shutdown(wait=True)
