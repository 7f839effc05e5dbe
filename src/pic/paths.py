from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Tuple

from loguru import logger

from .models import Candidate


IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp"}

# Directories below a user-selected one are flagged, never walked.
DEFAULT_MAX_DEPTH = 1


@dataclass
class ResolvedPaths:
    candidates: List[Candidate] = field(default_factory=list)
    saw_nested_directory: bool = False
    # Directories that could not be listed; their contents are unknown
    unlisted: List[Path] = field(default_factory=list)


def is_image_file(path: Path) -> bool:
    """Cheap extension check; real type detection happens on ingestion."""
    return path.suffix.lower() in IMAGE_SUFFIXES


def is_active_dir(path: Path) -> bool:
    """True for directories that are neither dot-prefixed nor marked hidden."""
    if not path.is_dir():
        return False
    if path.name.startswith("."):
        return False
    # Windows hidden attribute
    try:
        attrs = getattr(path.stat(), "st_file_attributes", 0)
    except OSError:
        return False
    return not attrs & getattr(stat, "FILE_ATTRIBUTE_HIDDEN", 0x2)


def list_images_one_level(dir_path: Path) -> List[Path]:
    """Direct children of `dir_path` that are image files or active directories.

    Sorted by name so that resolution order does not depend on the filesystem.
    """
    children: List[Path] = []
    with os.scandir(dir_path) as it:
        for de in it:
            p = Path(de.path)
            try:
                if de.is_file():
                    if is_image_file(p):
                        children.append(p)
                elif is_active_dir(p):
                    children.append(p)
            except OSError:
                continue
    children.sort(key=lambda p: p.name.casefold())
    return children


def resolve_paths(
    paths: Iterable[Path | str],
    *,
    is_dir: Callable[[Path], bool] = is_active_dir,
    list_dir: Callable[[Path], List[Path]] = list_images_one_level,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> ResolvedPaths:
    """Flatten user-selected files and directories into ingestion candidates.

    Files are emitted as-is with no directory segments. A directory at depth
    below `max_depth` is replaced by its listing, each child carrying the
    directory names it was found under. A directory at `max_depth` is skipped
    and raises `saw_nested_directory`. A directory that cannot be listed is
    recorded in `unlisted` and resolution carries on. Output order is
    depth-first and follows the input order.
    """
    result = ResolvedPaths()
    stack: List[Tuple[Path, Tuple[str, ...], int]] = [
        (Path(p), (), 0) for p in reversed(list(paths))
    ]
    while stack:
        path, segments, depth = stack.pop()
        if not is_dir(path):
            result.candidates.append(Candidate(path=path, directory=segments))
            continue
        if depth >= max_depth:
            result.saw_nested_directory = True
            continue
        try:
            children = list_dir(path)
        except OSError as e:
            logger.debug("cannot list {}: {}", path, e)
            result.unlisted.append(path)
            continue
        inner = segments + (path.name,)
        stack.extend((child, inner, depth + 1) for child in reversed(children))
    return result


def target_name(base_name: str, fmt: str) -> str:
    return f"{base_name}.{fmt}"


def display_name(file_name: str, directory: Tuple[str, ...]) -> str:
    """File name prefixed with its directory segments, '/' separated."""
    return "/".join((*directory, file_name))


def output_path_for(output_dir: Path, directory: Tuple[str, ...], name: str) -> Path:
    return Path(output_dir).joinpath(*directory, name)
