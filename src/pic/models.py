"""Value types shared by the ingestion and conversion pipelines."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple


class Status(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    CONVERTING = "converting"


class Stage(str, Enum):
    """Where a tracked id currently lives.

    BACKED_UP means only the undo snapshot is left (its completed record was
    invalidated by an output directory change).
    """

    PENDING = "pending"
    COMPLETED = "completed"
    BACKED_UP = "backed_up"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


def entry_id_for(path: Path) -> str:
    """Stable id for a source file: UUIDv5 of its absolute path."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, str(Path(path).absolute())))


@dataclass(frozen=True)
class ImageEntry:
    id: str
    path: Path
    base_name: str  # file name without extension
    mime_type: str
    size_before: int
    size_after: int = 0
    directory: Tuple[str, ...] = ()
    file_name: str = ""  # display name, directory segments included

    @property
    def uri(self) -> str:
        return Path(self.path).absolute().as_uri()

    @property
    def saved_bytes(self) -> int:
        if not self.size_after:
            return 0
        return self.size_before - self.size_after


@dataclass
class ProgressState:
    status: Status = Status.IDLE
    count: int = 0
    total: int = 0

    @property
    def ratio(self) -> float:
        if not self.total:
            return 0.0
        return min(1.0, self.count / self.total)


@dataclass(frozen=True)
class Candidate:
    """A resolved file path plus the directory segments it was found under."""

    path: Path
    directory: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FileMeta:
    mime_type: str
    size: int


@dataclass(frozen=True)
class BatchItem:
    """One entry of a batch encode request."""

    id: str
    source: Path
    target_name: str
    directory: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ConvertedItem:
    id: str
    output_path: Path
    output_size: int


@dataclass
class IngestFlags:
    duplicate_found: bool = False
    unsupported_found: bool = False
    saw_nested_directory: bool = False
    result_was_empty: bool = False
    declined: bool = False
    added: int = 0
    skipped: int = 0


@dataclass(frozen=True)
class ConversionOutcome:
    kind: OutcomeKind
    message: Optional[str] = None
    converted: int = 0
    requested: int = 0
    converted_ids: Tuple[str, ...] = field(default=(), repr=False)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS
