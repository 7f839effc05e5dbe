"""Candidate classification: accepted, duplicate or unsupported."""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Collection, Optional

from .models import Candidate, IngestFlags


ALLOWED_INPUT_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})


class Verdict(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    UNSUPPORTED = "unsupported"


def is_allowed_mime(mime_type: Optional[str]) -> bool:
    return mime_type in ALLOWED_INPUT_MIME_TYPES


def is_duplicate(candidate: Candidate, standby_paths: Collection[Path]) -> bool:
    return Path(candidate.path) in standby_paths


def classify(
    candidate: Candidate,
    standby_paths: Collection[Path],
    mime_type: Optional[str],
) -> Verdict:
    """Classify a candidate. Never raises.

    `mime_type` is None when the file could not be inspected; that is treated
    the same as an unsupported type.
    """
    if is_duplicate(candidate, standby_paths):
        return Verdict.DUPLICATE
    if not is_allowed_mime(mime_type):
        return Verdict.UNSUPPORTED
    return Verdict.ACCEPTED


def record(flags: IngestFlags, verdict: Verdict) -> None:
    """Fold a verdict into the aggregate flags."""
    if verdict is Verdict.ACCEPTED:
        flags.added += 1
        return
    flags.skipped += 1
    if verdict is Verdict.DUPLICATE:
        flags.duplicate_found = True
    else:
        flags.unsupported_found = True
