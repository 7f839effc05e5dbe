"""Authoritative entry table with standby/complete/backup views.

Every tracked id owns one `Record`. Its `stage` says which view the current
entry belongs to, and `backup` holds the pre-conversion snapshot when the id
was converted in the most recent batch. Moving an entry between views is a
single record update, so an id can never be in standby and complete at once.

Mutations return a `StoreChange` and publish it to subscribers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from .models import ImageEntry, ProgressState, Stage, Status


class BusyError(RuntimeError):
    """An ingest or convert was started while another operation is running."""


@dataclass
class Record:
    id: str
    stage: Stage
    entry: Optional[ImageEntry] = None
    backup: Optional[ImageEntry] = None


@dataclass(frozen=True)
class StoreChange:
    kind: str
    ids: Tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.ids)


Subscriber = Callable[[StoreChange], None]


class StateStore:
    def __init__(self) -> None:
        self._records: Dict[str, Record] = {}
        self._subscribers: List[Subscriber] = []
        self.progress = ProgressState()

    # -- views ---------------------------------------------------------

    def _view(self, stage: Stage) -> Dict[str, ImageEntry]:
        return {
            rid: rec.entry
            for rid, rec in self._records.items()
            if rec.stage is stage and rec.entry is not None
        }

    @property
    def standby(self) -> Dict[str, ImageEntry]:
        return self._view(Stage.PENDING)

    @property
    def complete(self) -> Dict[str, ImageEntry]:
        return self._view(Stage.COMPLETED)

    @property
    def backup(self) -> Dict[str, ImageEntry]:
        return {rid: rec.backup for rid, rec in self._records.items() if rec.backup is not None}

    def stage_of(self, entry_id: str) -> Optional[Stage]:
        rec = self._records.get(entry_id)
        return rec.stage if rec else None

    def standby_paths(self) -> set:
        return {e.path for e in self.standby.values()}

    # -- notifications -------------------------------------------------

    def subscribe(self, fn: Subscriber) -> Callable[[], None]:
        self._subscribers.append(fn)

        def unsubscribe() -> None:
            if fn in self._subscribers:
                self._subscribers.remove(fn)

        return unsubscribe

    def _publish(self, kind: str, ids: Iterable[str]) -> StoreChange:
        change = StoreChange(kind=kind, ids=tuple(ids))
        if change:
            logger.debug("store {}: {} id(s)", kind, len(change.ids))
            self._notify(change)
        return change

    def _notify(self, change: StoreChange) -> None:
        for fn in list(self._subscribers):
            fn(change)

    # -- status machine ------------------------------------------------

    @property
    def is_locked(self) -> bool:
        return self.progress.status is not Status.IDLE

    def begin(self, status: Status, total: int = 0) -> None:
        """Enter a non-idle status; count/total restart from zero."""
        if status is Status.IDLE:
            raise ValueError("begin() needs a non-idle status")
        if self.is_locked:
            raise BusyError(f"cannot start {status.value}: already {self.progress.status.value}")
        self.progress.status = status
        self.progress.count = 0
        self.progress.total = total
        self._notify(StoreChange(kind="status"))

    def advance(self, n: int = 1) -> None:
        self.progress.count += n

    def finish(self) -> None:
        self.progress.status = Status.IDLE
        self._notify(StoreChange(kind="status"))

    # -- mutations -----------------------------------------------------

    def add_pending(self, entry: ImageEntry) -> StoreChange:
        """Insert or replace `entry` as pending.

        A completed record for the same id is discarded first; an undo
        snapshot is left alone.
        """
        rec = self._records.get(entry.id)
        if rec is None:
            self._records[entry.id] = Record(id=entry.id, stage=Stage.PENDING, entry=entry)
        else:
            if rec.stage is Stage.COMPLETED:
                logger.debug("re-added {} resets its completed record", entry.file_name)
            rec.stage = Stage.PENDING
            rec.entry = entry
        return self._publish("added", (entry.id,))

    def commit_batch(self, completed: Iterable[ImageEntry]) -> StoreChange:
        """Move converted entries from standby to complete.

        The previous undo checkpoint is replaced by the pre-conversion entries
        of this batch. Ids that are no longer pending are ignored.
        """
        moves: List[Tuple[Record, ImageEntry]] = []
        for done in completed:
            rec = self._records.get(done.id)
            if rec is None or rec.stage is not Stage.PENDING or rec.entry is None:
                logger.debug("converted id {} is no longer pending; ignored", done.id)
                continue
            moves.append((rec, done))
        if not moves:
            return StoreChange(kind="converted")

        self._drop_backups()
        for rec, done in moves:
            rec.backup = rec.entry
            rec.entry = done
            rec.stage = Stage.COMPLETED
        return self._publish("converted", (rec.id for rec, _ in moves))

    def _drop_backups(self) -> None:
        for rid in list(self._records):
            rec = self._records[rid]
            rec.backup = None
            if rec.stage is Stage.BACKED_UP:
                del self._records[rid]

    def restore(self) -> StoreChange:
        """Undo the last batch: backups return to standby ahead of pending entries.

        Complete and backup are emptied, older completed records included.
        With no backup this is a no-op.
        """
        restored = [rec for rec in self._records.values() if rec.backup is not None]
        if not restored:
            return StoreChange(kind="restored")

        for rec in restored:
            rec.entry = rec.backup
            rec.backup = None
            rec.stage = Stage.PENDING
        restored_ids = {rec.id for rec in restored}
        pending = [
            rec
            for rec in self._records.values()
            if rec.stage is Stage.PENDING and rec.id not in restored_ids
        ]
        self._records = {rec.id: rec for rec in (*restored, *pending)}
        return self._publish("restored", (rec.id for rec in restored))

    def clear_complete(self) -> StoreChange:
        """Drop completed records; their undo snapshots stay available."""
        cleared: List[str] = []
        for rid in list(self._records):
            rec = self._records[rid]
            if rec.stage is not Stage.COMPLETED:
                continue
            cleared.append(rid)
            if rec.backup is None:
                del self._records[rid]
            else:
                rec.entry = None
                rec.stage = Stage.BACKED_UP
        return self._publish("invalidated", cleared)

    def remove_item(self, entry_id: str) -> StoreChange:
        if self._records.pop(entry_id, None) is None:
            return StoreChange(kind="removed")
        return self._publish("removed", (entry_id,))

    def remove_all(self) -> StoreChange:
        ids = list(self._records)
        self._records.clear()
        return self._publish("removed", ids)

    def __len__(self) -> int:
        return len(self._records)
