import asyncio
from pathlib import Path

import pytest

from pic.models import ImageEntry, Stage, Status
from pic.store import BusyError, StateStore


def _entry(name, size=100):
    return ImageEntry(
        id=f"id-{name}",
        path=Path(f"/photos/{name}.jpg"),
        base_name=name,
        mime_type="image/jpeg",
        size_before=size,
        file_name=f"{name}.jpg",
    )


def _converted(entry, size=10):
    return ImageEntry(
        id=entry.id,
        path=Path(f"/out/{entry.base_name}.webp"),
        base_name=entry.base_name,
        mime_type="image/webp",
        size_before=entry.size_before,
        size_after=size,
        file_name=f"{entry.base_name}.webp",
    )


def test_worked_example(orch, engine):
    engine.add_file("/in/a.jpg", mime="image/jpeg", size=500000)
    engine.add_file("/in/b.png", mime="image/png", size=300000)
    engine.output_sizes = {Path("/in/a.jpg"): 120000, Path("/in/b.png"): 80000}

    asyncio.run(orch.ingest(["/in/a.jpg", "/in/b.png"]))
    originals = dict(orch.standby)
    assert [e.size_after for e in originals.values()] == [0, 0]

    outcome = asyncio.run(orch.convert())

    assert outcome.ok
    assert orch.standby == {}
    assert sorted(e.size_after for e in orch.complete.values()) == [80000, 120000]
    assert orch.backup == originals

    orch.restore()

    assert orch.standby == originals
    assert orch.complete == {}
    assert orch.backup == {}


def test_restore_is_single_shot():
    store = StateStore()
    a, b = _entry("a"), _entry("b")
    store.add_pending(a)
    store.add_pending(b)
    store.commit_batch([_converted(a), _converted(b)])

    first = store.restore()
    second = store.restore()

    assert first.ids == (a.id, b.id)
    assert not second
    assert list(store.standby.values()) == [a, b]


def test_restore_puts_restored_entries_first():
    store = StateStore()
    a, b = _entry("a"), _entry("b")
    store.add_pending(a)
    store.commit_batch([_converted(a)])
    store.add_pending(b)

    store.restore()

    assert list(store.standby) == [a.id, b.id]


def test_restore_drops_older_completed_records():
    store = StateStore()
    a, b = _entry("a"), _entry("b")
    store.add_pending(a)
    store.commit_batch([_converted(a)])
    store.add_pending(b)
    store.commit_batch([_converted(b)])
    assert set(store.complete) == {a.id, b.id}

    store.restore()

    assert list(store.standby) == [b.id]
    assert store.complete == {}
    assert store.stage_of(a.id) is None


def test_never_in_standby_and_complete_at_once():
    store = StateStore()
    a = _entry("a")
    store.add_pending(a)
    store.commit_batch([_converted(a)])
    store.add_pending(a)

    assert a.id in store.standby
    assert a.id not in store.complete
    assert a.id in store.backup


def test_commit_ignores_ids_not_pending():
    store = StateStore()
    a = _entry("a")
    change = store.commit_batch([_converted(a)])
    assert not change
    assert store.complete == {}


def test_clear_complete_keeps_backup():
    store = StateStore()
    a = _entry("a")
    store.add_pending(a)
    store.commit_batch([_converted(a)])

    store.clear_complete()

    assert store.complete == {}
    assert store.backup == {a.id: a}
    assert store.stage_of(a.id) is Stage.BACKED_UP

    store.restore()
    assert store.standby == {a.id: a}


def test_remove_item_and_remove_all():
    store = StateStore()
    a, b, c = _entry("a"), _entry("b"), _entry("c")
    for e in (a, b, c):
        store.add_pending(e)
    store.commit_batch([_converted(a)])

    store.remove_item(a.id)
    assert a.id not in store.complete
    assert a.id not in store.backup
    assert not store.remove_item("missing")

    store.remove_all()
    assert store.standby == {} and store.complete == {} and store.backup == {}
    assert len(store) == 0


def test_subscribers_receive_changes():
    store = StateStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)
    a = _entry("a")

    store.add_pending(a)
    store.remove_item(a.id)
    unsubscribe()
    store.add_pending(a)

    assert [(c.kind, c.ids) for c in seen] == [("added", (a.id,)), ("removed", (a.id,))]


def test_status_machine():
    store = StateStore()
    store.begin(Status.LOADING, total=5)
    store.advance()
    assert store.is_locked
    assert (store.progress.count, store.progress.total) == (1, 5)

    with pytest.raises(BusyError):
        store.begin(Status.CONVERTING)

    store.finish()
    store.begin(Status.CONVERTING)
    assert (store.progress.count, store.progress.total) == (0, 0)

    with pytest.raises(ValueError):
        store.begin(Status.IDLE)
