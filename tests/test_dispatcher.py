import asyncio
from pathlib import Path

import pytest

from pic.dispatcher import ConversionDispatcher, build_batch, classify_outcome
from pic.engine import EngineError
from pic.events import ITEM_DONE, TOTAL_KNOWN
from pic.models import OutcomeKind, Status
from pic.options import OptionsState


def _queue(orch, engine, n):
    paths = [engine.add_file(f"/photos/{i}.jpg", mime="image/jpeg", size=1000 + i) for i in range(n)]
    asyncio.run(orch.ingest(paths))
    return paths


def test_full_success_moves_everything(orch, engine, channel):
    _queue(orch, engine, 3)

    outcome = asyncio.run(orch.convert())

    assert outcome.kind is OutcomeKind.SUCCESS
    assert outcome.message is None
    assert orch.standby == {}
    assert len(orch.complete) == 3
    assert len(orch.backup) == 3
    assert orch.progress.count == 3
    assert orch.progress.total == 3
    assert orch.progress.status is Status.IDLE
    assert engine.listeners_during_call == 1
    assert channel.listener_count(ITEM_DONE) == 0
    assert channel.listener_count(TOTAL_KNOWN) == 0


def test_request_carries_target_names_and_segments(orch, engine):
    a = engine.add_file("/photos/trip/a.jpg", mime="image/jpeg")
    engine.add_dir("/photos/trip", [a])
    orch.set_format("avif")
    asyncio.run(orch.ingest(["/photos/trip"]))

    asyncio.run(orch.convert())

    (item,) = engine.batches[0]
    assert item.target_name == "a.avif"
    assert item.directory == ("trip",)
    assert item.source == a
    (done,) = orch.complete.values()
    assert done.file_name == "trip/a.avif"
    assert done.mime_type == "image/avif"
    assert done.path == Path("/out/trip/a.avif")


def test_truncated_result_is_partial(orch, engine):
    paths = _queue(orch, engine, 4)
    engine.skip_sources = {paths[1], paths[3]}

    outcome = asyncio.run(orch.convert())

    assert outcome.kind is OutcomeKind.PARTIAL
    assert outcome.converted == 2
    assert outcome.requested == 4
    assert sorted(e.path for e in orch.standby.values()) == [paths[1], paths[3]]
    assert len(orch.complete) == 2
    assert len(orch.backup) == 2
    assert engine.reconciled == []


def test_rejection_with_recoverable_outputs_is_partial(orch, engine):
    paths = _queue(orch, engine, 3)
    engine.error = EngineError("disk full")
    engine.existing = {paths[0]}

    outcome = asyncio.run(orch.convert())

    assert outcome.kind is OutcomeKind.PARTIAL
    assert outcome.message == "disk full"
    assert len(engine.reconciled) == 1
    assert [i.target_name for i in engine.reconciled[0]] == ["0.webp", "1.webp", "2.webp"]
    assert len(orch.complete) == 1
    assert len(orch.backup) == 1
    assert len(orch.standby) == 2


def test_rejection_with_everything_on_disk_is_success_with_message(orch, engine):
    paths = _queue(orch, engine, 2)
    engine.error = RuntimeError("late crash")
    engine.existing = set(paths)

    outcome = asyncio.run(orch.convert())

    assert outcome.kind is OutcomeKind.SUCCESS
    assert outcome.message == "late crash"
    assert orch.standby == {}


def test_rejection_with_nothing_recovered_fails(orch, engine, channel):
    _queue(orch, engine, 2)
    engine.error = EngineError("Unknown format: gif")

    outcome = asyncio.run(orch.convert())

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.message == "Unknown format: gif"
    assert len(orch.standby) == 2
    assert orch.complete == {}
    assert orch.backup == {}
    assert channel.listener_count(ITEM_DONE) == 0
    assert orch.progress.status is Status.IDLE


def test_failing_reconciliation_counts_as_nothing_found(orch, engine):
    _queue(orch, engine, 1)
    engine.error = EngineError("boom")
    engine.reconcile_error = OSError("output gone")

    outcome = asyncio.run(orch.convert())

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.message == "boom"


def test_empty_snapshot_makes_no_call(orch, engine):
    outcome = asyncio.run(orch.convert())

    assert outcome.kind is OutcomeKind.SUCCESS
    assert outcome.requested == 0
    assert engine.batches == []
    assert orch.progress.status is Status.IDLE


def test_item_removed_mid_flight_is_ignored(orch, engine):
    paths = _queue(orch, engine, 2)
    victim = next(e.id for e in orch.standby.values() if e.path == paths[0])
    engine.on_batch = lambda items: orch.remove_item(victim)

    outcome = asyncio.run(orch.convert())

    assert outcome.kind is OutcomeKind.SUCCESS
    assert victim not in orch.complete
    assert victim not in orch.backup
    assert list(outcome.converted_ids) == [e for e in orch.complete]


def test_output_size_comes_from_engine(orch, engine):
    paths = _queue(orch, engine, 1)
    engine.output_sizes[paths[0]] = 321

    asyncio.run(orch.convert())

    (done,) = orch.complete.values()
    assert done.size_after == 321
    assert done.size_before == 1000


def test_new_batch_replaces_undo_checkpoint(orch, engine):
    first = _queue(orch, engine, 1)
    asyncio.run(orch.convert())
    second = engine.add_file("/photos/later.png")
    asyncio.run(orch.ingest([second]))

    asyncio.run(orch.convert())

    assert [e.path for e in orch.backup.values()] == [second]
    assert len(orch.complete) == 2
    assert first[0] not in [e.path for e in orch.backup.values()]


def test_convert_rejected_while_loading(orch, engine):
    _queue(orch, engine, 1)
    orch.store.begin(Status.LOADING)

    from pic.store import BusyError

    with pytest.raises(BusyError):
        asyncio.run(orch.convert())
    assert engine.batches == []


def test_settle_delay_keeps_status_converting(orch, engine):
    _queue(orch, engine, 1)
    dispatcher = ConversionDispatcher(orch.store, engine, orch.channel, settle_delay=0.01)
    seen = []
    orch.store.subscribe(lambda change: seen.append((change.kind, orch.progress.status)))

    asyncio.run(dispatcher.convert(orch.store.standby, OptionsState(output_dir="/out")))

    statuses = [s for kind, s in seen if kind == "status"]
    assert statuses == [Status.CONVERTING, Status.IDLE]
    kinds = [kind for kind, _ in seen]
    assert kinds.index("converted") < len(kinds) - 1


def test_build_batch_and_classify():
    assert classify_outcome(0, 3) is OutcomeKind.FAILED
    assert classify_outcome(2, 3) is OutcomeKind.PARTIAL
    assert classify_outcome(3, 3) is OutcomeKind.SUCCESS
    assert build_batch({}, "webp") == []


def test_completed_entry_reports_savings_and_progress_ratio(orch, engine):
    src = engine.add_file("/photos/a.png", size=1000)
    engine.output_sizes[src] = 400
    asyncio.run(orch.ingest([src]))
    ratios = []
    engine.on_batch = lambda items: ratios.append(orch.progress.ratio)

    asyncio.run(orch.convert())

    (done,) = orch.complete.values()
    assert done.saved_bytes == 600
    assert ratios == [0.0]
    assert orch.progress.ratio == 1.0
