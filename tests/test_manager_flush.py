"""flush(): targeted and global drain barriers."""

from __future__ import annotations

import asyncio
import time

import pytest

from reindexkit import EventPhase
from tests.helpers import StubEntity


@pytest.mark.asyncio
async def test_flush_of_unknown_id_returns_immediately(manager_factory):
    mgr = manager_factory()
    await mgr.flush("nobody")
    await mgr.flush()


@pytest.mark.asyncio
async def test_flush_waits_for_in_flight_run(manager_factory, recorder):
    recorder.work = 0.03
    mgr = manager_factory(delay=5)
    await mgr.add(StubEntity("e"), propagate_parents=False)
    assert recorder.count("e") == 0 or recorder.active.get("e") == 1
    await mgr.flush("e")
    assert recorder.count("e") == 1
    assert recorder.active["e"] == 0
    assert mgr.snapshot("e").idle


@pytest.mark.asyncio
async def test_flush_covers_follow_up_runs(manager_factory, recorder):
    recorder.work = 0.02
    mgr = manager_factory(delay=5)
    e = StubEntity("e")
    await mgr.add(e, propagate_parents=False)
    await mgr.add(e, propagate_parents=False)
    await mgr.flush("e")
    assert recorder.count("e") == 2
    assert not mgr.pending("e")


@pytest.mark.asyncio
async def test_flush_expedites_armed_timer(manager_factory, recorder, sink):
    mgr = manager_factory(delay=10_000)
    e = StubEntity("e")
    await mgr.add(e, propagate_parents=False)
    await mgr.flush("e")
    await mgr.add(e, propagate_parents=False)
    assert mgr.snapshot("e").timer_armed

    t0 = time.monotonic()
    await mgr.flush("e")
    assert time.monotonic() - t0 < 1.0
    assert recorder.count("e") == 2
    end = sink.of(EventPhase.FLUSH_END, "e")[-1]
    assert end.duration_ms is not None


@pytest.mark.asyncio
async def test_targeted_flush_does_not_wait_for_other_ids(manager_factory, recorder):
    recorder.work = 0.04
    mgr = manager_factory(delay=200)
    a, b = StubEntity("a"), StubEntity("b")
    await mgr.add(a, propagate_parents=False)
    await mgr.add(b, propagate_parents=False)
    await mgr.add(b, propagate_parents=False)  # follow-up armed ~200ms after b's first run

    before = recorder.count("b")
    await mgr.flush("a")
    assert recorder.count("a") == 1
    assert mgr.pending("b")
    assert recorder.count("b") == before

    await mgr.flush()
    assert recorder.count("b") == 2


@pytest.mark.asyncio
async def test_flush_is_a_noop_once_idle(manager_factory, recorder):
    mgr = manager_factory(delay=5)
    e = StubEntity("e")
    await mgr.add(e, propagate_parents=False)
    await mgr.flush()
    await mgr.flush()
    await mgr.flush("e")
    assert recorder.count("e") == 1


@pytest.mark.asyncio
async def test_global_flush_waits_for_everything(manager_factory, recorder, tree):
    recorder.work = 0.01
    mgr = manager_factory(delay=10_000)
    root, parent, child, sibling = tree
    for node in (child, sibling):
        await mgr.add(node)
        await mgr.add(node)
    await mgr.flush()
    assert mgr.snapshots()
    assert all(s.idle for s in mgr.snapshots())
    assert recorder.count("child") == 2
    assert recorder.count("sibling") == 2


@pytest.mark.asyncio
async def test_global_flush_picks_up_ids_added_while_waiting(manager_factory, recorder):
    late = StubEntity("late")
    mgr = None

    async def reindex(entity, options):
        await recorder(entity, options)
        if entity.id == "first":
            await asyncio.sleep(0.01)
            await mgr.add(late, propagate_parents=False)

    mgr = manager_factory(reindex=reindex, delay=10_000)
    await mgr.add(StubEntity("first"), propagate_parents=False)
    await mgr.flush()
    assert recorder.count("first") == 1
    assert recorder.count("late") == 1
    assert mgr.snapshot("late").idle


@pytest.mark.asyncio
async def test_concurrent_flushes_are_all_released(manager_factory, recorder):
    recorder.work = 0.02
    mgr = manager_factory(delay=5)
    e = StubEntity("e")
    await mgr.add(e, propagate_parents=False)
    await asyncio.gather(mgr.flush("e"), mgr.flush("e"), mgr.flush())
    assert recorder.count("e") == 1


@pytest.mark.asyncio
async def test_global_flush_waits_for_ancestors_still_being_resolved(manager_factory, recorder, tree):
    root, parent, child, _ = tree
    child.path_delay = 0.05
    mgr = manager_factory(delay=5)

    adding = asyncio.create_task(mgr.add(child))
    await asyncio.sleep(0)  # child is scheduled, its ancestor path is still loading
    await mgr.flush()

    assert recorder.modes("child") == ["full"]
    assert recorder.modes("parent") == ["partial"]
    assert recorder.modes("root") == ["partial"]
    assert all(s.idle for s in mgr.snapshots())
    await adding
