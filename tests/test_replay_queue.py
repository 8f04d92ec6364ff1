"""
Tests for the client-side offline action replay queue
"""

import asyncio
import json

import pytest

from docintake.client.replay import ActionStore, OfflineReplayQueue
from docintake.errors import ReplaySyncFailure


class RecordingRepository:
    """In-memory repository; fail_times maps entity kind to how many calls should fail"""

    def __init__(self, fail_times=None):
        self.fail_times = dict(fail_times or {})
        self.calls = []

    async def _call(self, op, kind, *args):
        self.calls.append((op, kind) + args)
        remaining = self.fail_times.get(kind, 0)
        if remaining:
            self.fail_times[kind] = remaining - 1 if remaining > 0 else remaining
            raise ReplaySyncFailure(f"{op} {kind} rejected")
        return {"ok": True}

    async def insert(self, kind, data):
        return await self._call("insert", kind, data)

    async def update(self, kind, entity_id, patch):
        return await self._call("update", kind, entity_id, patch)

    async def delete(self, kind, entity_id):
        return await self._call("delete", kind, entity_id)


class GatedRepository(RecordingRepository):
    """Holds the first call open until released"""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def _call(self, op, kind, *args):
        if not self.calls:
            self.calls.append((op, kind) + args)
            await self.release.wait()
            return {"ok": True}
        return await super()._call(op, kind, *args)


@pytest.fixture
def notices():
    return []


@pytest.fixture
def make_queue(tmp_path, notices):
    queues = []

    def _make(repo, **kw):
        kw.setdefault("retry_delay_seconds", 3600)
        q = OfflineReplayQueue(repo, store_path=tmp_path / "queue.json",
                               notifier=lambda level, msg: notices.append((level, msg)), **kw)
        queues.append(q)
        return q

    yield _make


@pytest.mark.asyncio
async def test_online_action_replays_immediately(make_queue):
    repo = RecordingRepository()
    queue = make_queue(repo)

    await queue.queue_action("insert", "documents", {"file_name": "a.png"})

    assert repo.calls == [("insert", "documents", {"file_name": "a.png"})]
    assert queue.pending() == []
    await queue.close()


@pytest.mark.asyncio
async def test_offline_actions_persist_and_replay_in_order(make_queue, tmp_path, notices):
    repo = RecordingRepository()
    queue = make_queue(repo, online=False)

    await queue.queue_action("insert", "documents", {"id": "d1", "file_name": "a.png"})
    await queue.queue_action("update", "documents", {"id": "d1", "updates": {"processing_priority": 5}})
    await queue.queue_action("delete", "batches", {"id": "b9"})

    assert repo.calls == []
    saved = json.loads((tmp_path / "queue.json").read_text())
    assert [a["kind"] for a in saved] == ["insert", "update", "delete"]

    report = await queue.go_online()

    assert [c[0] for c in repo.calls] == ["insert", "update", "delete"]
    assert repo.calls[1] == ("update", "documents", "d1", {"processing_priority": 5})
    assert len(report.synced) == 3
    assert queue.pending() == []
    assert json.loads((tmp_path / "queue.json").read_text()) == []
    assert notices[0][0] == "info"
    assert notices[-1] == ("success", "Synced 3 offline change(s)")
    await queue.close()


@pytest.mark.asyncio
async def test_queue_survives_restart(make_queue):
    queue = make_queue(RecordingRepository(), online=False)
    await queue.queue_action("insert", "documents", {"file_name": "a.png"})
    await queue.close()

    reopened = make_queue(RecordingRepository(), online=False)
    pending = reopened.pending()
    assert len(pending) == 1
    assert pending[0].kind == "insert"
    assert pending[0].retry_count == 0
    await reopened.close()


@pytest.mark.asyncio
async def test_failing_action_retried_three_times_then_dropped(make_queue, notices):
    repo = RecordingRepository(fail_times={"documents": -1})
    queue = make_queue(repo)

    await queue.queue_action("update", "documents", {"id": "d1", "updates": {"file_name": "x"}})
    assert queue.pending()[0].retry_count == 1
    assert queue.retry_scheduled

    await queue.flush()
    await queue.flush()
    assert queue.pending()[0].retry_count == 3

    report = await queue.flush()

    assert len(repo.calls) == 4
    assert queue.pending() == []
    assert report.dropped_by_kind() == {"update": 1}
    assert ("error", "1 update action(s) failed permanently and need attention") in notices
    await queue.close()


@pytest.mark.asyncio
async def test_failure_does_not_block_later_actions(make_queue):
    repo = RecordingRepository(fail_times={"batches": 1})
    queue = make_queue(repo, online=False)
    await queue.queue_action("delete", "batches", {"id": "b1"})
    await queue.queue_action("insert", "documents", {"file_name": "a.png"})

    report = await queue.go_online()

    assert len(report.synced) == 1
    assert len(report.retrying) == 1
    assert [a.target_entity for a in queue.pending()] == ["batches"]

    report = await queue.flush()
    assert len(report.synced) == 1
    assert queue.pending() == []
    await queue.close()


@pytest.mark.asyncio
async def test_flush_while_offline_is_skipped(make_queue):
    repo = RecordingRepository()
    queue = make_queue(repo, online=False)
    await queue.queue_action("insert", "documents", {})
    report = await queue.flush()
    assert report.skipped is True
    assert repo.calls == []
    await queue.close()


@pytest.mark.asyncio
async def test_going_offline_cancels_retry(make_queue, notices):
    queue = make_queue(RecordingRepository(fail_times={"documents": 1}))
    await queue.queue_action("insert", "documents", {})
    assert queue.retry_scheduled

    queue.go_offline()

    assert not queue.retry_scheduled
    assert notices[-1][0] == "warning"
    await queue.close()


@pytest.mark.asyncio
async def test_unknown_action_kind(make_queue):
    queue = make_queue(RecordingRepository())
    with pytest.raises(ValueError):
        await queue.queue_action("upsert", "documents", {})
    assert queue.pending() == []
    await queue.close()


def test_corrupt_store_loads_empty(tmp_path):
    path = tmp_path / "queue.json"
    path.write_text("{not json")
    assert ActionStore(path).load() == []


@pytest.mark.asyncio
async def test_action_queued_during_flush_is_replayed(make_queue):
    repo = GatedRepository()
    queue = make_queue(repo)

    first = asyncio.create_task(queue.queue_action("insert", "documents", {"n": 1}))
    while not repo.calls:
        await asyncio.sleep(0)
    assert queue.is_flushing

    await queue.queue_action("insert", "documents", {"n": 2})
    assert [a.data for a in queue.pending()] == [{"n": 1}, {"n": 2}]

    repo.release.set()
    await first
    await queue.close()

    assert [c[2] for c in repo.calls] == [{"n": 1}, {"n": 2}]
    assert queue.pending() == []
    assert not queue.retry_scheduled
