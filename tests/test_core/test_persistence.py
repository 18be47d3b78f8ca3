"""Tests for the debounced background writer."""

import asyncio

import pytest

from psi_agenda.core.persistence import PersistenceQueue


class _Recorder:
    def __init__(self, fail: bool = False):
        self.snapshots: list[dict] = []
        self.fail = fail

    async def __call__(self, snapshot: dict) -> None:
        if self.fail:
            raise RuntimeError("store unavailable")
        self.snapshots.append(snapshot)


@pytest.fixture
def recorder():
    return _Recorder()


async def test_rapid_submits_coalesce_to_latest(recorder):
    queue = PersistenceQueue(recorder, debounce_seconds=0.02)
    for i in range(5):
        queue.submit({"n": i})
    assert queue.has_pending

    await asyncio.sleep(0.15)

    assert recorder.snapshots == [{"n": 4}]
    assert queue.writes == 1
    assert not queue.has_pending


async def test_quiet_period_restarts_on_each_submit(recorder):
    queue = PersistenceQueue(recorder, debounce_seconds=0.1)
    queue.submit({"n": 1})
    await asyncio.sleep(0.06)
    queue.submit({"n": 2})
    await asyncio.sleep(0.06)
    assert recorder.snapshots == []

    await asyncio.sleep(0.15)
    assert recorder.snapshots == [{"n": 2}]


async def test_flush_writes_immediately(recorder):
    queue = PersistenceQueue(recorder, debounce_seconds=10)
    queue.submit({"n": 1})
    await queue.flush()
    assert recorder.snapshots == [{"n": 1}]
    assert not queue.has_pending


async def test_flush_without_pending_is_noop(recorder):
    queue = PersistenceQueue(recorder)
    await queue.flush()
    assert recorder.snapshots == []
    assert queue.writes == 0


async def test_failed_write_is_logged_not_raised(caplog):
    queue = PersistenceQueue(_Recorder(fail=True), debounce_seconds=0.01)
    queue.submit({"n": 1})
    await asyncio.sleep(0.1)

    assert queue.failures == 1
    assert queue.writes == 0
    assert "Background persist failed" in caplog.text


async def test_queue_keeps_working_after_failure():
    recorder = _Recorder(fail=True)
    queue = PersistenceQueue(recorder, debounce_seconds=0.01)
    queue.submit({"n": 1})
    await queue.flush()

    recorder.fail = False
    queue.submit({"n": 2})
    await queue.close()

    assert recorder.snapshots == [{"n": 2}]
    assert queue.failures == 1
    assert queue.writes == 1
