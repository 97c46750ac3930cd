"""Tests for the shared stream session manager."""

from __future__ import annotations

import asyncio
import random

import pytest

from camrelay.capture.models import CaptureKind
from camrelay.errors import CaptureUnavailable
from camrelay.session.manager import StreamSessionManager


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def _assert_invariant(manager: StreamSessionManager, spawner) -> None:
    if manager.subscriber_count == 0:
        assert manager.process is None
    else:
        assert manager.process is not None and manager.process.running
        assert len(spawner.running()) == 1
    assert manager.subscriber_count >= 0


def test_first_subscriber_spawns_and_receives_raw_output(spawner):
    async def scenario():
        manager = StreamSessionManager(spawner)
        handle = await manager.subscribe()
        process = spawner.spawned[0]
        process.emit(b"\x00\x00\x00\x01h264")
        process.emit(b"more")
        await _settle()
        first = await handle.sink.get()
        second = await handle.sink.get()
        return manager, handle, process, first + second

    manager, handle, process, data = asyncio.run(scenario())
    assert len(spawner.spawned) == 1
    assert process.kind is CaptureKind.CONTINUOUS
    assert manager.subscriber_count == 1
    assert handle.pid == process.pid
    assert data == b"\x00\x00\x00\x01h264more"


def test_two_subscribers_first_leaves(spawner):
    async def scenario():
        manager = StreamSessionManager(spawner)
        first = await manager.subscribe()
        second = await manager.subscribe()
        process = spawner.spawned[0]

        process.emit(b"a")
        await _settle()
        manager.unsubscribe(first)
        running_after_first = process.running
        process.emit(b"b")
        await _settle()
        received = [await second.sink.get(), await second.sink.get()]

        manager.unsubscribe(second)
        return manager, process, running_after_first, b"".join(received)

    manager, process, running_after_first, received = asyncio.run(scenario())
    assert running_after_first is True
    assert received == b"ab"
    assert process.running is False
    assert process.terminate_calls == 1
    assert spawner.terminated == [process]
    assert manager.subscriber_count == 0
    assert manager.process is None
    assert len(spawner.spawned) == 1


def test_double_unsubscribe_is_noop(spawner):
    async def scenario():
        manager = StreamSessionManager(spawner)
        a = await manager.subscribe()
        b = await manager.subscribe()
        manager.unsubscribe(a)
        manager.unsubscribe(a)
        count_after = manager.subscriber_count
        manager.unsubscribe(b)
        manager.unsubscribe(b)
        return manager, count_after

    manager, count_after = asyncio.run(scenario())
    assert count_after == 1
    assert manager.subscriber_count == 0
    assert spawner.spawned[0].terminate_calls == 1


def test_concurrent_subscribes_spawn_once(spawner):
    async def scenario():
        manager = StreamSessionManager(spawner)
        handles = await asyncio.gather(*(manager.subscribe() for _ in range(20)))
        return manager, handles

    manager, handles = asyncio.run(scenario())
    assert len(spawner.spawned) == 1
    assert manager.subscriber_count == 20
    assert {h.pid for h in handles} == {spawner.spawned[0].pid}


def test_spawn_failure_leaves_count_untouched(spawner, missing_binary_error):
    spawner.fail_with = missing_binary_error

    async def scenario():
        manager = StreamSessionManager(spawner)
        with pytest.raises(CaptureUnavailable) as excinfo:
            await manager.subscribe()
        assert excinfo.value.status_code == 500
        assert manager.subscriber_count == 0
        assert manager.process is None

        spawner.fail_with = None
        handle = await manager.subscribe()
        return manager, handle

    manager, handle = asyncio.run(scenario())
    assert manager.subscriber_count == 1
    assert len(spawner.spawned) == 1


def test_resubscribe_after_teardown_spawns_fresh(spawner):
    async def scenario():
        manager = StreamSessionManager(spawner)
        first = await manager.subscribe()
        manager.unsubscribe(first)
        # New subscriber arrives while the old process is being reaped
        second = await manager.subscribe()
        return manager, first, second

    manager, first, second = asyncio.run(scenario())
    old, new = spawner.spawned
    assert old.running is False
    assert new.running is True
    assert second.pid == new.pid != first.pid
    assert manager.process is new


def test_subscribe_waits_for_dying_process(fake_process_cls):
    events: list[str] = []

    class SlowToDie(fake_process_cls):
        def terminate(self):
            # Signal delivered, exit observed later
            if self.terminate_requested or self.returncode is not None:
                return
            self.terminate_requested = True
            self.terminate_calls += 1
            asyncio.get_running_loop().call_later(0.05, self._die)

        def _die(self):
            events.append(f"exit {self.pid}")
            self.exit(-15)

    class RecordingSpawner:
        def __init__(self):
            self.spawned = []

        def profile(self, kind):
            raise NotImplementedError

        async def spawn(self, kind):
            await asyncio.sleep(0)
            process = SlowToDie(kind)
            events.append(f"spawn {process.pid}")
            self.spawned.append(process)
            return process

        def terminate(self, process):
            process.terminate()

        def running(self):
            return [p for p in self.spawned if p.running]

    spawner = RecordingSpawner()

    async def scenario():
        manager = StreamSessionManager(spawner)
        handle = await manager.subscribe()
        manager.unsubscribe(handle)
        await manager.subscribe()

    asyncio.run(scenario())
    old, new = spawner.spawned
    assert events == [f"spawn {old.pid}", f"exit {old.pid}", f"spawn {new.pid}"]


def test_randomized_interleavings_keep_invariant(spawner):
    rng = random.Random(1234)

    async def subscriber(manager, hold: int):
        handle = await manager.subscribe()
        _assert_invariant(manager, spawner)
        for _ in range(hold):
            await asyncio.sleep(0)
        manager.unsubscribe(handle)
        if rng.random() < 0.3:
            manager.unsubscribe(handle)
        _assert_invariant(manager, spawner)

    async def scenario():
        manager = StreamSessionManager(spawner)
        for _ in range(30):
            tasks = [
                asyncio.ensure_future(subscriber(manager, rng.randint(0, 6)))
                for _ in range(rng.randint(1, 8))
            ]
            for _ in range(rng.randint(0, 4)):
                await asyncio.sleep(0)
                _assert_invariant(manager, spawner)
            await asyncio.gather(*tasks)
            _assert_invariant(manager, spawner)
        await _settle()
        return manager

    manager = asyncio.run(scenario())
    assert manager.subscriber_count == 0
    assert manager.process is None
    assert spawner.running() == []
    assert all(p.terminate_calls == 1 for p in spawner.spawned)


def test_unexpected_exit_ends_streams_without_restart(spawner):
    async def scenario():
        manager = StreamSessionManager(spawner)
        handle = await manager.subscribe()
        process = spawner.spawned[0]
        process.emit(b"partial")
        process.exit(1)
        data = b"".join([chunk async for chunk in handle.sink])

        with pytest.raises(CaptureUnavailable) as excinfo:
            await manager.subscribe()
        assert excinfo.value.status_code == 503

        manager.unsubscribe(handle)
        return manager, data

    manager, data = asyncio.run(scenario())
    assert data == b"partial"
    assert len(spawner.spawned) == 1
    assert manager.subscriber_count == 0
    assert manager.process is None


def test_diagnostics_are_logged_not_fatal(spawner, caplog):
    async def scenario():
        manager = StreamSessionManager(spawner)
        handle = await manager.subscribe()
        spawner.spawned[0].emit_diagnostic("mmal: frame dropped\n")
        await _settle()
        return manager, handle

    with caplog.at_level("WARNING", logger="camrelay.session.manager"):
        manager, handle = asyncio.run(scenario())
    assert "mmal: frame dropped" in caplog.text
    assert manager.subscriber_count == 1
    assert spawner.spawned[0].terminate_calls == 0


def test_snapshot_state_and_shutdown(spawner):
    async def scenario():
        manager = StreamSessionManager(spawner)
        handle = await manager.subscribe()
        state = manager.snapshot_state()
        await manager.shutdown()
        manager.unsubscribe(handle)
        return manager, state

    manager, state = asyncio.run(scenario())
    process = spawner.spawned[0]
    assert state["subscribers"] == 1
    assert state["capture"]["pid"] == process.pid
    assert state["capture"]["running"] is True
    assert process.terminate_calls == 1
    assert manager.subscriber_count == 0
    assert manager.snapshot_state() == {"subscribers": 0, "capture": None}
