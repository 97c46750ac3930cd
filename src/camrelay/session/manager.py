"""Stream session manager — one shared continuous capture, started on demand."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from camrelay.capture.base import CaptureSource, Spawner
from camrelay.capture.models import CaptureKind
from camrelay.errors import CaptureUnavailable, SpawnError
from camrelay.relay.fanout import DEFAULT_SINK_BUFFER, FanoutRelay
from camrelay.session.models import SubscriptionHandle
from camrelay.trace import NULL_TRACER, EventTracer

logger = logging.getLogger(__name__)


class StreamSessionManager:
    """Owns the continuous capture process and its subscriber count.

    The process is spawned by the first ``subscribe()`` and terminated by the
    ``unsubscribe()`` that brings the count back to zero. ``subscribe()``
    serializes on a lock because spawning awaits; ``unsubscribe()`` never
    awaits, so the decrement and the terminate decision happen in one step.
    A subscriber arriving while the previous process is still dying waits
    for it to exit and then gets a fresh process.
    """

    def __init__(
        self,
        spawner: Spawner,
        sink_buffer_bytes: int = DEFAULT_SINK_BUFFER,
        stop_timeout: float = 5.0,
        tracer: EventTracer = NULL_TRACER,
    ) -> None:
        self._spawner = spawner
        self._sink_buffer_bytes = sink_buffer_bytes
        self._stop_timeout = stop_timeout
        self._trace = tracer
        self._lock = asyncio.Lock()
        self._process: CaptureSource | None = None
        self._relay: FanoutRelay | None = None
        self._count = 0
        self._generation = 0
        self._reaper: asyncio.Task[int] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def subscriber_count(self) -> int:
        return self._count

    @property
    def process(self) -> CaptureSource | None:
        return self._process

    async def subscribe(self) -> SubscriptionHandle:
        """Attach a new subscriber, spawning the capture if none is running.

        Raises CaptureUnavailable if the process cannot be started, or if the
        current process already exited while older subscribers remain.
        """
        async with self._lock:
            if self._count == 0:
                await self._await_reaper()
                await self._start_session()
            elif self._process is None or not self._process.running or (
                self._relay is not None and self._relay.finished
            ):
                raise CaptureUnavailable(
                    f"Capture process exited; {self._count} subscriber(s) still draining",
                    status_code=503,
                )

            assert self._process is not None and self._relay is not None
            sink = self._relay.attach()
            self._count += 1
            handle = SubscriptionHandle(
                sink=sink, pid=self._process.pid, generation=self._generation
            )

        logger.info(
            "Subscriber %s attached to pid %d (%d active)",
            handle.id,
            handle.pid,
            self._count,
        )
        self._trace("session", "subscribe", handle=handle.id, count=self._count)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Release a subscription. Calling it again for the same handle is a no-op."""
        if handle.released:
            return
        handle.released = True

        if handle.generation != self._generation or self._relay is None:
            # Session was already torn down by shutdown()
            handle.sink.close()
            return
        self._relay.detach(handle.sink)

        self._count -= 1
        logger.info("Subscriber %s detached (%d active)", handle.id, self._count)
        self._trace("session", "unsubscribe", handle=handle.id, count=self._count)

        if self._count == 0:
            self._end_session()

    def snapshot_state(self) -> dict[str, Any]:
        """Current session state for status reporting."""
        process = self._process
        capture: dict[str, Any] | None = None
        if process is not None:
            capture = {
                "pid": process.pid,
                "running": process.running,
                "returncode": process.returncode,
            }
            usage = getattr(process, "resource_usage", None)
            if usage is not None:
                capture["usage"] = usage()
            if self._relay is not None:
                capture["bytes_relayed"] = self._relay.bytes_relayed
        return {"subscribers": self._count, "capture": capture}

    async def shutdown(self) -> None:
        """Stop any live capture, e.g. on application shutdown."""
        async with self._lock:
            if self._process is not None:
                self._count = 0
                self._end_session()
            await self._await_reaper()
        for task in list(self._tasks):
            task.cancel()

    async def _start_session(self) -> None:
        try:
            process = await self._spawner.spawn(CaptureKind.CONTINUOUS)
        except SpawnError as exc:
            raise CaptureUnavailable(str(exc)) from exc

        relay = FanoutRelay(
            process, sink_buffer_bytes=self._sink_buffer_bytes, tracer=self._trace
        )
        relay.start()
        self._generation += 1
        self._process = process
        self._relay = relay
        self._background(self._log_diagnostics(process))
        logger.info("Continuous capture started (pid %d)", process.pid)

    def _end_session(self) -> None:
        process, relay = self._process, self._relay
        self._process = None
        self._relay = None
        if relay is not None:
            relay.stop()
        if process is None:
            return
        self._spawner.terminate(process)
        self._reaper = self._background(process.stop(self._stop_timeout))
        logger.info("Last subscriber left — capture pid %d stopping", process.pid)

    async def _await_reaper(self) -> None:
        reaper = self._reaper
        if reaper is None:
            return
        try:
            await asyncio.shield(reaper)
        except Exception:
            logger.exception("Error while waiting for previous capture to exit")
        if self._reaper is reaper:
            self._reaper = None

    async def _log_diagnostics(self, process: CaptureSource) -> None:
        while True:
            text = await process.read_diagnostic()
            if not text:
                break
            logger.warning("capture[%d]> %s", process.pid, text.rstrip())

    def _background(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
