"""Fan-out relay — one upstream capture stream, many independent sinks."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import AsyncIterator

from camrelay.capture.base import CaptureSource
from camrelay.trace import NULL_TRACER, EventTracer

logger = logging.getLogger(__name__)

DEFAULT_SINK_BUFFER = 8 * 1024 * 1024

_sink_ids = itertools.count(1)


class RelaySink:
    """Per-subscriber buffer fed by the relay and drained by one response.

    Feeding never blocks. A sink whose backlog exceeds ``max_buffer_bytes``
    closes itself with ``overflowed`` set; the relay then drops it.
    """

    def __init__(self, max_buffer_bytes: int = DEFAULT_SINK_BUFFER) -> None:
        self.id = next(_sink_ids)
        self.max_buffer_bytes = max_buffer_bytes
        self.overflowed = False
        self.closed = False
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._buffered = 0

    def feed(self, chunk: bytes) -> bool:
        """Queue a chunk. Returns False if the sink is (now) closed."""
        if self.closed:
            return False
        if self._buffered + len(chunk) > self.max_buffer_bytes:
            logger.warning(
                "Sink %d overflowed (%d bytes buffered) — closing",
                self.id,
                self._buffered,
            )
            self.overflowed = True
            self.close()
            return False
        self._buffered += len(chunk)
        self._queue.put_nowait(chunk)
        return True

    def close(self) -> None:
        """Signal end-of-stream after whatever is already buffered."""
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)

    async def get(self) -> bytes | None:
        """Next chunk, or None at end-of-stream."""
        chunk = await self._queue.get()
        if chunk is None:
            # Keep the sentinel for any later reader
            self._queue.put_nowait(None)
            return None
        self._buffered -= len(chunk)
        return chunk

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.get()
            if chunk is None:
                return
            yield chunk


class FanoutRelay:
    """Pumps one capture process's stdout into every attached sink."""

    def __init__(
        self,
        source: CaptureSource,
        sink_buffer_bytes: int = DEFAULT_SINK_BUFFER,
        tracer: EventTracer = NULL_TRACER,
    ) -> None:
        self._source = source
        self._sink_buffer_bytes = sink_buffer_bytes
        self._trace = tracer
        self._sinks: dict[int, RelaySink] = {}
        self._task: asyncio.Task[None] | None = None
        self.finished = False
        self.bytes_relayed = 0

    @property
    def sink_count(self) -> int:
        return len(self._sinks)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.ensure_future(self._pump())

    def attach(self) -> RelaySink:
        """Register a sink that receives everything read from now on."""
        sink = RelaySink(self._sink_buffer_bytes)
        if self.finished:
            sink.close()
            return sink
        self._sinks[sink.id] = sink
        self._trace("relay", "attach", sink=sink.id, sinks=len(self._sinks))
        return sink

    def detach(self, sink: RelaySink) -> None:
        """Stop delivery to ``sink``; other sinks are untouched."""
        if self._sinks.pop(sink.id, None) is not None:
            self._trace("relay", "detach", sink=sink.id, sinks=len(self._sinks))
        sink.close()

    def stop(self) -> None:
        """Cancel the pump and end every sink's stream."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._finish()

    async def _pump(self) -> None:
        try:
            while True:
                chunk = await self._source.read_chunk()
                if not chunk:
                    break
                self.bytes_relayed += len(chunk)
                for sink in list(self._sinks.values()):
                    if not sink.feed(chunk):
                        self._sinks.pop(sink.id, None)
        except Exception:
            logger.exception("Relay pump for pid %d failed", self._source.pid)
        else:
            if not self._source.terminate_requested:
                logger.warning(
                    "Capture pid %d ended its stream unexpectedly — %d sink(s) lose data",
                    self._source.pid,
                    len(self._sinks),
                )
        finally:
            self._finish()

    def _finish(self) -> None:
        if self.finished:
            return
        self.finished = True
        self._trace("relay", "end", sinks=len(self._sinks), relayed=self.bytes_relayed)
        for sink in self._sinks.values():
            sink.close()
        self._sinks.clear()
