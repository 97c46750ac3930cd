"""Snapshot controller — one short-lived capture per request.

The response status is chosen only after the process produces its first
output chunk (or a diagnostic), so a failing camera never gets a success
header that cannot be retracted, and a client that went away before any
data arrived gets no image bytes at all.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import AsyncIterator, Coroutine
from typing import Any

from camrelay.capture.base import CaptureSource, Spawner
from camrelay.capture.models import CaptureKind
from camrelay.errors import CaptureDiagnostic, RelayError, UnexpectedExit
from camrelay.snapshot.models import SnapshotOutcome, SnapshotRequest, SnapshotState
from camrelay.trace import NULL_TRACER, EventTracer

logger = logging.getLogger(__name__)

STATUS_CAPTURED = 200
STATUS_CANCELLED = 204
STATUS_CAPTURE_FAILED = 400


class SnapshotController:
    """Runs snapshot captures and stages their responses."""

    def __init__(self, spawner: Spawner, tracer: EventTracer = NULL_TRACER) -> None:
        self._spawner = spawner
        self._trace = tracer
        self._tasks: set[asyncio.Task[Any]] = set()

    async def capture(self, snapshot: SnapshotRequest) -> SnapshotOutcome:
        """Spawn a capture and decide the response from its first output.

        The caller must already be listening for client disconnects and
        calling ``snapshot.cancel()``. SpawnError propagates.
        """
        process = await self._spawner.spawn(CaptureKind.SNAPSHOT)
        self._background(self._watch_exit(process, snapshot))

        chunk_task = asyncio.ensure_future(process.read_chunk())
        diag_task = asyncio.ensure_future(process.read_diagnostic())
        pending: set[asyncio.Future[Any]] = {chunk_task, diag_task}
        try:
            while chunk_task in pending:
                done, pending = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_COMPLETED
                )
                # A diagnostic wins over output that arrived in the same round
                if diag_task in done and diag_task.result():
                    chunk_task.cancel()
                    return self._fail(
                        process, snapshot, CaptureDiagnostic(diag_task.result())
                    )

            chunk = chunk_task.result()
            if not chunk:
                # stdout closed first; stderr may still hold the reason
                text = await diag_task if diag_task in pending else diag_task.result()
                if snapshot.cancelled:
                    return self._discard(process, snapshot)
                if text:
                    return self._fail(process, snapshot, CaptureDiagnostic(text))
                return self._fail(
                    process, snapshot, UnexpectedExit(await process.wait())
                )
        except asyncio.CancelledError:
            chunk_task.cancel()
            diag_task.cancel()
            self._spawner.terminate(process)
            raise

        if snapshot.cancelled:
            diag_task.cancel()
            return self._discard(process, snapshot)

        snapshot.committed = True
        snapshot.state = SnapshotState.COMMITTED
        self._trace("snapshot", "commit", request=snapshot.request_id, data=chunk)
        self._background(self._log_late_diagnostics(process, snapshot, diag_task))
        return SnapshotOutcome(
            status_code=STATUS_CAPTURED,
            media_type=self._spawner.profile(CaptureKind.SNAPSHOT).media_type,
            stream=self._relay_output(process, chunk),
            close=functools.partial(self._finish, process, snapshot),
        )

    def _discard(
        self, process: CaptureSource, snapshot: SnapshotRequest
    ) -> SnapshotOutcome:
        snapshot.state = SnapshotState.CANCELLED
        self._spawner.terminate(process)
        logger.info("snapshot %s> cancelled before data, discarding", snapshot.request_id)
        return SnapshotOutcome(
            status_code=STATUS_CANCELLED,
            close=functools.partial(self._finish, process, snapshot),
        )

    def _fail(
        self, process: CaptureSource, snapshot: SnapshotRequest, error: RelayError
    ) -> SnapshotOutcome:
        snapshot.state = SnapshotState.FAILED
        self._spawner.terminate(process)
        logger.warning("snapshot %s> error: %s", snapshot.request_id, error)
        text = error.text if isinstance(error, CaptureDiagnostic) else str(error)
        return SnapshotOutcome(
            status_code=STATUS_CAPTURE_FAILED,
            media_type="text/plain",
            body=text.encode("utf-8"),
            close=functools.partial(self._finish, process, snapshot),
        )

    def _finish(self, process: CaptureSource, snapshot: SnapshotRequest) -> None:
        if snapshot.state is SnapshotState.DONE:
            return
        self._spawner.terminate(process)
        snapshot.state = SnapshotState.DONE

    async def _relay_output(
        self, process: CaptureSource, first_chunk: bytes
    ) -> AsyncIterator[bytes]:
        yield first_chunk
        while True:
            chunk = await process.read_chunk()
            if not chunk:
                return
            yield chunk

    async def _log_late_diagnostics(
        self,
        process: CaptureSource,
        snapshot: SnapshotRequest,
        first: asyncio.Future[str],
    ) -> None:
        text = await first
        while text:
            # Already committed to a success response; nothing left to signal
            logger.warning(
                "snapshot %s> error after commit: %s",
                snapshot.request_id,
                text.rstrip(),
            )
            text = await process.read_diagnostic()

    async def _watch_exit(self, process: CaptureSource, snapshot: SnapshotRequest) -> None:
        returncode = await process.wait()
        elapsed = (time.monotonic() - snapshot.start_time) * 1000
        logger.info(
            "snapshot %s> pid %d exited with %s after %.1fms",
            snapshot.request_id,
            process.pid,
            returncode,
            elapsed,
        )

    def _background(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
