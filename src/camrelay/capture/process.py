"""Capture process adapter — spawn, read and terminate capture programs."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import psutil

from camrelay.capture.base import CaptureSource
from camrelay.capture.models import DEFAULT_PROFILES, CaptureKind, CaptureProfile
from camrelay.errors import SpawnError
from camrelay.trace import NULL_TRACER, EventTracer

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
_DIAGNOSTIC_CHUNK = 4096


class CaptureProcess:
    """A running capture program with piped stdout and stderr.

    stdout is exposed as raw byte chunks, stderr as decoded text chunks.
    Neither is interpreted here.
    """

    def __init__(
        self,
        kind: CaptureKind,
        proc: asyncio.subprocess.Process,
        argv: list[str],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        tracer: EventTracer = NULL_TRACER,
    ) -> None:
        self.kind = kind
        self.argv = argv
        self.chunk_size = chunk_size
        self.started_at = time.monotonic()
        self.terminate_requested = False
        self._proc = proc
        self._trace = tracer

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    @property
    def running(self) -> bool:
        return self._proc.returncode is None

    async def read_chunk(self) -> bytes:
        """Next chunk of stdout, ``b""`` at end of stream."""
        assert self._proc.stdout is not None
        data = await self._proc.stdout.read(self.chunk_size)
        self._trace(self._source, "stdout.data" if data else "stdout.end", data=data)
        return data

    async def read_diagnostic(self) -> str:
        """Next chunk of stderr as text, ``""`` at end of stream."""
        assert self._proc.stderr is not None
        data = await self._proc.stderr.read(_DIAGNOSTIC_CHUNK)
        self._trace(self._source, "stderr.data" if data else "stderr.end", data=data)
        return data.decode("utf-8", errors="replace")

    async def wait(self) -> int:
        returncode = await self._proc.wait()
        self._trace(self._source, "exit", code=returncode)
        return returncode

    def terminate(self) -> None:
        """Send SIGTERM. No-op once exited or already asked to terminate."""
        if self.terminate_requested or self._proc.returncode is not None:
            return
        self.terminate_requested = True
        try:
            self._proc.terminate()
        except ProcessLookupError:
            logger.debug("%s already exited", self)
            return
        self._trace(self._source, "terminate")
        logger.info("%s terminated", self)

    async def stop(self, timeout: float = 5.0) -> int:
        """Terminate and wait, escalating to SIGKILL after ``timeout``."""
        self.terminate()
        try:
            return await asyncio.wait_for(self.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s ignored SIGTERM for %.1fs — killing", self, timeout)
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass
            return await self.wait()

    def resource_usage(self) -> dict[str, Any] | None:
        """RSS and CPU times of the running process, or None once gone."""
        if not self.running:
            return None
        try:
            ps = psutil.Process(self.pid)
            with ps.oneshot():
                mem = ps.memory_info()
                cpu = ps.cpu_times()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None
        return {
            "rss": mem.rss,
            "cpu_user": cpu.user,
            "cpu_system": cpu.system,
        }

    @property
    def _source(self) -> str:
        return f"{self.argv[0]}[{self.pid}]"

    def __repr__(self) -> str:
        return f"<CaptureProcess {self.kind.value} {self.argv[0]} pid={self.pid}>"


class ProcessSpawner:
    """Launches capture programs from their fixed profiles."""

    def __init__(
        self,
        profiles: dict[CaptureKind, CaptureProfile] | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        tracer: EventTracer = NULL_TRACER,
    ) -> None:
        self.profiles = dict(profiles or DEFAULT_PROFILES)
        self._chunk_size = chunk_size
        self._trace = tracer

    def profile(self, kind: CaptureKind) -> CaptureProfile:
        return self.profiles[kind]

    async def spawn(self, kind: CaptureKind) -> CaptureProcess:
        """Start the capture program for ``kind``.

        Raises SpawnError when the executable is missing or the OS refuses
        to start it.
        """
        argv = self.profile(kind).argv()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("Cannot start %s: %s", argv[0], exc)
            raise SpawnError(argv, str(exc)) from exc

        process = CaptureProcess(
            kind, proc, argv, chunk_size=self._chunk_size, tracer=self._trace
        )
        logger.info("%s spawned: %s", process, " ".join(argv))
        self._trace(f"{argv[0]}[{proc.pid}]", "spawn", kind=kind.value)
        return process

    def terminate(self, process: CaptureSource) -> None:
        process.terminate()
