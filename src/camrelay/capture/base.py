"""Protocols the relay and snapshot code rely on — real and fake processes satisfy them."""

from __future__ import annotations

from typing import Protocol

from camrelay.capture.models import CaptureKind, CaptureProfile


class CaptureSource(Protocol):
    """A capture process as seen by its owner."""

    pid: int
    kind: CaptureKind
    terminate_requested: bool

    @property
    def running(self) -> bool:
        """Whether the process has not exited yet."""
        ...

    @property
    def returncode(self) -> int | None:
        ...

    async def read_chunk(self) -> bytes:
        """Next stdout chunk, ``b""`` at end of stream."""
        ...

    async def read_diagnostic(self) -> str:
        """Next stderr chunk, ``""`` at end of stream."""
        ...

    async def wait(self) -> int:
        ...

    def terminate(self) -> None:
        """Request termination. Idempotent."""
        ...

    async def stop(self, timeout: float = 5.0) -> int:
        ...


class Spawner(Protocol):
    """Starts capture processes of a given kind."""

    def profile(self, kind: CaptureKind) -> CaptureProfile:
        ...

    async def spawn(self, kind: CaptureKind) -> CaptureSource:
        """Start a process. Raises SpawnError on failure."""
        ...

    def terminate(self, process: CaptureSource) -> None:
        """Ask a process this spawner started to exit. Idempotent."""
        ...
