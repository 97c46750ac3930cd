"""Shared test fixtures — in-memory capture processes and spawners."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable, Iterable

import pytest

from camrelay.capture.models import DEFAULT_PROFILES, CaptureKind, CaptureProfile
from camrelay.errors import SpawnError

_pids = itertools.count(4000)


class FakeCaptureProcess:
    """Scriptable stand-in for CaptureProcess.

    Preloaded stdout/stderr chunks are readable immediately; with
    ``exit_code`` set, both streams end after them and the process exits.
    """

    def __init__(
        self,
        kind: CaptureKind = CaptureKind.CONTINUOUS,
        stdout: Iterable[bytes] = (),
        stderr: Iterable[str] = (),
        exit_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.pid = next(_pids)
        self.terminate_requested = False
        self.terminate_calls = 0
        self.returncode: int | None = None
        self._stdout: asyncio.Queue[bytes] = asyncio.Queue()
        self._stderr: asyncio.Queue[str] = asyncio.Queue()
        self._stdout_eof = False
        self._stderr_eof = False
        self._exited = asyncio.Event()
        for chunk in stdout:
            self.emit(chunk)
        for text in stderr:
            self.emit_diagnostic(text)
        if exit_code is not None:
            self.exit(exit_code)

    @property
    def running(self) -> bool:
        return self.returncode is None

    def emit(self, chunk: bytes) -> None:
        self._stdout.put_nowait(chunk)

    def emit_diagnostic(self, text: str) -> None:
        self._stderr.put_nowait(text)

    def end_stdout(self) -> None:
        self._stdout.put_nowait(b"")

    def end_stderr(self) -> None:
        self._stderr.put_nowait("")

    def exit(self, code: int = 0) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.end_stdout()
        self.end_stderr()
        self._exited.set()

    async def read_chunk(self) -> bytes:
        if self._stdout_eof:
            return b""
        chunk = await self._stdout.get()
        if not chunk:
            self._stdout_eof = True
        return chunk

    async def read_diagnostic(self) -> str:
        if self._stderr_eof:
            return ""
        text = await self._stderr.get()
        if not text:
            self._stderr_eof = True
        return text

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def terminate(self) -> None:
        if self.terminate_requested or self.returncode is not None:
            return
        self.terminate_requested = True
        self.terminate_calls += 1
        self.exit(-15)

    async def stop(self, timeout: float = 5.0) -> int:
        self.terminate()
        return await self.wait()


class FakeSpawner:
    """Spawner returning FakeCaptureProcess instances."""

    def __init__(
        self,
        factory: Callable[[CaptureKind], FakeCaptureProcess] | None = None,
    ) -> None:
        self.profiles: dict[CaptureKind, CaptureProfile] = dict(DEFAULT_PROFILES)
        self.factory = factory or (lambda kind: FakeCaptureProcess(kind))
        self.spawned: list[FakeCaptureProcess] = []
        self.fail_with: SpawnError | None = None
        self.terminated: list[FakeCaptureProcess] = []

    def profile(self, kind: CaptureKind) -> CaptureProfile:
        return self.profiles[kind]

    async def spawn(self, kind: CaptureKind) -> FakeCaptureProcess:
        # The real spawner yields to the loop while the process starts
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        process = self.factory(kind)
        self.spawned.append(process)
        return process

    def terminate(self, process: FakeCaptureProcess) -> None:
        self.terminated.append(process)
        process.terminate()

    def running(self) -> list[FakeCaptureProcess]:
        return [p for p in self.spawned if p.running]


@pytest.fixture
def fake_process_cls() -> type[FakeCaptureProcess]:
    return FakeCaptureProcess


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def missing_binary_error() -> SpawnError:
    return SpawnError(["raspivid"], "[Errno 2] No such file or directory: 'raspivid'")
