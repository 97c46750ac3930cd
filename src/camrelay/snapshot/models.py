"""Snapshot request state and the response decision it leads to."""

from __future__ import annotations

import enum
import time
import uuid
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field


class SnapshotState(enum.Enum):
    """Lifecycle of a single snapshot request."""

    STARTED = "started"
    CANCELLED = "cancelled"
    COMMITTED = "committed"
    FAILED = "failed"
    DONE = "done"


@dataclass
class SnapshotRequest:
    """Per-request flags. ``cancelled`` may flip at any time before commit."""

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    cancelled: bool = False
    committed: bool = False
    state: SnapshotState = SnapshotState.STARTED
    start_time: float = field(default_factory=time.monotonic)

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class SnapshotOutcome:
    """Status, headers and payload chosen for a snapshot response."""

    status_code: int
    media_type: str | None = None
    body: bytes = b""
    stream: AsyncIterator[bytes] | None = None
    close: Callable[[], None] = lambda: None
