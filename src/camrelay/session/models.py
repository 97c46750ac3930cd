"""Session data models — subscriptions to the shared continuous capture."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field

from camrelay.relay.fanout import RelaySink


@dataclass
class SubscriptionHandle:
    """One client's attachment to the shared capture stream."""

    sink: RelaySink
    pid: int
    generation: int = 0
    released: bool = False
    start_time: float = field(default_factory=time.time)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
