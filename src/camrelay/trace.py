"""Optional event tracing for processes, relays and requests.

When enabled, every component reports its lifecycle and I/O events as one
structured line on the ``camrelay.trace`` logger. When disabled the hook is a
no-op, so call sites never need to check the flag themselves.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("camrelay.trace")

_PREVIEW_CHARS = 8


def describe(value: Any) -> str:
    """Short, type-tagged rendering of an event argument."""
    if isinstance(value, (bytes, bytearray)):
        return f"bytes[{len(value)}]"
    if isinstance(value, str):
        return f"str={value[:_PREVIEW_CHARS]!r}"
    if isinstance(value, (bool, int, float)):
        return f"{type(value).__name__}={value}"
    if value is None:
        return "None"
    return type(value).__name__


class EventTracer:
    """Structured-logging hook injected into capture, relay and web events."""

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled
        if enabled:
            logger.setLevel(logging.DEBUG)

    def __call__(self, source: str, event: str, **details: Any) -> None:
        if not self.enabled:
            return
        fields = ", ".join(f"{k}={describe(v)}" for k, v in details.items())
        logger.debug("ev:%s:%s(%s)", source, event, fields)


NULL_TRACER = EventTracer(enabled=False)
