"""Request boundary — request ids, timing and default response headers."""

from __future__ import annotations

import hashlib
import logging
import time

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from camrelay.trace import NULL_TRACER, EventTracer

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"Connection": "close"}


def describe_request(scope: Scope) -> str:
    """One-line description of who asked for what, and when."""
    client = scope.get("client") or ("?", 0)
    server = scope.get("server") or ("?", 0)
    return (
        f"remote-{{{client[0]}:{client[1]}}} "
        f"local-{{{server[0]}:{server[1]}}} "
        f"url-{{{scope.get('path', '')}}} "
        f"@{{{int(time.time())}}}"
    )


def request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or "-"


class RequestContextMiddleware:
    """Tags each HTTP request with an id and logs how long it took."""

    def __init__(self, app: ASGIApp, tracer: EventTracer = NULL_TRACER) -> None:
        self.app = app
        self._trace = tracer

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        desc = describe_request(scope)
        rid = hashlib.md5(desc.encode("utf-8")).hexdigest()
        scope.setdefault("state", {})["request_id"] = rid
        started = time.perf_counter()
        status: int | None = None

        async def send_with_defaults(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
                headers = MutableHeaders(scope=message)
                for name, value in DEFAULT_HEADERS.items():
                    headers.setdefault(name, value)
                self._trace("response", "start", request=rid, status=status)
            await send(message)

        logger.info("incoming> %s %s", rid, desc)
        try:
            await self.app(scope, receive, send_with_defaults)
        except Exception:
            # The error handler responds outside this middleware
            status = status or 500
            raise
        finally:
            elapsed = (time.perf_counter() - started) * 1000
            logger.info("%s> %s finished in %.1fms", rid, status or "-", elapsed)
