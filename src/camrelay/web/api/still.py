"""Single snapshot endpoint."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response

from camrelay.snapshot.models import SnapshotRequest
from camrelay.web.middleware import request_id
from camrelay.web.responses import ClosingStreamingResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["still"])


@router.get("/still")
async def still(request: Request):
    """Capture one image, or report why there is none."""
    controller = request.app.state.snapshots
    snapshot = SnapshotRequest(request_id=request_id(request))

    # Listen for disconnects before anything can produce a response
    watcher = asyncio.ensure_future(_watch_disconnect(request, snapshot))
    try:
        outcome = await controller.capture(snapshot)
    finally:
        watcher.cancel()

    if outcome.stream is None:
        outcome.close()
        return Response(
            content=outcome.body,
            status_code=outcome.status_code,
            media_type=outcome.media_type,
        )
    return ClosingStreamingResponse(
        outcome.stream,
        on_close=outcome.close,
        status_code=outcome.status_code,
        media_type=outcome.media_type,
    )


async def _watch_disconnect(request: Request, snapshot: SnapshotRequest) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            logger.info("snapshot %s> cancelled by client", snapshot.request_id)
            snapshot.cancel()
            return
