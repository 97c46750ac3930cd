"""Continuous stream endpoint — every client shares one capture process."""

from __future__ import annotations

import functools

from fastapi import APIRouter, Request

from camrelay.capture.models import CaptureKind
from camrelay.web.responses import ClosingStreamingResponse

router = APIRouter(tags=["stream"])


@router.get("/stream")
async def stream(request: Request):
    sessions = request.app.state.sessions
    handle = await sessions.subscribe()
    profile = request.app.state.spawner.profile(CaptureKind.CONTINUOUS)
    return ClosingStreamingResponse(
        handle.sink,
        on_close=functools.partial(sessions.unsubscribe, handle),
        media_type=profile.media_type,
    )
