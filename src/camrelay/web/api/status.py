"""Status endpoint — subscriber count and capture process health."""

from __future__ import annotations

from fastapi import APIRouter, Request

from camrelay import __version__

router = APIRouter(tags=["status"])


@router.get("/status")
async def status(request: Request):
    state = request.app.state.sessions.snapshot_state()
    return {"service": "camrelay", "version": __version__, **state}
