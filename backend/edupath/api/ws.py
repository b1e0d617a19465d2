"""WebSocket entry point for the realtime layer."""

from __future__ import annotations

from fastapi import APIRouter, WebSocket, status

from edupath.settings import settings

router = APIRouter()


@router.websocket(settings.ws_path)
async def realtime_socket(websocket: WebSocket) -> None:
	realtime = getattr(websocket.app.state, "realtime", None)
	if realtime is None:
		await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
		return
	await realtime.service.serve(websocket)
