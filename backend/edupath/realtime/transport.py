"""Socket transport abstraction and the guarded send used by every path."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from edupath.obs import metrics as obs_metrics
from edupath.realtime.messages import OutboundMessage, encode

_LOG = logging.getLogger(__name__)

POLICY_VIOLATION = 1008
GOING_AWAY = 1001


@runtime_checkable
class Transport(Protocol):
	@property
	def is_open(self) -> bool: ...

	async def send_text(self, data: str) -> None: ...

	async def close(self, code: int = 1000, reason: str = "") -> None: ...


class StarletteTransport:
	"""Adapts a Starlette ``WebSocket`` to :class:`Transport`."""

	def __init__(self, websocket: WebSocket) -> None:
		self._websocket = websocket
		self._closed = False

	@property
	def is_open(self) -> bool:
		if self._closed:
			return False
		return (
			self._websocket.client_state == WebSocketState.CONNECTED
			and self._websocket.application_state == WebSocketState.CONNECTED
		)

	async def send_text(self, data: str) -> None:
		await self._websocket.send_text(data)

	async def close(self, code: int = 1000, reason: str = "") -> None:
		if self._closed:
			return
		self._closed = True
		if self._websocket.application_state == WebSocketState.DISCONNECTED:
			return
		try:
			await self._websocket.close(code=code, reason=reason)
		except (RuntimeError, WebSocketDisconnect):
			_LOG.debug("realtime.close_after_disconnect", extra={"code": code})


async def send_message(connection_id: str, transport: Transport, message: OutboundMessage) -> bool:
	"""Serialize and write one message; never raises.

	Returns ``True`` when the frame was handed to the transport.
	"""
	if not transport.is_open:
		return False
	message_type = message.type
	try:
		await transport.send_text(encode(message))
	except Exception:
		obs_metrics.ws_send_failed(message_type)
		_LOG.warning(
			"realtime.send_failed",
			exc_info=True,
			extra={"connection_id": connection_id, "message_type": message_type},
		)
		return False
	obs_metrics.ws_outbound(message_type)
	return True
