"""Socket session lifecycle and inbound message dispatch."""

from __future__ import annotations

import logging
from typing import Optional

from starlette.websockets import WebSocket

from edupath.obs import metrics as obs_metrics
from edupath.obs.logging import bind_context, reset_context
from edupath.realtime.auth import AuthenticationGate
from edupath.realtime.messages import (
	ErrorMessage,
	MalformedMessage,
	OutboundMessage,
	PongMessage,
	SubscribedMessage,
	parse_inbound,
)
from edupath.realtime.registry import ConnectionRegistry
from edupath.realtime.router import MessageRouter
from edupath.realtime.transport import GOING_AWAY, StarletteTransport, Transport

_LOG = logging.getLogger(__name__)

_KNOWN_TYPES = frozenset({"authenticate", "ping", "subscribe"})


class RealtimeService:
	def __init__(self, registry: ConnectionRegistry, router: MessageRouter, gate: AuthenticationGate) -> None:
		self.registry = registry
		self.router = router
		self.gate = gate

	async def serve(self, websocket: WebSocket) -> None:
		"""Run one socket session until the peer leaves or the server drops it."""
		await websocket.accept()
		connection_id = await self.open(StarletteTransport(websocket))
		tokens = bind_context(connection_id=connection_id)
		try:
			while connection_id in self.registry:
				frame = await websocket.receive()
				if frame["type"] == "websocket.disconnect":
					break
				raw: Optional[str | bytes] = frame.get("text")
				if raw is None:
					raw = frame.get("bytes")
				await self.handle_frame(connection_id, raw if raw is not None else "")
		except Exception:
			_LOG.warning("realtime.connection_error", exc_info=True, extra={"connection_id": connection_id})
		finally:
			self.registry.unregister(connection_id)
			reset_context(tokens)

	async def open(self, transport: Transport) -> str:
		return await self.registry.register(transport)

	async def handle_frame(self, connection_id: str, raw: str | bytes) -> None:
		connection = self.registry.get(connection_id)
		if connection is None:
			return
		try:
			message = parse_inbound(raw)
		except MalformedMessage:
			obs_metrics.ws_inbound("malformed")
			_LOG.info("realtime.malformed_message", extra={"connection_id": connection_id})
			await self._reply(connection_id, ErrorMessage(message="Invalid message format"))
			return

		message_type = message.type if message.type in _KNOWN_TYPES else "unknown"
		obs_metrics.ws_inbound(message_type)
		if message.type == "authenticate":
			user_id = await self.gate.authenticate(connection_id, message.token)
			if user_id:
				bind_context(user_id=user_id)
		elif message.type == "ping":
			await self._reply(connection_id, PongMessage())
		elif message.type == "subscribe":
			await self._reply(connection_id, SubscribedMessage(topic=message.topic))
		else:
			_LOG.info(
				"realtime.unknown_message",
				extra={"connection_id": connection_id, "message_type": message.type},
			)

	async def _reply(self, connection_id: str, message: OutboundMessage) -> None:
		await self.router.send_to_connection(connection_id, message)

	async def shutdown(self) -> int:
		"""Close every live socket with 1001 and empty the registry."""
		drained = self.registry.clear()
		for connection in drained:
			try:
				await connection.transport.close(code=GOING_AWAY, reason="Server shutting down")
			except Exception:
				_LOG.debug("realtime.shutdown_close_failed", exc_info=True, extra={"connection_id": connection.id})
		_LOG.info("realtime.shutdown", extra={"closed_connections": len(drained)})
		return len(drained)
