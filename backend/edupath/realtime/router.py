"""Targeted and broadcast delivery over the connection registry."""

from __future__ import annotations

from typing import Iterable

from edupath.realtime.messages import OutboundMessage
from edupath.realtime.registry import Connection, ConnectionRegistry
from edupath.realtime.transport import send_message


class MessageRouter:
	"""Delivers messages; every method returns the number of successful writes.

	A failing connection is logged and skipped, never aborting the rest.
	"""

	def __init__(self, registry: ConnectionRegistry) -> None:
		self._registry = registry

	async def send_to_connection(self, connection_id: str, message: OutboundMessage) -> int:
		connection = self._registry.get(connection_id)
		if connection is None:
			return 0
		return int(await send_message(connection.id, connection.transport, message))

	async def send_to_user(self, user_id: str, message: OutboundMessage) -> int:
		return await self._deliver(self._registry.connections_for_user(user_id), message)

	async def broadcast_to_all(self, message: OutboundMessage) -> int:
		return await self._deliver(self._registry.open_connections(), message)

	@staticmethod
	async def _deliver(connections: Iterable[Connection], message: OutboundMessage) -> int:
		delivered = 0
		for connection in connections:
			if await send_message(connection.id, connection.transport, message):
				delivered += 1
		return delivered
