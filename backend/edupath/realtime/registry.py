"""In-memory registry of live socket sessions.

Mutated only from the event loop; no locking.
"""

from __future__ import annotations

import itertools
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Optional

from edupath.obs import metrics as obs_metrics
from edupath.realtime.messages import ConnectedMessage, utc_timestamp
from edupath.realtime.transport import Transport, send_message

_LOG = logging.getLogger(__name__)


@dataclass(slots=True)
class Connection:
	id: str
	transport: Transport
	user_id: Optional[str] = None

	@property
	def is_authenticated(self) -> bool:
		return self.user_id is not None

	@property
	def is_open(self) -> bool:
		return self.transport.is_open


class ConnectionRegistry:
	def __init__(self) -> None:
		self._connections: dict[str, Connection] = {}
		self._sequence = itertools.count(1)

	def __len__(self) -> int:
		return len(self._connections)

	def __contains__(self, connection_id: object) -> bool:
		return connection_id in self._connections

	def _next_id(self) -> str:
		return f"ws_{int(time.time() * 1000)}_{next(self._sequence)}_{secrets.token_hex(4)}"

	async def register(self, transport: Transport) -> str:
		"""Store a new session and send it the ``connected`` acknowledgement."""
		connection_id = self._next_id()
		self._connections[connection_id] = Connection(id=connection_id, transport=transport)
		obs_metrics.ws_connected()
		_LOG.info(
			"realtime.connected",
			extra={"connection_id": connection_id, "total_connections": len(self._connections)},
		)
		await send_message(connection_id, transport, ConnectedMessage(connection_id=connection_id))
		return connection_id

	def unregister(self, connection_id: str) -> Optional[Connection]:
		connection = self._connections.pop(connection_id, None)
		if connection is None:
			return None
		obs_metrics.ws_disconnected(authenticated=connection.is_authenticated)
		_LOG.info(
			"realtime.disconnected",
			extra={"connection_id": connection_id, "total_connections": len(self._connections)},
		)
		return connection

	def bind_user(self, connection_id: str, user_id: str) -> Connection:
		connection = self._connections[connection_id]
		if connection.user_id is None:
			obs_metrics.ws_authenticated()
		connection.user_id = user_id
		return connection

	def get(self, connection_id: str) -> Optional[Connection]:
		return self._connections.get(connection_id)

	def open_connections(self) -> list[Connection]:
		return [conn for conn in self._connections.values() if conn.is_open]

	def authenticated_connections(self) -> list[Connection]:
		return [conn for conn in self._connections.values() if conn.is_authenticated and conn.is_open]

	def connections_for_user(self, user_id: str) -> list[Connection]:
		return [conn for conn in self._connections.values() if conn.user_id == user_id and conn.is_open]

	def clear(self) -> list[Connection]:
		drained = list(self._connections.values())
		for connection in drained:
			self.unregister(connection.id)
		return drained

	def stats(self) -> dict[str, Any]:
		return {
			"totalConnections": len(self._connections),
			"authenticatedConnections": sum(1 for conn in self._connections.values() if conn.is_authenticated),
			"timestamp": utc_timestamp(),
		}
