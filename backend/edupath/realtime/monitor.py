"""Periodic connection statistics logger."""

from __future__ import annotations

import asyncio
import logging

from edupath.realtime.registry import ConnectionRegistry

_LOG = logging.getLogger(__name__)


class ConnectionMonitor:
	def __init__(self, registry: ConnectionRegistry, *, interval_seconds: float = 30.0) -> None:
		self.registry = registry
		self.interval_seconds = interval_seconds
		self._running = False

	async def run_forever(self) -> None:
		self._running = True
		while self._running:
			await asyncio.sleep(self.interval_seconds)
			if not self._running:
				break
			self.run_once()

	def stop(self) -> None:
		self._running = False

	def run_once(self) -> dict[str, object]:
		stats = self.registry.stats()
		_LOG.info(
			"realtime.stats",
			extra={
				"total_connections": stats["totalConnections"],
				"authenticated_connections": stats["authenticatedConnections"],
			},
		)
		return stats
