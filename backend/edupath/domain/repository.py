"""Shared plumbing for asyncpg repositories with an in-memory fallback."""

from __future__ import annotations

import logging
from typing import Optional

import asyncpg

from edupath.infra.postgres import get_pool

_LOG = logging.getLogger(__name__)


class PooledRepository:
	"""Resolves the asyncpg pool once; ``None`` selects the in-memory store."""

	def __init__(self, *, pool: Optional[asyncpg.pool.Pool] = None) -> None:
		self._pool = pool
		self._pool_checked = pool is not None

	async def _pool_or_none(self) -> Optional[asyncpg.pool.Pool]:
		if self._pool_checked:
			return self._pool
		self._pool_checked = True
		try:
			pool = await get_pool()
		except AssertionError:
			pool = None
		except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError):
			_LOG.warning("repository.pool_unavailable", exc_info=True)
			pool = None
		self._pool = pool
		return pool
