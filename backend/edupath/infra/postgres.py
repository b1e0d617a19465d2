"""AsyncPG pool shared by the repositories and health checks."""

from __future__ import annotations

import asyncio
import json
import time
from typing import Optional

import asyncpg

from edupath.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None


async def _init_connection(conn: asyncpg.Connection) -> None:
	# poll options are stored as JSONB; decode them on the way out
	await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


async def create_pool(dsn: Optional[str] = None) -> asyncpg.pool.Pool:
	# Force 127.0.0.1 instead of localhost to avoid IPv6 issues on Windows
	target = (dsn or settings.postgres_url).replace("localhost", "127.0.0.1")
	return await asyncpg.create_pool(
		dsn=target,
		min_size=settings.postgres_min_pool_size,
		max_size=settings.postgres_max_pool_size,
		ssl="require" if settings.postgres_ssl else "disable",
		init=_init_connection,
	)


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await create_pool()
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


async def ping(pool: asyncpg.pool.Pool, *, timeout: float = 0.3) -> float:
	"""Run ``SELECT 1`` and return the round trip in seconds."""
	start = time.perf_counter()
	async with pool.acquire() as conn:
		await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
	return time.perf_counter() - start


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None
