"""Key/value security settings with transactional upserts."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import asyncpg

from edupath.domain.exceptions import handle_database_error
from edupath.domain.repository import PooledRepository
from edupath.domain.security.models import SecuritySetting

DEFAULT_DESCRIPTIONS: dict[str, str] = {
	"team_login_visible": "Controls whether the team login option is visible on the authentication page",
	"maintenance_mode": "Enables maintenance mode which blocks all users except admins and forces logout",
	"forum_cooling_period_enabled": "When enabled, new accounts must wait 1 hour before posting in community forum",
	"force_logout_enabled": "When enabled, forces all users to log out and prevents new logins",
	"secret_search_code": "Secret code required for team member registration",
}


def default_description(setting_key: str) -> str:
	return DEFAULT_DESCRIPTIONS.get(setting_key, "Custom security setting")


class _InMemorySettingsStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._settings: dict[str, SecuritySetting] = {}

	async def get(self, setting_key: str) -> Optional[SecuritySetting]:
		async with self._lock:
			return self._settings.get(setting_key)

	async def all(self) -> list[SecuritySetting]:
		async with self._lock:
			return [self._settings[key] for key in sorted(self._settings)]

	async def upsert(
		self,
		setting_key: str,
		setting_value: str,
		updated_by: str,
		description: Optional[str],
	) -> SecuritySetting:
		async with self._lock:
			now = datetime.now(timezone.utc)
			existing = self._settings.get(setting_key)
			if existing is not None:
				setting = existing.model_copy(
					update={"setting_value": setting_value, "updated_by": updated_by, "updated_at": now}
				)
			else:
				setting = SecuritySetting(
					id=str(uuid4()),
					setting_key=setting_key,
					setting_value=setting_value,
					description=description or default_description(setting_key),
					updated_by=updated_by,
					created_at=now,
					updated_at=now,
				)
			self._settings[setting_key] = setting
			return setting


_MEMORY_STORE = _InMemorySettingsStore()


class SecuritySettingsRepository(PooledRepository):
	def __init__(
		self,
		*,
		pool: Optional[asyncpg.pool.Pool] = None,
		memory_store: Optional[_InMemorySettingsStore] = None,
	) -> None:
		super().__init__(pool=pool)
		self._memory = memory_store or _MEMORY_STORE

	async def find_by_key(self, setting_key: str) -> Optional[SecuritySetting]:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.get(setting_key)
		try:
			async with pool.acquire() as conn:
				record = await conn.fetchrow(
					"SELECT * FROM security_settings WHERE setting_key=$1 LIMIT 1",
					setting_key,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "SecuritySettingsRepository.find_by_key")
		return SecuritySetting.model_validate(dict(record)) if record else None

	async def upsert_setting(
		self,
		setting_key: str,
		setting_value: str,
		updated_by: str,
		description: Optional[str] = None,
	) -> SecuritySetting:
		"""Update the value of an existing key or insert it.

		The description is only written on insert; updates keep whatever the
		row already carries.
		"""
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.upsert(setting_key, setting_value, updated_by, description)
		try:
			async with pool.acquire() as conn:
				record = await conn.fetchrow(
					"""
					INSERT INTO security_settings (id, setting_key, setting_value, updated_by, description)
					VALUES ($1, $2, $3, $4, $5)
					ON CONFLICT (setting_key) DO UPDATE
					SET setting_value = EXCLUDED.setting_value,
						updated_by = EXCLUDED.updated_by,
						updated_at = NOW()
					RETURNING *
					""",
					str(uuid4()),
					setting_key,
					setting_value,
					updated_by,
					description or default_description(setting_key),
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "SecuritySettingsRepository.upsert_setting")
		return SecuritySetting.model_validate(dict(record))

	async def get_all_settings(self) -> list[SecuritySetting]:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.all()
		try:
			async with pool.acquire() as conn:
				rows = await conn.fetch("SELECT * FROM security_settings ORDER BY setting_key")
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "SecuritySettingsRepository.get_all_settings")
		return [SecuritySetting.model_validate(dict(row)) for row in rows]
