"""Persistence for staff invitation links."""

from __future__ import annotations

import asyncio
import secrets
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import asyncpg

from edupath.domain.exceptions import DuplicateError, NotFoundError, handle_database_error
from edupath.domain.invitations.models import StaffInvitationLink
from edupath.domain.repository import PooledRepository
from edupath.obs import metrics as obs_metrics


def _now() -> datetime:
	return datetime.now(timezone.utc)


def generate_token() -> str:
	return secrets.token_urlsafe(32)


class _InMemoryInvitationStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._links: dict[str, StaffInvitationLink] = {}

	def _by_token(self, token: str) -> Optional[StaffInvitationLink]:
		for link in self._links.values():
			if link.token == token:
				return link
		return None

	def _replace(self, link_id: str, **changes: object) -> StaffInvitationLink:
		link = self._links.get(link_id)
		if link is None:
			raise NotFoundError("StaffInvitationLink", link_id)
		updated = link.model_copy(update=changes)
		self._links[link_id] = updated
		return updated

	async def create(self, link: StaffInvitationLink) -> StaffInvitationLink:
		async with self._lock:
			if self._by_token(link.token) is not None:
				raise DuplicateError("StaffInvitationLink", "token", link.token)
			self._links[link.id] = link
			return link

	async def find_by_token(self, token: str) -> Optional[StaffInvitationLink]:
		async with self._lock:
			return self._by_token(token)

	async def find_all_active(self) -> list[StaffInvitationLink]:
		async with self._lock:
			active = [link for link in self._links.values() if link.is_active]
			return sorted(active, key=lambda link: link.created_at, reverse=True)

	async def update(self, link_id: str, **changes: object) -> StaffInvitationLink:
		async with self._lock:
			return self._replace(link_id, **changes)

	async def increment_usage(self, link_id: str) -> None:
		async with self._lock:
			link = self._links.get(link_id)
			if link is not None:
				self._replace(link_id, used_count=link.used_count + 1, last_used_at=_now())

	async def deactivate(self, link_id: str) -> bool:
		async with self._lock:
			if link_id not in self._links:
				return False
			self._replace(link_id, is_active=False, updated_at=_now())
			return True

	async def claim(self, token: str) -> Optional[StaffInvitationLink]:
		async with self._lock:
			link = self._by_token(token)
			if link is None or not link.is_active:
				return None
			now = _now()
			self._replace(
				link.id,
				used_count=link.used_count + 1,
				is_active=False,
				last_used_at=now,
				updated_at=now,
			)
			return link


_MEMORY_STORE = _InMemoryInvitationStore()


class StaffInvitationRepository(PooledRepository):
	"""Invitation links; ``claim_and_invalidate`` is the only consuming path."""

	def __init__(
		self,
		*,
		pool: Optional[asyncpg.pool.Pool] = None,
		memory_store: Optional[_InMemoryInvitationStore] = None,
	) -> None:
		super().__init__(pool=pool)
		self._memory = memory_store or _MEMORY_STORE

	async def create(self, *, created_by: str, token: Optional[str] = None) -> StaffInvitationLink:
		token = token or generate_token()
		pool = await self._pool_or_none()
		if pool is None:
			now = _now()
			return await self._memory.create(
				StaffInvitationLink(
					id=str(uuid4()),
					token=token,
					created_by=created_by,
					created_at=now,
					updated_at=now,
				)
			)
		try:
			async with pool.acquire() as conn:
				record = await conn.fetchrow(
					"""
					INSERT INTO staff_invitation_links (id, token, created_by)
					VALUES ($1, $2, $3)
					RETURNING *
					""",
					str(uuid4()),
					token,
					created_by,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "StaffInvitationRepository.create")
		return StaffInvitationLink.model_validate(dict(record))

	async def find_by_token(self, token: str) -> Optional[StaffInvitationLink]:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.find_by_token(token)
		try:
			async with pool.acquire() as conn:
				record = await conn.fetchrow(
					"SELECT * FROM staff_invitation_links WHERE token=$1",
					token,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "StaffInvitationRepository.find_by_token")
		return StaffInvitationLink.model_validate(dict(record)) if record else None

	async def find_active_by_token(self, token: str) -> Optional[StaffInvitationLink]:
		link = await self.find_by_token(token)
		if link is None or not link.is_active:
			return None
		return link

	async def find_all_active(self) -> list[StaffInvitationLink]:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.find_all_active()
		try:
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					"""
					SELECT * FROM staff_invitation_links
					WHERE is_active = TRUE
					ORDER BY created_at DESC
					"""
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "StaffInvitationRepository.find_all_active")
		return [StaffInvitationLink.model_validate(dict(row)) for row in rows]

	async def refresh_token(self, link_id: str, new_token: Optional[str] = None) -> StaffInvitationLink:
		"""Rotate the token of a link, keeping its usage history."""
		new_token = new_token or generate_token()
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.update(link_id, token=new_token, updated_at=_now())
		try:
			async with pool.acquire() as conn:
				record = await conn.fetchrow(
					"""
					UPDATE staff_invitation_links
					SET token=$2, updated_at=NOW()
					WHERE id=$1
					RETURNING *
					""",
					link_id,
					new_token,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "StaffInvitationRepository.refresh_token")
		if record is None:
			raise NotFoundError("StaffInvitationLink", link_id)
		return StaffInvitationLink.model_validate(dict(record))

	async def increment_usage_count(self, link_id: str) -> None:
		pool = await self._pool_or_none()
		if pool is None:
			await self._memory.increment_usage(link_id)
			return
		try:
			async with pool.acquire() as conn:
				await conn.execute(
					"""
					UPDATE staff_invitation_links
					SET used_count = used_count + 1, last_used_at = NOW()
					WHERE id=$1
					""",
					link_id,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "StaffInvitationRepository.increment_usage_count")

	async def deactivate(self, link_id: str) -> bool:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.deactivate(link_id)
		try:
			async with pool.acquire() as conn:
				result = await conn.execute(
					"UPDATE staff_invitation_links SET is_active = FALSE, updated_at = NOW() WHERE id=$1",
					link_id,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "StaffInvitationRepository.deactivate")
		return result.rsplit(" ", 1)[-1] != "0"

	async def claim_and_invalidate(self, token: str) -> Optional[StaffInvitationLink]:
		"""Consume an active link.

		Returns the record as it was before the claim, or ``None`` when no
		active link carries ``token``. Concurrent callers queue on the row
		lock; only the first sees it active.
		"""
		pool = await self._pool_or_none()
		if pool is None:
			link = await self._memory.claim(token)
			obs_metrics.counter_sync("claim_invitation", ok=True)
			return link
		try:
			async with pool.acquire() as conn:
				async with conn.transaction():
					record = await conn.fetchrow(
						"""
						SELECT * FROM staff_invitation_links
						WHERE token=$1 AND is_active = TRUE
						LIMIT 1
						FOR UPDATE
						""",
						token,
					)
					if record is None:
						return None
					await conn.execute(
						"""
						UPDATE staff_invitation_links
						SET used_count = used_count + 1,
							is_active = FALSE,
							last_used_at = NOW(),
							updated_at = NOW()
						WHERE id=$1
						""",
						record["id"],
					)
		except asyncpg.PostgresError as exc:
			obs_metrics.counter_sync("claim_invitation", ok=False)
			handle_database_error(exc, "StaffInvitationRepository.claim_and_invalidate")
		obs_metrics.counter_sync("claim_invitation", ok=True)
		return StaffInvitationLink.model_validate(dict(record))
