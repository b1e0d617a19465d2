"""Async repository for forum posts, comments, likes, saves and poll votes.

Every write that touches a cached aggregate (``comments_count``,
``likes_count``) locks the parent post row, performs the write and sets the
aggregate to a fresh ``COUNT(*)`` inside one transaction.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence
from uuid import uuid4

import asyncpg

from edupath.domain.exceptions import NotFoundError, ValidationError, handle_database_error
from edupath.domain.forum import models
from edupath.domain.forum.polls import PollResults, VoteResult, compute_poll_results
from edupath.domain.repository import PooledRepository
from edupath.obs import metrics as obs_metrics


def _now() -> datetime:
	return datetime.now(timezone.utc)


def _new_id() -> str:
	return str(uuid4())


def _options_payload(options: Optional[Sequence[models.PollOption]]) -> Optional[list[dict[str, str]]]:
	if not options:
		return None
	return [{"id": option.id, "text": option.text} for option in options]


def _require_option(post: models.ForumPost, option_id: str) -> None:
	if not post.has_poll:
		raise ValidationError("ForumPoll", {"postId": "Post has no poll"})
	if option_id not in {option.id for option in post.poll_options or ()}:
		raise ValidationError("ForumPoll", {"optionId": "Unknown poll option"})


class _InMemoryForumStore:
	"""Fallback store used in tests when Postgres is unavailable.

	The single lock plays the part of the database transaction.
	"""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._posts: dict[str, models.ForumPost] = {}
		self._comments: dict[str, models.ForumComment] = {}
		self._likes: dict[str, list[str]] = {}
		self._saves: set[tuple[str, str]] = set()
		self._votes: dict[tuple[str, str], str] = {}

	def _post_or_raise(self, post_id: str) -> models.ForumPost:
		post = self._posts.get(post_id)
		if post is None:
			raise NotFoundError("ForumPost", post_id)
		return post

	def _set_counter(self, post_id: str, field: str, value: int) -> None:
		post = self._posts[post_id]
		self._posts[post_id] = post.model_copy(update={field: value})

	def _recount_comments(self, post_id: str) -> int:
		count = sum(1 for comment in self._comments.values() if comment.post_id == post_id)
		self._set_counter(post_id, "comments_count", count)
		return count

	def _recount_likes(self, post_id: str) -> int:
		count = len(self._likes.get(post_id, []))
		self._set_counter(post_id, "likes_count", count)
		return count

	def _tally(self, post: models.ForumPost) -> Optional[PollResults]:
		if not post.has_poll:
			return None
		voted = [option_id for (post_id, _), option_id in self._votes.items() if post_id == post.id]
		return compute_poll_results(
			post.poll_options or [],
			voted,
			question=post.poll_question,
			ends_at=post.poll_ends_at,
		)

	async def create_post(self, post: models.ForumPost) -> models.ForumPost:
		async with self._lock:
			self._posts[post.id] = post
			return post

	async def get_post(self, post_id: str) -> Optional[models.ForumPost]:
		async with self._lock:
			return self._posts.get(post_id)

	async def update_post(self, post_id: str, changes: dict[str, object]) -> models.ForumPost:
		async with self._lock:
			post = self._post_or_raise(post_id)
			updated = post.model_copy(update={**changes, "updated_at": _now()})
			self._posts[post_id] = updated
			return updated

	async def create_comment(self, comment: models.ForumComment) -> models.ForumComment:
		async with self._lock:
			self._post_or_raise(comment.post_id)
			self._comments[comment.id] = comment
			self._recount_comments(comment.post_id)
			return comment

	async def delete_comment(self, comment_id: str) -> Optional[models.ForumComment]:
		async with self._lock:
			comment = self._comments.get(comment_id)
			if comment is None:
				return None
			doomed = {comment_id}
			grew = True
			while grew:
				children = {c.id for c in self._comments.values() if c.parent_id in doomed} - doomed
				grew = bool(children)
				doomed |= children
			for key in doomed:
				self._comments.pop(key, None)
			if comment.post_id in self._posts:
				self._recount_comments(comment.post_id)
			return comment

	async def get_comment(self, comment_id: str) -> Optional[models.ForumComment]:
		async with self._lock:
			return self._comments.get(comment_id)

	async def list_comments(self, post_id: str) -> list[models.ForumComment]:
		async with self._lock:
			items = [c for c in self._comments.values() if c.post_id == post_id]
			return sorted(items, key=lambda c: (c.created_at, c.id))

	async def count_comments(self, post_id: str) -> int:
		async with self._lock:
			return sum(1 for c in self._comments.values() if c.post_id == post_id)

	async def toggle_like(self, post_id: str, user_id: str) -> models.LikeToggleResult:
		async with self._lock:
			self._post_or_raise(post_id)
			likers = self._likes.setdefault(post_id, [])
			liked = user_id not in likers
			if liked:
				likers.append(user_id)
			else:
				likers.remove(user_id)
			count = self._recount_likes(post_id)
			return models.LikeToggleResult(liked=liked, likes_count=count)

	async def list_like_user_ids(self, post_id: str) -> list[str]:
		async with self._lock:
			return list(self._likes.get(post_id, []))

	async def toggle_save(self, post_id: str, user_id: str) -> models.SaveToggleResult:
		async with self._lock:
			self._post_or_raise(post_id)
			key = (post_id, user_id)
			if key in self._saves:
				self._saves.discard(key)
				return models.SaveToggleResult(saved=False)
			self._saves.add(key)
			return models.SaveToggleResult(saved=True)

	async def vote(self, post_id: str, user_id: str, option_id: str) -> VoteResult:
		async with self._lock:
			post = self._post_or_raise(post_id)
			_require_option(post, option_id)
			self._votes[(post_id, user_id)] = option_id
			return VoteResult(poll_results=self._tally(post), user_votes=[option_id])

	async def poll_results(self, post_ids: Iterable[str]) -> dict[str, PollResults]:
		async with self._lock:
			results: dict[str, PollResults] = {}
			for post_id in post_ids:
				post = self._posts.get(post_id)
				tally = self._tally(post) if post else None
				if tally is not None:
					results[post_id] = tally
			return results

	async def votes_by_user(self, post_id: str) -> dict[str, list[str]]:
		async with self._lock:
			grouped: dict[str, list[str]] = {}
			for (vote_post_id, user_id), option_id in self._votes.items():
				if vote_post_id == post_id:
					grouped.setdefault(user_id, []).append(option_id)
			return grouped

	async def user_votes(self, post_ids: Iterable[str], user_id: str) -> dict[str, list[str]]:
		wanted = set(post_ids)
		async with self._lock:
			grouped: dict[str, list[str]] = {}
			for (post_id, voter), option_id in self._votes.items():
				if voter == user_id and post_id in wanted:
					grouped.setdefault(post_id, []).append(option_id)
			return grouped


_MEMORY_STORE = _InMemoryForumStore()


class ForumRepository(PooledRepository):
	"""Forum data access backed by asyncpg with an in-memory fallback."""

	def __init__(
		self,
		*,
		pool: Optional[asyncpg.pool.Pool] = None,
		memory_store: Optional[_InMemoryForumStore] = None,
	) -> None:
		super().__init__(pool=pool)
		self._memory = memory_store or _MEMORY_STORE

	# --- Post operations --------------------------------------------------

	async def create_post(
		self,
		*,
		author_id: str,
		content: str,
		title: Optional[str] = None,
		category: Optional[str] = None,
		tags: Sequence[str] = (),
		poll_question: Optional[str] = None,
		poll_options: Optional[Sequence[models.PollOption]] = None,
		poll_ends_at: Optional[datetime] = None,
	) -> models.ForumPost:
		pool = await self._pool_or_none()
		if pool is None:
			now = _now()
			return await self._memory.create_post(
				models.ForumPost(
					id=_new_id(),
					author_id=author_id,
					title=title,
					content=content,
					category=category,
					tags=list(tags),
					poll_question=poll_question,
					poll_options=list(poll_options) if poll_options else None,
					poll_ends_at=poll_ends_at,
					created_at=now,
					updated_at=now,
				)
			)
		try:
			async with pool.acquire() as conn:
				record = await conn.fetchrow(
					"""
					INSERT INTO forum_posts (
						id, author_id, title, content, category, tags,
						poll_question, poll_options, poll_ends_at
					)
					VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9)
					RETURNING *
					""",
					_new_id(),
					author_id,
					title,
					content,
					category,
					list(tags),
					poll_question,
					_options_payload(poll_options),
					poll_ends_at,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.create_post")
		return models.ForumPost.model_validate(dict(record))

	async def get_post(self, post_id: str) -> Optional[models.ForumPost]:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.get_post(post_id)
		try:
			async with pool.acquire() as conn:
				record = await conn.fetchrow("SELECT * FROM forum_posts WHERE id=$1", post_id)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.get_post")
		return models.ForumPost.model_validate(dict(record)) if record else None

	async def update_post(
		self,
		post_id: str,
		*,
		title: Optional[str] = None,
		content: Optional[str] = None,
		category: Optional[str] = None,
		tags: Optional[Sequence[str]] = None,
	) -> models.ForumPost:
		changes: dict[str, object] = {}
		if title is not None:
			changes["title"] = title
		if content is not None:
			changes["content"] = content
		if category is not None:
			changes["category"] = category
		if tags is not None:
			changes["tags"] = list(tags)
		if not changes:
			raise ValidationError("ForumPost", {"update": "No changes requested"})
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.update_post(post_id, changes)
		assignments = [f"{column}=${idx + 2}" for idx, column in enumerate(changes)]
		assignments.append("updated_at=NOW()")
		query = f"UPDATE forum_posts SET {', '.join(assignments)} WHERE id=$1 RETURNING *"
		try:
			async with pool.acquire() as conn:
				record = await conn.fetchrow(query, post_id, *changes.values())
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.update_post")
		if not record:
			raise NotFoundError("ForumPost", post_id)
		return models.ForumPost.model_validate(dict(record))

	# --- Comment operations -----------------------------------------------

	async def create_comment(
		self,
		*,
		post_id: str,
		user_id: str,
		content: str,
		parent_id: Optional[str] = None,
	) -> models.ForumComment:
		pool = await self._pool_or_none()
		if pool is None:
			now = _now()
			comment = await self._memory.create_comment(
				models.ForumComment(
					id=_new_id(),
					post_id=post_id,
					user_id=user_id,
					parent_id=parent_id,
					content=content,
					created_at=now,
					updated_at=now,
				)
			)
			obs_metrics.counter_sync("create_comment", ok=True)
			return comment
		try:
			async with pool.acquire() as conn:
				async with conn.transaction():
					await self._lock_post(conn, post_id)
					record = await conn.fetchrow(
						"""
						INSERT INTO forum_comments (id, post_id, user_id, parent_id, content)
						VALUES ($1, $2, $3, $4, $5)
						RETURNING *
						""",
						_new_id(),
						post_id,
						user_id,
						parent_id,
						content,
					)
					await self._recount_comments(conn, post_id)
		except asyncpg.PostgresError as exc:
			obs_metrics.counter_sync("create_comment", ok=False)
			handle_database_error(exc, "ForumRepository.create_comment")
		obs_metrics.counter_sync("create_comment", ok=True)
		return models.ForumComment.model_validate(dict(record))

	async def delete_comment(self, comment_id: str) -> Optional[models.ForumComment]:
		"""Delete a comment (and its replies); returns the deleted row or None."""
		pool = await self._pool_or_none()
		if pool is None:
			deleted = await self._memory.delete_comment(comment_id)
			obs_metrics.counter_sync("delete_comment", ok=True)
			return deleted
		try:
			async with pool.acquire() as conn:
				async with conn.transaction():
					post_id = await conn.fetchval(
						"SELECT post_id FROM forum_comments WHERE id=$1",
						comment_id,
					)
					if post_id is None:
						return None
					await self._lock_post(conn, post_id)
					record = await conn.fetchrow(
						"DELETE FROM forum_comments WHERE id=$1 RETURNING *",
						comment_id,
					)
					if record is None:
						return None
					await self._recount_comments(conn, post_id)
		except asyncpg.PostgresError as exc:
			obs_metrics.counter_sync("delete_comment", ok=False)
			handle_database_error(exc, "ForumRepository.delete_comment")
		obs_metrics.counter_sync("delete_comment", ok=True)
		return models.ForumComment.model_validate(dict(record))

	async def get_comment(self, comment_id: str) -> Optional[models.ForumComment]:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.get_comment(comment_id)
		try:
			async with pool.acquire() as conn:
				record = await conn.fetchrow("SELECT * FROM forum_comments WHERE id=$1", comment_id)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.get_comment")
		return models.ForumComment.model_validate(dict(record)) if record else None

	async def list_comments(self, post_id: str) -> list[models.ForumComment]:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.list_comments(post_id)
		try:
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					"SELECT * FROM forum_comments WHERE post_id=$1 ORDER BY created_at ASC, id ASC",
					post_id,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.list_comments")
		return [models.ForumComment.model_validate(dict(row)) for row in rows]

	async def count_comments(self, post_id: str) -> int:
		"""Count comment rows directly, bypassing the cached aggregate."""
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.count_comments(post_id)
		try:
			async with pool.acquire() as conn:
				value = await conn.fetchval("SELECT COUNT(*) FROM forum_comments WHERE post_id=$1", post_id)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.count_comments")
		return int(value or 0)

	# --- Likes and saves --------------------------------------------------

	async def toggle_like(self, post_id: str, user_id: str) -> models.LikeToggleResult:
		pool = await self._pool_or_none()
		if pool is None:
			result = await self._memory.toggle_like(post_id, user_id)
			obs_metrics.counter_sync("toggle_like", ok=True)
			return result
		try:
			async with pool.acquire() as conn:
				async with conn.transaction():
					await self._lock_post(conn, post_id)
					removed = await conn.fetchval(
						"DELETE FROM forum_likes WHERE post_id=$1 AND author_id=$2 RETURNING id",
						post_id,
						user_id,
					)
					if removed is None:
						await conn.execute(
							"INSERT INTO forum_likes (id, post_id, author_id) VALUES ($1, $2, $3)",
							_new_id(),
							post_id,
							user_id,
						)
					likes_count = await conn.fetchval(
						"""
						UPDATE forum_posts
						SET likes_count = (SELECT COUNT(*) FROM forum_likes WHERE post_id=$1)
						WHERE id=$1
						RETURNING likes_count
						""",
						post_id,
					)
		except asyncpg.PostgresError as exc:
			obs_metrics.counter_sync("toggle_like", ok=False)
			handle_database_error(exc, "ForumRepository.toggle_like")
		obs_metrics.counter_sync("toggle_like", ok=True)
		return models.LikeToggleResult(liked=removed is None, likes_count=int(likes_count or 0))

	async def list_like_user_ids(self, post_id: str) -> list[str]:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.list_like_user_ids(post_id)
		try:
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					"SELECT author_id FROM forum_likes WHERE post_id=$1 ORDER BY created_at ASC",
					post_id,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.list_like_user_ids")
		return [row["author_id"] for row in rows]

	async def count_likes(self, post_id: str) -> int:
		"""Count like rows directly, bypassing the cached aggregate."""
		pool = await self._pool_or_none()
		if pool is None:
			return len(await self._memory.list_like_user_ids(post_id))
		try:
			async with pool.acquire() as conn:
				value = await conn.fetchval("SELECT COUNT(*) FROM forum_likes WHERE post_id=$1", post_id)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.count_likes")
		return int(value or 0)

	async def toggle_save(self, post_id: str, user_id: str) -> models.SaveToggleResult:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.toggle_save(post_id, user_id)
		try:
			async with pool.acquire() as conn:
				async with conn.transaction():
					await self._lock_post(conn, post_id)
					removed = await conn.fetchval(
						"DELETE FROM forum_saves WHERE post_id=$1 AND author_id=$2 RETURNING id",
						post_id,
						user_id,
					)
					if removed is None:
						await conn.execute(
							"INSERT INTO forum_saves (id, post_id, author_id) VALUES ($1, $2, $3)",
							_new_id(),
							post_id,
							user_id,
						)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.toggle_save")
		return models.SaveToggleResult(saved=removed is None)

	# --- Polls ------------------------------------------------------------

	async def vote_poll_option(self, post_id: str, user_id: str, option_id: str) -> VoteResult:
		"""Cast or move the single vote a user holds on a poll."""
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.vote(post_id, user_id, option_id)
		try:
			async with pool.acquire() as conn:
				async with conn.transaction():
					record = await conn.fetchrow(
						"SELECT * FROM forum_posts WHERE id=$1 FOR UPDATE",
						post_id,
					)
					if record is None:
						raise NotFoundError("ForumPost", post_id)
					post = models.ForumPost.model_validate(dict(record))
					_require_option(post, option_id)
					await conn.execute(
						"""
						INSERT INTO forum_poll_votes (id, post_id, user_id, option_id)
						VALUES ($1, $2, $3, $4)
						ON CONFLICT (post_id, user_id)
						DO UPDATE SET option_id = EXCLUDED.option_id, updated_at = NOW()
						""",
						_new_id(),
						post_id,
						user_id,
						option_id,
					)
					voted = await conn.fetch(
						"SELECT option_id FROM forum_poll_votes WHERE post_id=$1",
						post_id,
					)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.vote_poll_option")
		results = compute_poll_results(
			post.poll_options or [],
			[row["option_id"] for row in voted],
			question=post.poll_question,
			ends_at=post.poll_ends_at,
		)
		return VoteResult(poll_results=results, user_votes=[option_id])

	async def get_poll_results(self, post_id: str) -> Optional[PollResults]:
		results = await self.get_bulk_poll_results([post_id])
		return results.get(post_id)

	async def get_bulk_poll_results(self, post_ids: Sequence[str]) -> dict[str, PollResults]:
		ids = list(dict.fromkeys(post_ids))
		if not ids:
			return {}
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.poll_results(ids)
		try:
			async with pool.acquire() as conn:
				posts = await conn.fetch(
					"""
					SELECT * FROM forum_posts
					WHERE id = ANY($1::text[]) AND poll_options IS NOT NULL
					""",
					ids,
				)
				votes = await conn.fetch(
					"SELECT post_id, option_id FROM forum_poll_votes WHERE post_id = ANY($1::text[])",
					ids,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.get_bulk_poll_results")
		by_post: dict[str, list[str]] = {}
		for row in votes:
			by_post.setdefault(row["post_id"], []).append(row["option_id"])
		results: dict[str, PollResults] = {}
		for row in posts:
			post = models.ForumPost.model_validate(dict(row))
			if not post.has_poll:
				continue
			results[post.id] = compute_poll_results(
				post.poll_options or [],
				by_post.get(post.id, []),
				question=post.poll_question,
				ends_at=post.poll_ends_at,
			)
		return results

	async def get_votes_by_user(self, post_id: str) -> dict[str, list[str]]:
		"""Map every voter on a poll to the option ids they hold."""
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.votes_by_user(post_id)
		try:
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					"SELECT user_id, option_id FROM forum_poll_votes WHERE post_id=$1",
					post_id,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.get_votes_by_user")
		grouped: dict[str, list[str]] = {}
		for row in rows:
			grouped.setdefault(row["user_id"], []).append(row["option_id"])
		return grouped

	async def get_user_poll_votes(self, post_id: str, user_id: str) -> list[str]:
		votes = await self.get_bulk_user_poll_votes([post_id], user_id)
		return votes.get(post_id, [])

	async def get_user_vote_status(self, post_id: str, user_id: str) -> models.VoteStatus:
		votes = await self.get_user_poll_votes(post_id, user_id)
		if not votes:
			return models.VoteStatus(has_voted=False)
		return models.VoteStatus(has_voted=True, option_id=votes[0])

	async def get_bulk_user_poll_votes(self, post_ids: Sequence[str], user_id: str) -> dict[str, list[str]]:
		ids = list(dict.fromkeys(post_ids))
		if not ids:
			return {}
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.user_votes(ids, user_id)
		try:
			async with pool.acquire() as conn:
				rows = await conn.fetch(
					"""
					SELECT post_id, option_id FROM forum_poll_votes
					WHERE user_id=$1 AND post_id = ANY($2::text[])
					""",
					user_id,
					ids,
				)
		except asyncpg.PostgresError as exc:
			handle_database_error(exc, "ForumRepository.get_bulk_user_poll_votes")
		grouped: dict[str, list[str]] = {}
		for row in rows:
			grouped.setdefault(row["post_id"], []).append(row["option_id"])
		return grouped

	# --- Helpers ----------------------------------------------------------

	@staticmethod
	async def _lock_post(conn: asyncpg.Connection, post_id: str) -> None:
		locked = await conn.fetchval("SELECT id FROM forum_posts WHERE id=$1 FOR UPDATE", post_id)
		if locked is None:
			raise NotFoundError("ForumPost", post_id)

	@staticmethod
	async def _recount_comments(conn: asyncpg.Connection, post_id: str) -> None:
		await conn.execute(
			"""
			UPDATE forum_posts
			SET comments_count = (SELECT COUNT(*) FROM forum_comments WHERE post_id=$1)
			WHERE id=$1
			""",
			post_id,
		)
