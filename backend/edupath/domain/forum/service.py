"""Forum business operations: validate, write atomically, then broadcast.

Broadcasts only happen after the repository call returned; a write that
raised never produces a socket event.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Sequence

from edupath.domain.exceptions import NotFoundError, ValidationError
from edupath.domain.forum import models
from edupath.domain.forum.polls import PollResults, PollView, VoteResult, build_poll_view
from edupath.domain.forum.repo import ForumRepository

if TYPE_CHECKING:  # pragma: no cover - typing only
	from edupath.realtime.handlers import ForumHandler

_LOG = logging.getLogger(__name__)

POST_CONTENT_MAX = 10000
POST_TITLE_MAX = 500
COMMENT_CONTENT_MAX = 2000


def _check_length(errors: dict[str, str], field: str, label: str, value: Optional[str], maximum: int) -> None:
	if value is None:
		return
	length = len(value.strip())
	if length < 1 or length > maximum:
		errors[field] = f"{label} must be between 1 and {maximum} characters"


class ForumService:
	def __init__(self, repository: Optional[ForumRepository] = None, events: Optional["ForumHandler"] = None) -> None:
		self.repository = repository or ForumRepository()
		self.events = events

	# --- Posts ------------------------------------------------------------

	async def create_post(
		self,
		*,
		author_id: str,
		content: str,
		title: Optional[str] = None,
		category: Optional[str] = None,
		tags: Sequence[str] = (),
		poll_question: Optional[str] = None,
		poll_options: Optional[Sequence[str]] = None,
		poll_ends_at: Optional[datetime] = None,
	) -> models.ForumPost:
		errors: dict[str, str] = {}
		if not author_id:
			errors["authorId"] = "Author ID is required"
		if not content:
			errors["content"] = "Post content is required"
		_check_length(errors, "content", "Post content", content, POST_CONTENT_MAX)
		_check_length(errors, "title", "Post title", title, POST_TITLE_MAX)
		options: list[models.PollOption] = []
		if poll_options:
			labels = [label.strip() for label in poll_options if label and label.strip()]
			if len(labels) < 2:
				errors["pollOptions"] = "A poll needs at least two options"
			if not poll_question or not poll_question.strip():
				errors["pollQuestion"] = "A poll needs a question"
			options = [models.PollOption(id=f"option_{index}", text=label) for index, label in enumerate(labels)]
		if errors:
			raise ValidationError("ForumPost", errors)

		post = await self.repository.create_post(
			author_id=author_id,
			content=content,
			title=title,
			category=category,
			tags=tags,
			poll_question=poll_question if options else None,
			poll_options=options or None,
			poll_ends_at=poll_ends_at if options else None,
		)
		if self.events is not None:
			await self.events.broadcast_post_created(post)
		return post

	async def update_post(
		self,
		post_id: str,
		*,
		title: Optional[str] = None,
		content: Optional[str] = None,
		category: Optional[str] = None,
		tags: Optional[Sequence[str]] = None,
	) -> models.ForumPost:
		errors: dict[str, str] = {}
		_check_length(errors, "content", "Post content", content, POST_CONTENT_MAX)
		_check_length(errors, "title", "Post title", title, POST_TITLE_MAX)
		if errors:
			raise ValidationError("ForumPost", errors)
		post = await self.repository.update_post(post_id, title=title, content=content, category=category, tags=tags)
		if self.events is not None:
			await self.events.broadcast_post_updated(post.id)
		return post

	async def get_post(self, post_id: str) -> models.ForumPost:
		post = await self.repository.get_post(post_id)
		if post is None:
			raise NotFoundError("ForumPost", post_id)
		return post

	# --- Comments ---------------------------------------------------------

	async def create_comment(
		self,
		post_id: str,
		user_id: str,
		content: str,
		*,
		parent_id: Optional[str] = None,
	) -> models.ForumComment:
		errors: dict[str, str] = {}
		if not post_id:
			errors["postId"] = "Post ID is required"
		if not user_id:
			errors["userId"] = "User ID is required"
		if not content:
			errors["content"] = "Comment content is required"
		_check_length(errors, "content", "Comment content", content, COMMENT_CONTENT_MAX)
		if errors:
			raise ValidationError("ForumComment", errors)

		comment = await self.repository.create_comment(
			post_id=post_id,
			user_id=user_id,
			content=content,
			parent_id=parent_id,
		)
		if self.events is not None:
			await self.events.broadcast_comment_created(post_id, comment)
		return comment

	async def delete_comment(self, comment_id: str) -> bool:
		deleted = await self.repository.delete_comment(comment_id)
		if deleted is None:
			return False
		if self.events is not None:
			await self.events.broadcast_post_updated(deleted.post_id)
		return True

	async def get_comments(self, post_id: str) -> list[models.ForumComment]:
		return await self.repository.list_comments(post_id)

	# --- Interactions -----------------------------------------------------

	async def toggle_like(self, post_id: str, user_id: str) -> models.LikeToggleResult:
		result = await self.repository.toggle_like(post_id, user_id)
		if self.events is not None:
			# The like is committed at this point; a failed liker lookup only skips the broadcast.
			try:
				liked_by = await self.repository.list_like_user_ids(post_id)
			except Exception:
				_LOG.error("forum.like_broadcast_skipped", exc_info=True, extra={"post_id": post_id})
				return result
			await self.events.broadcast_post_like_update(post_id, result.likes_count, liked_by)
		return result

	async def toggle_save(self, post_id: str, user_id: str) -> models.SaveToggleResult:
		return await self.repository.toggle_save(post_id, user_id)

	# --- Polls ------------------------------------------------------------

	async def vote_poll(self, post_id: str, user_id: str, option_id: str) -> VoteResult:
		result = await self.repository.vote_poll_option(post_id, user_id, option_id)
		_LOG.info("forum.poll_vote", extra={"post_id": post_id, "option_id": option_id})
		if self.events is not None:
			await self.events.broadcast_poll_update_with_privacy(post_id, user_id)
		return result

	async def get_poll_results(self, post_id: str) -> Optional[PollResults]:
		return await self.repository.get_poll_results(post_id)

	async def get_user_vote_status(self, post_id: str, user_id: str) -> models.VoteStatus:
		return await self.repository.get_user_vote_status(post_id, user_id)

	async def get_user_specific_poll_data(self, post_id: str, current_user_id: Optional[str]) -> Optional[PollView]:
		"""The poll as ``current_user_id`` may see it, or ``None`` for posts without a poll."""
		results = await self.repository.get_poll_results(post_id)
		if results is None:
			return None
		user_votes: list[str] = []
		if current_user_id:
			user_votes = await self.repository.get_user_poll_votes(post_id, current_user_id)
		return build_poll_view(results, user_votes)
