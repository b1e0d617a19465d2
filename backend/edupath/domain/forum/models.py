"""Domain models for forum posts, comments, interactions and polls."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from pydantic import Field, field_validator

from edupath.domain.models import CamelModel


class PollOption(CamelModel):
	"""Stored poll option; only id and label."""

	id: str
	text: str


class ForumPost(CamelModel):
	"""Forum post with cached aggregate counters."""

	id: str
	author_id: str
	title: Optional[str] = None
	content: str
	category: Optional[str] = None
	tags: list[str] = Field(default_factory=list)
	likes_count: int = 0
	comments_count: int = 0
	poll_question: Optional[str] = None
	poll_options: Optional[list[PollOption]] = None
	poll_ends_at: Optional[datetime] = None
	created_at: datetime
	updated_at: datetime

	@field_validator("poll_options", mode="before")
	@classmethod
	def _decode_poll_options(cls, value: Any) -> Any:
		# asyncpg hands JSONB back as text unless a codec is registered
		if isinstance(value, (str, bytes)):
			return json.loads(value)
		return value

	@field_validator("tags", mode="before")
	@classmethod
	def _default_tags(cls, value: Any) -> Any:
		return list(value) if value else []

	@property
	def has_poll(self) -> bool:
		return bool(self.poll_question) and bool(self.poll_options)


class ForumComment(CamelModel):
	"""Comment on a forum post; replies reference ``parent_id``."""

	id: str
	post_id: str
	user_id: str
	parent_id: Optional[str] = None
	content: str
	likes_count: int = 0
	created_at: datetime
	updated_at: datetime


class LikeToggleResult(CamelModel):
	liked: bool
	likes_count: int


class SaveToggleResult(CamelModel):
	saved: bool


class VoteStatus(CamelModel):
	has_voted: bool
	option_id: Optional[str] = None
