"""Domain event handlers that turn business events into socket messages.

Handlers are fire-and-forget from the caller's point of view: every entry
point is guarded so a delivery problem is logged and swallowed instead of
failing the business operation that triggered it.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from edupath.obs import metrics as obs_metrics
from edupath.realtime.messages import EventType, envelope
from edupath.realtime.polls import PollFanout
from edupath.realtime.router import MessageRouter

_LOG = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[int]])


def guarded(operation: str) -> Callable[[F], F]:
	def decorator(func: F) -> F:
		@functools.wraps(func)
		async def wrapper(*args: Any, **kwargs: Any) -> int:
			try:
				return await func(*args, **kwargs)
			except Exception:
				obs_metrics.handler_failed(operation)
				_LOG.error("realtime.handler_failed", exc_info=True, extra={"operation": operation})
				return 0

		return wrapper  # type: ignore[return-value]

	return decorator


def _wire(value: Any) -> Any:
	to_wire = getattr(value, "to_wire", None)
	if callable(to_wire):
		return to_wire()
	return value


class _Handler:
	name = "base"

	def __init__(self, router: MessageRouter) -> None:
		self._router = router

	async def _to_users(self, user_ids: tuple[str, ...], event_type: EventType, data: dict[str, Any]) -> int:
		message = envelope(event_type, data)
		delivered = 0
		for user_id in dict.fromkeys(user_ids):
			delivered += await self._router.send_to_user(user_id, message)
		return delivered


class ChatHandler(_Handler):
	name = "chat"

	@guarded("ChatHandler.broadcast_chat_message")
	async def broadcast_chat_message(self, student_id: str, counselor_id: str, payload: Mapping[str, Any]) -> int:
		return await self._to_users((student_id, counselor_id), "chat_message", dict(_wire(payload)))

	@guarded("ChatHandler.broadcast_message_read_status")
	async def broadcast_message_read_status(
		self,
		student_id: str,
		counselor_id: str,
		message_id: str,
		payload: Mapping[str, Any] | None = None,
	) -> int:
		data = {"messageId": message_id, **dict(payload or {})}
		return await self._to_users((student_id, counselor_id), "message_read", data)


class NotificationHandler(_Handler):
	name = "notification"

	@guarded("NotificationHandler.send_notification")
	async def send_notification(self, user_id: str, payload: Mapping[str, Any]) -> int:
		return await self._to_users((user_id,), "notification", dict(_wire(payload)))


class ApplicationStatusHandler(_Handler):
	name = "application_status"

	@guarded("ApplicationStatusHandler.send_application_update")
	async def send_application_update(self, user_id: str, payload: Mapping[str, Any]) -> int:
		return await self._to_users((user_id,), "application_update", dict(_wire(payload)))


class ForumHandler(_Handler):
	name = "forum"

	def __init__(self, router: MessageRouter, polls: PollFanout) -> None:
		super().__init__(router)
		self._polls = polls

	async def _broadcast(self, event_type: EventType, data: dict[str, Any]) -> int:
		return await self._router.broadcast_to_all(envelope(event_type, data))

	@guarded("ForumHandler.broadcast_post_created")
	async def broadcast_post_created(self, post: Any) -> int:
		return await self._broadcast("forum_post_created", {"post": _wire(post)})

	@guarded("ForumHandler.broadcast_post_updated")
	async def broadcast_post_updated(self, post_id: str) -> int:
		return await self._broadcast("forum_post_updated", {"postId": post_id})

	@guarded("ForumHandler.broadcast_post_like_update")
	async def broadcast_post_like_update(self, post_id: str, like_count: int, liked_by: list[str]) -> int:
		data = {"postId": post_id, "likeCount": like_count, "likedBy": list(liked_by)}
		return await self._broadcast("forum_post_like_update", data)

	@guarded("ForumHandler.broadcast_comment_created")
	async def broadcast_comment_created(self, post_id: str, comment: Any) -> int:
		return await self._broadcast("forum_comment_created", {"postId": post_id, "comment": _wire(comment)})

	@guarded("ForumHandler.broadcast_poll_update_with_privacy")
	async def broadcast_poll_update_with_privacy(self, post_id: str, voting_user_id: str) -> int:
		return await self._polls.publish(post_id, voting_user_id)


class RealtimeEventHandlers:
	"""Groups the domain handlers handed to business services."""

	def __init__(
		self,
		*,
		chat: ChatHandler,
		notification: NotificationHandler,
		application_status: ApplicationStatusHandler,
		forum: ForumHandler,
	) -> None:
		self.chat = chat
		self.notification = notification
		self.application_status = application_status
		self.forum = forum

	def all_handlers(self) -> list[_Handler]:
		return [self.chat, self.notification, self.application_status, self.forum]
