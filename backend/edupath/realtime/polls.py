"""Per-recipient poll updates.

Each authenticated user receives a view of the poll that depends on
whether they have voted: voters see counts and percentages, everyone else
only sees the option labels.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol, Sequence

from edupath.domain.forum.polls import PollResults, build_poll_view
from edupath.obs import metrics as obs_metrics
from edupath.realtime.messages import envelope
from edupath.realtime.registry import ConnectionRegistry
from edupath.realtime.router import MessageRouter

_LOG = logging.getLogger(__name__)


class PollDataSource(Protocol):
	async def get_poll_results(self, post_id: str) -> Optional[PollResults]: ...

	async def get_votes_by_user(self, post_id: str) -> dict[str, list[str]]: ...


class PollFanout:
	def __init__(self, registry: ConnectionRegistry, router: MessageRouter, source: PollDataSource) -> None:
		self._registry = registry
		self._router = router
		self._source = source

	def recipients(self) -> list[str]:
		seen = dict.fromkeys(
			conn.user_id for conn in self._registry.authenticated_connections() if conn.user_id
		)
		return list(seen)

	async def publish(self, post_id: str, voting_user_id: str) -> int:
		"""Send one ``poll_vote_update`` per recipient connection; returns deliveries."""
		recipients = self.recipients()
		if not recipients:
			return 0
		results = await self._source.get_poll_results(post_id)
		if results is None:
			return 0
		votes = await self._source.get_votes_by_user(post_id)
		obs_metrics.poll_fanout(len(recipients))
		delivered = await asyncio.gather(
			*(
				self._send_view(post_id, user_id, results, votes.get(user_id, []), voting_user_id)
				for user_id in recipients
			)
		)
		return sum(delivered)

	async def _send_view(
		self,
		post_id: str,
		user_id: str,
		results: PollResults,
		user_votes: Sequence[str],
		voting_user_id: str,
	) -> int:
		try:
			view = build_poll_view(results, user_votes)
			data = {"postId": post_id, **view.to_wire(), "votingUserId": voting_user_id}
			return await self._router.send_to_user(user_id, envelope("poll_vote_update", data))
		except Exception:
			_LOG.warning(
				"realtime.poll_view_failed",
				exc_info=True,
				extra={"post_id": post_id, "recipient": user_id},
			)
			return 0
