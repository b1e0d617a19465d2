"""Poll tallying and the per-recipient views derived from it.

A recipient who has voted sees every option with its vote count and
percentage plus the total. A recipient who has not voted only sees option
labels; counts, percentages and totals are never part of that view.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, Literal, Optional, Sequence, Union

from pydantic import Field

from edupath.domain.forum.models import PollOption
from edupath.domain.models import CamelModel


class PollOptionResult(CamelModel):
	id: str
	text: str
	votes: int
	percentage: int


class PollResults(CamelModel):
	question: Optional[str] = None
	options: list[PollOptionResult]
	total_votes: int
	ends_at: Optional[datetime] = None


class VoteResult(CamelModel):
	"""Outcome of casting or changing a vote."""

	poll_results: Optional[PollResults] = None
	user_votes: list[str] = Field(default_factory=list)


class VoterPollView(CamelModel):
	poll_options: list[PollOptionResult]
	total_votes: int
	user_votes: list[str]
	show_results: Literal[True] = True


class NonVoterPollView(CamelModel):
	poll_options: list[PollOption]
	user_votes: list[str] = Field(default_factory=list)
	show_results: Literal[False] = False


PollView = Union[VoterPollView, NonVoterPollView]


def percentage(option_votes: int, total_votes: int) -> int:
	"""Whole-number share of the total, rounding halves up; 0 when nobody voted."""
	if total_votes <= 0:
		return 0
	return int(math.floor(option_votes * 100 / total_votes + 0.5))


def compute_poll_results(
	options: Sequence[PollOption],
	voted_option_ids: Iterable[str],
	*,
	question: Optional[str] = None,
	ends_at: Optional[datetime] = None,
) -> PollResults:
	"""Tally one poll. Votes for option ids no longer on the poll are ignored."""
	known = {option.id for option in options}
	counts: dict[str, int] = {option.id: 0 for option in options}
	for option_id in voted_option_ids:
		if option_id in known:
			counts[option_id] += 1
	total = sum(counts.values())
	return PollResults(
		question=question,
		options=[
			PollOptionResult(
				id=option.id,
				text=option.text,
				votes=counts[option.id],
				percentage=percentage(counts[option.id], total),
			)
			for option in options
		],
		total_votes=total,
		ends_at=ends_at,
	)


def build_poll_view(results: PollResults, user_votes: Sequence[str]) -> PollView:
	if user_votes:
		return VoterPollView(
			poll_options=[option.model_copy() for option in results.options],
			total_votes=results.total_votes,
			user_votes=list(user_votes),
		)
	return NonVoterPollView(
		poll_options=[PollOption(id=option.id, text=option.text) for option in results.options],
	)
