from __future__ import annotations

import pytest

from edupath.domain.forum.models import PollOption
from edupath.domain.forum.polls import (
    NonVoterPollView,
    VoterPollView,
    build_poll_view,
    compute_poll_results,
    percentage,
)

OPTIONS = [
    PollOption(id="option_0", text="Canada"),
    PollOption(id="option_1", text="Germany"),
    PollOption(id="option_2", text="Australia"),
]


@pytest.mark.parametrize(
    ("votes", "total", "expected"),
    [(0, 0, 0), (1, 3, 33), (2, 3, 67), (1, 2, 50), (1, 8, 13), (3, 3, 100)],
)
def test_percentage_rounds_half_up(votes, total, expected):
    assert percentage(votes, total) == expected


def test_results_ignore_votes_for_removed_options():
    results = compute_poll_results(OPTIONS, ["option_0", "option_0", "option_9", "option_1"], question="Where?")

    assert results.total_votes == 3
    assert [o.votes for o in results.options] == [2, 1, 0]
    assert [o.percentage for o in results.options] == [67, 33, 0]
    assert results.question == "Where?"


def test_no_votes_means_all_zero():
    results = compute_poll_results(OPTIONS, [])

    assert results.total_votes == 0
    assert all(o.percentage == 0 for o in results.options)


def test_voter_percentages_sum_close_to_hundred():
    results = compute_poll_results(OPTIONS, ["option_0", "option_1", "option_2"])

    total = sum(o.percentage for o in results.options)
    assert 99 <= total <= 101


def test_voter_view_carries_counts():
    results = compute_poll_results(OPTIONS, ["option_1", "option_1", "option_2"])

    view = build_poll_view(results, ["option_1"])

    assert isinstance(view, VoterPollView)
    wire = view.to_wire()
    assert wire["showResults"] is True
    assert wire["userVotes"] == ["option_1"]
    assert wire["totalVotes"] == 3
    assert wire["pollOptions"][1] == {"id": "option_1", "text": "Germany", "votes": 2, "percentage": 67}


def test_non_voter_view_hides_every_count():
    results = compute_poll_results(OPTIONS, ["option_1", "option_1", "option_2"])

    view = build_poll_view(results, [])

    assert isinstance(view, NonVoterPollView)
    wire = view.to_wire()
    assert wire == {
        "pollOptions": [
            {"id": "option_0", "text": "Canada"},
            {"id": "option_1", "text": "Germany"},
            {"id": "option_2", "text": "Australia"},
        ],
        "userVotes": [],
        "showResults": False,
    }
    assert "totalVotes" not in wire
