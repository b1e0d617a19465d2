from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from edupath.domain.exceptions import DatabaseError, ValidationError
from edupath.domain.forum.polls import NonVoterPollView, VoterPollView
from edupath.domain.forum.service import ForumService

pytestmark = pytest.mark.asyncio


def _events() -> MagicMock:
    events = MagicMock()
    events.broadcast_post_created = AsyncMock(return_value=0)
    events.broadcast_post_updated = AsyncMock(return_value=0)
    events.broadcast_post_like_update = AsyncMock(return_value=0)
    events.broadcast_comment_created = AsyncMock(return_value=0)
    events.broadcast_poll_update_with_privacy = AsyncMock(return_value=0)
    return events


async def test_create_post_validates_lengths(forum_repo):
    service = ForumService(forum_repo, events=_events())

    with pytest.raises(ValidationError) as excinfo:
        await service.create_post(author_id="u1", content="x" * 10001, title="t" * 501)

    assert set(excinfo.value.errors) == {"content", "title"}
    service.events.broadcast_post_created.assert_not_awaited()


async def test_create_post_with_poll_assigns_option_ids(forum_repo):
    events = _events()
    service = ForumService(forum_repo, events=events)

    post = await service.create_post(
        author_id="u1",
        content="Which intake?",
        poll_question="Fall or spring?",
        poll_options=["Fall", "Spring"],
    )

    assert [o.id for o in post.poll_options] == ["option_0", "option_1"]
    events.broadcast_post_created.assert_awaited_once_with(post)


async def test_poll_needs_two_options(forum_repo):
    service = ForumService(forum_repo)

    with pytest.raises(ValidationError) as excinfo:
        await service.create_post(author_id="u1", content="?", poll_question="Only one?", poll_options=["Yes"])

    assert "pollOptions" in excinfo.value.errors


async def test_comment_broadcast_after_write(forum_repo):
    events = _events()
    service = ForumService(forum_repo, events=events)
    post = await service.create_post(author_id="u1", content="Scholarships")

    comment = await service.create_comment(post.id, "u2", "Check DAAD")

    events.broadcast_comment_created.assert_awaited_once_with(post.id, comment)
    assert (await forum_repo.get_post(post.id)).comments_count == 1


async def test_failed_write_never_broadcasts():
    repository = MagicMock()
    repository.create_comment = AsyncMock(side_effect=DatabaseError("ForumRepository.create_comment"))
    repository.toggle_like = AsyncMock(side_effect=DatabaseError("ForumRepository.toggle_like"))
    repository.vote_poll_option = AsyncMock(side_effect=DatabaseError("ForumRepository.vote_poll_option"))
    events = _events()
    service = ForumService(repository, events=events)

    with pytest.raises(DatabaseError):
        await service.create_comment("p1", "u1", "hello")
    with pytest.raises(DatabaseError):
        await service.toggle_like("p1", "u1")
    with pytest.raises(DatabaseError):
        await service.vote_poll("p1", "u1", "option_0")

    events.broadcast_comment_created.assert_not_awaited()
    events.broadcast_post_like_update.assert_not_awaited()
    events.broadcast_poll_update_with_privacy.assert_not_awaited()


async def test_toggle_like_broadcasts_count_and_likers(forum_repo):
    events = _events()
    service = ForumService(forum_repo, events=events)
    post = await service.create_post(author_id="u1", content="IELTS tips")

    await service.toggle_like(post.id, "u2")
    await service.toggle_like(post.id, "u3")

    events.broadcast_post_like_update.assert_awaited_with(post.id, 2, ["u2", "u3"])


async def test_toggle_like_survives_liker_lookup_failure(forum_repo):
    events = _events()
    service = ForumService(forum_repo, events=events)
    post = await service.create_post(author_id="u1", content="Visa interview slots")
    forum_repo.list_like_user_ids = AsyncMock(side_effect=asyncpg.PostgresError("connection reset"))

    result = await service.toggle_like(post.id, "u2")

    assert (result.liked, result.likes_count) == (True, 1)
    assert (await forum_repo.get_post(post.id)).likes_count == 1
    events.broadcast_post_like_update.assert_not_awaited()


async def test_delete_comment_reports_missing(forum_repo):
    events = _events()
    service = ForumService(forum_repo, events=events)
    post = await service.create_post(author_id="u1", content="Housing")
    comment = await service.create_comment(post.id, "u2", "Try residences")

    assert await service.delete_comment(comment.id) is True
    assert await service.delete_comment(comment.id) is False
    events.broadcast_post_updated.assert_awaited_once_with(post.id)


async def test_vote_triggers_privacy_fanout(forum_repo):
    events = _events()
    service = ForumService(forum_repo, events=events)
    post = await service.create_post(
        author_id="u1", content="Poll", poll_question="Budget?", poll_options=["Low", "High"]
    )

    result = await service.vote_poll(post.id, "u2", "option_1")

    assert result.poll_results.total_votes == 1
    events.broadcast_poll_update_with_privacy.assert_awaited_once_with(post.id, "u2")


async def test_user_specific_poll_data(forum_repo):
    service = ForumService(forum_repo)
    post = await service.create_post(
        author_id="u1", content="Poll", poll_question="Budget?", poll_options=["Low", "High"]
    )
    plain = await service.create_post(author_id="u1", content="No poll")
    await service.vote_poll(post.id, "voter", "option_0")

    voter_view = await service.get_user_specific_poll_data(post.id, "voter")
    other_view = await service.get_user_specific_poll_data(post.id, "lurker")
    anonymous = await service.get_user_specific_poll_data(post.id, None)

    assert isinstance(voter_view, VoterPollView)
    assert voter_view.total_votes == 1
    assert isinstance(other_view, NonVoterPollView)
    assert isinstance(anonymous, NonVoterPollView)
    assert await service.get_user_specific_poll_data(plain.id, "voter") is None
