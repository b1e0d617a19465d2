from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from edupath.domain.forum.models import PollOption
from edupath.realtime.handlers import (
    ApplicationStatusHandler,
    ChatHandler,
    ForumHandler,
    NotificationHandler,
)
from edupath.realtime.polls import PollFanout

pytestmark = pytest.mark.asyncio


async def _connect(registry, transport, user_id=None):
    connection_id = await registry.register(transport)
    if user_id:
        registry.bind_user(connection_id, user_id)
    return connection_id


async def test_chat_message_reaches_exactly_both_participants(registry, router, make_transport):
    student, counselor, bystander = make_transport(), make_transport(), make_transport()
    await _connect(registry, student, "student-1")
    await _connect(registry, counselor, "counselor-1")
    await _connect(registry, bystander, "student-2")
    handler = ChatHandler(router)

    delivered = await handler.broadcast_chat_message("student-1", "counselor-1", {"id": "m1", "body": "Hi"})

    assert delivered == 2
    for transport in (student, counselor):
        (message,) = transport.of_type("chat_message")
        assert message["data"] == {"id": "m1", "body": "Hi"}
    assert bystander.of_type("chat_message") == []


async def test_read_status_includes_message_id(registry, router, make_transport):
    student = make_transport()
    await _connect(registry, student, "student-1")

    await ChatHandler(router).broadcast_message_read_status("student-1", "counselor-1", "m9", {"readAt": "now"})

    (message,) = student.of_type("message_read")
    assert message["data"] == {"messageId": "m9", "readAt": "now"}


async def test_targeted_handlers(registry, router, make_transport):
    user = make_transport()
    await _connect(registry, user, "student-1")

    await NotificationHandler(router).send_notification("student-1", {"title": "Document approved"})
    await ApplicationStatusHandler(router).send_application_update("student-1", {"status": "submitted"})

    assert user.types()[1:] == ["notification", "application_update"]


async def test_handler_failures_are_swallowed():
    failing_router = MagicMock()
    failing_router.send_to_user = AsyncMock(side_effect=RuntimeError("boom"))

    assert await NotificationHandler(failing_router).send_notification("u1", {"x": 1}) == 0


async def test_forum_broadcasts_reach_everyone(registry, router, make_transport, forum_repo):
    anonymous, member = make_transport(), make_transport()
    await _connect(registry, anonymous)
    await _connect(registry, member, "student-1")
    handler = ForumHandler(router, PollFanout(registry, router, forum_repo))
    post = await forum_repo.create_post(author_id="student-1", content="Hello")

    await handler.broadcast_post_created(post)
    await handler.broadcast_post_like_update(post.id, 3, ["a", "b", "c"])

    for transport in (anonymous, member):
        created, like = transport.sent[1:]
        assert created["type"] == "forum_post_created"
        assert created["data"]["post"]["id"] == post.id
        assert created["data"]["post"]["likesCount"] == 0
        assert like["data"] == {"postId": post.id, "likeCount": 3, "likedBy": ["a", "b", "c"]}


async def _poll_post(forum_repo):
    return await forum_repo.create_post(
        author_id="author",
        content="Poll",
        poll_question="Which test?",
        poll_options=[PollOption(id="option_0", text="IELTS"), PollOption(id="option_1", text="TOEFL")],
    )


async def test_poll_update_respects_privacy(registry, router, make_transport, forum_repo):
    voter_a, voter_b, lurker, anonymous = (make_transport() for _ in range(4))
    await _connect(registry, voter_a, "voter")
    await _connect(registry, voter_b, "voter")
    await _connect(registry, lurker, "lurker")
    await _connect(registry, anonymous)
    post = await _poll_post(forum_repo)
    await forum_repo.vote_poll_option(post.id, "voter", "option_1")
    handler = ForumHandler(router, PollFanout(registry, router, forum_repo))

    delivered = await handler.broadcast_poll_update_with_privacy(post.id, "voter")

    assert delivered == 3
    for transport in (voter_a, voter_b):
        (update,) = transport.of_type("poll_vote_update")
        data = update["data"]
        assert data["showResults"] is True
        assert data["userVotes"] == ["option_1"]
        assert data["totalVotes"] == 1
        assert data["votingUserId"] == "voter"
        assert [o["percentage"] for o in data["pollOptions"]] == [0, 100]
    (update,) = lurker.of_type("poll_vote_update")
    data = update["data"]
    assert data["showResults"] is False
    assert data["userVotes"] == []
    assert "totalVotes" not in data
    assert all(set(option) == {"id", "text"} for option in data["pollOptions"])
    assert anonymous.of_type("poll_vote_update") == []


async def test_poll_fanout_isolates_failing_recipient(registry, router, make_transport, forum_repo):
    broken, healthy = make_transport(fail=True), make_transport()
    await _connect(registry, broken, "u1")
    await _connect(registry, healthy, "u2")
    post = await _poll_post(forum_repo)
    fanout = PollFanout(registry, router, forum_repo)

    assert await fanout.publish(post.id, "u1") == 1
    assert len(healthy.of_type("poll_vote_update")) == 1


async def test_poll_view_failure_isolated(registry, router, make_transport, forum_repo, monkeypatch):
    first, second = make_transport(), make_transport()
    await _connect(registry, first, "u1")
    await _connect(registry, second, "u2")
    post = await _poll_post(forum_repo)
    from edupath.realtime import polls as polls_module

    real_build = polls_module.build_poll_view

    def flaky_build(results, user_votes):
        if user_votes:
            raise ValueError("corrupt vote")
        return real_build(results, user_votes)

    monkeypatch.setattr(polls_module, "build_poll_view", flaky_build)
    await forum_repo.vote_poll_option(post.id, "u1", "option_0")

    assert await PollFanout(registry, router, forum_repo).publish(post.id, "u1") == 1
    assert first.of_type("poll_vote_update") == []
    assert len(second.of_type("poll_vote_update")) == 1


async def test_post_without_poll_sends_nothing(registry, router, make_transport, forum_repo):
    member = make_transport()
    await _connect(registry, member, "u1")
    post = await forum_repo.create_post(author_id="u1", content="No poll here")

    assert await PollFanout(registry, router, forum_repo).publish(post.id, "u1") == 0
    assert member.types() == ["connected"]


async def test_fanout_batches_lookups(registry, router, make_transport):
    for user in ("u1", "u2", "u3"):
        await _connect(registry, make_transport(), user)
    source = MagicMock()
    source.get_poll_results = AsyncMock(return_value=None)
    source.get_votes_by_user = AsyncMock(return_value={})

    await PollFanout(registry, router, source).publish("p1", "u1")

    source.get_poll_results.assert_awaited_once_with("p1")
    source.get_votes_by_user.assert_not_awaited()
