from __future__ import annotations

import pytest

from edupath.realtime.messages import ErrorMessage, envelope

pytestmark = pytest.mark.asyncio


async def test_register_acknowledges_with_unique_ids(registry, make_transport):
    transports = [make_transport() for _ in range(3)]

    ids = [await registry.register(transport) for transport in transports]

    assert len(set(ids)) == 3
    for connection_id, transport in zip(ids, transports):
        (ack,) = transport.sent
        assert ack["type"] == "connected"
        assert ack["connectionId"] == connection_id
        assert ack["timestamp"].endswith("Z")


async def test_unregister_is_idempotent(registry, make_transport):
    connection_id = await registry.register(make_transport())

    assert registry.unregister(connection_id) is not None
    assert registry.unregister(connection_id) is None
    assert connection_id not in registry


async def test_send_to_user_reaches_every_session_of_that_user(registry, router, make_transport):
    a1, a2, b = make_transport(), make_transport(), make_transport()
    for transport, user in ((a1, "A"), (a2, "A"), (b, "B")):
        registry.bind_user(await registry.register(transport), user)
    message = envelope("notification", {"title": "Offer letter received"})

    assert await router.send_to_user("A", message) == 2
    assert await router.broadcast_to_all(message) == 3
    assert a1.types().count("notification") == 2
    assert b.types().count("notification") == 1


async def test_broadcast_includes_unauthenticated_and_skips_closed(registry, router, make_transport):
    anonymous, closed = make_transport(), make_transport()
    await registry.register(anonymous)
    await registry.register(closed)
    closed.open = False

    delivered = await router.broadcast_to_all(envelope("forum_post_updated", {"postId": "p1"}))

    assert delivered == 1
    assert anonymous.types() == ["connected", "forum_post_updated"]


async def test_failing_connection_does_not_block_others(registry, router, make_transport):
    first, broken, last = make_transport(), make_transport(fail=True), make_transport()
    for transport in (first, broken, last):
        registry.bind_user(await registry.register(transport), "A")

    delivered = await router.send_to_user("A", envelope("notification", {"n": 1}))

    assert delivered == 2
    assert first.types()[-1] == "notification"
    assert last.types()[-1] == "notification"
    assert "notification" not in broken.types()


async def test_send_to_unknown_connection_is_noop(router):
    assert await router.send_to_connection("nope", ErrorMessage(message="x")) == 0


async def test_stats_counts_authenticated(registry, make_transport):
    registry.bind_user(await registry.register(make_transport()), "A")
    await registry.register(make_transport())

    stats = registry.stats()

    assert stats["totalConnections"] == 2
    assert stats["authenticatedConnections"] == 1
