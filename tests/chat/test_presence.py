import pytest

from infrastructure.realtime.presence import PresenceRegistry


class _Handle:
    async def send_json(self, data):
        pass

    async def close(self, code=1000):
        pass


@pytest.mark.asyncio
async def test_registry_tracks_users_by_live_handles(alice, bob):
    registry = PresenceRegistry()
    h1, h2, h3 = _Handle(), _Handle(), _Handle()

    assert await registry.register(alice, h1) == ("alice",)
    assert await registry.register(bob, h2) == ("alice", "bob")
    assert await registry.register(alice, h3) == ("alice", "bob")

    # alice still has a second connection
    assert await registry.unregister("alice", h1) == ("alice", "bob")
    assert await registry.is_online("alice")
    assert await registry.unregister("alice", h3) == ("bob",)
    assert not await registry.is_online("alice")
    # unknown users are ignored
    assert await registry.unregister("nobody") == ("bob",)
    assert await registry.unregister("bob") == ()


@pytest.mark.asyncio
async def test_every_connect_and_disconnect_broadcasts_the_online_set(
    service, connections, online, alice, bob, carol, dave
):
    principals = [alice, bob, carol, dave]
    handles = [await online(p) for p in principals]
    await connections.drain()

    # the latest update each client saw after everyone connected
    for ws in handles:
        assert ws.frames("user_status_update")[-1]["data"]["onlineUsers"] == ["alice", "bob", "carol", "dave"]

    await service.disconnect(bob, handles[1])
    await service.disconnect(dave, handles[3])
    await connections.drain()

    assert await service.presence.snapshot() == ("alice", "carol")
    for ws in (handles[0], handles[2]):
        assert ws.frames("user_status_update")[-1]["data"]["onlineUsers"] == ["alice", "carol"]
    assert await connections.connection_count() == 2


@pytest.mark.asyncio
async def test_user_with_two_connections_stays_online(service, connections, online, alice, bob):
    phone = await online(alice, "phone")
    laptop = await online(alice, "laptop")
    b = await online(bob)

    await service.disconnect(alice, phone)
    await connections.drain()
    assert b.frames("user_status_update")[-1]["data"]["onlineUsers"] == ["alice", "bob"]

    await service.disconnect(alice, laptop)
    await connections.drain()
    assert b.frames("user_status_update")[-1]["data"]["onlineUsers"] == ["bob"]


@pytest.mark.asyncio
async def test_connect_greets_the_new_connection(service, connections, online, alice):
    a = await online(alice)
    await connections.drain()

    welcome, status = a.sent[0], a.sent[1]
    assert welcome["type"] == "welcome"
    assert welcome["data"]["userId"] == "alice"
    assert "send_message" in welcome["data"]["events"]
    assert status["type"] == "user_status_update"
