import pytest


@pytest.mark.asyncio
async def test_typing_is_relayed_to_everyone_but_the_typist(service, connections, online, alice, bob, dave):
    a = await online(alice)
    b = await online(bob)
    d = await online(dave)
    for p, ws in ((alice, a), (bob, b), (dave, d)):
        await service.dispatch(p, ws, "join_room", {"roomId": "team", "chatType": "group"})

    await service.dispatch(alice, a, "typing", {"roomId": "team", "isTyping": True})
    await service.dispatch(alice, a, "typing", {"roomId": "team", "isTyping": False})
    await connections.drain()

    assert a.frames("user_typing") == []
    for ws in (b, d):
        frames = ws.frames("user_typing")
        assert [f["data"] for f in frames] == [
            {"userId": "alice", "userName": "Alice", "isTyping": True},
            {"userId": "alice", "userName": "Alice", "isTyping": False},
        ]
        assert all(f["room"] == "team" for f in frames)


@pytest.mark.asyncio
async def test_join_announces_newcomer_once(service, connections, online, alice, bob):
    a = await online(alice)
    b = await online(bob)
    await service.dispatch(alice, a, "join_room", {"roomId": "dm-ab", "chatType": "direct"})
    await service.dispatch(bob, b, "join_room", {"roomId": "dm-ab", "chatType": "direct"})
    await service.dispatch(bob, b, "join_room", {"roomId": "dm-ab", "chatType": "direct"})
    await connections.drain()

    assert [f["data"]["userId"] for f in a.frames("user_joined")] == ["bob"]
    assert b.frames("user_joined") == []


@pytest.mark.asyncio
async def test_leave_stops_delivery(service, connections, online, alice, bob):
    a = await online(alice)
    b = await online(bob)
    for p, ws in ((alice, a), (bob, b)):
        await service.dispatch(p, ws, "join_room", {"roomId": "dm-ab", "chatType": "direct"})

    await service.dispatch(bob, b, "leave_room", {"roomId": "dm-ab"})
    await service.dispatch(alice, a, "send_message", {"roomId": "dm-ab", "chatType": "direct", "content": "hi"})
    await connections.drain()

    assert [f["data"]["userId"] for f in a.frames("user_left")] == ["bob"]
    assert b.frames("new_message") == []
    assert len(a.frames("new_message")) == 1


@pytest.mark.asyncio
async def test_outsider_cannot_join(service, connections, online, carol):
    c = await online(carol)
    await service.dispatch(carol, c, "join_room", {"roomId": "team", "chatType": "group"})
    await connections.drain()

    assert c.frames("error")[0]["data"]["message"] == "Not authorized to join this group"
    assert not await connections.is_subscribed("team", c)


@pytest.mark.asyncio
async def test_outsider_cannot_join_a_direct_chat(service, connections, online, alice, carol):
    a = await online(alice)
    c = await online(carol)
    await service.dispatch(alice, a, "join_room", {"roomId": "dm-ab", "chatType": "direct"})
    await service.dispatch(carol, c, "join_room", {"roomId": "dm-ab", "chatType": "direct"})
    await connections.drain()

    (error,) = c.frames("error")
    assert error["data"]["message"] == "Not authorized to join this chat"
    assert error["data"]["event"] == "join_room"
    assert not await connections.is_subscribed("dm-ab", c)
    assert a.frames("user_joined") == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event,data,message",
    [
        ("join_room", {}, "Room ID is required"),
        ("join_room", {"roomId": "  "}, "Room ID is required"),
        ("join_room", {"roomId": "team", "chatType": "channel"}, "Invalid chat type"),
        ("leave_room", {"room": "team"}, "Room ID is required"),
        ("typing", {"isTyping": True}, "Room ID is required"),
        ("send_message", {"content": "hi"}, "Missing required fields"),
        ("mark_as_read", None, "Message ID is required"),
        ("delete_message", {"messageId": ""}, "Message ID is required"),
        ("shout", {"roomId": "team"}, "Unknown event type"),
    ],
)
async def test_bad_events_get_a_scoped_error(service, connections, online, alice, event, data, message):
    a = await online(alice)
    await service.dispatch(alice, a, event, data)
    await connections.drain()

    (error,) = a.frames("error")
    assert error["data"]["message"] == message
    assert error["data"]["event"] == event


@pytest.mark.asyncio
async def test_errors_carry_business_codes(service, connections, online, carol):
    c = await online(carol)
    await service.dispatch(carol, c, "send_message", {"roomId": "dm-ab", "chatType": "direct", "content": "x"})
    await connections.drain()

    (error,) = c.frames("error")
    assert error["data"]["code"] == 30101


@pytest.mark.asyncio
async def test_unexpected_failure_is_contained(service, connections, online, monkeypatch, alice):
    a = await online(alice)

    async def _boom(*args, **kwargs):
        raise KeyError("kaput")

    monkeypatch.setattr(service.engine, "history", _boom)
    await service.dispatch(alice, a, "get_messages", {"roomId": "dm-ab", "chatType": "direct"})
    await service.dispatch(alice, a, "typing", {"roomId": "dm-ab", "isTyping": True})
    await connections.drain()

    (error,) = a.frames("error")
    assert error["data"]["message"] == "Internal server error"
