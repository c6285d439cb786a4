import asyncio

import pytest

from application.services.read_receipt_service import ReadReceiptTracker
from domain.common.exceptions import PersistenceException
from infrastructure.repositories.memory import InMemoryChatRepository


async def _post(service, connections, principal, ws, content="hello"):
    await service.dispatch(principal, ws, "send_message", {"roomId": "dm-ab", "chatType": "direct", "content": content})
    await connections.drain()
    return ws.frames("new_message")[-1]["data"]["id"]


@pytest.mark.asyncio
async def test_mark_as_read_broadcasts_once_per_reader(service, connections, online, store, alice, bob):
    a = await online(alice)
    b = await online(bob)
    for p, ws in ((alice, a), (bob, b)):
        await service.dispatch(p, ws, "join_room", {"roomId": "dm-ab", "chatType": "direct"})
    message_id = await _post(service, connections, alice, a)

    await service.dispatch(bob, b, "mark_as_read", {"messageId": message_id})
    await service.dispatch(bob, b, "mark_as_read", {"messageId": message_id})
    await connections.drain()

    for ws in (a, b):
        frames = ws.frames("message_read")
        assert len(frames) == 1
        assert frames[0]["room"] == "dm-ab"
        assert frames[0]["data"]["messageId"] == message_id
        assert frames[0]["data"]["userId"] == "bob"
        assert frames[0]["data"]["readAt"].endswith("Z")
    assert [r.user_id for r in store.messages[message_id].read_by] == ["alice", "bob"]
    assert b.frames("error") == []


@pytest.mark.asyncio
async def test_sender_marking_own_message_is_a_no_op(service, connections, online, store, alice):
    a = await online(alice)
    await service.dispatch(alice, a, "join_room", {"roomId": "dm-ab", "chatType": "direct"})
    message_id = await _post(service, connections, alice, a)

    await service.dispatch(alice, a, "mark_as_read", {"messageId": message_id})
    await connections.drain()

    assert a.frames("message_read") == []
    assert len(store.messages[message_id].read_by) == 1


@pytest.mark.asyncio
async def test_concurrent_receipts_from_two_connections_of_one_user(service, connections, online, store, alice, bob):
    a = await online(alice)
    b1 = await online(bob, "bob-phone")
    b2 = await online(bob, "bob-laptop")
    await service.dispatch(alice, a, "join_room", {"roomId": "dm-ab", "chatType": "direct"})
    message_id = await _post(service, connections, alice, a)

    await asyncio.gather(
        service.dispatch(bob, b1, "mark_as_read", {"messageId": message_id}),
        service.dispatch(bob, b2, "mark_as_read", {"messageId": message_id}),
    )
    await connections.drain()

    assert len(a.frames("message_read")) == 1
    assert [r.user_id for r in store.messages[message_id].read_by] == ["alice", "bob"]


@pytest.mark.asyncio
async def test_unknown_message_and_missing_id(service, connections, online, bob):
    b = await online(bob)
    await service.dispatch(bob, b, "mark_as_read", {"messageId": "does-not-exist"})
    await service.dispatch(bob, b, "mark_as_read", {})
    await connections.drain()

    assert [e["data"]["message"] for e in b.frames("error")] == ["Message not found", "Message ID is required"]


@pytest.mark.asyncio
async def test_receipt_write_failure_leaves_message_untouched(
    uow_factory, connections, service, online, store, monkeypatch, alice, bob
):
    a = await online(alice)
    message_id = await _post(service, connections, alice, a)

    async def _boom(self, message_id, receipt):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(InMemoryChatRepository, "append_read_receipt", _boom)
    tracker = ReadReceiptTracker(uow_factory=uow_factory, connections=connections)
    with pytest.raises(PersistenceException) as ei:
        await tracker.mark_as_read(bob, message_id)
    assert ei.value.message == "Failed to mark message as read"
    assert len(store.messages[message_id].read_by) == 1
