import pytest

from application.services.room_gate import RoomAction, RoomMembershipGate
from domain.chat import DirectRoom, GroupRoom
from domain.common.exceptions import (
    ChatAccessDeniedException,
    InvalidChatTypeException,
    RoomNotFoundException,
)
from infrastructure.repositories.memory import InMemoryChatRepository


@pytest.fixture
def repo(store):
    return InMemoryChatRepository(store, [])


@pytest.fixture
def gate():
    return RoomMembershipGate()


@pytest.mark.asyncio
async def test_direct_participants_are_admitted(gate, repo, alice, bob):
    for principal in (alice, bob):
        room = await gate.authorize(repo, principal, "dm-ab", "direct", RoomAction.SEND)
        assert isinstance(room, DirectRoom)


@pytest.mark.asyncio
async def test_group_members_of_any_role_are_admitted(gate, repo, alice, bob, dave):
    for principal in (alice, bob, dave):
        room = await gate.authorize(repo, principal, "team", "group", RoomAction.JOIN)
        assert isinstance(room, GroupRoom)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "room_id,chat_type,action,message",
    [
        ("dm-ab", "direct", RoomAction.SEND, "Not authorized to send message to this chat"),
        ("dm-ab", "direct", RoomAction.JOIN, "Not authorized to join this chat"),
        ("team", "group", RoomAction.SEND, "Not authorized to send message to this group"),
        ("team", "group", RoomAction.READ, "Not authorized to view this group"),
    ],
)
async def test_outsiders_are_denied(gate, repo, carol, room_id, chat_type, action, message):
    with pytest.raises(ChatAccessDeniedException) as ei:
        await gate.authorize(repo, carol, room_id, chat_type, action)
    assert ei.value.message == message


@pytest.mark.asyncio
async def test_unknown_rooms_are_not_found(gate, repo, alice):
    with pytest.raises(RoomNotFoundException) as ei:
        await gate.authorize(repo, alice, "missing", "group")
    assert ei.value.message == "Group not found"
    with pytest.raises(RoomNotFoundException) as ei:
        await gate.authorize(repo, alice, "missing", "direct")
    assert ei.value.message == "Chat not found"


@pytest.mark.asyncio
async def test_room_kind_must_match_reference(gate, repo, alice):
    # "team" is a group; looking it up as a direct chat finds nothing
    with pytest.raises(RoomNotFoundException):
        await gate.authorize(repo, alice, "team", "direct")


@pytest.mark.asyncio
async def test_invalid_chat_type_is_rejected(gate, repo, alice):
    with pytest.raises(InvalidChatTypeException):
        await gate.authorize(repo, alice, "team", "channel")


@pytest.mark.asyncio
async def test_missing_chat_type_resolves_either_kind(gate, repo, alice):
    assert isinstance(await gate.authorize(repo, alice, "team", None, RoomAction.JOIN), GroupRoom)
    assert isinstance(await gate.authorize(repo, alice, "dm-ab", None, RoomAction.JOIN), DirectRoom)
    with pytest.raises(RoomNotFoundException):
        await gate.authorize(repo, alice, "nowhere", None, RoomAction.JOIN)
