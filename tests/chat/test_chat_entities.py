from datetime import datetime, timedelta, timezone

import pytest

from domain.chat import (
    Attachment,
    ChatType,
    DirectRoom,
    DirectRoomRef,
    GroupMember,
    GroupRole,
    GroupRoom,
    GroupRoomRef,
    Message,
    room_ref,
)
from domain.common.exceptions import (
    DomainValidationException,
    InvalidChatTypeException,
    MessageDeleteForbiddenException,
)


def test_chat_type_parse_accepts_known_values():
    assert ChatType.parse("direct") is ChatType.DIRECT
    assert ChatType.parse(" Group ") is ChatType.GROUP
    assert ChatType.parse(ChatType.GROUP) is ChatType.GROUP


@pytest.mark.parametrize("value", ["channel", "", None, 1])
def test_chat_type_parse_rejects_unknown_values(value):
    with pytest.raises(InvalidChatTypeException) as ei:
        ChatType.parse(value)
    assert ei.value.message == "Invalid chat type"


def test_room_ref_dispatches_on_chat_type():
    assert room_ref("direct", "r1") == DirectRoomRef("r1")
    assert room_ref("group", "r1") == GroupRoomRef("r1")
    # same id, different kind: distinct references
    assert DirectRoomRef("r1") != GroupRoomRef("r1")


@pytest.mark.parametrize("participants", [["a"], ["a", "a"], ["a", "b", "c"]])
def test_direct_room_requires_two_distinct_participants(participants):
    with pytest.raises(DomainValidationException):
        DirectRoom(id="d1", participants=participants)


def test_group_membership_ignores_role():
    group = GroupRoom(
        id="g1",
        name="G",
        members=[GroupMember("a", GroupRole.ADMIN), GroupMember("b", "moderator"), GroupMember("c")],
    )
    assert all(group.is_member(u) for u in ("a", "b", "c"))
    assert not group.is_member("z")
    assert group.role_of("b") is GroupRole.MODERATOR
    assert group.role_of("z") is None


def test_compose_trims_content_and_records_sender_receipt():
    now = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
    msg = Message.compose(sender_id="a", room=DirectRoomRef("d1"), content="  hello  ", now=now)
    assert msg.content == "hello"
    assert msg.id is None
    assert len(msg.read_by) == 1
    assert msg.read_by[0].user_id == "a"
    assert msg.read_by[0].read_at == now
    assert msg.created_at == now


@pytest.mark.parametrize("content", [None, "", "   "])
def test_compose_rejects_message_without_text_or_attachments(content):
    with pytest.raises(DomainValidationException) as ei:
        Message.compose(sender_id="a", room=GroupRoomRef("g1"), content=content)
    assert ei.value.message == "Message must contain text or at least one attachment"


def test_compose_attachment_only_follows_flag():
    att = Attachment(kind="image", url="https://cdn.example/x.png", size=10)
    msg = Message.compose(sender_id="a", room=GroupRoomRef("g1"), content=None, attachments=[att])
    assert msg.content == ""
    assert msg.attachments[0].kind.value == "image"

    with pytest.raises(DomainValidationException):
        Message.compose(
            sender_id="a", room=GroupRoomRef("g1"), content=" ", attachments=[att], allow_attachment_only=False
        )


def test_compose_enforces_limits():
    with pytest.raises(DomainValidationException):
        Message.compose(sender_id="a", room=GroupRoomRef("g1"), content="x" * 11, max_content_length=10)
    atts = [Attachment(kind="file", url=f"u{i}") for i in range(3)]
    with pytest.raises(DomainValidationException):
        Message.compose(sender_id="a", room=GroupRoomRef("g1"), content="hi", attachments=atts, max_attachments=2)


def test_attachment_validation():
    with pytest.raises(DomainValidationException):
        Attachment(kind="video", url="u")
    with pytest.raises(DomainValidationException):
        Attachment(kind="file", url="")
    with pytest.raises(DomainValidationException):
        Attachment(kind="file", url="u", size=-1)


def test_mark_read_is_idempotent_per_reader():
    msg = Message.compose(sender_id="a", room=DirectRoomRef("d1"), content="hi")
    first = msg.mark_read("b", at=datetime.now(timezone.utc) + timedelta(seconds=1))
    assert first is not None and first.user_id == "b"
    assert msg.mark_read("b") is None
    assert msg.mark_read("a") is None
    assert [r.user_id for r in msg.read_by] == ["a", "b"]


def test_soft_delete_only_by_sender():
    msg = Message.compose(sender_id="a", room=DirectRoomRef("d1"), content="hi")
    msg.id = "m1"
    with pytest.raises(MessageDeleteForbiddenException):
        msg.soft_delete("b")
    assert msg.soft_delete("a") is True
    assert msg.is_deleted
    assert msg.soft_delete("a") is False
