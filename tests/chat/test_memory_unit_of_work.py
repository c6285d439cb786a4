import pytest

from domain.chat import GroupRoomRef, Message
from domain.user import User
from infrastructure.repositories.memory import InMemoryChatStore
from infrastructure.unit_of_work import InMemoryUnitOfWork


@pytest.mark.asyncio
async def test_writes_become_visible_on_commit_only():
    store = InMemoryChatStore()
    async with InMemoryUnitOfWork(store) as uow:
        user = await uow.user_repository.create(User(id=None, name=" Zed "))
        assert store.users == {}
    assert store.users[user.id].name == "Zed"


@pytest.mark.asyncio
async def test_exception_rolls_back_every_write():
    store = InMemoryChatStore()
    with pytest.raises(RuntimeError):
        async with InMemoryUnitOfWork(store) as uow:
            msg = Message.compose(sender_id="a", room=GroupRoomRef("g1"), content="hi")
            await uow.chat_repository.create_message(msg)
            raise RuntimeError("abort")
    assert store.messages == {}


@pytest.mark.asyncio
async def test_readonly_unit_never_applies_writes():
    store = InMemoryChatStore()
    async with InMemoryUnitOfWork(store, readonly=True) as uow:
        await uow.user_repository.create(User(id="u1", name="U"))
    assert store.users == {}


@pytest.mark.asyncio
async def test_returned_entities_are_detached_copies():
    store = InMemoryChatStore()
    async with InMemoryUnitOfWork(store) as uow:
        saved = await uow.chat_repository.create_message(
            Message.compose(sender_id="a", room=GroupRoomRef("g1"), content="hi")
        )
    async with InMemoryUnitOfWork(store, readonly=True) as uow:
        loaded = await uow.chat_repository.get_message(saved.id)
    loaded.mark_read("b")
    assert len(store.messages[saved.id].read_by) == 1
