"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
# Tests run against the in-memory persistence backend
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")

from typing import Any, List, Optional

import pytest
import pytest_asyncio

from application.services.realtime_service import ChatRealtimeService
from domain.chat import DirectRoom, GroupMember, GroupRole, GroupRoom, Principal
from domain.user import User
from infrastructure.realtime.connection_manager import ConnectionManager
from infrastructure.realtime.presence import PresenceRegistry
from infrastructure.repositories.memory import InMemoryChatStore
from infrastructure.unit_of_work import build_uow_factory


class FakeConnection:
    """Records every frame the server pushes; stands in for a Starlette WebSocket."""

    def __init__(self, label: str = "") -> None:
        self.label = label
        self.sent: List[dict] = []
        self.closed_with: Optional[int] = None

    async def send_json(self, data: Any) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def frames(self, type_: Optional[str] = None) -> List[dict]:
        return [f for f in self.sent if type_ is None or f["type"] == type_]

    def __repr__(self) -> str:
        return f"FakeConnection({self.label!r})"


ALICE = Principal(user_id="alice", name="Alice", profile_picture="https://cdn.example/alice.png")
BOB = Principal(user_id="bob", name="Bob")
CAROL = Principal(user_id="carol", name="Carol")
DAVE = Principal(user_id="dave", name="Dave")


def seed_store() -> InMemoryChatStore:
    store = InMemoryChatStore()
    for p in (ALICE, BOB, CAROL, DAVE):
        store.users[p.user_id] = User(id=p.user_id, name=p.name, profile_picture=p.profile_picture)
    store.direct_rooms["dm-ab"] = DirectRoom(id="dm-ab", participants=["alice", "bob"])
    store.groups["team"] = GroupRoom(
        id="team",
        name="Team",
        members=[
            GroupMember("alice", GroupRole.ADMIN),
            GroupMember("bob", GroupRole.MEMBER),
            GroupMember("dave", GroupRole.MODERATOR),
        ],
    )
    return store


@pytest.fixture
def store() -> InMemoryChatStore:
    return seed_store()


@pytest.fixture
def uow_factory(store):
    return build_uow_factory(store)


@pytest_asyncio.fixture
async def connections():
    manager = ConnectionManager(queue_max=1000)
    yield manager
    await manager.aclose()


@pytest.fixture
def presence() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture
def service(uow_factory, connections, presence) -> ChatRealtimeService:
    return ChatRealtimeService(uow_factory=uow_factory, connections=connections, presence=presence)


@pytest.fixture
def online(service):
    """Connect a principal and return its fake connection."""

    async def _connect(principal: Principal, label: Optional[str] = None) -> FakeConnection:
        ws = FakeConnection(label or principal.user_id)
        await service.connect(principal, ws)
        return ws

    return _connect


@pytest.fixture
def alice() -> Principal:
    return ALICE


@pytest.fixture
def bob() -> Principal:
    return BOB


@pytest.fixture
def carol() -> Principal:
    return CAROL


@pytest.fixture
def dave() -> Principal:
    return DAVE
