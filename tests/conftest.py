import itertools
import os
import tempfile

# Point the app at a throwaway database before anything imports the engine.
_TMP_DIR = tempfile.mkdtemp(prefix="campusnotes-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "false"

import pytest  # noqa: E402

import campusnotes.models  # noqa: E402,F401
from campusnotes.database import Base, async_session, engine  # noqa: E402
from campusnotes.models.user import RoleEnum, User  # noqa: E402
from campusnotes.realtime.events import ChatBroker  # noqa: E402
from campusnotes.realtime.manager import ConnectionManager  # noqa: E402
from campusnotes.realtime.rooms import connection_user  # noqa: E402
from campusnotes.routers.auth import token_for  # noqa: E402


class FakeSocket:
    """Stands in for a Starlette WebSocket; records every frame sent."""

    def __init__(self):
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        self.sent.append(data)

    def events(self, name=None):
        return [f for f in self.sent if name is None or f["event"] == name]

    def clear(self):
        self.sent.clear()


class BrokenSocket(FakeSocket):
    async def send_json(self, data):
        raise RuntimeError("socket closed")


async def reset_schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def db():
    await reset_schema()
    async with async_session() as session:
        yield session


@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    async def _make(semester="3", name=None, role=RoleEnum.STUDENT, is_active=True):
        n = next(counter)
        user = User(
            email=f"student{n}@example.com",
            full_name=name or f"Student {n}",
            avatar_url=f"https://cdn.example.com/avatars/{n}.png",
            semester=semester,
            role=role,
            is_active=is_active,
        )
        db.add(user)
        await db.commit()
        return user

    return _make


@pytest.fixture
def connections():
    return ConnectionManager()


@pytest.fixture
def broker(connections):
    return ChatBroker(connections)


@pytest.fixture
def connect(connections):
    """Open a fake socket for a user and register it like the endpoint does."""

    async def _connect(user, socket=None):
        socket = socket or FakeSocket()
        connection = await connections.connect(socket, connection_user(user))
        return connection, socket

    return _connect


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {token_for(user.id)}"}
