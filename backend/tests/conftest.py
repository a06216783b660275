# tests/conftest.py — Shared test fixtures
import os
import uuid
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["REMINDER_SCHEDULER_ENABLED"] = "false"

from models import (
    Base, User, Workspace, WorkspaceMember, WorkspaceRole, Space, TaskList, Task, Label,
    Automation, utcnow,
)
from auth import AuthService
from database import get_db_session
from realtime import manager
from main import app


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_engine):
    """HTTP test client with overridden DB dependency"""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


class FakeWebSocket:
    """Minimal stand-in for a Starlette WebSocket in registry tests"""

    def __init__(self, fail=False):
        self.sent = []
        self.accepted = False
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


@pytest.fixture(autouse=True)
def reset_realtime():
    manager.clear()
    yield
    manager.clear()


async def _add(db_session, obj):
    db_session.add(obj)
    await db_session.commit()
    await db_session.refresh(obj)
    return obj


async def _make_user(db_session, name: str) -> User:
    return await _add(db_session, User(
        id=str(uuid.uuid4()),
        email=f"{name}-{uuid.uuid4().hex[:6]}@taskforge.dev",
        display_name=name.title(),
        is_active=True,
    ))


@pytest_asyncio.fixture
async def owner(db_session):
    """Workspace owner"""
    return await _make_user(db_session, "owner")


@pytest_asyncio.fixture
async def member(db_session):
    """Plain workspace member"""
    return await _make_user(db_session, "member")


@pytest_asyncio.fixture
async def outsider(db_session):
    """User with no workspace membership"""
    return await _make_user(db_session, "outsider")


@pytest_asyncio.fixture
async def workspace(db_session, owner, member):
    ws = await _add(db_session, Workspace(
        id=str(uuid.uuid4()),
        name="Test Workspace",
        slug=f"test-ws-{uuid.uuid4().hex[:6]}",
        owner_id=owner.id,
    ))
    db_session.add(WorkspaceMember(workspace_id=ws.id, user_id=owner.id, role=WorkspaceRole.OWNER.value))
    db_session.add(WorkspaceMember(workspace_id=ws.id, user_id=member.id, role=WorkspaceRole.MEMBER.value))
    await db_session.commit()
    return ws


@pytest_asyncio.fixture
async def task_list(db_session, workspace):
    space = await _add(db_session, Space(id=str(uuid.uuid4()), workspace_id=workspace.id, name="Engineering"))
    return await _add(db_session, TaskList(id=str(uuid.uuid4()), space_id=space.id, name="Sprint 1"))


@pytest_asyncio.fixture
async def task(db_session, workspace, task_list, owner):
    return await _add(db_session, Task(
        id=str(uuid.uuid4()),
        list_id=task_list.id,
        workspace_id=workspace.id,
        title="Write release notes",
        status="todo",
        priority="medium",
        creator_id=owner.id,
    ))


@pytest_asyncio.fixture
async def label(db_session, workspace):
    return await _add(db_session, Label(id=str(uuid.uuid4()), workspace_id=workspace.id, name="urgent"))


async def make_task(db_session, workspace, task_list, creator, **fields) -> Task:
    values = dict(title="Task", status="todo", priority="none")
    values.update(fields)
    return await _add(db_session, Task(
        id=str(uuid.uuid4()),
        list_id=task_list.id,
        workspace_id=workspace.id,
        creator_id=creator.id,
        **values,
    ))


async def make_rule(db_session, workspace, trigger_type, trigger_config, action_type, action_config,
                    enabled=True, name="rule", created_offset=0) -> Automation:
    """Insert a rule directly, bypassing authoring validation"""
    return await _add(db_session, Automation(
        id=str(uuid.uuid4()),
        workspace_id=workspace.id,
        name=name,
        enabled=enabled,
        trigger_type=trigger_type,
        trigger_config=trigger_config,
        action_type=action_type,
        action_config=action_config,
        created_at=utcnow() + timedelta(seconds=created_offset),
    ))


def get_auth_headers(user: User) -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token({"sub": user.id, "email": user.email})
    return {"Authorization": f"Bearer {token}"}
