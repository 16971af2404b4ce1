"""
Pytest configuration and shared fixtures.
"""

import pytest
import pytest_asyncio
from datetime import datetime
from unittest.mock import AsyncMock, Mock

from src.models.workspace import MemberRole
from src.services import (
    TaskService,
    WorkspaceService,
    WorkspaceInviteService,
    WorkspaceMemberService,
)
from tests.fakes import (
    FakeStore,
    FakeTaskRepository,
    FakeTextCaptureRepository,
    FakeWorkspaceInviteRepository,
    FakeWorkspaceMemberRepository,
    FakeWorkspaceRepository,
    FixedClock,
)


@pytest.fixture
def clock():
    """Clock frozen at 10:30 local time."""
    return FixedClock(datetime(2026, 3, 10, 10, 30, 0))


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def task_repo(store, clock):
    return FakeTaskRepository(store, clock)


@pytest.fixture
def capture_repo(store, clock):
    return FakeTextCaptureRepository(store, clock)


@pytest.fixture
def workspace_repo(store, clock):
    return FakeWorkspaceRepository(store, clock)


@pytest.fixture
def member_repo(store, clock):
    return FakeWorkspaceMemberRepository(store, clock)


@pytest.fixture
def invite_repo(store, clock):
    return FakeWorkspaceInviteRepository(store, clock)


@pytest.fixture
def task_service(clock, task_repo, member_repo, workspace_repo, capture_repo):
    return TaskService(clock, task_repo, member_repo, workspace_repo, capture_repo)


@pytest.fixture
def workspace_service(clock, workspace_repo, member_repo, invite_repo):
    return WorkspaceService(clock, workspace_repo, member_repo, invite_repo)


@pytest.fixture
def invite_service(clock, invite_repo, workspace_repo, member_repo):
    return WorkspaceInviteService(clock, invite_repo, workspace_repo, member_repo)


@pytest.fixture
def member_service(clock, member_repo, workspace_repo):
    return WorkspaceMemberService(clock, member_repo, workspace_repo)


@pytest_asyncio.fixture
async def team(workspace_repo, member_repo, clock):
    """
    Workspace "Ops" owned by anna, with members maria and ivan.

    Returns the workspace.
    """
    workspace, _ = await workspace_repo.ensure_by_chat_id("chat-1", "Ops")
    workspace = await workspace_repo.set_owner(workspace.id, "anna", clock.now())
    for user_id in ("maria", "ivan"):
        await member_repo.upsert_member(workspace.id, user_id, MemberRole.MEMBER, clock.now())
    return workspace


@pytest.fixture
def mock_database():
    """Mock database with session context manager."""
    db = Mock()
    session = AsyncMock()

    # Mock session context manager
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)

    # Mock session methods
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.add = Mock()

    db.session = Mock(return_value=session)

    return db, session

