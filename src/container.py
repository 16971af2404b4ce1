"""
Service wiring.

Repositories and services are built once at startup and held for the life of
the process. The chat adapter receives the container instead of reaching for
module-level singletons.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .database.connection import Database, get_database
from .database.repositories import (
    TaskRepository,
    TextCaptureRepository,
    WorkspaceRepository,
    WorkspaceMemberRepository,
    WorkspaceInviteRepository,
)
from .services import (
    TaskService,
    WorkspaceService,
    WorkspaceInviteService,
    WorkspaceMemberService,
)
from .utils.datetime_utils import Clock, SystemClock

logger = logging.getLogger(__name__)


@dataclass
class Container:
    task_service: TaskService
    workspace_service: WorkspaceService
    invite_service: WorkspaceInviteService
    member_service: WorkspaceMemberService


def build_container(db: Optional[Database] = None, clock: Optional[Clock] = None) -> Container:
    """Create every repository and service against one database."""
    db = db or get_database()
    clock = clock or SystemClock()

    task_repo = TaskRepository(db)
    capture_repo = TextCaptureRepository(db)
    workspace_repo = WorkspaceRepository(db)
    member_repo = WorkspaceMemberRepository(db)
    invite_repo = WorkspaceInviteRepository(db)

    container = Container(
        task_service=TaskService(clock, task_repo, member_repo, workspace_repo, capture_repo),
        workspace_service=WorkspaceService(clock, workspace_repo, member_repo, invite_repo),
        invite_service=WorkspaceInviteService(clock, invite_repo, workspace_repo, member_repo),
        member_service=WorkspaceMemberService(clock, member_repo, workspace_repo),
    )
    logger.info("Service container built")
    return container

