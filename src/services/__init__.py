"""
Services for business logic.
"""

from .task_service import TaskService
from .workspace_service import WorkspaceService
from .workspace_invite import WorkspaceInviteService
from .workspace_member import WorkspaceMemberService
from .task_rules import sort_tasks

__all__ = [
    "TaskService",
    "WorkspaceService",
    "WorkspaceInviteService",
    "WorkspaceMemberService",
    "sort_tasks",
]
