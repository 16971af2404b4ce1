"""
Repository classes for database operations.

Each repository handles CRUD and the race-sensitive writes for its entity type.
"""

from .tasks import (
    TaskRepository,
    TextCaptureRepository,
)
from .workspaces import (
    WorkspaceRepository,
    WorkspaceMemberRepository,
    WorkspaceInviteRepository,
)

__all__ = [
    "TaskRepository",
    "TextCaptureRepository",
    "WorkspaceRepository",
    "WorkspaceMemberRepository",
    "WorkspaceInviteRepository",
]
