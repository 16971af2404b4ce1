"""
PostgreSQL Database Module.

Handles:
- Workspaces, memberships and invites
- Task drafts and tasks with the review lifecycle
- Nonce ledger for idempotent task actions
- Per-user text captures
"""

from .connection import (
    get_database,
    Database,
    init_database,
    close_database,
    normalize_database_url,
)
from .models import (
    Base,
    WorkspaceDB,
    WorkspaceMemberDB,
    WorkspaceInviteDB,
    TaskDraftDB,
    TaskDB,
    TaskActionDB,
    TextCaptureDB,
)

__all__ = [
    "get_database",
    "Database",
    "init_database",
    "close_database",
    "normalize_database_url",
    "Base",
    "WorkspaceDB",
    "WorkspaceMemberDB",
    "WorkspaceInviteDB",
    "TaskDraftDB",
    "TaskDB",
    "TaskActionDB",
    "TextCaptureDB",
]
