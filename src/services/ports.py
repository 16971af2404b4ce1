"""
Repository contracts the services depend on.

The SQLAlchemy repositories in ``src.database.repositories`` implement these;
tests substitute in-memory doubles.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from ..models.results import CreateFromDraftResult, ReassignResult, TransitionResult
from ..models.task import DraftStep, Task, TaskAction, TaskDraft, TextCapture, TextCaptureKind
from ..models.workspace import (
    MemberProfile,
    MemberRole,
    MemberStatus,
    Workspace,
    WorkspaceInvite,
    WorkspaceMember,
)


class TaskRepo(Protocol):
    # Drafts
    async def create_draft(self, draft_data: Dict[str, Any]) -> TaskDraft: ...

    async def find_draft_by_token(self, token: str) -> Optional[TaskDraft]: ...

    async def find_draft_by_id(self, draft_id: str) -> Optional[TaskDraft]: ...

    async def find_pending_draft_by_source(
        self, source_chat_id: str, source_message_id: str, creator_user_id: str
    ) -> Optional[TaskDraft]: ...

    async def find_draft_by_creator_and_step(
        self, creator_user_id: str, step: DraftStep
    ) -> Optional[TaskDraft]: ...

    async def find_awaiting_deadline_draft_by_creator(self, creator_user_id: str) -> Optional[TaskDraft]: ...

    async def update_draft_step_if_expected(
        self, draft_id: str, expected_steps: Iterable[DraftStep], updates: Dict[str, Any]
    ) -> Tuple[bool, Optional[TaskDraft]]: ...

    async def create_from_draft(self, draft: TaskDraft) -> CreateFromDraftResult: ...

    # Tasks
    async def get_task(self, task_id: str) -> Optional[Task]: ...

    async def find_task_by_source(self, source_chat_id: str, source_message_id: str) -> Optional[Task]: ...

    async def list_assigned_tasks(self, workspace_id: str, viewer_user_id: str, limit: int) -> List[Task]: ...

    async def list_created_tasks(self, workspace_id: str, viewer_user_id: str, limit: int) -> List[Task]: ...

    async def list_on_review_tasks(self, workspace_id: str, viewer_user_id: str, limit: int) -> List[Task]: ...

    async def find_action_by_nonce(self, nonce: str) -> Optional[TaskAction]: ...

    # Transactional lifecycle transitions
    async def submit_for_review_transactional(
        self, task_id: str, actor_user_id: str, nonce: str, now: datetime
    ) -> TransitionResult: ...

    async def accept_review_transactional(
        self, task_id: str, actor_user_id: str, nonce: str, now: datetime
    ) -> TransitionResult: ...

    async def return_to_work_transactional(
        self, task_id: str, actor_user_id: str, nonce: str, comment: str, now: datetime
    ) -> TransitionResult: ...

    async def reassign_transactional(
        self, task_id: str, actor_user_id: str, new_assignee_id: str, nonce: str, now: datetime
    ) -> ReassignResult: ...


class TextCaptureRepo(Protocol):
    async def set_capture(self, capture: TextCapture) -> TextCapture: ...

    async def get_capture(self, user_id: str) -> Optional[TextCapture]: ...

    async def clear_capture(self, user_id: str, kind: Optional[TextCaptureKind] = None) -> bool: ...


class WorkspaceRepo(Protocol):
    async def ensure_by_chat_id(self, chat_id: str, title: Optional[str] = None) -> Tuple[Workspace, bool]: ...

    async def find_by_id(self, workspace_id: str) -> Optional[Workspace]: ...

    async def find_by_chat_id(self, chat_id: str) -> Optional[Workspace]: ...

    async def find_latest(self) -> Optional[Workspace]: ...

    async def set_owner(self, workspace_id: str, user_id: str, now: datetime) -> Optional[Workspace]: ...

    async def archive(self, workspace_id: str) -> Optional[Tuple[Workspace, int]]: ...


class WorkspaceMemberRepo(Protocol):
    async def upsert_member(
        self,
        workspace_id: str,
        user_id: str,
        role: MemberRole,
        last_seen_at: datetime,
        profile: Optional[MemberProfile] = None,
    ) -> WorkspaceMember: ...

    async def find_member(self, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]: ...

    async def find_active_member(self, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]: ...

    async def list_active_by_workspace(self, workspace_id: str) -> List[WorkspaceMember]: ...

    async def find_latest_workspace_id_by_user(self, user_id: str) -> Optional[str]: ...

    async def set_member_status(
        self, workspace_id: str, user_id: str, status: MemberStatus
    ) -> Optional[WorkspaceMember]: ...


class WorkspaceInviteRepo(Protocol):
    async def find_valid_by_token(self, token: str, now: datetime) -> Optional[WorkspaceInvite]: ...

    async def create_invite(
        self, workspace_id: str, token: str, expires_at: Optional[datetime]
    ) -> WorkspaceInvite: ...
