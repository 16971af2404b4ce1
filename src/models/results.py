"""
Tagged result values returned by the services.

Every expected business outcome (not found, forbidden, already done, invalid
input) is reported through one of these models instead of an exception, so
the presentation layer can render "already done" differently from "just did it".
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .task import Task, TaskDraft, TaskActionType
from .workspace import Workspace, WorkspaceMember


class ResultStatus(str, Enum):
    OK = "OK"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    STARTED = "STARTED"
    UPDATED = "UPDATED"
    CREATED = "CREATED"
    EXISTING = "EXISTING"

    # Validation
    INVALID_DATE = "INVALID_DATE"
    INVALID_ASSIGNEE = "INVALID_ASSIGNEE"
    INVALID_INVITE = "INVALID_INVITE"
    EMPTY_TEXT = "EMPTY_TEXT"
    STALE_STEP = "STALE_STEP"
    NOT_READY = "NOT_READY"

    # Authorization
    FORBIDDEN = "FORBIDDEN"
    NOT_ASSIGNEE = "NOT_ASSIGNEE"
    NOT_IN_WORKSPACE = "NOT_IN_WORKSPACE"

    # Lifecycle
    TASK_CLOSED = "TASK_CLOSED"
    AWAITING_COMMENT = "AWAITING_COMMENT"

    # Workspace administration
    OWNER_ALREADY_SET = "OWNER_ALREADY_SET"
    CANNOT_REMOVE_OWNER = "CANNOT_REMOVE_OWNER"
    ALREADY_REMOVED = "ALREADY_REMOVED"
    REMOVED = "REMOVED"
    JOINED = "JOINED"
    ARCHIVED = "ARCHIVED"

    IGNORED = "IGNORED"


class DraftResult(BaseModel):
    """Outcome of a draft wizard step."""
    status: ResultStatus
    draft: Optional[TaskDraft] = None
    task: Optional[Task] = None


class CreateFromDraftResult(BaseModel):
    """Outcome of the atomic task-from-draft insert: CREATED or ALREADY_EXISTS."""
    status: ResultStatus
    task: Task


class FinalizeResult(BaseModel):
    status: ResultStatus
    task: Optional[Task] = None
    draft: Optional[TaskDraft] = None


class TransitionResult(BaseModel):
    """
    Outcome of a lifecycle transition.

    ``changed`` is False for idempotent replays (same nonce) and for
    transitions that were already applied by someone else.
    """
    status: ResultStatus
    task: Optional[Task] = None
    changed: bool = False
    action: Optional[TaskActionType] = None

    @property
    def ok(self) -> bool:
        return self.status == ResultStatus.OK


class ReassignResult(BaseModel):
    status: ResultStatus
    task: Optional[Task] = None
    changed: bool = False
    previous_assignee_id: Optional[str] = None
    new_assignee_id: Optional[str] = None


class TaskListResult(BaseModel):
    status: ResultStatus
    tasks: List[Task] = Field(default_factory=list)


class EnsureWorkspaceResult(BaseModel):
    """CREATED when this call created the workspace, EXISTING otherwise."""
    status: ResultStatus
    workspace: Workspace


class AcceptInviteResult(BaseModel):
    status: ResultStatus
    workspace: Optional[Workspace] = None
    member: Optional[WorkspaceMember] = None


class MemberResult(BaseModel):
    status: ResultStatus
    member: Optional[WorkspaceMember] = None


class OwnerResult(BaseModel):
    status: ResultStatus
    workspace: Optional[Workspace] = None


class InviteResult(BaseModel):
    status: ResultStatus
    token: Optional[str] = None
    workspace_id: Optional[str] = None


class WorkspaceArchiveResult(BaseModel):
    status: ResultStatus
    workspace: Optional[Workspace] = None
    removed_members: int = 0


class TextRoute(str, Enum):
    """Which pending state consumed a private free-text message."""
    DEADLINE = "DEADLINE"
    RETURN_COMMENT = "RETURN_COMMENT"
    DM_DRAFT = "DM_DRAFT"
    IGNORED = "IGNORED"


class TextRouteResult(BaseModel):
    route: TextRoute
    draft_result: Optional[DraftResult] = None
    transition_result: Optional[TransitionResult] = None
