"""Task and task draft data models for the review workflow."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class TaskPriority(str, Enum):
    """Task priority levels. P1 is the most urgent."""
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class TaskStatus(str, Enum):
    """Task lifecycle: ACTIVE -> ON_REVIEW -> CLOSED, ON_REVIEW -> ACTIVE on return."""
    ACTIVE = "ACTIVE"
    ON_REVIEW = "ON_REVIEW"
    CLOSED = "CLOSED"


class DraftStatus(str, Enum):
    PENDING = "PENDING"
    FINAL = "FINAL"


class DraftStep(str, Enum):
    """Wizard steps a draft walks through before it becomes a task."""
    ENTER_TEXT = "enter_text"
    CHOOSE_ASSIGNEE = "CHOOSE_ASSIGNEE"
    CHOOSE_PRIORITY = "CHOOSE_PRIORITY"
    CHOOSE_DEADLINE = "CHOOSE_DEADLINE"
    AWAIT_DEADLINE_INPUT = "AWAIT_DEADLINE_INPUT"
    CONFIRM = "CONFIRM"
    FINAL = "FINAL"


class DeadlineChoice(str, Enum):
    """Deadline buttons offered by the wizard."""
    TODAY = "today"
    TOMORROW = "tomorrow"
    NONE = "none"
    MANUAL = "manual"


class TaskActionType(str, Enum):
    SUBMIT_FOR_REVIEW = "SUBMIT_FOR_REVIEW"
    SELF_CLOSE = "SELF_CLOSE"
    ACCEPT_REVIEW = "ACCEPT_REVIEW"
    RETURN_TO_WORK = "RETURN_TO_WORK"
    REASSIGN = "REASSIGN"


class TextCaptureKind(str, Enum):
    """What the next private free-text message from a user is expected to be."""
    AWAITING_DEADLINE = "AWAITING_DEADLINE"
    AWAITING_RETURN_COMMENT = "AWAITING_RETURN_COMMENT"


class Task(BaseModel):
    """A materialized work item."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    workspace_id: Optional[str] = None
    source_draft_id: Optional[str] = None
    source_chat_id: str
    source_message_id: str
    source_text: str
    source_link: Optional[str] = None
    creator_user_id: str
    assignee_user_id: str
    priority: TaskPriority
    deadline_at: Optional[datetime] = None
    status: TaskStatus = TaskStatus.ACTIVE

    # Review tracking
    submitted_for_review_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    last_return_comment: Optional[str] = None
    last_return_at: Optional[datetime] = None
    last_return_by_user_id: Optional[str] = None

    created_at: datetime
    updated_at: datetime


class TaskDraft(BaseModel):
    """An in-progress task being collected by the wizard."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    token: str
    status: DraftStatus = DraftStatus.PENDING
    step: DraftStep
    created_task_id: Optional[str] = None
    workspace_id: Optional[str] = None
    source_chat_id: str
    source_message_id: str
    source_text: str = ""
    source_link: Optional[str] = None
    creator_user_id: str
    assignee_id: Optional[str] = None
    priority: Optional[TaskPriority] = None
    deadline_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_final(self) -> bool:
        return self.status == DraftStatus.FINAL

    @property
    def is_dm_draft(self) -> bool:
        return self.source_chat_id.startswith("dm:")


class TaskAction(BaseModel):
    """Idempotency ledger entry: one row per applied user action."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    task_id: str
    actor_user_id: str
    type: TaskActionType
    nonce: str
    created_at: datetime


class TextCapture(BaseModel):
    """
    Per-user pending free-text capture.

    At most one exists per user; setting a new one replaces the previous.
    """

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    kind: TextCaptureKind
    draft_id: Optional[str] = None
    task_id: Optional[str] = None
    nonce: Optional[str] = None
    updated_at: Optional[datetime] = None
