"""
SQLAlchemy models for PostgreSQL database.

Schema includes:
- Workspaces bound to chats, with members and invites
- Task drafts collected by the creation wizard
- Tasks with review lifecycle tracking
- Task actions (idempotency ledger keyed by client nonce)
- Text captures (per-user pending free-text state)
"""

from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    String,
    Text,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column
from sqlalchemy.sql import func

from ..models.task import TaskStatus, DraftStatus, DraftStep
from ..models.workspace import WorkspaceStatus, MemberRole, MemberStatus
from ..utils.datetime_utils import get_local_now
from ..utils.tokens import new_id


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ==================== WORKSPACES ====================

class WorkspaceDB(Base):
    """One chat-bound team. Archived, never deleted."""
    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    chat_id: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    owner_user_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=WorkspaceStatus.ACTIVE.value)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_local_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=get_local_now, server_default=func.now(), onupdate=get_local_now
    )

    members: Mapped[List["WorkspaceMemberDB"]] = relationship("WorkspaceMemberDB", back_populates="workspace")

    __table_args__ = (
        # At most one ACTIVE workspace per chat; archived ones are kept for history
        Index(
            "uq_workspaces_active_chat",
            "chat_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index("idx_workspaces_chat", "chat_id"),
    )


class WorkspaceMemberDB(Base):
    """Membership of a user in a workspace. Soft-deleted via status."""
    __tablename__ = "workspace_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workspace_id: Mapped[str] = mapped_column(String(36), ForeignKey("workspaces.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(50), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=MemberRole.MEMBER.value)
    status: Mapped[str] = mapped_column(String(20), default=MemberStatus.ACTIVE.value)

    # Profile snapshot
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    joined_at: Mapped[datetime] = mapped_column(DateTime, default=get_local_now, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, default=get_local_now, server_default=func.now())

    workspace: Mapped["WorkspaceDB"] = relationship("WorkspaceDB", back_populates="members")

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_pair"),
        Index("idx_workspace_members_user", "user_id", "last_seen_at"),
        Index("idx_workspace_members_status", "workspace_id", "status"),
    )


class WorkspaceInviteDB(Base):
    """Token-addressable invite. Never consumed; acceptance is idempotent."""
    __tablename__ = "workspace_invites"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    workspace_id: Mapped[str] = mapped_column(String(36), ForeignKey("workspaces.id"), nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_local_now, server_default=func.now())


# ==================== DRAFTS ====================

class TaskDraftDB(Base):
    """A task under construction by the wizard."""
    __tablename__ = "task_drafts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=DraftStatus.PENDING.value)
    step: Mapped[str] = mapped_column(String(30), default=DraftStep.CHOOSE_ASSIGNEE.value)
    created_task_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    workspace_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("workspaces.id"), nullable=True)

    # Origin
    source_chat_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_message_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_text: Mapped[str] = mapped_column(Text, default="")
    source_link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    creator_user_id: Mapped[str] = mapped_column(String(50), nullable=False)

    # Collected by the wizard
    assignee_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    priority: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    deadline_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_local_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=get_local_now, server_default=func.now(), onupdate=get_local_now
    )

    __table_args__ = (
        Index("idx_task_drafts_source", "source_chat_id", "source_message_id", "creator_user_id"),
        Index("idx_task_drafts_creator_step", "creator_user_id", "step", "updated_at"),
    )


# ==================== TASKS ====================

class TaskDB(Base):
    """Materialized task with review lifecycle."""
    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    workspace_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("workspaces.id"), nullable=True)
    source_draft_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    # Origin
    source_chat_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_message_id: Mapped[str] = mapped_column(String(100), nullable=False)
    source_text: Mapped[str] = mapped_column(Text, nullable=False)
    source_link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    creator_user_id: Mapped[str] = mapped_column(String(50), nullable=False)

    # Assignment and classification
    assignee_user_id: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[str] = mapped_column(String(5), nullable=False)
    deadline_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=TaskStatus.ACTIVE.value)

    # Review tracking
    submitted_for_review_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_return_comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_return_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_return_by_user_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_local_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=get_local_now, server_default=func.now(), onupdate=get_local_now
    )

    actions: Mapped[List["TaskActionDB"]] = relationship("TaskActionDB", back_populates="task")

    __table_args__ = (
        # Two concurrent finalizations of one draft or one message collapse to one row
        UniqueConstraint("source_draft_id", name="uq_tasks_source_draft"),
        UniqueConstraint("source_chat_id", "source_message_id", name="uq_tasks_source_message"),
        Index("idx_tasks_workspace_assignee", "workspace_id", "assignee_user_id", "status"),
        Index("idx_tasks_workspace_creator", "workspace_id", "creator_user_id", "status"),
    )


class TaskActionDB(Base):
    """Idempotency ledger. One row per successfully applied user click."""
    __tablename__ = "task_actions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False)
    actor_user_id: Mapped[str] = mapped_column(String(50), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    nonce: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_local_now, server_default=func.now())

    task: Mapped["TaskDB"] = relationship("TaskDB", back_populates="actions")

    __table_args__ = (
        Index("idx_task_actions_task", "task_id"),
    )


# ==================== TEXT CAPTURE ====================

class TextCaptureDB(Base):
    """What the next private text message of a user means. One row per user."""
    __tablename__ = "text_captures"

    user_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    kind: Mapped[str] = mapped_column(String(40), nullable=False)
    draft_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    task_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    nonce: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=get_local_now, server_default=func.now(), onupdate=get_local_now
    )
