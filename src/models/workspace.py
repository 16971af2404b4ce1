"""Workspace, membership and invite data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class WorkspaceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class MemberRole(str, Enum):
    OWNER = "OWNER"
    MEMBER = "MEMBER"


class MemberStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REMOVED = "REMOVED"


class MemberProfile(BaseModel):
    """Chat profile snapshot. Advisory only, refreshed on activity."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None


class Workspace(BaseModel):
    """A team bound to one chat."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    chat_id: str
    title: Optional[str] = None
    owner_user_id: Optional[str] = None
    status: WorkspaceStatus = WorkspaceStatus.ACTIVE
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status == WorkspaceStatus.ACTIVE


class WorkspaceMember(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workspace_id: str
    user_id: str
    role: MemberRole = MemberRole.MEMBER
    status: MemberStatus = MemberStatus.ACTIVE
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    joined_at: datetime
    last_seen_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    @property
    def display_name(self) -> str:
        """Best-effort human name for keyboards and notifications."""
        full_name = " ".join(p for p in (self.first_name, self.last_name) if p)
        if full_name:
            return full_name
        if self.username:
            return f"@{self.username}"
        return self.user_id


class WorkspaceInvite(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    token: str
    workspace_id: str
    expires_at: Optional[datetime] = None
    created_at: datetime

    def is_valid_at(self, now: datetime) -> bool:
        return self.expires_at is None or self.expires_at > now
