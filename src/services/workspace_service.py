"""
Workspace service: chat-bound teams and their administration.

Handles business logic for:
- Get-or-create of the workspace of a chat (race tolerant)
- Ownership (``Workspace.owner_user_id`` is authoritative)
- Invite creation
- Archiving, which cascades to memberships
"""

import logging
from datetime import timedelta
from typing import Optional

from config.settings import settings
from ..models.results import (
    EnsureWorkspaceResult,
    InviteResult,
    OwnerResult,
    ResultStatus,
    WorkspaceArchiveResult,
)
from ..models.workspace import Workspace
from ..utils.audit_logger import AuditAction, AuditLevel, log_audit_event
from ..utils.datetime_utils import Clock
from ..utils.tokens import new_invite_token
from .ports import WorkspaceInviteRepo, WorkspaceMemberRepo, WorkspaceRepo

logger = logging.getLogger(__name__)


class WorkspaceService:
    """Service for workspace operations."""

    def __init__(
        self,
        clock: Clock,
        workspace_repo: WorkspaceRepo,
        member_repo: WorkspaceMemberRepo,
        invite_repo: WorkspaceInviteRepo,
    ):
        self.clock = clock
        self.workspace_repo = workspace_repo
        self.member_repo = member_repo
        self.invite_repo = invite_repo

    async def ensure_workspace_for_chat_with_result(
        self,
        chat_id: str,
        title: Optional[str] = None,
    ) -> EnsureWorkspaceResult:
        """
        Get or create the active workspace of a chat.

        Two concurrent first interactions in a chat yield one workspace: the
        caller that lost the race gets EXISTING.
        """
        workspace, created = await self.workspace_repo.ensure_by_chat_id(chat_id, title)
        status = ResultStatus.CREATED if created else ResultStatus.EXISTING
        return EnsureWorkspaceResult(status=status, workspace=workspace)

    async def ensure_workspace_for_chat(self, chat_id: str, title: Optional[str] = None) -> Workspace:
        result = await self.ensure_workspace_for_chat_with_result(chat_id, title)
        return result.workspace

    async def find_workspace_by_chat_id(self, chat_id: str) -> Optional[Workspace]:
        return await self.workspace_repo.find_by_chat_id(chat_id)

    async def find_workspace(self, workspace_id: str) -> Optional[Workspace]:
        return await self.workspace_repo.find_by_id(workspace_id)

    async def is_owner(self, workspace_id: str, user_id: str) -> bool:
        workspace = await self.workspace_repo.find_by_id(workspace_id)
        return workspace is not None and workspace.owner_user_id == user_id

    async def set_owner(self, workspace_id: str, user_id: str, replace: bool = False) -> OwnerResult:
        """
        Make a user the workspace owner.

        An existing different owner is only replaced when ``replace`` is set,
        otherwise OWNER_ALREADY_SET carries the unchanged workspace.
        """
        workspace = await self.workspace_repo.find_by_id(workspace_id)
        if workspace is None or not workspace.is_active:
            return OwnerResult(status=ResultStatus.NOT_FOUND)

        if workspace.owner_user_id and workspace.owner_user_id != user_id and not replace:
            return OwnerResult(status=ResultStatus.OWNER_ALREADY_SET, workspace=workspace)

        updated = await self.workspace_repo.set_owner(workspace_id, user_id, self.clock.now())
        if updated is None:
            return OwnerResult(status=ResultStatus.NOT_FOUND)

        if workspace.owner_user_id != user_id:
            log_audit_event(
                action=AuditAction.WORKSPACE_OWNER_SET,
                user_id=user_id,
                entity_type="workspace",
                entity_id=workspace_id,
                details={"previous_owner_user_id": workspace.owner_user_id},
                level=AuditLevel.WARNING if workspace.owner_user_id else AuditLevel.INFO,
            )
        return OwnerResult(status=ResultStatus.OK, workspace=updated)

    async def create_invite(self, workspace_id: str, actor_user_id: str) -> InviteResult:
        """Owner-only. Expiry follows ``settings.invite_ttl_hours`` (0 = never)."""
        workspace = await self.workspace_repo.find_by_id(workspace_id)
        if workspace is None or not workspace.is_active:
            return InviteResult(status=ResultStatus.NOT_FOUND)

        if workspace.owner_user_id != actor_user_id:
            return InviteResult(status=ResultStatus.FORBIDDEN, workspace_id=workspace_id)

        expires_at = None
        if settings.invite_ttl_hours > 0:
            expires_at = self.clock.now() + timedelta(hours=settings.invite_ttl_hours)

        invite = await self.invite_repo.create_invite(workspace_id, new_invite_token(), expires_at)
        log_audit_event(
            action=AuditAction.INVITE_CREATE,
            user_id=actor_user_id,
            entity_type="workspace",
            entity_id=workspace_id,
            details={"expires_at": expires_at.isoformat() if expires_at else None},
        )
        return InviteResult(status=ResultStatus.CREATED, token=invite.token, workspace_id=workspace_id)

    async def create_invite_for_latest(self, actor_user_id: str) -> InviteResult:
        """Invite into the most recently created active workspace."""
        workspace = await self.workspace_repo.find_latest()
        if workspace is None:
            return InviteResult(status=ResultStatus.NOT_FOUND)
        return await self.create_invite(workspace.id, actor_user_id)

    async def archive_workspace(self, workspace_id: str, actor_user_id: str) -> WorkspaceArchiveResult:
        """
        Owner-only reset of a chat's workspace.

        The workspace is kept as ARCHIVED and every active membership becomes
        REMOVED. Archiving twice is a no-op.
        """
        workspace = await self.workspace_repo.find_by_id(workspace_id)
        if workspace is None:
            return WorkspaceArchiveResult(status=ResultStatus.NOT_FOUND)

        if workspace.owner_user_id != actor_user_id:
            return WorkspaceArchiveResult(status=ResultStatus.FORBIDDEN)

        if not workspace.is_active:
            return WorkspaceArchiveResult(status=ResultStatus.ARCHIVED, workspace=workspace)

        archived = await self.workspace_repo.archive(workspace_id)
        if archived is None:
            return WorkspaceArchiveResult(status=ResultStatus.NOT_FOUND)

        archived_workspace, removed_members = archived
        log_audit_event(
            action=AuditAction.WORKSPACE_ARCHIVE,
            user_id=actor_user_id,
            entity_type="workspace",
            entity_id=workspace_id,
            details={"removed_members": removed_members},
            level=AuditLevel.WARNING,
        )
        return WorkspaceArchiveResult(
            status=ResultStatus.ARCHIVED,
            workspace=archived_workspace,
            removed_members=removed_members,
        )

    async def resolve_current_workspace_id(self, user_id: str, chat_id: Optional[str] = None) -> Optional[str]:
        """
        Workspace a request should act in.

        The chat's own workspace when called from a group, otherwise the
        active workspace the user was most recently seen in.
        """
        if chat_id is not None:
            workspace = await self.workspace_repo.find_by_chat_id(chat_id)
            if workspace is not None:
                return workspace.id
        return await self.member_repo.find_latest_workspace_id_by_user(user_id)
