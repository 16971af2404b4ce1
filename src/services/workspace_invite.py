"""Invite acceptance."""

import logging
from typing import Optional

from ..models.results import AcceptInviteResult, ResultStatus
from ..models.workspace import MemberProfile, MemberRole
from ..utils.datetime_utils import Clock
from .ports import WorkspaceInviteRepo, WorkspaceMemberRepo, WorkspaceRepo

logger = logging.getLogger(__name__)


class WorkspaceInviteService:
    def __init__(
        self,
        clock: Clock,
        invite_repo: WorkspaceInviteRepo,
        workspace_repo: WorkspaceRepo,
        member_repo: WorkspaceMemberRepo,
    ):
        self.clock = clock
        self.invite_repo = invite_repo
        self.workspace_repo = workspace_repo
        self.member_repo = member_repo

    async def accept_invite(
        self,
        token: str,
        user_id: str,
        profile: Optional[MemberProfile] = None,
    ) -> AcceptInviteResult:
        """
        Join a workspace through an invite token.

        The invite itself is never consumed; accepting it again only refreshes
        ``last_seen_at`` and the profile. An owner keeps the OWNER role.
        """
        now = self.clock.now()
        invite = await self.invite_repo.find_valid_by_token(token, now)
        if invite is None:
            logger.info(f"User {user_id} used an invalid or expired invite")
            return AcceptInviteResult(status=ResultStatus.INVALID_INVITE)

        workspace = await self.workspace_repo.find_by_id(invite.workspace_id)
        if workspace is None or not workspace.is_active:
            return AcceptInviteResult(status=ResultStatus.INVALID_INVITE)

        existing = await self.member_repo.find_member(workspace.id, user_id)
        is_owner = workspace.owner_user_id == user_id or (
            existing is not None and existing.role == MemberRole.OWNER
        )
        role = MemberRole.OWNER if is_owner else MemberRole.MEMBER

        member = await self.member_repo.upsert_member(workspace.id, user_id, role, now, profile)
        if existing is None or not existing.is_active:
            logger.info(f"User {user_id} joined workspace {workspace.id} as {role.value}")

        return AcceptInviteResult(status=ResultStatus.JOINED, workspace=workspace, member=member)
