"""
Membership service.

Memberships are soft-deleted: removal flips the status to REMOVED and a later
upsert brings the member back as ACTIVE.
"""

import logging
from typing import List, Optional

from ..models.results import MemberResult, ResultStatus
from ..models.workspace import MemberProfile, MemberRole, MemberStatus, WorkspaceMember
from ..utils.audit_logger import AuditAction, log_audit_event
from ..utils.datetime_utils import Clock
from .ports import WorkspaceMemberRepo, WorkspaceRepo

logger = logging.getLogger(__name__)


class WorkspaceMemberService:
    """Service for workspace membership operations."""

    def __init__(self, clock: Clock, member_repo: WorkspaceMemberRepo, workspace_repo: WorkspaceRepo):
        self.clock = clock
        self.member_repo = member_repo
        self.workspace_repo = workspace_repo

    async def upsert_owner_membership(
        self,
        workspace_id: str,
        user_id: str,
        profile: Optional[MemberProfile] = None,
    ) -> WorkspaceMember:
        return await self.member_repo.upsert_member(
            workspace_id, user_id, MemberRole.OWNER, self.clock.now(), profile
        )

    async def upsert_member_role(
        self,
        workspace_id: str,
        user_id: str,
        role: MemberRole = MemberRole.MEMBER,
        profile: Optional[MemberProfile] = None,
    ) -> WorkspaceMember:
        """
        Add or reactivate a member.

        The workspace owner is never demoted here; ownership moves only
        through ``WorkspaceService.set_owner``.
        """
        workspace = await self.workspace_repo.find_by_id(workspace_id)
        if workspace is not None and workspace.owner_user_id == user_id:
            role = MemberRole.OWNER
        return await self.member_repo.upsert_member(workspace_id, user_id, role, self.clock.now(), profile)

    async def list_workspace_members(self, workspace_id: str) -> List[WorkspaceMember]:
        return await self.member_repo.list_active_by_workspace(workspace_id)

    async def find_member(self, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]:
        return await self.member_repo.find_member(workspace_id, user_id)

    async def find_active_member(self, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]:
        return await self.member_repo.find_active_member(workspace_id, user_id)

    async def require_active_membership(self, workspace_id: str, user_id: str) -> MemberResult:
        member = await self.member_repo.find_active_member(workspace_id, user_id)
        if member is None:
            return MemberResult(status=ResultStatus.NOT_IN_WORKSPACE)
        return MemberResult(status=ResultStatus.OK, member=member)

    async def find_latest_workspace_id_for_user(self, user_id: str) -> Optional[str]:
        return await self.member_repo.find_latest_workspace_id_by_user(user_id)

    async def touch_latest_membership_profile(
        self,
        user_id: str,
        profile: MemberProfile,
    ) -> Optional[WorkspaceMember]:
        """Refresh profile and ``last_seen_at`` on the user's latest active membership."""
        workspace_id = await self.member_repo.find_latest_workspace_id_by_user(user_id)
        if workspace_id is None:
            return None

        member = await self.member_repo.find_active_member(workspace_id, user_id)
        if member is None:
            return None

        return await self.member_repo.upsert_member(
            workspace_id, user_id, member.role, self.clock.now(), profile
        )

    async def remove_member(self, workspace_id: str, actor_user_id: str, target_user_id: str) -> MemberResult:
        """
        Owner-only soft removal.

        ALREADY_REMOVED is reported separately from REMOVED so the caller can
        tell the owner nothing changed.
        """
        workspace = await self.workspace_repo.find_by_id(workspace_id)
        if workspace is None:
            return MemberResult(status=ResultStatus.NOT_FOUND)

        if workspace.owner_user_id != actor_user_id:
            return MemberResult(status=ResultStatus.FORBIDDEN)

        if target_user_id == workspace.owner_user_id:
            return MemberResult(status=ResultStatus.CANNOT_REMOVE_OWNER)

        member = await self.member_repo.find_member(workspace_id, target_user_id)
        if member is None:
            return MemberResult(status=ResultStatus.NOT_FOUND)

        if member.status == MemberStatus.REMOVED:
            return MemberResult(status=ResultStatus.ALREADY_REMOVED, member=member)

        removed = await self.member_repo.set_member_status(workspace_id, target_user_id, MemberStatus.REMOVED)
        log_audit_event(
            action=AuditAction.MEMBER_REMOVE,
            user_id=actor_user_id,
            entity_type="member",
            entity_id=f"{workspace_id}:{target_user_id}",
        )
        return MemberResult(status=ResultStatus.REMOVED, member=removed)
