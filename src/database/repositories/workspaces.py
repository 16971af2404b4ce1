"""
Workspace repository: chat-bound teams, their members and invites.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update, and_, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert

from ..connection import Database, get_database
from ..models import WorkspaceDB, WorkspaceMemberDB, WorkspaceInviteDB
from ..exceptions import DatabaseConstraintError
from ...models.workspace import (
    MemberProfile,
    MemberRole,
    MemberStatus,
    Workspace,
    WorkspaceInvite,
    WorkspaceMember,
    WorkspaceStatus,
)
from ...utils.datetime_utils import get_local_now
from ...utils.tokens import new_id

logger = logging.getLogger(__name__)


def _to_workspace(row: Optional[WorkspaceDB]) -> Optional[Workspace]:
    return Workspace.model_validate(row) if row is not None else None


def _to_member(row: Optional[WorkspaceMemberDB]) -> Optional[WorkspaceMember]:
    return WorkspaceMember.model_validate(row) if row is not None else None


class WorkspaceRepository:
    """Repository for workspaces."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    async def ensure_by_chat_id(self, chat_id: str, title: Optional[str] = None) -> Tuple[Workspace, bool]:
        """
        Get the active workspace of a chat, creating it if missing.

        Concurrent callers race on the partial unique index over active
        chat ids; the loser re-reads the winner's row.

        Returns:
            (workspace, created)
        """
        async with self.db.session() as session:
            now = get_local_now()
            result = await session.execute(
                pg_insert(WorkspaceDB)
                .values(
                    id=new_id(),
                    chat_id=chat_id,
                    title=title,
                    status=WorkspaceStatus.ACTIVE.value,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing()
                .returning(WorkspaceDB)
            )
            row = result.scalar_one_or_none()
            if row is not None:
                logger.info(f"Created workspace {row.id} for chat {chat_id}")
                return _to_workspace(row), True

            existing = await session.execute(
                select(WorkspaceDB).where(
                    and_(
                        WorkspaceDB.chat_id == chat_id,
                        WorkspaceDB.status == WorkspaceStatus.ACTIVE.value,
                    )
                )
            )
            row = existing.scalar_one_or_none()
            if row is None:
                raise DatabaseConstraintError(
                    f"Workspace insert for chat {chat_id} conflicted but no active workspace was found"
                )

            if title and row.title != title:
                row.title = title
                row.updated_at = now
                await session.flush()

            return _to_workspace(row), False

    async def find_by_id(self, workspace_id: str) -> Optional[Workspace]:
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkspaceDB).where(WorkspaceDB.id == workspace_id)
            )
            return _to_workspace(result.scalar_one_or_none())

    async def find_by_chat_id(self, chat_id: str) -> Optional[Workspace]:
        """Active workspace bound to a chat."""
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkspaceDB).where(
                    and_(
                        WorkspaceDB.chat_id == chat_id,
                        WorkspaceDB.status == WorkspaceStatus.ACTIVE.value,
                    )
                )
            )
            return _to_workspace(result.scalar_one_or_none())

    async def find_latest(self) -> Optional[Workspace]:
        """Most recently created active workspace."""
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkspaceDB)
                .where(WorkspaceDB.status == WorkspaceStatus.ACTIVE.value)
                .order_by(WorkspaceDB.created_at.desc())
                .limit(1)
            )
            return _to_workspace(result.scalars().first())

    async def set_owner(self, workspace_id: str, user_id: str, now: datetime) -> Optional[Workspace]:
        """
        Make ``user_id`` the owner of a workspace.

        The workspace row is authoritative. In the same transaction the
        previous owner's membership is demoted to MEMBER and the new owner
        gets an ACTIVE OWNER membership.
        """
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkspaceDB).where(WorkspaceDB.id == workspace_id).with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None

            await session.execute(
                update(WorkspaceMemberDB)
                .where(
                    and_(
                        WorkspaceMemberDB.workspace_id == workspace_id,
                        WorkspaceMemberDB.role == MemberRole.OWNER.value,
                        WorkspaceMemberDB.user_id != user_id,
                    )
                )
                .values(role=MemberRole.MEMBER.value)
            )
            await session.execute(
                pg_insert(WorkspaceMemberDB)
                .values(
                    id=new_id(),
                    workspace_id=workspace_id,
                    user_id=user_id,
                    role=MemberRole.OWNER.value,
                    status=MemberStatus.ACTIVE.value,
                    joined_at=now,
                    last_seen_at=now,
                )
                .on_conflict_do_update(
                    index_elements=[WorkspaceMemberDB.workspace_id, WorkspaceMemberDB.user_id],
                    set_={
                        "role": MemberRole.OWNER.value,
                        "status": MemberStatus.ACTIVE.value,
                        "last_seen_at": now,
                    },
                )
            )

            previous_owner = row.owner_user_id
            row.owner_user_id = user_id
            row.updated_at = now
            await session.flush()

            logger.info(f"Workspace {workspace_id} owner: {previous_owner} -> {user_id}")
            return _to_workspace(row)

    async def archive(self, workspace_id: str) -> Optional[Tuple[Workspace, int]]:
        """
        Archive a workspace and mark all its active members REMOVED.

        Returns:
            (workspace, number of memberships removed) or None if missing
        """
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkspaceDB).where(WorkspaceDB.id == workspace_id).with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None

            row.status = WorkspaceStatus.ARCHIVED.value
            row.updated_at = get_local_now()

            removed = await session.execute(
                update(WorkspaceMemberDB)
                .where(
                    and_(
                        WorkspaceMemberDB.workspace_id == workspace_id,
                        WorkspaceMemberDB.status == MemberStatus.ACTIVE.value,
                    )
                )
                .values(status=MemberStatus.REMOVED.value)
            )
            await session.flush()

            removed_count = removed.rowcount or 0
            logger.info(f"Archived workspace {workspace_id}, removed {removed_count} members")
            return _to_workspace(row), removed_count


class WorkspaceMemberRepository:
    """Repository for workspace memberships."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    async def upsert_member(
        self,
        workspace_id: str,
        user_id: str,
        role: MemberRole,
        last_seen_at: datetime,
        profile: Optional[MemberProfile] = None,
    ) -> WorkspaceMember:
        """
        Insert or reactivate a membership.

        An existing row gets the new role, ACTIVE status and a fresh
        ``last_seen_at``; ``joined_at`` is kept. Profile fields are only
        overwritten with non-empty values.
        """
        values = {
            "id": new_id(),
            "workspace_id": workspace_id,
            "user_id": user_id,
            "role": role.value,
            "status": MemberStatus.ACTIVE.value,
            "joined_at": last_seen_at,
            "last_seen_at": last_seen_at,
        }
        update_set = {
            "role": role.value,
            "status": MemberStatus.ACTIVE.value,
            "last_seen_at": last_seen_at,
        }
        if profile is not None:
            for field_name, value in profile.model_dump(exclude_none=True).items():
                values[field_name] = value
                update_set[field_name] = value

        async with self.db.session() as session:
            result = await session.execute(
                pg_insert(WorkspaceMemberDB)
                .values(**values)
                .on_conflict_do_update(
                    index_elements=[WorkspaceMemberDB.workspace_id, WorkspaceMemberDB.user_id],
                    set_=update_set,
                )
                .returning(WorkspaceMemberDB)
            )
            member = _to_member(result.scalar_one())
            logger.debug(f"Upserted member {user_id} in workspace {workspace_id} as {role.value}")
            return member

    async def find_member(self, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]:
        """Membership in any status."""
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkspaceMemberDB).where(
                    and_(
                        WorkspaceMemberDB.workspace_id == workspace_id,
                        WorkspaceMemberDB.user_id == user_id,
                    )
                )
            )
            return _to_member(result.scalar_one_or_none())

    async def find_active_member(self, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]:
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkspaceMemberDB).where(
                    and_(
                        WorkspaceMemberDB.workspace_id == workspace_id,
                        WorkspaceMemberDB.user_id == user_id,
                        WorkspaceMemberDB.status == MemberStatus.ACTIVE.value,
                    )
                )
            )
            return _to_member(result.scalar_one_or_none())

    async def list_active_by_workspace(self, workspace_id: str) -> List[WorkspaceMember]:
        """Active members, owner first, then by join time."""
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkspaceMemberDB)
                .where(
                    and_(
                        WorkspaceMemberDB.workspace_id == workspace_id,
                        WorkspaceMemberDB.status == MemberStatus.ACTIVE.value,
                    )
                )
                .order_by(
                    (WorkspaceMemberDB.role == MemberRole.OWNER.value).desc(),
                    WorkspaceMemberDB.joined_at.asc(),
                )
            )
            return [_to_member(row) for row in result.scalars().all()]

    async def find_latest_workspace_id_by_user(self, user_id: str) -> Optional[str]:
        """Active workspace the user was most recently seen in."""
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkspaceMemberDB.workspace_id)
                .join(WorkspaceDB, WorkspaceDB.id == WorkspaceMemberDB.workspace_id)
                .where(
                    and_(
                        WorkspaceMemberDB.user_id == user_id,
                        WorkspaceMemberDB.status == MemberStatus.ACTIVE.value,
                        WorkspaceDB.status == WorkspaceStatus.ACTIVE.value,
                    )
                )
                .order_by(
                    WorkspaceMemberDB.last_seen_at.desc(),
                    WorkspaceMemberDB.joined_at.desc(),
                )
                .limit(1)
            )
            return result.scalars().first()

    async def set_member_status(
        self,
        workspace_id: str,
        user_id: str,
        status: MemberStatus,
    ) -> Optional[WorkspaceMember]:
        async with self.db.session() as session:
            result = await session.execute(
                update(WorkspaceMemberDB)
                .where(
                    and_(
                        WorkspaceMemberDB.workspace_id == workspace_id,
                        WorkspaceMemberDB.user_id == user_id,
                    )
                )
                .values(status=status.value)
                .returning(WorkspaceMemberDB)
            )
            return _to_member(result.scalar_one_or_none())


class WorkspaceInviteRepository:
    """Repository for workspace invites."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    async def find_valid_by_token(self, token: str, now: datetime) -> Optional[WorkspaceInvite]:
        """Invite with this token that has not expired."""
        async with self.db.session() as session:
            result = await session.execute(
                select(WorkspaceInviteDB).where(
                    and_(
                        WorkspaceInviteDB.token == token,
                        or_(
                            WorkspaceInviteDB.expires_at.is_(None),
                            WorkspaceInviteDB.expires_at > now,
                        ),
                    )
                )
            )
            row = result.scalar_one_or_none()
            return WorkspaceInvite.model_validate(row) if row is not None else None

    async def create_invite(
        self,
        workspace_id: str,
        token: str,
        expires_at: Optional[datetime],
    ) -> WorkspaceInvite:
        async with self.db.session() as session:
            invite = WorkspaceInviteDB(
                id=new_id(),
                token=token,
                workspace_id=workspace_id,
                expires_at=expires_at,
                created_at=get_local_now(),
            )
            session.add(invite)
            await session.flush()

            logger.info(f"Created invite for workspace {workspace_id}")
            return WorkspaceInvite.model_validate(invite)

