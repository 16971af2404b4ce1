"""
In-memory repositories for service tests.

They honour the same uniqueness rules as the PostgreSQL schema and run
lifecycle transitions under a per-task ``asyncio.Lock`` using the shared
decision functions, so concurrency tests exercise the real rules.
"""

import asyncio
import itertools
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from src.database.exceptions import DatabaseConstraintError
from src.models.results import (
    CreateFromDraftResult,
    ReassignResult,
    ResultStatus,
    TransitionResult,
)
from src.models.task import (
    DraftStatus,
    DraftStep,
    Task,
    TaskAction,
    TaskDraft,
    TaskStatus,
    TextCapture,
    TextCaptureKind,
)
from src.models.workspace import (
    MemberProfile,
    MemberRole,
    MemberStatus,
    Workspace,
    WorkspaceInvite,
    WorkspaceMember,
    WorkspaceStatus,
)
from src.services.task_rules import (
    TransitionContext,
    TransitionDecision,
    decide_accept_review,
    decide_reassign,
    decide_return_to_work,
    decide_submit_for_review,
    effective_owner_id,
    sort_tasks,
)
from src.utils.tokens import new_id


class FixedClock:
    """Clock frozen at a given instant until moved."""

    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


@dataclass
class FakeStore:
    workspaces: Dict[str, Workspace] = field(default_factory=dict)
    members: Dict[Tuple[str, str], WorkspaceMember] = field(default_factory=dict)
    invites: Dict[str, WorkspaceInvite] = field(default_factory=dict)
    drafts: Dict[str, TaskDraft] = field(default_factory=dict)
    tasks: Dict[str, Task] = field(default_factory=dict)
    actions: Dict[str, TaskAction] = field(default_factory=dict)
    captures: Dict[str, TextCapture] = field(default_factory=dict)
    # Write order, used to break updated_at ties under a frozen clock
    draft_seq: Dict[str, int] = field(default_factory=dict)
    sequence: Any = field(default_factory=itertools.count)


class FakeTaskRepository:
    def __init__(self, store: FakeStore, clock: FixedClock):
        self.store = store
        self.clock = clock
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _touch_draft(self, draft: TaskDraft) -> TaskDraft:
        self.store.drafts[draft.id] = draft
        self.store.draft_seq[draft.id] = next(self.store.sequence)
        return draft

    def _newest(self, drafts: Iterable[TaskDraft]) -> Optional[TaskDraft]:
        drafts = list(drafts)
        if not drafts:
            return None
        return max(drafts, key=lambda d: (d.updated_at, self.store.draft_seq[d.id]))

    # Drafts

    async def create_draft(self, draft_data: Dict[str, Any]) -> TaskDraft:
        if any(d.token == draft_data["token"] for d in self.store.drafts.values()):
            raise DatabaseConstraintError(f"duplicate draft token {draft_data['token']}")

        now = self.clock.now()
        draft = TaskDraft(
            id=new_id(),
            token=draft_data["token"],
            step=draft_data.get("step", DraftStep.CHOOSE_ASSIGNEE),
            workspace_id=draft_data.get("workspace_id"),
            source_chat_id=draft_data["source_chat_id"],
            source_message_id=draft_data["source_message_id"],
            source_text=draft_data.get("source_text") or "",
            source_link=draft_data.get("source_link"),
            creator_user_id=draft_data["creator_user_id"],
            created_at=now,
            updated_at=now,
        )
        return self._touch_draft(draft)

    async def find_draft_by_token(self, token: str) -> Optional[TaskDraft]:
        return next((d for d in self.store.drafts.values() if d.token == token), None)

    async def find_draft_by_id(self, draft_id: str) -> Optional[TaskDraft]:
        return self.store.drafts.get(draft_id)

    async def find_pending_draft_by_source(self, source_chat_id, source_message_id, creator_user_id):
        return self._newest(
            d for d in self.store.drafts.values()
            if d.source_chat_id == source_chat_id
            and d.source_message_id == source_message_id
            and d.creator_user_id == creator_user_id
            and d.status == DraftStatus.PENDING
        )

    async def find_draft_by_creator_and_step(self, creator_user_id, step):
        return self._newest(
            d for d in self.store.drafts.values()
            if d.creator_user_id == creator_user_id
            and d.step == step
            and d.status == DraftStatus.PENDING
        )

    async def find_awaiting_deadline_draft_by_creator(self, creator_user_id):
        return await self.find_draft_by_creator_and_step(creator_user_id, DraftStep.AWAIT_DEADLINE_INPUT)

    async def update_draft_step_if_expected(self, draft_id, expected_steps, updates):
        draft = self.store.drafts.get(draft_id)
        if draft is None:
            return False, None
        if draft.status != DraftStatus.PENDING or draft.step not in list(expected_steps):
            return False, draft
        updated = draft.model_copy(update={**updates, "updated_at": self.clock.now()})
        return True, self._touch_draft(updated)

    async def create_from_draft(self, draft: TaskDraft) -> CreateFromDraftResult:
        existing = next(
            (
                t for t in self.store.tasks.values()
                if t.source_draft_id == draft.id
                or (t.source_chat_id, t.source_message_id) == (draft.source_chat_id, draft.source_message_id)
            ),
            None,
        )
        if existing is not None:
            task, status = existing, ResultStatus.ALREADY_EXISTS
        else:
            now = self.clock.now()
            task = Task(
                id=new_id(),
                workspace_id=draft.workspace_id,
                source_draft_id=draft.id,
                source_chat_id=draft.source_chat_id,
                source_message_id=draft.source_message_id,
                source_text=draft.source_text,
                source_link=draft.source_link,
                creator_user_id=draft.creator_user_id,
                assignee_user_id=draft.assignee_id,
                priority=draft.priority,
                deadline_at=draft.deadline_at,
                created_at=now,
                updated_at=now,
            )
            self.store.tasks[task.id] = task
            status = ResultStatus.CREATED

        current = self.store.drafts[draft.id]
        if current.created_task_id is None:
            self._touch_draft(current.model_copy(update={
                "status": DraftStatus.FINAL,
                "step": DraftStep.FINAL,
                "created_task_id": task.id,
            }))
        return CreateFromDraftResult(status=status, task=task)

    # Tasks

    def add_task(self, **fields) -> Task:
        """Seed a task directly."""
        now = self.clock.now()
        defaults = {
            "id": new_id(),
            "source_chat_id": "chat-1",
            "source_message_id": new_id(),
            "source_text": "Prepare the report",
            "priority": "P2",
            "created_at": now,
            "updated_at": now,
        }
        task = Task(**{**defaults, **fields})
        self.store.tasks[task.id] = task
        return task

    async def get_task(self, task_id: str) -> Optional[Task]:
        return self.store.tasks.get(task_id)

    async def find_task_by_source(self, source_chat_id, source_message_id):
        return next(
            (
                t for t in self.store.tasks.values()
                if t.source_chat_id == source_chat_id and t.source_message_id == source_message_id
            ),
            None,
        )

    def _page(self, tasks: Iterable[Task], limit: int) -> List[Task]:
        # Storage order is not the display order
        return list(reversed(sort_tasks(list(tasks))[:limit]))

    async def list_assigned_tasks(self, workspace_id, viewer_user_id, limit):
        return self._page(
            (
                t for t in self.store.tasks.values()
                if t.workspace_id == workspace_id
                and t.assignee_user_id == viewer_user_id
                and t.status != TaskStatus.CLOSED
            ),
            limit,
        )

    async def list_created_tasks(self, workspace_id, viewer_user_id, limit):
        return self._page(
            (
                t for t in self.store.tasks.values()
                if t.workspace_id == workspace_id
                and t.creator_user_id == viewer_user_id
                and t.status != TaskStatus.CLOSED
            ),
            limit,
        )

    async def list_on_review_tasks(self, workspace_id, viewer_user_id, limit):
        workspace = self.store.workspaces.get(workspace_id)
        owner_id = workspace.owner_user_id if workspace else None
        return self._page(
            (
                t for t in self.store.tasks.values()
                if t.workspace_id == workspace_id
                and t.status == TaskStatus.ON_REVIEW
                and viewer_user_id in (t.creator_user_id, owner_id)
            ),
            limit,
        )

    async def find_action_by_nonce(self, nonce: str) -> Optional[TaskAction]:
        return self.store.actions.get(nonce)

    # Transitions

    def _is_active_member(self, workspace_id: Optional[str], user_id: str) -> bool:
        if workspace_id is None:
            return False
        member = self.store.members.get((workspace_id, user_id))
        return member is not None and member.status == MemberStatus.ACTIVE

    async def _transition(self, task_id, actor_user_id, nonce, now, decide, candidate_user_id=None):
        async with self._locks[task_id]:
            task = self.store.tasks.get(task_id)
            if task is None:
                return None, TransitionDecision(status=ResultStatus.NOT_FOUND)

            # Give concurrent callers a chance to queue on the lock
            await asyncio.sleep(0)

            workspace = self.store.workspaces.get(task.workspace_id) if task.workspace_id else None
            ctx = TransitionContext(
                task=task,
                actor_user_id=actor_user_id,
                owner_user_id=effective_owner_id(task, workspace.owner_user_id if workspace else None),
                actor_is_member=self._is_active_member(task.workspace_id, actor_user_id),
                nonce_seen=nonce in self.store.actions,
                now=now,
            )
            candidate_is_member = (
                self._is_active_member(task.workspace_id, candidate_user_id)
                if candidate_user_id is not None
                else False
            )
            decision = decide(ctx, candidate_is_member)

            if decision.changed:
                task = task.model_copy(update={**decision.changes, "updated_at": now})
                self.store.tasks[task_id] = task
                self.store.actions[nonce] = TaskAction(
                    id=new_id(),
                    task_id=task_id,
                    actor_user_id=actor_user_id,
                    type=decision.action,
                    nonce=nonce,
                    created_at=now,
                )
            return task, decision

    @staticmethod
    def _result(task, decision) -> TransitionResult:
        if decision.status != ResultStatus.OK:
            return TransitionResult(status=decision.status)
        return TransitionResult(status=ResultStatus.OK, task=task, changed=decision.changed, action=decision.action)

    async def submit_for_review_transactional(self, task_id, actor_user_id, nonce, now):
        return self._result(*await self._transition(
            task_id, actor_user_id, nonce, now, lambda ctx, _: decide_submit_for_review(ctx)
        ))

    async def accept_review_transactional(self, task_id, actor_user_id, nonce, now):
        return self._result(*await self._transition(
            task_id, actor_user_id, nonce, now, lambda ctx, _: decide_accept_review(ctx)
        ))

    async def return_to_work_transactional(self, task_id, actor_user_id, nonce, comment, now):
        return self._result(*await self._transition(
            task_id, actor_user_id, nonce, now, lambda ctx, _: decide_return_to_work(ctx, comment)
        ))

    async def reassign_transactional(self, task_id, actor_user_id, new_assignee_id, nonce, now):
        previous = self.store.tasks.get(task_id)
        task, decision = await self._transition(
            task_id,
            actor_user_id,
            nonce,
            now,
            lambda ctx, member: decide_reassign(ctx, new_assignee_id, member),
            candidate_user_id=new_assignee_id,
        )
        if decision.status != ResultStatus.OK:
            return ReassignResult(status=decision.status)
        return ReassignResult(
            status=ResultStatus.OK,
            task=task,
            changed=decision.changed,
            previous_assignee_id=previous.assignee_user_id,
            new_assignee_id=task.assignee_user_id,
        )


class FakeTextCaptureRepository:
    def __init__(self, store: FakeStore, clock: FixedClock):
        self.store = store
        self.clock = clock

    async def set_capture(self, capture: TextCapture) -> TextCapture:
        stored = capture.model_copy(update={"updated_at": self.clock.now()})
        self.store.captures[capture.user_id] = stored
        return stored

    async def get_capture(self, user_id: str) -> Optional[TextCapture]:
        return self.store.captures.get(user_id)

    async def clear_capture(self, user_id: str, kind: Optional[TextCaptureKind] = None) -> bool:
        capture = self.store.captures.get(user_id)
        if capture is None or (kind is not None and capture.kind != kind):
            return False
        del self.store.captures[user_id]
        return True


class FakeWorkspaceRepository:
    def __init__(self, store: FakeStore, clock: FixedClock):
        self.store = store
        self.clock = clock

    def _active_for_chat(self, chat_id: str) -> Optional[Workspace]:
        return next(
            (
                w for w in self.store.workspaces.values()
                if w.chat_id == chat_id and w.status == WorkspaceStatus.ACTIVE
            ),
            None,
        )

    async def ensure_by_chat_id(self, chat_id, title=None):
        existing = self._active_for_chat(chat_id)
        if existing is not None:
            return existing, False
        now = self.clock.now()
        workspace = Workspace(id=new_id(), chat_id=chat_id, title=title, created_at=now, updated_at=now)
        self.store.workspaces[workspace.id] = workspace
        return workspace, True

    async def find_by_id(self, workspace_id):
        return self.store.workspaces.get(workspace_id)

    async def find_by_chat_id(self, chat_id):
        return self._active_for_chat(chat_id)

    async def find_latest(self):
        active = [w for w in self.store.workspaces.values() if w.status == WorkspaceStatus.ACTIVE]
        return active[-1] if active else None

    async def set_owner(self, workspace_id, user_id, now):
        workspace = self.store.workspaces.get(workspace_id)
        if workspace is None:
            return None
        for key, member in list(self.store.members.items()):
            if key[0] == workspace_id and member.role == MemberRole.OWNER and member.user_id != user_id:
                self.store.members[key] = member.model_copy(update={"role": MemberRole.MEMBER})
        key = (workspace_id, user_id)
        member = self.store.members.get(key)
        if member is None:
            member = WorkspaceMember(
                id=new_id(), workspace_id=workspace_id, user_id=user_id, joined_at=now, last_seen_at=now
            )
        self.store.members[key] = member.model_copy(update={
            "role": MemberRole.OWNER,
            "status": MemberStatus.ACTIVE,
            "last_seen_at": now,
        })
        workspace = workspace.model_copy(update={"owner_user_id": user_id, "updated_at": now})
        self.store.workspaces[workspace_id] = workspace
        return workspace

    async def archive(self, workspace_id):
        workspace = self.store.workspaces.get(workspace_id)
        if workspace is None:
            return None
        workspace = workspace.model_copy(update={"status": WorkspaceStatus.ARCHIVED})
        self.store.workspaces[workspace_id] = workspace
        removed = 0
        for key, member in list(self.store.members.items()):
            if key[0] == workspace_id and member.status == MemberStatus.ACTIVE:
                self.store.members[key] = member.model_copy(update={"status": MemberStatus.REMOVED})
                removed += 1
        return workspace, removed


class FakeWorkspaceMemberRepository:
    def __init__(self, store: FakeStore, clock: FixedClock):
        self.store = store
        self.clock = clock

    async def upsert_member(self, workspace_id, user_id, role, last_seen_at, profile: Optional[MemberProfile] = None):
        key = (workspace_id, user_id)
        profile_fields = profile.model_dump(exclude_none=True) if profile else {}
        member = self.store.members.get(key)
        if member is None:
            member = WorkspaceMember(
                id=new_id(),
                workspace_id=workspace_id,
                user_id=user_id,
                joined_at=last_seen_at,
                last_seen_at=last_seen_at,
            )
        member = member.model_copy(update={
            "role": role,
            "status": MemberStatus.ACTIVE,
            "last_seen_at": last_seen_at,
            **profile_fields,
        })
        self.store.members[key] = member
        return member

    async def find_member(self, workspace_id, user_id):
        return self.store.members.get((workspace_id, user_id))

    async def find_active_member(self, workspace_id, user_id):
        member = self.store.members.get((workspace_id, user_id))
        return member if member is not None and member.status == MemberStatus.ACTIVE else None

    async def list_active_by_workspace(self, workspace_id):
        members = [
            m for (ws_id, _), m in self.store.members.items()
            if ws_id == workspace_id and m.status == MemberStatus.ACTIVE
        ]
        return sorted(members, key=lambda m: (m.role != MemberRole.OWNER, m.joined_at))

    async def find_latest_workspace_id_by_user(self, user_id):
        candidates = [
            m for m in self.store.members.values()
            if m.user_id == user_id
            and m.status == MemberStatus.ACTIVE
            and self.store.workspaces[m.workspace_id].status == WorkspaceStatus.ACTIVE
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda m: (m.last_seen_at, m.joined_at)).workspace_id

    async def set_member_status(self, workspace_id, user_id, status):
        member = self.store.members.get((workspace_id, user_id))
        if member is None:
            return None
        member = member.model_copy(update={"status": status})
        self.store.members[(workspace_id, user_id)] = member
        return member


class FakeWorkspaceInviteRepository:
    def __init__(self, store: FakeStore, clock: FixedClock):
        self.store = store
        self.clock = clock

    async def find_valid_by_token(self, token, now):
        invite = self.store.invites.get(token)
        if invite is None or not invite.is_valid_at(now):
            return None
        return invite

    async def create_invite(self, workspace_id, token, expires_at):
        if token in self.store.invites:
            raise DatabaseConstraintError(f"duplicate invite token {token}")
        invite = WorkspaceInvite(
            id=new_id(),
            token=token,
            workspace_id=workspace_id,
            expires_at=expires_at,
            created_at=self.clock.now(),
        )
        self.store.invites[token] = invite
        return invite
