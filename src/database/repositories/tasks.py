"""
Task repository: drafts, tasks and the transactional review lifecycle.

Handles:
- Draft creation and guarded wizard step updates
- Race-safe task creation from a draft (insert-if-absent, else fetch winner)
- Submit / accept / return / reassign transitions under a row lock
- Nonce ledger for idempotent replays of user clicks
- Per-user text captures
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update, delete, and_, or_, case
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..connection import Database, get_database
from ..models import (
    TaskDB,
    TaskDraftDB,
    TaskActionDB,
    TextCaptureDB,
    WorkspaceDB,
    WorkspaceMemberDB,
)
from ..exceptions import (
    DatabaseConstraintError,
    DatabaseOperationError,
)
from ...models.results import (
    CreateFromDraftResult,
    ReassignResult,
    ResultStatus,
    TransitionResult,
)
from ...models.task import (
    DraftStatus,
    DraftStep,
    Task,
    TaskAction,
    TaskDraft,
    TaskPriority,
    TaskStatus,
    TextCapture,
    TextCaptureKind,
)
from ...models.workspace import MemberStatus
from ...services.task_rules import (
    TransitionContext,
    TransitionDecision,
    decide_accept_review,
    decide_reassign,
    decide_return_to_work,
    decide_submit_for_review,
    effective_owner_id,
)
from ...utils.datetime_utils import get_local_now
from ...utils.tokens import new_id

logger = logging.getLogger(__name__)

# Same order the UI uses, so LIMIT keeps the most important tasks
PRIORITY_ORDER = case(
    {
        TaskPriority.P1.value: 1,
        TaskPriority.P2.value: 2,
        TaskPriority.P3.value: 3,
    },
    value=TaskDB.priority,
    else_=3,
)


def _db_value(value: Any) -> Any:
    """Enums are stored by value."""
    if isinstance(value, Enum):
        return value.value
    return value


def _db_values(updates: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _db_value(value) for key, value in updates.items()}


def _to_task(row: Optional[TaskDB]) -> Optional[Task]:
    return Task.model_validate(row) if row is not None else None


def _to_draft(row: Optional[TaskDraftDB]) -> Optional[TaskDraft]:
    return TaskDraft.model_validate(row) if row is not None else None


class TaskRepository:
    """Repository for drafts, tasks and lifecycle transitions."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    # ==================== DRAFTS ====================

    async def create_draft(self, draft_data: Dict[str, Any]) -> TaskDraft:
        """
        Create a new pending draft.

        Args:
            draft_data: token, step, workspace_id, source_chat_id,
                source_message_id, source_text, source_link, creator_user_id

        Raises:
            DatabaseConstraintError: On duplicate token
            DatabaseOperationError: On general DB failure
        """
        async with self.db.session() as session:
            try:
                now = get_local_now()
                draft = TaskDraftDB(
                    id=new_id(),
                    token=draft_data["token"],
                    status=DraftStatus.PENDING.value,
                    step=_db_value(draft_data.get("step", DraftStep.CHOOSE_ASSIGNEE)),
                    workspace_id=draft_data.get("workspace_id"),
                    source_chat_id=draft_data["source_chat_id"],
                    source_message_id=draft_data["source_message_id"],
                    source_text=draft_data.get("source_text") or "",
                    source_link=draft_data.get("source_link"),
                    creator_user_id=draft_data["creator_user_id"],
                    created_at=now,
                    updated_at=now,
                )
                session.add(draft)
                await session.flush()

                logger.info(f"Created draft {draft.token} for user {draft.creator_user_id}")
                return _to_draft(draft)

            except IntegrityError as e:
                logger.error(f"Constraint violation creating draft: {e}")
                raise DatabaseConstraintError(
                    f"Cannot create draft {draft_data.get('token')}: duplicate or constraint violation"
                )

            except Exception as e:
                logger.error(f"CRITICAL: Draft creation failed: {e}", exc_info=True)
                raise DatabaseOperationError(f"Failed to create draft: {e}")

    async def find_draft_by_token(self, token: str) -> Optional[TaskDraft]:
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskDraftDB).where(TaskDraftDB.token == token)
            )
            return _to_draft(result.scalar_one_or_none())

    async def find_draft_by_id(self, draft_id: str) -> Optional[TaskDraft]:
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskDraftDB).where(TaskDraftDB.id == draft_id)
            )
            return _to_draft(result.scalar_one_or_none())

    async def find_pending_draft_by_source(
        self,
        source_chat_id: str,
        source_message_id: str,
        creator_user_id: str,
    ) -> Optional[TaskDraft]:
        """Newest pending draft a user opened for one chat message."""
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskDraftDB)
                .where(
                    and_(
                        TaskDraftDB.source_chat_id == source_chat_id,
                        TaskDraftDB.source_message_id == source_message_id,
                        TaskDraftDB.creator_user_id == creator_user_id,
                        TaskDraftDB.status == DraftStatus.PENDING.value,
                    )
                )
                .order_by(TaskDraftDB.updated_at.desc())
                .limit(1)
            )
            return _to_draft(result.scalars().first())

    async def find_draft_by_creator_and_step(
        self,
        creator_user_id: str,
        step: DraftStep,
    ) -> Optional[TaskDraft]:
        """
        Most recently updated pending draft of a user at a given step.

        Returns at most one row so older dangling drafts never compete with
        the one the user is actually working on.
        """
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskDraftDB)
                .where(
                    and_(
                        TaskDraftDB.creator_user_id == creator_user_id,
                        TaskDraftDB.step == _db_value(step),
                        TaskDraftDB.status == DraftStatus.PENDING.value,
                    )
                )
                .order_by(TaskDraftDB.updated_at.desc())
                .limit(1)
            )
            return _to_draft(result.scalars().first())

    async def find_awaiting_deadline_draft_by_creator(self, creator_user_id: str) -> Optional[TaskDraft]:
        return await self.find_draft_by_creator_and_step(creator_user_id, DraftStep.AWAIT_DEADLINE_INPUT)

    async def update_draft_step_if_expected(
        self,
        draft_id: str,
        expected_steps: Iterable[DraftStep],
        updates: Dict[str, Any],
    ) -> Tuple[bool, Optional[TaskDraft]]:
        """
        Apply ``updates`` only if the draft is still pending at one of ``expected_steps``.

        Single conditional UPDATE, so two racing taps cannot both advance the draft.

        Returns:
            (True, updated draft) when applied, otherwise (False, current draft or None)
        """
        steps = [_db_value(step) for step in expected_steps]

        async with self.db.session() as session:
            result = await session.execute(
                update(TaskDraftDB)
                .where(
                    and_(
                        TaskDraftDB.id == draft_id,
                        TaskDraftDB.status == DraftStatus.PENDING.value,
                        TaskDraftDB.step.in_(steps),
                    )
                )
                .values(**_db_values(updates))
                .returning(TaskDraftDB)
            )
            row = result.scalar_one_or_none()
            if row is not None:
                return True, _to_draft(row)

            current = await session.execute(
                select(TaskDraftDB).where(TaskDraftDB.id == draft_id)
            )
            return False, _to_draft(current.scalar_one_or_none())

    async def create_from_draft(self, draft: TaskDraft) -> CreateFromDraftResult:
        """
        Materialize a draft into exactly one task and mark the draft FINAL.

        Uses INSERT ... ON CONFLICT DO NOTHING against the unique source-draft
        and source-message constraints. When nothing is inserted another
        finalization won; its task is fetched and returned as ALREADY_EXISTS.
        """
        async with self.db.session() as session:
            now = get_local_now()
            result = await session.execute(
                pg_insert(TaskDB)
                .values(
                    id=new_id(),
                    workspace_id=draft.workspace_id,
                    source_draft_id=draft.id,
                    source_chat_id=draft.source_chat_id,
                    source_message_id=draft.source_message_id,
                    source_text=draft.source_text,
                    source_link=draft.source_link,
                    creator_user_id=draft.creator_user_id,
                    assignee_user_id=draft.assignee_id,
                    priority=_db_value(draft.priority),
                    deadline_at=draft.deadline_at,
                    status=TaskStatus.ACTIVE.value,
                    created_at=now,
                    updated_at=now,
                )
                .on_conflict_do_nothing()
                .returning(TaskDB)
            )
            row = result.scalar_one_or_none()
            status = ResultStatus.CREATED

            if row is None:
                existing = await session.execute(
                    select(TaskDB)
                    .where(
                        or_(
                            TaskDB.source_draft_id == draft.id,
                            and_(
                                TaskDB.source_chat_id == draft.source_chat_id,
                                TaskDB.source_message_id == draft.source_message_id,
                            ),
                        )
                    )
                    .limit(1)
                )
                row = existing.scalars().first()
                if row is None:
                    raise DatabaseConstraintError(
                        f"Task insert for draft {draft.id} conflicted but no existing task was found"
                    )
                status = ResultStatus.ALREADY_EXISTS

            await session.execute(
                update(TaskDraftDB)
                .where(
                    and_(
                        TaskDraftDB.id == draft.id,
                        TaskDraftDB.created_task_id.is_(None),
                    )
                )
                .values(
                    status=DraftStatus.FINAL.value,
                    step=DraftStep.FINAL.value,
                    created_task_id=row.id,
                )
            )

            if status == ResultStatus.CREATED:
                logger.info(f"Created task {row.id} from draft {draft.token}")
            else:
                logger.info(f"Draft {draft.token} already materialized as task {row.id}")

            return CreateFromDraftResult(status=status, task=_to_task(row))

    # ==================== TASK QUERIES ====================

    async def get_task(self, task_id: str) -> Optional[Task]:
        async with self.db.session() as session:
            result = await session.execute(select(TaskDB).where(TaskDB.id == task_id))
            return _to_task(result.scalar_one_or_none())

    async def find_task_by_source(self, source_chat_id: str, source_message_id: str) -> Optional[Task]:
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskDB).where(
                    and_(
                        TaskDB.source_chat_id == source_chat_id,
                        TaskDB.source_message_id == source_message_id,
                    )
                )
            )
            return _to_task(result.scalar_one_or_none())

    async def _list_tasks(self, query, limit: int) -> List[Task]:
        async with self.db.session() as session:
            result = await session.execute(
                query.order_by(
                    PRIORITY_ORDER,
                    TaskDB.deadline_at.asc().nulls_last(),
                    TaskDB.created_at.asc(),
                    TaskDB.id.asc(),
                ).limit(limit)
            )
            return [_to_task(row) for row in result.scalars().all()]

    async def list_assigned_tasks(self, workspace_id: str, viewer_user_id: str, limit: int) -> List[Task]:
        """Open tasks assigned to the viewer."""
        return await self._list_tasks(
            select(TaskDB).where(
                and_(
                    TaskDB.workspace_id == workspace_id,
                    TaskDB.assignee_user_id == viewer_user_id,
                    TaskDB.status != TaskStatus.CLOSED.value,
                )
            ),
            limit,
        )

    async def list_created_tasks(self, workspace_id: str, viewer_user_id: str, limit: int) -> List[Task]:
        """Open tasks the viewer created."""
        return await self._list_tasks(
            select(TaskDB).where(
                and_(
                    TaskDB.workspace_id == workspace_id,
                    TaskDB.creator_user_id == viewer_user_id,
                    TaskDB.status != TaskStatus.CLOSED.value,
                )
            ),
            limit,
        )

    async def list_on_review_tasks(self, workspace_id: str, viewer_user_id: str, limit: int) -> List[Task]:
        """Tasks waiting for the viewer's sign-off (as creator or workspace owner)."""
        return await self._list_tasks(
            select(TaskDB)
            .join(WorkspaceDB, WorkspaceDB.id == TaskDB.workspace_id)
            .where(
                and_(
                    TaskDB.workspace_id == workspace_id,
                    TaskDB.status == TaskStatus.ON_REVIEW.value,
                    or_(
                        TaskDB.creator_user_id == viewer_user_id,
                        WorkspaceDB.owner_user_id == viewer_user_id,
                    ),
                )
            ),
            limit,
        )

    async def find_action_by_nonce(self, nonce: str) -> Optional[TaskAction]:
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskActionDB).where(TaskActionDB.nonce == nonce)
            )
            row = result.scalar_one_or_none()
            return TaskAction.model_validate(row) if row is not None else None

    # ==================== TRANSITIONS ====================

    async def _lock_task(self, session: AsyncSession, task_id: str) -> Optional[TaskDB]:
        result = await session.execute(
            select(TaskDB).where(TaskDB.id == task_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _workspace_owner_id(self, session: AsyncSession, workspace_id: str) -> Optional[str]:
        result = await session.execute(
            select(WorkspaceDB.owner_user_id).where(WorkspaceDB.id == workspace_id)
        )
        return result.scalar_one_or_none()

    async def _is_active_member(
        self,
        session: AsyncSession,
        workspace_id: Optional[str],
        user_id: str,
    ) -> bool:
        if workspace_id is None:
            return False
        result = await session.execute(
            select(WorkspaceMemberDB.id).where(
                and_(
                    WorkspaceMemberDB.workspace_id == workspace_id,
                    WorkspaceMemberDB.user_id == user_id,
                    WorkspaceMemberDB.status == MemberStatus.ACTIVE.value,
                )
            )
        )
        return result.scalar_one_or_none() is not None

    async def _nonce_exists(self, session: AsyncSession, nonce: str) -> bool:
        result = await session.execute(
            select(TaskActionDB.id).where(TaskActionDB.nonce == nonce)
        )
        return result.scalar_one_or_none() is not None

    async def _transition(
        self,
        task_id: str,
        actor_user_id: str,
        nonce: str,
        now: datetime,
        decide: Callable[[TransitionContext, bool], TransitionDecision],
        candidate_user_id: Optional[str] = None,
    ) -> Tuple[Optional[Task], TransitionDecision]:
        """
        Run one lifecycle transition as a single transaction.

        The task row is locked first, so the owner/membership/nonce reads and
        the write that follows cannot interleave with another transition on the
        same task. The nonce record is written in the same transaction as the
        status change.
        """
        async with self.db.session() as session:
            row = await self._lock_task(session, task_id)
            if row is None:
                return None, TransitionDecision(status=ResultStatus.NOT_FOUND)

            task = _to_task(row)
            owner_id = None
            if task.workspace_id is not None:
                owner_id = await self._workspace_owner_id(session, task.workspace_id)
            actor_is_member = await self._is_active_member(session, task.workspace_id, actor_user_id)
            nonce_seen = await self._nonce_exists(session, nonce)
            candidate_is_member = False
            if candidate_user_id is not None:
                candidate_is_member = await self._is_active_member(
                    session, task.workspace_id, candidate_user_id
                )

            ctx = TransitionContext(
                task=task,
                actor_user_id=actor_user_id,
                owner_user_id=effective_owner_id(task, owner_id),
                actor_is_member=actor_is_member,
                nonce_seen=nonce_seen,
                now=now,
            )
            decision = decide(ctx, candidate_is_member)

            if not decision.changed:
                if nonce_seen:
                    logger.info(f"Replay of nonce {nonce} on task {task_id}, nothing to do")
                return task, decision

            try:
                for key, value in decision.changes.items():
                    setattr(row, key, _db_value(value))
                row.updated_at = now
                session.add(
                    TaskActionDB(
                        id=new_id(),
                        task_id=row.id,
                        actor_user_id=actor_user_id,
                        type=decision.action.value,
                        nonce=nonce,
                        created_at=now,
                    )
                )
                await session.flush()
            except IntegrityError as e:
                logger.error(f"Constraint violation recording action on task {task_id}: {e}")
                raise DatabaseConstraintError(
                    f"Cannot record action {nonce} on task {task_id}: constraint violation"
                )

            logger.info(
                f"Task {task_id}: {decision.action.value} by {actor_user_id} "
                f"({task.status.value} -> {row.status})"
            )
            return _to_task(row), decision

    @staticmethod
    def _transition_result(task: Optional[Task], decision: TransitionDecision) -> TransitionResult:
        if decision.status != ResultStatus.OK:
            return TransitionResult(status=decision.status)
        return TransitionResult(
            status=ResultStatus.OK,
            task=task,
            changed=decision.changed,
            action=decision.action,
        )

    async def submit_for_review_transactional(
        self,
        task_id: str,
        actor_user_id: str,
        nonce: str,
        now: datetime,
    ) -> TransitionResult:
        task, decision = await self._transition(
            task_id,
            actor_user_id,
            nonce,
            now,
            lambda ctx, _: decide_submit_for_review(ctx),
        )
        return self._transition_result(task, decision)

    async def accept_review_transactional(
        self,
        task_id: str,
        actor_user_id: str,
        nonce: str,
        now: datetime,
    ) -> TransitionResult:
        task, decision = await self._transition(
            task_id,
            actor_user_id,
            nonce,
            now,
            lambda ctx, _: decide_accept_review(ctx),
        )
        return self._transition_result(task, decision)

    async def return_to_work_transactional(
        self,
        task_id: str,
        actor_user_id: str,
        nonce: str,
        comment: str,
        now: datetime,
    ) -> TransitionResult:
        task, decision = await self._transition(
            task_id,
            actor_user_id,
            nonce,
            now,
            lambda ctx, _: decide_return_to_work(ctx, comment),
        )
        return self._transition_result(task, decision)

    async def reassign_transactional(
        self,
        task_id: str,
        actor_user_id: str,
        new_assignee_id: str,
        nonce: str,
        now: datetime,
    ) -> ReassignResult:
        previous_assignee_id = None

        def decide(ctx: TransitionContext, candidate_is_member: bool) -> TransitionDecision:
            nonlocal previous_assignee_id
            previous_assignee_id = ctx.task.assignee_user_id
            return decide_reassign(ctx, new_assignee_id, candidate_is_member)

        task, decision = await self._transition(
            task_id,
            actor_user_id,
            nonce,
            now,
            decide,
            candidate_user_id=new_assignee_id,
        )
        if decision.status != ResultStatus.OK:
            return ReassignResult(status=decision.status)

        return ReassignResult(
            status=ResultStatus.OK,
            task=task,
            changed=decision.changed,
            previous_assignee_id=previous_assignee_id,
            new_assignee_id=task.assignee_user_id,
        )


class TextCaptureRepository:
    """Repository for per-user text captures (one row per user)."""

    def __init__(self, db: Optional[Database] = None):
        self.db = db or get_database()

    async def set_capture(self, capture: TextCapture) -> TextCapture:
        """Store a capture, replacing whatever the user had pending."""
        async with self.db.session() as session:
            now = get_local_now()
            values = {
                "kind": capture.kind.value,
                "draft_id": capture.draft_id,
                "task_id": capture.task_id,
                "nonce": capture.nonce,
                "updated_at": now,
            }
            await session.execute(
                pg_insert(TextCaptureDB)
                .values(user_id=capture.user_id, **values)
                .on_conflict_do_update(
                    index_elements=[TextCaptureDB.user_id],
                    set_=values,
                )
            )
            logger.debug(f"Text capture for {capture.user_id} set to {capture.kind.value}")
            return capture.model_copy(update={"updated_at": now})

    async def get_capture(self, user_id: str) -> Optional[TextCapture]:
        async with self.db.session() as session:
            result = await session.execute(
                select(TextCaptureDB).where(TextCaptureDB.user_id == user_id)
            )
            row = result.scalar_one_or_none()
            return TextCapture.model_validate(row) if row is not None else None

    async def clear_capture(self, user_id: str, kind: Optional[TextCaptureKind] = None) -> bool:
        """
        Remove the user's capture.

        When ``kind`` is given only a capture of that kind is removed, so a
        newer capture of another kind is never clobbered.
        """
        async with self.db.session() as session:
            query = delete(TextCaptureDB).where(TextCaptureDB.user_id == user_id)
            if kind is not None:
                query = query.where(TextCaptureDB.kind == kind.value)
            result = await session.execute(query)
            return (result.rowcount or 0) > 0

