"""
Task service: the draft wizard and the review lifecycle.

Handles business logic for:
- Group and DM drafts, walked step by step into exactly one task
- Deadline presets and manually typed deadlines
- Submit for review / accept / return to work / reassign, idempotent per nonce
- Routing of private free-text messages through the per-user text capture
- Task lists for "my tasks", "created by me" and "on review"

Expected outcomes are returned as result values. Only infrastructure faults
raised by the repositories propagate.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from config.settings import settings
from ..models.results import (
    DraftResult,
    FinalizeResult,
    ReassignResult,
    ResultStatus,
    TaskListResult,
    TextRoute,
    TextRouteResult,
    TransitionResult,
)
from ..models.task import (
    DeadlineChoice,
    DraftStep,
    Task,
    TaskDraft,
    TaskPriority,
    TaskStatus,
    TextCapture,
    TextCaptureKind,
)
from ..utils.audit_logger import AuditAction, log_audit_event
from ..utils.datetime_utils import Clock, end_of_day, end_of_next_day, parse_date_input
from ..utils.tokens import new_dm_source_message_id, new_draft_token
from .ports import TaskRepo, TextCaptureRepo, WorkspaceMemberRepo, WorkspaceRepo
from .task_rules import sort_tasks

logger = logging.getLogger(__name__)

# Steps from which a deadline button is honoured; AWAIT_DEADLINE_INPUT lets the
# user change their mind after picking "manual"
DEADLINE_STEPS = (DraftStep.CHOOSE_DEADLINE, DraftStep.AWAIT_DEADLINE_INPUT)


class TaskService:
    """Draft wizard and task lifecycle engine."""

    def __init__(
        self,
        clock: Clock,
        task_repo: TaskRepo,
        member_repo: WorkspaceMemberRepo,
        workspace_repo: WorkspaceRepo,
        capture_repo: TextCaptureRepo,
    ):
        self.clock = clock
        self.task_repo = task_repo
        self.member_repo = member_repo
        self.workspace_repo = workspace_repo
        self.capture_repo = capture_repo

    # ==================== HELPERS ====================

    async def _is_active_member(self, workspace_id: Optional[str], user_id: str) -> bool:
        if workspace_id is None:
            return False
        member = await self.member_repo.find_active_member(workspace_id, user_id)
        return member is not None

    async def _owner_of(self, task: Task) -> Optional[str]:
        """Workspace owner; the creator for tasks outside any workspace."""
        if task.workspace_id is None:
            return task.creator_user_id
        workspace = await self.workspace_repo.find_by_id(task.workspace_id)
        return workspace.owner_user_id if workspace else None

    async def _existing_task_for(self, draft: TaskDraft) -> Optional[Task]:
        if draft.created_task_id:
            return await self.task_repo.get_task(draft.created_task_id)
        return await self.task_repo.find_task_by_source(draft.source_chat_id, draft.source_message_id)

    async def _load_draft(self, token: str, user_id: str) -> Tuple[Optional[DraftResult], Optional[TaskDraft]]:
        """
        Common guard for every token-addressed wizard operation.

        Returns (early result, None) when the caller must stop, otherwise
        (None, draft).
        """
        draft = await self.task_repo.find_draft_by_token(token)
        if draft is None or draft.creator_user_id != user_id:
            return DraftResult(status=ResultStatus.NOT_FOUND), None

        task = await self._existing_task_for(draft)
        if draft.is_final or task is not None:
            return DraftResult(status=ResultStatus.ALREADY_EXISTS, draft=draft, task=task), None

        return None, draft

    async def _advance(
        self,
        draft: TaskDraft,
        expected_steps: Iterable[DraftStep],
        updates: Dict[str, Any],
    ) -> DraftResult:
        applied, current = await self.task_repo.update_draft_step_if_expected(
            draft.id, expected_steps, updates
        )
        if applied:
            return DraftResult(status=ResultStatus.UPDATED, draft=current)

        if current is None:
            return DraftResult(status=ResultStatus.NOT_FOUND)
        if current.is_final:
            task = await self._existing_task_for(current)
            return DraftResult(status=ResultStatus.ALREADY_EXISTS, draft=current, task=task)

        logger.info(f"Stale wizard tap on draft {draft.token}: draft is at {current.step.value}")
        return DraftResult(status=ResultStatus.STALE_STEP, draft=current)

    # ==================== DRAFT CREATION ====================

    async def create_draft(
        self,
        creator_user_id: str,
        source_chat_id: str,
        source_message_id: str,
        source_text: str = "",
        source_link: Optional[str] = None,
        workspace_id: Optional[str] = None,
        step: DraftStep = DraftStep.CHOOSE_ASSIGNEE,
    ) -> TaskDraft:
        draft = await self.task_repo.create_draft({
            "token": new_draft_token(),
            "step": step,
            "workspace_id": workspace_id,
            "source_chat_id": source_chat_id,
            "source_message_id": source_message_id,
            "source_text": source_text,
            "source_link": source_link,
            "creator_user_id": creator_user_id,
        })
        logger.info(f"Draft {draft.token} created by {creator_user_id} from {source_chat_id}/{source_message_id}")
        return draft

    async def create_or_reuse_group_draft(
        self,
        workspace_id: Optional[str],
        source_chat_id: str,
        source_message_id: str,
        source_text: str,
        creator_user_id: str,
        source_link: Optional[str] = None,
    ) -> DraftResult:
        """
        Group-chat entry point for turning a message into a task.

        Repeated taps on the same message by the same user reuse the pending
        draft (EXISTING) instead of spawning parallel drafts. If the message
        already became a task, ALREADY_EXISTS carries it.
        """
        task = await self.task_repo.find_task_by_source(source_chat_id, source_message_id)
        if task is not None:
            return DraftResult(status=ResultStatus.ALREADY_EXISTS, task=task)

        draft = await self.task_repo.find_pending_draft_by_source(
            source_chat_id, source_message_id, creator_user_id
        )
        if draft is not None:
            logger.debug(f"Reusing draft {draft.token} for {source_chat_id}/{source_message_id}")
            return DraftResult(status=ResultStatus.EXISTING, draft=draft)

        draft = await self.create_draft(
            creator_user_id=creator_user_id,
            source_chat_id=source_chat_id,
            source_message_id=source_message_id,
            source_text=source_text,
            source_link=source_link,
            workspace_id=workspace_id,
        )
        return DraftResult(status=ResultStatus.CREATED, draft=draft)

    async def start_dm_draft(self, creator_user_id: str, workspace_id: Optional[str] = None) -> DraftResult:
        """
        Start a private-chat draft whose body is the user's next message.

        The newest draft at ``enter_text`` wins when text arrives, so a new DM
        draft supersedes any older one left dangling. Any pending text capture
        (manual deadline, return comment) is dropped so the next message
        becomes the draft body.
        """
        if workspace_id is not None and not await self._is_active_member(workspace_id, creator_user_id):
            return DraftResult(status=ResultStatus.NOT_IN_WORKSPACE)

        if await self.capture_repo.clear_capture(creator_user_id):
            logger.info(f"DM draft by {creator_user_id} superseded a pending text capture")

        draft = await self.create_draft(
            creator_user_id=creator_user_id,
            source_chat_id=f"dm:{creator_user_id}",
            source_message_id=new_dm_source_message_id(),
            workspace_id=workspace_id,
            step=DraftStep.ENTER_TEXT,
        )
        return DraftResult(status=ResultStatus.CREATED, draft=draft)

    async def apply_dm_draft_text(self, user_id: str, text: str) -> DraftResult:
        """Use a private message as the body of the user's newest DM draft."""
        draft = await self.task_repo.find_draft_by_creator_and_step(user_id, DraftStep.ENTER_TEXT)
        if draft is None:
            return DraftResult(status=ResultStatus.NOT_FOUND)

        if draft.workspace_id is not None and not await self._is_active_member(draft.workspace_id, user_id):
            return DraftResult(status=ResultStatus.NOT_IN_WORKSPACE, draft=draft)

        body = (text or "").strip()
        if not body:
            return DraftResult(status=ResultStatus.EMPTY_TEXT, draft=draft)

        return await self._advance(
            draft,
            [DraftStep.ENTER_TEXT],
            {"source_text": body, "step": DraftStep.CHOOSE_ASSIGNEE},
        )

    # ==================== WIZARD STEPS ====================

    async def start_draft_wizard(self, token: str, user_id: str) -> DraftResult:
        """
        Open (or resume) the wizard for a draft.

        Safe to call repeatedly: after finalization every call returns
        ALREADY_EXISTS with the same task.
        """
        early, draft = await self._load_draft(token, user_id)
        if early is not None:
            return early
        return DraftResult(status=ResultStatus.STARTED, draft=draft)

    async def set_draft_assignee(self, token: str, user_id: str, assignee_id: str) -> DraftResult:
        early, draft = await self._load_draft(token, user_id)
        if early is not None:
            return early

        if draft.workspace_id is not None and not await self._is_active_member(draft.workspace_id, assignee_id):
            return DraftResult(status=ResultStatus.INVALID_ASSIGNEE, draft=draft)

        return await self._advance(
            draft,
            [DraftStep.CHOOSE_ASSIGNEE],
            {"assignee_id": assignee_id, "step": DraftStep.CHOOSE_PRIORITY},
        )

    async def set_draft_priority(self, token: str, user_id: str, priority: TaskPriority) -> DraftResult:
        early, draft = await self._load_draft(token, user_id)
        if early is not None:
            return early

        return await self._advance(
            draft,
            [DraftStep.CHOOSE_PRIORITY],
            {"priority": priority, "step": DraftStep.CHOOSE_DEADLINE},
        )

    async def set_draft_deadline_choice(self, token: str, user_id: str, choice: DeadlineChoice) -> DraftResult:
        """
        Apply a deadline button.

        Presets (today, tomorrow, none) move straight to CONFIRM. "manual"
        moves to AWAIT_DEADLINE_INPUT and makes the user's next private text
        the deadline.
        """
        early, draft = await self._load_draft(token, user_id)
        if early is not None:
            return early

        if choice == DeadlineChoice.MANUAL:
            result = await self._advance(
                draft,
                DEADLINE_STEPS,
                {"step": DraftStep.AWAIT_DEADLINE_INPUT},
            )
            if result.status == ResultStatus.UPDATED:
                await self.capture_repo.set_capture(
                    TextCapture(
                        user_id=user_id,
                        kind=TextCaptureKind.AWAITING_DEADLINE,
                        draft_id=draft.id,
                    )
                )
            return result

        now = self.clock.now()
        if choice == DeadlineChoice.TODAY:
            deadline_at = end_of_day(now)
        elif choice == DeadlineChoice.TOMORROW:
            deadline_at = end_of_next_day(now)
        else:
            deadline_at = None

        result = await self._advance(
            draft,
            DEADLINE_STEPS,
            {"deadline_at": deadline_at, "step": DraftStep.CONFIRM},
        )
        if result.status == ResultStatus.UPDATED:
            await self.capture_repo.clear_capture(user_id, TextCaptureKind.AWAITING_DEADLINE)
        return result

    async def set_draft_deadline_from_text(
        self,
        user_id: str,
        raw_text: str,
        draft_id: Optional[str] = None,
    ) -> DraftResult:
        """
        Apply a typed ``YYYY-MM-DD`` deadline to the draft awaiting one.

        On a parse failure the draft is left untouched so the user can retry.
        """
        if draft_id is not None:
            draft = await self.task_repo.find_draft_by_id(draft_id)
            if (
                draft is None
                or draft.creator_user_id != user_id
                or draft.is_final
                or draft.step != DraftStep.AWAIT_DEADLINE_INPUT
            ):
                return DraftResult(status=ResultStatus.NOT_FOUND)
        else:
            draft = await self.task_repo.find_awaiting_deadline_draft_by_creator(user_id)
            if draft is None:
                return DraftResult(status=ResultStatus.NOT_FOUND)

        deadline_at = parse_date_input(raw_text)
        if deadline_at is None:
            logger.debug(f"Rejected deadline input {raw_text!r} for draft {draft.token}")
            return DraftResult(status=ResultStatus.INVALID_DATE, draft=draft)

        result = await self._advance(
            draft,
            [DraftStep.AWAIT_DEADLINE_INPUT],
            {"deadline_at": deadline_at, "step": DraftStep.CONFIRM},
        )
        if result.status == ResultStatus.UPDATED:
            await self.capture_repo.clear_capture(user_id, TextCaptureKind.AWAITING_DEADLINE)
        return result

    async def finalize_draft(self, token: str, user_id: str) -> FinalizeResult:
        """
        Turn a confirmed draft into its task.

        Concurrent calls for one draft collapse in the repository: exactly one
        returns CREATED, the others ALREADY_EXISTS with the same task.
        """
        early, draft = await self._load_draft(token, user_id)
        if early is not None:
            return FinalizeResult(status=early.status, task=early.task, draft=early.draft)

        if draft.step != DraftStep.CONFIRM or draft.assignee_id is None or draft.priority is None:
            return FinalizeResult(status=ResultStatus.NOT_READY, draft=draft)

        created = await self.task_repo.create_from_draft(draft)
        if created.status == ResultStatus.CREATED:
            logger.info(
                f"Task {created.task.id} created by {user_id}: "
                f"assignee={created.task.assignee_user_id}, priority={created.task.priority.value}"
            )
        return FinalizeResult(status=created.status, task=created.task)

    # ==================== LIFECYCLE ====================

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await self.task_repo.get_task(task_id)

    async def complete_task(self, task_id: str, actor_user_id: str, nonce: str) -> TransitionResult:
        """Assignee asks for review, or closes a task they gave themselves."""
        return await self.task_repo.submit_for_review_transactional(
            task_id, actor_user_id, nonce, self.clock.now()
        )

    async def accept_review(self, task_id: str, actor_user_id: str, nonce: str) -> TransitionResult:
        return await self.task_repo.accept_review_transactional(
            task_id, actor_user_id, nonce, self.clock.now()
        )

    async def return_to_work(
        self,
        task_id: str,
        actor_user_id: str,
        nonce: str,
        comment: str,
    ) -> TransitionResult:
        comment = (comment or "").strip()
        if not comment:
            return TransitionResult(status=ResultStatus.EMPTY_TEXT)

        return await self.task_repo.return_to_work_transactional(
            task_id, actor_user_id, nonce, comment, self.clock.now()
        )

    async def begin_return_to_work_comment(
        self,
        task_id: str,
        actor_user_id: str,
        nonce: str,
    ) -> TransitionResult:
        """
        Owner tapped "return to work": wait for the comment as the next private text.

        Nothing changes on the task yet. For a task no longer on review this is
        a successful no-op.
        """
        task = await self.task_repo.get_task(task_id)
        if task is None:
            return TransitionResult(status=ResultStatus.NOT_FOUND)

        if await self._owner_of(task) != actor_user_id:
            return TransitionResult(status=ResultStatus.FORBIDDEN)

        if task.status != TaskStatus.ON_REVIEW or await self.task_repo.find_action_by_nonce(nonce):
            return TransitionResult(status=ResultStatus.OK, task=task, changed=False)

        await self.capture_repo.set_capture(
            TextCapture(
                user_id=actor_user_id,
                kind=TextCaptureKind.AWAITING_RETURN_COMMENT,
                task_id=task_id,
                nonce=nonce,
            )
        )
        logger.info(f"Waiting for return comment from {actor_user_id} on task {task_id}")
        return TransitionResult(status=ResultStatus.AWAITING_COMMENT, task=task)

    async def apply_return_comment(
        self,
        user_id: str,
        text: str,
        capture: Optional[TextCapture] = None,
    ) -> TransitionResult:
        """Consume the pending return comment of a user."""
        if capture is None:
            capture = await self.capture_repo.get_capture(user_id)
        if capture is None or capture.kind != TextCaptureKind.AWAITING_RETURN_COMMENT:
            return TransitionResult(status=ResultStatus.NOT_FOUND)

        if not (text or "").strip():
            return TransitionResult(status=ResultStatus.EMPTY_TEXT)

        result = await self.return_to_work(capture.task_id, user_id, capture.nonce, text)
        await self.capture_repo.clear_capture(user_id, TextCaptureKind.AWAITING_RETURN_COMMENT)
        return result

    async def reassign_task(
        self,
        task_id: str,
        actor_user_id: str,
        new_assignee_id: str,
        nonce: str,
    ) -> ReassignResult:
        """
        Owner hands a task to another active member.

        ``changed`` is False when the task already belongs to ``new_assignee_id``,
        in which case nobody should be notified.
        """
        result = await self.task_repo.reassign_transactional(
            task_id, actor_user_id, new_assignee_id, nonce, self.clock.now()
        )
        if result.changed:
            log_audit_event(
                action=AuditAction.TASK_REASSIGN,
                user_id=actor_user_id,
                entity_type="task",
                entity_id=task_id,
                details={
                    "previous_assignee_id": result.previous_assignee_id,
                    "new_assignee_id": result.new_assignee_id,
                },
            )
        return result

    # ==================== PRIVATE TEXT ====================

    async def route_private_text(self, user_id: str, text: str) -> TextRouteResult:
        """
        Decide what a private free-text message means.

        The user's single text capture is consulted first. Without one, the
        text may be the body of a DM draft; otherwise it is ignored.
        """
        capture = await self.capture_repo.get_capture(user_id)

        if capture is not None and capture.kind == TextCaptureKind.AWAITING_DEADLINE:
            result = await self.set_draft_deadline_from_text(user_id, text, draft_id=capture.draft_id)
            if result.status != ResultStatus.NOT_FOUND:
                return TextRouteResult(route=TextRoute.DEADLINE, draft_result=result)
            # Draft moved on without us; drop the dangling capture
            await self.capture_repo.clear_capture(user_id, TextCaptureKind.AWAITING_DEADLINE)

        elif capture is not None and capture.kind == TextCaptureKind.AWAITING_RETURN_COMMENT:
            result = await self.apply_return_comment(user_id, text, capture=capture)
            return TextRouteResult(route=TextRoute.RETURN_COMMENT, transition_result=result)

        dm_result = await self.apply_dm_draft_text(user_id, text)
        if dm_result.status != ResultStatus.NOT_FOUND:
            return TextRouteResult(route=TextRoute.DM_DRAFT, draft_result=dm_result)

        return TextRouteResult(route=TextRoute.IGNORED)

    # ==================== LISTS ====================

    async def _list(
        self,
        fetch: Callable[[str, str, int], Awaitable[List[Task]]],
        workspace_id: str,
        viewer_user_id: str,
        limit: Optional[int],
    ) -> TaskListResult:
        if not await self._is_active_member(workspace_id, viewer_user_id):
            return TaskListResult(status=ResultStatus.NOT_IN_WORKSPACE)

        tasks = await fetch(workspace_id, viewer_user_id, limit or settings.task_list_limit)
        return TaskListResult(status=ResultStatus.OK, tasks=sort_tasks(tasks))

    async def list_assigned_tasks(
        self, workspace_id: str, viewer_user_id: str, limit: Optional[int] = None
    ) -> TaskListResult:
        return await self._list(self.task_repo.list_assigned_tasks, workspace_id, viewer_user_id, limit)

    async def list_created_tasks(
        self, workspace_id: str, viewer_user_id: str, limit: Optional[int] = None
    ) -> TaskListResult:
        return await self._list(self.task_repo.list_created_tasks, workspace_id, viewer_user_id, limit)

    async def list_on_review_tasks(
        self, workspace_id: str, viewer_user_id: str, limit: Optional[int] = None
    ) -> TaskListResult:
        return await self._list(self.task_repo.list_on_review_tasks, workspace_id, viewer_user_id, limit)
