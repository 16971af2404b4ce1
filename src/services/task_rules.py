"""
Pure task rules: list ordering and lifecycle transition decisions.

Nothing here touches storage. Repositories load a ``TransitionContext`` inside
their transaction (with the task row locked), ask one of the ``decide_*``
functions what to do, and apply the returned changes plus the nonce record.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.results import ResultStatus
from ..models.task import Task, TaskPriority, TaskStatus, TaskActionType

PRIORITY_RANKS = {
    TaskPriority.P1: 1,
    TaskPriority.P2: 2,
    TaskPriority.P3: 3,
}


def priority_rank(priority: TaskPriority) -> int:
    return PRIORITY_RANKS.get(priority, 3)


def task_sort_key(task: Task):
    """Priority first, then deadline (tasks without one last), then creation time."""
    has_no_deadline = task.deadline_at is None
    return (
        priority_rank(task.priority),
        has_no_deadline,
        task.deadline_at or datetime.max,
        task.created_at,
    )


def sort_tasks(tasks: List[Task]) -> List[Task]:
    """
    Return a new list in display order.

    ``sorted`` is stable, so tasks equal on every key keep their input order.
    The input list is not modified.
    """
    return sorted(tasks, key=task_sort_key)


# ==================== TRANSITIONS ====================

@dataclass
class TransitionContext:
    """Everything a transition decision needs, read under the row lock."""
    task: Task
    actor_user_id: str
    owner_user_id: Optional[str]
    actor_is_member: bool
    nonce_seen: bool
    now: datetime


@dataclass
class TransitionDecision:
    """
    What to do with a locked task.

    An empty ``changes`` dict with status OK is an idempotent no-op.
    """
    status: ResultStatus
    changes: Dict[str, Any] = field(default_factory=dict)
    action: Optional[TaskActionType] = None

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def effective_owner_id(task: Task, workspace_owner_id: Optional[str]) -> Optional[str]:
    """Workspace owner, or the task creator for tasks outside any workspace."""
    if task.workspace_id is None:
        return task.creator_user_id
    return workspace_owner_id


def _noop() -> TransitionDecision:
    return TransitionDecision(status=ResultStatus.OK)


def decide_submit_for_review(ctx: TransitionContext) -> TransitionDecision:
    """
    Assignee asks for review.

    When creator, assignee and actor are the same user the task closes directly.
    """
    task = ctx.task
    if task.assignee_user_id != ctx.actor_user_id:
        return TransitionDecision(status=ResultStatus.NOT_ASSIGNEE)
    if task.workspace_id is not None and not ctx.actor_is_member:
        return TransitionDecision(status=ResultStatus.NOT_IN_WORKSPACE)
    if ctx.nonce_seen:
        return _noop()

    self_close = task.creator_user_id == ctx.actor_user_id
    if task.status == TaskStatus.CLOSED:
        return _noop()

    if self_close:
        return TransitionDecision(
            status=ResultStatus.OK,
            changes={
                "status": TaskStatus.CLOSED,
                "submitted_for_review_at": ctx.now,
                "closed_at": ctx.now,
            },
            action=TaskActionType.SELF_CLOSE,
        )

    if task.status != TaskStatus.ACTIVE:
        return _noop()

    return TransitionDecision(
        status=ResultStatus.OK,
        changes={
            "status": TaskStatus.ON_REVIEW,
            "submitted_for_review_at": ctx.now,
        },
        action=TaskActionType.SUBMIT_FOR_REVIEW,
    )


def decide_accept_review(ctx: TransitionContext) -> TransitionDecision:
    """Owner signs off an ON_REVIEW task. Anything else is a no-op."""
    if ctx.owner_user_id is None or ctx.owner_user_id != ctx.actor_user_id:
        return TransitionDecision(status=ResultStatus.FORBIDDEN)
    if ctx.nonce_seen or ctx.task.status != TaskStatus.ON_REVIEW:
        return _noop()

    return TransitionDecision(
        status=ResultStatus.OK,
        changes={
            "status": TaskStatus.CLOSED,
            "closed_at": ctx.now,
        },
        action=TaskActionType.ACCEPT_REVIEW,
    )


def decide_return_to_work(ctx: TransitionContext, comment: str) -> TransitionDecision:
    """Owner sends an ON_REVIEW task back to ACTIVE with a comment."""
    if ctx.owner_user_id is None or ctx.owner_user_id != ctx.actor_user_id:
        return TransitionDecision(status=ResultStatus.FORBIDDEN)
    if ctx.nonce_seen or ctx.task.status != TaskStatus.ON_REVIEW:
        return _noop()

    return TransitionDecision(
        status=ResultStatus.OK,
        changes={
            "status": TaskStatus.ACTIVE,
            "submitted_for_review_at": None,
            "last_return_comment": comment,
            "last_return_at": ctx.now,
            "last_return_by_user_id": ctx.actor_user_id,
        },
        action=TaskActionType.RETURN_TO_WORK,
    )


def decide_reassign(
    ctx: TransitionContext,
    new_assignee_id: str,
    new_assignee_is_member: bool,
) -> TransitionDecision:
    """Owner hands an open task to another active member."""
    task = ctx.task
    if ctx.owner_user_id is None or ctx.owner_user_id != ctx.actor_user_id:
        return TransitionDecision(status=ResultStatus.FORBIDDEN)
    if ctx.nonce_seen:
        return _noop()
    if task.status == TaskStatus.CLOSED:
        return TransitionDecision(status=ResultStatus.TASK_CLOSED)
    if task.workspace_id is None or not new_assignee_is_member:
        return TransitionDecision(status=ResultStatus.INVALID_ASSIGNEE)
    if task.assignee_user_id == new_assignee_id:
        return _noop()

    return TransitionDecision(
        status=ResultStatus.OK,
        changes={"assignee_user_id": new_assignee_id},
        action=TaskActionType.REASSIGN,
    )
